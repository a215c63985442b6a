"""Tests for settings and logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from panelsync.config import settings as settings_module
from panelsync.config.logging import JSONFormatter, TextFormatter, configure_logging
from panelsync.config.settings import Settings, _find_yaml_config

# =============================================================================
# Helpers
# =============================================================================

_ENV_KEYS_TO_CLEAR = [
    "PANELSYNC_HOST",
    "PANELSYNC_PORT",
    "PANELSYNC_WS_PATH",
    "PANELSYNC_API_KEY",
    "PANELSYNC_LOG_LEVEL",
    "PANELSYNC_LOG_FORMAT",
    "PANELSYNC_STATE_FILE",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS_TO_CLEAR:
        monkeypatch.delenv(key, raising=False)


def _make_settings(tmp_path, yaml_content=None, **overrides) -> Settings:
    """Create Settings, optionally discovering a panelsync.yaml in tmp_path."""
    search_paths = []
    if yaml_content is not None:
        yaml_path = tmp_path / "panelsync.yaml"
        yaml_path.write_text(yaml_content)
        search_paths.append(yaml_path)
    with patch.object(settings_module, "_YAML_SEARCH_PATHS", search_paths):
        return Settings(_env_file=None, **overrides)


# =============================================================================
# Settings
# =============================================================================


class TestSettingsDefaults:
    def test_defaults(self, tmp_path) -> None:
        s = _make_settings(tmp_path)

        assert s.port == 5173
        assert s.ws_path == "/ws"
        assert s.api_key is None
        assert s.rename_debounce_seconds == 0.5
        assert s.master_debounce_seconds == 0.8
        assert s.update_all_spacing_seconds == 0.05
        assert s.state_file.name == "panels.json"

    def test_env_override(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("PANELSYNC_PORT", "9000")
        monkeypatch.setenv("PANELSYNC_API_KEY", "k")

        s = _make_settings(tmp_path)

        assert s.port == 9000
        assert s.api_key == "k"

    def test_ws_path_gets_leading_slash(self, tmp_path) -> None:
        assert _make_settings(tmp_path, ws_path="relay").ws_path == "/relay"

    def test_log_format_validated(self, tmp_path) -> None:
        assert _make_settings(tmp_path, log_format="JSON").log_format == "json"
        with pytest.raises(ValidationError):
            _make_settings(tmp_path, log_format="xml")

    def test_state_file_expands_user(self, tmp_path) -> None:
        s = _make_settings(tmp_path, state_file="~/panels.json")
        assert "~" not in str(s.state_file)


class TestYamlConfig:
    def test_yaml_values_loaded(self, tmp_path) -> None:
        s = _make_settings(tmp_path, "port: 6000\nrename_debounce_seconds: 0.25\n")

        assert s.port == 6000
        assert s.rename_debounce_seconds == 0.25

    def test_env_beats_yaml(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("PANELSYNC_PORT", "7000")
        assert _make_settings(tmp_path, "port: 6000\n").port == 7000

    def test_unresolved_placeholder_uses_default(self, tmp_path) -> None:
        s = _make_settings(tmp_path, "api_key: ${RELAY_KEY}\n")
        assert s.api_key is None

    def test_find_yaml_config_none(self) -> None:
        with patch.object(settings_module, "_YAML_SEARCH_PATHS", []):
            assert _find_yaml_config() is None


# =============================================================================
# Logging
# =============================================================================


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="panelsync.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_formatter_fields(self) -> None:
        data = json.loads(JSONFormatter().format(_record(panel_id="p1", role="primary")))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "panelsync.test"
        assert data["panel_id"] == "p1"
        assert data["role"] == "primary"
        assert "connection_id" not in data

    def test_json_formatter_exception(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]

    def test_text_formatter(self) -> None:
        line = TextFormatter().format(_record())
        assert "panelsync.test - INFO - hello" in line


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_handler(self) -> None:
        configure_logging("DEBUG", "json")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("LOUD")
        assert logging.getLogger().level == logging.INFO
