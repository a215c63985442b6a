"""Settings and configuration management."""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

# Regex for ${ENV_VAR} placeholders in YAML values
_ENV_VAR_PLACEHOLDER_RE = re.compile(r"^\$\{[A-Z_][A-Z0-9_]*\}$")

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("panelsync.yaml"),
    Path("config/panelsync.yaml"),
    Path.home() / ".config" / "panelsync" / "panelsync.yaml",
]

_LOG_FORMATS = ("text", "json")


def _find_yaml_config() -> Path | None:
    """Find the first panelsync.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


def default_state_file() -> Path:
    """Return the default panel persistence file."""
    return Path.home() / ".panelsync" / "panels.json"


class Settings(BaseSettings):
    """Application settings.

    Priority chain: init kwargs > env vars > .env file > panelsync.yaml > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="PANELSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Priority: init kwargs > env vars > .env file > panelsync.yaml > file secrets > defaults
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        cls._yaml_path = yaml_path
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_var_placeholders(cls, data: dict) -> dict:
        """Strip unresolved ${VAR} placeholders so the field default applies."""
        if not isinstance(data, dict):
            return data
        for key, value in list(data.items()):
            if isinstance(value, str) and _ENV_VAR_PLACEHOLDER_RE.match(value):
                data[key] = None
        return data

    # Relay server
    host: str = Field("127.0.0.1", description="Relay bind address")
    port: int = Field(5173, description="Relay HTTP/WebSocket port")
    ws_path: str = Field("/ws", description="WebSocket endpoint path")
    static_dir: Path | None = Field(None, description="Directory served as static files")
    api_key: str | None = Field(
        None,
        description="X-API-Key required on /api/* routes. Unset means dev mode (open).",
    )

    # Clients
    relay_url: str = Field("ws://127.0.0.1:5173/ws", description="Relay URL for clients")
    reconnect_delay_seconds: float = Field(3.0, description="Fixed reconnect backoff")

    # Timing
    rename_debounce_seconds: float = Field(0.5, description="panel_renamed coalescing window")
    master_debounce_seconds: float = Field(0.8, description="Master code evaluation debounce")
    indicator_debounce_seconds: float = Field(
        0.5, description="Debounce for the state.update that follows code edits"
    )
    update_all_spacing_seconds: float = Field(
        0.05, description="Spacing between activations in update-all"
    )
    flash_duration_seconds: float = Field(0.3, description="Visual flash cue per updated panel")

    # Persistence
    state_file: Path = Field(default_factory=default_state_file)

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")

    @field_validator("state_file", "static_dir", mode="after")
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in _LOG_FORMATS:
            raise ValueError(f"log_format must be one of {_LOG_FORMATS}")
        return value

    @field_validator("ws_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
