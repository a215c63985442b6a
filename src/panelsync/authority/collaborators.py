"""External collaborators of the state authority.

The authority never evaluates patterns, renders editors or chooses a storage
format itself. It talks to these protocols instead. A JSON file store and a
silent evaluator are provided for headless runs and tests.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .sliders import brackets_balanced

logger = logging.getLogger(__name__)


@runtime_checkable
class PatternEvaluator(Protocol):
    """Turns source code into sound for a panel."""

    async def evaluate(self, code: str, panel_id: str) -> bool:
        """Evaluate ``code`` for ``panel_id``. Returns False on failure."""
        ...

    async def silence(self, panel_id: str) -> None:
        """Stop all sound from ``panel_id``."""
        ...


@runtime_checkable
class EditorSurface(Protocol):
    """Local code editor. Only plain text and simple cues cross this boundary."""

    def get_code(self, panel_id: str) -> str | None: ...

    def set_slider_value(self, panel_id: str, slider_id: str, value: float) -> None: ...

    def highlight(self, panel_id: str, active: bool) -> None: ...

    def show_error(self, panel_id: str, message: str) -> None: ...


@runtime_checkable
class PanelStore(Protocol):
    """Persistence of panel and master records across restarts."""

    def load(self) -> dict[str, Any] | None: ...

    def save(self, data: dict[str, Any]) -> None: ...


class JsonPanelStore:
    """Stores state as one JSON document, replaced atomically on save."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read panel store {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring panel store {self.path}: not a JSON object")
            return None
        return data

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".panels-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class SilentEvaluator:
    """Evaluator for headless primaries: checks brackets, plays nothing."""

    def __init__(self):
        self.playing: set[str] = set()

    async def evaluate(self, code: str, panel_id: str) -> bool:
        if not code.strip() or not brackets_balanced(code):
            logger.info(f"Rejected code for {panel_id}")
            return False
        self.playing.add(panel_id)
        logger.info(f"Evaluated {panel_id} ({len(code)} chars)")
        return True

    async def silence(self, panel_id: str) -> None:
        self.playing.discard(panel_id)
        logger.info(f"Silenced {panel_id}")
