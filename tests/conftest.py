"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocket
from starlette.websockets import WebSocketState

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from panelsync.authority.sliders import clear_cache  # noqa: E402
from panelsync.authority.state import StateAuthority  # noqa: E402


class FakeEvaluator:
    """Records calls. Code listed in ``failing`` evaluates to False."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.raise_on: set[str] = set()

    async def evaluate(self, code: str, panel_id: str) -> bool:
        self.calls.append(("evaluate", panel_id))
        if code in self.raise_on:
            raise RuntimeError("evaluator crashed")
        return code not in self.failing

    async def silence(self, panel_id: str) -> None:
        self.calls.append(("silence", panel_id))


class RecordingOutbox:
    """Async callable collecting every emitted message."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message) -> bool:
        self.messages.append(message)
        return True

    def of_type(self, message_type: str) -> list:
        return [m for m in self.messages if m.type == message_type]

    def types(self) -> list[str]:
        return [m.type for m in self.messages]

    def clear(self) -> None:
        self.messages.clear()


def make_websocket(connected: bool = True) -> AsyncMock:
    """A fake server-side WebSocket in the given state."""
    ws = AsyncMock(spec=WebSocket)
    ws.client_state = WebSocketState.CONNECTED if connected else WebSocketState.DISCONNECTED
    return ws


@pytest.fixture(autouse=True)
def _fresh_slider_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def evaluator() -> FakeEvaluator:
    return FakeEvaluator()


@pytest.fixture
def outbox() -> RecordingOutbox:
    return RecordingOutbox()


@pytest.fixture
def authority(evaluator, outbox) -> StateAuthority:
    return StateAuthority(
        evaluator,
        outbox=outbox,
        rename_debounce=0.02,
        master_debounce=0.02,
        indicator_debounce=0.02,
        update_all_spacing=0.0,
        flash_duration=0.01,
    )
