"""Keyed, cancellable asyncio timers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class Debouncer:
    """Runs a callback once ``delay`` seconds after the last schedule for a key.

    Scheduling a key that is already pending cancels the pending timer. Once
    a timer fires, its callback runs to completion and is not cancellable.
    """

    def __init__(self, delay: float, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._pending: dict[Hashable, tuple[asyncio.Task, Callback]] = {}

    def schedule(self, key: Hashable, callback: Callback) -> None:
        self.cancel(key)
        task = asyncio.create_task(self._run_later(key, callback))
        self._pending[key] = (task, callback)

    async def _run_later(self, key: Hashable, callback: Callback) -> None:
        await asyncio.sleep(self.delay)
        self._pending.pop(key, None)
        try:
            await callback()
        except Exception:
            logger.exception(f"{self.name} callback for {key!r} failed")

    def cancel(self, key: Hashable) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    async def flush(self, key: Hashable) -> bool:
        """Run a pending callback now instead of waiting for its timer."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        task, callback = entry
        task.cancel()
        await callback()
        return True

    def cancel_all(self) -> None:
        for task, _ in self._pending.values():
            task.cancel()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)
