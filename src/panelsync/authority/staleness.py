"""Per-panel staleness state machine.

    PAUSED --play--> SYNCED --edit--> STALE --update/play--> SYNCED
    SYNCED | STALE --pause--> PAUSED

A panel is stale when it is playing and its source differs from the code it
last evaluated. Pausing always clears stale.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from panelsync.errors import EvaluationError, PanelNotFoundError, StalenessInvariantError

from .collaborators import PatternEvaluator
from .models import Panel

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, EvaluationError], None]
FlashCallback = Callable[[str, bool], None]


class PanelPhase(str, Enum):
    PAUSED = "paused"
    SYNCED = "synced"
    STALE = "stale"


def phase_of(panel: Panel) -> PanelPhase:
    if not panel.playing:
        return PanelPhase.PAUSED
    return PanelPhase.STALE if panel.stale else PanelPhase.SYNCED


def check_invariant(panel: Panel) -> None:
    """Raise if ``panel`` is stale while paused."""
    if panel.stale and not panel.playing:
        raise StalenessInvariantError(
            f"Panel {panel.id} is stale while paused", {"panel_id": panel.id}
        )


class StalenessTracker:
    """Drives play, update, edit and pause transitions for registered panels."""

    def __init__(
        self,
        evaluator: PatternEvaluator,
        *,
        spacing_seconds: float = 0.05,
        flash_seconds: float = 0.3,
        on_error: ErrorCallback | None = None,
        on_flash: FlashCallback | None = None,
    ):
        self._evaluator = evaluator
        self._panels: dict[str, Panel] = {}
        self._flash_tasks: set[asyncio.Task] = set()
        self.spacing_seconds = spacing_seconds
        self.flash_seconds = flash_seconds
        self.on_error = on_error
        self.on_flash = on_flash

    def register(self, panel: Panel) -> None:
        if not panel.playing:
            panel.stale = False
        check_invariant(panel)
        self._panels[panel.id] = panel

    def unregister(self, panel_id: str) -> Panel | None:
        return self._panels.pop(panel_id, None)

    def __contains__(self, panel_id: str) -> bool:
        return panel_id in self._panels

    def _get(self, panel_id: str) -> Panel:
        panel = self._panels.get(panel_id)
        if panel is None:
            raise PanelNotFoundError(panel_id)
        return panel

    def phase(self, panel_id: str) -> PanelPhase:
        return phase_of(self._get(panel_id))

    def stale_panels(self) -> list[str]:
        """Ids of stale panels in insertion order."""
        return [p.id for p in self._panels.values() if p.stale]

    async def play(self, panel_id: str) -> bool:
        """PAUSED or STALE to SYNCED. Re-evaluates if already playing."""
        return await self._activate(self._get(panel_id))

    async def update(self, panel_id: str) -> bool:
        """Re-evaluate a playing panel. Paused panels are left alone."""
        panel = self._get(panel_id)
        if not panel.playing:
            logger.debug(f"Ignoring update of paused panel {panel_id}")
            return False
        return await self._activate(panel)

    def edit(self, panel_id: str, code: str) -> PanelPhase:
        """Record a source change and recompute stale."""
        panel = self._get(panel_id)
        panel.source_code = code
        panel.stale = panel.playing and code != panel.last_evaluated_code
        check_invariant(panel)
        return phase_of(panel)

    def pause(self, panel_id: str) -> None:
        panel = self._get(panel_id)
        panel.playing = False
        panel.stale = False
        check_invariant(panel)

    async def _activate(self, panel: Panel) -> bool:
        code = panel.source_code
        saved = (panel.playing, panel.stale, panel.last_evaluated_code)

        if not code.strip():
            await self._roll_back(panel, saved, EvaluationError("No code to evaluate", panel.id))
            return False

        try:
            ok = await self._evaluator.evaluate(code, panel.id)
        except Exception as e:
            await self._roll_back(
                panel, saved, EvaluationError(f"Evaluation failed: {e}", panel.id, cause=e)
            )
            return False

        if not ok:
            await self._roll_back(panel, saved, EvaluationError("Evaluation failed", panel.id))
            return False

        panel.playing = True
        panel.last_evaluated_code = code
        # The source may have been edited while the evaluator was running
        panel.stale = panel.source_code != code
        check_invariant(panel)
        return True

    async def _roll_back(
        self,
        panel: Panel,
        saved: tuple[bool, bool, str],
        error: EvaluationError,
    ) -> None:
        was_playing, _, last_code = saved
        panel.last_evaluated_code = last_code
        panel.playing = False
        panel.stale = False
        check_invariant(panel)
        logger.warning(f"{error.message} ({panel.id})", extra={"panel_id": panel.id})

        if was_playing:
            try:
                await self._evaluator.silence(panel.id)
            except Exception as e:
                logger.error(f"Failed to silence {panel.id} after evaluation error: {e}")

        if self.on_error:
            self.on_error(panel.id, error)

    async def update_all_stale(self) -> list[str]:
        """Re-evaluate every stale panel in insertion order.

        Returns:
            Ids of the panels that were attempted.
        """
        attempted = []
        for panel_id in self.stale_panels():
            panel = self._panels.get(panel_id)
            # Pausing or deleting during the spacing sleep takes it out of the batch
            if panel is None or not panel.stale:
                continue
            attempted.append(panel_id)
            await self._activate(panel)
            self._start_flash(panel_id)
            await asyncio.sleep(self.spacing_seconds)
        if attempted:
            logger.info(f"Updated {len(attempted)} stale panels")
        return attempted

    def _start_flash(self, panel_id: str) -> None:
        if not self.on_flash:
            return
        task = asyncio.create_task(self._flash(panel_id))
        self._flash_tasks.add(task)
        task.add_done_callback(self._flash_tasks.discard)

    async def _flash(self, panel_id: str) -> None:
        try:
            self.on_flash(panel_id, True)
            await asyncio.sleep(self.flash_seconds)
            self.on_flash(panel_id, False)
        except Exception as e:
            logger.debug(f"Flash cue for {panel_id} failed: {e}")
