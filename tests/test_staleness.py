"""Tests for the staleness state machine."""

from __future__ import annotations

import asyncio

import pytest

from panelsync.authority.models import Panel
from panelsync.authority.staleness import PanelPhase, StalenessTracker, check_invariant
from panelsync.errors import PanelNotFoundError, StalenessInvariantError


def make_tracker(evaluator, **kwargs) -> tuple[StalenessTracker, dict[str, Panel]]:
    tracker = StalenessTracker(evaluator, spacing_seconds=0.0, flash_seconds=0.01, **kwargs)
    panels = {}
    for pid in ("p1", "p2", "p3"):
        panel = Panel(id=pid, number=len(panels) + 1, title=pid, source_code=f"s(\"{pid}\")")
        tracker.register(panel)
        panels[pid] = panel
    return tracker, panels


# =============================================================================
# Transition Tests
# =============================================================================


class TestTransitions:
    """Tests for the Paused/Synced/Stale transitions."""

    @pytest.mark.asyncio
    async def test_play_paused_to_synced(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)

        assert await tracker.play("p1") is True

        assert tracker.phase("p1") is PanelPhase.SYNCED
        assert panels["p1"].last_evaluated_code == panels["p1"].source_code

    @pytest.mark.asyncio
    async def test_edit_synced_to_stale(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)
        await tracker.play("p1")

        assert tracker.edit("p1", "s(\"changed\")") is PanelPhase.STALE

    @pytest.mark.asyncio
    async def test_edit_back_returns_to_synced(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        original = panels["p1"].source_code
        await tracker.play("p1")
        tracker.edit("p1", "other")

        assert tracker.edit("p1", original) is PanelPhase.SYNCED

    @pytest.mark.asyncio
    async def test_update_stale_to_synced(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        await tracker.play("p1")
        tracker.edit("p1", "new code")

        assert await tracker.update("p1") is True

        assert tracker.phase("p1") is PanelPhase.SYNCED
        assert panels["p1"].last_evaluated_code == "new code"

    @pytest.mark.asyncio
    async def test_pause_clears_stale(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        await tracker.play("p1")
        tracker.edit("p1", "new code")

        tracker.pause("p1")

        assert tracker.phase("p1") is PanelPhase.PAUSED
        assert panels["p1"].stale is False

    def test_edit_paused_stays_paused(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)

        assert tracker.edit("p1", "whatever") is PanelPhase.PAUSED
        assert panels["p1"].stale is False

    @pytest.mark.asyncio
    async def test_update_paused_is_noop(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)

        assert await tracker.update("p1") is False
        assert evaluator.calls == []

    def test_unknown_panel(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)
        with pytest.raises(PanelNotFoundError):
            tracker.pause("ghost")


# =============================================================================
# Rollback Tests
# =============================================================================


class TestRollback:
    """Tests for evaluation failure handling."""

    @pytest.mark.asyncio
    async def test_failed_play_stays_paused(self, evaluator) -> None:
        errors = []
        tracker, panels = make_tracker(evaluator, on_error=lambda pid, e: errors.append(pid))
        evaluator.failing.add(panels["p1"].source_code)

        assert await tracker.play("p1") is False

        assert tracker.phase("p1") is PanelPhase.PAUSED
        assert panels["p1"].last_evaluated_code == ""
        assert errors == ["p1"]

    @pytest.mark.asyncio
    async def test_raising_evaluator_rolls_back(self, evaluator) -> None:
        errors = []
        tracker, panels = make_tracker(evaluator, on_error=lambda pid, e: errors.append(e))
        await tracker.play("p1")
        tracker.edit("p1", "crash")
        evaluator.raise_on.add("crash")

        assert await tracker.update("p1") is False

        panel = panels["p1"]
        assert panel.playing is False
        assert panel.stale is False
        assert panel.last_evaluated_code == 's("p1")'
        assert isinstance(errors[0].cause, RuntimeError)
        assert ("silence", "p1") in evaluator.calls

    @pytest.mark.asyncio
    async def test_empty_code_not_evaluated(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        tracker.edit("p1", "   ")

        assert await tracker.play("p1") is False
        assert evaluator.calls == []

    @pytest.mark.asyncio
    async def test_edit_during_evaluation_leaves_stale(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        release = asyncio.Event()

        async def slow_evaluate(code, panel_id):
            await release.wait()
            return True

        evaluator.evaluate = slow_evaluate
        play = asyncio.create_task(tracker.play("p1"))
        await asyncio.sleep(0)
        panels["p1"].source_code = "edited meanwhile"
        release.set()
        await play

        assert panels["p1"].last_evaluated_code == 's("p1")'
        assert tracker.phase("p1") is PanelPhase.STALE


# =============================================================================
# Invariant Tests
# =============================================================================


class TestInvariant:
    """stale implies playing, at every observed instant."""

    def test_check_invariant_raises(self) -> None:
        panel = Panel(id="p1", number=1, title="x", stale=True, playing=False)
        with pytest.raises(StalenessInvariantError):
            check_invariant(panel)

    def test_register_clears_stale_on_paused_panel(self, evaluator) -> None:
        tracker = StalenessTracker(evaluator)
        panel = Panel(id="p1", number=1, title="x", stale=True, playing=False)

        tracker.register(panel)

        assert panel.stale is False

    @pytest.mark.asyncio
    async def test_invariant_holds_across_random_sequence(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        evaluator.failing.add("bad")
        steps = [
            ("play", "p1"),
            ("edit", "p1", "x"),
            ("edit", "p2", "y"),
            ("play", "p2"),
            ("edit", "p2", "bad"),
            ("update", "p2"),
            ("pause", "p1"),
            ("edit", "p1", "z"),
            ("play", "p3"),
            ("edit", "p3", "w"),
        ]
        for step in steps:
            action, pid = step[0], step[1]
            if action == "edit":
                tracker.edit(pid, step[2])
            elif action == "pause":
                tracker.pause(pid)
            else:
                await getattr(tracker, action)(pid)
            for panel in panels.values():
                assert not panel.stale or panel.playing


# =============================================================================
# Batch Update Tests
# =============================================================================


class TestUpdateAllStale:
    """Tests for the spaced batch update."""

    @pytest.mark.asyncio
    async def test_insertion_order(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)
        for pid in ("p1", "p2", "p3"):
            await tracker.play(pid)
        tracker.edit("p3", "c")
        tracker.edit("p1", "a")
        evaluator.calls.clear()

        attempted = await tracker.update_all_stale()

        assert attempted == ["p1", "p3"]
        assert [pid for _, pid in evaluator.calls] == ["p1", "p3"]
        assert tracker.stale_panels() == []

    @pytest.mark.asyncio
    async def test_spacing_between_activations(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)
        tracker.spacing_seconds = 0.05
        for pid in ("p1", "p2"):
            await tracker.play(pid)
            tracker.edit(pid, "changed")

        loop = asyncio.get_running_loop()
        started = loop.time()
        await tracker.update_all_stale()

        assert loop.time() - started >= 0.09

    @pytest.mark.asyncio
    async def test_flash_does_not_block(self, evaluator) -> None:
        cues = []
        tracker, _ = make_tracker(evaluator, on_flash=lambda pid, active: cues.append((pid, active)))
        tracker.flash_seconds = 0.05
        await tracker.play("p1")
        tracker.edit("p1", "changed")

        await tracker.update_all_stale()
        assert cues == [("p1", True)]

        await asyncio.sleep(0.1)
        assert cues == [("p1", True), ("p1", False)]

    @pytest.mark.asyncio
    async def test_failure_in_batch_continues(self, evaluator) -> None:
        tracker, panels = make_tracker(evaluator)
        for pid in ("p1", "p2"):
            await tracker.play(pid)
        tracker.edit("p1", "bad")
        tracker.edit("p2", "good")
        evaluator.failing.add("bad")

        attempted = await tracker.update_all_stale()

        assert attempted == ["p1", "p2"]
        assert panels["p1"].playing is False
        assert tracker.phase("p2") is PanelPhase.SYNCED

    @pytest.mark.asyncio
    async def test_panel_paused_mid_batch_is_skipped(self, evaluator) -> None:
        tracker, _ = make_tracker(evaluator)
        for pid in ("p1", "p2", "p3"):
            await tracker.play(pid)
            tracker.edit(pid, "changed")
        evaluate = evaluator.evaluate

        async def evaluate_and_interfere(code: str, panel_id: str) -> bool:
            if panel_id == "p1":
                tracker.pause("p2")
                tracker.unregister("p3")
            return await evaluate(code, panel_id)

        evaluator.evaluate = evaluate_and_interfere
        evaluator.calls.clear()

        attempted = await tracker.update_all_stale()

        assert attempted == ["p1"]
        assert evaluator.calls == [("evaluate", "p1")]
        assert tracker.phase("p2") is PanelPhase.PAUSED
