"""The state authority: sole owner of panel and master state.

Every mutation goes through a method here. Each method applies the change,
persists it, and pushes the resulting wire messages through ``outbox``. The
primary client supplies the outbox; without one, messages are only logged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from panelsync.errors import (
    EvaluationError,
    InvalidTitleError,
    MasterUnitError,
    PanelNotFoundError,
)
from panelsync.protocol.messages import (
    ClientSyncPanelsMessage,
    MasterSlidersMessage,
    MasterSliderValueMessage,
    PanelCreateData,
    PanelCreatedMessage,
    PanelDeletedMessage,
    PanelRenamedMessage,
    PanelSlidersMessage,
    PanelSliderValueMessage,
    StateUpdateMessage,
    WireMessage,
)

from .collaborators import EditorSurface, PanelStore, PatternEvaluator
from .debounce import Debouncer
from .models import (
    DEFAULT_SIZE,
    MASTER_PANEL_ID,
    Z_INDEX_STEP,
    MasterUnit,
    Panel,
    SliderWidget,
    StateSnapshot,
    default_position,
    sanitize_title,
)
from .sliders import extract_master_sliders, extract_panel_sliders
from .staleness import StalenessTracker

logger = logging.getLogger(__name__)

Outbox = Callable[[WireMessage], Awaitable[Any]]
ErrorCallback = Callable[[str, EvaluationError], None]

STORE_VERSION = 1


class SliderScope(str, Enum):
    MASTER = "master"
    PANEL = "panel"


class StateAuthority:
    """Owns panels, the master unit and the slider-value table."""

    def __init__(
        self,
        evaluator: PatternEvaluator,
        store: PanelStore | None = None,
        editor: EditorSurface | None = None,
        outbox: Outbox | None = None,
        *,
        rename_debounce: float = 0.5,
        master_debounce: float = 0.8,
        indicator_debounce: float = 0.5,
        update_all_spacing: float = 0.05,
        flash_duration: float = 0.3,
        on_error: ErrorCallback | None = None,
    ):
        self.evaluator = evaluator
        self.store = store
        self.editor = editor
        self.outbox = outbox
        self.on_error = on_error

        self.master = MasterUnit()
        # Keyed by (owner id, slider id). The master unit owns MASTER_PANEL_ID
        self.slider_values: dict[tuple[str, str], float] = {}
        self._panels: dict[str, Panel] = {}

        self.tracker = StalenessTracker(
            evaluator,
            spacing_seconds=update_all_spacing,
            flash_seconds=flash_duration,
            on_error=self._report_error,
            on_flash=self._flash,
        )
        self._rename_timers = Debouncer(rename_debounce, "rename")
        self._master_timer = Debouncer(master_debounce, "master")
        self._indicator_timer = Debouncer(indicator_debounce, "indicator")

    @classmethod
    def from_settings(cls, settings, evaluator: PatternEvaluator, **kwargs) -> StateAuthority:
        """Build an authority with timings taken from ``Settings``."""
        return cls(
            evaluator,
            rename_debounce=settings.rename_debounce_seconds,
            master_debounce=settings.master_debounce_seconds,
            indicator_debounce=settings.indicator_debounce_seconds,
            update_all_spacing=settings.update_all_spacing_seconds,
            flash_duration=settings.flash_duration_seconds,
            **kwargs,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def panels(self) -> list[Panel]:
        """Panels in creation order."""
        return list(self._panels.values())

    def get_panel(self, panel_id: str) -> Panel:
        panel = self._panels.get(panel_id)
        if panel is None:
            raise PanelNotFoundError(panel_id)
        return panel

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot.capture(self.panels, self.master)

    def state_update_message(self) -> StateUpdateMessage:
        return StateUpdateMessage(panels=[p.flags() for p in self._panels.values()])

    def sync_payload(self) -> ClientSyncPanelsMessage:
        """Bulk push sent by the primary after it registers."""
        return ClientSyncPanelsMessage(
            panels=[
                {**p.to_record(), "playing": p.playing, "stale": p.stale}
                for p in self._panels.values()
            ]
        )

    # =========================================================================
    # Outbound
    # =========================================================================

    async def emit(self, message: WireMessage) -> None:
        if self.outbox is None:
            logger.debug(f"No outbox, not sending {message.type}")
            return
        await self.outbox(message)

    async def broadcast_state(self) -> None:
        """Whole-state ``state.update`` for every panel."""
        await self.emit(self.state_update_message())

    def _report_error(self, panel_id: str, error: EvaluationError) -> None:
        if self.editor is not None:
            self.editor.show_error(panel_id, error.message)
        if self.on_error is not None:
            self.on_error(panel_id, error)

    def _flash(self, panel_id: str, active: bool) -> None:
        if self.editor is not None:
            self.editor.highlight(panel_id, active)

    # =========================================================================
    # Panel lifecycle
    # =========================================================================

    def _next_panel_id(self) -> str:
        stamp = int(time.time() * 1000)
        while f"panel-{stamp}" in self._panels:
            stamp += 1
        return f"panel-{stamp}"

    async def create_panel(self, config: PanelCreateData | dict | None = None) -> str:
        """Insert a paused panel and announce it.

        Returns:
            The new panel's id, or the existing id if ``config.id`` is taken.
        """
        if config is None:
            config = PanelCreateData()
        elif isinstance(config, dict):
            config = PanelCreateData.model_validate(config)

        if config.id and config.id in self._panels:
            return config.id
        if config.id == MASTER_PANEL_ID:
            raise MasterUnitError("The master unit cannot be created")

        number = max((p.number for p in self._panels.values()), default=0) + 1
        z_index = max((p.z_index for p in self._panels.values()), default=0) + Z_INDEX_STEP
        panel = Panel(
            id=config.id or self._next_panel_id(),
            number=number,
            title=sanitize_title(config.title or "") or f"Instrument {number}",
            source_code=config.code or "",
            position=config.position or default_position(number),
            size=config.size or dict(DEFAULT_SIZE),
            z_index=z_index,
        )
        self._panels[panel.id] = panel
        self.tracker.register(panel)
        logger.info(f"Created panel {panel.id} ({panel.title})", extra={"panel_id": panel.id})

        await self.emit(
            PanelCreatedMessage(
                id=panel.id,
                title=panel.title,
                code=panel.source_code,
                position=panel.position,
                size=panel.size,
            )
        )
        self.save()
        return panel.id

    async def delete_panel(self, panel_id: str) -> None:
        """Silence, then remove, then announce."""
        if panel_id == MASTER_PANEL_ID:
            raise MasterUnitError("The master unit cannot be deleted")
        panel = self.get_panel(panel_id)

        if panel.playing:
            await self.evaluator.silence(panel_id)

        del self._panels[panel_id]
        self.tracker.unregister(panel_id)
        self._rename_timers.cancel(panel_id)
        self._drop_slider_values(panel.id, panel.sliders)
        logger.info(f"Deleted panel {panel_id}", extra={"panel_id": panel_id})

        await self.emit(PanelDeletedMessage(id=panel_id))
        self.save()

    async def rename_panel(self, panel_id: str, title: str) -> str:
        """Set a panel's title now and announce it after the debounce window."""
        panel = self.get_panel(panel_id)
        clean = sanitize_title(title)
        if not clean:
            raise InvalidTitleError("Panel title cannot be empty", {"panel_id": panel_id})

        panel.title = clean
        self.save()

        async def announce() -> None:
            current = self._panels.get(panel_id)
            if current is not None:
                await self.emit(PanelRenamedMessage(id=panel_id, new_title=current.title))

        self._rename_timers.schedule(panel_id, announce)
        return clean

    async def set_panel_code(self, panel_id: str, code: str | None = None) -> None:
        """Replace a panel's source. Remotes learn of staleness from the next state.update.

        With no ``code`` the editor's current text for the panel is used.
        """
        self.get_panel(panel_id)
        if code is None:
            code = self.editor.get_code(panel_id) if self.editor is not None else None
            if code is None:
                logger.debug(f"No editor text for {panel_id}, keeping its source")
                return
        self.tracker.edit(panel_id, code)
        self.save()
        self._indicator_timer.schedule("state", self.broadcast_state)

    # =========================================================================
    # Playback
    # =========================================================================

    async def _evaluate_master_first(self) -> None:
        await self._master_timer.flush("master")

    async def play_panel(self, panel_id: str) -> bool:
        self.get_panel(panel_id)
        await self._evaluate_master_first()
        ok = await self.tracker.play(panel_id)
        if ok:
            await self._refresh_panel_sliders(self._panels[panel_id])
        await self.broadcast_state()
        return ok

    async def update_panel(self, panel_id: str) -> bool:
        self.get_panel(panel_id)
        await self._evaluate_master_first()
        ok = await self.tracker.update(panel_id)
        if ok:
            await self._refresh_panel_sliders(self._panels[panel_id])
        await self.broadcast_state()
        return ok

    async def _pause(self, panel: Panel) -> None:
        await self.evaluator.silence(panel.id)
        self.tracker.pause(panel.id)
        self._drop_slider_values(panel.id, panel.sliders)
        panel.sliders = []
        await self.emit(PanelSlidersMessage(panel_id=panel.id, sliders=[]))

    async def pause_panel(self, panel_id: str) -> None:
        await self._pause(self.get_panel(panel_id))
        await self.broadcast_state()

    async def toggle_panel(self, panel_id: str) -> bool:
        """Pause if playing, otherwise play. Returns the new playing flag."""
        if self.get_panel(panel_id).playing:
            await self.pause_panel(panel_id)
            return False
        return await self.play_panel(panel_id)

    async def stop_all(self) -> list[str]:
        stopped = [p for p in self._panels.values() if p.playing]
        for panel in stopped:
            await self._pause(panel)
        await self.broadcast_state()
        logger.info(f"Stopped {len(stopped)} panels")
        return [p.id for p in stopped]

    async def update_all(self) -> list[str]:
        """Re-evaluate every stale panel, spaced apart."""
        await self._evaluate_master_first()
        attempted = await self.tracker.update_all_stale()
        for panel_id in attempted:
            panel = self._panels.get(panel_id)
            if panel is not None and panel.playing:
                await self._refresh_panel_sliders(panel)
        await self.broadcast_state()
        return attempted

    # =========================================================================
    # Sliders
    # =========================================================================

    def slider_value(self, slider_id: str, panel_id: str = MASTER_PANEL_ID) -> float | None:
        """Current value of a slider owned by ``panel_id`` (the master unit by default)."""
        return self.slider_values.get((panel_id, slider_id))

    def _drop_slider_values(self, owner_id: str, sliders: list[SliderWidget]) -> None:
        for slider in sliders:
            self.slider_values.pop((owner_id, slider.slider_id), None)

    def _rebuild_widgets(
        self, owner_id: str, old: list[SliderWidget], declarations
    ) -> list[SliderWidget]:
        surviving = {s.slider_id for s in old}
        widgets = []
        for decl in declarations:
            key = (owner_id, decl.slider_id)
            if decl.slider_id in surviving and key in self.slider_values:
                value = self.slider_values[key]
            else:
                value = decl.value
            self.slider_values[key] = value
            widgets.append(
                SliderWidget(
                    slider_id=decl.slider_id,
                    label=decl.label,
                    value=value,
                    min=decl.min,
                    max=decl.max,
                )
            )
        kept = {w.slider_id for w in widgets}
        self._drop_slider_values(owner_id, [s for s in old if s.slider_id not in kept])
        return widgets

    async def _refresh_panel_sliders(self, panel: Panel) -> None:
        panel.sliders = self._rebuild_widgets(
            panel.id, panel.sliders, extract_panel_sliders(panel.last_evaluated_code)
        )
        await self.emit(
            PanelSlidersMessage(
                panel_id=panel.id, sliders=[s.to_payload() for s in panel.sliders]
            )
        )

    async def update_slider_value(
        self,
        scope: SliderScope | str,
        slider_id: str,
        value: float,
        panel_id: str | None = None,
    ) -> None:
        """Write a slider value and announce it.

        Local UI changes and remote ``*.sliderChange`` commands both land
        here. Later writes overwrite earlier ones.
        """
        scope = SliderScope(scope)
        value = float(value)

        if scope is SliderScope.MASTER:
            owner_id = MASTER_PANEL_ID
            widgets = self.master.sliders
            message: WireMessage = MasterSliderValueMessage(slider_id=slider_id, value=value)
        else:
            if panel_id is None:
                raise PanelNotFoundError("<none>")
            owner_id = panel_id
            widgets = self.get_panel(panel_id).sliders
            message = PanelSliderValueMessage(panel_id=panel_id, slider_id=slider_id, value=value)

        self.slider_values[(owner_id, slider_id)] = value
        for widget in widgets:
            if widget.slider_id == slider_id:
                widget.value = value
                break
        else:
            logger.debug(f"Slider {slider_id} has no widget in {scope.value} scope")

        if self.editor is not None:
            self.editor.set_slider_value(owner_id, slider_id, value)
        await self.emit(message)

    # =========================================================================
    # Master unit
    # =========================================================================

    async def set_master_code(self, code: str) -> None:
        """Store master code and evaluate it once typing settles."""
        self.master.source_code = code
        self.save()
        self._master_timer.schedule("master", self.evaluate_master)

    async def evaluate_master(self) -> bool:
        """Rebuild master sliders from the code and hand the code to the evaluator."""
        code = self.master.source_code
        self.master.sliders = self._rebuild_widgets(
            MASTER_PANEL_ID, self.master.sliders, extract_master_sliders(code)
        )

        ok = True
        if code.strip():
            try:
                ok = await self.evaluator.evaluate(code, MASTER_PANEL_ID)
            except Exception as e:
                ok = False
                self._report_error(
                    MASTER_PANEL_ID,
                    EvaluationError(f"Master evaluation failed: {e}", MASTER_PANEL_ID, cause=e),
                )
            else:
                if not ok:
                    self._report_error(
                        MASTER_PANEL_ID,
                        EvaluationError("Master evaluation failed", MASTER_PANEL_ID),
                    )

        await self.emit(MasterSlidersMessage(sliders=[s.to_payload() for s in self.master.sliders]))
        return ok

    def set_master_compact(self, compact: bool) -> None:
        self.master.compact = bool(compact)
        self.save()

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> int:
        """Restore panels and the master unit from the store.

        Returns:
            Number of panels restored.
        """
        if self.store is None:
            return 0
        data = self.store.load()
        if not data:
            return 0

        self.master = MasterUnit.from_record(data.get("master") or {})
        for panel_id in list(self._panels):
            self.tracker.unregister(panel_id)
        self._panels.clear()
        for record in data.get("panels") or []:
            try:
                panel = Panel.from_record(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable panel record: {e}")
                continue
            self._panels[panel.id] = panel
            self.tracker.register(panel)

        logger.info(f"Loaded {len(self._panels)} panels")
        return len(self._panels)

    def save(self) -> None:
        if self.store is None:
            return
        data = {
            "version": STORE_VERSION,
            "master": self.master.to_record(),
            "panels": [p.to_record() for p in self._panels.values()],
        }
        try:
            self.store.save(data)
        except OSError as e:
            logger.error(f"Failed to save panel state: {e}")

    async def shutdown(self) -> None:
        """Cancel pending debounced work."""
        self._rename_timers.cancel_all()
        self._master_timer.cancel_all()
        self._indicator_timer.cancel_all()
