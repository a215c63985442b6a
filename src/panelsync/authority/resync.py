"""
Full-state resynchronization.

Primary side: answer ``server.requestFullState`` with a ``full_state``
baseline followed by the master sliders.

Remote side: ``RemoteView`` holds what a remote may show. It ignores panel
messages until a baseline has arrived, then applies ``state.update`` as
whole-object replacement per panel.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from panelsync.protocol.messages import (
    FullStateMessage,
    FullStatePanel,
    MasterSlidersMessage,
    MasterSliderValueMessage,
    Message,
    MessageType,
    MetronomeStepMessage,
    PanelCreatedMessage,
    PanelDeletedMessage,
    PanelRenamedMessage,
    PanelSlidersMessage,
    PanelSliderValueMessage,
    PrimaryStatusMessage,
    SliderPayload,
    StateUpdateMessage,
)

from .models import StateSnapshot
from .state import StateAuthority

logger = logging.getLogger(__name__)


class ResyncCoordinator:
    """Primary-side responder for full-state requests."""

    def __init__(self, authority: StateAuthority):
        self.authority = authority
        self.requests_served = 0

    @staticmethod
    def full_state_message(snapshot: StateSnapshot) -> FullStateMessage:
        return FullStateMessage(
            panels=[entry.to_full_state() for entry in snapshot.panels],
            timestamp=snapshot.timestamp,
        )

    async def handle_full_state_request(self, target_client_id: str | None = None) -> None:
        snapshot = self.authority.snapshot()
        await self.authority.emit(self.full_state_message(snapshot))
        if snapshot.master_sliders:
            await self.authority.emit(
                MasterSlidersMessage(sliders=[s.to_payload() for s in snapshot.master_sliders])
            )
        self.requests_served += 1
        logger.info(
            f"Sent full state ({len(snapshot.panels)} panels) for {target_client_id or 'all remotes'}"
        )


class RemoteStatus(str, Enum):
    DISCONNECTED = "disconnected"
    LOADING = "loading"
    READY = "ready"


@dataclass
class RemotePanel:
    """A remote's copy of one panel."""

    id: str
    title: str
    playing: bool = False
    stale: bool = False
    position: dict[str, float] | None = None
    sliders: dict[str, SliderPayload] = field(default_factory=dict)


class RemoteView:
    """Local view of a remote surface."""

    def __init__(self):
        self.status = RemoteStatus.DISCONNECTED
        self.panels: dict[str, RemotePanel] = {}
        self.master_sliders: dict[str, SliderPayload] = {}
        self.metronome_step: int | None = None
        self.baseline_timestamp: int | None = None
        self._on_change: list[Callable[[RemoteView], None]] = []

        self._handlers = {
            MessageType.FULL_STATE.value: self._apply_full_state,
            MessageType.STATE_UPDATE.value: self._apply_state_update,
            MessageType.PANEL_CREATED.value: self._apply_panel_created,
            MessageType.PANEL_DELETED.value: self._apply_panel_deleted,
            MessageType.PANEL_RENAMED.value: self._apply_panel_renamed,
            MessageType.PANEL_SLIDERS.value: self._apply_panel_sliders,
            MessageType.PANEL_SLIDER_VALUE.value: self._apply_panel_slider_value,
            MessageType.MASTER_SLIDERS.value: self._apply_master_sliders,
            MessageType.MASTER_SLIDER_VALUE.value: self._apply_master_slider_value,
            MessageType.METRONOME_STEP.value: self._apply_metronome_step,
            MessageType.SERVER_PRIMARY_STATUS.value: self._apply_primary_status,
        }
        # Master and metronome messages are not panel-specific
        self._allowed_before_baseline = {
            MessageType.FULL_STATE.value,
            MessageType.SERVER_PRIMARY_STATUS.value,
            MessageType.MASTER_SLIDERS.value,
            MessageType.MASTER_SLIDER_VALUE.value,
            MessageType.METRONOME_STEP.value,
        }

    def add_change_callback(self, callback: Callable[[RemoteView], None]) -> None:
        self._on_change.append(callback)

    @property
    def has_baseline(self) -> bool:
        return self.baseline_timestamp is not None

    def connection_opened(self) -> None:
        """Socket is open and register was sent; wait for the baseline."""
        self.status = RemoteStatus.LOADING
        self.baseline_timestamp = None
        self._notify()

    def connection_closed(self) -> None:
        self.status = RemoteStatus.DISCONNECTED
        self.baseline_timestamp = None
        self._notify()

    def apply(self, message: Message) -> bool:
        """Apply one inbound message.

        Returns:
            True if the message was applied, False if it was ignored.
        """
        handler = self._handlers.get(message.type)
        if handler is None:
            return False
        if not self.has_baseline and message.type not in self._allowed_before_baseline:
            logger.debug(f"Ignoring {message.type} before full_state")
            return False
        handler(message)
        self._notify()
        return True

    def _notify(self) -> None:
        for callback in self._on_change:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"View callback error: {e}")

    # -------------------------------------------------------------------------

    def _apply_full_state(self, message: FullStateMessage) -> None:
        previous = self.panels
        self.panels = {}
        for entry in message.panels:
            panel = self._from_full_state(entry)
            # Slider metadata is not part of the baseline; keep what we had
            if entry.id in previous:
                panel.sliders = previous[entry.id].sliders
            self.panels[entry.id] = panel
        self.baseline_timestamp = message.timestamp
        self.status = RemoteStatus.READY

    @staticmethod
    def _from_full_state(entry: FullStatePanel) -> RemotePanel:
        return RemotePanel(
            id=entry.id,
            title=entry.title,
            playing=entry.playing,
            stale=entry.stale,
            position=entry.position,
        )

    def _apply_state_update(self, message: StateUpdateMessage) -> None:
        for flags in message.panels:
            panel = self.panels.get(flags.panel)
            if panel is None:
                continue
            panel.playing = flags.playing
            panel.stale = flags.stale

    def _apply_panel_created(self, message: PanelCreatedMessage) -> None:
        if message.id in self.panels:
            self.panels[message.id].title = message.title
            return
        self.panels[message.id] = RemotePanel(
            id=message.id, title=message.title, position=message.position
        )

    def _apply_panel_deleted(self, message: PanelDeletedMessage) -> None:
        self.panels.pop(message.id, None)

    def _apply_panel_renamed(self, message: PanelRenamedMessage) -> None:
        panel = self.panels.get(message.id)
        if panel is not None:
            panel.title = message.new_title

    def _apply_panel_sliders(self, message: PanelSlidersMessage) -> None:
        panel = self.panels.get(message.panel_id)
        if panel is not None:
            panel.sliders = {s.slider_id: s for s in message.sliders}

    def _apply_panel_slider_value(self, message: PanelSliderValueMessage) -> None:
        panel = self.panels.get(message.panel_id)
        if panel is not None and message.slider_id in panel.sliders:
            panel.sliders[message.slider_id].value = message.value

    def _apply_master_sliders(self, message: MasterSlidersMessage) -> None:
        self.master_sliders = {s.slider_id: s for s in message.sliders}

    def _apply_master_slider_value(self, message: MasterSliderValueMessage) -> None:
        slider = self.master_sliders.get(message.slider_id)
        if slider is not None:
            slider.value = message.value

    def _apply_metronome_step(self, message: MetronomeStepMessage) -> None:
        self.metronome_step = message.step

    def _apply_primary_status(self, message: PrimaryStatusMessage) -> None:
        # Socket is still open. The next primary to register answers with a full_state
        if not message.connected:
            self.status = RemoteStatus.LOADING
            self.baseline_timestamp = None

    # -------------------------------------------------------------------------

    def flags(self) -> dict[str, tuple[bool, bool]]:
        """``{panel_id: (playing, stale)}`` in display order."""
        return {p.id: (p.playing, p.stale) for p in self.panels.values()}

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "panels": [
                {
                    "id": p.id,
                    "title": p.title,
                    "playing": p.playing,
                    "stale": p.stale,
                    "sliders": {sid: s.value for sid, s in p.sliders.items()},
                }
                for p in self.panels.values()
            ],
            "master_sliders": {sid: s.value for sid, s in self.master_sliders.items()},
        }
