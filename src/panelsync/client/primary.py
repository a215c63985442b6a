"""Primary client: connects the state authority to the relay."""

from __future__ import annotations

import logging

from panelsync.authority.resync import ResyncCoordinator
from panelsync.authority.state import SliderScope, StateAuthority
from panelsync.errors import PanelSyncError
from panelsync.protocol.messages import (
    MasterSliderChangeMessage,
    Message,
    MessageType,
    PanelCreateMessage,
    PanelDeleteMessage,
    PanelPauseMessage,
    PanelPlayMessage,
    PanelSliderChangeMessage,
    PanelToggleMessage,
    PanelUpdateCodeMessage,
    PanelUpdateMessage,
    PlaybackChangedMessage,
    RequestFullStateMessage,
    WireMessage,
)

from .connection import RelayConnection

logger = logging.getLogger(__name__)


class PrimaryClient:
    """Registers as ``main`` and applies inbound commands to the authority."""

    def __init__(self, authority: StateAuthority, connection: RelayConnection):
        self.authority = authority
        self.connection = connection
        self.resync = ResyncCoordinator(authority)
        self.commands_applied = 0
        self.commands_rejected = 0

        authority.outbox = self._send
        connection.add_open_callback(self._on_open)
        connection.add_message_handler(self.handle_message)

        self._handlers = {
            MessageType.SERVER_REQUEST_FULL_STATE.value: self._handle_full_state_request,
            MessageType.PANEL_PLAY.value: self._handle_play,
            MessageType.PANEL_PAUSE.value: self._handle_pause,
            MessageType.PANEL_TOGGLE.value: self._handle_toggle,
            MessageType.PANEL_UPDATE.value: self._handle_update,
            MessageType.PANEL_UPDATE_CODE.value: self._handle_update_code,
            MessageType.PANEL_CREATE.value: self._handle_create,
            MessageType.PANEL_DELETE.value: self._handle_delete,
            MessageType.GLOBAL_STOP_ALL.value: self._handle_stop_all,
            MessageType.GLOBAL_UPDATE_ALL.value: self._handle_update_all,
            MessageType.MASTER_SLIDER_CHANGE.value: self._handle_master_slider,
            MessageType.PANEL_SLIDER_CHANGE.value: self._handle_panel_slider,
            MessageType.PLAYBACK_CHANGED.value: self._handle_playback_changed,
        }

    async def _send(self, message: WireMessage) -> bool:
        return await self.connection.send(message)

    async def _on_open(self) -> None:
        await self._send(self.authority.sync_payload())

    async def handle_message(self, message: Message) -> None:
        """Apply one inbound command. Rejected commands are logged and dropped."""
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug(f"Primary ignoring {message.type}")
            return
        try:
            await handler(message)
            self.commands_applied += 1
        except PanelSyncError as e:
            self.commands_rejected += 1
            logger.warning(f"Rejected {message.type}: {e.message}")

    async def _handle_full_state_request(self, message: RequestFullStateMessage) -> None:
        await self.resync.handle_full_state_request(message.target_client_id)

    async def _handle_play(self, message: PanelPlayMessage) -> None:
        await self.authority.play_panel(message.panel)

    async def _handle_pause(self, message: PanelPauseMessage) -> None:
        await self.authority.pause_panel(message.panel)

    async def _handle_toggle(self, message: PanelToggleMessage) -> None:
        await self.authority.toggle_panel(message.panel)

    async def _apply_code(self, panel_id: str, code: str, auto_play: bool) -> None:
        await self.authority.set_panel_code(panel_id, code)
        panel = self.authority.get_panel(panel_id)
        if panel.playing:
            await self.authority.update_panel(panel_id)
        elif auto_play:
            await self.authority.play_panel(panel_id)

    async def _handle_update(self, message: PanelUpdateMessage) -> None:
        await self._apply_code(message.panel, message.data.code, auto_play=False)

    async def _handle_update_code(self, message: PanelUpdateCodeMessage) -> None:
        await self._apply_code(message.panel_id, message.code, auto_play=message.auto_play)

    async def _handle_create(self, message: PanelCreateMessage) -> None:
        await self.authority.create_panel(message.data)

    async def _handle_delete(self, message: PanelDeleteMessage) -> None:
        await self.authority.delete_panel(message.panel)

    async def _handle_stop_all(self, message: Message) -> None:
        await self.authority.stop_all()

    async def _handle_update_all(self, message: Message) -> None:
        await self.authority.update_all()

    async def _handle_master_slider(self, message: MasterSliderChangeMessage) -> None:
        await self.authority.update_slider_value(SliderScope.MASTER, message.slider_id, message.value)

    async def _handle_panel_slider(self, message: PanelSliderChangeMessage) -> None:
        await self.authority.update_slider_value(
            SliderScope.PANEL, message.slider_id, message.value, panel_id=message.panel_id
        )

    async def _handle_playback_changed(self, message: PlaybackChangedMessage) -> None:
        panel = self.authority.get_panel(message.panel_id)
        if message.playing and not panel.playing:
            await self.authority.play_panel(message.panel_id)
        elif not message.playing and panel.playing:
            await self.authority.pause_panel(message.panel_id)

    async def run(self) -> None:
        await self.connection.run_forever()

    async def close(self) -> None:
        await self.authority.shutdown()
        await self.connection.close()
