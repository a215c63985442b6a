"""Remote client: a thin observer and controller of the primary's panels."""

from __future__ import annotations

import logging

from panelsync.authority.resync import RemoteStatus, RemoteView
from panelsync.protocol.messages import (
    MasterSliderChangeMessage,
    Message,
    PanelCreateData,
    PanelCreateMessage,
    PanelDeleteMessage,
    PanelPauseMessage,
    PanelPlayMessage,
    PanelSliderChangeMessage,
    PanelToggleMessage,
    PanelUpdateCodeMessage,
    StopAllMessage,
    UpdateAllMessage,
)

from .connection import RelayConnection

logger = logging.getLogger(__name__)


class RemoteClient:
    """Keeps a ``RemoteView`` in step with the relay and sends commands."""

    def __init__(self, connection: RelayConnection, view: RemoteView | None = None):
        self.connection = connection
        self.view = view or RemoteView()

        connection.add_open_callback(self._on_open)
        connection.add_close_callback(self._on_close)
        connection.add_message_handler(self._on_message)

    @property
    def status(self) -> RemoteStatus:
        return self.view.status

    async def _on_open(self) -> None:
        self.view.connection_opened()

    async def _on_close(self) -> None:
        self.view.connection_closed()

    async def _on_message(self, message: Message) -> None:
        self.view.apply(message)

    # Commands. Each returns False when the socket is not open.

    async def play(self, panel_id: str) -> bool:
        return await self.connection.send(PanelPlayMessage(panel=panel_id))

    async def pause(self, panel_id: str) -> bool:
        return await self.connection.send(PanelPauseMessage(panel=panel_id))

    async def toggle(self, panel_id: str) -> bool:
        return await self.connection.send(PanelToggleMessage(panel=panel_id))

    async def stop_all(self) -> bool:
        return await self.connection.send(StopAllMessage())

    async def update_all(self) -> bool:
        return await self.connection.send(UpdateAllMessage())

    async def update_code(self, panel_id: str, code: str, auto_play: bool = False) -> bool:
        return await self.connection.send(
            PanelUpdateCodeMessage(panel_id=panel_id, code=code, auto_play=auto_play)
        )

    async def create_panel(self, title: str | None = None, code: str = "") -> bool:
        return await self.connection.send(
            PanelCreateMessage(data=PanelCreateData(title=title, code=code))
        )

    async def delete_panel(self, panel_id: str) -> bool:
        return await self.connection.send(PanelDeleteMessage(panel=panel_id))

    async def set_master_slider(self, slider_id: str, value: float) -> bool:
        return await self.connection.send(
            MasterSliderChangeMessage(slider_id=slider_id, value=value)
        )

    async def set_panel_slider(self, panel_id: str, slider_id: str, value: float) -> bool:
        return await self.connection.send(
            PanelSliderChangeMessage(panel_id=panel_id, slider_id=slider_id, value=value)
        )

    async def run(self) -> None:
        await self.connection.run_forever()

    async def close(self) -> None:
        await self.connection.close()
