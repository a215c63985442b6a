"""Message relay between the primary and the remotes.

The relay only looks at a message's ``type``. Broadcast types fan out to
every remote, commands go to every primary, and the two lifecycle types are
handled here. Nothing about panels is stored.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from panelsync.errors import MessageValidationError, RoleConflictError
from panelsync.protocol.messages import (
    MessageCategory,
    MessageType,
    PrimaryStatusMessage,
    RequestFullStateMessage,
    ServerHelloMessage,
    WireMessage,
    classify,
    decode_frame,
)

from .registry import Connection, ConnectionRegistry, Role, role_for_client_type

logger = logging.getLogger(__name__)


class Relay:
    """Classifies connections and forwards messages by type category."""

    def __init__(self, registry: ConnectionRegistry | None = None):
        self.registry = registry or ConnectionRegistry()
        self.dropped_commands = 0
        self.unknown_messages = 0
        self.malformed_messages = 0

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Run one connection from accept to close."""
        connection = await self.registry.connect(websocket)
        await connection.send(ServerHelloMessage(client_id=connection.id))

        try:
            while True:
                data = await websocket.receive_text()
                await self.handle_frame(connection, data)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"WebSocket error for {connection.id}: {e}")
        finally:
            await self.disconnect(connection.id)

    async def handle_frame(self, connection: Connection, raw_data: str) -> None:
        """Decode one inbound frame and route it. Malformed frames are dropped."""
        try:
            message = decode_frame(raw_data)
        except MessageValidationError as e:
            self.malformed_messages += 1
            logger.warning(
                f"Dropping malformed message from {connection.id}: {e.message}",
                extra={"connection_id": connection.id},
            )
            return
        await self.route(message, connection)

    async def route(self, message: dict[str, Any], sender: Connection) -> None:
        """Forward ``message`` according to its type category."""
        msg_type = message.get("type")
        category = classify(msg_type)

        if category is MessageCategory.LIFECYCLE:
            await self._handle_lifecycle(message, sender)
        elif category is MessageCategory.BROADCAST:
            await self.broadcast(message)
        elif category is MessageCategory.COMMAND:
            await self.forward_command(message)
        else:
            self.unknown_messages += 1
            logger.info(
                f"Unknown message type {msg_type!r} from {sender.id}, forwarding to primary",
                extra={"connection_id": sender.id, "message_type": msg_type},
            )
            await self.forward_command(message)

    async def _handle_lifecycle(self, message: dict[str, Any], sender: Connection) -> None:
        msg_type = message.get("type")
        if msg_type == MessageType.CLIENT_REGISTER.value:
            await self.register(sender, message.get("clientType"))
        elif msg_type == MessageType.CLIENT_SYNC_PANELS.value:
            panels = message.get("panels")
            count = len(panels) if isinstance(panels, list) else 0
            logger.info(f"Primary {sender.id} synced {count} panels")

    async def register(self, connection: Connection, client_type: Any) -> None:
        """Classify ``connection`` from its ``clientType``.

        Every remote registration, first or repeated, asks the primary for a
        full state addressed to that remote. A primary registration asks the
        primary itself for one, so remotes that stayed connected while it was
        gone get a fresh baseline.
        """
        role = role_for_client_type(client_type)
        if role is None:
            logger.warning(
                f"Ignoring registration of {connection.id} with clientType {client_type!r}",
                extra={"connection_id": connection.id},
            )
            return

        try:
            await self.registry.register(connection.id, role)
        except RoleConflictError as e:
            logger.warning(e.message, extra={"connection_id": connection.id, "role": e.current})
            return

        if role is Role.PRIMARY:
            await connection.send(RequestFullStateMessage())
        elif await self.request_full_state(connection.id) == 0:
            await connection.send(PrimaryStatusMessage(connected=False))

    async def disconnect(self, connection_id: str) -> Connection | None:
        """Drop a connection. Remotes are told when the last primary leaves."""
        connection = await self.registry.disconnect(connection_id)
        if connection is not None and connection.role is Role.PRIMARY:
            if not await self.registry.with_role(Role.PRIMARY):
                logger.info(
                    "Primary left, notifying remotes",
                    extra={"connection_id": connection_id, "role": Role.PRIMARY.value},
                )
                await self.broadcast(PrimaryStatusMessage(connected=False))
        return connection

    async def request_full_state(self, target_client_id: str) -> int:
        """Ask the primary for a snapshot on behalf of a remote."""
        return await self.forward_command(
            RequestFullStateMessage(target_client_id=target_client_id)
        )

    async def broadcast(self, message: WireMessage | dict[str, Any]) -> int:
        """Send to every remote.

        Returns:
            Number of remotes the message was sent to.
        """
        return await self._send_to_role(Role.REMOTE, message)

    async def forward_command(self, message: WireMessage | dict[str, Any]) -> int:
        """Send to every primary. With no primary the message is dropped and counted.

        Returns:
            Number of primaries the message was sent to.
        """
        primaries = await self.registry.with_role(Role.PRIMARY)
        if not primaries:
            self.dropped_commands += 1
            msg_type = (
                message.type if isinstance(message, WireMessage) else message.get("type")
            )
            logger.warning(
                f"No primary connected, dropping {msg_type!r}", extra={"message_type": msg_type}
            )
            return 0
        return await self._deliver(primaries, message)

    async def _send_to_role(self, role: Role, message: WireMessage | dict[str, Any]) -> int:
        targets = await self.registry.with_role(role)
        return await self._deliver(targets, message)

    async def _deliver(
        self, targets: list[Connection], message: WireMessage | dict[str, Any]
    ) -> int:
        sent_count = 0
        failed_connections = []

        for connection in targets:
            if await connection.send(message):
                sent_count += 1
            elif connection.is_open:
                failed_connections.append(connection.id)

        # Clean up connections whose send raised
        for connection_id in failed_connections:
            await self.disconnect(connection_id)

        return sent_count

    def get_stats(self) -> dict:
        """Registry stats plus relay counters."""
        stats = self.registry.get_stats()
        stats.update(
            {
                "dropped_commands": self.dropped_commands,
                "unknown_messages": self.unknown_messages,
                "malformed_messages": self.malformed_messages,
            }
        )
        return stats
