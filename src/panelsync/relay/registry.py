"""Connection registry: open sockets and their role."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from panelsync.errors import RoleConflictError
from panelsync.protocol.messages import WireMessage

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Classification of a relay connection."""

    UNCLASSIFIED = "unclassified"
    PRIMARY = "primary"
    REMOTE = "remote"


# clientType values accepted in client.register
CLIENT_TYPE_ROLES = {
    "main": Role.PRIMARY,
    "remote": Role.REMOTE,
}


def role_for_client_type(client_type: Any) -> Role | None:
    """Map a ``clientType`` wire value to a role, or None if unrecognized."""
    if not isinstance(client_type, str):
        return None
    return CLIENT_TYPE_ROLES.get(client_type)


@dataclass
class Connection:
    """Represents an open relay connection."""

    id: str
    websocket: WebSocket
    role: Role = Role.UNCLASSIFIED
    connected_at: float = field(default_factory=time.time)

    @property
    def is_open(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED

    async def send(self, message: WireMessage | dict[str, Any]) -> bool:
        """Send a message to this connection.

        Returns:
            True if sent, False if the socket was not open or the send failed.
        """
        if not self.is_open:
            logger.debug(f"Skipping send to {self.id}: socket not open")
            return False
        payload = message.to_wire() if isinstance(message, WireMessage) else message
        try:
            await self.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to {self.id}: {e}")
            return False


class ConnectionRegistry:
    """Tracks relay connections. All mutation goes through one lock."""

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept a WebSocket and add it as an unclassified connection."""
        await websocket.accept()
        connection = Connection(id=str(uuid.uuid4())[:8], websocket=websocket)

        async with self._lock:
            self._connections[connection.id] = connection

        logger.info(f"Client connected: {connection.id}", extra={"connection_id": connection.id})
        return connection

    async def disconnect(self, connection_id: str) -> Connection | None:
        """Remove a connection. Unknown ids are ignored."""
        async with self._lock:
            connection = self._connections.pop(connection_id, None)

        if connection:
            logger.info(
                f"Client disconnected: {connection_id} ({connection.role.value})",
                extra={"connection_id": connection_id, "role": connection.role.value},
            )
        return connection

    async def register(self, connection_id: str, role: Role) -> bool:
        """Set a connection's role.

        Returns:
            True if the role was newly assigned, False if it was already set
            to the same role or the connection is gone.

        Raises:
            RoleConflictError: if the connection already holds a different role.
        """
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            if connection.role == role:
                return False
            if connection.role != Role.UNCLASSIFIED:
                raise RoleConflictError(connection_id, connection.role.value, role.value)
            connection.role = role

        logger.info(
            f"Client {connection_id} registered as {role.value}",
            extra={"connection_id": connection_id, "role": role.value},
        )
        return True

    async def get(self, connection_id: str) -> Connection | None:
        async with self._lock:
            return self._connections.get(connection_id)

    async def with_role(self, role: Role) -> list[Connection]:
        """Snapshot of the connections currently holding ``role``."""
        async with self._lock:
            return [c for c in self._connections.values() if c.role == role]

    def get_stats(self) -> dict:
        """Get registry statistics."""
        by_role = {role.value: 0 for role in Role}
        for conn in self._connections.values():
            by_role[conn.role.value] += 1
        return {
            "active_connections": len(self._connections),
            "roles": by_role,
            "connections": [
                {
                    "id": conn.id,
                    "role": conn.role.value,
                    "connected_at": conn.connected_at,
                }
                for conn in self._connections.values()
            ],
        }
