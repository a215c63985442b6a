"""Relay server: connection registry, message routing and HTTP surface."""

from .app import create_app
from .registry import Connection, ConnectionRegistry, Role, role_for_client_type
from .router import Relay

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Relay",
    "Role",
    "create_app",
    "role_for_client_type",
]
