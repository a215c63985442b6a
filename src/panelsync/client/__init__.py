"""Relay clients for the primary and for remote surfaces."""

from .connection import RelayConnection
from .primary import PrimaryClient
from .remote import RemoteClient

__all__ = ["PrimaryClient", "RelayConnection", "RemoteClient"]
