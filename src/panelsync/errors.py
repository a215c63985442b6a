"""panelsync Error Hierarchy.

Structured exception types for the relay and the state authority.
"""

from __future__ import annotations


class PanelSyncError(Exception):
    """Base error for all panelsync exceptions."""

    code = "PANELSYNC_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Panel Errors
class PanelNotFoundError(PanelSyncError):
    """A command named a panel the authority does not hold."""

    code = "PANEL_NOT_FOUND"

    def __init__(self, panel_id: str):
        super().__init__(f"Panel not found: {panel_id}", {"panel_id": panel_id})
        self.panel_id = panel_id


class MasterUnitError(PanelSyncError):
    """Operation not permitted on the master unit."""

    code = "MASTER_UNIT"


class InvalidTitleError(PanelSyncError):
    """Panel title was empty after sanitizing."""

    code = "INVALID_TITLE"


# Evaluation Errors
class EvaluationError(PanelSyncError):
    """The pattern evaluator rejected or failed on a panel's code."""

    code = "EVALUATION_FAILED"

    def __init__(self, message: str, panel_id: str = None, cause: Exception = None):
        details = {"panel_id": panel_id}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.panel_id = panel_id
        self.cause = cause


class StalenessInvariantError(PanelSyncError):
    """A panel was observed stale while paused."""

    code = "STALE_WHILE_PAUSED"


# Relay Errors
class RoleConflictError(PanelSyncError):
    """A connection tried to claim a second, different role."""

    code = "ROLE_CONFLICT"

    def __init__(self, connection_id: str, current: str, requested: str):
        super().__init__(
            f"Connection {connection_id} already registered as {current}, refused {requested}",
            {"connection_id": connection_id, "current": current, "requested": requested},
        )
        self.connection_id = connection_id
        self.current = current
        self.requested = requested


class MessageValidationError(PanelSyncError):
    """Inbound message could not be decoded into a known message."""

    code = "INVALID_MESSAGE"


class NotConnectedError(PanelSyncError):
    """Send attempted while the socket is not open."""

    code = "NOT_CONNECTED"
