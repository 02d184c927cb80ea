"""
Exception classes for the eventsync system.

All exceptions inherit from SyncError and carry a machine-readable code,
a human-readable message and optional details. Apart from SessionStateError,
none of them is raised across the session boundary: they are reported through
status notifications or per-action results instead.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all eventsync errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class AuthMissingError(SyncError):
    """Raised when no auth token is available for a connection attempt."""

    def __init__(self, message: str = "No authentication token available") -> None:
        super().__init__(code="auth_missing", message=message)


class AuthRejectedError(SyncError):
    """Raised when the server rejects the supplied credentials (401/403)."""

    pass


class TransportUnavailableError(SyncError):
    """Raised when the transport cannot be reached (DNS, refused, timeout)."""

    pass


class HeartbeatTimeoutError(TransportUnavailableError):
    """Raised when consecutive heartbeats go unacknowledged."""

    pass


class ActionNetworkError(SyncError):
    """Raised when an action could not reach the server. The action is kept."""

    pass


class ActionRejectedError(SyncError):
    """Raised when the server definitively rejects an action. The action is dropped."""

    pass


class PersistenceError(SyncError):
    """Raised when the backing key/value storage cannot be written."""

    pass


class QueueCorruptError(PersistenceError):
    """Raised when the stored offline queue cannot be parsed."""

    pass


class SessionStateError(SyncError):
    """Raised on an illegal session state transition."""

    pass
