"""
Enumeration types for the eventsync system.

These enums provide type-safe constants for session states, status
notifications, failure reasons and action outcomes.
"""

from enum import Enum


class SessionState(Enum):
    """Externally visible state of a sync session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class StatusKind(Enum):
    """Kind of a connection status notification."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class FailureReason(Enum):
    """Why a session left the connected path."""

    AUTH_MISSING = "auth_missing"
    AUTH_REJECTED = "auth_rejected"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    SERVER_CLOSE = "server_close"
    MAX_ATTEMPTS = "max_attempts"
    CLIENT_DISCONNECT = "client_disconnect"


class ErrorKind(Enum):
    """Classification of a transport failure."""

    AUTH = "auth"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ChannelType(Enum):
    """Logical room types a session can subscribe to."""

    EVENT_ROOM = "event-room"
    POLL_ROOM = "poll-room"


class ActionOutcome(Enum):
    """How a pending action was settled."""

    SENT = "sent"
    QUEUED = "queued"
    REJECTED = "rejected"
    RETAINED = "retained"
    EXPIRED = "expired"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
