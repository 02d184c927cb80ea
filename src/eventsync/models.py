"""
Data models for the eventsync system.

This module defines the data structures shared by the session, the
subscription registry and the offline action queue: channel subscriptions,
pending actions, session metadata, status notifications and drain results.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import ActionOutcome, ChannelType, FailureReason, SessionState, StatusKind


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# Wire events used to join and leave rooms, with the body key carrying the id
_ROOM_WIRE = {
    ChannelType.EVENT_ROOM: ("join:event", "leave:event", "eventId"),
    ChannelType.POLL_ROOM: ("join:poll", "leave:poll", "pollId"),
}


@dataclass(frozen=True)
class ChannelSubscription:
    """A logical channel the application wants live updates for."""

    channel_type: ChannelType
    channel_id: str

    @property
    def key(self) -> str:
        """Canonical form, e.g. 'poll-room:p1'."""
        return f"{self.channel_type.value}:{self.channel_id}"

    @classmethod
    def parse(cls, value: "str | ChannelSubscription") -> "ChannelSubscription":
        """
        Parse a channel key such as 'event-room:evt_1'.

        Raises:
            ValueError: If the key has no known channel type or an empty id
        """
        if isinstance(value, ChannelSubscription):
            return value
        prefix, sep, channel_id = str(value).partition(":")
        if not sep or not channel_id.strip():
            raise ValueError(f"Invalid channel key: {value!r}")
        try:
            channel_type = ChannelType(prefix)
        except ValueError as e:
            raise ValueError(f"Unknown channel type in {value!r}") from e
        return cls(channel_type=channel_type, channel_id=channel_id.strip())

    def join_message(self) -> tuple[str, dict]:
        """Wire event and body that join this room."""
        join_event, _, id_key = _ROOM_WIRE[self.channel_type]
        return join_event, {id_key: self.channel_id}

    def leave_message(self) -> tuple[str, dict]:
        """Wire event and body that leave this room."""
        _, leave_event, id_key = _ROOM_WIRE[self.channel_type]
        return leave_event, {id_key: self.channel_id}

    def __str__(self) -> str:
        return self.key


@dataclass
class PendingAction:
    """
    A user-initiated side-effecting request that must reach the server.

    The id is generated once on the client and never changes across retries,
    so the server can deduplicate repeated deliveries.
    """

    id: str
    type: str
    payload: dict
    enqueued_at: Optional[str] = None
    attempt_count: int = 0

    @classmethod
    def create(cls, action_type: str, payload: dict) -> "PendingAction":
        """Create a new action with a fresh client-generated id."""
        return cls(id=str(uuid.uuid4()), type=action_type, payload=dict(payload))

    def to_wire(self) -> dict:
        """Outbound wire form: {id, type, payload}."""
        return {"id": self.id, "type": self.type, "payload": self.payload}

    def to_dict(self) -> dict:
        """Storage form, including retry bookkeeping."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "attempt_count": self.attempt_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingAction":
        """
        Rebuild an action from its storage form.

        Raises:
            KeyError, TypeError, ValueError: If the stored entry is malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")
        action_id = data["id"]
        action_type = data["type"]
        payload = data.get("payload", {})
        if not isinstance(action_id, str) or not action_id:
            raise ValueError("Action id must be a non-empty string")
        if not isinstance(action_type, str) or not action_type:
            raise ValueError("Action type must be a non-empty string")
        if not isinstance(payload, dict):
            raise TypeError("Action payload must be a mapping")
        return cls(
            id=action_id,
            type=action_type,
            payload=payload,
            enqueued_at=data.get("enqueued_at"),
            attempt_count=int(data.get("attempt_count", 0)),
        )


@dataclass
class SessionInfo:
    """Mutable metadata of one logical session, updated in place across reconnects."""

    state: SessionState = SessionState.IDLE
    session_id: Optional[str] = None
    auth_token: Optional[str] = field(default=None, repr=False)
    last_connected_at: Optional[str] = None
    consecutive_failure_count: int = 0
    reconnect_attempt: int = 0
    total_connections: int = 0
    degraded: bool = False
    last_failure: Optional[FailureReason] = None


@dataclass
class ConnectionStatus:
    """Status notification emitted on every session transition."""

    status: StatusKind
    state: SessionState
    reason: Optional[FailureReason] = None
    message: Optional[str] = None
    reconnect_attempt: int = 0
    max_attempts: int = 0
    timestamp: str = field(default_factory=utc_now)

    @property
    def is_connected(self) -> bool:
        return self.status == StatusKind.CONNECTED


@dataclass
class ActionResult:
    """Per-action report delivered to the application."""

    action_id: str
    action_type: str
    outcome: ActionOutcome
    attempts: int = 0
    error_code: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    response: Optional[Any] = None


@dataclass
class DrainResult:
    """Summary of one drain cycle."""

    flushed: int
    remaining: int
    rejected: list[ActionResult] = field(default_factory=list)
    expired: list[ActionResult] = field(default_factory=list)
    halted: bool = False
