"""
Typed inbound event catalogue.

Every server push is turned into an instance of one ServerEvent subclass,
selected by its wire type. Handlers subscribe to a class instead of a
free-form event name, so a misspelt subscription fails at import time.
Locally generated notifications (connection status, action settlement)
share the same base so they travel through the same dispatcher.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from .models import ActionResult, ConnectionStatus


@dataclass(frozen=True)
class ServerEvent:
    """Base of all dispatched events."""

    channel: str = ""
    body: Any = field(default_factory=dict)

    WIRE_TYPES: ClassVar[tuple[str, ...]] = ()

    @property
    def type(self) -> str:
        return self.WIRE_TYPES[0] if self.WIRE_TYPES else ""

    def get(self, key: str, default: Any = None) -> Any:
        """Read a field from a mapping body."""
        if isinstance(self.body, dict):
            return self.body.get(key, default)
        return default


@dataclass(frozen=True)
class PollCreated(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("new_poll",)


@dataclass(frozen=True)
class VoteUpdate(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("vote_update",)


@dataclass(frozen=True)
class PollClosed(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("poll_closed",)


@dataclass(frozen=True)
class PollUpdated(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("poll_updated",)


@dataclass(frozen=True)
class EventUpdate(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("event:update",)


@dataclass(frozen=True)
class EventReaction(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("event:reaction",)


@dataclass(frozen=True)
class EventBacklog(ServerEvent):
    """Updates replayed by the server after a reconnect flush."""

    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("event:backlog",)


@dataclass(frozen=True)
class UserOnline(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("user:online",)


@dataclass(frozen=True)
class UserOffline(ServerEvent):
    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("user:offline",)


@dataclass(frozen=True)
class ChannelJoined(ServerEvent):
    """Join confirmation for an event room or a poll room."""

    WIRE_TYPES: ClassVar[tuple[str, ...]] = ("joined:event", "joined:poll")

    wire_type: str = "joined:event"

    @property
    def type(self) -> str:
        return self.wire_type


@dataclass(frozen=True)
class UnknownEvent(ServerEvent):
    """A push whose wire type is not in the catalogue; still delivered in order."""

    wire_type: str = ""

    @property
    def type(self) -> str:
        return self.wire_type


@dataclass(frozen=True)
class ConnectionStatusChanged(ServerEvent):
    """Emitted by the session on every state transition."""

    status: Optional[ConnectionStatus] = None


@dataclass(frozen=True)
class ActionSettled(ServerEvent):
    """Emitted by the offline queue whenever an action is sent, rejected or expired."""

    result: Optional[ActionResult] = None


SERVER_EVENT_TYPES: tuple[type[ServerEvent], ...] = (
    PollCreated,
    VoteUpdate,
    PollClosed,
    PollUpdated,
    EventUpdate,
    EventReaction,
    EventBacklog,
    UserOnline,
    UserOffline,
    ChannelJoined,
)

EVENT_TYPES: dict[str, type[ServerEvent]] = {
    wire_type: event_cls
    for event_cls in SERVER_EVENT_TYPES
    for wire_type in event_cls.WIRE_TYPES
}


def parse_event(channel: str, event_type: str, body: Any) -> ServerEvent:
    """
    Build the typed event for an inbound push.

    Args:
        channel: Channel the push arrived on (may be empty)
        event_type: Wire type, e.g. 'vote_update'
        body: Decoded payload

    Returns:
        The matching ServerEvent subclass, or UnknownEvent
    """
    event_cls = EVENT_TYPES.get(event_type)
    if event_cls is None:
        return UnknownEvent(channel=channel or "", body=body, wire_type=event_type)
    if "wire_type" in event_cls.__dataclass_fields__:
        return event_cls(channel=channel or "", body=body, wire_type=event_type)
    return event_cls(channel=channel or "", body=body)
