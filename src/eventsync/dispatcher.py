"""
Event Dispatcher for the eventsync system.

Fans inbound server events and local status notifications out to the
handlers registered for their event class.

Delivery rules:
- Events are delivered synchronously, in the order emit()/publish() is called,
  so per-channel arrival order is preserved. Nothing is batched or reordered.
- Handlers of one event class run in registration order.
- A handler raising does not stop delivery to the remaining handlers; the
  error is logged and passed to the optional error hook.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from .audit_logger import AuditLogger
from .events import ServerEvent, parse_event

E = TypeVar("E", bound=ServerEvent)

Handler = Callable[[Any], None]


@dataclass
class HandlerError:
    """A handler failure reported instead of being propagated."""

    event: ServerEvent
    handler: Handler
    error: Exception


class EventDispatcher:
    """
    Typed publish/subscribe hub.

    Handlers registered for ServerEvent itself receive every event.
    """

    def __init__(
        self,
        logger: Optional[AuditLogger] = None,
        on_handler_error: Optional[Callable[[HandlerError], None]] = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            logger: Optional audit logger for handler failures
            on_handler_error: Optional hook receiving every handler failure
        """
        self._handlers: dict[type[ServerEvent], list[Handler]] = {}
        self._logger = logger
        self._on_handler_error = on_handler_error

    def on(self, event_cls: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """
        Register a handler for an event class.

        Args:
            event_cls: ServerEvent subclass to listen for
            handler: Callable receiving the event instance

        Returns:
            A function that removes this registration
        """
        if not (isinstance(event_cls, type) and issubclass(event_cls, ServerEvent)):
            raise TypeError(f"Expected a ServerEvent subclass, got {event_cls!r}")

        self._handlers.setdefault(event_cls, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_cls, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handler_count(self, event_cls: Optional[type[ServerEvent]] = None) -> int:
        if event_cls is not None:
            return len(self._handlers.get(event_cls, []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def emit(self, channel: str, event_type: str, body: Any) -> ServerEvent:
        """
        Deliver an inbound push. Called by the transport layer.

        Returns:
            The typed event that was dispatched
        """
        event = parse_event(channel, event_type, body)
        self.publish(event)
        return event

    def publish(self, event: ServerEvent) -> int:
        """
        Deliver an already typed event.

        Returns:
            Number of handlers that completed without raising
        """
        # Snapshot so handlers may (un)register while being called
        handlers = list(self._handlers.get(type(event), []))
        if type(event) is not ServerEvent:
            handlers.extend(self._handlers.get(ServerEvent, []))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self._report(HandlerError(event=event, handler=handler, error=e))
        return delivered

    def clear(self) -> None:
        self._handlers.clear()

    def _report(self, failure: HandlerError) -> None:
        if self._logger is not None:
            self._logger.log_error(
                component="EventDispatcher",
                message=f"Error in event handler for {type(failure.event).__name__}",
                error=failure.error,
                additional_data={
                    "channel": failure.event.channel,
                    "event_type": failure.event.type,
                    "handler": getattr(failure.handler, "__qualname__", repr(failure.handler)),
                },
            )
        if self._on_handler_error is not None:
            try:
                self._on_handler_error(failure)
            except Exception:
                if self._logger is not None:
                    self._logger.log_error(
                        component="EventDispatcher",
                        message="Error hook raised while reporting a handler failure",
                    )
