"""
Session State Machine for the eventsync system.

Owns the logical connection to the push stream:

    idle -> connecting -> connected -> reconnecting -> failed

Every transition is published as a ConnectionStatusChanged event, which is
the only way the rest of the application observes connectivity. Errors are
never raised across this boundary; they end in a transition or a report.

A generation counter identifies the current logical session. connect(),
disconnect() and force_reconnect() bump it synchronously, and any coroutine
that captured an older generation discards its result when it resumes.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional

from .audit_logger import AuditLogger
from .auth import AuthProvider
from .config import HeartbeatConfig, TransportConfig
from .dispatcher import EventDispatcher
from .enums import ChannelType, ErrorKind, FailureReason, LogLevel, SessionState, StatusKind
from .events import ConnectionStatusChanged
from .exceptions import ActionNetworkError, AuthMissingError, HeartbeatTimeoutError, SessionStateError
from .i18n import get_message
from .models import ChannelSubscription, ConnectionStatus, SessionInfo, utc_now
from .reconnect import ReconnectionScheduler
from .subscriptions import SubscriptionRegistry
from .transport import (
    EVENT_AUTH_ERROR,
    EVENT_CLOSE,
    EVENT_MESSAGE,
    Transport,
    TransportHandle,
    classify_transport_error,
)

if TYPE_CHECKING:
    from .offline_queue import OfflineActionQueue


ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset({
        SessionState.CONNECTED,
        SessionState.RECONNECTING,
        SessionState.FAILED,
        SessionState.IDLE,
    }),
    SessionState.CONNECTED: frozenset({
        SessionState.RECONNECTING,
        SessionState.IDLE,
        SessionState.FAILED,
    }),
    SessionState.RECONNECTING: frozenset({
        SessionState.CONNECTING,
        SessionState.FAILED,
        SessionState.IDLE,
    }),
    SessionState.FAILED: frozenset({SessionState.IDLE, SessionState.CONNECTING}),
}

_STATUS_FOR_STATE = {
    SessionState.IDLE: StatusKind.DISCONNECTED,
    SessionState.CONNECTING: StatusKind.CONNECTING,
    SessionState.CONNECTED: StatusKind.CONNECTED,
    SessionState.RECONNECTING: StatusKind.DISCONNECTED,
    SessionState.FAILED: StatusKind.ERROR,
}

_ACTIVE_STATES = frozenset({
    SessionState.CONNECTING,
    SessionState.CONNECTED,
    SessionState.RECONNECTING,
})

# Events used by the session itself on top of the room joins
HEARTBEAT_EVENT = "ping"
FLUSH_EVENT = "reconnect:flush"


class SyncSession:
    """
    One logical, self-healing connection to the push stream.

    The session is constructed explicitly by the application's composition
    root; several independent sessions can coexist.
    """

    def __init__(
        self,
        transport_config: TransportConfig,
        transport: Transport,
        auth: AuthProvider,
        scheduler: ReconnectionScheduler,
        registry: Optional[SubscriptionRegistry] = None,
        dispatcher: Optional[EventDispatcher] = None,
        heartbeat_config: Optional[HeartbeatConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[AuditLogger] = None,
        language: str = "en",
    ) -> None:
        """
        Initialize the session in the idle state.

        Args:
            transport_config: Endpoint, query parameters and timeouts
            transport: Factory for transport handles
            auth: Auth collaborator supplying the token
            scheduler: Reconnection scheduler driving retries
            registry: Channels to (re)join after every connect
            dispatcher: Receives inbound pushes and status notifications
            heartbeat_config: Heartbeat cadence; None disables heartbeats
            sleep: Coroutine used between heartbeats
            logger: Optional audit logger
            language: Language for status messages
        """
        self._transport_config = transport_config
        self._transport = transport
        self._auth = auth
        self._scheduler = scheduler
        self._registry = registry if registry is not None else SubscriptionRegistry(logger=logger)
        self._dispatcher = dispatcher if dispatcher is not None else EventDispatcher(logger=logger)
        self._heartbeat_config = heartbeat_config
        self._sleep = sleep
        self._logger = logger
        self._language = language

        self._info = SessionInfo()
        self._generation = 0
        self._handle: Optional[TransportHandle] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._background: set[asyncio.Task[Any]] = set()
        self._queue: Optional["OfflineActionQueue"] = None

    @property
    def state(self) -> SessionState:
        return self._info.state

    @property
    def info(self) -> SessionInfo:
        return self._info

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def scheduler(self) -> ReconnectionScheduler:
        return self._scheduler

    @property
    def is_connected(self) -> bool:
        return self._info.state == SessionState.CONNECTED

    def bind_queue(self, queue: "OfflineActionQueue") -> None:
        """Attach the offline queue drained after every successful connect."""
        self._queue = queue

    def on_status(self, callback: Callable[[ConnectionStatus], None]) -> Callable[[], None]:
        """Register a status listener. Returns the unsubscribe function."""
        return self._dispatcher.on(
            ConnectionStatusChanged,
            lambda event: callback(event.status),
        )

    def diagnostics(self) -> dict[str, Any]:
        """Snapshot of the session for troubleshooting."""
        return {
            "state": self._info.state.value,
            "degraded": self._info.degraded,
            "session_id": self._info.session_id,
            "reconnect_attempt": self._info.reconnect_attempt,
            "max_attempts": self._scheduler.config.max_attempts,
            "consecutive_failures": self._info.consecutive_failure_count,
            "total_connections": self._info.total_connections,
            "last_connected_at": self._info.last_connected_at,
            "last_failure": self._info.last_failure.value if self._info.last_failure else None,
            "retry_pending": self._scheduler.pending,
            "channels": self._registry.keys(),
            "queued_actions": len(self._queue) if self._queue is not None else 0,
        }

    async def connect(self, channels: Iterable["str | ChannelSubscription"] = ()) -> SessionState:
        """
        Start the session and subscribe to the given channels.

        Without an auth token the session stays idle and reports
        AUTH_MISSING; no network attempt is made. While the session is
        already active only the channels are added.

        Returns:
            The state after the first connection attempt settled
        """
        new_channels = list(channels)
        if self._info.state in _ACTIVE_STATES:
            for channel in new_channels:
                await self.subscribe(channel)
            return self._info.state

        for channel in new_channels:
            self._registry.subscribe(channel)

        token = self._auth.get_token()
        if not token:
            self._report_auth_missing()
            return self._info.state

        if self._info.state == SessionState.FAILED:
            self._scheduler.reset()
            self._info.consecutive_failure_count = 0

        self._generation += 1
        generation = self._generation
        self._info.auth_token = token
        self._transition(SessionState.CONNECTING)
        await self._attempt(generation, token)
        return self._info.state

    async def disconnect(self) -> None:
        """
        Stop the session. This is the only way retries stop intentionally.

        The current generation, the retry timer, the heartbeat and any
        running drain are invalidated before the first suspension point.
        """
        self._generation += 1
        self._scheduler.cancel()
        self._scheduler.reset()
        self._stop_heartbeat()
        if self._queue is not None:
            self._queue.halt()

        handle = self._handle
        self._handle = None
        self._info.session_id = None
        self._info.degraded = False
        self._info.reconnect_attempt = 0

        if self._info.state != SessionState.IDLE:
            self._info.last_failure = FailureReason.CLIENT_DISCONNECT
            self._transition(SessionState.IDLE, reason=FailureReason.CLIENT_DISCONNECT)

        if handle is not None:
            await self._close_handle(handle)

    async def reset(self) -> None:
        """Leave the failed state: disconnect and clear failure bookkeeping."""
        await self.disconnect()
        self._info.consecutive_failure_count = 0
        self._info.last_failure = None

    async def force_reconnect(self) -> SessionState:
        """Drop the current connection, reset backoff and connect immediately."""
        token = self._auth.get_token()
        if not token:
            self._report_auth_missing()
            return self._info.state

        self._generation += 1
        generation = self._generation
        self._scheduler.cancel()
        self._scheduler.reset()
        self._drop_handle()
        self._info.consecutive_failure_count = 0
        self._info.reconnect_attempt = 0
        self._info.auth_token = token

        if self._info.state in (SessionState.CONNECTED, SessionState.CONNECTING):
            self._transition(SessionState.RECONNECTING)
        self._transition(SessionState.CONNECTING)
        await self._attempt(generation, token)
        return self._info.state

    async def retry_now(self) -> bool:
        """
        Skip the outstanding backoff delay.

        Returns:
            True if a retry was started
        """
        if self._info.state != SessionState.RECONNECTING:
            return False
        self._scheduler.cancel()
        await self._retry(self._generation)
        return True

    async def send(self, event: str, body: Any) -> Any:
        """
        Send an event over the live connection and return its ack.

        Raises:
            ActionNetworkError: If the session is not connected, the send
                times out or the session changed while waiting
        """
        handle = self._handle
        if handle is None or self._info.state != SessionState.CONNECTED:
            raise ActionNetworkError(code="NETWORK_ERROR", message="Session is not connected")

        generation = self._generation
        try:
            ack = await asyncio.wait_for(
                handle.send(event, body),
                self._transport_config.send_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ActionNetworkError(
                code="NETWORK_ERROR",
                message=f"No ack for {event!r} within {self._transport_config.send_timeout_seconds}s",
            ) from e
        except ActionNetworkError:
            raise
        except Exception as e:
            raise ActionNetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__) from e

        if generation != self._generation:
            raise ActionNetworkError(
                code="NETWORK_ERROR",
                message="Session changed before the ack arrived",
            )
        return ack

    async def subscribe(self, channel: "str | ChannelSubscription") -> bool:
        """
        Record a channel and join it right away when connected.

        Returns:
            True if the channel was new
        """
        subscription = ChannelSubscription.parse(channel)
        added = self._registry.subscribe(subscription)
        if added and self._handle is not None and self.is_connected:
            event, body = subscription.join_message()
            await self._mirror(event, body)
        return added

    async def unsubscribe(self, channel: "str | ChannelSubscription") -> bool:
        """
        Forget a channel and leave it right away when connected.

        Returns:
            True if the channel was subscribed
        """
        subscription = ChannelSubscription.parse(channel)
        removed = self._registry.unsubscribe(subscription)
        if removed and self._handle is not None and self.is_connected:
            event, body = subscription.leave_message()
            await self._mirror(event, body)
        return removed

    async def _attempt(self, generation: int, token: str) -> None:
        try:
            handle = await asyncio.wait_for(
                self._transport.connect(
                    self._transport_config.endpoint,
                    token,
                    dict(self._transport_config.query),
                ),
                self._transport_config.connect_timeout_seconds,
            )
        except Exception as e:
            if generation != self._generation:
                return
            self._on_connect_failure(e)
            return

        if generation != self._generation:
            # Result of an invalidated attempt
            await self._close_handle(handle)
            return

        await self._on_connected(generation, handle)

    async def _on_connected(self, generation: int, handle: TransportHandle) -> None:
        self._handle = handle
        self._scheduler.cancel()
        self._scheduler.reset()

        self._info.session_id = handle.session_id or uuid.uuid4().hex
        self._info.reconnect_attempt = 0
        self._info.consecutive_failure_count = 0
        self._info.last_connected_at = utc_now()
        self._info.total_connections += 1
        self._info.degraded = False
        self._info.last_failure = None

        handle.on(EVENT_MESSAGE, lambda message: self._on_message(generation, message))
        handle.on(EVENT_CLOSE, lambda reason=None: self._on_server_close(generation, handle, reason))
        handle.on(EVENT_AUTH_ERROR, lambda body=None: self._on_auth_error(generation, handle, body))

        self._transition(SessionState.CONNECTED)

        timeout = self._transport_config.send_timeout_seconds
        await self._registry.reassert_all(handle, timeout=timeout)
        if generation != self._generation:
            return
        await self._flush_backlog(handle, timeout)
        if generation != self._generation:
            return

        self._start_heartbeat(generation, handle)

        if self._queue is not None:
            await self._queue.drain()

    def _on_connect_failure(self, error: Exception) -> None:
        kind = classify_transport_error(error)
        self._info.consecutive_failure_count += 1

        if self._logger is not None:
            self._logger.log_error(
                component="SyncSession",
                message="Connection attempt failed",
                error=error,
                additional_data={
                    "error_kind": kind.value,
                    "consecutive_failures": self._info.consecutive_failure_count,
                },
            )

        if kind == ErrorKind.AUTH:
            self._auth.clear_token()
            self._info.auth_token = None
            self._fail(FailureReason.AUTH_REJECTED, str(error))
            return

        self._schedule_retry(FailureReason.TRANSPORT_UNAVAILABLE, str(error) or type(error).__name__)

    def _schedule_retry(self, reason: FailureReason, detail: Optional[str] = None) -> None:
        generation = self._generation
        delay = self._scheduler.schedule(lambda: self._retry(generation))
        if delay is None:
            self._fail(FailureReason.MAX_ATTEMPTS, detail)
            return

        self._info.reconnect_attempt = self._scheduler.attempt
        self._info.last_failure = reason
        self._transition(
            SessionState.RECONNECTING,
            reason=reason,
            message=get_message(
                "status.reconnecting",
                self._language,
                attempt=self._scheduler.attempt,
                max_attempts=self._scheduler.config.max_attempts,
            ),
        )

    async def _retry(self, generation: int) -> None:
        if generation != self._generation or self._info.state != SessionState.RECONNECTING:
            return

        # The token may have been replaced or revoked while waiting
        token = self._auth.get_token()
        if not token:
            self._fail(FailureReason.AUTH_MISSING)
            return

        self._info.auth_token = token
        self._transition(SessionState.CONNECTING)
        await self._attempt(generation, token)

    def _fail(self, reason: FailureReason, detail: Optional[str] = None) -> None:
        self._scheduler.cancel()
        self._stop_heartbeat()
        self._info.last_failure = reason
        self._info.session_id = None
        self._transition(SessionState.FAILED, reason=reason)
        if self._logger is not None:
            self._logger.log(
                LogLevel.ERROR,
                "SyncSession",
                f"Session failed: {reason.value}",
                {"detail": detail} if detail else None,
            )

    def _report_auth_missing(self) -> None:
        self._info.last_failure = FailureReason.AUTH_MISSING
        if self._logger is not None:
            self._logger.log_error("SyncSession", "No auth token, not connecting", error=AuthMissingError())
        self._publish_status(StatusKind.ERROR, FailureReason.AUTH_MISSING)

    def _on_message(self, generation: int, message: Any) -> None:
        if generation != self._generation or not isinstance(message, dict):
            return
        self._dispatcher.emit(
            message.get("channel", ""),
            str(message.get("type", "")),
            message.get("body"),
        )

    def _on_server_close(self, generation: int, handle: TransportHandle, reason: Any) -> None:
        if generation != self._generation or handle is not self._handle:
            return
        if self._logger is not None:
            self._logger.log(
                LogLevel.WARN,
                "SyncSession",
                "Server closed the connection",
                {"reason": str(reason) if reason else None},
            )
        self._drop_handle(close=False)
        self._schedule_retry(FailureReason.SERVER_CLOSE, str(reason) if reason else None)

    def _on_auth_error(self, generation: int, handle: TransportHandle, body: Any) -> None:
        if generation != self._generation or handle is not self._handle:
            return
        self._generation += 1
        self._drop_handle()
        self._auth.clear_token()
        self._info.auth_token = None
        self._fail(FailureReason.AUTH_REJECTED, str(body) if body else None)

    def _start_heartbeat(self, generation: int, handle: TransportHandle) -> None:
        self._stop_heartbeat()
        if self._heartbeat_config is None or self._heartbeat_config.interval_seconds <= 0:
            return
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(generation, handle),
            name="eventsync-heartbeat",
        )

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self, generation: int, handle: TransportHandle) -> None:
        config = self._heartbeat_config
        assert config is not None
        missed = 0

        while generation == self._generation and handle is self._handle:
            await self._sleep(config.interval_seconds)
            if generation != self._generation or handle is not self._handle:
                return

            try:
                await asyncio.wait_for(handle.send(HEARTBEAT_EVENT, {}), config.timeout_seconds)
            except Exception as e:
                if generation != self._generation or handle is not self._handle:
                    return
                missed += 1
                if missed >= config.max_missed:
                    timeout = HeartbeatTimeoutError(
                        code="heartbeat_timeout",
                        message=f"Heartbeat timed out after {missed} missed beat(s)",
                        details={"last_error": str(e) or type(e).__name__},
                    )
                    if self._logger is not None:
                        self._logger.log_error("SyncSession", timeout.message, error=timeout)
                    self._drop_handle()
                    self._schedule_retry(FailureReason.HEARTBEAT_TIMEOUT, timeout.message)
                    return
                self._info.degraded = True
                if self._logger is not None:
                    self._logger.log(
                        LogLevel.WARN,
                        "SyncSession",
                        "Heartbeat missed, connection degraded",
                        {"missed": missed, "max_missed": config.max_missed},
                    )
                continue

            if missed and self._logger is not None:
                self._logger.log(LogLevel.INFO, "SyncSession", "Heartbeat recovered")
            missed = 0
            self._info.degraded = False

    async def _flush_backlog(self, handle: TransportHandle, timeout: float) -> None:
        """Ask the server to replay missed updates for every event room."""
        for subscription in self._registry.of_type(ChannelType.EVENT_ROOM):
            try:
                await asyncio.wait_for(
                    handle.send(FLUSH_EVENT, {"eventId": subscription.channel_id}),
                    timeout,
                )
            except Exception as e:
                if self._logger is not None:
                    self._logger.log_error(
                        component="SyncSession",
                        message=f"Backlog flush failed for {subscription.key}",
                        error=e,
                    )

    async def _mirror(self, event: str, body: dict) -> None:
        try:
            await self.send(event, body)
        except ActionNetworkError as e:
            # The registry still holds the intent; the next reconnect re-joins
            if self._logger is not None:
                self._logger.log(
                    LogLevel.WARN,
                    "SyncSession",
                    f"Could not send {event}",
                    {"error_code": e.code, "body": body},
                )

    def _drop_handle(self, close: bool = True) -> None:
        self._stop_heartbeat()
        handle = self._handle
        self._handle = None
        self._info.session_id = None
        self._info.degraded = False
        if close and handle is not None:
            task = asyncio.create_task(self._close_handle(handle))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _close_handle(self, handle: TransportHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            if self._logger is not None:
                self._logger.log_error(
                    component="SyncSession",
                    message="Error while closing transport handle",
                    error=e,
                )

    def _transition(
        self,
        new_state: SessionState,
        reason: Optional[FailureReason] = None,
        message: Optional[str] = None,
    ) -> None:
        old_state = self._info.state
        if new_state not in ALLOWED_TRANSITIONS[old_state]:
            raise SessionStateError(
                code="illegal_transition",
                message=f"Illegal session transition {old_state.value} -> {new_state.value}",
                details={"from": old_state.value, "to": new_state.value},
            )

        self._info.state = new_state
        if self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "SyncSession",
                f"{old_state.value} -> {new_state.value}",
                {
                    "reason": reason.value if reason else None,
                    "attempt": self._info.reconnect_attempt,
                    "session_id": self._info.session_id,
                },
            )
        self._publish_status(_STATUS_FOR_STATE[new_state], reason, message)

    def _publish_status(
        self,
        status: StatusKind,
        reason: Optional[FailureReason] = None,
        message: Optional[str] = None,
    ) -> None:
        if message is None:
            key = f"reason.{reason.value}" if reason is not None else f"status.{status.value}"
            message = get_message(key, self._language)
        self._dispatcher.publish(ConnectionStatusChanged(
            status=ConnectionStatus(
                status=status,
                state=self._info.state,
                reason=reason,
                message=message,
                reconnect_attempt=self._info.reconnect_attempt,
                max_attempts=self._scheduler.config.max_attempts,
            ),
        ))
