"""
Transport boundary for the push stream.

The session only relies on the two small protocols below, so the stream can
be backed by WebSocket, SSE or long-polling. A WebSocket implementation on
top of the `websockets` library is provided.

Well-known handle events:
- "message": an inbound push, called with {"channel", "type", "body"}
- "close": the connection ended without the client asking, called with a reason
- "auth_error": the server revoked the session's credentials
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
from abc import abstractmethod
from typing import Any, Callable, Optional, Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus

from .audit_logger import AuditLogger
from .enums import ErrorKind, LogLevel
from .exceptions import AuthRejectedError, SyncError, TransportUnavailableError

EVENT_MESSAGE = "message"
EVENT_CLOSE = "close"
EVENT_AUTH_ERROR = "auth_error"

AUTH_STATUS_CODES = frozenset({401, 403})
_AUTH_KEYWORDS = ("unauthorized", "forbidden", "authentication", "invalid token", "auth_error")


@runtime_checkable
class TransportHandle(Protocol):
    """One live connection returned by Transport.connect()."""

    session_id: Optional[str]

    @abstractmethod
    async def send(self, event: str, body: Any) -> Any:
        """Send an event and return the server's acknowledgement."""
        ...

    @abstractmethod
    def on(self, event: str, callback: Callable[..., None]) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


@runtime_checkable
class Transport(Protocol):
    """Factory for transport handles."""

    @abstractmethod
    async def connect(self, endpoint: str, auth_token: str, query: dict[str, str]) -> TransportHandle:
        ...


def _status_code_of(exc: BaseException) -> Optional[int]:
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(exc, "code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ):
        if isinstance(candidate, int):
            return candidate
    return None


def classify_transport_error(exc: BaseException) -> ErrorKind:
    """
    Decide whether a connect/send failure is an auth problem or a network one.

    Status codes attached to the exception win over message keywords.
    """
    if isinstance(exc, AuthRejectedError):
        return ErrorKind.AUTH
    if isinstance(exc, (TransportUnavailableError, asyncio.TimeoutError, OSError)):
        return ErrorKind.NETWORK

    status_code = _status_code_of(exc)
    if status_code in AUTH_STATUS_CODES:
        return ErrorKind.AUTH

    message = str(exc).lower()
    if any(token in message for token in _AUTH_KEYWORDS):
        return ErrorKind.AUTH
    if any(token in message for token in ("timeout", "timed out", "refused", "unreachable", "reset", "network")):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def build_url(endpoint: str, query: dict[str, str]) -> str:
    """Append query parameters to an endpoint URL, keeping any existing ones."""
    parts = urlsplit(endpoint)
    extra = urlencode(query)
    combined = "&".join(p for p in (parts.query, extra) if p)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, combined, parts.fragment))


class WebSocketHandle:
    """
    A connected WebSocket with ack correlation.

    Outbound frames are {"event", "body", "ack"}; the server answers with
    {"event": "ack", "ack", "body"}. Pushes arrive either as
    {"channel", "type", "body"} or as named frames {"event", "body"}.
    """

    def __init__(self, ws: Any, logger: Optional[AuditLogger] = None) -> None:
        self._ws = ws
        self._logger = logger
        self._listeners: dict[str, list[Callable[..., None]]] = {}
        self._pending_acks: dict[int, asyncio.Future[Any]] = {}
        self._ack_ids = itertools.count(1)
        self._closing = False
        self.session_id: Optional[str] = str(getattr(ws, "id", "") or "") or None
        self._reader = asyncio.create_task(self._read_loop(), name="eventsync-ws-reader")

    def on(self, event: str, callback: Callable[..., None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    async def send(self, event: str, body: Any) -> Any:
        if self._closing:
            raise TransportUnavailableError(code="closed", message="WebSocket handle is closed")
        ack_id = next(self._ack_ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_acks[ack_id] = future
        try:
            await self._ws.send(json.dumps({"event": event, "body": body, "ack": ack_id}, default=str))
            return await future
        except ConnectionClosed as e:
            raise TransportUnavailableError(
                code="connection_closed",
                message=f"WebSocket closed while sending {event!r}",
                details={"close_code": getattr(e, "code", None)},
            ) from e
        finally:
            self._pending_acks.pop(ack_id, None)

    async def close(self) -> None:
        self._closing = True
        self._reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader
        await self._ws.close()
        self._fail_pending("WebSocket handle closed")

    def _fire(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(*args)
            except Exception as e:
                if self._logger is not None:
                    self._logger.log_error(
                        component="WebSocketTransport",
                        message=f"Listener for {event!r} raised",
                        error=e,
                    )

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(TransportUnavailableError(code="connection_closed", message=reason))
        self._pending_acks.clear()

    def _handle_frame(self, raw: Any) -> None:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            frame = json.loads(raw)
        except ValueError:
            # UnicodeDecodeError is a ValueError too
            if self._logger is not None:
                self._logger.log(LogLevel.WARN, "WebSocketTransport", "Dropping non-JSON frame")
            return
        if not isinstance(frame, dict):
            return

        event = frame.get("event")
        if event == "ack":
            ack_id = frame.get("ack")
            if not isinstance(ack_id, int):
                return
            future = self._pending_acks.get(ack_id)
            if future is not None and not future.done():
                future.set_result(frame.get("body"))
        elif isinstance(frame.get("type"), str) and event is None:
            self._fire(EVENT_MESSAGE, {
                "channel": frame.get("channel", ""),
                "type": frame["type"],
                "body": frame.get("body"),
            })
        elif event == EVENT_AUTH_ERROR:
            self._fire(EVENT_AUTH_ERROR, frame.get("body"))
        elif isinstance(event, str):
            # Named push without a channel, e.g. {"event": "vote_update", "body": {...}}
            self._fire(EVENT_MESSAGE, {
                "channel": frame.get("channel", ""),
                "type": event,
                "body": frame.get("body"),
            })

    async def _read_loop(self) -> None:
        reason = "transport closed"
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            reason = getattr(e, "reason", "") or f"close code {getattr(e, 'code', None)}"
        finally:
            self._fail_pending(reason)
            if not self._closing:
                self._fire(EVENT_CLOSE, reason)


class WebSocketTransport:
    """Transport that opens one WebSocket per connect() call."""

    def __init__(self, logger: Optional[AuditLogger] = None, open_timeout: Optional[float] = None) -> None:
        self._logger = logger
        self._open_timeout = open_timeout

    async def connect(self, endpoint: str, auth_token: str, query: dict[str, str]) -> WebSocketHandle:
        """
        Open the socket, passing the token as query parameter and bearer header.

        Raises:
            AuthRejectedError: If the handshake is answered with 401/403
            TransportUnavailableError: For any other connection failure
        """
        url = build_url(endpoint, {**query, "token": auth_token})
        if self._logger is not None:
            self._logger.log(LogLevel.INFO, "WebSocketTransport", f"Connecting to {endpoint}")
        try:
            ws = await websockets.connect(
                url,
                additional_headers={"Authorization": f"Bearer {auth_token}"},
                open_timeout=self._open_timeout,
            )
        except InvalidStatus as e:
            status_code = _status_code_of(e)
            if status_code in AUTH_STATUS_CODES:
                raise AuthRejectedError(
                    code="auth_rejected",
                    message=f"Server rejected credentials (HTTP {status_code})",
                    details={"status_code": status_code},
                ) from e
            raise TransportUnavailableError(
                code="handshake_failed",
                message=f"WebSocket handshake failed (HTTP {status_code})",
                details={"status_code": status_code},
            ) from e
        except SyncError:
            raise
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportUnavailableError(
                code="connect_failed",
                message=f"Could not connect to {endpoint}: {e}",
            ) from e
        return WebSocketHandle(ws, logger=self._logger)
