"""
Property-based tests for the transport boundary.

Covers error classification, URL building and the WebSocket handle's ack
correlation and frame routing against an in-memory socket.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest
import websockets
from hypothesis import given, settings
from hypothesis import strategies as st
from websockets.exceptions import InvalidStatus

from eventsync.enums import ErrorKind
from eventsync.exceptions import AuthRejectedError, TransportUnavailableError
from eventsync.transport import (
    EVENT_AUTH_ERROR,
    EVENT_CLOSE,
    EVENT_MESSAGE,
    TransportHandle,
    WebSocketHandle,
    WebSocketTransport,
    build_url,
    classify_transport_error,
)


class FakeWebSocket:
    """In-memory socket: frames pushed by the test come out of async iteration."""

    def __init__(self) -> None:
        self.id = "ws-1"
        self.outgoing: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        self.outgoing.append(json.loads(raw))

    def push(self, frame: Any) -> None:
        """Queue a frame; None ends the stream."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True


class StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


async def until(predicate, rounds: int = 200) -> bool:
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


class TestErrorClassificationProperty:
    """Auth problems are told apart from network ones."""

    @given(status_code=st.sampled_from([401, 403]), text=st.text(max_size=30))
    @settings(max_examples=50)
    def test_auth_status_codes_win(self, status_code: int, text: str) -> None:
        assert classify_transport_error(StatusError(text, status_code)) == ErrorKind.AUTH

    @pytest.mark.parametrize("error", [
        ConnectionRefusedError(111, "ECONNREFUSED"),
        ConnectionResetError("reset by peer"),
        asyncio.TimeoutError(),
        TransportUnavailableError(code="connect_failed", message="dns failure"),
        RuntimeError("network is unreachable"),
        RuntimeError("Connection timed out"),
    ])
    def test_network_failures(self, error: Exception) -> None:
        assert classify_transport_error(error) == ErrorKind.NETWORK

    @pytest.mark.parametrize("error", [
        AuthRejectedError(code="auth_rejected", message="nope"),
        RuntimeError("401 Unauthorized"),
        ValueError("Authentication failed: invalid token"),
    ])
    def test_auth_failures(self, error: Exception) -> None:
        assert classify_transport_error(error) == ErrorKind.AUTH

    def test_everything_else_unknown(self) -> None:
        assert classify_transport_error(ValueError("bad frame")) == ErrorKind.UNKNOWN
        assert classify_transport_error(StatusError("teapot", 418)) == ErrorKind.UNKNOWN


class TestBuildUrl:
    """Query parameters are appended without losing existing ones."""

    @given(query=st.dictionaries(
        st.text(alphabet="abcdefghij", min_size=1, max_size=5),
        st.text(alphabet="abcdefghij0123456789", max_size=8),
        max_size=4,
    ))
    @settings(max_examples=50)
    def test_every_parameter_present(self, query: dict[str, str]) -> None:
        url = build_url("wss://sync.example.test/ws?app=1", query)

        assert url.startswith("wss://sync.example.test/ws?app=1")
        for key, value in query.items():
            assert f"{key}={value}" in url

    def test_plain_endpoint(self) -> None:
        assert build_url("wss://h/ws", {}) == "wss://h/ws"
        assert build_url("wss://h/ws", {"token": "a b"}) == "wss://h/ws?token=a+b"


class TestWebSocketHandle:
    """Ack correlation and frame routing."""

    def test_protocol_conformance(self) -> None:
        async def run_test():
            handle = WebSocketHandle(FakeWebSocket())
            conforms = isinstance(handle, TransportHandle)
            await handle.close()
            return conforms

        assert run_async(run_test()) is True

    def test_send_resolves_with_matching_ack(self) -> None:
        async def run_test():
            ws = FakeWebSocket()
            handle = WebSocketHandle(ws)
            first = asyncio.ensure_future(handle.send("join:poll", {"pollId": "p1"}))
            second = asyncio.ensure_future(handle.send("join:poll", {"pollId": "p2"}))
            await until(lambda: len(ws.outgoing) == 2)

            # Acks may arrive out of order
            ws.push({"event": "ack", "ack": ws.outgoing[1]["ack"], "body": {"room": "p2"}})
            ws.push({"event": "ack", "ack": ws.outgoing[0]["ack"], "body": {"room": "p1"}})
            results = await asyncio.gather(first, second)
            await handle.close()
            return ws, results

        ws, results = run_async(run_test())

        assert results == [{"room": "p1"}, {"room": "p2"}]
        assert [f["event"] for f in ws.outgoing] == ["join:poll", "join:poll"]
        assert ws.outgoing[0]["ack"] != ws.outgoing[1]["ack"]

    def test_frames_routed_to_listeners(self) -> None:
        async def run_test():
            ws = FakeWebSocket()
            handle = WebSocketHandle(ws)
            messages, auth_errors = [], []
            handle.on(EVENT_MESSAGE, messages.append)
            handle.on(EVENT_AUTH_ERROR, auth_errors.append)

            ws.push({"channel": "poll-room:p1", "type": "vote_update", "body": {"votes": 2}})
            ws.push({"event": "user:online", "body": {"userId": "u1"}})
            ws.push("not json")
            ws.push({"event": "auth_error", "body": {"message": "expired"}})
            await until(lambda: len(auth_errors) == 1)
            await handle.close()
            return messages, auth_errors

        messages, auth_errors = run_async(run_test())

        assert messages == [
            {"channel": "poll-room:p1", "type": "vote_update", "body": {"votes": 2}},
            {"channel": "", "type": "user:online", "body": {"userId": "u1"}},
        ]
        assert auth_errors == [{"message": "expired"}]

    @given(garbage=st.one_of(
        st.sampled_from([b"\xff\xfe", b"\xc3(", b"{\x80}"]),
        st.sampled_from([
            {"event": "ack", "ack": [1]},
            {"event": "ack", "ack": {"id": 1}},
            {"event": "ack", "ack": "1"},
            {"type": ["vote_update"], "body": {}},
            ["not", "an", "object"],
        ]),
    ))
    @settings(max_examples=20, deadline=None)
    def test_malformed_frame_keeps_reader_alive(self, garbage: Any) -> None:
        async def run_test():
            ws = FakeWebSocket()
            handle = WebSocketHandle(ws)
            messages, closes = [], []
            handle.on(EVENT_MESSAGE, messages.append)
            handle.on(EVENT_CLOSE, closes.append)
            pending = asyncio.ensure_future(handle.send("join:poll", {"pollId": "p1"}))
            await until(lambda: len(ws.outgoing) == 1)

            ws.push(garbage if isinstance(garbage, bytes) else json.dumps(garbage))
            ws.push({"channel": "poll-room:p1", "type": "vote_update", "body": {"votes": 1}})
            ws.push({"event": "ack", "ack": ws.outgoing[0]["ack"], "body": {"ok": True}})
            result = await asyncio.wait_for(pending, timeout=1.0)
            await handle.close()
            return messages, closes, result

        messages, closes, result = run_async(run_test())

        assert messages == [{"channel": "poll-room:p1", "type": "vote_update", "body": {"votes": 1}}]
        assert closes == []
        assert result == {"ok": True}

    def test_server_side_end_fires_close_and_fails_pending(self) -> None:
        async def run_test():
            ws = FakeWebSocket()
            handle = WebSocketHandle(ws)
            closes = []
            handle.on(EVENT_CLOSE, closes.append)
            pending = asyncio.ensure_future(handle.send("ping", {}))
            await until(lambda: len(ws.outgoing) == 1)

            ws.push(None)
            with pytest.raises(TransportUnavailableError):
                await pending
            await until(lambda: bool(closes))
            return closes

        assert run_async(run_test()) == ["transport closed"]

    def test_client_close_does_not_fire_close(self) -> None:
        async def run_test():
            ws = FakeWebSocket()
            handle = WebSocketHandle(ws)
            closes = []
            handle.on(EVENT_CLOSE, closes.append)

            await handle.close()
            with pytest.raises(TransportUnavailableError):
                await handle.send("ping", {})
            return ws, closes

        ws, closes = run_async(run_test())

        assert ws.closed
        assert closes == []


class TestWebSocketTransport:
    """Handshake failures map onto the transport error types."""

    @pytest.mark.parametrize("status_code, expected", [
        (401, AuthRejectedError),
        (403, AuthRejectedError),
        (502, TransportUnavailableError),
    ])
    def test_handshake_status_mapped(self, monkeypatch, status_code, expected) -> None:
        async def fake_connect(url, **kwargs):
            raise InvalidStatus(SimpleNamespace(status_code=status_code))

        monkeypatch.setattr(websockets, "connect", fake_connect)

        with pytest.raises(expected):
            run_async(WebSocketTransport().connect("wss://h/ws", "tok", {}))

    def test_refused_maps_to_unavailable(self, monkeypatch) -> None:
        async def fake_connect(url, **kwargs):
            raise ConnectionRefusedError(111, "ECONNREFUSED")

        monkeypatch.setattr(websockets, "connect", fake_connect)

        with pytest.raises(TransportUnavailableError) as exc_info:
            run_async(WebSocketTransport().connect("wss://h/ws", "tok", {}))
        assert exc_info.value.code == "connect_failed"

    def test_token_sent_as_query_and_header(self, monkeypatch) -> None:
        seen = {}

        async def fake_connect(url, **kwargs):
            seen["url"] = url
            seen.update(kwargs)
            return FakeWebSocket()

        monkeypatch.setattr(websockets, "connect", fake_connect)

        async def run_test():
            handle = await WebSocketTransport(open_timeout=5.0).connect(
                "wss://h/ws", "tok", {"clientType": "python"}
            )
            session_id = handle.session_id
            await handle.close()
            return session_id

        assert run_async(run_test()) == "ws-1"
        assert seen["url"] == "wss://h/ws?clientType=python&token=tok"
        assert seen["additional_headers"] == {"Authorization": "Bearer tok"}
        assert seen["open_timeout"] == 5.0
