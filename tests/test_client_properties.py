"""
Property-based tests for the SyncClient composition root.

Wires a full client against an in-memory transport and storage and checks
the end-to-end offline capture and replay path.
"""

import asyncio
import random
from pathlib import Path
from typing import Any, Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from eventsync.auth import StaticTokenProvider
from eventsync.client import SyncClient
from eventsync.config import ActionEndpointConfig, QueueConfig, ReconnectConfig, SyncConfig, TransportConfig
from eventsync.enums import ActionOutcome, SessionState
from eventsync.events import ActionSettled, PollCreated
from eventsync.exceptions import ActionRejectedError
from eventsync.senders import HttpActionSender, SessionActionSender
from eventsync.storage import MemoryStorage


class ManualSleep:
    """Sleep primitive that only returns when released by the test."""

    def __init__(self) -> None:
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter


class FakeHandle:
    """Handle acking every event and recording what was sent."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.sent: list[tuple[str, Any]] = []
        self.listeners: dict[str, list] = {}

    async def send(self, event: str, body: Any) -> Any:
        self.sent.append((event, body))
        return {"success": True}

    def on(self, event: str, callback) -> None:
        self.listeners.setdefault(event, []).append(callback)

    async def close(self) -> None:
        pass

    def fire(self, event: str, *args: Any) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(*args)


class FakeTransport:
    """Connects after a scripted number of refusals."""

    def __init__(self, refusals: int = 0) -> None:
        self.refusals = refusals
        self.handles: list[FakeHandle] = []

    async def connect(self, endpoint: str, auth_token: str, query: dict) -> FakeHandle:
        if self.refusals:
            self.refusals -= 1
            raise ConnectionRefusedError(111, "ECONNREFUSED")
        handle = FakeHandle(f"sess-{len(self.handles) + 1}")
        self.handles.append(handle)
        return handle


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.run(coro)


def make_config(actions: Optional[ActionEndpointConfig] = None) -> SyncConfig:
    return SyncConfig(
        transport=TransportConfig(endpoint="wss://sync.example.test/ws"),
        queue=QueueConfig(storage_dir=Path("unused")),
        reconnect=ReconnectConfig(max_attempts=5),
        actions=actions,
    )


def make_client(transport: FakeTransport, storage: MemoryStorage, **kwargs) -> SyncClient:
    return SyncClient(
        make_config(kwargs.pop("actions", None)),
        auth=StaticTokenProvider("tok-1"),
        transport=transport,
        storage=storage,
        sleep=ManualSleep(),
        rng=random.Random(0),
        **kwargs,
    )


class TestOfflineCaptureProperty:
    """Scans made while offline are delivered in order once connected."""

    @given(qrs=st.lists(
        st.text(alphabet="ABCDEF0123456789", min_size=1, max_size=10),
        min_size=1,
        max_size=6,
    ))
    @settings(max_examples=25, deadline=None)
    def test_offline_scans_replayed_in_order(self, qrs: list[str]) -> None:
        async def run_test():
            transport = FakeTransport()
            client = make_client(transport, MemoryStorage())
            results = []
            client.on_result(results.append)

            offline = [await client.scan(qr) for qr in qrs]
            assert all(r.outcome == ActionOutcome.QUEUED for r in offline)
            assert len(client.queue) == len(qrs)

            await client.connect(["poll-room:p1"])
            handle = transport.handles[0]
            await client.close()
            return offline, results, handle

        offline, results, handle = run_async(run_test())

        scans = [body for event, body in handle.sent if event == "ticket:scan"]
        assert [s["payload"]["qr"] for s in scans] == qrs
        assert [s["id"] for s in scans] == [r.action_id for r in offline]
        assert [r.outcome for r in results if r.outcome == ActionOutcome.SENT] == [ActionOutcome.SENT] * len(qrs)

    def test_queue_survives_client_restart(self) -> None:
        storage = MemoryStorage()

        async def first_run():
            client = make_client(FakeTransport(), storage)
            result = await client.scan("QR-1")
            await client.close()
            return result

        async def second_run():
            transport = FakeTransport()
            client = make_client(transport, storage)
            restored = len(client.queue)
            await client.connect()
            await client.close()
            return restored, transport.handles[0]

        queued = run_async(first_run())
        restored, handle = run_async(second_run())

        assert restored == 1
        assert [body["id"] for event, body in handle.sent if event == "ticket:scan"] == [queued.action_id]

    def test_empty_scan_rejected_without_queueing(self) -> None:
        async def run_test():
            client = make_client(FakeTransport(), MemoryStorage())
            with pytest.raises(ActionRejectedError) as exc_info:
                await client.scan("   ")
            return client, exc_info.value

        client, error = run_async(run_test())

        assert error.code == "INVALID_QR"
        assert len(client.queue) == 0


class TestNotifyOnlineProperty:
    """The online signal skips the backoff and drains right away."""

    def test_notify_online_reconnects_and_drains(self) -> None:
        async def run_test():
            transport = FakeTransport(refusals=1)
            client = make_client(transport, MemoryStorage())
            await client.scan("QR-1")
            state = await client.connect()
            assert state == SessionState.RECONNECTING

            await client.notify_online()
            state_after = client.state
            remaining = len(client.queue)
            await client.close()
            return state_after, remaining, transport.handles

        state, remaining, handles = run_async(run_test())

        assert state == SessionState.CONNECTED
        assert remaining == 0
        assert len(handles) == 1

    def test_notify_online_while_idle_only_drains(self) -> None:
        async def run_test():
            client = make_client(FakeTransport(), MemoryStorage())
            await client.scan("QR-1")
            result = await client.notify_online()
            return result, client.state

        result, state = run_async(run_test())

        assert state == SessionState.IDLE
        assert result.flushed == 0
        assert result.remaining == 1


class TestClientWiring:
    """Sender selection, event routing and diagnostics."""

    def test_sender_selected_from_config(self) -> None:
        async def run_test():
            over_session = make_client(FakeTransport(), MemoryStorage())
            over_http = make_client(
                FakeTransport(),
                MemoryStorage(),
                actions=ActionEndpointConfig(base_url="https://api.example.test"),
            )
            senders = (over_session.queue._sender, over_http.queue._sender)
            await over_session.close()
            await over_http.close()
            return senders

        session_sender, http_sender = run_async(run_test())

        assert isinstance(session_sender, SessionActionSender)
        assert isinstance(http_sender, HttpActionSender)

    def test_pushes_and_settlements_reach_handlers(self) -> None:
        async def run_test():
            transport = FakeTransport()
            polls, settled = [], []
            async with make_client(transport, MemoryStorage()) as client:
                client.on(PollCreated, polls.append)
                client.on(ActionSettled, settled.append)
                await client.connect(["event-room:evt_1"])
                transport.handles[0].fire(
                    "message",
                    {"channel": "event-room:evt_1", "type": "new_poll", "body": {"pollId": "p9"}},
                )
                await client.scan("QR-7")
                diagnostics = client.diagnostics()
            return polls, settled, diagnostics

        polls, settled, diagnostics = run_async(run_test())

        assert [p.get("pollId") for p in polls] == ["p9"]
        assert [s.result.outcome for s in settled] == [ActionOutcome.SENT]
        assert diagnostics["state"] == "connected"
        assert diagnostics["channels"] == ["event-room:evt_1"]
        assert diagnostics["queued_actions"] == 0
