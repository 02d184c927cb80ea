"""
Sync Client for the eventsync system.

Composition root that wires one session, its subscription registry,
reconnection scheduler, dispatcher and offline action queue from a
SyncConfig. Applications normally only talk to this class.

Typical use:

    async with SyncClient(config, auth=StaticTokenProvider(token)) as client:
        client.on(VoteUpdate, handle_vote)
        await client.connect(["poll-room:p1"])
        await client.scan("QR-123")
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Iterable, Optional

from .action_store import DurableActionStore
from .audit_logger import AuditLogger
from .auth import AuthProvider
from .config import SyncConfig
from .dispatcher import EventDispatcher
from .enums import LogLevel, SessionState
from .events import ServerEvent
from .models import ActionResult, ChannelSubscription, ConnectionStatus, DrainResult, PendingAction
from .offline_queue import OfflineActionQueue, ticket_scan_action
from .reconnect import ReconnectionScheduler
from .senders import ActionSender, HttpActionSender, SessionActionSender
from .session import SyncSession
from .storage import FileStorage, KeyValueStorage
from .subscriptions import SubscriptionRegistry
from .transport import Transport, WebSocketTransport


class SyncClient:
    """
    Resilient real-time client: live channel updates plus durable actions.

    Actions go over HTTP when an action endpoint is configured and over the
    live session otherwise.
    """

    async def __aenter__(self) -> "SyncClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def __init__(
        self,
        config: SyncConfig,
        auth: AuthProvider,
        transport: Optional[Transport] = None,
        sender: Optional[ActionSender] = None,
        storage: Optional[KeyValueStorage] = None,
        logger: Optional[AuditLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Full client configuration
            auth: Auth collaborator supplying the token
            transport: Push transport; defaults to WebSocketTransport
            sender: Action sender; defaults from config.actions
            storage: Key/value medium for the offline queue; defaults to
                a FileStorage in config.queue.storage_dir
            logger: Optional audit logger
            sleep: Delay primitive for backoff and heartbeats
            rng: Random source for backoff jitter
        """
        self._config = config
        self._logger = logger

        self._dispatcher = EventDispatcher(logger=logger)
        self._registry = SubscriptionRegistry(logger=logger)
        self._scheduler = ReconnectionScheduler(
            config.reconnect,
            sleep=sleep,
            rng=rng,
            logger=logger,
        )
        self._session = SyncSession(
            transport_config=config.transport,
            transport=transport or WebSocketTransport(
                logger=logger,
                open_timeout=config.transport.connect_timeout_seconds,
            ),
            auth=auth,
            scheduler=self._scheduler,
            registry=self._registry,
            dispatcher=self._dispatcher,
            heartbeat_config=config.heartbeat,
            sleep=sleep,
            logger=logger,
            language=config.language,
        )

        self._owned_sender: Optional[HttpActionSender] = None
        if sender is None:
            if config.actions is not None:
                self._owned_sender = HttpActionSender(
                    base_url=config.actions.base_url,
                    path=config.actions.scan_path,
                    timeout=config.actions.timeout_seconds,
                    token_provider=auth,
                    logger=logger,
                )
                sender = self._owned_sender
            else:
                sender = SessionActionSender(self._session)

        store = DurableActionStore(
            storage if storage is not None else FileStorage(config.queue.storage_dir),
            key=config.queue.storage_key,
            logger=logger,
        )
        self._queue = OfflineActionQueue(
            store=store,
            sender=sender,
            max_attempts=config.queue.max_attempts,
            dispatcher=self._dispatcher,
            logger=logger,
            language=config.language,
        )
        self._session.bind_queue(self._queue)

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def session(self) -> SyncSession:
        return self._session

    @property
    def queue(self) -> OfflineActionQueue:
        return self._queue

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def state(self) -> SessionState:
        return self._session.state

    def on(self, event_cls: type[ServerEvent], handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register a handler for an event class. Returns the unsubscribe function."""
        return self._dispatcher.on(event_cls, handler)

    def on_status(self, callback: Callable[[ConnectionStatus], None]) -> Callable[[], None]:
        return self._session.on_status(callback)

    def on_result(self, callback: Callable[[ActionResult], None]) -> Callable[[], None]:
        return self._queue.on_result(callback)

    async def connect(self, channels: Iterable["str | ChannelSubscription"] = ()) -> SessionState:
        return await self._session.connect(channels)

    async def disconnect(self) -> None:
        await self._session.disconnect()

    async def subscribe(self, channel: "str | ChannelSubscription") -> bool:
        return await self._session.subscribe(channel)

    async def unsubscribe(self, channel: "str | ChannelSubscription") -> bool:
        return await self._session.unsubscribe(channel)

    async def submit(self, action: PendingAction) -> ActionResult:
        """Send an action now or queue it for the next drain."""
        return await self._queue.submit(action)

    async def scan(
        self,
        qr: str,
        location: Optional[str] = None,
        device: Optional[str] = None,
    ) -> ActionResult:
        """
        Submit a ticket scan.

        Raises:
            ActionRejectedError: If the QR input is empty (nothing is queued)
        """
        return await self.submit(ticket_scan_action(qr, location=location, device=device))

    async def notify_online(self) -> DrainResult:
        """
        React to the network coming back.

        Skips any outstanding backoff delay, then drains the offline queue.
        """
        if self._logger is not None:
            self._logger.log(LogLevel.INFO, "SyncClient", "Network online signal received")
        await self._session.retry_now()
        return await self._queue.drain()

    async def force_reconnect(self) -> SessionState:
        return await self._session.force_reconnect()

    def diagnostics(self) -> dict[str, Any]:
        return self._session.diagnostics()

    async def close(self) -> None:
        """Disconnect and release owned resources."""
        await self._session.disconnect()
        if self._owned_sender is not None:
            await self._owned_sender.aclose()
