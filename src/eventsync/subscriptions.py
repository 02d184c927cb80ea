"""
Subscription Registry for the eventsync system.

The registry is the source of truth for which channels a session should be
joined to. It is independent of connection state: subscribing while
offline only records intent, and every successful (re)connect re-asserts
the whole set to the transport. The transport's own view is a best-effort
mirror.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from .audit_logger import AuditLogger
from .enums import ChannelType, LogLevel
from .models import ChannelSubscription

if TYPE_CHECKING:
    from .transport import TransportHandle


class SubscriptionRegistry:
    """Ordered, idempotent set of channel subscriptions."""

    def __init__(
        self,
        channels: Iterable["str | ChannelSubscription"] = (),
        logger: Optional[AuditLogger] = None,
    ) -> None:
        # dict keeps insertion order, which is the re-join order
        self._channels: dict[str, ChannelSubscription] = {}
        self._logger = logger
        for channel in channels:
            self.subscribe(channel)

    def subscribe(self, channel: "str | ChannelSubscription") -> bool:
        """
        Record a channel. Subscribing twice is a no-op.

        Raises:
            ValueError: If the channel key cannot be parsed

        Returns:
            True if the channel was not subscribed before
        """
        subscription = ChannelSubscription.parse(channel)
        if subscription.key in self._channels:
            return False
        self._channels[subscription.key] = subscription
        return True

    def unsubscribe(self, channel: "str | ChannelSubscription") -> bool:
        """
        Forget a channel.

        Returns:
            True if the channel was subscribed
        """
        subscription = ChannelSubscription.parse(channel)
        return self._channels.pop(subscription.key, None) is not None

    def clear(self) -> None:
        self._channels.clear()

    @property
    def channels(self) -> list[ChannelSubscription]:
        return list(self._channels.values())

    def keys(self) -> list[str]:
        return list(self._channels)

    def of_type(self, channel_type: ChannelType) -> list[ChannelSubscription]:
        return [c for c in self._channels.values() if c.channel_type == channel_type]

    def __contains__(self, channel: object) -> bool:
        if isinstance(channel, ChannelSubscription):
            return channel.key in self._channels
        return channel in self._channels

    def __iter__(self) -> Iterator[ChannelSubscription]:
        return iter(self.channels)

    def __len__(self) -> int:
        return len(self._channels)

    async def reassert_all(
        self,
        handle: "TransportHandle",
        timeout: Optional[float] = None,
    ) -> list[ChannelSubscription]:
        """
        Send one join per subscribed channel over a freshly connected handle.

        A failed join is logged and skipped; it is retried on the next
        reconnect because the registry still holds the channel.

        Returns:
            The channels whose join was sent successfully
        """
        joined: list[ChannelSubscription] = []
        for subscription in self.channels:
            event, body = subscription.join_message()
            try:
                if timeout:
                    await asyncio.wait_for(handle.send(event, body), timeout)
                else:
                    await handle.send(event, body)
                joined.append(subscription)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._logger is not None:
                    self._logger.log_error(
                        component="SubscriptionRegistry",
                        message=f"Failed to join {subscription.key}",
                        error=e,
                    )

        if self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "SubscriptionRegistry",
                f"Re-asserted {len(joined)} of {len(self._channels)} channel(s)",
                {"channels": [c.key for c in joined]},
            )
        return joined
