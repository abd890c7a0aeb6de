"""In-process publish/subscribe for committed changes."""

import asyncio
from collections.abc import Iterable
from uuid import UUID

import structlog

from teamhub.config import get_settings
from teamhub.realtime.events import PUBLISHED_TABLES, ChangeEvent

logger = structlog.get_logger()


class Subscription:
    """Buffered stream of change events for one connected user."""

    def __init__(
        self,
        broker: "ChangeBroker",
        user_id: UUID,
        tables: Iterable[str] | None = None,
        maxsize: int = 256,
    ):
        self.broker = broker
        self.user_id = user_id
        self.tables = frozenset(tables) if tables else PUBLISHED_TABLES
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def wants(self, event: ChangeEvent) -> bool:
        return event.table in self.tables and event.visible_to(self.user_id)

    def offer(self, event: ChangeEvent) -> bool:
        """Queue the event if this subscriber may see it.

        A full buffer drops its oldest event rather than blocking the
        publisher; consumers re-fetch, so a gap is recoverable.
        """
        if self.closed or not self.wants(event):
            return False
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "subscriber_buffer_full",
                user_id=str(self.user_id),
                dropped=self.dropped,
            )
        self.queue.put_nowait(event)
        return True

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def close(self) -> None:
        self.closed = True
        self.broker.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class ChangeBroker:
    """Fans committed change events out to subscriptions."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._subscriptions: set[Subscription] = set()

    def subscribe(self, user_id: UUID, tables: Iterable[str] | None = None) -> Subscription:
        subscription = Subscription(self, user_id, tables=tables, maxsize=self.maxsize)
        self._subscriptions.add(subscription)
        logger.debug("subscription_opened", user_id=str(user_id), tables=sorted(subscription.tables))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to every subscription whose user may read the row.

        Returns the number of subscriptions that received the event.
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.offer(event):
                delivered += 1
        return delivered


# Global broker instance
broker = ChangeBroker(maxsize=get_settings().realtime_queue_size)
