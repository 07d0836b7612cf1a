# app/utils/realtime.py
"""
In-process change feed. Store writes that clients watch (chat messages,
notifications) are published here after commit; subscribers receive insert
events for the rows matching their equality filters.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class FeedSubscription:
    """Async iterator over the insert events of one table filter."""

    def __init__(self, feed: "ChangeFeed", table: str, filters: Dict[str, Any], maxsize: int = 0):
        self.feed = feed
        self.table = table
        self.filters = {key: str(value) for key, value in filters.items()}
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(str(row.get(key)) == value for key, value in self.filters.items())

    def deliver(self, event: Dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Dropping {self.table} event for a slow subscriber ({self.filters})")

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.feed.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()


class ChangeFeed:
    def __init__(self):
        self._subscriptions: Dict[str, List[FeedSubscription]] = {}

    def subscribe(self, table: str, **filters: Any) -> FeedSubscription:
        subscription = FeedSubscription(self, table, filters)
        self._subscriptions.setdefault(table, []).append(subscription)
        logger.debug(f"Subscribed to {table} with {subscription.filters}")
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        subscribers = self._subscriptions.get(subscription.table, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscriptions.pop(subscription.table, None)

    def publish(self, table: str, row: Dict[str, Any]) -> int:
        """Deliver an insert event to every matching subscriber. Returns the delivery count."""
        event = {"table": table, "type": "INSERT", "new": row}
        delivered = 0
        for subscription in list(self._subscriptions.get(table, [])):
            if subscription.matches(row):
                subscription.deliver(event)
                delivered += 1
        return delivered

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, []))
        return sum(len(subs) for subs in self._subscriptions.values())


# Process-wide feed used by the API layer
change_feed = ChangeFeed()
