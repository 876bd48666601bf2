"""Fan-out of appended history entries to live subscribers."""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeAlias

log = logging.getLogger(__name__)

Entry: TypeAlias = Mapping[str, Any]


class Subscription:
    """Receives every entry published after it was created."""

    def __init__(self, buffer_size: int) -> None:
        self._queue: asyncio.Queue[Entry] = asyncio.Queue(maxsize=buffer_size)
        self.dropped = 0

    def offer(self, entry: Entry) -> bool:
        """Enqueue without waiting; returns False if the buffer is full."""
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self) -> Entry:
        """Wait for the next entry."""
        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[Entry]:
        return self

    async def __anext__(self) -> Entry:
        return await self.get()


class HistoryBroadcaster:
    """Publish/subscribe hub for the history live tail.

    Publishing never blocks: a subscriber whose buffer is full misses
    the entry instead of stalling the append path.
    """

    def __init__(self, buffer_size: int = 256) -> None:
        self.buffer_size = buffer_size
        self._subscribers: set[Subscription] = set()

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a new subscriber."""
        subscription = Subscription(self.buffer_size)
        self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering to a subscriber; unknown handles are ignored."""
        self._subscribers.discard(subscription)

    def publish(self, entry: Entry) -> int:
        """Offer an entry to every subscriber and return how many took it."""
        delivered = 0
        for subscription in list(self._subscribers):
            if subscription.offer(entry):
                delivered += 1
            else:
                log.warning(
                    "Live tail subscriber is lagging, dropped %d entries so far",
                    subscription.dropped,
                )
        return delivered

    @asynccontextmanager
    async def listen(self) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of the context."""
        subscription = self.subscribe()
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)
