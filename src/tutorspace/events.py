"""
Broadcast channel for file and process events.

Each subscriber owns a bounded queue. Publishing never blocks: when a
subscriber falls behind, its oldest pending event is dropped.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class Subscription:
    """
    One subscriber's view of an EventBroadcaster.

    Usable as an async iterator and as an async context manager.
    """

    def __init__(self, broadcaster: "EventBroadcaster", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _deliver(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            if item is not _CLOSED:
                self.dropped += 1
        self._queue.put_nowait(item)

    async def get(self, timeout: float | None = None) -> Any:
        """
        Wait for the next event.

        Args:
            timeout: Seconds to wait (None waits forever)

        Returns:
            Next event

        Raises:
            asyncio.TimeoutError: No event within timeout
            StopAsyncIteration: Subscription was closed
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)

        if item is _CLOSED:
            raise StopAsyncIteration

        return item

    def pending(self) -> int:
        """Number of queued events."""
        return self._queue.qsize()

    def close(self) -> None:
        """Unsubscribe and wake any waiting reader."""
        if self.closed:
            return

        self.closed = True
        self._broadcaster._unsubscribe(self)
        self._deliver(_CLOSED)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()


class EventBroadcaster:
    """Fan-out publisher with drop-oldest backpressure per subscriber."""

    def __init__(self, name: str, default_maxsize: int = 256) -> None:
        """
        Initialize broadcaster.

        Args:
            name: Topic name (used in logs)
            default_maxsize: Queue bound for new subscriptions
        """
        self.name = name
        self.default_maxsize = default_maxsize
        self._subscribers: list[Subscription] = []
        self.closed = False

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        """
        Register a new subscriber.

        Args:
            maxsize: Queue bound (defaults to broadcaster default)

        Returns:
            Subscription
        """
        subscription = Subscription(self, maxsize or self.default_maxsize)

        if self.closed:
            subscription.close()
            return subscription

        self._subscribers.append(subscription)
        logger.debug(f"{self.name}: subscriber added ({len(self._subscribers)} total)")

        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.debug(f"{self.name}: subscriber removed ({len(self._subscribers)} total)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Any) -> None:
        """
        Deliver event to every subscriber without blocking.

        Args:
            event: Event payload
        """
        for subscription in list(self._subscribers):
            subscription._deliver(event)

    def close(self) -> None:
        """End every subscription."""
        self.closed = True

        for subscription in list(self._subscribers):
            subscription.close()
