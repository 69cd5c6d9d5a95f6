"""Fan-out of gateway events to server-sent-event subscribers."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

_log = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class Subscription:
    """One connected observer with a bounded backlog."""

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue[dict[str, str] | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def close(self) -> None:
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass  # the reader stops on the closed flag instead


class EventBroadcaster:
    """Track subscribers and broadcast events to all of them.

    A subscriber whose backlog is full either misses the event
    (``drop_if_slow``) or is disconnected.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._subscribers: list[Subscription] = []
        self._queue_size = queue_size
        self._lock = asyncio.Lock()
        self._seq = 0

    async def subscribe(self) -> Subscription:
        subscription = Subscription(self._queue_size)
        async with self._lock:
            self._subscribers.append(subscription)
        _log.info("Event subscriber connected (%d total)", self.subscriber_count())
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        subscription.close()
        _log.info("Event subscriber disconnected")

    async def broadcast(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        drop_if_slow: bool = True,
    ) -> None:
        async with self._lock:
            self._seq += 1
            frame = {
                "event": event,
                "id": str(self._seq),
                "data": json.dumps({"payload": payload, "ts": int(time.time() * 1000)}),
            }
            subscribers = list(self._subscribers)
        slow: list[Subscription] = []
        for subscription in subscribers:
            try:
                subscription.queue.put_nowait(frame)
            except asyncio.QueueFull:
                if drop_if_slow:
                    _log.debug("Dropped %s for a slow subscriber", event)
                else:
                    slow.append(subscription)
        for subscription in slow:
            _log.warning("Disconnecting slow event subscriber")
            await self.unsubscribe(subscription)

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def stream(self, subscription: Subscription) -> AsyncIterator[dict[str, str]]:
        """Yield SSE frames until the subscription is closed or the client leaves."""
        try:
            while not subscription.closed:
                frame = await subscription.queue.get()
                if frame is None:
                    break
                yield frame
        except asyncio.CancelledError:
            _log.debug("SSE client disconnected")
        finally:
            await self.unsubscribe(subscription)
