"""Per-run fan-out of progress messages to external observers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_CLOSED = object()


def _put_dropping_oldest(queue: asyncio.Queue, item: Any) -> bool:
    """Put without blocking; when full, drop the oldest entry first."""
    dropped = False
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        try:
            queue.get_nowait()
            dropped = True
        except asyncio.QueueEmpty:
            pass
        queue.put_nowait(item)
    return dropped


class Subscription:
    """Async iterator over the messages published for one run.

    Registered with its channel on creation, so nothing published afterwards
    is missed even before iteration starts.
    """

    def __init__(self, channel: "BroadcastChannel", run_id: str, queue_size: int) -> None:
        self.run_id = run_id
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self._closed:
            raise StopAsyncIteration
        message = await self._queue.get()
        if message is _CLOSED:
            self.close()
            raise StopAsyncIteration
        return message

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def deliver(self, message: Any) -> None:
        if _put_dropping_oldest(self._queue, message):
            logger.warning(f"Subscriber queue full for run {self.run_id}, dropped oldest message")

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._channel._unsubscribe(self)

    @property
    def closed(self) -> bool:
        return self._closed


class BroadcastChannel:
    """Forwards progress messages to the subscribers of a run.

    Publishing to a run nobody subscribed to drops the message; nothing is
    buffered for late subscribers. Each subscriber has a bounded queue.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, run_id: str, queue_size: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, run_id, queue_size or self._queue_size)
        self._subscribers.setdefault(run_id, []).append(subscription)
        logger.debug(f"New subscriber for run {run_id}")
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.run_id)
        if not subscribers:
            return
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            del self._subscribers[subscription.run_id]

    def publish(self, run_id: str, message: Dict[str, Any]) -> int:
        """Deliver a message to every subscriber of a run.

        Returns:
            Number of subscribers the message was delivered to
        """
        subscribers = self._subscribers.get(run_id)
        if not subscribers:
            return 0
        for subscription in list(subscribers):
            subscription.deliver(message)
        return len(subscribers)

    def close(self, run_id: str) -> None:
        """End every subscription of a run once its queued messages are consumed.

        The run is forgotten right away, whether or not its subscribers ever
        read their queues.
        """
        for subscription in self._subscribers.pop(run_id, ()):
            subscription.deliver(_CLOSED)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))


def format_sse(message: Dict[str, Any]) -> str:
    """Render a message as a server-sent events frame."""
    return f"data: {json.dumps(message)}\n\n"
