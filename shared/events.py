"""In-process event channel with per-subscriber queues."""

import asyncio
import logging
from typing import Generic, List, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")


class EventChannel(Generic[E]):
    """Fan-out of events to every subscriber's queue.

    Publishing never blocks; a subscriber whose queue is full misses the event.
    """

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> "asyncio.Queue[E]":
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: E):
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {type(event).__name__}: subscriber queue full")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
