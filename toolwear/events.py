"""Fan-out of create/update/delete events to connected dashboard sessions."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

TOOL_CREATED = "tool_created"
TOOL_UPDATED = "tool_updated"
TOOL_DELETED = "tool_deleted"
RECORD_CREATED = "record_created"
RECORD_DELETED = "record_deleted"
FAILURE_CREATED = "failure_created"


@dataclass(frozen=True, slots=True)
class LiveEvent:
    name: str
    data: Mapping[str, Any]

    def to_sse(self) -> Dict[str, str]:
        return {"event": self.name, "data": json.dumps(self.data, default=str)}


class Subscription:
    """One dashboard session: a bounded queue owned by the session's event loop."""

    def __init__(
        self, subscriber_id: int, loop: asyncio.AbstractEventLoop, max_pending: int
    ) -> None:
        self.id = subscriber_id
        self.loop = loop
        self.queue: "asyncio.Queue[Optional[LiveEvent]]" = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def close(self, *, wake_consumer: bool = True) -> None:
        """Mark closed and, from the owning loop, wake the consumer with a sentinel."""

        if self.closed:
            return
        self.closed = True
        if not wake_consumer:
            return
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[LiveEvent]:
        while not self.closed:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class EventBroadcaster:
    """Registry of subscribers guarded by a single lock.

    Publishing never waits on a consumer: every subscriber gets a
    ``put_nowait`` on its own queue and a subscriber whose queue is full, or
    whose loop is gone, is removed from the registry.
    """

    def __init__(self, max_pending: int = 100) -> None:
        self._max_pending = max_pending
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a subscriber bound to the running event loop."""

        subscription = Subscription(
            next(self._ids), asyncio.get_running_loop(), self._max_pending
        )
        with self._lock:
            self._subscribers[subscription.id] = subscription
        logger.info("Stream subscriber %s connected (%s active)", subscription.id, len(self))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            removed = self._subscribers.pop(subscription.id, None)
        if removed is not None:
            logger.info("Stream subscriber %s disconnected", subscription.id)
        return removed is not None

    def publish(self, name: str, data: Mapping[str, Any]) -> int:
        """Offer an event to every subscriber; returns how many accepted or were handed it."""

        event = LiveEvent(name=name, data=data)
        with self._lock:
            targets = list(self._subscribers.values())
        delivered = 0
        for subscription in targets:
            if self._offer(subscription, event):
                delivered += 1
        logger.debug("Published %s to %s/%s subscribers", name, delivered, len(targets))
        return delivered

    def _offer(self, subscription: Subscription, event: LiveEvent) -> bool:
        try:
            running: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is subscription.loop:
            return self._deliver(subscription, event)
        try:
            subscription.loop.call_soon_threadsafe(self._deliver, subscription, event)
        except RuntimeError:
            self._drop(subscription, "event loop closed", wake_consumer=False)
            return False
        return True

    def _deliver(self, subscription: Subscription, event: LiveEvent) -> bool:
        if subscription.closed:
            return False
        try:
            subscription.queue.put_nowait(event)
        except asyncio.QueueFull:
            self._drop(subscription, "consumer is not keeping up")
            return False
        return True

    def _drop(self, subscription: Subscription, reason: str, *, wake_consumer: bool = True) -> None:
        logger.warning("Dropping stream subscriber %s: %s", subscription.id, reason)
        self.unsubscribe(subscription)
        subscription.close(wake_consumer=wake_consumer)


__all__ = [
    "EventBroadcaster",
    "LiveEvent",
    "Subscription",
    "TOOL_CREATED",
    "TOOL_UPDATED",
    "TOOL_DELETED",
    "RECORD_CREATED",
    "RECORD_DELETED",
    "FAILURE_CREATED",
]
