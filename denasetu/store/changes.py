"""
In-process change notification bus.

The data store publishes a ``ChangeEvent`` for every committed mutation.
Subscribers hold a bounded asyncio queue bound to the loop they subscribed
from; publishing is safe from any thread. Delivery is best effort: a full
queue drops the event and counts it.
"""
import asyncio
import threading
from typing import Dict, Optional, Set

import structlog

from denasetu.core.config import get_settings
from denasetu.schemas.events import ChangeEvent

logger = structlog.get_logger(__name__)
settings = get_settings()

ALL_RELATIONS = "*"

_CLOSED = object()
_DROPPED = object()


class SubscriptionDropped(Exception):
    """The bus cut the subscription (shutdown or relay failure)"""
    pass


class Subscription:
    """One subscriber's view of a relation's change stream"""

    def __init__(self, bus: "ChangeBus", relation: str, maxsize: int):
        self.bus = bus
        self.relation = relation
        self.dropped_events = 0
        self.closed = False
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def _deliver(self, item):
        if self.closed:
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            if item is _CLOSED or item is _DROPPED:
                # Make room for the terminal marker; pending events are stale anyway
                while not self._queue.empty():
                    self._queue.get_nowait()
                self._queue.put_nowait(item)
                return
            self.dropped_events += 1
            logger.warning(
                "Subscriber queue full, dropping change event",
                relation=self.relation,
                dropped_events=self.dropped_events
            )

    def _post(self, item) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._deliver, item)
            return True
        except RuntimeError:
            # Event loop already closed
            return False

    async def get(self) -> ChangeEvent:
        """Wait for the next event; StopAsyncIteration after close()"""
        item = await self._queue.get()
        if item is _CLOSED:
            self.closed = True
            raise StopAsyncIteration
        if item is _DROPPED:
            self.closed = True
            raise SubscriptionDropped(f"Subscription to {self.relation} was dropped")
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()

    def close(self):
        """Stop receiving events; a pending get() ends the iteration"""
        self.bus.unsubscribe(self)
        self._post(_CLOSED)


class ChangeBus:
    """Fan-out of change events to per-relation subscribers"""

    def __init__(self, origin: str, queue_size: int = 256):
        self.origin = origin
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, relation: str, maxsize: Optional[int] = None) -> Subscription:
        """Subscribe to a relation, or to every relation with ``"*"``. Needs a running loop."""
        subscription = Subscription(self, relation, maxsize or self.queue_size)
        with self._lock:
            self._subscribers.setdefault(relation, set()).add(subscription)
        logger.debug("Change subscription opened", relation=relation)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.relation)
            if subscribers is not None:
                subscribers.discard(subscription)

    def subscriber_count(self, relation: str) -> int:
        with self._lock:
            return len(self._subscribers.get(relation, ()))

    def publish(self, event: ChangeEvent):
        """Deliver an event to subscribers of its relation and to wildcard subscribers"""
        with self._lock:
            targets = list(self._subscribers.get(event.relation, ()))
            targets += list(self._subscribers.get(ALL_RELATIONS, ()))

        for subscription in targets:
            if not subscription._post(event):
                self.unsubscribe(subscription)

        logger.debug(
            "Change event published",
            relation=event.relation,
            event_type=event.event_type.value,
            row_id=event.row_id,
            subscribers=len(targets)
        )

    def drop_all(self, relation: Optional[str] = None):
        """Cut subscriptions, as a network interruption would"""
        with self._lock:
            if relation is None:
                dropped = [s for subs in self._subscribers.values() for s in subs]
                self._subscribers.clear()
            else:
                dropped = list(self._subscribers.pop(relation, ()))

        for subscription in dropped:
            subscription._post(_DROPPED)

        logger.info("Change subscriptions dropped", relation=relation or ALL_RELATIONS, count=len(dropped))


# Global bus instance
change_bus = ChangeBus(origin=settings.instance_id, queue_size=settings.feed_queue_size)


def get_change_bus() -> ChangeBus:
    """Dependency to get the change bus"""
    return change_bus
