"""Broadcaster: the subscriber registry and fan-out engine.

Learn: This is the only shared mutable state in the live-update path, so it
is an explicit object (created by create_app, injected via get_broadcaster)
rather than a module-level set.

Two locks, two jobs:

1. `_lock` (threading.Lock) guards the registry dict. It is held only for a
   dict operation or a copy, never across a delivery. publish() copies the
   current subscribers under it, then delivers outside it.

2. `_ordering` (asyncio.Lock, via exclusive()) serializes "apply mutation +
   publish" against "read snapshot + register". With it held on both sides:
   - publish order equals commit order, so a client never sees Updated
     before Created for the same ticket
   - every mutation lands either in a new subscriber's snapshot or in its
     stream, never both and never neither

Delivery is put_nowait into each subscriber's bounded queue. Any
TransportError (closed or full channel) drops that subscriber; the publisher
and the other subscribers never notice.
"""

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Request

from ticketboard.realtime.events import BoardEvent
from ticketboard.realtime.subscriber import Subscriber, TransportError

logger = structlog.get_logger()

SubscriptionHandle = str


class Broadcaster:
    """Registry of live subscribers. The sole writer of events into them."""

    def __init__(self):
        self._subscribers: dict[SubscriptionHandle, Subscriber] = {}
        self._lock = threading.Lock()
        self._ordering = asyncio.Lock()
        self._shutting_down = False

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def is_registered(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            return handle in self._subscribers

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the ordering lock (mutation + publish, or snapshot + register)."""
        async with self._ordering:
            yield

    # ─── Registry ────────────────────────────────────────

    def register(self, subscriber: Subscriber) -> SubscriptionHandle:
        """Add a subscriber. Every later publish() reaches it until removal."""
        if subscriber.closed:
            raise TransportError("cannot register a closed channel")
        with self._lock:
            if self._shutting_down:
                raise TransportError("broadcaster is shutting down")
            self._subscribers[subscriber.id] = subscriber
            count = len(self._subscribers)
        logger.info(
            "ticketboard.subscriber_registered",
            subscriber_id=subscriber.id,
            subscribers=count,
        )
        return subscriber.id

    def unregister(self, handle: SubscriptionHandle) -> bool:
        """Remove a subscriber. Idempotent; True only for the removing call."""
        with self._lock:
            removed = self._subscribers.pop(handle, None)
            count = len(self._subscribers)
        if removed is None:
            return False
        logger.info(
            "ticketboard.subscriber_unregistered",
            subscriber_id=handle,
            subscribers=count,
        )
        return True

    # ─── Fan-out ─────────────────────────────────────────

    def publish(self, event: BoardEvent) -> int:
        """Deliver `event` to every registered subscriber.

        Returns how many subscribers accepted it. Never raises on behalf of
        a subscriber.
        """
        with self._lock:
            targets = list(self._subscribers.values())

        delivered = 0
        for subscriber in targets:
            try:
                subscriber.deliver(event)
            except TransportError as e:
                self._drop(subscriber, str(e))
            else:
                delivered += 1

        logger.debug(
            "ticketboard.event_published",
            event_name=event.name,
            delivered=delivered,
            targets=len(targets),
        )
        return delivered

    def _drop(self, subscriber: Subscriber, reason: str) -> None:
        if self.unregister(subscriber.id):
            logger.warning(
                "ticketboard.subscriber_dropped",
                subscriber_id=subscriber.id,
                reason=reason,
            )
        subscriber.close()

    def close_all(self) -> int:
        """Close every live channel. Returns how many were closed."""
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()
        if subscribers:
            logger.info("ticketboard.subscribers_closed", count=len(subscribers))
        return len(subscribers)

    def shutdown(self) -> int:
        """Close every channel and refuse new ones (process exit)."""
        with self._lock:
            self._shutting_down = True
        return self.close_all()


def get_broadcaster(request: Request) -> Broadcaster:
    """FastAPI dependency: the app's broadcaster."""
    return request.app.state.broadcaster
