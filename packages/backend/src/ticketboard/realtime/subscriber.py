"""Subscriber: one connection's private delivery channel.

Learn: Each connected client gets a bounded asyncio.Queue. Producers
(the broadcaster, the session's heartbeat) never await on it: they use
put_nowait, so a slow client can only ever hurt itself. A full queue is a
dead subscriber: it gets dropped, its stream ends, and the browser's
EventSource reconnects into a fresh snapshot.

Closing drains whatever is pending and leaves a single sentinel behind, which
wakes the consumer parked in receive() and tells it to stop.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Optional

from ticketboard.realtime.events import BoardEvent

_CLOSED = object()


class TransportError(Exception):
    """Raised when an event cannot be handed to a subscriber's channel."""
    pass


class Subscriber:
    """A bounded, closable outbound queue of board events."""

    def __init__(self, max_queue_size: int = 256):
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        self.id = uuid.uuid4().hex
        self.attached_at = datetime.now(timezone.utc)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events queued but not yet written to the transport."""
        return 0 if self._closed else self._queue.qsize()

    def deliver(self, event: BoardEvent) -> None:
        """Queue an event without waiting. Raises TransportError if closed or full."""
        if self._closed:
            raise TransportError("channel closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise TransportError(
                f"channel full ({self._queue.maxsize} events pending)"
            )

    async def receive(self) -> Optional[BoardEvent]:
        """Next event in FIFO order, or None once the channel is closed."""
        if self._closed:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        """Release the channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._queue.put_nowait(_CLOSED)
