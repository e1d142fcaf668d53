"""Subscription session: one live connection from attach to detach.

Learn: The lifecycle is a three-state machine:

    ATTACHING ──snapshot queued, registered──▶ STREAMING ──▶ DETACHED
        │                                                      ▲
        └──────────────── snapshot read failed ────────────────┘

Attach order matters. The snapshot is written straight into the
subscriber's private queue and only then is the subscriber registered with
the broadcaster, all while holding the broadcaster's ordering lock. A
Created event can therefore never overtake the snapshot that should already
contain it.

While streaming, a heartbeat task drops a Heartbeat on this session's own
queue every interval (25s by default). Proxies see traffic, and a
half-open connection shows up as a failed write. A heartbeat that cannot be
queued counts as a delivery failure and detaches the session.

Detach can be triggered by the client going away, by a failed write, by the
broadcaster dropping an overflowing channel, or by shutdown, possibly
several at once. It is synchronous and idempotent, so there is nothing to
deadlock on.
"""

import asyncio
import enum
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Optional

import structlog

from ticketboard.realtime.broadcaster import Broadcaster, SubscriptionHandle
from ticketboard.realtime.events import BoardEvent, Heartbeat, Snapshot
from ticketboard.realtime.subscriber import Subscriber, TransportError
from ticketboard.services.snapshot import SnapshotProvider
from ticketboard.services.ticket_service import StoreError

logger = structlog.get_logger()

DEFAULT_HEARTBEAT_INTERVAL = 25.0


class SessionState(str, enum.Enum):
    ATTACHING = "attaching"
    STREAMING = "streaming"
    DETACHED = "detached"


class SubscriptionSession:
    """Drives one subscriber through attach → stream → detach."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        snapshots: SnapshotProvider,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        queue_size: int = 256,
    ):
        self.broadcaster = broadcaster
        self.snapshots = snapshots
        self.heartbeat_interval = heartbeat_interval
        self.subscriber = Subscriber(max_queue_size=queue_size)
        self.state = SessionState.ATTACHING
        self.detach_reason: Optional[str] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    @property
    def id(self) -> str:
        return self.subscriber.id

    # ─── Attach ──────────────────────────────────────────

    async def attach(self) -> None:
        """Queue the snapshot, then register. Raises StoreError on a failed read."""
        if self.state is not SessionState.ATTACHING:
            raise RuntimeError(f"cannot attach a session in state {self.state.value}")

        try:
            async with self.broadcaster.exclusive():
                tickets = await self.snapshots.current_snapshot()
                self.subscriber.deliver(Snapshot(tickets=tuple(tickets)))
                self._handle = self.broadcaster.register(self.subscriber)
        except StoreError:
            self.detach("snapshot_failed")
            raise
        except TransportError:
            # Detached while the snapshot was being read, or the
            # broadcaster is shutting down and refused the registration.
            self.detach("attach_refused")
            return

        self.state = SessionState.STREAMING
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(
            "ticketboard.session_attached",
            subscriber_id=self.id,
            snapshot_size=len(tickets),
        )

    # ─── Stream ──────────────────────────────────────────

    async def events(self) -> AsyncIterator[BoardEvent]:
        """Queued events in order, ending when the channel is closed."""
        while True:
            event = await self.subscriber.receive()
            if event is None:
                return
            yield event

    async def stream(self) -> AsyncIterator[str]:
        """Attach, then yield encoded SSE frames until detach.

        The finally block runs when the transport gives up on us too
        (client disconnect cancels the response, a failed write closes the
        generator), so every exit path releases the subscriber.
        """
        try:
            try:
                await self.attach()
            except StoreError:
                return
            async for event in self.events():
                yield event.encode()
        finally:
            self.detach(self.detach_reason or "stream_closed")

    async def _heartbeat_loop(self) -> None:
        while self.state is SessionState.STREAMING:
            await asyncio.sleep(self.heartbeat_interval)
            if self.state is not SessionState.STREAMING:
                return
            try:
                self.subscriber.deliver(Heartbeat(timestamp=datetime.now(timezone.utc)))
            except TransportError as e:
                self.detach(f"heartbeat_failed: {e}")
                return

    # ─── Detach ──────────────────────────────────────────

    def detach(self, reason: str = "client_disconnected") -> None:
        """Unregister, stop the heartbeat, release the channel. Idempotent."""
        if self.state is SessionState.DETACHED:
            return
        self.state = SessionState.DETACHED
        self.detach_reason = reason

        self.broadcaster.unregister(self.subscriber.id)

        task = self._heartbeat_task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        self.subscriber.close()

        lifetime = (datetime.now(timezone.utc) - self.subscriber.attached_at).total_seconds()
        logger.info(
            "ticketboard.session_detached",
            subscriber_id=self.id,
            reason=reason,
            lifetime_seconds=round(lifetime, 3),
        )
