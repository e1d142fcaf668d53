"""Subscription session tests: attach ordering, heartbeats, detach.

Learn: The key property is that a subscriber attaching in the middle of a
stream of mutations sees every change exactly once: either folded into its
snapshot or as an event after it. test_attach_under_concurrent_mutations
replays snapshot + events and compares against the database.
"""

import asyncio
import random

import pytest

from conftest import wait_until
from ticketboard.realtime.broadcaster import Broadcaster
from ticketboard.realtime.events import (
    Heartbeat,
    Snapshot,
    TicketCreated,
    TicketDeleted,
    TicketUpdated,
    parse_frames,
)
from ticketboard.realtime.session import SessionState, SubscriptionSession
from ticketboard.schemas.ticket import TicketRead
from ticketboard.services.snapshot import SnapshotProvider
from ticketboard.services.ticket_service import StoreError, TicketService


class StaticSnapshots:
    """Snapshot provider stand-in with hooks for timing tests."""

    def __init__(self, tickets=(), gate: asyncio.Event | None = None, fail=False):
        self.tickets = list(tickets)
        self.gate = gate
        self.fail = fail
        self.calls = 0

    async def current_snapshot(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise StoreError("Failed to fetch tickets.")
        return self.tickets


def drain(session: SubscriptionSession) -> list:
    items = []
    while session.subscriber.pending:
        items.append(session.subscriber._queue.get_nowait())
    return items


@pytest.fixture
def broadcaster():
    return Broadcaster()


# ═══════════════════════════════════════════════════════════
# Attach
# ═══════════════════════════════════════════════════════════


async def test_attach_queues_snapshot_then_registers(broadcaster):
    registered_during_read = []

    class RecordingSnapshots(StaticSnapshots):
        async def current_snapshot(self):
            registered_during_read.append(broadcaster.is_registered(session.id))
            return await super().current_snapshot()

    session = SubscriptionSession(broadcaster, RecordingSnapshots(), heartbeat_interval=60)
    await session.attach()

    assert registered_during_read == [False]
    assert session.state is SessionState.STREAMING
    assert broadcaster.is_registered(session.id)

    broadcaster.publish(TicketDeleted(id="t-1"))
    events = drain(session)
    assert isinstance(events[0], Snapshot)
    assert events[1] == TicketDeleted(id="t-1")
    session.detach()


async def test_publish_waits_for_attach_to_finish(broadcaster):
    """A mutation racing an attach lands after the snapshot, never before."""
    gate = asyncio.Event()
    session = SubscriptionSession(
        broadcaster, StaticSnapshots(gate=gate), heartbeat_interval=60
    )
    attach = asyncio.create_task(session.attach())
    await asyncio.sleep(0)

    async def mutate():
        async with broadcaster.exclusive():
            broadcaster.publish(TicketDeleted(id="t-1"))

    mutation = asyncio.create_task(mutate())
    await asyncio.sleep(0.01)
    assert not mutation.done()

    gate.set()
    await asyncio.gather(attach, mutation)

    events = drain(session)
    assert [e.name for e in events] == ["snapshot", "deleted"]
    session.detach()


async def test_attach_under_concurrent_mutations(broadcaster, session_factory):
    """Snapshot + events replay to exactly the final board, no dupes, no gaps."""
    rng = random.Random(7)

    async def apply(op):
        async with session_factory() as db:
            svc = TicketService(db)
            async with broadcaster.exclusive():
                kind, value = op
                if kind == "create":
                    t = await svc.create_ticket(value, "Alice", "Low")
                    broadcaster.publish(TicketCreated(ticket=TicketRead.model_validate(t)))
                elif kind == "status":
                    tickets = await svc.list_tickets()
                    if tickets:
                        t = await svc.set_status(rng.choice(tickets).id, value)
                        broadcaster.publish(TicketUpdated(ticket=TicketRead.model_validate(t)))
                else:
                    tickets = await svc.list_tickets()
                    if tickets:
                        victim = rng.choice(tickets).id
                        await svc.delete_ticket(victim)
                        broadcaster.publish(TicketDeleted(id=victim))

    ops = []
    for i in range(30):
        ops.append(rng.choice([
            ("create", f"Ticket number {i}"),
            ("create", f"Another ticket {i}"),
            ("status", rng.choice(["Open", "In Progress", "Done"])),
            ("delete", None),
        ]))

    async def writer():
        for op in ops:
            await apply(op)
            await asyncio.sleep(0)

    session = SubscriptionSession(
        broadcaster, SnapshotProvider(session_factory), heartbeat_interval=60
    )

    async def late_attach():
        await asyncio.sleep(0.005)
        await session.attach()

    await asyncio.gather(writer(), late_attach())

    events = drain(session)
    assert isinstance(events[0], Snapshot)
    board = {t.id: t for t in events[0].tickets}
    for event in events[1:]:
        if isinstance(event, TicketCreated):
            assert event.ticket.id not in board
            board[event.ticket.id] = event.ticket
        elif isinstance(event, TicketUpdated):
            assert event.ticket.id in board
            board[event.ticket.id] = event.ticket
        else:
            assert event.id in board
            del board[event.id]

    final = await SnapshotProvider(session_factory).current_snapshot()
    assert board == {t.id: t for t in final}
    session.detach()


async def test_snapshot_failure_detaches(broadcaster):
    session = SubscriptionSession(broadcaster, StaticSnapshots(fail=True))

    with pytest.raises(StoreError):
        await session.attach()

    assert session.state is SessionState.DETACHED
    assert session.detach_reason == "snapshot_failed"
    assert broadcaster.subscriber_count == 0


async def test_attach_twice_is_an_error(broadcaster):
    session = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    await session.attach()
    with pytest.raises(RuntimeError):
        await session.attach()
    session.detach()


async def test_detach_during_snapshot_read(broadcaster):
    """Shutdown or disconnect mid-attach: never registered, nothing leaks."""
    gate = asyncio.Event()
    session = SubscriptionSession(broadcaster, StaticSnapshots(gate=gate))
    attach = asyncio.create_task(session.attach())
    await asyncio.sleep(0)

    session.detach("client_disconnected")
    gate.set()
    await attach

    assert session.state is SessionState.DETACHED
    assert broadcaster.subscriber_count == 0


# ═══════════════════════════════════════════════════════════
# Heartbeat
# ═══════════════════════════════════════════════════════════


async def test_heartbeat_goes_to_own_channel_only(broadcaster):
    watcher = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    beating = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=0.01)
    await watcher.attach()
    await beating.attach()

    await wait_until(lambda: beating.subscriber.pending >= 2)

    assert [e.name for e in drain(beating)][:2] == ["snapshot", "ping"]
    assert [e.name for e in drain(watcher)] == ["snapshot"]
    watcher.detach()
    beating.detach()


async def test_heartbeat_overflow_detaches(broadcaster):
    """A heartbeat that cannot be queued is a delivery failure."""
    session = SubscriptionSession(
        broadcaster, StaticSnapshots(), heartbeat_interval=0.01, queue_size=1
    )
    await session.attach()  # the snapshot fills the queue

    await wait_until(lambda: session.state is SessionState.DETACHED)
    assert session.detach_reason.startswith("heartbeat_failed")
    assert broadcaster.subscriber_count == 0
    assert session.subscriber.closed


# ═══════════════════════════════════════════════════════════
# Detach
# ═══════════════════════════════════════════════════════════


async def test_detach_is_idempotent(broadcaster):
    session = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    await session.attach()
    heartbeat = session._heartbeat_task

    session.detach("client_disconnected")
    session.detach("write_failed")
    session.detach("shutdown")

    assert session.detach_reason == "client_disconnected"
    assert broadcaster.subscriber_count == 0
    await asyncio.sleep(0)
    assert heartbeat.cancelled() or heartbeat.done()


async def test_detached_session_misses_later_events(broadcaster):
    stays = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    leaves = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    await stays.attach()
    await leaves.attach()

    leaves.detach()
    assert broadcaster.publish(TicketDeleted(id="t-1")) == 1
    assert [e.name for e in drain(stays)] == ["snapshot", "deleted"]
    assert drain(leaves) == []
    stays.detach()


async def test_stream_yields_frames_until_shutdown(broadcaster):
    session = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    frames = []

    async def consume():
        async for frame in session.stream():
            frames.append(frame)

    consumer = asyncio.create_task(consume())
    await wait_until(lambda: broadcaster.is_registered(session.id))

    broadcaster.publish(TicketDeleted(id="t-1"))
    await wait_until(lambda: len(frames) == 2)
    broadcaster.close_all()
    await asyncio.wait_for(consumer, 1)

    decoded = list(parse_frames("".join(frames).splitlines()))
    assert decoded == [("snapshot", {"tickets": []}), ("deleted", {"id": "t-1"})]
    assert session.state is SessionState.DETACHED


async def test_cancelled_stream_detaches(broadcaster):
    """Client disconnect cancels the response task; the session cleans up."""
    session = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)

    async def consume():
        async for _ in session.stream():
            pass

    consumer = asyncio.create_task(consume())
    await wait_until(lambda: broadcaster.is_registered(session.id))

    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    assert session.state is SessionState.DETACHED
    assert broadcaster.subscriber_count == 0


async def test_stream_ends_quietly_when_snapshot_fails(broadcaster):
    session = SubscriptionSession(broadcaster, StaticSnapshots(fail=True))
    frames = [frame async for frame in session.stream()]
    assert frames == []
    assert session.state is SessionState.DETACHED


async def test_dropped_for_overflow_ends_stream(broadcaster):
    """Backpressure: a consumer that stops reading is cut off, not waited on."""
    session = SubscriptionSession(
        broadcaster, StaticSnapshots(), heartbeat_interval=60, queue_size=2
    )
    await session.attach()

    for i in range(3):
        broadcaster.publish(TicketDeleted(id=f"t-{i}"))

    assert broadcaster.subscriber_count == 0
    assert [e async for e in session.events()] == []
    session.detach("stream_closed")


def test_heartbeat_payload_is_epoch_millis():
    from datetime import datetime, timezone

    beat = Heartbeat(timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert beat.payload() == {"t": 1767225600000}


async def test_attach_after_shutdown_is_refused(broadcaster):
    broadcaster.shutdown()
    session = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)

    await session.attach()

    assert session.state is SessionState.DETACHED
    assert session.detach_reason == "attach_refused"

    streaming = SubscriptionSession(broadcaster, StaticSnapshots(), heartbeat_interval=60)
    assert [frame async for frame in streaming.stream()] == []
