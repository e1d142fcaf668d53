"""Event stream endpoint: GET /api/stream.

Learn: Each request becomes one SubscriptionSession whose stream() generator
is the response body. Attach happens inside the generator, so a client that
never starts reading never gets registered, and the generator's finally
block is the single place where the subscriber is released.

Starlette cancels the generator when the client disconnects; a failed write
closes it. Either way the session detaches.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketboard.config import settings
from ticketboard.db.engine import get_session_factory
from ticketboard.realtime.broadcaster import Broadcaster, get_broadcaster
from ticketboard.realtime.session import SubscriptionSession
from ticketboard.services.snapshot import SnapshotProvider

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Stop nginx from buffering the stream
    "X-Accel-Buffering": "no",
}


@router.get("/stream")
async def stream_events(
    broadcaster: Broadcaster = Depends(get_broadcaster),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Snapshot first, then created/updated/deleted/ping until disconnect."""
    session = SubscriptionSession(
        broadcaster,
        SnapshotProvider(session_factory),
        heartbeat_interval=settings.heartbeat_interval_seconds,
        queue_size=settings.subscriber_queue_size,
    )
    return StreamingResponse(
        session.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
