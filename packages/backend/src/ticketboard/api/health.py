"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, the
database is reachable, and reports how many live subscribers are attached.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketboard import __version__
from ticketboard.db.engine import get_session_factory
from ticketboard.realtime.broadcaster import Broadcaster, get_broadcaster

router = APIRouter()


@router.get("/health")
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Check server health and database connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"

    return {"status": status, **checks, "subscribers": broadcaster.subscriber_count}
