"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: The prefix is /api (not /api/v1) because the board client talks to
/api/tickets and /api/stream directly. There is no auth layer; every route
is open.
"""

from fastapi import APIRouter

from ticketboard.api.health import router as health_router
from ticketboard.api.stream import router as stream_router
from ticketboard.api.tickets import router as tickets_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(tickets_router, tags=["tickets"])
api_router.include_router(stream_router, tags=["stream"])
