"""FastAPI application factory.

Learn: App factory pattern: create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (database check, closing live
streams). Middleware, CORS, exception handlers and routers are all
registered here.

The Broadcaster is created per app and stored on app.state, so every test
gets its own registry and nothing reaches for a module global.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ticketboard import __version__
from ticketboard.api import api_router
from ticketboard.config import settings
from ticketboard.logging import configure_logging
from ticketboard.realtime.broadcaster import Broadcaster
from ticketboard.realtime.shutdown import close_streams_on_exit
from ticketboard.services.ticket_service import (
    StoreError,
    TicketNotFoundError,
    TicketValidationError,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    configure_logging()
    logger.info(
        "ticketboard.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from ticketboard.db.engine import engine

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if settings.create_schema_on_startup:
                from ticketboard.db.models import Base

                await conn.run_sync(Base.metadata.create_all)
                logger.info("ticketboard.schema_created")
        logger.info("ticketboard.database_connected")
    except Exception as e:
        logger.warning("ticketboard.database_unavailable", error=str(e))

    # Streams must end when the exit signal arrives, not after the server
    # has waited for every connection to close
    with close_streams_on_exit(app.state.broadcaster):
        yield

    # Shutdown
    logger.info("ticketboard.shutdown")

    # Anything still open ends here; clients reconnect to the next process
    app.state.broadcaster.shutdown()

    await engine.dispose()


# ─── Error responses ─────────────────────────────────────


async def _validation_error(request: Request, exc: TicketValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def _not_found(request: Request, exc: TicketNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("ticketboard.request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": str(exc)})


async def _malformed_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a 400 like every other user-correctable input."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Malformed request."
    return JSONResponse(status_code=400, content={"error": message})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Ticketboard",
        description="Collaborative ticket board with live Server-Sent Events updates",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.broadcaster = Broadcaster()

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → Security → RequestId → handler

    from ticketboard.middleware.request_id import RequestIdMiddleware
    from ticketboard.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TicketValidationError, _validation_error)
    app.add_exception_handler(TicketNotFoundError, _not_found)
    app.add_exception_handler(StoreError, _store_error)
    app.add_exception_handler(RequestValidationError, _malformed_request)

    # Mount API routes
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: ticketboard.main:app)
app = create_app()
