"""Request ID middleware: correlate log lines and responses per request.

Learn: Every request gets an id, either from the incoming X-Request-ID
header (a proxy's trace id) or a fresh uuid4. It is bound to structlog's
contextvars, so the "ticket_created" line and the access line for the same
POST share it, and is echoed back in the response header.

For /api/stream the access line is written when the response starts, not
when the stream ends, and a stream can stay open for hours.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate, bind, and propagate a request id."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "ticketboard.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
