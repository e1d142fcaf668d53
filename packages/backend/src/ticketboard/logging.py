"""Structured logging setup using structlog directly.

Every module grabs `structlog.get_logger()` and logs dotted event names
with key/value context (`logger.info("ticketboard.ticket_created", ...)`).
This module only decides the level filter and the renderer.
"""

import logging

import structlog

from ticketboard.config import settings


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog from settings (or explicit overrides)."""
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if (fmt or settings.log_format) == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
