"""Ticket service: the Mutation Gateway.

Learn: Every mutation of the board goes through here:
1. Inputs are trimmed and validated (title ≥ 3, requester ≥ 2, known enums)
2. The change is applied and committed
3. The committed ORM object is returned to the caller

The service never broadcasts. The route that called it publishes exactly one
event built from the returned record, so what subscribers see is always what
was persisted, never a guess at it.

Status is deliberately permissive: any status may follow any other,
including "Done" → "Open" and no-op transitions.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketboard.db.models import (
    Priority,
    Ticket,
    TicketStatus,
    new_ticket_id,
    utcnow,
)

logger = structlog.get_logger()

TITLE_MIN_LENGTH = 3
REQUESTER_MIN_LENGTH = 2


class TicketValidationError(Exception):
    """Raised when a request is malformed or out of range (HTTP 400)."""
    pass


class TicketNotFoundError(Exception):
    """Raised when the referenced ticket does not exist (HTTP 404)."""
    pass


class StoreError(Exception):
    """Raised when the database fails underneath a request (HTTP 500)."""
    pass


def _next_timestamp(previous: datetime) -> datetime:
    """Current time, bumped past `previous` if the clock has not moved."""
    now = utcnow()
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


class TicketService:
    """Validates and applies ticket mutations against the store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _store(self, action: str):
        """Translate SQLAlchemy failures into StoreError after a rollback."""
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("ticketboard.store_error", action=action, error=str(e))
            raise StoreError(f"Failed to {action}.") from e

    # ─── Create ──────────────────────────────────────────

    async def create_ticket(
        self,
        title: Optional[str],
        requester: Optional[str],
        priority: Optional[str] = None,
    ) -> Ticket:
        """Create a new ticket in 'Open' status.

        Learn: created_at and updated_at come from one clock reading, so a
        fresh ticket always has createdAt == updatedAt.
        """
        title = (title or "").strip()
        requester = (requester or "").strip()
        raw_priority = Priority.MEDIUM.value if priority is None else priority.strip()

        if len(title) < TITLE_MIN_LENGTH:
            raise TicketValidationError("Title must be at least 3 characters.")
        if len(requester) < REQUESTER_MIN_LENGTH:
            raise TicketValidationError("Requester must be at least 2 characters.")
        try:
            prio = Priority(raw_priority)
        except ValueError:
            raise TicketValidationError("Priority must be Low, Medium, or High.")

        now = utcnow()
        ticket = Ticket(
            id=new_ticket_id(),
            title=title,
            requester=requester,
            priority=prio.value,
            status=TicketStatus.OPEN.value,
            created_at=now,
            updated_at=now,
        )
        async with self._store("create ticket"):
            self.db.add(ticket)
            await self.db.commit()

        logger.info("ticketboard.ticket_created", ticket_id=ticket.id, priority=prio.value)
        return ticket

    # ─── Read ────────────────────────────────────────────

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        async with self._store("fetch ticket"):
            result = await self.db.execute(
                select(Ticket).where(Ticket.id == ticket_id)
            )
            return result.scalars().first()

    async def list_tickets(self) -> list[Ticket]:
        """All tickets, most recent first.

        Learn: One SELECT is one consistent read. The id tie-break keeps the
        order deterministic when two tickets share a created_at.
        """
        async with self._store("fetch tickets"):
            result = await self.db.execute(
                select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())
            )
            return list(result.scalars().all())

    # ─── Status ──────────────────────────────────────────

    async def set_status(self, ticket_id: str, status: Optional[str]) -> Ticket:
        """Move a ticket to any status and stamp updated_at."""
        try:
            new_status = TicketStatus.parse(status or "")
        except ValueError:
            raise TicketValidationError("Status must be Open, In Progress, or Done.")

        ticket = await self.get_ticket(ticket_id)
        if not ticket:
            raise TicketNotFoundError("Ticket not found.")

        ticket.status = new_status.value
        ticket.updated_at = _next_timestamp(ticket.updated_at)
        async with self._store("update ticket"):
            await self.db.commit()

        logger.info(
            "ticketboard.ticket_status_changed",
            ticket_id=ticket.id,
            status=new_status.value,
        )
        return ticket

    # ─── Delete ──────────────────────────────────────────

    async def delete_ticket(self, ticket_id: str) -> bool:
        """Delete by id. Returns False if there was nothing to delete."""
        async with self._store("delete ticket"):
            result = await self.db.execute(
                delete(Ticket).where(Ticket.id == ticket_id)
            )
            await self.db.commit()

        removed = result.rowcount > 0
        if removed:
            logger.info("ticketboard.ticket_deleted", ticket_id=ticket_id)
        return removed
