"""Pydantic schemas for tickets.

Learn: Separate schemas for create/status/read keeps the API clean.
- TicketCreate: what you POST to create a ticket
- StatusChange: what you PATCH to move a ticket between columns
- TicketRead: what the API (and the event stream) returns

Request schemas are deliberately loose (plain optional strings). The
Mutation Gateway trims and validates them so that every rule produces the
same 400 {"error": ...} shape, instead of some rules living in pydantic
(422) and some in the service (400).

TicketRead serializes camelCase (createdAt, updatedAt) because that is what
the board client consumes.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from ticketboard.db.models import Priority, TicketStatus


# ─── Requests ────────────────────────────────────────────

class TicketCreate(BaseModel):
    title: Optional[str] = None
    requester: Optional[str] = None
    priority: Optional[str] = None


class StatusChange(BaseModel):
    """Any status may follow any other; there are no transition rules."""
    status: Optional[str] = None


# ─── Responses ───────────────────────────────────────────

class TicketRead(BaseModel):
    """Immutable copy of a ticket, detached from the ORM session."""

    id: str
    title: str
    requester: str
    priority: Priority
    status: TicketStatus
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True,
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class TicketEnvelope(BaseModel):
    ticket: TicketRead


class TicketList(BaseModel):
    tickets: list[TicketRead]


class DeleteResult(BaseModel):
    ok: bool = True


class ErrorBody(BaseModel):
    error: str
