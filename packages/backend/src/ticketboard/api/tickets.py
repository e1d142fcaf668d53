"""Ticket API routes.

Learn: These routes are the HTTP interface to the Mutation Gateway.
The service layer handles all validation; routes translate HTTP to service
calls and publish the resulting event.

Each mutating route holds `broadcaster.exclusive()` across "apply + publish":
- the event carries the record the service returned (what was committed)
- events go out in commit order
- a failed mutation raises before publish(), so nothing is broadcast

Domain errors (TicketValidationError, TicketNotFoundError, StoreError) are
turned into {"error": ...} responses by the handlers in main.py.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketboard.db.engine import get_db
from ticketboard.realtime.broadcaster import Broadcaster, get_broadcaster
from ticketboard.realtime.events import TicketCreated, TicketDeleted, TicketUpdated
from ticketboard.schemas.ticket import (
    DeleteResult,
    StatusChange,
    TicketCreate,
    TicketEnvelope,
    TicketList,
    TicketRead,
)
from ticketboard.services.ticket_service import TicketNotFoundError, TicketService

router = APIRouter()


def _ticket_svc(db: AsyncSession = Depends(get_db)) -> TicketService:
    return TicketService(db)


@router.get("/tickets", response_model=TicketList)
async def list_tickets(svc: TicketService = Depends(_ticket_svc)):
    """Every ticket, most recent first."""
    tickets = await svc.list_tickets()
    return TicketList(tickets=[TicketRead.model_validate(t) for t in tickets])


@router.post("/tickets", response_model=TicketEnvelope, status_code=201)
async def create_ticket(
    body: TicketCreate,
    svc: TicketService = Depends(_ticket_svc),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Create a new ticket in 'Open' status and announce it."""
    async with broadcaster.exclusive():
        ticket = await svc.create_ticket(
            title=body.title,
            requester=body.requester,
            priority=body.priority,
        )
        read = TicketRead.model_validate(ticket)
        broadcaster.publish(TicketCreated(ticket=read))
    return TicketEnvelope(ticket=read)


@router.patch("/tickets/{ticket_id}/status", response_model=TicketEnvelope)
async def change_ticket_status(
    ticket_id: str,
    body: StatusChange,
    svc: TicketService = Depends(_ticket_svc),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Move a ticket to another column. Any status may follow any other."""
    async with broadcaster.exclusive():
        ticket = await svc.set_status(ticket_id, body.status)
        read = TicketRead.model_validate(ticket)
        broadcaster.publish(TicketUpdated(ticket=read))
    return TicketEnvelope(ticket=read)


@router.delete("/tickets/{ticket_id}", response_model=DeleteResult)
async def delete_ticket(
    ticket_id: str,
    svc: TicketService = Depends(_ticket_svc),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Delete a ticket and announce its id."""
    async with broadcaster.exclusive():
        if not await svc.delete_ticket(ticket_id):
            raise TicketNotFoundError("Ticket not found.")
        broadcaster.publish(TicketDeleted(id=ticket_id))
    return DeleteResult(ok=True)
