"""Snapshot provider: the board as of one consistent read.

Learn: A new subscriber needs the whole board before any incremental
event. The provider opens its own short session (the stream outlives any
request-scoped session), runs one ordered SELECT, and converts the rows to
frozen TicketRead copies before the session closes. Nothing lazy or
session-bound ever reaches a subscriber.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketboard.schemas.ticket import TicketRead
from ticketboard.services.ticket_service import TicketService


class SnapshotProvider:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def current_snapshot(self) -> list[TicketRead]:
        """All tickets, newest first. Raises StoreError if the read fails."""
        async with self._session_factory() as db:
            tickets = await TicketService(db).list_tickets()
            return [TicketRead.model_validate(t) for t in tickets]
