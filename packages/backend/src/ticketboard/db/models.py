"""SQLAlchemy ORM models: single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
The board has exactly one table. Alembic migrations mirror it.

Key concepts:
- Opaque string ids (uuid4 hex) generated by the application, not the DB
- Timestamps set in Python so created_at == updated_at on insert exactly
- UTCDateTime keeps timestamps timezone-aware on every dialect (SQLite
  drops the offset on the way in)
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_ticket_id() -> str:
    """Random 128-bit id. Uniqueness is enforced by the primary key."""
    return uuid.uuid4().hex


class Priority(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TicketStatus(str, enum.Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    DONE = "Done"

    @classmethod
    def parse(cls, raw: str) -> "TicketStatus":
        """Accept the wire value ("In Progress") or the compact name ("InProgress")."""
        value = raw.strip()
        for member in cls:
            if value == member.value or value == member.value.replace(" ", ""):
                return member
        raise ValueError(raw)


class UTCDateTime(TypeDecorator):
    """timestamptz that always comes back timezone-aware (UTC)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Ticket(Base):
    """A ticket on the board.

    Learn: Status is stored as its display value ("In Progress") so the
    table reads naturally. Any status may follow any other; there is no
    transition table.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=new_ticket_id
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    requester: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Priority.MEDIUM.value
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TicketStatus.OPEN.value
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
