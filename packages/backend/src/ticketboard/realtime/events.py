"""Board events and their Server-Sent Events wire format.

Learn: An event is an immutable value. The broadcaster hands the very same
object to every subscriber, so nothing subscriber-specific may live on it.

Wire format (one frame per event):

    event: <name>
    data: <compact JSON>
    <blank line>

| event     | name       | data                     |
|-----------|------------|--------------------------|
| Snapshot  | snapshot   | {"tickets": [...]}       |
| Created   | created    | {"ticket": {...}}        |
| Updated   | updated    | {"ticket": {...}}        |
| Deleted   | deleted    | {"id": "..."}            |
| Heartbeat | ping       | {"t": <epoch millis>}    |
"""

import json
from abc import abstractmethod
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel

from ticketboard.schemas.ticket import TicketRead


def _ticket_json(ticket: TicketRead) -> dict[str, Any]:
    return ticket.model_dump(mode="json", by_alias=True)


class BoardEvent(BaseModel):
    """Base class for everything that travels down the stream."""

    name: ClassVar[str]

    model_config = {"frozen": True}

    @abstractmethod
    def payload(self) -> dict[str, Any]:
        """The JSON body of the `data:` line."""

    def encode(self) -> str:
        data = json.dumps(self.payload(), separators=(",", ":"))
        return f"event: {self.name}\ndata: {data}\n\n"


class Snapshot(BoardEvent):
    name: ClassVar[str] = "snapshot"

    tickets: tuple[TicketRead, ...]

    def payload(self) -> dict[str, Any]:
        return {"tickets": [_ticket_json(t) for t in self.tickets]}


class TicketCreated(BoardEvent):
    name: ClassVar[str] = "created"

    ticket: TicketRead

    def payload(self) -> dict[str, Any]:
        return {"ticket": _ticket_json(self.ticket)}


class TicketUpdated(BoardEvent):
    name: ClassVar[str] = "updated"

    ticket: TicketRead

    def payload(self) -> dict[str, Any]:
        return {"ticket": _ticket_json(self.ticket)}


class TicketDeleted(BoardEvent):
    name: ClassVar[str] = "deleted"

    id: str

    def payload(self) -> dict[str, Any]:
        return {"id": self.id}


class Heartbeat(BoardEvent):
    name: ClassVar[str] = "ping"

    timestamp: datetime

    def payload(self) -> dict[str, Any]:
        return {"t": int(self.timestamp.timestamp() * 1000)}


def parse_frames(lines: Iterable[str]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Decode an SSE line stream into (event name, data) pairs.

    Comment lines (": ...") and unknown fields are skipped. Multiple data
    lines in one frame are joined with newlines, per the SSE format.
    """
    name = "message"
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield name, json.loads("\n".join(data))
            name, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            name = value
        elif field == "data":
            data.append(value)
    if data:
        yield name, json.loads("\n".join(data))
