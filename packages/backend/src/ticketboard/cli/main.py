"""Ticketboard CLI: manage the board and watch it change from a terminal.

Usage:
    ticketboard tickets                                   # List tickets
    ticketboard create "Fix login bug" -r Alice -p High   # Create a ticket
    ticketboard status 3f9c... "In Progress"             # Move a ticket
    ticketboard delete 3f9c...                            # Delete a ticket
    ticketboard watch                                     # Tail the live event stream
    ticketboard serve                                     # Run the API server
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Any, Optional

import click
import httpx

from ticketboard import __version__
from ticketboard.realtime.events import parse_frames

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("TICKETBOARD_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the board API."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=timeout)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop, normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner), run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response) -> dict[str, Any]:
    """Return the JSON body, or print the server's error and exit 1."""
    if r.is_success:
        return r.json()
    try:
        message = r.json().get("error") or r.text
    except ValueError:
        message = r.text
    click.secho(f"Error ({r.status_code}): {message}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map ticket statuses and priorities to click colors."""
    colors = {
        "Open": "white",
        "In Progress": "yellow",
        "Done": "green",
        "Low": "blue",
        "Medium": "white",
        "High": "red",
    }
    return colors.get(status, "white")


def _ticket_line(ticket: dict) -> str:
    status = click.style(ticket["status"], fg=_status_color(ticket["status"]))
    priority = click.style(ticket["priority"], fg=_status_color(ticket["priority"]))
    return f"{ticket['id']}  [{status}] [{priority}] {ticket['title']} by {ticket['requester']}"


def format_event(name: str, data: dict[str, Any]) -> str:
    """One human-readable line per stream event."""
    if name == "snapshot":
        return f"snapshot: {len(data.get('tickets', []))} ticket(s)"
    if name in ("created", "updated"):
        return f"{name}: {_ticket_line(data['ticket'])}"
    if name == "deleted":
        return f"deleted: {data['id']}"
    if name == "ping":
        return f"ping: {data.get('t')}"
    return f"{name}: {json.dumps(data)}"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="ticketboard")
def main():
    """Ticketboard: a collaborative ticket board with live updates."""


# ---------------------------------------------------------------------------
# ticketboard tickets
# ---------------------------------------------------------------------------


@main.command()
@click.option("--status", "-s", "status_filter", help="Only show tickets in this status")
def tickets(status_filter: Optional[str]):
    """List tickets, most recent first."""
    _run(_tickets_impl(status_filter))


async def _tickets_impl(status_filter: Optional[str]):
    async with _client() as c:
        rows = _check(await c.get("/api/tickets"))["tickets"]

    if status_filter:
        rows = [t for t in rows if t["status"] == status_filter]

    if not rows:
        click.echo("No tickets found.")
        return

    click.secho(f"Tickets ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 32),
        ("Status", "status", 12),
        ("Priority", "priority", 8),
        ("Requester", "requester", 16),
        ("Title", "title", 50),
    ])


# ---------------------------------------------------------------------------
# ticketboard create
# ---------------------------------------------------------------------------


@main.command()
@click.argument("title")
@click.option("--requester", "-r", required=True, help="Who is asking")
@click.option(
    "--priority", "-p",
    type=click.Choice(["Low", "Medium", "High"]),
    default="Medium",
    show_default=True,
)
def create(title: str, requester: str, priority: str):
    """Create a ticket. TITLE must be at least 3 characters."""
    _run(_create_impl(title, requester, priority))


async def _create_impl(title: str, requester: str, priority: str):
    async with _client() as c:
        body = _check(await c.post("/api/tickets", json={
            "title": title,
            "requester": requester,
            "priority": priority,
        }))
    click.secho("Ticket created", fg="green")
    click.echo(_ticket_line(body["ticket"]))


# ---------------------------------------------------------------------------
# ticketboard status
# ---------------------------------------------------------------------------


@main.command()
@click.argument("ticket_id")
@click.argument("new_status")
def status(ticket_id: str, new_status: str):
    """Move a ticket to NEW_STATUS (Open, "In Progress", Done)."""
    _run(_status_impl(ticket_id, new_status))


async def _status_impl(ticket_id: str, new_status: str):
    async with _client() as c:
        body = _check(await c.patch(
            f"/api/tickets/{ticket_id}/status", json={"status": new_status}
        ))
    click.echo(_ticket_line(body["ticket"]))


# ---------------------------------------------------------------------------
# ticketboard delete
# ---------------------------------------------------------------------------


@main.command()
@click.argument("ticket_id")
def delete(ticket_id: str):
    """Delete a ticket."""
    _run(_delete_impl(ticket_id))


async def _delete_impl(ticket_id: str):
    async with _client() as c:
        _check(await c.delete(f"/api/tickets/{ticket_id}"))
    click.secho(f"Ticket {ticket_id} deleted", fg="green")


# ---------------------------------------------------------------------------
# ticketboard watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--raw", is_flag=True, help="Print event data as JSON")
def watch(raw: bool):
    """Tail the live event stream until interrupted."""
    try:
        _run(_watch_impl(raw))
    except KeyboardInterrupt:
        pass


async def _watch_impl(raw: bool):
    async with _client(timeout=None) as c:
        async with c.stream("GET", "/api/stream") as r:
            if not r.is_success:
                await r.aread()
                _check(r)
            click.secho("Connected, waiting for events (Ctrl+C to stop)", fg="green")
            buffer: list[str] = []
            async for line in r.aiter_lines():
                buffer.append(line)
                if line:
                    continue
                for name, data in parse_frames(buffer):
                    if raw:
                        click.echo(f"{name} {json.dumps(data)}")
                    else:
                        click.echo(format_event(name, data))
                buffer = []
    click.secho("Stream closed by server", fg="yellow")


# ---------------------------------------------------------------------------
# ticketboard serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: settings)")
@click.option("--port", default=None, type=int, help="Port (default: settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server with uvicorn."""
    import uvicorn

    from ticketboard.config import settings

    uvicorn.run(
        "ticketboard.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
