"""Ticketboard: a collaborative ticket board with live updates.

Clients create, move, and delete tickets over HTTP; every connected browser
sees the change immediately through a Server-Sent Events stream.
"""

__version__ = "0.1.0"
