"""End live streams as soon as the process is told to stop.

Learn: On SIGINT/SIGTERM uvicorn stops accepting connections, then waits
for every open connection to finish, and only after that runs the lifespan
shutdown. An event stream never finishes on its own (the heartbeat keeps it
busy), so closing streams from the lifespan would come too late: the server
would wait on them forever.

close_streams_on_exit() chains a handler in front of whatever the server
installed for those signals. The handler schedules Broadcaster.shutdown()
on the event loop (every stream ends, new ones are refused) and then calls
the previous handler, so the server still begins its own graceful exit.
The previous handlers are restored when the block exits.

Signal handlers can only be installed from the main thread. Elsewhere
(e.g. an app driven from a worker thread) this is a no-op.
"""

import asyncio
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from ticketboard.realtime.broadcaster import Broadcaster

logger = structlog.get_logger()

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def close_streams_on_exit(broadcaster: Broadcaster) -> Iterator[None]:
    """Close every stream on SIGINT/SIGTERM, before the connection drain."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    loop = asyncio.get_running_loop()
    previous: dict[int, object] = {}

    def handle_exit(sig: int, frame) -> None:
        logger.info("ticketboard.exit_signal", signal=signal.Signals(sig).name)
        loop.call_soon_threadsafe(broadcaster.shutdown)

        handler = previous.get(sig)
        if callable(handler):
            handler(sig, frame)
        elif handler == signal.SIG_DFL:
            # Nobody else handles it: keep the default (terminate)
            signal.signal(sig, signal.SIG_DFL)
            signal.raise_signal(sig)

    for sig in HANDLED_SIGNALS:
        previous[sig] = signal.signal(sig, handle_exit)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
