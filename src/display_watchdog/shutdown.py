"""Signal handling for the continuous watchdog loop.

SIGINT and SIGTERM are turned into a single call to ``WatchdogScheduler.stop``,
which wakes the loop from its sleep and cancels the tick's in-flight probes or
recovery actions. The runner restores the previous handlers once
``asyncio.run`` has returned, so nothing outlives the loop.
"""

from __future__ import annotations

import signal
from collections.abc import Callable
from types import FrameType

from display_watchdog.logging import get_logger

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Forwards the first stop request to the scheduler.

    The callback runs inside a signal handler, on the main thread, while the
    event loop may be suspended anywhere. ``WatchdogScheduler.stop`` only sets
    a flag and schedules the cancellation through ``call_soon_threadsafe``,
    which is what makes it usable here. A second Ctrl+C during a slow tick is
    logged and dropped.
    """

    def __init__(self, on_shutdown: Callable[[], None] | None = None) -> None:
        self._shutdown_requested = False
        self._on_shutdown = on_shutdown
        self._previous_handlers: dict[int, object] = {}

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Stop the watchdog once; later requests only log."""
        if self._shutdown_requested:
            logger.debug("Shutdown already in progress, waiting for the tick to unwind")
            return
        logger.info("Shutdown requested, cancelling in-flight probes")
        self._shutdown_requested = True

        if self._on_shutdown is not None:
            self._on_shutdown()

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """``signal.signal`` callback for SIGINT and SIGTERM."""
        logger.info("Received %s, stopping the watchdog", signal.Signals(signum).name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM here, remembering what was installed before."""
        for signum in SHUTDOWN_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)
        logger.debug("Watchdog owns SIGINT and SIGTERM until the loop exits")

    def restore_signal_handlers(self) -> None:
        """Put back the handlers that were active before ``install_signal_handlers``.

        Called by the runner after ``asyncio.run`` returns, whether the loop
        stopped on a signal or raised.
        """
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        self._previous_handlers.clear()


def create_shutdown_handler(on_shutdown: Callable[[], None] | None = None) -> ShutdownHandler:
    """Build a handler around ``on_shutdown`` and install it for SIGINT and SIGTERM."""
    handler = ShutdownHandler(on_shutdown)
    handler.install_signal_handlers()
    return handler


__all__ = [
    "SHUTDOWN_SIGNALS",
    "ShutdownHandler",
    "create_shutdown_handler",
]
