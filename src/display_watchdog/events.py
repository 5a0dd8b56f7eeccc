"""Event sink for watchdog events.

The scheduler reports every state change through an ``EventSink`` instead of
logging directly, which keeps the decision of *what* to report in one place
and lets tests capture events without parsing log output.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from display_watchdog.logging import get_logger
from display_watchdog.types import Severity, WatchdogEvent

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@runtime_checkable
class EventSink(Protocol):
    """Receiver of structured watchdog events."""

    def emit(self, event: WatchdogEvent) -> None: ...  # pragma: no cover


class LoggingEventSink:
    """Event sink that writes each event as one log record.

    Device context and metadata are attached through ``extra`` so both the
    structured and the JSON formatter can render them.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger(__name__)

    def emit(self, event: WatchdogEvent) -> None:
        extra = {
            "device_id": event.device_id,
            "device_name": event.device_name,
            "severity": event.severity.value,
            "metadata": event.metadata or None,
        }
        transition = event.metadata.get("transition")
        if transition is not None:
            extra["transition"] = transition
        self.logger.log(_LEVELS[event.severity], event.message, extra=extra)


__all__ = [
    "EventSink",
    "LoggingEventSink",
]
