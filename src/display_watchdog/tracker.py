"""Per-device failure tracking.

The tracker ingests probe results and derives health transitions for each
device. Repeated failures collapse into one immediate "went offline" event
plus rate-limited "still offline" summaries, so a device that stays down for
hours produces a bounded number of log lines.

State machine (per device)::

    HEALTHY --fail--> UNHEALTHY        emits BECAME_UNHEALTHY
    UNHEALTHY --fail--> UNHEALTHY      emits STILL_UNHEALTHY_SUMMARY_DUE once
                                       per summary_interval, else NONE
    UNHEALTHY --ok--> HEALTHY          emits RECOVERED
    HEALTHY --ok--> HEALTHY            emits NONE

The per-device ``HealthState`` objects live in a ``HealthTable`` that the
tracker owns. The tracker is the only component that mutates them; the
recovery dispatcher reads them and reports attempts back through
``mark_recovery_attempt``.

Thread-safety contract:
    All public methods are safe to call concurrently. The table is guarded by
    an ``RLock`` because the status API reads snapshots from the HTTP server
    thread while the scheduler writes from the event loop thread.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Iterator

from display_watchdog.errors import TrackerInputError
from display_watchdog.logging import get_logger
from display_watchdog.types import (
    HealthSnapshot,
    HealthState,
    HealthStatus,
    ProbeResult,
    RecoveryOutcome,
    Transition,
)

logger = get_logger(__name__)

DEFAULT_SUMMARY_INTERVAL = 300.0


class HealthTable:
    """Table of ``HealthState`` keyed by device id.

    Not thread-safe on its own; ``DeviceFailureTracker`` serializes access.
    """

    def __init__(self) -> None:
        self._states: dict[str, HealthState] = {}

    def get(self, device_id: str) -> HealthState | None:
        return self._states.get(device_id)

    def get_or_create(self, device_id: str) -> HealthState:
        if device_id not in self._states:
            self._states[device_id] = HealthState(device_id=device_id)
        return self._states[device_id]

    def remove(self, device_id: str) -> bool:
        return self._states.pop(device_id, None) is not None

    def device_ids(self) -> list[str]:
        return list(self._states)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._states

    def __iter__(self) -> Iterator[HealthState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)


class DeviceFailureTracker:
    """Derives health transitions from a stream of probe results.

    ``record`` is a pure function of (previous state, result, now): replaying
    the same sequence into a fresh tracker yields the same transitions and the
    same final states.

    Attributes:
        summary_interval: Minimum seconds between "still unhealthy" summaries.
    """

    def __init__(
        self,
        table: HealthTable | None = None,
        summary_interval: float = DEFAULT_SUMMARY_INTERVAL,
    ) -> None:
        """Initialize the tracker.

        Args:
            table: Health table to own. A fresh one is created if omitted.
            summary_interval: Seconds between periodic summaries for a device
                that stays unhealthy.
        """
        if summary_interval <= 0:
            raise ValueError(f"summary_interval must be positive, got {summary_interval}")
        self.summary_interval = summary_interval
        self._table = table if table is not None else HealthTable()
        self._lock = threading.RLock()

    def record(self, device_id: str, result: ProbeResult, now: float) -> Transition:
        """Apply one probe result to a device's state.

        Args:
            device_id: Identifier of the probed device.
            result: Outcome of the probe.
            now: Time the result is applied (seconds since epoch).

        Returns:
            The transition this result caused.

        Raises:
            TrackerInputError: If any argument is malformed. No state is
                modified in that case.
        """
        self._validate(device_id, result, now)

        with self._lock:
            state = self._table.get_or_create(device_id)
            state.last_check_at = now
            state.last_latency_ms = result.latency_ms

            if result.reachable:
                return self._record_success(state)
            return self._record_failure(state, result, now)

    def _record_success(self, state: HealthState) -> Transition:
        state.consecutive_successes += 1
        state.last_error = None

        if state.status == HealthStatus.UNHEALTHY:
            state.status = HealthStatus.HEALTHY
            state.consecutive_failures = 0
            state.first_failure_at = None
            state.last_summary_at = None
            return Transition.RECOVERED
        return Transition.NONE

    def _record_failure(self, state: HealthState, result: ProbeResult, now: float) -> Transition:
        state.consecutive_failures += 1
        state.consecutive_successes = 0
        state.last_error = result.error_detail or "Unknown error"

        if state.status == HealthStatus.HEALTHY:
            state.status = HealthStatus.UNHEALTHY
            state.first_failure_at = now
            state.last_summary_at = now
            return Transition.BECAME_UNHEALTHY

        # A streak always starts with last_summary_at set; the fallback only
        # guards states constructed by hand.
        reference = state.last_summary_at if state.last_summary_at is not None else now
        if now - reference >= self.summary_interval:
            state.last_summary_at = now
            return Transition.STILL_UNHEALTHY_SUMMARY_DUE
        return Transition.NONE

    @staticmethod
    def _validate(device_id: object, result: object, now: object) -> None:
        if not isinstance(device_id, str) or not device_id:
            raise TrackerInputError(f"device_id must be a non-empty string, got {device_id!r}")
        if not isinstance(result, ProbeResult):
            raise TrackerInputError(
                f"result must be a ProbeResult, got {type(result).__name__}"
            )
        if isinstance(now, bool) or not isinstance(now, int | float) or not math.isfinite(now):
            raise TrackerInputError(f"now must be a finite number, got {now!r}")

    def mark_recovery_attempt(
        self,
        device_id: str,
        now: float,
        outcome: RecoveryOutcome | None = None,
    ) -> None:
        """Record that a recovery action was dispatched for a device.

        Called by the recovery dispatcher before the action runs (``outcome``
        None) and again once the outcome is known.

        Args:
            device_id: Identifier of the device.
            now: Time of the attempt.
            outcome: Outcome, when known.
        """
        with self._lock:
            state = self._table.get(device_id)
            if state is None:
                return
            if outcome is None:
                state.last_recovery_attempt_at = now
                state.recovery_attempts += 1
            else:
                state.last_recovery_outcome = outcome

    def get_health(self, device_id: str) -> HealthSnapshot | None:
        """Return a read-only snapshot of a device's health, or None if unknown."""
        with self._lock:
            state = self._table.get(device_id)
            return state.snapshot() if state is not None else None

    def get_all_health(self) -> dict[str, HealthSnapshot]:
        """Return snapshots for all tracked devices."""
        with self._lock:
            return {state.device_id: state.snapshot() for state in self._table}

    def unhealthy_device_ids(self) -> list[str]:
        """Return ids of all devices currently classified unhealthy."""
        with self._lock:
            return [s.device_id for s in self._table if s.status == HealthStatus.UNHEALTHY]

    def forget(self, device_id: str) -> bool:
        """Drop a device's state. Returns True if a state existed."""
        with self._lock:
            return self._table.remove(device_id)

    def retain_only(self, device_ids: Iterable[str]) -> list[str]:
        """Drop states of every device not in ``device_ids``.

        Args:
            device_ids: Ids that are still registered and monitored.

        Returns:
            Ids whose state was dropped.
        """
        keep = set(device_ids)
        with self._lock:
            dropped = [d for d in self._table.device_ids() if d not in keep]
            for device_id in dropped:
                self.forget(device_id)
        if dropped:
            logger.debug("Dropped health state for deregistered device(s): %s", dropped)
        return dropped


__all__ = [
    "DEFAULT_SUMMARY_INTERVAL",
    "DeviceFailureTracker",
    "HealthTable",
]
