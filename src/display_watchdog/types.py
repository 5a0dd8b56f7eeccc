"""Type definitions and enums for the display watchdog.

This module centralizes the value types that flow between the prober, the
failure tracker, the recovery dispatcher and the scheduler. Enums inherit from
``StrEnum`` so they compare equal to their string values and serialize cleanly
into log records and JSON responses.

Usage:
    from display_watchdog.types import HealthStatus, Transition

    if state.status == HealthStatus.UNHEALTHY:
        ...

    RecoveryAction.is_valid("soft_reset")  # True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class HealthStatus(StrEnum):
    """Health classification of a single device.

    Values:
        HEALTHY: The last probe succeeded, or the device was never probed.
        UNHEALTHY: At least one probe failed since the last success.
    """

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class Transition(StrEnum):
    """Outcome of feeding one probe result into the failure tracker."""

    NONE = "none"
    BECAME_UNHEALTHY = "became_unhealthy"
    STILL_UNHEALTHY_SUMMARY_DUE = "still_unhealthy_summary_due"
    RECOVERED = "recovered"


class Severity(StrEnum):
    """Severity of a structured watchdog event."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DriverType(StrEnum):
    """Rendering driver currently registered for a device.

    Values:
        REAL: Frames are pushed to physical hardware.
        MOCK: Frames are rendered in-process only; there is nothing to probe.
    """

    REAL = "real"
    MOCK = "mock"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a valid driver type."""
        return value in cls._value2member_map_


class RecoveryAction(StrEnum):
    """Corrective action taken for a device judged unhealthy for too long.

    Values:
        SOFT_RESET: Restart the device's rendering channel (default).
        REBOOT: Full device reboot; heavier and slower to come back.
        NOTIFY: Do not touch the device, only emit a warning event.
        FALLBACK_SCENE: Switch the device to a configured fallback scene.
    """

    SOFT_RESET = "soft_reset"
    REBOOT = "reboot"
    NOTIFY = "notify"
    FALLBACK_SCENE = "fallback_scene"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a valid recovery action.

        Args:
            value: The string value to validate.

        Returns:
            True if the value matches a valid recovery action.
        """
        return value in cls._value2member_map_

    @classmethod
    def values(cls) -> frozenset[str]:
        """Return all valid recovery action values as a frozenset."""
        return frozenset(member.value for member in cls)


class RecoveryOutcome(StrEnum):
    """Result of consulting the recovery dispatcher for one device."""

    NOT_ELIGIBLE = "not_eligible"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOTIFIED = "notified"


@dataclass(frozen=True)
class DeviceRecord:
    """A device as listed by the registry. Read-only to the watchdog.

    Attributes:
        id: Stable device identifier.
        name: Human-friendly display name.
        address: Network address (host, host:port or base URL). May be empty
            when the registry entry is incomplete.
        driver: Currently registered rendering driver.
        watchdog_enabled: Whether the watchdog should monitor this device.
        recovery_action: Optional per-device override of the recovery action.
        recovery_threshold: Optional per-device override of the number of
            consecutive failures before recovery.
        fallback_scene: Scene used by the ``fallback_scene`` action.
    """

    id: str
    name: str
    address: str
    driver: DriverType = DriverType.REAL
    watchdog_enabled: bool = True
    recovery_action: RecoveryAction | None = None
    recovery_threshold: int | None = None
    fallback_scene: str | None = None

    @property
    def probeable(self) -> bool:
        """Whether the scheduler should probe this device at all."""
        return self.watchdog_enabled and self.driver == DriverType.REAL


@dataclass(frozen=True)
class ProbeResult:
    """Result of one liveness probe.

    Attributes:
        reachable: Discriminant; True if the device answered in time.
        latency_ms: Wall-clock time spent on the probe in milliseconds.
        error_detail: Why the probe failed; None when reachable.
    """

    reachable: bool
    latency_ms: float
    error_detail: str | None = None

    @classmethod
    def success(cls, latency_ms: float) -> ProbeResult:
        return cls(reachable=True, latency_ms=latency_ms)

    @classmethod
    def failure(cls, latency_ms: float, error_detail: str) -> ProbeResult:
        return cls(reachable=False, latency_ms=latency_ms, error_detail=error_detail)


@dataclass
class HealthState:
    """Mutable per-device health state owned by the failure tracker.

    Attributes:
        device_id: Identifier of the tracked device.
        status: Current health classification.
        consecutive_failures: Failed probes since the last success.
        consecutive_successes: Successful probes since the last failure.
        first_failure_at: Time of the failure that opened the current streak.
        last_check_at: Time of the most recent probe.
        last_summary_at: Time the current streak was last reported.
        last_recovery_attempt_at: Time of the last recovery dispatch.
        last_latency_ms: Latency of the most recent probe.
        last_error: Error detail of the most recent failed probe.
        recovery_attempts: Recovery dispatches since the state was created.
        last_recovery_outcome: Outcome of the most recent recovery dispatch.
    """

    device_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    first_failure_at: float | None = None
    last_check_at: float | None = None
    last_summary_at: float | None = None
    last_recovery_attempt_at: float | None = None
    last_latency_ms: float | None = None
    last_error: str | None = None
    recovery_attempts: int = 0
    last_recovery_outcome: RecoveryOutcome | None = None

    def snapshot(self) -> HealthSnapshot:
        """Return an immutable copy of this state."""
        return HealthSnapshot(
            device_id=self.device_id,
            status=self.status,
            consecutive_failures=self.consecutive_failures,
            consecutive_successes=self.consecutive_successes,
            first_failure_at=self.first_failure_at,
            last_check_at=self.last_check_at,
            last_summary_at=self.last_summary_at,
            last_recovery_attempt_at=self.last_recovery_attempt_at,
            last_latency_ms=self.last_latency_ms,
            last_error=self.last_error,
            recovery_attempts=self.recovery_attempts,
            last_recovery_outcome=self.last_recovery_outcome,
        )


@dataclass(frozen=True)
class HealthSnapshot:
    """Read-only view of a device's ``HealthState`` for display purposes."""

    device_id: str
    status: HealthStatus
    consecutive_failures: int
    consecutive_successes: int
    first_failure_at: float | None
    last_check_at: float | None
    last_summary_at: float | None
    last_recovery_attempt_at: float | None
    last_latency_ms: float | None
    last_error: str | None
    recovery_attempts: int
    last_recovery_outcome: RecoveryOutcome | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for the status API."""
        return {
            "device_id": self.device_id,
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "first_failure_at": self.first_failure_at,
            "last_check_at": self.last_check_at,
            "last_summary_at": self.last_summary_at,
            "last_recovery_attempt_at": self.last_recovery_attempt_at,
            "last_latency_ms": (
                round(self.last_latency_ms, 2) if self.last_latency_ms is not None else None
            ),
            "last_error": self.last_error,
            "recovery_attempts": self.recovery_attempts,
            "last_recovery_outcome": (
                self.last_recovery_outcome.value if self.last_recovery_outcome else None
            ),
        }


@dataclass(frozen=True)
class RecoveryResult:
    """Result of ``RecoveryDispatcher.maybe_recover``.

    Attributes:
        attempted: True if a recovery action was dispatched this call.
        outcome: What happened.
        action: The action that was (or would have been) taken.
        detail: Optional human-readable explanation, e.g. the failure reason.
    """

    attempted: bool
    outcome: RecoveryOutcome
    action: RecoveryAction | None = None
    detail: str | None = None


@dataclass(frozen=True)
class WatchdogEvent:
    """Structured event handed to the event sink.

    ``device_id`` and ``device_name`` are None for process-level events such
    as an unreachable device registry.
    """

    severity: Severity
    message: str
    device_id: str | None = None
    device_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "DeviceRecord",
    "DriverType",
    "HealthSnapshot",
    "HealthState",
    "HealthStatus",
    "ProbeResult",
    "RecoveryAction",
    "RecoveryOutcome",
    "RecoveryResult",
    "Severity",
    "Transition",
    "WatchdogEvent",
]
