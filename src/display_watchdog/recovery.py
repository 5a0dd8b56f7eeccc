"""Recovery dispatch for devices that stay unhealthy.

The dispatcher decides whether a device is eligible for a corrective action
and, if so, invokes the device control collaborator. At most one action is
dispatched per device per cooldown window, regardless of whether the previous
action succeeded.

Eligibility:
    - status is UNHEALTHY
    - consecutive_failures >= recovery_threshold
    - no previous attempt, or the last attempt is at least recovery_cooldown
      seconds old

The attempt timestamp is recorded through the tracker *before* the device is
contacted, so a slow or hanging action can never lead to a second dispatch in
the same window.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from display_watchdog.errors import DeviceControlError
from display_watchdog.logging import get_logger
from display_watchdog.tracker import DeviceFailureTracker
from display_watchdog.types import (
    HealthSnapshot,
    HealthState,
    HealthStatus,
    RecoveryAction,
    RecoveryOutcome,
    RecoveryResult,
)

logger = get_logger(__name__)

DEFAULT_RECOVERY_THRESHOLD = 3
DEFAULT_RECOVERY_COOLDOWN = 600.0
DEFAULT_RECOVERY_TIMEOUT = 15.0


@runtime_checkable
class DeviceControl(Protocol):
    """Protocol for the device control collaborator.

    Every method returns True on success. It may return False or raise for a
    failed action; the dispatcher treats either as a failed recovery.
    """

    async def soft_reset(self, device_id: str) -> bool: ...  # pragma: no cover

    async def reboot(self, device_id: str) -> bool: ...  # pragma: no cover

    async def switch_scene(self, device_id: str, scene: str) -> bool: ...  # pragma: no cover


def is_eligible(
    state: HealthState | HealthSnapshot,
    now: float,
    recovery_threshold: int = DEFAULT_RECOVERY_THRESHOLD,
    recovery_cooldown: float = DEFAULT_RECOVERY_COOLDOWN,
) -> bool:
    """Check whether a device may receive a recovery action at ``now``."""
    return _ineligibility(state, now, recovery_threshold, recovery_cooldown) is None


def _ineligibility(
    state: HealthState | HealthSnapshot,
    now: float,
    recovery_threshold: int,
    recovery_cooldown: float,
) -> RecoveryOutcome | None:
    if state.status != HealthStatus.UNHEALTHY:
        return RecoveryOutcome.NOT_ELIGIBLE
    if state.consecutive_failures < recovery_threshold:
        return RecoveryOutcome.NOT_ELIGIBLE
    last = state.last_recovery_attempt_at
    if last is not None and now - last < recovery_cooldown:
        return RecoveryOutcome.COOLDOWN
    return None


class RecoveryDispatcher:
    """Dispatches bounded recovery actions for unhealthy devices.

    Attributes:
        tracker: Failure tracker that owns the health table.
        device_control: Collaborator that performs the device actions.
        recovery_threshold: Consecutive failures required before recovery.
        recovery_cooldown: Minimum seconds between attempts per device.
        recovery_timeout: Seconds allowed for one device action.
        default_action: Action used when a device has no override.
        default_scene: Scene used by ``fallback_scene`` when a device names none.
        enabled: When False, nothing is ever dispatched.
    """

    def __init__(
        self,
        tracker: DeviceFailureTracker,
        device_control: DeviceControl,
        recovery_threshold: int = DEFAULT_RECOVERY_THRESHOLD,
        recovery_cooldown: float = DEFAULT_RECOVERY_COOLDOWN,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
        default_action: RecoveryAction = RecoveryAction.SOFT_RESET,
        default_scene: str | None = None,
        enabled: bool = True,
    ) -> None:
        self.tracker = tracker
        self.device_control = device_control
        self.recovery_threshold = recovery_threshold
        self.recovery_cooldown = recovery_cooldown
        self.recovery_timeout = recovery_timeout
        self.default_action = default_action
        self.default_scene = default_scene
        self.enabled = enabled

    def is_eligible(
        self,
        state: HealthState | HealthSnapshot,
        now: float,
        recovery_threshold: int | None = None,
    ) -> bool:
        """Check eligibility using this dispatcher's threshold and cooldown.

        ``recovery_threshold`` overrides the configured threshold for one device.
        """
        threshold = recovery_threshold or self.recovery_threshold
        return is_eligible(state, now, threshold, self.recovery_cooldown)

    async def maybe_recover(
        self,
        device_id: str,
        health_state: HealthState | HealthSnapshot,
        now: float,
        action: RecoveryAction | None = None,
        recovery_threshold: int | None = None,
        scene: str | None = None,
    ) -> RecoveryResult:
        """Dispatch a recovery action if the device is eligible.

        Args:
            device_id: Identifier of the device.
            health_state: Current health of the device.
            now: Current time.
            action: Per-device override of the configured action.
            recovery_threshold: Per-device override of the configured threshold.
            scene: Per-device fallback scene for the ``fallback_scene`` action.

        Returns:
            RecoveryResult describing whether an action was attempted and how
            it ended. Collaborator failures are reported, never raised.
        """
        chosen = action or self.default_action

        if not self.enabled:
            return RecoveryResult(attempted=False, outcome=RecoveryOutcome.DISABLED, action=chosen)

        threshold = recovery_threshold or self.recovery_threshold
        reason = _ineligibility(health_state, now, threshold, self.recovery_cooldown)
        if reason is not None:
            return RecoveryResult(attempted=False, outcome=reason, action=chosen)

        self.tracker.mark_recovery_attempt(device_id, now)

        if chosen == RecoveryAction.NOTIFY:
            outcome = RecoveryOutcome.NOTIFIED
            detail = None
        else:
            outcome, detail = await self._run_action(
                device_id, chosen, scene or self.default_scene
            )

        self.tracker.mark_recovery_attempt(device_id, now, outcome)
        return RecoveryResult(attempted=True, outcome=outcome, action=chosen, detail=detail)

    async def _run_action(
        self, device_id: str, action: RecoveryAction, scene: str | None
    ) -> tuple[RecoveryOutcome, str | None]:
        if action == RecoveryAction.REBOOT:
            call = self.device_control.reboot(device_id)
        elif action == RecoveryAction.FALLBACK_SCENE:
            if not scene:
                return RecoveryOutcome.FAILED, "no fallback scene configured"
            call = self.device_control.switch_scene(device_id, scene)
        else:
            call = self.device_control.soft_reset(device_id)

        try:
            ok = await asyncio.wait_for(call, timeout=self.recovery_timeout)
        except TimeoutError:
            return RecoveryOutcome.FAILED, f"{action} timed out after {self.recovery_timeout:g}s"
        except DeviceControlError as e:
            return RecoveryOutcome.FAILED, str(e)
        except Exception as e:
            # INTENTIONAL BROAD CATCH: a misbehaving collaborator must not stop
            # the watchdog; the failure is reported as a recovery outcome.
            logger.debug(
                "Device control raised %s during %s",
                type(e).__name__,
                action,
                exc_info=True,
                extra={"device_id": device_id, "diagnostic_tag": "recovery"},
            )
            return RecoveryOutcome.FAILED, f"{type(e).__name__}: {e}"

        if ok:
            return RecoveryOutcome.SUCCEEDED, None
        return RecoveryOutcome.FAILED, f"{action} was rejected by the device"


__all__ = [
    "DEFAULT_RECOVERY_COOLDOWN",
    "DEFAULT_RECOVERY_THRESHOLD",
    "DEFAULT_RECOVERY_TIMEOUT",
    "DeviceControl",
    "RecoveryDispatcher",
    "is_eligible",
]
