"""Unit tests for RecoveryDispatcher."""

from __future__ import annotations

import pytest

from display_watchdog.errors import DeviceControlError
from display_watchdog.recovery import DeviceControl, RecoveryDispatcher, is_eligible
from display_watchdog.tracker import DeviceFailureTracker
from display_watchdog.types import (
    HealthState,
    HealthStatus,
    ProbeResult,
    RecoveryAction,
    RecoveryOutcome,
)
from tests.mocks import FakeDeviceControl

FAIL = ProbeResult.failure(100.0, "Connection refused")
OK = ProbeResult.success(10.0)


def fail_times(tracker: DeviceFailureTracker, count: int, start: float = 1000.0) -> float:
    """Record ``count`` failures one minute apart; return the last timestamp."""
    now = start
    for i in range(count):
        now = start + 60 * i
        tracker.record("kitchen", FAIL, now)
    return now


def make_dispatcher(
    tracker: DeviceFailureTracker,
    control: FakeDeviceControl | None = None,
    **kwargs: object,
) -> tuple[RecoveryDispatcher, FakeDeviceControl]:
    control = control or FakeDeviceControl()
    return RecoveryDispatcher(tracker, control, **kwargs), control  # type: ignore[arg-type]


class TestIsEligible:
    """Tests for the pure eligibility predicate."""

    def test_healthy_device_is_not_eligible(self) -> None:
        state = HealthState(device_id="kitchen", consecutive_failures=5)
        assert is_eligible(state, 1000.0) is False

    def test_below_threshold(self) -> None:
        state = HealthState(
            device_id="kitchen", status=HealthStatus.UNHEALTHY, consecutive_failures=2
        )
        assert is_eligible(state, 1000.0, recovery_threshold=3) is False

    def test_at_threshold_without_previous_attempt(self) -> None:
        state = HealthState(
            device_id="kitchen", status=HealthStatus.UNHEALTHY, consecutive_failures=3
        )
        assert is_eligible(state, 1000.0, recovery_threshold=3) is True

    def test_cooldown_boundary(self) -> None:
        state = HealthState(
            device_id="kitchen",
            status=HealthStatus.UNHEALTHY,
            consecutive_failures=10,
            last_recovery_attempt_at=1000.0,
        )
        assert is_eligible(state, 1599.0, recovery_cooldown=600.0) is False
        assert is_eligible(state, 1600.0, recovery_cooldown=600.0) is True


class TestMaybeRecover:
    """Tests for RecoveryDispatcher.maybe_recover()."""

    def test_fake_control_satisfies_protocol(self) -> None:
        assert isinstance(FakeDeviceControl(), DeviceControl)

    @pytest.mark.asyncio
    async def test_dispatches_after_threshold(self, tracker: DeviceFailureTracker) -> None:
        """fail, fail, fail with threshold 3 dispatches after the third failure."""
        dispatcher, control = make_dispatcher(tracker, recovery_threshold=3)

        for i in range(2):
            now = 1000.0 + 60 * i
            tracker.record("kitchen", FAIL, now)
            result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)
            assert result.attempted is False
            assert result.outcome == RecoveryOutcome.NOT_ELIGIBLE

        now = 1120.0
        tracker.record("kitchen", FAIL, now)
        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.attempted is True
        assert result.outcome == RecoveryOutcome.SUCCEEDED
        assert result.action == RecoveryAction.SOFT_RESET
        assert control.calls == [("soft_reset", "kitchen")]
        health = tracker.get_health("kitchen")
        assert health.last_recovery_attempt_at == now
        assert health.last_recovery_outcome == RecoveryOutcome.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failed_action_is_not_retried_within_cooldown(
        self, tracker: DeviceFailureTracker
    ) -> None:
        """Two failing attempts inside one cooldown window lead to one dispatch."""
        dispatcher, control = make_dispatcher(
            tracker, FakeDeviceControl(outcome=False), recovery_cooldown=600.0
        )
        now = fail_times(tracker, 3)

        first = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)
        assert first.attempted is True
        assert first.outcome == RecoveryOutcome.FAILED

        tracker.record("kitchen", FAIL, now + 60)
        second = await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now + 60
        )
        assert second.attempted is False
        assert second.outcome == RecoveryOutcome.COOLDOWN
        assert len(control.calls) == 1

        tracker.record("kitchen", FAIL, now + 600)
        third = await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now + 600
        )
        assert third.attempted is True
        assert len(control.calls) == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_change_status(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, _ = make_dispatcher(tracker, FakeDeviceControl(outcome=False))
        now = fail_times(tracker, 3)
        await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)
        health = tracker.get_health("kitchen")
        assert health.status == HealthStatus.UNHEALTHY
        assert health.consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_collaborator_exception_is_reported(self, tracker: DeviceFailureTracker) -> None:
        control = FakeDeviceControl(
            outcome=DeviceControlError("kitchen", "Channel/SetIndex", "connection refused")
        )
        dispatcher, _ = make_dispatcher(tracker, control)
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.attempted is True
        assert result.outcome == RecoveryOutcome.FAILED
        assert "connection refused" in result.detail

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, _ = make_dispatcher(tracker, FakeDeviceControl(outcome=KeyError("ip")))
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.outcome == RecoveryOutcome.FAILED
        assert result.detail.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_timeout_is_reported_and_attempt_recorded(
        self, tracker: DeviceFailureTracker
    ) -> None:
        dispatcher, _ = make_dispatcher(
            tracker, FakeDeviceControl(delay=1.0), recovery_timeout=0.01
        )
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.outcome == RecoveryOutcome.FAILED
        assert "timed out" in result.detail
        assert tracker.get_health("kitchen").last_recovery_attempt_at == now

    @pytest.mark.asyncio
    async def test_attempt_recorded_before_action_runs(
        self, tracker: DeviceFailureTracker
    ) -> None:
        observed: list[float | None] = []

        class ObservingControl(FakeDeviceControl):
            async def soft_reset(self, device_id: str) -> bool:
                observed.append(tracker.get_health(device_id).last_recovery_attempt_at)
                return True

        dispatcher, _ = make_dispatcher(tracker, ObservingControl())
        now = fail_times(tracker, 3)
        await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert observed == [now]

    @pytest.mark.asyncio
    async def test_reboot_action(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker, default_action=RecoveryAction.REBOOT)
        now = fail_times(tracker, 3)
        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)
        assert result.action == RecoveryAction.REBOOT
        assert control.calls == [("reboot", "kitchen")]

    @pytest.mark.asyncio
    async def test_per_device_override(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker)
        now = fail_times(tracker, 3)
        await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now, action=RecoveryAction.REBOOT
        )
        assert control.calls == [("reboot", "kitchen")]

    @pytest.mark.asyncio
    async def test_notify_does_not_touch_device(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker, default_action=RecoveryAction.NOTIFY)
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.attempted is True
        assert result.outcome == RecoveryOutcome.NOTIFIED
        assert control.calls == []
        # Notifications are rate limited by the same cooldown.
        again = await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now + 60
        )
        assert again.outcome == RecoveryOutcome.COOLDOWN

    @pytest.mark.asyncio
    async def test_disabled_dispatcher(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker, enabled=False)
        now = fail_times(tracker, 5)
        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)
        assert result.attempted is False
        assert result.outcome == RecoveryOutcome.DISABLED
        assert control.calls == []
        assert tracker.get_health("kitchen").last_recovery_attempt_at is None

    @pytest.mark.asyncio
    async def test_recovered_device_is_not_eligible(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker)
        now = fail_times(tracker, 3)
        tracker.record("kitchen", OK, now + 60)
        result = await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now + 60
        )
        assert result.outcome == RecoveryOutcome.NOT_ELIGIBLE
        assert control.calls == []


class TestPerDeviceSettings:
    """Tests for per-device thresholds and the fallback scene action."""

    @pytest.mark.asyncio
    async def test_device_threshold_overrides_default(
        self, tracker: DeviceFailureTracker
    ) -> None:
        dispatcher, control = make_dispatcher(tracker, recovery_threshold=3)
        now = fail_times(tracker, 1)
        health = tracker.get_health("kitchen")

        assert dispatcher.is_eligible(health, now) is False
        assert dispatcher.is_eligible(health, now, recovery_threshold=1) is True
        result = await dispatcher.maybe_recover("kitchen", health, now, recovery_threshold=1)

        assert result.outcome == RecoveryOutcome.SUCCEEDED
        assert control.calls == [("soft_reset", "kitchen")]

    @pytest.mark.asyncio
    async def test_higher_device_threshold_delays_recovery(
        self, tracker: DeviceFailureTracker
    ) -> None:
        dispatcher, control = make_dispatcher(tracker, recovery_threshold=3)
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover(
            "kitchen", tracker.get_health("kitchen"), now, recovery_threshold=5
        )

        assert result.outcome == RecoveryOutcome.NOT_ELIGIBLE
        assert control.calls == []

    @pytest.mark.asyncio
    async def test_fallback_scene_switches_scene(self, tracker: DeviceFailureTracker) -> None:
        dispatcher, control = make_dispatcher(tracker)
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover(
            "kitchen",
            tracker.get_health("kitchen"),
            now,
            action=RecoveryAction.FALLBACK_SCENE,
            scene="clock",
        )

        assert result.outcome == RecoveryOutcome.SUCCEEDED
        assert result.action == RecoveryAction.FALLBACK_SCENE
        assert control.calls == [("switch_scene", "kitchen")]
        assert control.scenes == ["clock"]

    @pytest.mark.asyncio
    async def test_fallback_scene_uses_default_scene(
        self, tracker: DeviceFailureTracker
    ) -> None:
        dispatcher, control = make_dispatcher(
            tracker, default_action=RecoveryAction.FALLBACK_SCENE, default_scene="cloud"
        )
        now = fail_times(tracker, 3)

        await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert control.scenes == ["cloud"]

    @pytest.mark.asyncio
    async def test_fallback_scene_without_scene_fails(
        self, tracker: DeviceFailureTracker
    ) -> None:
        dispatcher, control = make_dispatcher(
            tracker, default_action=RecoveryAction.FALLBACK_SCENE
        )
        now = fail_times(tracker, 3)

        result = await dispatcher.maybe_recover("kitchen", tracker.get_health("kitchen"), now)

        assert result.attempted is True
        assert result.outcome == RecoveryOutcome.FAILED
        assert result.detail == "no fallback scene configured"
        assert control.calls == []
        assert tracker.get_health("kitchen").last_recovery_attempt_at == now
