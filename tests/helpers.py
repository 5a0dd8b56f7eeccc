"""Test helper functions for display watchdog tests.

Usage::

    from tests.helpers import make_device, make_scheduler, write_devices_file

    def test_example(tmp_path):
        device = make_device("kitchen", address="10.0.0.5")
        path = write_devices_file(tmp_path, [{"id": "kitchen", "address": "10.0.0.5"}])
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from display_watchdog.recovery import RecoveryDispatcher
from display_watchdog.scheduler import WatchdogScheduler
from display_watchdog.tracker import DeviceFailureTracker, HealthTable
from display_watchdog.types import DeviceRecord, DriverType, RecoveryAction
from tests.mocks import (
    CollectingEventSink,
    FakeClock,
    FakeDeviceControl,
    FakeProber,
    FakeRegistry,
)


def make_device(
    device_id: str = "kitchen",
    *,
    name: str | None = None,
    address: str | None = None,
    driver: DriverType = DriverType.REAL,
    watchdog_enabled: bool = True,
    recovery_action: RecoveryAction | None = None,
    recovery_threshold: int | None = None,
    fallback_scene: str | None = None,
) -> DeviceRecord:
    """Create a DeviceRecord with sensible defaults.

    The address defaults to ``"{device_id}.local"`` so each device probes a
    distinct address.
    """
    return DeviceRecord(
        id=device_id,
        name=name or device_id.title(),
        address=f"{device_id}.local" if address is None else address,
        driver=driver,
        watchdog_enabled=watchdog_enabled,
        recovery_action=recovery_action,
        recovery_threshold=recovery_threshold,
        fallback_scene=fallback_scene,
    )


def write_devices_file(directory: Path, devices: list[Any], name: str = "devices.yaml") -> Path:
    """Write a registry file containing ``devices`` and return its path."""
    path = directory / name
    path.write_text(yaml.safe_dump({"devices": devices}), encoding="utf-8")
    return path


class SchedulerHarness:
    """A scheduler wired to in-memory fakes, with handles on every fake."""

    def __init__(
        self,
        devices: list[DeviceRecord] | None = None,
        *,
        check_interval: float = 60.0,
        probe_timeout_ms: float = 2000,
        max_concurrent_probes: int = 8,
        summary_interval: float = 300.0,
        recovery_threshold: int = 3,
        recovery_cooldown: float = 600.0,
        recovery_enabled: bool = True,
        recovery_timeout: float = 5.0,
        default_action: RecoveryAction = RecoveryAction.SOFT_RESET,
        default_scene: str | None = None,
        prober: FakeProber | None = None,
        device_control: FakeDeviceControl | None = None,
        sink: Any = None,
    ) -> None:
        self.clock = FakeClock()
        self.registry = FakeRegistry(devices or [])
        self.prober = prober or FakeProber()
        self.device_control = device_control or FakeDeviceControl()
        self.sink = sink if sink is not None else CollectingEventSink()
        self.tracker = DeviceFailureTracker(HealthTable(), summary_interval=summary_interval)
        self.dispatcher = RecoveryDispatcher(
            self.tracker,
            self.device_control,
            recovery_threshold=recovery_threshold,
            recovery_cooldown=recovery_cooldown,
            recovery_timeout=recovery_timeout,
            default_action=default_action,
            default_scene=default_scene,
            enabled=recovery_enabled,
        )
        self.scheduler = WatchdogScheduler(
            registry=self.registry,
            prober=self.prober,
            tracker=self.tracker,
            dispatcher=self.dispatcher,
            event_sink=self.sink,
            check_interval=check_interval,
            probe_timeout_ms=probe_timeout_ms,
            max_concurrent_probes=max_concurrent_probes,
            time_func=self.clock,
        )
