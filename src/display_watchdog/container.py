"""Dependency Injection container for the display watchdog.

This module wires the watchdog components using the dependency-injector
library. Every component is a singleton so that the scheduler, the recovery
dispatcher and the status API all share one failure tracker.

Usage:
    # Production setup
    container = create_container(config)
    scheduler = container.scheduler()

    # Test setup with fakes
    container = create_container(config)
    container.prober.override(providers.Object(FakeProber()))
    scheduler = container.scheduler()

    WatchdogContainer
    ├── config (Config)
    ├── registry (FileDeviceRegistry)
    ├── prober (HttpProber)
    ├── tracker (DeviceFailureTracker)
    ├── device_control (PixooDeviceControl)
    ├── dispatcher (RecoveryDispatcher)
    ├── event_sink (LoggingEventSink)
    └── scheduler (WatchdogScheduler)
"""

from __future__ import annotations

from dependency_injector import containers, providers

from display_watchdog.config import Config
from display_watchdog.devices import (
    DeviceLookup,
    DeviceRegistry,
    FileDeviceRegistry,
    PixooDeviceControl,
)
from display_watchdog.events import EventSink, LoggingEventSink
from display_watchdog.prober import HttpProber, Prober
from display_watchdog.recovery import DeviceControl, RecoveryDispatcher
from display_watchdog.scheduler import WatchdogScheduler
from display_watchdog.tracker import DeviceFailureTracker, HealthTable


def create_registry(config: Config) -> FileDeviceRegistry:
    """Create the YAML-backed device registry."""
    return FileDeviceRegistry(config.devices_file)


def create_tracker(config: Config) -> DeviceFailureTracker:
    """Create the failure tracker with its own health table."""
    return DeviceFailureTracker(HealthTable(), summary_interval=config.summary_interval)


def create_device_control(config: Config, lookup: DeviceLookup) -> PixooDeviceControl:
    """Create the device control used for recovery actions.

    Args:
        config: Application configuration.
        lookup: Resolves device ids to their registry records.
    """
    return PixooDeviceControl(
        lookup,
        settle_seconds=config.soft_reset_settle_seconds,
        command_timeout=config.probe_timeout_seconds,
    )


def create_dispatcher(
    config: Config,
    tracker: DeviceFailureTracker,
    device_control: DeviceControl,
) -> RecoveryDispatcher:
    """Create the recovery dispatcher from configuration."""
    return RecoveryDispatcher(
        tracker,
        device_control,
        recovery_threshold=config.recovery_threshold,
        recovery_cooldown=config.recovery_cooldown,
        recovery_timeout=config.recovery_timeout,
        default_action=config.recovery_action,
        default_scene=config.fallback_scene or None,
        enabled=config.recovery_enabled,
    )


def create_scheduler(
    config: Config,
    registry: DeviceRegistry,
    prober: Prober,
    tracker: DeviceFailureTracker,
    dispatcher: RecoveryDispatcher,
    event_sink: EventSink,
) -> WatchdogScheduler:
    """Create the scheduler with all collaborators injected."""
    return WatchdogScheduler(
        registry=registry,
        prober=prober,
        tracker=tracker,
        dispatcher=dispatcher,
        event_sink=event_sink,
        check_interval=config.check_interval,
        probe_timeout_ms=config.probe_timeout_ms,
        max_concurrent_probes=config.max_concurrent_probes,
    )


class WatchdogContainer(containers.DeclarativeContainer):
    """Main dependency injection container for the display watchdog.

    ``config`` must be overridden before any other provider is used;
    ``create_container`` does this.
    """

    config: providers.Dependency[Config] = providers.Dependency()

    registry = providers.Singleton(create_registry, config)
    prober = providers.Singleton(HttpProber)
    tracker = providers.Singleton(create_tracker, config)
    device_control = providers.Singleton(create_device_control, config, registry)
    dispatcher = providers.Singleton(create_dispatcher, config, tracker, device_control)
    event_sink = providers.Singleton(LoggingEventSink)
    scheduler = providers.Singleton(
        create_scheduler,
        config=config,
        registry=registry,
        prober=prober,
        tracker=tracker,
        dispatcher=dispatcher,
        event_sink=event_sink,
    )


def create_container(config: Config | None = None) -> WatchdogContainer:
    """Create and configure the container.

    Args:
        config: Optional configuration. If not provided, loads from environment.

    Returns:
        WatchdogContainer ready for use.
    """
    if config is None:
        from display_watchdog.config import load_config

        config = load_config()

    container = WatchdogContainer()
    container.config.override(providers.Object(config))
    return container


__all__ = [
    "WatchdogContainer",
    "create_container",
    "create_device_control",
    "create_dispatcher",
    "create_registry",
    "create_scheduler",
    "create_tracker",
]
