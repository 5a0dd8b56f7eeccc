"""Bootstrap and dependency wiring for the display watchdog.

This module is the composition root. It:
- Loads configuration and applies CLI overrides
- Sets up logging
- Builds the dependency container and the scheduler
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any

from display_watchdog.config import Config, clamp_probe_timeout, load_config
from display_watchdog.container import WatchdogContainer, create_container
from display_watchdog.devices import DeviceRegistry
from display_watchdog.logging import get_logger, setup_logging
from display_watchdog.scheduler import WatchdogScheduler
from display_watchdog.tracker import DeviceFailureTracker
from display_watchdog.types import RecoveryAction

logger = get_logger(__name__)


class BootstrapContext:
    """Holds the bootstrapped components needed to run the watchdog."""

    def __init__(
        self,
        config: Config,
        container: WatchdogContainer,
        scheduler: WatchdogScheduler,
    ) -> None:
        """Initialize the bootstrap context.

        Args:
            config: Application configuration.
            container: Dependency container that built the components.
            scheduler: The scheduler to run.
        """
        self.config = config
        self.container = container
        self.scheduler = scheduler

    @property
    def tracker(self) -> DeviceFailureTracker:
        """The failure tracker shared by the scheduler and the status API."""
        return self.container.tracker()

    @property
    def registry(self) -> DeviceRegistry:
        """The device registry the scheduler reads every tick."""
        return self.container.registry()


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.interval:
        overrides["check_interval"] = parsed.interval
        overrides["probe_timeout_ms"] = clamp_probe_timeout(
            config.probe_timeout_ms, parsed.interval
        )
    if parsed.log_level:
        overrides["log_level"] = parsed.log_level
    if parsed.devices_file:
        overrides["devices_file"] = parsed.devices_file

    if overrides:
        return replace(config, **overrides)
    return config


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext | None:
    """Bootstrap the application with all dependencies.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies, or None if
        initialization failed.
    """
    config = load_config(parsed.env_file)
    config = apply_cli_overrides(config, parsed)

    setup_logging(
        config.log_level,
        json_format=config.log_json,
        diagnostic_tags=config.diagnostic_tags,
    )

    if not config.devices_file.exists():
        # Not fatal: the file may be created later and is re-read every tick.
        logger.warning("Device file %s does not exist yet", config.devices_file)

    container = create_container(config)
    try:
        scheduler = container.scheduler()
    except ValueError as e:
        logger.error("Invalid watchdog configuration: %s", e)
        return None

    logger.info(
        "Recovery %s (action=%s, threshold=%d, cooldown=%ss)",
        "enabled" if config.recovery_enabled else "disabled",
        config.recovery_action,
        config.recovery_threshold,
        f"{config.recovery_cooldown:g}",
    )
    if config.recovery_action == RecoveryAction.FALLBACK_SCENE and not config.fallback_scene:
        logger.warning(
            "Recovery action is fallback_scene but WATCHDOG_FALLBACK_SCENE is not set; "
            "devices without their own fallback_scene cannot be recovered"
        )

    return BootstrapContext(config=config, container=container, scheduler=scheduler)


__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
]
