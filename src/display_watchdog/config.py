"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from display_watchdog.types import RecoveryAction

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

# Probes must finish strictly inside one tick; a timeout at or above the
# interval is clamped to this fraction of it.
MAX_PROBE_TIMEOUT_FRACTION = 0.8


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation.
    """

    # Scheduling
    check_interval: float = 30.0  # seconds between tick starts
    probe_timeout_ms: int = 5000  # per-probe timeout, strictly below check_interval
    max_concurrent_probes: int = 8  # cap on in-flight probes per tick

    # Failure tracking
    summary_interval: float = 300.0  # seconds between "still offline" reports

    # Recovery
    recovery_enabled: bool = True
    recovery_threshold: int = 3  # consecutive failures before recovery is eligible
    recovery_cooldown: float = 600.0  # seconds between recovery attempts per device
    recovery_action: RecoveryAction = RecoveryAction.SOFT_RESET
    recovery_timeout: float = 15.0  # seconds allowed for one recovery action
    soft_reset_settle_seconds: float = 1.0  # pause between the two soft-reset commands
    fallback_scene: str = ""  # scene used by the fallback_scene action when a device sets none

    # Device registry
    devices_file: Path = Path("./devices.yaml")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    diagnostic_tags: str = ""

    # Status API
    status_enabled: bool = False
    status_host: str = "127.0.0.1"
    status_port: int = 8090

    @property
    def probe_timeout_seconds(self) -> float:
        """Per-probe timeout in seconds."""
        return self.probe_timeout_ms / 1000.0


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a strictly positive float with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive float, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_non_negative_float(value: str, name: str, default: float) -> float:
    """Parse a string as a non-negative float with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed non-negative float, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = float(value)
        if parsed < 0:
            logging.warning(
                "Invalid %s: %f is negative, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed port number (MIN_PORT-MAX_PORT), or the default if invalid.

    Logs a warning if the value is invalid or out of range.
    """
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Args:
        value: The string value to parse.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid WATCHDOG_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _validate_recovery_action(
    value: str, default: RecoveryAction = RecoveryAction.SOFT_RESET
) -> RecoveryAction:
    """Validate and normalize a recovery action string.

    Args:
        value: The recovery action string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated recovery action, or the default if invalid.
    """
    normalized = value.strip().lower()
    if not RecoveryAction.is_valid(normalized):
        logging.warning(
            "Invalid WATCHDOG_RECOVERY_ACTION: '%s' is not valid, using default '%s'. "
            "Valid values: %s",
            value,
            default,
            ", ".join(sorted(RecoveryAction.values())),
        )
        return default
    return RecoveryAction(normalized)


def clamp_probe_timeout(probe_timeout_ms: int, check_interval: float) -> int:
    """Keep the per-probe timeout strictly shorter than the tick interval.

    A slow device must never push a tick past the next tick boundary, so a
    timeout at or above the interval is reduced to
    ``MAX_PROBE_TIMEOUT_FRACTION`` of it.

    Args:
        probe_timeout_ms: Requested timeout in milliseconds.
        check_interval: Tick interval in seconds.

    Returns:
        A timeout in milliseconds that is below the interval.
    """
    interval_ms = check_interval * 1000
    if probe_timeout_ms < interval_ms:
        return probe_timeout_ms
    clamped = max(1, int(interval_ms * MAX_PROBE_TIMEOUT_FRACTION))
    logging.warning(
        "WATCHDOG_PROBE_TIMEOUT_MS=%d is not shorter than the %.1fs check interval, using %dms",
        probe_timeout_ms,
        check_interval,
        clamped,
    )
    return clamped


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Values are validated and defaults are used for invalid inputs:
    - Integer and duration values must be positive
    - LOG_LEVEL must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - RECOVERY_ACTION must be one of: soft_reset, reboot, notify, fallback_scene
    - PROBE_TIMEOUT_MS is clamped below CHECK_INTERVAL
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    check_interval = _parse_positive_float(
        os.getenv("WATCHDOG_CHECK_INTERVAL", "30"),
        "WATCHDOG_CHECK_INTERVAL",
        30.0,
    )
    probe_timeout_ms = clamp_probe_timeout(
        _parse_positive_int(
            os.getenv("WATCHDOG_PROBE_TIMEOUT_MS", "5000"),
            "WATCHDOG_PROBE_TIMEOUT_MS",
            5000,
        ),
        check_interval,
    )
    max_concurrent_probes = _parse_positive_int(
        os.getenv("WATCHDOG_MAX_CONCURRENT_PROBES", "8"),
        "WATCHDOG_MAX_CONCURRENT_PROBES",
        8,
    )

    summary_interval = _parse_positive_float(
        os.getenv("WATCHDOG_SUMMARY_INTERVAL", "300"),
        "WATCHDOG_SUMMARY_INTERVAL",
        300.0,
    )

    recovery_enabled = _parse_bool(os.getenv("WATCHDOG_RECOVERY_ENABLED", "true"))
    recovery_threshold = _parse_positive_int(
        os.getenv("WATCHDOG_RECOVERY_THRESHOLD", "3"),
        "WATCHDOG_RECOVERY_THRESHOLD",
        3,
    )
    recovery_cooldown = _parse_non_negative_float(
        os.getenv("WATCHDOG_RECOVERY_COOLDOWN", "600"),
        "WATCHDOG_RECOVERY_COOLDOWN",
        600.0,
    )
    recovery_action = _validate_recovery_action(
        os.getenv("WATCHDOG_RECOVERY_ACTION", "soft_reset"),
    )
    recovery_timeout = _parse_positive_float(
        os.getenv("WATCHDOG_RECOVERY_TIMEOUT", "15"),
        "WATCHDOG_RECOVERY_TIMEOUT",
        15.0,
    )
    soft_reset_settle_seconds = _parse_non_negative_float(
        os.getenv("WATCHDOG_SOFT_RESET_SETTLE", "1.0"),
        "WATCHDOG_SOFT_RESET_SETTLE",
        1.0,
    )

    log_level = _validate_log_level(os.getenv("WATCHDOG_LOG_LEVEL", "INFO"))
    log_json = _parse_bool(os.getenv("WATCHDOG_LOG_JSON", ""))

    status_enabled = _parse_bool(os.getenv("WATCHDOG_STATUS_ENABLED", ""))
    status_port = _parse_port(
        os.getenv("WATCHDOG_STATUS_PORT", "8090"),
        "WATCHDOG_STATUS_PORT",
        8090,
    )

    return Config(
        check_interval=check_interval,
        probe_timeout_ms=probe_timeout_ms,
        max_concurrent_probes=max_concurrent_probes,
        summary_interval=summary_interval,
        recovery_enabled=recovery_enabled,
        recovery_threshold=recovery_threshold,
        recovery_cooldown=recovery_cooldown,
        recovery_action=recovery_action,
        recovery_timeout=recovery_timeout,
        soft_reset_settle_seconds=soft_reset_settle_seconds,
        fallback_scene=os.getenv("WATCHDOG_FALLBACK_SCENE", "").strip(),
        devices_file=Path(os.getenv("WATCHDOG_DEVICES_FILE", "./devices.yaml")),
        log_level=log_level,
        log_json=log_json,
        diagnostic_tags=os.getenv("WATCHDOG_DIAGNOSTIC_TAGS", ""),
        status_enabled=status_enabled,
        status_host=os.getenv("WATCHDOG_STATUS_HOST", "127.0.0.1"),
        status_port=status_port,
    )
