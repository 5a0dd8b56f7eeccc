"""Command-line interface argument parsing for the display watchdog.

This module provides the CLI argument parser that handles:
- Single-tick mode (--once)
- Check interval override
- Log level override
- Environment file selection
- Device file override
"""

from __future__ import annotations

import argparse
from pathlib import Path


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a number") from None
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not positive")
    return parsed


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - once: Whether to run a single tick and exit
        - interval: Check interval in seconds
        - log_level: Logging level
        - env_file: Path to .env file
        - devices_file: Path to the device registry file
    """
    parser = argparse.ArgumentParser(
        prog="display-watchdog",
        description="Display Watchdog - health monitoring and recovery for pixel displays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check and exit (exit code 1 if any device is unhealthy)",
    )

    parser.add_argument(
        "--interval",
        type=_positive_float,
        default=None,
        help="Check interval in seconds (overrides WATCHDOG_CHECK_INTERVAL)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides WATCHDOG_LOG_LEVEL)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    parser.add_argument(
        "--devices-file",
        type=Path,
        default=None,
        help="Path to the device registry YAML (overrides WATCHDOG_DEVICES_FILE)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
