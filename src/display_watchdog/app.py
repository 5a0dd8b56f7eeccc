"""Core application runner for the display watchdog.

This module coordinates:
- Status API server lifecycle
- The scheduler loop (continuous mode)
- Single-tick execution (--once mode)

Status-less Operation Mode:
    The status API is optional. When it fails to start (missing dependencies,
    port in use, or any other error) the watchdog logs a warning and keeps
    monitoring devices without it.
"""

from __future__ import annotations

import argparse
import asyncio

from display_watchdog.bootstrap import BootstrapContext, bootstrap
from display_watchdog.cli import parse_args
from display_watchdog.logging import get_logger
from display_watchdog.shutdown import create_shutdown_handler
from display_watchdog.status import StatusServer

logger = get_logger(__name__)


def start_status_server(context: BootstrapContext) -> StatusServer | None:
    """Start the status API server if enabled.

    Args:
        context: Bootstrap context with configuration and tracker.

    Returns:
        StatusServer if started, None if disabled or startup failed.
    """
    config = context.config
    if not config.status_enabled:
        logger.debug("Status API is disabled via configuration")
        return None

    extra = {"host": config.status_host, "port": config.status_port}
    try:
        from display_watchdog.status import create_app

        status_app = create_app(context.tracker, context.scheduler, context.registry)
        status_server = StatusServer(host=config.status_host, port=config.status_port)
        status_server.start(status_app)
        return status_server
    except ImportError as e:
        logger.warning(
            "Status API startup failed: dependencies not available. "
            "Watchdog will continue without it. Error: %s",
            e,
            extra=extra,
        )
        return None
    except OSError as e:
        logger.warning(
            "Status API startup failed: network/OS error. "
            "Watchdog will continue without it. Error: %s",
            e,
            extra=extra,
        )
        return None
    except RuntimeError as e:
        logger.warning(
            "Status API startup failed: runtime error. "
            "Watchdog will continue without it. Error: %s",
            e,
            extra=extra,
        )
        return None
    except Exception as e:
        # INTENTIONAL BROAD CATCH: the status API is optional and must never
        # stop device monitoring.
        logger.warning(
            "Status API startup failed: unexpected error (%s). "
            "Watchdog will continue without it. Error: %s",
            type(e).__name__,
            e,
            extra={**extra, "error_type": type(e).__name__},
        )
        return None


def run_once_mode(context: BootstrapContext) -> int:
    """Run a single watchdog tick.

    Args:
        context: Bootstrap context.

    Returns:
        Exit code: 0 if every probed device is healthy, 1 otherwise.
    """
    logger.info("Running single check (--once mode)")
    report = asyncio.run(context.scheduler.run_once())
    logger.info(
        "Completed: %d probed, %d unhealthy, %d skipped",
        report.probed,
        report.unhealthy,
        report.skipped,
    )
    if report.registry_error or report.abandoned or report.unhealthy:
        return 1
    return 0


def run_continuous_mode(context: BootstrapContext) -> int:
    """Run the scheduler loop until SIGINT or SIGTERM.

    Args:
        context: Bootstrap context.

    Returns:
        Exit code: 0 for success.
    """
    scheduler = context.scheduler
    shutdown_handler = create_shutdown_handler(on_shutdown=scheduler.stop)
    try:
        asyncio.run(scheduler.run())
    finally:
        shutdown_handler.restore_signal_handlers()
    return 0


def run_application(parsed: argparse.Namespace, context: BootstrapContext) -> int:
    """Run the application with the given context.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    status_server = None if parsed.once else start_status_server(context)

    try:
        if parsed.once:
            return run_once_mode(context)
        return run_continuous_mode(context)
    finally:
        if status_server is not None:
            status_server.shutdown()


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    context = bootstrap(parsed)
    if context is None:
        return 1

    return run_application(parsed, context)


__all__ = [
    "main",
    "run_application",
    "run_continuous_mode",
    "run_once_mode",
    "start_status_server",
]
