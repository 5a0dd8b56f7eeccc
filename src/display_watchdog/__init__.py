"""Display Watchdog - health monitoring and recovery for pixel display devices."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("display-watchdog")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from display_watchdog.app import main
from display_watchdog.recovery import RecoveryDispatcher
from display_watchdog.scheduler import WatchdogScheduler
from display_watchdog.tracker import DeviceFailureTracker

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "DeviceFailureTracker",
    "RecoveryDispatcher",
    "WatchdogScheduler",
    "main",
]
