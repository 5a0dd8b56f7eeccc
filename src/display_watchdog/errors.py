"""Exception hierarchy for the display watchdog.

The watchdog distinguishes four kinds of failure:

- Transient network failures are *not* exceptions. The prober folds them into
  a ``ProbeResult`` with ``reachable=False`` so the tracker stays a pure
  function of its inputs.
- Configuration errors (a registry entry without a usable address) skip the
  device for the current tick.
- Contract errors (the tracker fed malformed input) abandon the current tick.
- Collaborator outages (registry unreachable, device control failing) are
  reported as events and retried later.
"""

from __future__ import annotations


class WatchdogError(Exception):
    """Base class for all display watchdog errors."""

    pass


class InvalidAddressError(WatchdogError):
    """Raised by a prober when a device address cannot be turned into a request.

    This is a programming/configuration error rather than a network failure,
    so it is signaled separately from an unreachable device.
    """

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Invalid device address {address!r}: {reason}")


class TrackerInputError(WatchdogError):
    """Raised when the failure tracker is invoked with malformed input.

    The tracker validates before mutating, so raising this leaves every
    ``HealthState`` untouched.
    """

    pass


class RegistryUnavailableError(WatchdogError):
    """Raised when the device registry cannot be read."""

    pass


class DeviceControlError(WatchdogError):
    """Raised when a device control command fails at the transport level."""

    def __init__(self, device_id: str, command: str, detail: str) -> None:
        self.device_id = device_id
        self.command = command
        self.detail = detail
        super().__init__(f"{command} failed for {device_id}: {detail}")


__all__ = [
    "DeviceControlError",
    "InvalidAddressError",
    "RegistryUnavailableError",
    "TrackerInputError",
    "WatchdogError",
]
