"""Device registry and device control collaborators.

``FileDeviceRegistry`` reads the device list from a YAML file on every call,
so edits to the file are picked up on the next scheduler tick without a
restart. ``PixooDeviceControl`` sends the recovery commands understood by
Pixoo-style displays over their HTTP command endpoint.

Registry file format::

    devices:
      - id: kitchen
        name: Kitchen Display
        address: 192.168.1.50
        driver: real            # real | mock, default real
        watchdog:
          enabled: true         # default true
          action: soft_reset    # soft_reset | reboot | notify | fallback_scene, optional
          threshold: 5          # consecutive failures before recovery, optional
          fallback_scene: clock # scene for the fallback_scene action, optional

``id`` defaults to the address when omitted. Entries that cannot be parsed
are skipped with a warning; an entry with an empty address is kept so the
scheduler can report it as misconfigured.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol

import httpx
import yaml

from display_watchdog.errors import (
    DeviceControlError,
    InvalidAddressError,
    RegistryUnavailableError,
)
from display_watchdog.logging import get_logger
from display_watchdog.prober import PROBE_PATH, build_device_url, device_error_detail
from display_watchdog.types import DeviceRecord, DriverType, RecoveryAction

logger = get_logger(__name__)

# Channel indices on Pixoo firmware: 0 is the clock/startup face, 3 is the
# custom channel the dashboard renders into.
STARTUP_CHANNEL_INDEX = 0
CUSTOM_CHANNEL_INDEX = 3

# Scenes the device can show on its own, by channel index.
SCENE_CHANNELS = {"clock": 0, "cloud": 1, "visualizer": 2, "custom": 3}

DEFAULT_COMMAND_TIMEOUT = 5.0


class DeviceRegistry(Protocol):
    """Source of the current device list."""

    def list_devices(self) -> list[DeviceRecord]: ...  # pragma: no cover


class DeviceLookup(Protocol):
    """Resolves a device id to its current record."""

    def get_device(self, device_id: str) -> DeviceRecord | None: ...  # pragma: no cover


def _parse_device(entry: Any, index: int, source: Path) -> DeviceRecord | None:
    """Parse one registry entry, returning None (with a warning) if unusable."""
    if not isinstance(entry, dict):
        logger.warning("Skipping device #%d in %s: entry must be a mapping", index, source)
        return None

    address = entry.get("address", "")
    address = "" if address is None else str(address).strip()

    device_id = entry.get("id") or address
    if not device_id:
        logger.warning("Skipping device #%d in %s: no 'id' and no 'address'", index, source)
        return None
    device_id = str(device_id)

    driver = str(entry.get("driver", DriverType.REAL)).strip().lower()
    if not DriverType.is_valid(driver):
        logger.warning(
            "Skipping device '%s' in %s: unknown driver '%s'",
            device_id,
            source,
            driver,
        )
        return None

    watchdog = entry.get("watchdog") or {}
    if not isinstance(watchdog, dict):
        logger.warning(
            "Ignoring 'watchdog' of device '%s' in %s: must be a mapping", device_id, source
        )
        watchdog = {}

    enabled = watchdog.get("enabled", True)
    if not isinstance(enabled, bool):
        logger.warning(
            "Device '%s' in %s: watchdog.enabled must be a boolean, assuming true",
            device_id,
            source,
        )
        enabled = True

    action: RecoveryAction | None = None
    raw_action = watchdog.get("action")
    if raw_action is not None:
        normalized = str(raw_action).strip().lower().replace("-", "_")
        if RecoveryAction.is_valid(normalized):
            action = RecoveryAction(normalized)
        else:
            logger.warning(
                "Device '%s' in %s: unknown watchdog.action '%s', using the default",
                device_id,
                source,
                raw_action,
            )

    threshold = watchdog.get("threshold")
    if threshold is not None and (
        isinstance(threshold, bool) or not isinstance(threshold, int) or threshold <= 0
    ):
        logger.warning(
            "Device '%s' in %s: watchdog.threshold must be a positive integer, using the default",
            device_id,
            source,
        )
        threshold = None

    scene = watchdog.get("fallback_scene")
    if scene is not None:
        scene = str(scene).strip() or None

    return DeviceRecord(
        id=device_id,
        name=str(entry.get("name") or device_id),
        address=address,
        driver=DriverType(driver),
        watchdog_enabled=enabled,
        recovery_action=action,
        recovery_threshold=threshold,
        fallback_scene=scene,
    )


class FileDeviceRegistry:
    """Device registry backed by a YAML file.

    The file is re-read on every ``list_devices`` call.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def list_devices(self) -> list[DeviceRecord]:
        """Return the devices currently listed in the registry file.

        Raises:
            RegistryUnavailableError: If the file is missing, unreadable or
                not valid UTF-8 YAML.
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RegistryUnavailableError(f"Invalid YAML in {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise RegistryUnavailableError(f"Device file {self.path} is not valid UTF-8: {e}") from e
        except FileNotFoundError:
            raise RegistryUnavailableError(f"Device file not found: {self.path}") from None
        except OSError as e:
            raise RegistryUnavailableError(f"Cannot read device file {self.path}: {e}") from e

        if not data:
            return []
        if not isinstance(data, dict):
            raise RegistryUnavailableError(f"Device file {self.path} must contain a mapping")

        entries = data.get("devices") or []
        if not isinstance(entries, list):
            raise RegistryUnavailableError(f"'devices' must be a list in {self.path}")

        devices: list[DeviceRecord] = []
        seen: set[str] = set()
        for index, entry in enumerate(entries):
            device = _parse_device(entry, index, self.path)
            if device is None:
                continue
            if device.id in seen:
                logger.warning(
                    "Skipping duplicate device id '%s' in %s", device.id, self.path
                )
                continue
            seen.add(device.id)
            devices.append(device)
        return devices

    def get_device(self, device_id: str) -> DeviceRecord | None:
        """Return the record for ``device_id``, or None if it is not listed."""
        for device in self.list_devices():
            if device.id == device_id:
                return device
        return None


class PixooDeviceControl:
    """Recovery commands for Pixoo-style devices.

    Soft reset switches the device to its startup channel and back to the
    custom channel, which restarts the rendering pipeline without a reboot.
    Reboot issues ``Device/SysReboot``. A fallback scene is one of the
    device's built-in channels (``SCENE_CHANNELS``) or a channel index.
    """

    def __init__(
        self,
        lookup: DeviceLookup,
        client: httpx.AsyncClient | None = None,
        settle_seconds: float = 1.0,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        """Initialize the device control.

        Args:
            lookup: Resolves device ids to addresses.
            client: Optional shared async client.
            settle_seconds: Pause between the two soft-reset commands.
            command_timeout: Timeout for each HTTP command in seconds.
        """
        self.lookup = lookup
        self.client = client
        self.settle_seconds = settle_seconds
        self.command_timeout = command_timeout

    async def soft_reset(self, device_id: str) -> bool:
        """Restart the device's rendering channel.

        Returns:
            True if both channel switches were accepted.

        Raises:
            DeviceControlError: If the device is unknown or unreachable.
        """
        address = self._resolve(device_id, "soft_reset")
        if not await self._send(
            device_id, address, {"Command": "Channel/SetIndex", "SelectIndex": STARTUP_CHANNEL_INDEX}
        ):
            return False
        await asyncio.sleep(self.settle_seconds)
        return await self._send(
            device_id, address, {"Command": "Channel/SetIndex", "SelectIndex": CUSTOM_CHANNEL_INDEX}
        )

    async def reboot(self, device_id: str) -> bool:
        """Reboot the device.

        Raises:
            DeviceControlError: If the device is unknown or unreachable.
        """
        address = self._resolve(device_id, "reboot")
        return await self._send(device_id, address, {"Command": "Device/SysReboot"})

    async def switch_scene(self, device_id: str, scene: str) -> bool:
        """Switch the device to a built-in scene.

        Raises:
            DeviceControlError: If the scene is unknown, or the device is
                unknown or unreachable.
        """
        command = "Channel/SetIndex"
        name = scene.strip().lower()
        if name.isdigit():
            index = int(name)
        elif name in SCENE_CHANNELS:
            index = SCENE_CHANNELS[name]
        else:
            raise DeviceControlError(device_id, command, f"unknown scene '{scene}'")
        address = self._resolve(device_id, "switch_scene")
        return await self._send(device_id, address, {"Command": command, "SelectIndex": index})

    def _resolve(self, device_id: str, command: str) -> str:
        device = self.lookup.get_device(device_id)
        if device is None:
            raise DeviceControlError(device_id, command, "device is not registered")
        if not device.address:
            raise DeviceControlError(device_id, command, "device has no address")
        return device.address

    async def _send(self, device_id: str, address: str, payload: dict[str, Any]) -> bool:
        command = payload["Command"]
        try:
            url = build_device_url(address, PROBE_PATH)
        except InvalidAddressError as e:
            raise DeviceControlError(device_id, command, e.reason) from e

        try:
            if self.client is not None:
                response = await self.client.post(url, json=payload, timeout=self.command_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.command_timeout) as client:
                    response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise DeviceControlError(device_id, command, "request timed out") from e
        except httpx.RequestError as e:
            raise DeviceControlError(device_id, command, str(e) or type(e).__name__) from e

        if response.is_error:
            logger.debug(
                "%s rejected with HTTP %d",
                command,
                response.status_code,
                extra={"device_id": device_id, "diagnostic_tag": "recovery"},
            )
            return False

        error = device_error_detail(response)
        if error is not None:
            logger.debug(
                "%s rejected: %s",
                command,
                error,
                extra={"device_id": device_id, "diagnostic_tag": "recovery"},
            )
            return False
        return True


__all__ = [
    "CUSTOM_CHANNEL_INDEX",
    "DeviceLookup",
    "DeviceRegistry",
    "FileDeviceRegistry",
    "PixooDeviceControl",
    "SCENE_CHANNELS",
    "STARTUP_CHANNEL_INDEX",
]
