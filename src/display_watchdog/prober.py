"""Health prober for networked display devices.

A probe is a single bounded liveness check against one device. The prober
holds no state and performs no logging: every outcome is returned as a
``ProbeResult`` so that logging volume is decided centrally by the scheduler.

Ordinary network failures (connection refused, timeout, non-2xx status,
device-level error codes) never raise. Only an address that cannot be turned
into a request raises ``InvalidAddressError``.

Probe request:
    Pixoo-style devices expose a single JSON command endpoint. The probe issues
    ``POST http://{address}/post`` with ``{"Command": "Channel/GetAllConf"}``,
    a read-only command every firmware revision answers. A JSON reply with a
    non-zero ``error_code`` counts as a failure; a reply that is not JSON at
    all still proves the device is reachable.

Usage:
    prober = HttpProber()
    result = await prober.probe("192.168.1.50", timeout_ms=2000)
    if not result.reachable:
        ...
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from display_watchdog.errors import InvalidAddressError
from display_watchdog.types import ProbeResult

PROBE_PATH = "/post"
"""Command endpoint path on Pixoo-style devices."""

PROBE_COMMAND: dict[str, Any] = {"Command": "Channel/GetAllConf"}
"""Read-only command used as the liveness check."""


@runtime_checkable
class Prober(Protocol):
    """Protocol for device liveness probes.

    Implementations must enforce ``timeout_ms`` themselves and must not raise
    for ordinary network failures.
    """

    async def probe(self, address: str, timeout_ms: float) -> ProbeResult:
        """Probe a device once.

        Args:
            address: Device network address.
            timeout_ms: Upper bound on the probe duration in milliseconds.

        Returns:
            ProbeResult with the reachability discriminant and latency.

        Raises:
            InvalidAddressError: If the address is unusable.
        """
        ...  # pragma: no cover


def build_device_url(address: str, path: str = PROBE_PATH) -> httpx.URL:
    """Build the command URL for a device address.

    Bare hosts (``"10.0.0.5"``, ``"pixoo.local:8080"``) get an ``http://``
    scheme. Addresses that already carry ``http://`` or ``https://`` are used
    as the base URL verbatim.

    Args:
        address: Device network address.
        path: Endpoint path to append.

    Returns:
        Absolute URL for the device endpoint.

    Raises:
        InvalidAddressError: If the address is empty or not a valid host.
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddressError(str(address), "address is empty")

    base = address.strip().rstrip("/")
    if any(ch.isspace() for ch in base):
        raise InvalidAddressError(address, "address contains whitespace")
    if "://" not in base:
        base = f"http://{base}"

    try:
        url = httpx.URL(f"{base}{path}")
    except httpx.InvalidURL as e:
        raise InvalidAddressError(address, str(e)) from e

    if url.scheme not in ("http", "https"):
        raise InvalidAddressError(address, f"unsupported scheme '{url.scheme}'")
    if not url.host:
        raise InvalidAddressError(address, "address has no host")
    return url


def device_error_detail(response: httpx.Response) -> str | None:
    """Return a device-level error description, or None if the reply is fine."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error_code = payload.get("error_code")
    # bool is an int subclass; a literal true/false is not an error code.
    if isinstance(error_code, int) and not isinstance(error_code, bool) and error_code != 0:
        return f"Device error code {error_code}"
    return None


class HttpProber:
    """Prober that issues one HTTP command against a Pixoo-style device.

    Attributes:
        client: Optional shared ``httpx.AsyncClient``. When omitted, every
            probe opens and closes its own client.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the prober.

        Args:
            client: Optional shared async client (useful for connection reuse
                and for injecting a mock transport in tests).
        """
        self.client = client

    async def probe(self, address: str, timeout_ms: float) -> ProbeResult:
        """Probe a device once, never waiting longer than ``timeout_ms``.

        Args:
            address: Device network address.
            timeout_ms: Upper bound on the probe duration in milliseconds.

        Returns:
            ProbeResult describing the outcome.

        Raises:
            InvalidAddressError: If the address is unusable.
        """
        url = build_device_url(address)
        timeout = timeout_ms / 1000.0

        start_time = time.perf_counter()
        try:
            # httpx enforces per-phase timeouts; wait_for bounds the whole exchange.
            response = await asyncio.wait_for(self._send(url, timeout), timeout=timeout)
            response.raise_for_status()
            error = device_error_detail(response)
        except TimeoutError:
            return ProbeResult.failure(self._elapsed_ms(start_time), "Probe timed out")
        except httpx.TimeoutException:
            return ProbeResult.failure(self._elapsed_ms(start_time), "Connection timed out")
        except httpx.HTTPStatusError as e:
            return ProbeResult.failure(
                self._elapsed_ms(start_time), f"HTTP {e.response.status_code}"
            )
        except httpx.RequestError as e:
            detail = str(e) or type(e).__name__
            return ProbeResult.failure(self._elapsed_ms(start_time), detail)
        except OSError as e:
            # Socket-level errors that escape httpx's own wrapping.
            return ProbeResult.failure(self._elapsed_ms(start_time), f"OS error: {e}")

        latency_ms = self._elapsed_ms(start_time)
        if error is not None:
            return ProbeResult.failure(latency_ms, error)
        return ProbeResult.success(latency_ms)

    async def _send(self, url: httpx.URL, timeout: float) -> httpx.Response:
        if self.client is not None:
            return await self.client.post(
                url, json=PROBE_COMMAND, timeout=httpx.Timeout(timeout)
            )
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            return await client.post(url, json=PROBE_COMMAND)

    async def aclose(self) -> None:
        """Close the shared client, if any."""
        if self.client is not None:
            await self.client.aclose()

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000


__all__ = [
    "HttpProber",
    "PROBE_COMMAND",
    "PROBE_PATH",
    "Prober",
    "build_device_url",
    "device_error_detail",
]
