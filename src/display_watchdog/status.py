"""Read-only HTTP status API for device health.

Endpoints:
- /health/live: Liveness probe for the watchdog process itself
- /api/devices: Every registered device with its monitoring flags and health
- /api/devices/health: Health snapshots of all tracked devices
- /api/devices/{device_id}/health: Health snapshot of one device (404 if unknown)

The API only reads from the failure tracker and the device registry. It runs
under uvicorn in a background thread via ``StatusServer`` so it can sit next to
the scheduler's event loop without sharing it.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, HTTPException

from display_watchdog.devices import DeviceRegistry
from display_watchdog.errors import RegistryUnavailableError
from display_watchdog.logging import get_logger
from display_watchdog.tracker import DeviceFailureTracker
from display_watchdog.types import HealthStatus

if TYPE_CHECKING:
    import uvicorn
    from starlette.types import ASGIApp

    from display_watchdog.scheduler import WatchdogScheduler

logger = get_logger(__name__)


def create_routes(
    tracker: DeviceFailureTracker,
    scheduler: WatchdogScheduler | None = None,
    registry: DeviceRegistry | None = None,
) -> APIRouter:
    """Create the status API routes.

    Args:
        tracker: Failure tracker to read health snapshots from.
        scheduler: Optional scheduler, used to report the tick count.
        registry: Optional device registry, needed for ``/api/devices``.

    Returns:
        An APIRouter with all status routes configured.
    """
    router = APIRouter()

    @router.get("/health/live")
    async def health_live() -> dict[str, Any]:
        """Liveness probe endpoint.

        Returns:
            JSON with liveness status.
        """
        body: dict[str, Any] = {"status": "healthy", "timestamp": time.time()}
        if scheduler is not None:
            body["ticks"] = scheduler.tick_count
            body["stopping"] = scheduler.stop_requested
        return body

    @router.get("/api/devices")
    async def list_devices() -> dict[str, Any]:
        """Every registered device, including disabled and mock ones.

        ``enabled`` is the device's watchdog flag; ``monitoring`` is true only
        for devices the scheduler actually probes.

        Raises:
            HTTPException: 503 if no registry is configured or it cannot be read.
        """
        if registry is None:
            raise HTTPException(status_code=503, detail="Device registry is not configured")
        try:
            devices = registry.list_devices()
        except RegistryUnavailableError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e

        snapshots = tracker.get_all_health()
        listing = []
        for device in devices:
            snapshot = snapshots.get(device.id)
            listing.append(
                {
                    "device_id": device.id,
                    "name": device.name,
                    "address": device.address,
                    "driver": device.driver.value,
                    "enabled": device.watchdog_enabled,
                    "monitoring": device.probeable,
                    "recovery_action": (
                        device.recovery_action.value if device.recovery_action else None
                    ),
                    "health": snapshot.to_dict() if snapshot is not None else None,
                }
            )
        return {
            "timestamp": time.time(),
            "total": len(listing),
            "monitoring": sum(1 for d in listing if d["monitoring"]),
            "devices": listing,
        }

    @router.get("/api/devices/health")
    async def all_device_health() -> dict[str, Any]:
        """Health of every tracked device.

        Example response:
            {
                "timestamp": 1706472123.456,
                "unhealthy": 1,
                "devices": {
                    "kitchen": {"device_id": "kitchen", "status": "unhealthy", ...}
                }
            }
        """
        snapshots = tracker.get_all_health()
        return {
            "timestamp": time.time(),
            "unhealthy": sum(1 for s in snapshots.values() if s.status == HealthStatus.UNHEALTHY),
            "devices": {device_id: s.to_dict() for device_id, s in sorted(snapshots.items())},
        }

    @router.get("/api/devices/{device_id}/health")
    async def device_health(device_id: str) -> dict[str, Any]:
        """Health of a single device.

        Raises:
            HTTPException: 404 if the device has never been probed.
        """
        snapshot = tracker.get_health(device_id)
        if snapshot is None:
            raise HTTPException(
                status_code=404,
                detail=f"No health data for device: {device_id}",
            )
        return snapshot.to_dict()

    return router


def create_app(
    tracker: DeviceFailureTracker,
    scheduler: WatchdogScheduler | None = None,
    registry: DeviceRegistry | None = None,
) -> FastAPI:
    """Create the FastAPI status application."""
    app = FastAPI(
        title="Display Watchdog",
        description="Device health status for the display watchdog",
    )
    app.include_router(create_routes(tracker, scheduler, registry))
    return app


class StatusServer:
    """Background uvicorn server for the status API.

    Example:
        server = StatusServer(host="127.0.0.1", port=8090)
        server.start(create_app(tracker))
        # ... run the scheduler ...
        server.shutdown()
    """

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._server is not None and self._server.started

    def start(self, app: ASGIApp, startup_timeout: float = 5.0) -> None:
        """Start the server in a background thread.

        Blocks until uvicorn reports it has started, or ``startup_timeout``
        seconds have passed.
        """
        import uvicorn

        config = uvicorn.Config(
            app=app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        server = self._server

        self._thread = threading.Thread(
            target=server.run,
            name="status-server",
            daemon=True,
        )
        self._thread.start()

        start_wait = time.monotonic()
        while not server.started:
            if time.monotonic() - start_wait > startup_timeout:
                logger.warning("Status server startup timed out, continuing anyway")
                break
            if not self._thread.is_alive():
                logger.warning("Status server exited during startup")
                break
            time.sleep(0.05)

        if server.started:
            logger.info("Status API listening at http://%s:%d", self._host, self._port)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Signal the server to stop and wait for its thread."""
        if self._server is None:
            return
        logger.debug("Shutting down status server...")
        self._server.should_exit = True

        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Status server thread did not terminate gracefully")


__all__ = [
    "StatusServer",
    "create_app",
    "create_routes",
]
