"""Watchdog scheduler: the periodic driver loop.

Each tick:

1. Read a snapshot of the device registry.
2. Probe every monitored device concurrently, bounded by
   ``max_concurrent_probes``. Each probe has its own timeout, strictly shorter
   than the tick interval.
3. Once *all* probes have finished, feed the results to the failure tracker
   and emit exactly one event per non-``NONE`` transition.
4. Consult the recovery dispatcher for devices that are unhealthy. Devices
   whose address could not be probed this tick are left alone.
5. Sleep until the next tick boundary.

Only one tick runs at a time, so a device never has two outstanding probes.
Results are applied synchronously after the probe phase, so ``stop()`` either
abandons a tick before any state has changed or lets application finish.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from display_watchdog.devices import DeviceRegistry
from display_watchdog.errors import (
    InvalidAddressError,
    RegistryUnavailableError,
    TrackerInputError,
)
from display_watchdog.events import EventSink
from display_watchdog.logging import get_logger, log_tick_summary
from display_watchdog.prober import Prober
from display_watchdog.recovery import RecoveryDispatcher
from display_watchdog.tracker import DeviceFailureTracker
from display_watchdog.types import (
    DeviceRecord,
    HealthSnapshot,
    HealthStatus,
    ProbeResult,
    RecoveryOutcome,
    RecoveryResult,
    Severity,
    Transition,
    WatchdogEvent,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Extra time granted on top of the probe timeout before the scheduler gives up
# on a prober that does not honour its own deadline.
PROBE_GUARD_SECONDS = 0.5


@dataclass
class TickReport:
    """Summary of one scheduler tick.

    Attributes:
        probed: Devices whose probe completed.
        skipped: Devices not probed (disabled, mock driver or misconfigured).
        unhealthy: Devices unhealthy after the tick.
        recoveries: Recovery actions dispatched during the tick.
        registry_error: True if the registry could not be read.
        abandoned: True if the tick stopped before completing.
        duration_seconds: Wall-clock duration of the tick.
    """

    probed: int = 0
    skipped: int = 0
    unhealthy: int = 0
    recoveries: int = 0
    registry_error: bool = False
    abandoned: bool = False
    duration_seconds: float = 0.0


def format_duration(seconds: float) -> str:
    """Format a duration as a compact human-readable string, e.g. ``1h 5m``."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class WatchdogScheduler:
    """Drives periodic probing, tracking and recovery for all devices.

    Example:
        scheduler = WatchdogScheduler(registry, prober, tracker, dispatcher, sink)
        asyncio.run(scheduler.run())  # until scheduler.stop() is called
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        prober: Prober,
        tracker: DeviceFailureTracker,
        dispatcher: RecoveryDispatcher,
        event_sink: EventSink,
        check_interval: float = 30.0,
        probe_timeout_ms: float = 5000,
        max_concurrent_probes: int = 8,
        time_func: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler.

        Args:
            registry: Source of the device list, read once per tick.
            prober: Performs the liveness probes.
            tracker: Failure tracker that owns the health table.
            dispatcher: Recovery dispatcher.
            event_sink: Receives one event per state change.
            check_interval: Seconds between tick starts.
            probe_timeout_ms: Per-probe timeout; must be below the interval.
            max_concurrent_probes: Maximum probes in flight at once.
            time_func: Clock used for health timestamps.

        Raises:
            ValueError: If the timing parameters are inconsistent.
        """
        if check_interval <= 0:
            raise ValueError(f"check_interval must be positive, got {check_interval}")
        if not 0 < probe_timeout_ms < check_interval * 1000:
            raise ValueError(
                f"probe_timeout_ms must be positive and below the check interval, "
                f"got {probe_timeout_ms}ms for a {check_interval}s interval"
            )
        if max_concurrent_probes <= 0:
            raise ValueError(
                f"max_concurrent_probes must be positive, got {max_concurrent_probes}"
            )

        self.registry = registry
        self.prober = prober
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.event_sink = event_sink
        self.check_interval = check_interval
        self.probe_timeout_ms = probe_timeout_ms
        self.max_concurrent_probes = max_concurrent_probes
        self._time = time_func

        self._stop_event = asyncio.Event()
        self._stop_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._active_task: asyncio.Task[Any] | None = None
        # Registry entries already reported as misconfigured, keyed by id.
        self._config_warnings: dict[str, DeviceRecord] = {}
        self._tick_count = 0

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def tick_count(self) -> int:
        """Number of ticks started so far."""
        return self._tick_count

    def stop(self) -> None:
        """Stop the loop and cancel in-flight probes.

        Safe to call from a signal handler or from another thread.
        """
        self._stop_requested = True
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._cancel_active)
        except RuntimeError:
            # Loop closed between the check and the call.
            pass

    def _cancel_active(self) -> None:
        self._stop_event.set()
        if self._active_task is not None and not self._active_task.done():
            self._active_task.cancel()

    async def run(self) -> None:
        """Run ticks at a fixed interval until ``stop()`` is called."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        if self._stop_requested:
            self._stop_event.set()

        logger.info(
            "Watchdog started: checking every %ss, probe timeout %sms, max %d concurrent probes",
            f"{self.check_interval:g}",
            f"{self.probe_timeout_ms:g}",
            self.max_concurrent_probes,
        )

        next_tick = loop.time()
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except (OSError, TimeoutError) as e:
                logger.error(
                    "Error in watchdog tick due to I/O or timeout: %s",
                    e,
                    extra={"error_type": type(e).__name__},
                )
            except RuntimeError as e:
                logger.error(
                    "Error in watchdog tick due to runtime error: %s",
                    e,
                    extra={"error_type": type(e).__name__},
                )
            except Exception as e:
                # INTENTIONAL BROAD CATCH: one bad tick must not end monitoring;
                # the next tick starts from a fresh registry snapshot.
                logger.exception(
                    "Unexpected error in watchdog tick: %s",
                    e,
                    extra={"error_type": type(e).__name__},
                )

            next_tick += self.check_interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self.check_interval) + 1
                logger.debug(
                    "Tick overran the %ss interval, skipping %d boundary(ies)",
                    f"{self.check_interval:g}",
                    missed,
                    extra={"diagnostic_tag": "tick"},
                )
                next_tick += missed * self.check_interval

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - loop.time())
            except TimeoutError:
                pass

        logger.info("Watchdog stopped after %d tick(s)", self._tick_count)

    async def run_once(self) -> TickReport:
        """Run a single tick.

        Returns:
            TickReport describing what happened.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        self._tick_count += 1
        started = time.perf_counter()
        report = TickReport()

        try:
            devices = self.registry.list_devices()
        except RegistryUnavailableError as e:
            report.registry_error = True
            self._emit(
                WatchdogEvent(
                    severity=Severity.ERROR,
                    message=f"Device registry unavailable: {e}",
                    metadata={"error": str(e)},
                )
            )
            return self._finish(report, started)

        targets = self._select_targets(devices, report)

        try:
            results, misconfigured = await self._cancellable(self._probe_all(targets))
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            report.abandoned = True
            logger.info("Tick abandoned: shutdown requested during probing")
            return self._finish(report, started)

        for device, error in misconfigured:
            report.skipped += 1
            self._report_misconfigured(device, str(error))

        try:
            self._apply_results(targets, results)
        except TrackerInputError as e:
            report.abandoned = True
            logger.error(
                "Abandoning tick after rejected tracker input: %s",
                e,
                extra={"error_type": type(e).__name__},
            )
            return self._finish(report, started)
        report.probed = len(results)

        try:
            skip = {device.id for device, _ in misconfigured}
            report.recoveries = await self._cancellable(self._recover_all(targets, skip))
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            report.abandoned = True
            logger.info("Tick abandoned: shutdown requested during recovery")

        return self._finish(report, started)

    def _finish(self, report: TickReport, started: float) -> TickReport:
        report.unhealthy = len(self.tracker.unhealthy_device_ids())
        report.duration_seconds = time.perf_counter() - started
        log_tick_summary(
            logger, report.probed, report.unhealthy, report.skipped, report.duration_seconds
        )
        return report

    async def _cancellable(self, coro: Awaitable[T]) -> T:
        """Run ``coro`` as the task ``stop()`` cancels."""
        if self._stop_requested:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise asyncio.CancelledError()
        task = asyncio.ensure_future(coro)
        self._active_task = task
        try:
            return await task
        finally:
            self._active_task = None

    def _select_targets(self, devices: list[DeviceRecord], report: TickReport) -> list[DeviceRecord]:
        """Return the devices to probe this tick and drop state of the rest."""
        targets: list[DeviceRecord] = []
        for device in devices:
            if device.probeable:
                targets.append(device)
            else:
                report.skipped += 1
                logger.debug(
                    "Skipping %s: %s",
                    device.id,
                    "watchdog disabled" if not device.watchdog_enabled else "mock driver",
                    extra={"device_id": device.id, "diagnostic_tag": "tick"},
                )

        monitored = {device.id for device in targets}
        self.tracker.retain_only(monitored)
        for device_id in list(self._config_warnings):
            if device_id not in monitored:
                del self._config_warnings[device_id]
        return targets

    async def _probe_all(
        self, targets: list[DeviceRecord]
    ) -> tuple[dict[str, ProbeResult], list[tuple[DeviceRecord, InvalidAddressError]]]:
        results: dict[str, ProbeResult] = {}
        misconfigured: list[tuple[DeviceRecord, InvalidAddressError]] = []
        semaphore = asyncio.Semaphore(self.max_concurrent_probes)

        async def probe_one(device: DeviceRecord) -> None:
            if not device.address:
                misconfigured.append((device, InvalidAddressError("", "address is empty")))
                return
            async with semaphore:
                try:
                    results[device.id] = await self._guarded_probe(device)
                except InvalidAddressError as e:
                    misconfigured.append((device, e))

        async with asyncio.TaskGroup() as tg:
            for device in targets:
                tg.create_task(probe_one(device))
        return results, misconfigured

    async def _guarded_probe(self, device: DeviceRecord) -> ProbeResult:
        guard = self.probe_timeout_ms / 1000.0 + PROBE_GUARD_SECONDS
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self.prober.probe(device.address, self.probe_timeout_ms), timeout=guard
            )
        except InvalidAddressError:
            raise
        except TimeoutError:
            return ProbeResult.failure(
                (time.perf_counter() - started) * 1000, "Probe exceeded its deadline"
            )
        except Exception as e:
            # INTENTIONAL BROAD CATCH: a prober bug on one device must not
            # cancel the probes of every other device in the task group.
            logger.with_context(device_id=device.id).debug(
                "Prober raised %s",
                type(e).__name__,
                exc_info=True,
                extra={"diagnostic_tag": "probe"},
            )
            return ProbeResult.failure(
                (time.perf_counter() - started) * 1000, f"{type(e).__name__}: {e}"
            )

    def _apply_results(self, targets: list[DeviceRecord], results: dict[str, ProbeResult]) -> None:
        now = self._time()
        for device in targets:
            result = results.get(device.id)
            if result is None:
                continue
            if device.id in self._config_warnings:
                del self._config_warnings[device.id]
                logger.with_context(device_id=device.id, device_name=device.name).info(
                    "Device %s configuration is valid again", device.name
                )
            previous = self.tracker.get_health(device.id)
            transition = self.tracker.record(device.id, result, now)
            if transition != Transition.NONE:
                self._emit_transition(device, transition, previous, result, now)

    def _emit_transition(
        self,
        device: DeviceRecord,
        transition: Transition,
        previous: HealthSnapshot | None,
        result: ProbeResult,
        now: float,
    ) -> None:
        current = self.tracker.get_health(device.id)
        metadata: dict[str, Any] = {"transition": transition.value, "address": device.address}

        if transition == Transition.BECAME_UNHEALTHY:
            metadata["error"] = result.error_detail
            severity = Severity.WARNING
            message = f"Device {device.name} went offline: {result.error_detail}"

        elif transition == Transition.STILL_UNHEALTHY_SUMMARY_DUE:
            first_failure_at = now
            failures = 0
            if current is not None:
                failures = current.consecutive_failures
                if current.first_failure_at is not None:
                    first_failure_at = current.first_failure_at
            offline_for = now - first_failure_at
            metadata.update(
                offline_seconds=round(offline_for, 1),
                consecutive_failures=failures,
                error=result.error_detail,
            )
            severity = Severity.WARNING
            message = (
                f"Device {device.name} still offline for {format_duration(offline_for)} "
                f"({failures} failed checks, last error: {result.error_detail})"
            )

        else:
            metadata["latency_ms"] = round(result.latency_ms, 2)
            severity = Severity.INFO
            if previous is not None and previous.first_failure_at is not None:
                offline_for = now - previous.first_failure_at
                metadata.update(
                    offline_seconds=round(offline_for, 1),
                    failed_checks=previous.consecutive_failures,
                )
                message = (
                    f"Device {device.name} back online after {format_duration(offline_for)} "
                    f"({previous.consecutive_failures} failed checks)"
                )
            else:
                message = f"Device {device.name} back online"

        self._emit(
            WatchdogEvent(
                severity=severity,
                message=message,
                device_id=device.id,
                device_name=device.name,
                metadata=metadata,
            )
        )

    def _report_misconfigured(self, device: DeviceRecord, reason: str) -> None:
        if self._config_warnings.get(device.id) == device:
            return
        self._config_warnings[device.id] = device
        self._emit(
            WatchdogEvent(
                severity=Severity.WARNING,
                message=f"Device {device.name} skipped: {reason}",
                device_id=device.id,
                device_name=device.name,
                metadata={"address": device.address, "error": reason},
            )
        )

    async def _recover_all(self, targets: list[DeviceRecord], skip: set[str]) -> int:
        now = self._time()
        candidates: list[tuple[DeviceRecord, HealthSnapshot]] = []
        for device in targets:
            if device.id in skip:
                continue
            health = self.tracker.get_health(device.id)
            if health is None or health.status != HealthStatus.UNHEALTHY:
                continue
            if not self.dispatcher.enabled or not self.dispatcher.is_eligible(
                health, now, device.recovery_threshold
            ):
                continue
            candidates.append((device, health))

        if not candidates:
            return 0

        outcomes: list[tuple[DeviceRecord, HealthSnapshot, RecoveryResult]] = []

        async def recover_one(device: DeviceRecord, health: HealthSnapshot) -> None:
            result = await self.dispatcher.maybe_recover(
                device.id,
                health,
                now,
                action=device.recovery_action,
                recovery_threshold=device.recovery_threshold,
                scene=device.fallback_scene,
            )
            outcomes.append((device, health, result))

        async with asyncio.TaskGroup() as tg:
            for device, health in candidates:
                tg.create_task(recover_one(device, health))

        dispatched = 0
        for device, health, result in outcomes:
            if result.attempted:
                dispatched += 1
                self._emit_recovery(device, health, result)
        return dispatched

    def _emit_recovery(
        self, device: DeviceRecord, health: HealthSnapshot, result: RecoveryResult
    ) -> None:
        action = result.action.value if result.action else None
        metadata: dict[str, Any] = {
            "action": action,
            "outcome": result.outcome.value,
            "consecutive_failures": health.consecutive_failures,
        }
        if result.detail:
            metadata["error"] = result.detail

        if result.outcome == RecoveryOutcome.SUCCEEDED:
            severity = Severity.INFO
            message = f"Recovery action {action} sent to {device.name}"
        elif result.outcome == RecoveryOutcome.NOTIFIED:
            severity = Severity.WARNING
            message = (
                f"Device {device.name} needs attention: "
                f"{health.consecutive_failures} consecutive failed checks"
            )
        else:
            severity = Severity.WARNING
            message = f"Recovery action {action} failed for {device.name}: {result.detail}"

        self._emit(
            WatchdogEvent(
                severity=severity,
                message=message,
                device_id=device.id,
                device_name=device.name,
                metadata=metadata,
            )
        )

    def _emit(self, event: WatchdogEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            # INTENTIONAL BROAD CATCH: a failing sink must not break the loop.
            logger.exception(
                "Event sink failed to emit event: %s",
                e,
                extra={"device_id": event.device_id, "error_type": type(e).__name__},
            )


__all__ = [
    "PROBE_GUARD_SECONDS",
    "TickReport",
    "WatchdogScheduler",
    "format_duration",
]
