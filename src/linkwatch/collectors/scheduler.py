"""Steady-state polling scheduler.

Every tick polls each device that has an enabled monitor. Devices are
independent work units bounded by a semaphore; the loop never waits for them,
and a device whose previous unit is still queued or running skips the tick.
Within a unit the order is fetch, sample, persist, cache, evaluate.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    ConfigurationError,
    DeduplicationInvariantViolation,
    PersistenceError,
    TransientDeviceError,
)
from ..core.logging import get_logger
from ..db.provider import Repositories
from ..models.device import Device
from ..services.alert_engine import AlertEngine
from ..services.interface_cache import InterfaceCache
from ..services.rate_sampler import RateSampler
from ..services.timeseries import TimeSeriesStore
from .base import DeviceClientRegistry

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tick_slot(now: datetime, interval: float) -> datetime:
    """Wall clock floored to the poll interval.

    Instances polling the same tick produce the same sample key.
    """
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % int(interval), tz=timezone.utc)


@dataclass
class DevicePollHealth:
    """In-memory polling health of one device."""

    consecutive_failures: int = 0
    skipped_ticks: int = 0
    last_attempt: datetime | None = None
    last_success: datetime | None = None
    last_error: str | None = None


@dataclass
class PollOutcome:
    """What one device unit did on one tick."""

    device_id: str
    status: str
    samples_written: int = 0
    alerts_opened: int = 0
    evaluated: bool = False


class PollingScheduler:
    """Drives the steady polling cadence."""

    def __init__(
        self,
        repos: Repositories,
        clients: DeviceClientRegistry,
        store: TimeSeriesStore,
        cache: InterfaceCache,
        alerts: AlertEngine,
        settings: Settings | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repos = repos
        self.clients = clients
        self.store = store
        self.cache = cache
        self.alerts = alerts
        self.settings = settings or default_settings
        self.sampler = RateSampler(max_gap_seconds=self.settings.rate_max_gap_seconds)
        self.health: dict[str, DevicePollHealth] = {}
        self.ticks = 0
        self.last_tick: datetime | None = None
        self._now = now
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_polls)
        self._in_flight: dict[str, asyncio.Task] = {}
        self._running = False
        self._poll_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running and self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Start the polling loop."""
        self._running = True
        logger.info(
            "polling_scheduler_starting",
            interval=self.settings.poll_interval,
            max_concurrent=self.settings.max_concurrent_polls,
        )
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop the loop and cancel in-flight device units."""
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        pending = [t for t in self._in_flight.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()
        logger.info("polling_scheduler_stopped")

    async def _poll_loop(self) -> None:
        """Fixed-cadence loop; a slow tick shortens the next sleep."""
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self.run_tick()
            except Exception as e:
                logger.error("poll_loop_error", error=str(e))
            elapsed = loop.time() - started
            await asyncio.sleep(max(self.settings.poll_interval - elapsed, 0))

    async def run_tick(self, now: datetime | None = None) -> list[asyncio.Task]:
        """Launch one unit per pollable device and return the launched tasks."""
        now = now or self._now()
        slot = tick_slot(now, self.settings.poll_interval)
        self.ticks += 1
        self.last_tick = now

        async with self.repos.devices() as repo:
            devices = await repo.find_pollable()

        launched = []
        for device in devices:
            health = self.health.setdefault(device.id, DevicePollHealth())
            previous = self._in_flight.get(device.id)
            if previous is not None and not previous.done():
                health.skipped_ticks += 1
                logger.warning(
                    "device_poll_skipped",
                    device_id=device.id,
                    name=device.name,
                    skipped_ticks=health.skipped_ticks,
                )
                continue
            task = asyncio.create_task(self._run_unit(device, slot), name=f"poll:{device.id}")
            self._in_flight[device.id] = task
            task.add_done_callback(lambda t, device_id=device.id: self._release(device_id, t))
            launched.append(task)

        self.alerts.cleanup_counters()
        logger.debug("poll_tick_dispatched", slot=slot.isoformat(), devices=len(launched))
        return launched

    def _release(self, device_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(device_id) is task:
            del self._in_flight[device_id]

    async def _run_unit(self, device: Device, slot: datetime) -> PollOutcome:
        async with self._semaphore:
            try:
                return await self.poll_device(device, slot)
            except Exception as e:
                logger.error("device_poll_crashed", device_id=device.id, error=str(e))
                return PollOutcome(device_id=device.id, status="error")

    async def poll_device(self, device: Device, slot: datetime) -> PollOutcome:
        """Poll one device for one tick."""
        health = self.health.setdefault(device.id, DevicePollHealth())
        health.last_attempt = slot
        timeout = self.settings.device_fetch_timeout

        try:
            readings = await asyncio.wait_for(
                self.clients.fetch_interfaces(device), timeout=timeout
            )
        except asyncio.TimeoutError:
            return await self._record_failure(device, f"fetch timed out after {timeout}s")
        except TransientDeviceError as e:
            return await self._record_failure(device, e.reason)
        except ConfigurationError as e:
            return await self._record_failure(device, str(e))

        if not self.sampler.is_seeded(device.id):
            await self._seed_sampler(device, slot)
        samples = self.sampler.sample(device.id, readings, slot)

        try:
            written = await self.store.append_samples(samples)
        except PersistenceError as e:
            health.last_error = str(e)
            logger.error("device_tick_aborted", device_id=device.id, reason="persist_failed")
            return PollOutcome(device_id=device.id, status="persist_failed")

        health.consecutive_failures = 0
        health.last_success = slot
        health.last_error = None

        try:
            await self.cache.upsert_many(device.id, readings, slot)
        except Exception as e:
            logger.warning("interface_cache_refresh_failed", device_id=device.id, error=str(e))

        outcome = PollOutcome(device_id=device.id, status="ok", samples_written=written)
        try:
            await self.alerts.record_reachable(device)
            async with self.repos.monitors() as repo:
                monitors = await repo.find_enabled(device.id)
            opened = await self.alerts.evaluate_device(
                device,
                monitors,
                {r.name: r for r in readings},
                {s.interface_name: s for s in samples},
            )
            outcome.evaluated = True
            outcome.alerts_opened = len(opened)
        except DeduplicationInvariantViolation as e:
            health.last_error = str(e)
            outcome.status = "alert_invariant_violated"
            logger.critical("alert_invariant_violated", device_id=device.id, error=str(e))
        except Exception as e:
            outcome.status = "alert_evaluation_failed"
            logger.error("alert_evaluation_failed", device_id=device.id, error=str(e))

        logger.debug(
            "device_polled",
            device_id=device.id,
            interfaces=len(readings),
            samples_written=written,
            alerts_opened=outcome.alerts_opened,
        )
        return outcome

    async def _seed_sampler(self, device: Device, slot: datetime) -> None:
        try:
            stored = await self.store.latest_counters(device.id)
        except Exception as e:
            logger.warning("rate_seed_failed", device_id=device.id, error=str(e))
            stored = []
        self.sampler.seed(device.id, stored, slot)

    async def _record_failure(self, device: Device, reason: str) -> PollOutcome:
        health = self.health.setdefault(device.id, DevicePollHealth())
        health.consecutive_failures += 1
        health.last_error = reason
        logger.warning(
            "device_unreachable",
            device_id=device.id,
            name=device.name,
            reason=reason,
            consecutive_failures=health.consecutive_failures,
        )
        try:
            await self.alerts.record_unreachable(device, reason)
        except Exception as e:
            logger.error("unreachable_alert_failed", device_id=device.id, error=str(e))
        return PollOutcome(device_id=device.id, status="unreachable")

    def health_snapshot(self) -> dict[str, dict]:
        """Per-device health for the readiness endpoint."""
        return {
            device_id: {
                "consecutive_failures": h.consecutive_failures,
                "skipped_ticks": h.skipped_ticks,
                "last_attempt": h.last_attempt.isoformat() if h.last_attempt else None,
                "last_success": h.last_success.isoformat() if h.last_success else None,
                "last_error": h.last_error,
            }
            for device_id, h in self.health.items()
        }


async def main() -> None:
    """Main entry point for running the poller without the API."""
    from ..container import ServiceContainer
    from ..core.logging import configure_logging

    configure_logging()
    logger.info("starting_linkwatch_poller")

    container = await ServiceContainer.create()
    await container.start()

    try:
        # Keep running until interrupted
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("shutting_down_linkwatch_poller")
    finally:
        await container.stop()


if __name__ == "__main__":
    asyncio.run(main())
