"""On-demand realtime polling for devices with live viewers.

One polling task per device regardless of viewer count; the task starts with
the first subscription and is cancelled when the last one leaves. Realtime
points live only in memory and never reach the time-series store or the
alert engine.
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import ConfigurationError, TransientDeviceError
from ..core.logging import get_logger
from ..db.provider import Repositories
from ..models.device import Device
from ..models.interface import InterfaceReading
from ..models.traffic import RealtimePoint
from ..services.interface_cache import InterfaceCache
from ..services.rate_sampler import RateSampler
from .base import DeviceClientRegistry

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RealtimeSubscription:
    """One viewer's bounded feed of point batches; the oldest batch is dropped when full."""

    def __init__(self, device_id: str, maxsize: int) -> None:
        self.device_id = device_id
        self.queue: asyncio.Queue[list[RealtimePoint]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, batch: list[RealtimePoint]) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(batch)

    async def get(self) -> list[RealtimePoint]:
        return await self.queue.get()


class _DeviceFeed:
    def __init__(self, device: Device, history_points: int) -> None:
        self.device = device
        self.subscribers: set[RealtimeSubscription] = set()
        self.history: dict[str, deque[RealtimePoint]] = {}
        self.history_points = history_points
        self.sampler = RateSampler()
        self.last_cache_write: float | None = None
        self.task: asyncio.Task | None = None

    def record(self, point: RealtimePoint) -> None:
        buffer = self.history.get(point.interface_name)
        if buffer is None:
            buffer = self.history[point.interface_name] = deque(maxlen=self.history_points)
        buffer.append(point)


class RealtimePoller:
    """Reference-counted registry of realtime device feeds."""

    def __init__(
        self,
        repos: Repositories,
        clients: DeviceClientRegistry,
        cache: InterfaceCache,
        settings: Settings | None = None,
        now: Callable[[], datetime] = _utcnow,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repos = repos
        self.clients = clients
        self.cache = cache
        self.settings = settings or default_settings
        self._now = now
        self._clock = clock
        self._feeds: dict[str, _DeviceFeed] = {}

    def viewer_count(self, device_id: str) -> int:
        feed = self._feeds.get(device_id)
        return len(feed.subscribers) if feed else 0

    def is_active(self, device_id: str) -> bool:
        feed = self._feeds.get(device_id)
        return bool(feed and feed.task and not feed.task.done())

    async def subscribe(self, device_id: str) -> RealtimeSubscription:
        """Register a viewer, starting the device's polling task on the first one.

        Raises:
            LookupError: the device does not exist.
        """
        feed = self._feeds.get(device_id)
        if feed is None:
            async with self.repos.devices() as repo:
                device = await repo.find_by_id(device_id)
            if device is None:
                raise LookupError(f"device {device_id} not found")
            # Another viewer may have created the feed while we looked up the device
            feed = self._feeds.get(device_id)
            if feed is None:
                feed = _DeviceFeed(device, self.settings.realtime_history_points)
                self._feeds[device_id] = feed
                feed.task = asyncio.create_task(self._run(feed), name=f"realtime:{device_id}")
                logger.info("realtime_polling_started", device_id=device_id, name=device.name)

        subscription = RealtimeSubscription(device_id, self.settings.realtime_queue_size)
        feed.subscribers.add(subscription)
        logger.info("realtime_viewer_joined", device_id=device_id, viewers=len(feed.subscribers))
        return subscription

    async def unsubscribe(self, subscription: RealtimeSubscription) -> None:
        """Remove a viewer; the last one out cancels the polling task."""
        feed = self._feeds.get(subscription.device_id)
        if feed is None:
            return
        feed.subscribers.discard(subscription)
        logger.info(
            "realtime_viewer_left",
            device_id=subscription.device_id,
            viewers=len(feed.subscribers),
        )
        if not feed.subscribers:
            await self._teardown(subscription.device_id)

    async def _teardown(self, device_id: str) -> None:
        feed = self._feeds.pop(device_id, None)
        if feed is None or feed.task is None:
            return
        feed.task.cancel()
        try:
            await feed.task
        except asyncio.CancelledError:
            pass
        logger.info("realtime_polling_stopped", device_id=device_id)

    async def stop(self) -> None:
        """Cancel every realtime task."""
        for device_id in list(self._feeds):
            await self._teardown(device_id)

    def history(self, device_id: str, points_per_interface: int = 100) -> dict[str, list[RealtimePoint]]:
        """Newest points of each interface, oldest first."""
        feed = self._feeds.get(device_id)
        if feed is None:
            return {}
        return {
            name: list(buffer)[-points_per_interface:]
            for name, buffer in feed.history.items()
        }

    async def _run(self, feed: _DeviceFeed) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.realtime_poll_interval
        while True:
            started = loop.time()
            try:
                await self.poll_once(feed)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("realtime_poll_error", device_id=feed.device.id, error=str(e))
            await asyncio.sleep(max(interval - (loop.time() - started), 0))

    async def poll_once(self, feed: _DeviceFeed) -> list[RealtimePoint]:
        """Fetch once, record and broadcast the new points."""
        device = feed.device
        try:
            readings = await asyncio.wait_for(
                self.clients.fetch_interfaces(device),
                timeout=self.settings.realtime_fetch_timeout,
            )
        except (asyncio.TimeoutError, TransientDeviceError, ConfigurationError) as e:
            logger.debug("realtime_fetch_failed", device_id=device.id, error=str(e))
            return []

        now = self._now()
        comments = {r.name: r.comment for r in readings}
        points = [
            RealtimePoint(
                device_id=device.id,
                interface_name=sample.interface_name,
                comment=comments.get(sample.interface_name),
                timestamp=sample.timestamp,
                rx_bps=sample.rx_bps,
                tx_bps=sample.tx_bps,
                total_bps=sample.total_bps,
            )
            for sample in feed.sampler.sample(device.id, readings, now)
            if not sample.is_baseline
        ]

        for point in points:
            feed.record(point)
        if points:
            for subscription in list(feed.subscribers):
                subscription.push(points)

        await self._refresh_cache(feed, readings, now)
        return points

    async def _refresh_cache(
        self,
        feed: _DeviceFeed,
        readings: list[InterfaceReading],
        now: datetime,
    ) -> None:
        elapsed = None if feed.last_cache_write is None else self._clock() - feed.last_cache_write
        if elapsed is not None and elapsed < self.settings.realtime_cache_refresh_seconds:
            return
        feed.last_cache_write = self._clock()
        try:
            await self.cache.upsert_many(feed.device.id, readings, now)
        except Exception as e:
            logger.warning("realtime_cache_refresh_failed", device_id=feed.device.id, error=str(e))
