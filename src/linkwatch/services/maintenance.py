"""Background storage jobs: rollups and retention.

Both run on their own tasks against pooled connections and never share a
code path with ingestion.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from ..core.config import Settings, settings as default_settings
from ..core.logging import get_logger
from ..db.provider import Repositories
from .interface_cache import InterfaceCache

logger = get_logger(__name__)

HOURLY_WATERMARK = "hourly"
DAILY_WATERMARK = "daily"


def _floor_hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


def _floor_day(ts: datetime) -> datetime:
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


class _PeriodicWorker:
    """Runs run_once() every interval until stopped."""

    name = "worker"

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._running = True
        logger.info(f"{self.name}_starting", interval=self.interval)
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"{self.name}_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"{self.name}_error", error=str(e))
            await asyncio.sleep(self.interval)

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        raise NotImplementedError


class RollupWorker(_PeriodicWorker):
    """Maintains hourly and daily aggregates incrementally.

    Each run recomputes buckets from the stored watermark minus the lookback,
    so samples that arrive late for a recent bucket are folded in.
    """

    name = "rollup_worker"

    def __init__(self, repos: Repositories, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings
        super().__init__(self.settings.rollup_interval_seconds)
        self.repos = repos

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        lookback = timedelta(hours=self.settings.rollup_lookback_hours)
        # Never look further back than retention keeps data
        horizon = now - timedelta(days=self.settings.sample_retention_days)

        async with self.repos.rollups() as repo:
            hourly_mark = await repo.get_watermark(HOURLY_WATERMARK)
            hourly_since = _floor_hour(max(hourly_mark - lookback if hourly_mark else horizon, horizon))
            # The current hour is included and rewritten on the next run
            hourly_until = _floor_hour(now) + timedelta(hours=1)
            hourly = await repo.rollup_hourly(hourly_since, hourly_until)
            await repo.set_watermark(HOURLY_WATERMARK, _floor_hour(now))

            daily_mark = await repo.get_watermark(DAILY_WATERMARK)
            daily_since = _floor_day(max(daily_mark - lookback if daily_mark else horizon, horizon))
            daily_until = _floor_day(now) + timedelta(days=1)
            daily = await repo.rollup_daily(daily_since, daily_until)
            await repo.set_watermark(DAILY_WATERMARK, _floor_day(now))

        logger.info("rollups_refreshed", hourly_buckets=hourly, daily_buckets=daily)
        return {"hourly": hourly, "daily": daily}


class RetentionWorker(_PeriodicWorker):
    """Purges expired samples and rollups in bounded batches.

    When TimescaleDB owns retention of raw samples the worker leaves them
    alone and only trims the rollup tables.
    """

    name = "retention_worker"

    def __init__(
        self,
        repos: Repositories,
        interface_cache: InterfaceCache | None = None,
        raw_managed_by_database: bool = False,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        super().__init__(self.settings.retention_interval_seconds)
        self.repos = repos
        self.interface_cache = interface_cache
        self.raw_managed_by_database = raw_managed_by_database

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.settings.sample_retention_days)
        batch = self.settings.retention_batch_size
        removed = {"raw": 0, "hourly": 0, "daily": 0, "interfaces": 0}

        if not self.raw_managed_by_database:
            removed["raw"] = await self._drain(self._purge_raw, cutoff, batch)
        for granularity in ("hourly", "daily"):
            removed[granularity] = await self._drain(
                lambda c, b, g=granularity: self._purge_rollup(g, c, b), cutoff, batch
            )

        if self.interface_cache and self.settings.interface_evict_hours:
            removed["interfaces"] = await self.interface_cache.evict_stale(
                timedelta(hours=self.settings.interface_evict_hours), now=now
            )

        logger.info("retention_applied", cutoff=cutoff.isoformat(), **removed)
        return removed

    async def _drain(self, purge, cutoff: datetime, batch: int) -> int:
        total = 0
        while True:
            deleted = await purge(cutoff, batch)
            total += deleted
            if deleted < batch:
                return total
            # Let writers in between batches
            await asyncio.sleep(0)

    async def _purge_raw(self, cutoff: datetime, batch: int) -> int:
        async with self.repos.traffic() as repo:
            return await repo.delete_older_than(cutoff, batch)

    async def _purge_rollup(self, granularity: str, cutoff: datetime, batch: int) -> int:
        async with self.repos.rollups() as repo:
            return await repo.delete_older_than(granularity, cutoff, batch)
