"""Time-series store facade over raw samples and rollups."""

from datetime import datetime, timedelta

from ..core.exceptions import PersistenceError
from ..core.logging import get_logger
from ..db.provider import Repositories
from ..models.traffic import Granularity, TrafficSample, TrafficSeries

logger = get_logger(__name__)

RAW_RANGE_LIMIT = timedelta(days=2)
HOURLY_RANGE_LIMIT = timedelta(days=60)


def pick_granularity(start: datetime, end: datetime) -> Granularity:
    """Resolution for an auto query, from the span of the range."""
    span = end - start
    if span <= RAW_RANGE_LIMIT:
        return Granularity.RAW
    if span <= HOURLY_RANGE_LIMIT:
        return Granularity.HOURLY
    return Granularity.DAILY


def floor_to_bucket(ts: datetime, granularity: Granularity) -> datetime:
    """Start of the rollup bucket containing ts."""
    ts = ts.replace(minute=0, second=0, microsecond=0)
    if granularity == Granularity.DAILY:
        ts = ts.replace(hour=0)
    return ts


class TimeSeriesStore:
    """Append and query traffic samples."""

    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    async def append_samples(self, batch: list[TrafficSample]) -> int:
        """Idempotent bulk insert; returns how many rows were new.

        Raises:
            PersistenceError: the write did not reach storage.
        """
        if not batch:
            return 0
        try:
            async with self.repos.traffic() as repo:
                inserted = await repo.insert_many(batch)
        except Exception as e:
            logger.error(
                "sample_append_failed",
                device_id=batch[0].device_id,
                samples=len(batch),
                error=str(e),
            )
            raise PersistenceError(f"failed to append {len(batch)} samples") from e

        if inserted < len(batch):
            logger.debug("duplicate_samples_ignored", duplicates=len(batch) - inserted)
        return inserted

    async def query(
        self,
        device_id: str,
        interface_name: str | None,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.AUTO,
    ) -> TrafficSeries:
        """Samples of a device (or one interface) in [start, end)."""
        if end <= start:
            raise ValueError("end must be after start")

        resolved = pick_granularity(start, end) if granularity == Granularity.AUTO else granularity

        if resolved == Granularity.RAW:
            async with self.repos.traffic() as repo:
                points = await repo.find_range(device_id, interface_name, start, end)
        else:
            # Include the bucket that contains start
            bucket_start = floor_to_bucket(start, resolved)
            async with self.repos.rollups() as repo:
                points = await repo.find_range(
                    resolved.value, device_id, interface_name, bucket_start, end
                )

        return TrafficSeries(
            device_id=device_id,
            interface_name=interface_name,
            start=start,
            end=end,
            granularity=resolved,
            points=points,
        )

    async def latest_counters(self, device_id: str) -> list[TrafficSample]:
        """Newest stored sample per interface of a device."""
        async with self.repos.traffic() as repo:
            return await repo.latest_per_interface(device_id)
