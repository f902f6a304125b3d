"""Interface inventory cache, refreshed as a side effect of polling."""

from datetime import datetime, timedelta, timezone

from ..core.config import Settings, settings as default_settings
from ..core.logging import get_logger
from ..db.provider import Repositories
from ..models.interface import AvailableInterface, InterfaceReading

logger = get_logger(__name__)


class InterfaceCache:
    """Durable (device, interface) -> metadata mapping."""

    def __init__(self, repos: Repositories, settings: Settings | None = None) -> None:
        self.repos = repos
        self.settings = settings or default_settings

    async def upsert(self, device_id: str, reading: InterfaceReading, seen_at: datetime) -> None:
        """Insert or refresh a single interface."""
        await self.upsert_many(device_id, [reading], seen_at)

    async def upsert_many(
        self,
        device_id: str,
        readings: list[InterfaceReading],
        seen_at: datetime,
    ) -> int:
        """Insert or refresh every interface of one fetch in a single statement."""
        # A device can report the same name twice (e.g. during a rename); last wins
        unique = list({r.name: r for r in readings}.values())
        async with self.repos.interfaces() as repo:
            count = await repo.upsert_many(device_id, unique, seen_at)
        logger.debug("interface_cache_refreshed", device_id=device_id, interfaces=len(unique))
        return count

    async def list_available(
        self,
        device_id: str,
        exclude_monitored: bool = True,
        now: datetime | None = None,
    ) -> list[AvailableInterface]:
        """Cached interfaces offered when adding a monitor, flagged when stale."""
        now = now or datetime.now(timezone.utc)
        window = timedelta(hours=self.settings.interface_stale_hours)

        async with self.repos.interfaces() as repo:
            cached = await repo.find_by_device(device_id)

        monitored: set[str] = set()
        if exclude_monitored:
            async with self.repos.monitors() as repo:
                monitored = await repo.find_names(device_id)

        return [
            AvailableInterface(
                **iface.model_dump(),
                stale=iface.is_stale(now, window),
            )
            for iface in cached
            if iface.name not in monitored
        ]

    async def evict_stale(self, older_than: timedelta, now: datetime | None = None) -> int:
        """Delete entries not seen within the given window."""
        cutoff = (now or datetime.now(timezone.utc)) - older_than
        async with self.repos.interfaces() as repo:
            removed = await repo.delete_not_seen_since(cutoff)
        if removed:
            logger.info("interface_cache_evicted", removed=removed, cutoff=cutoff.isoformat())
        return removed
