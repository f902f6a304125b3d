"""Wiring of the long-lived linkwatch services."""

from .collectors.base import DeviceClientRegistry
from .collectors.realtime import RealtimePoller
from .collectors.routeros_api import RouterOSApiClient
from .collectors.routeros_rest import RouterOSRestClient
from .collectors.scheduler import PollingScheduler
from .collectors.snmp_client import SnmpInterfaceClient
from .core.config import Settings, settings as default_settings
from .core.logging import get_logger
from .db import close_db, get_db, init_db, migrate, timescale_manages_samples
from .db.provider import Repositories
from .models.device import ConnectionMethod
from .services.alert_engine import AlertEngine
from .services.interface_cache import InterfaceCache
from .services.maintenance import RetentionWorker, RollupWorker
from .services.notifications import (
    CompositePublisher,
    EmailPublisher,
    NATSPublisher,
    NotificationPublisher,
    NullPublisher,
)
from .services.timeseries import TimeSeriesStore

logger = get_logger(__name__)


class ServiceContainer:
    """Owns the scheduler, realtime poller, background workers and their collaborators."""

    def __init__(
        self,
        repos: Repositories,
        clients: DeviceClientRegistry,
        publisher: NotificationPublisher,
        settings: Settings | None = None,
        raw_managed_by_database: bool = False,
    ) -> None:
        self.settings = settings or default_settings
        self.repos = repos
        self.clients = clients
        self.publisher = publisher
        self.store = TimeSeriesStore(repos)
        self.cache = InterfaceCache(repos, self.settings)
        self.alerts = AlertEngine(repos, publisher, self.settings)
        self.scheduler = PollingScheduler(
            repos, clients, self.store, self.cache, self.alerts, self.settings
        )
        self.realtime = RealtimePoller(repos, clients, self.cache, self.settings)
        self.rollup_worker = RollupWorker(repos, self.settings)
        self.retention_worker = RetentionWorker(
            repos, self.cache, raw_managed_by_database, self.settings
        )
        self._owns_database = False

    @classmethod
    async def create(cls, settings: Settings | None = None) -> "ServiceContainer":
        """Connect to the database and NATS and build every service."""
        settings = settings or default_settings
        await init_db()

        async with get_db() as conn:
            if settings.run_migrations:
                raw_managed = await migrate(conn, settings)
            else:
                raw_managed = await timescale_manages_samples(conn)

        publisher: NotificationPublisher = NullPublisher()
        if settings.nats_enabled:
            nats_publisher = NATSPublisher(settings.nats_url, settings.nats_subject_prefix)
            try:
                await nats_publisher.connect()
                publisher = nats_publisher
            except Exception as e:
                logger.warning("notifications_disabled", reason="nats_unavailable", error=str(e))

        if settings.smtp_host:
            email_publisher = EmailPublisher(
                settings.smtp_host,
                settings.smtp_port,
                settings.smtp_username,
                settings.smtp_password,
                settings.smtp_from_email,
                settings.smtp_use_tls,
                settings.smtp_start_tls,
            )
            publisher = CompositePublisher([publisher, email_publisher])
            logger.info("email_notifications_enabled", smtp_host=settings.smtp_host)

        clients = DeviceClientRegistry({
            ConnectionMethod.API: RouterOSApiClient(),
            ConnectionMethod.REST: RouterOSRestClient(),
            ConnectionMethod.SNMP: SnmpInterfaceClient(),
        })

        container = cls(Repositories(), clients, publisher, settings, raw_managed)
        container._owns_database = True
        return container

    async def start(self) -> None:
        await self.scheduler.start()
        await self.rollup_worker.start()
        await self.retention_worker.start()
        logger.info("linkwatch_services_started")

    async def stop(self) -> None:
        await self.realtime.stop()
        await self.scheduler.stop()
        await self.rollup_worker.stop()
        await self.retention_worker.stop()
        await self.clients.close()
        if isinstance(self.publisher, (NATSPublisher, CompositePublisher)):
            await self.publisher.close()
        if self._owns_database:
            await close_db()
        logger.info("linkwatch_services_stopped")
