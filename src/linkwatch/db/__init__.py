"""Database module for the linkwatch service."""

from .connection import init_db, close_db, get_db, get_pool, transaction, check_health
from .provider import Repositories
from .repository import (
    AlertRepository,
    DeviceRepository,
    InterfaceCacheRepository,
    MonitoredInterfaceRepository,
    RollupRepository,
    TrafficSampleRepository,
)
from .schema import migrate, timescale_manages_samples

__all__ = [
    "init_db",
    "close_db",
    "get_db",
    "get_pool",
    "transaction",
    "check_health",
    "Repositories",
    "AlertRepository",
    "DeviceRepository",
    "InterfaceCacheRepository",
    "MonitoredInterfaceRepository",
    "RollupRepository",
    "TrafficSampleRepository",
    "migrate",
    "timescale_manages_samples",
]
