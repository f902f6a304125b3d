"""Repository provider used by the services.

Each accessor acquires a pooled connection for the duration of the block, so
services never hold a connection across device I/O.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from .connection import get_db
from .repository import (
    AlertRepository,
    DeviceRepository,
    InterfaceCacheRepository,
    MonitoredInterfaceRepository,
    RollupRepository,
    TrafficSampleRepository,
)


class Repositories:
    """Hands out repositories bound to pooled connections."""

    @asynccontextmanager
    async def devices(self) -> AsyncIterator[DeviceRepository]:
        async with get_db() as conn:
            yield DeviceRepository(conn)

    @asynccontextmanager
    async def monitors(self) -> AsyncIterator[MonitoredInterfaceRepository]:
        async with get_db() as conn:
            yield MonitoredInterfaceRepository(conn)

    @asynccontextmanager
    async def interfaces(self) -> AsyncIterator[InterfaceCacheRepository]:
        async with get_db() as conn:
            yield InterfaceCacheRepository(conn)

    @asynccontextmanager
    async def traffic(self) -> AsyncIterator[TrafficSampleRepository]:
        async with get_db() as conn:
            yield TrafficSampleRepository(conn)

    @asynccontextmanager
    async def rollups(self) -> AsyncIterator[RollupRepository]:
        async with get_db() as conn:
            yield RollupRepository(conn)

    @asynccontextmanager
    async def alerts(self) -> AsyncIterator[AlertRepository]:
        async with get_db() as conn:
            yield AlertRepository(conn)
