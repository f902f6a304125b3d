"""Database connection pool management."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from ..core.config import settings
from ..core.logging import get_logger

logger = get_logger(__name__)

# Global pool instance
_pool: asyncpg.Pool | None = None


async def init_db() -> asyncpg.Pool:
    """Initialize the database connection pool.

    Returns:
        The connection pool instance.
    """
    global _pool

    if _pool is not None:
        return _pool

    logger.info("initializing_database_pool", dsn=str(settings.postgres_url).split("@")[-1])

    _pool = await asyncpg.create_pool(
        str(settings.postgres_url),
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
        command_timeout=settings.db_command_timeout,
        server_settings={"search_path": "linkwatch,public"},
    )

    logger.info("database_pool_initialized")
    return _pool


async def close_db() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool is not None:
        logger.info("closing_database_pool")
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Raises:
        RuntimeError: If pool is not initialized.
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_db() first.")
    return _pool


@asynccontextmanager
async def get_db() -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection from the pool for the duration of the block."""
    pool = get_pool()
    async with pool.acquire() as conn:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection and run the block inside a transaction."""
    async with get_db() as conn:
        async with conn.transaction():
            yield conn


async def check_health() -> bool:
    """Check database connectivity."""
    try:
        async with get_db() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        return False
