"""Idempotent schema migration for the linkwatch tables."""

from asyncpg import Connection

from ..core.config import Settings
from ..core.logging import get_logger

logger = get_logger(__name__)

SCHEMA = "linkwatch"

# Read-only inputs owned by the router management layer. Created only when
# missing so a development database can be bootstrapped standalone.
MANAGEMENT_TABLES = [
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.devices (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(255) NOT NULL,
        ip_address INET NOT NULL,
        cloud_ddns_hostname VARCHAR(255),
        connection_method VARCHAR(16) NOT NULL DEFAULT 'rest',
        api_port INTEGER NOT NULL DEFAULT 8728,
        rest_port INTEGER NOT NULL DEFAULT 443,
        snmp_port INTEGER NOT NULL DEFAULT 161,
        snmp_community VARCHAR(255) DEFAULT 'public',
        snmp_version VARCHAR(4) NOT NULL DEFAULT '2c',
        snmp_enabled BOOLEAN NOT NULL DEFAULT false,
        username VARCHAR(255),
        encrypted_password TEXT,
        include_dynamic_interfaces BOOLEAN NOT NULL DEFAULT false,
        owner_id VARCHAR(255),
        is_active BOOLEAN NOT NULL DEFAULT true,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    f"ALTER TABLE {SCHEMA}.devices ADD COLUMN IF NOT EXISTS snmp_enabled BOOLEAN NOT NULL DEFAULT false",
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.users (
        id VARCHAR(255) PRIMARY KEY,
        email VARCHAR(255)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.device_assignments (
        device_id UUID NOT NULL REFERENCES {SCHEMA}.devices(id) ON DELETE CASCADE,
        user_id VARCHAR(255) NOT NULL,
        PRIMARY KEY (device_id, user_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.monitored_interfaces (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        device_id UUID NOT NULL REFERENCES {SCHEMA}.devices(id) ON DELETE CASCADE,
        interface_name VARCHAR(255) NOT NULL,
        enabled BOOLEAN NOT NULL DEFAULT true,
        min_rx_bps DOUBLE PRECISION,
        min_tx_bps DOUBLE PRECISION,
        min_total_bps DOUBLE PRECISION,
        evaluation_window INTEGER,
        alert_on_down BOOLEAN NOT NULL DEFAULT true,
        email_notifications BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (device_id, interface_name)
    )
    """,
    f"ALTER TABLE {SCHEMA}.monitored_interfaces "
    "ADD COLUMN IF NOT EXISTS email_notifications BOOLEAN NOT NULL DEFAULT false",
]

CORE_TABLES = [
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.cached_interfaces (
        device_id UUID NOT NULL,
        name VARCHAR(255) NOT NULL,
        comment TEXT,
        mac_address VARCHAR(32),
        type VARCHAR(64),
        running BOOLEAN NOT NULL DEFAULT false,
        disabled BOOLEAN NOT NULL DEFAULT false,
        last_seen TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (device_id, name)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.traffic_samples (
        device_id UUID NOT NULL,
        interface_name VARCHAR(255) NOT NULL,
        ts TIMESTAMPTZ NOT NULL,
        rx_bytes_total BIGINT NOT NULL,
        tx_bytes_total BIGINT NOT NULL,
        rx_bps DOUBLE PRECISION NOT NULL,
        tx_bps DOUBLE PRECISION NOT NULL,
        total_bps DOUBLE PRECISION NOT NULL,
        PRIMARY KEY (device_id, interface_name, ts)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_traffic_samples_ts ON {SCHEMA}.traffic_samples (ts)",
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.traffic_rollup_hourly (
        device_id UUID NOT NULL,
        interface_name VARCHAR(255) NOT NULL,
        bucket TIMESTAMPTZ NOT NULL,
        avg_rx_bps DOUBLE PRECISION NOT NULL,
        max_rx_bps DOUBLE PRECISION NOT NULL,
        avg_tx_bps DOUBLE PRECISION NOT NULL,
        max_tx_bps DOUBLE PRECISION NOT NULL,
        avg_total_bps DOUBLE PRECISION NOT NULL,
        max_total_bps DOUBLE PRECISION NOT NULL,
        sample_count INTEGER NOT NULL,
        PRIMARY KEY (device_id, interface_name, bucket)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.traffic_rollup_daily (
        device_id UUID NOT NULL,
        interface_name VARCHAR(255) NOT NULL,
        bucket TIMESTAMPTZ NOT NULL,
        avg_rx_bps DOUBLE PRECISION NOT NULL,
        max_rx_bps DOUBLE PRECISION NOT NULL,
        avg_tx_bps DOUBLE PRECISION NOT NULL,
        max_tx_bps DOUBLE PRECISION NOT NULL,
        avg_total_bps DOUBLE PRECISION NOT NULL,
        max_total_bps DOUBLE PRECISION NOT NULL,
        sample_count INTEGER NOT NULL,
        PRIMARY KEY (device_id, interface_name, bucket)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.rollup_state (
        name VARCHAR(32) PRIMARY KEY,
        watermark TIMESTAMPTZ NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SCHEMA}.alerts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        device_id UUID NOT NULL,
        interface_name VARCHAR(255),
        cause VARCHAR(32) NOT NULL,
        severity VARCHAR(16) NOT NULL,
        message TEXT NOT NULL,
        current_bps DOUBLE PRECISION,
        threshold_bps DOUBLE PRECISION,
        interface_comment TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        acknowledged BOOLEAN NOT NULL DEFAULT false,
        acknowledged_by VARCHAR(255),
        acknowledged_at TIMESTAMPTZ
    )
    """,
    # At most one open alert per device/interface, device-level alerts included
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_open_per_interface
        ON {SCHEMA}.alerts (device_id, COALESCE(interface_name, ''))
        WHERE acknowledged = false
    """,
    f"CREATE INDEX IF NOT EXISTS idx_alerts_created_at ON {SCHEMA}.alerts (created_at DESC)",
]


async def timescale_available(conn: Connection) -> bool:
    """Check whether the timescaledb extension can be installed."""
    return bool(
        await conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM pg_available_extensions WHERE name = 'timescaledb')"
        )
    )


async def timescale_manages_samples(conn: Connection) -> bool:
    """Check whether traffic_samples is a hypertable with its own retention policy."""
    installed = await conn.fetchval(
        "SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = 'timescaledb')"
    )
    if not installed:
        return False
    return bool(
        await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM timescaledb_information.jobs
                WHERE proc_name = 'policy_retention'
                  AND hypertable_schema = $1
                  AND hypertable_name = 'traffic_samples'
            )
            """,
            SCHEMA,
        )
    )


async def _install_timescale(conn: Connection, settings: Settings) -> None:
    await conn.execute("CREATE EXTENSION IF NOT EXISTS timescaledb CASCADE")
    await conn.execute(
        f"""
        SELECT create_hypertable(
            '{SCHEMA}.traffic_samples', 'ts',
            chunk_time_interval => INTERVAL '1 day',
            if_not_exists => TRUE,
            migrate_data => TRUE
        )
        """
    )
    await conn.execute(
        f"""
        ALTER TABLE {SCHEMA}.traffic_samples SET (
            timescaledb.compress,
            timescaledb.compress_orderby = 'ts DESC',
            timescaledb.compress_segmentby = 'device_id, interface_name'
        )
        """
    )
    await conn.execute(
        f"SELECT add_compression_policy('{SCHEMA}.traffic_samples', "
        f"INTERVAL '{settings.compression_after_days} days', if_not_exists => TRUE)"
    )
    await conn.execute(
        f"SELECT add_retention_policy('{SCHEMA}.traffic_samples', "
        f"INTERVAL '{settings.sample_retention_days} days', if_not_exists => TRUE)"
    )


async def migrate(conn: Connection, settings: Settings) -> bool:
    """Create the schema and tables if missing.

    Returns:
        True when TimescaleDB owns compression and retention of raw samples.
    """
    logger.info("schema_migration_starting", schema=SCHEMA)

    async with conn.transaction():
        await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")
        for statement in MANAGEMENT_TABLES + CORE_TABLES:
            await conn.execute(statement)

    if settings.timescale_enabled:
        if await timescale_available(conn):
            await _install_timescale(conn, settings)
            logger.info(
                "timescale_policies_installed",
                compression_after_days=settings.compression_after_days,
                retention_days=settings.sample_retention_days,
            )
        else:
            logger.warning("timescale_not_available", fallback="retention_worker")

    managed = await timescale_manages_samples(conn)
    logger.info("schema_migration_complete", timescale=managed)
    return managed
