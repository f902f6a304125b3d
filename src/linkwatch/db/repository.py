"""Database repositories for linkwatch entities."""

from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg
from asyncpg import Connection
from pydantic import ValidationError

from ..core.exceptions import ConfigurationError, DuplicateAlertRace
from ..core.logging import get_logger
from ..models.alert import Alert, AlertCreate, AlertFilter
from ..models.device import Device
from ..models.interface import CachedInterface, InterfaceReading, MonitoredInterface
from ..models.traffic import TrafficPoint, TrafficSample

logger = get_logger(__name__)

ROLLUP_TABLES = {
    "hourly": "linkwatch.traffic_rollup_hourly",
    "daily": "linkwatch.traffic_rollup_daily",
}


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Convert asyncpg Record to dictionary."""
    return dict(row) if row else {}


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except (ValueError, TypeError, AttributeError):
        return None


def _affected(status: str) -> int:
    """Row count from a command tag such as 'INSERT 0 3' or 'DELETE 12'."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


DEVICE_COLUMNS = """
    d.id::text AS id, d.name, host(d.ip_address) AS ip_address, d.cloud_ddns_hostname,
    d.connection_method, d.api_port, d.rest_port, d.snmp_port, d.snmp_community,
    d.snmp_version, d.snmp_enabled, d.username, d.encrypted_password, d.include_dynamic_interfaces,
    d.owner_id, d.is_active,
    COALESCE(
        (SELECT array_agg(a.user_id ORDER BY a.user_id)
         FROM linkwatch.device_assignments a WHERE a.device_id = d.id),
        '{}'
    ) AS recipient_ids,
    COALESCE(
        (SELECT json_object_agg(u.id, u.email)
         FROM linkwatch.users u
         WHERE u.email IS NOT NULL
           AND (u.id = d.owner_id OR u.id IN (
               SELECT a.user_id FROM linkwatch.device_assignments a WHERE a.device_id = d.id
           ))),
        '{}'::json
    )::text AS recipient_emails
"""


class DeviceRepository:
    """Read-only access to devices owned by the management layer."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def find_pollable(self) -> list[Device]:
        """Active devices with at least one enabled monitored interface."""
        query = f"""
            SELECT {DEVICE_COLUMNS}
            FROM linkwatch.devices d
            WHERE d.is_active = true
              AND EXISTS (
                  SELECT 1 FROM linkwatch.monitored_interfaces m
                  WHERE m.device_id = d.id AND m.enabled = true
              )
            ORDER BY d.name ASC
        """
        rows = await self.conn.fetch(query)
        devices = []
        for row in rows:
            try:
                devices.append(Device(**_row_to_dict(row)))
            except ValidationError as e:
                logger.error("device_row_invalid", device_id=row["id"], error=str(e))
        return devices

    async def find_by_id(self, device_id: str) -> Device | None:
        """Find a device by ID."""
        uid = _as_uuid(device_id)
        if uid is None:
            return None
        query = f"SELECT {DEVICE_COLUMNS} FROM linkwatch.devices d WHERE d.id = $1"
        row = await self.conn.fetchrow(query, uid)
        return Device(**_row_to_dict(row)) if row else None


class MonitoredInterfaceRepository:
    """Monitor configuration rows."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def find_enabled(self, device_id: str) -> list[MonitoredInterface]:
        """Enabled monitors of a device; malformed rows are reported and skipped."""
        uid = _as_uuid(device_id)
        if uid is None:
            return []
        query = """
            SELECT id::text, device_id::text, interface_name, enabled, min_rx_bps,
                   min_tx_bps, min_total_bps, evaluation_window, alert_on_down,
                   email_notifications
            FROM linkwatch.monitored_interfaces
            WHERE device_id = $1 AND enabled = true
            ORDER BY interface_name
        """
        rows = await self.conn.fetch(query, uid)
        monitors = []
        for row in rows:
            try:
                monitors.append(MonitoredInterface(**_row_to_dict(row)))
            except ValidationError as e:
                err = ConfigurationError(
                    f"monitor {row['id']} on {device_id}/{row['interface_name']}: {e}"
                )
                logger.error("monitor_config_rejected", monitor_id=row["id"], error=str(err))
        return monitors

    async def find_names(self, device_id: str) -> set[str]:
        """Names of every monitored interface of a device, enabled or not."""
        uid = _as_uuid(device_id)
        if uid is None:
            return set()
        rows = await self.conn.fetch(
            "SELECT interface_name FROM linkwatch.monitored_interfaces WHERE device_id = $1",
            uid,
        )
        return {row["interface_name"] for row in rows}


class InterfaceCacheRepository:
    """Per-device interface inventory."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def upsert_many(
        self,
        device_id: str,
        readings: list[InterfaceReading],
        seen_at: datetime,
    ) -> int:
        """Insert or refresh cache rows in one statement.

        last_seen never moves backwards and metadata is only replaced by an
        observation that is not older than the stored one.
        """
        if not readings:
            return 0
        query = """
            INSERT INTO linkwatch.cached_interfaces AS ci
                (device_id, name, comment, mac_address, type, running, disabled, last_seen)
            SELECT $1::uuid, u.name, u.comment, u.mac, u.type, u.running, u.disabled, $8
            FROM unnest($2::text[], $3::text[], $4::text[], $5::text[], $6::bool[], $7::bool[])
                AS u(name, comment, mac, type, running, disabled)
            ON CONFLICT (device_id, name) DO UPDATE SET
                comment = CASE WHEN EXCLUDED.last_seen >= ci.last_seen
                               THEN EXCLUDED.comment ELSE ci.comment END,
                mac_address = CASE WHEN EXCLUDED.last_seen >= ci.last_seen
                                   THEN EXCLUDED.mac_address ELSE ci.mac_address END,
                type = CASE WHEN EXCLUDED.last_seen >= ci.last_seen
                            THEN EXCLUDED.type ELSE ci.type END,
                running = CASE WHEN EXCLUDED.last_seen >= ci.last_seen
                               THEN EXCLUDED.running ELSE ci.running END,
                disabled = CASE WHEN EXCLUDED.last_seen >= ci.last_seen
                                THEN EXCLUDED.disabled ELSE ci.disabled END,
                last_seen = GREATEST(ci.last_seen, EXCLUDED.last_seen)
        """
        status = await self.conn.execute(
            query,
            UUID(device_id),
            [r.name for r in readings],
            [r.comment for r in readings],
            [r.mac_address for r in readings],
            [r.type for r in readings],
            [r.running for r in readings],
            [r.disabled for r in readings],
            seen_at,
        )
        return _affected(status)

    async def find_by_device(self, device_id: str) -> list[CachedInterface]:
        """All cached interfaces of a device."""
        uid = _as_uuid(device_id)
        if uid is None:
            return []
        query = """
            SELECT device_id::text, name, comment, mac_address, type, running, disabled,
                   last_seen, created_at
            FROM linkwatch.cached_interfaces
            WHERE device_id = $1
            ORDER BY name
        """
        rows = await self.conn.fetch(query, uid)
        return [CachedInterface(**_row_to_dict(row)) for row in rows]

    async def delete_not_seen_since(self, cutoff: datetime) -> int:
        """Evict entries whose last_seen is older than the cutoff."""
        status = await self.conn.execute(
            "DELETE FROM linkwatch.cached_interfaces WHERE last_seen < $1", cutoff
        )
        return _affected(status)


class TrafficSampleRepository:
    """Raw traffic samples."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def insert_many(self, samples: list[TrafficSample]) -> int:
        """Append samples in one round trip; existing keys are left untouched."""
        if not samples:
            return 0
        query = """
            INSERT INTO linkwatch.traffic_samples
                (device_id, interface_name, ts, rx_bytes_total, tx_bytes_total,
                 rx_bps, tx_bps, total_bps)
            SELECT * FROM unnest(
                $1::uuid[], $2::text[], $3::timestamptz[], $4::bigint[], $5::bigint[],
                $6::float8[], $7::float8[], $8::float8[]
            )
            ON CONFLICT (device_id, interface_name, ts) DO NOTHING
        """
        status = await self.conn.execute(
            query,
            [UUID(s.device_id) for s in samples],
            [s.interface_name for s in samples],
            [s.timestamp for s in samples],
            [s.rx_bytes_total for s in samples],
            [s.tx_bytes_total for s in samples],
            [s.rx_bps for s in samples],
            [s.tx_bps for s in samples],
            [s.total_bps for s in samples],
        )
        return _affected(status)

    async def latest_per_interface(self, device_id: str) -> list[TrafficSample]:
        """Newest stored sample of every interface of a device."""
        uid = _as_uuid(device_id)
        if uid is None:
            return []
        query = """
            SELECT DISTINCT ON (interface_name)
                   device_id::text, interface_name, ts AS timestamp, rx_bytes_total,
                   tx_bytes_total, rx_bps, tx_bps, total_bps
            FROM linkwatch.traffic_samples
            WHERE device_id = $1
            ORDER BY interface_name, ts DESC
        """
        rows = await self.conn.fetch(query, uid)
        return [TrafficSample(**_row_to_dict(row)) for row in rows]

    async def find_range(
        self,
        device_id: str,
        interface_name: str | None,
        start: datetime,
        end: datetime,
    ) -> list[TrafficPoint]:
        """Raw points in [start, end)."""
        uid = _as_uuid(device_id)
        if uid is None:
            return []
        query = """
            SELECT interface_name, ts AS timestamp, rx_bps, tx_bps, total_bps
            FROM linkwatch.traffic_samples
            WHERE device_id = $1
              AND ($2::text IS NULL OR interface_name = $2)
              AND ts >= $3 AND ts < $4
            ORDER BY ts ASC, interface_name ASC
        """
        rows = await self.conn.fetch(query, uid, interface_name, start, end)
        return [TrafficPoint(**_row_to_dict(row)) for row in rows]

    async def delete_older_than(self, cutoff: datetime, batch_size: int) -> int:
        """Delete at most batch_size samples older than the cutoff."""
        query = """
            DELETE FROM linkwatch.traffic_samples
            WHERE ts < $1
              AND (device_id, interface_name, ts) IN (
                SELECT device_id, interface_name, ts FROM linkwatch.traffic_samples
                WHERE ts < $1
                ORDER BY ts ASC
                LIMIT $2
            )
        """
        status = await self.conn.execute(query, cutoff, batch_size)
        return _affected(status)


class RollupRepository:
    """Hourly and daily traffic aggregates plus their watermarks."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def get_watermark(self, name: str) -> datetime | None:
        """Last bucket boundary a rollup job completed up to."""
        return await self.conn.fetchval(
            "SELECT watermark FROM linkwatch.rollup_state WHERE name = $1", name
        )

    async def set_watermark(self, name: str, watermark: datetime) -> None:
        """Advance a rollup watermark; it never moves backwards."""
        await self.conn.execute(
            """
            INSERT INTO linkwatch.rollup_state AS rs (name, watermark) VALUES ($1, $2)
            ON CONFLICT (name) DO UPDATE
                SET watermark = GREATEST(rs.watermark, EXCLUDED.watermark)
            """,
            name,
            watermark,
        )

    async def rollup_hourly(self, since: datetime, until: datetime) -> int:
        """Recompute hourly buckets from raw samples in [since, until)."""
        query = """
            INSERT INTO linkwatch.traffic_rollup_hourly AS r
                (device_id, interface_name, bucket, avg_rx_bps, max_rx_bps,
                 avg_tx_bps, max_tx_bps, avg_total_bps, max_total_bps, sample_count)
            SELECT device_id, interface_name, date_trunc('hour', ts) AS bucket,
                   AVG(rx_bps), MAX(rx_bps), AVG(tx_bps), MAX(tx_bps),
                   AVG(total_bps), MAX(total_bps), COUNT(*)
            FROM linkwatch.traffic_samples
            WHERE ts >= $1 AND ts < $2
            GROUP BY device_id, interface_name, bucket
            ON CONFLICT (device_id, interface_name, bucket) DO UPDATE SET
                avg_rx_bps = EXCLUDED.avg_rx_bps, max_rx_bps = EXCLUDED.max_rx_bps,
                avg_tx_bps = EXCLUDED.avg_tx_bps, max_tx_bps = EXCLUDED.max_tx_bps,
                avg_total_bps = EXCLUDED.avg_total_bps,
                max_total_bps = EXCLUDED.max_total_bps,
                sample_count = EXCLUDED.sample_count
        """
        return _affected(await self.conn.execute(query, since, until))

    async def rollup_daily(self, since: datetime, until: datetime) -> int:
        """Recompute daily buckets from hourly buckets weighted by sample count."""
        query = """
            INSERT INTO linkwatch.traffic_rollup_daily AS r
                (device_id, interface_name, bucket, avg_rx_bps, max_rx_bps,
                 avg_tx_bps, max_tx_bps, avg_total_bps, max_total_bps, sample_count)
            SELECT device_id, interface_name, date_trunc('day', bucket) AS day,
                   SUM(avg_rx_bps * sample_count) / SUM(sample_count), MAX(max_rx_bps),
                   SUM(avg_tx_bps * sample_count) / SUM(sample_count), MAX(max_tx_bps),
                   SUM(avg_total_bps * sample_count) / SUM(sample_count), MAX(max_total_bps),
                   SUM(sample_count)
            FROM linkwatch.traffic_rollup_hourly
            WHERE bucket >= $1 AND bucket < $2
            GROUP BY device_id, interface_name, day
            ON CONFLICT (device_id, interface_name, bucket) DO UPDATE SET
                avg_rx_bps = EXCLUDED.avg_rx_bps, max_rx_bps = EXCLUDED.max_rx_bps,
                avg_tx_bps = EXCLUDED.avg_tx_bps, max_tx_bps = EXCLUDED.max_tx_bps,
                avg_total_bps = EXCLUDED.avg_total_bps,
                max_total_bps = EXCLUDED.max_total_bps,
                sample_count = EXCLUDED.sample_count
        """
        return _affected(await self.conn.execute(query, since, until))

    async def find_range(
        self,
        granularity: str,
        device_id: str,
        interface_name: str | None,
        start: datetime,
        end: datetime,
    ) -> list[TrafficPoint]:
        """Rolled up points whose bucket lies in [start, end)."""
        uid = _as_uuid(device_id)
        if uid is None:
            return []
        table = ROLLUP_TABLES[granularity]
        query = f"""
            SELECT interface_name, bucket AS timestamp,
                   avg_rx_bps AS rx_bps, avg_tx_bps AS tx_bps, avg_total_bps AS total_bps,
                   max_rx_bps, max_tx_bps, max_total_bps, sample_count
            FROM {table}
            WHERE device_id = $1
              AND ($2::text IS NULL OR interface_name = $2)
              AND bucket >= $3 AND bucket < $4
            ORDER BY bucket ASC, interface_name ASC
        """
        rows = await self.conn.fetch(query, uid, interface_name, start, end)
        return [TrafficPoint(**_row_to_dict(row)) for row in rows]

    async def delete_older_than(self, granularity: str, cutoff: datetime, batch_size: int) -> int:
        """Delete at most batch_size buckets older than the cutoff."""
        table = ROLLUP_TABLES[granularity]
        query = f"""
            DELETE FROM {table}
            WHERE bucket < $1
              AND (device_id, interface_name, bucket) IN (
                SELECT device_id, interface_name, bucket FROM {table}
                WHERE bucket < $1
                ORDER BY bucket ASC
                LIMIT $2
            )
        """
        return _affected(await self.conn.execute(query, cutoff, batch_size))


ALERT_COLUMNS = """
    id::text, device_id::text, interface_name, cause, severity, message, current_bps,
    threshold_bps, interface_comment, created_at, acknowledged, acknowledged_by,
    acknowledged_at
"""


class AlertRepository:
    """Repository for alert operations."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    async def find_open(self, device_id: str, interface_name: str | None) -> Alert | None:
        """The unacknowledged alert of a device/interface, if any."""
        query = f"""
            SELECT {ALERT_COLUMNS}
            FROM linkwatch.alerts
            WHERE device_id = $1
              AND COALESCE(interface_name, '') = COALESCE($2::text, '')
              AND acknowledged = false
        """
        row = await self.conn.fetchrow(query, UUID(device_id), interface_name)
        return Alert(**_row_to_dict(row)) if row else None

    async def create(self, data: AlertCreate) -> Alert:
        """Insert a new open alert.

        Raises:
            DuplicateAlertRace: another writer already holds the open alert.
        """
        query = f"""
            INSERT INTO linkwatch.alerts
                (device_id, interface_name, cause, severity, message, current_bps,
                 threshold_bps, interface_comment)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {ALERT_COLUMNS}
        """
        try:
            row = await self.conn.fetchrow(
                query,
                UUID(data.device_id),
                data.interface_name,
                data.cause.value,
                data.severity.value,
                data.message,
                data.current_bps,
                data.threshold_bps,
                data.interface_comment,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateAlertRace(data.device_id, data.interface_name) from e
        return Alert(**_row_to_dict(row))

    async def acknowledge(
        self,
        alert_id: str,
        acknowledged_by: str,
        acknowledged_at: datetime,
    ) -> Alert | None:
        """Close an open alert. Returns None when it was not open."""
        uid = _as_uuid(alert_id)
        if uid is None:
            return None
        query = f"""
            UPDATE linkwatch.alerts
            SET acknowledged = true, acknowledged_by = $2, acknowledged_at = $3
            WHERE id = $1 AND acknowledged = false
            RETURNING {ALERT_COLUMNS}
        """
        row = await self.conn.fetchrow(query, uid, acknowledged_by, acknowledged_at)
        return Alert(**_row_to_dict(row)) if row else None

    async def find_by_id(self, alert_id: str) -> Alert | None:
        """Find an alert by ID."""
        uid = _as_uuid(alert_id)
        if uid is None:
            return None
        row = await self.conn.fetchrow(
            f"SELECT {ALERT_COLUMNS} FROM linkwatch.alerts WHERE id = $1", uid
        )
        return Alert(**_row_to_dict(row)) if row else None

    async def find_all(self, flt: AlertFilter) -> tuple[list[Alert], int]:
        """Find alerts matching a filter, newest first, with the total count."""
        where_clauses = []
        params: list[Any] = []
        param_idx = 1

        if flt.device_id:
            uid = _as_uuid(flt.device_id)
            if uid is None:
                return [], 0
            where_clauses.append(f"device_id = ${param_idx}")
            params.append(uid)
            param_idx += 1

        if flt.interface_name:
            where_clauses.append(f"interface_name = ${param_idx}")
            params.append(flt.interface_name)
            param_idx += 1

        if flt.acknowledged is not None:
            where_clauses.append(f"acknowledged = ${param_idx}")
            params.append(flt.acknowledged)
            param_idx += 1

        if flt.since:
            where_clauses.append(f"created_at >= ${param_idx}")
            params.append(flt.since)
            param_idx += 1

        if flt.until:
            where_clauses.append(f"created_at < ${param_idx}")
            params.append(flt.until)
            param_idx += 1

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""

        total = await self.conn.fetchval(
            f"SELECT COUNT(*) FROM linkwatch.alerts {where_sql}", *params
        )

        offset = (flt.page - 1) * flt.limit
        params.extend([flt.limit, offset])
        query = f"""
            SELECT {ALERT_COLUMNS}
            FROM linkwatch.alerts
            {where_sql}
            ORDER BY created_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        rows = await self.conn.fetch(query, *params)
        return [Alert(**_row_to_dict(row)) for row in rows], total
