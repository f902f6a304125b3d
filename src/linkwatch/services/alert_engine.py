"""Alert evaluation and lifecycle.

Per (device, interface) an incident is Normal -> Open -> Acknowledged. The
storage layer holds at most one open alert per key through a partial unique
index; this engine holds no locks and treats a lost insert race as a no-op.
"""

import time
from datetime import datetime, timezone
from typing import Callable

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import DeduplicationInvariantViolation, DuplicateAlertRace
from ..core.logging import get_logger
from ..db.provider import Repositories
from ..models.alert import (
    SYSTEM_ACTOR,
    Alert,
    AlertCreate,
    AlertEvent,
    AlertEventType,
    AlertFilter,
    AlertSeverity,
    BreachCause,
)
from ..models.device import Device
from ..models.interface import InterfaceReading, MonitoredInterface
from ..models.traffic import TrafficSample
from .notifications import NotificationPublisher, NullPublisher, fan_out

logger = get_logger(__name__)

ViolationKey = tuple[BreachCause, str, str | None]

DIRECTION_LABELS = {"rx": "RX", "tx": "TX", "total": "Total"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def traffic_severity(current_bps: float, floor_bps: float) -> AlertSeverity:
    """Severity from how far below the floor the traffic fell."""
    if floor_bps <= 0:
        return AlertSeverity.INFO
    percent_below = (floor_bps - current_bps) / floor_bps * 100
    if percent_below > 50:
        return AlertSeverity.CRITICAL
    if percent_below > 25:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def _kbps(value: float) -> str:
    return f"{value / 1024:.2f} KB/s"


class ViolationTracker:
    """Consecutive-breach counters kept in process memory.

    Counters not touched for ttl_seconds are dropped by cleanup(), so a
    monitor that was removed or stopped reporting does not linger.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._counts: dict[ViolationKey, tuple[int, float]] = {}

    def hit(self, key: ViolationKey) -> int:
        """Record one more breaching evaluation and return the streak length."""
        count = self._counts.get(key, (0, 0.0))[0] + 1
        self._counts[key] = (count, self._clock())
        return count

    def count(self, key: ViolationKey) -> int:
        return self._counts.get(key, (0, 0.0))[0]

    def clear(self, key: ViolationKey) -> None:
        self._counts.pop(key, None)

    def reset_for(self, device_id: str, interface_name: str | None) -> None:
        """Drop every cause's counter for a device/interface."""
        for key in [k for k in self._counts if k[1] == device_id and k[2] == interface_name]:
            del self._counts[key]

    def cleanup(self) -> int:
        """Remove stale counters; returns how many were dropped."""
        cutoff = self._clock() - self.ttl_seconds
        stale = [k for k, (_, touched) in self._counts.items() if touched < cutoff]
        for key in stale:
            del self._counts[key]
        if stale:
            logger.debug("violation_counters_cleaned", removed=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._counts)


class AlertEngine:
    """Evaluates interface state against monitor thresholds."""

    def __init__(
        self,
        repos: Repositories,
        publisher: NotificationPublisher | None = None,
        settings: Settings | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repos = repos
        self.publisher = publisher or NullPublisher()
        self.settings = settings or default_settings
        self.tracker = ViolationTracker(self.settings.violation_counter_ttl_seconds)
        self._now = now

    async def evaluate_device(
        self,
        device: Device,
        monitors: list[MonitoredInterface],
        readings: dict[str, InterfaceReading],
        samples: dict[str, TrafficSample],
    ) -> list[Alert]:
        """Evaluate every enabled monitor of a device for one tick.

        One failing interface does not stop the others. A broken uniqueness
        invariant is re-raised after the remaining monitors were evaluated.
        """
        created: list[Alert] = []
        invariant_error: DeduplicationInvariantViolation | None = None

        for monitor in monitors:
            if not monitor.enabled:
                continue
            name = monitor.interface_name
            try:
                alert = await self.evaluate_interface(
                    device, monitor, readings.get(name), samples.get(name)
                )
                if alert:
                    created.append(alert)
            except DeduplicationInvariantViolation as e:
                invariant_error = e
            except Exception as e:
                logger.error(
                    "interface_evaluation_failed",
                    device_id=device.id,
                    interface=name,
                    error=str(e),
                )

        if invariant_error is not None:
            raise invariant_error
        return created

    async def evaluate_interface(
        self,
        device: Device,
        monitor: MonitoredInterface,
        reading: InterfaceReading | None,
        sample: TrafficSample | None,
    ) -> Alert | None:
        """Run one interface through the state machine; returns a newly opened alert."""
        name = monitor.interface_name
        if reading is None:
            # Interface absent from the fetch: no data is not a breach
            logger.debug("monitored_interface_missing", device_id=device.id, interface=name)
            return None

        window = monitor.evaluation_window or self.settings.alert_confirmation_checks
        down_key: ViolationKey = (BreachCause.INTERFACE_DOWN, device.id, name)
        traffic_key: ViolationKey = (BreachCause.LOW_TRAFFIC, device.id, name)

        async with self.repos.alerts() as repo:
            current = await repo.find_open(device.id, name)

        if monitor.alert_on_down and not reading.running:
            self.tracker.clear(traffic_key)
            count = self.tracker.hit(down_key)
            if current and current.cause == BreachCause.INTERFACE_DOWN:
                return None
            if count < window:
                logger.debug(
                    "interface_down_pending", device_id=device.id, interface=name,
                    check=count, window=window,
                )
                return None
            if current:
                # Down supersedes an open low-traffic incident
                await self._auto_acknowledge(current, device)
            alert, created = await self.open_alert(
                device,
                AlertCreate(
                    device_id=device.id,
                    interface_name=name,
                    cause=BreachCause.INTERFACE_DOWN,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Interface {name} is DOWN",
                    interface_comment=reading.comment,
                ),
                email=monitor.email_notifications,
            )
            return alert if created else None

        self.tracker.clear(down_key)
        if current and current.cause == BreachCause.INTERFACE_DOWN:
            await self._auto_acknowledge(current, device)
            current = None

        if not monitor.floors:
            return None
        if sample is None or sample.is_baseline:
            # Baseline or reset tick carries no rate signal either way
            return None

        breaches = self._breaches(monitor, sample)
        if not breaches:
            self.tracker.clear(traffic_key)
            if current and current.cause == BreachCause.LOW_TRAFFIC:
                await self._auto_acknowledge(current, device)
            return None

        count = self.tracker.hit(traffic_key)
        if current:
            return None
        if count < window:
            logger.debug(
                "low_traffic_pending", device_id=device.id, interface=name,
                check=count, window=window,
            )
            return None

        direction, current_bps, floor_bps = max(
            breaches, key=lambda b: (b[2] - b[1]) / b[2]
        )
        label = DIRECTION_LABELS[direction]
        alert, created = await self.open_alert(
            device,
            AlertCreate(
                device_id=device.id,
                interface_name=name,
                cause=BreachCause.LOW_TRAFFIC,
                severity=traffic_severity(current_bps, floor_bps),
                message=(
                    f"{label} traffic on {name} is below threshold: "
                    f"{_kbps(current_bps)} < {_kbps(floor_bps)}"
                ),
                current_bps=current_bps,
                threshold_bps=floor_bps,
                interface_comment=reading.comment,
            ),
            email=monitor.email_notifications,
        )
        return alert if created else None

    @staticmethod
    def _breaches(
        monitor: MonitoredInterface, sample: TrafficSample
    ) -> list[tuple[str, float, float]]:
        observed = {"rx": sample.rx_bps, "tx": sample.tx_bps, "total": sample.total_bps}
        return [
            (direction, observed[direction], floor)
            for direction, floor in monitor.floors.items()
            if observed[direction] < floor
        ]

    async def open_alert(
        self, device: Device, data: AlertCreate, email: bool = False
    ) -> tuple[Alert, bool]:
        """Open an incident unless one is already open for the key.

        Returns the open alert and whether this call created it. With email
        set, recipients that have an address are also mailed.

        Raises:
            DeduplicationInvariantViolation: the insert was rejected as a
                duplicate but no open alert exists for the key.
        """
        async with self.repos.alerts() as repo:
            existing = await repo.find_open(data.device_id, data.interface_name)
            if existing:
                return existing, False
            try:
                alert = await repo.create(data)
            except DuplicateAlertRace:
                existing = await repo.find_open(data.device_id, data.interface_name)
                if existing is None:
                    logger.critical(
                        "alert_dedup_invariant_violated",
                        device_id=data.device_id,
                        interface=data.interface_name,
                    )
                    raise DeduplicationInvariantViolation(
                        f"open alert constraint fired for {data.device_id}/"
                        f"{data.interface_name or '<device>'} but no open alert was found"
                    )
                logger.info(
                    "alert_create_race_lost",
                    device_id=data.device_id,
                    interface=data.interface_name,
                    alert_id=existing.id,
                )
                return existing, False

        logger.info(
            "alert_created",
            alert_id=alert.id,
            device_id=alert.device_id,
            interface=alert.interface_name,
            cause=alert.cause.value,
            severity=alert.severity.value,
        )
        await self._notify(alert, AlertEventType.CREATED, device, email=email)
        return alert, True

    async def acknowledge(self, alert_id: str, user_id: str) -> Alert | None:
        """Operator acknowledge. Acknowledging a closed alert returns it unchanged."""
        async with self.repos.alerts() as repo:
            alert = await repo.acknowledge(alert_id, user_id, self._now())
            if alert is None:
                return await repo.find_by_id(alert_id)

        self.tracker.reset_for(alert.device_id, alert.interface_name)
        logger.info("alert_acknowledged", alert_id=alert.id, acknowledged_by=user_id)
        await self._notify(alert, AlertEventType.ACKNOWLEDGED)
        return alert

    async def _auto_acknowledge(self, alert: Alert, device: Device) -> Alert | None:
        async with self.repos.alerts() as repo:
            closed = await repo.acknowledge(alert.id, SYSTEM_ACTOR, self._now())
        if closed is None:
            # Someone else closed it first
            return None

        self.tracker.reset_for(closed.device_id, closed.interface_name)
        logger.info(
            "alert_auto_acknowledged",
            alert_id=closed.id,
            device_id=closed.device_id,
            interface=closed.interface_name,
            cause=closed.cause.value,
            duration=closed.duration,
        )
        await self._notify(closed, AlertEventType.ACKNOWLEDGED, device)
        return closed

    async def record_unreachable(self, device: Device, reason: str) -> Alert | None:
        """Count a failed poll; opens a device-level alert when configured."""
        if not self.settings.alert_on_unreachable:
            return None
        count = self.tracker.hit((BreachCause.DEVICE_UNREACHABLE, device.id, None))
        if count < self.settings.unreachable_confirmation_checks:
            return None
        alert, created = await self.open_alert(
            device,
            AlertCreate(
                device_id=device.id,
                interface_name=None,
                cause=BreachCause.DEVICE_UNREACHABLE,
                severity=AlertSeverity.CRITICAL,
                message=f"Device {device.name} is UNREACHABLE ({device.address}): {reason}",
            ),
        )
        return alert if created else None

    async def record_reachable(self, device: Device) -> None:
        """Clear the unreachable streak and close a device-level alert."""
        if not self.settings.alert_on_unreachable:
            return
        self.tracker.clear((BreachCause.DEVICE_UNREACHABLE, device.id, None))
        async with self.repos.alerts() as repo:
            current = await repo.find_open(device.id, None)
        if current and current.cause == BreachCause.DEVICE_UNREACHABLE:
            await self._auto_acknowledge(current, device)

    async def list_alerts(self, flt: AlertFilter) -> tuple[list[Alert], int]:
        """Alerts matching a filter, newest first."""
        async with self.repos.alerts() as repo:
            return await repo.find_all(flt)

    def cleanup_counters(self) -> int:
        return self.tracker.cleanup()

    async def _notify(
        self,
        alert: Alert,
        event_type: AlertEventType,
        device: Device | None = None,
        email: bool = False,
    ) -> None:
        try:
            if device is None:
                async with self.repos.devices() as repo:
                    device = await repo.find_by_id(alert.device_id)
            recipients = device.alert_recipients if device else []
            mailed: dict[str, str] = {}
            if email and device:
                mailed = {
                    user_id: device.recipient_emails[user_id]
                    for user_id in recipients
                    if user_id in device.recipient_emails
                }
            event = AlertEvent(
                type=event_type,
                alert=alert,
                device_name=device.name if device else None,
                timestamp=self._now(),
                email_recipients=mailed,
            )
            await fan_out(self.publisher, recipients, event)
        except Exception as e:
            logger.warning(
                "alert_notification_failed",
                alert_id=alert.id,
                event_type=event_type.value,
                error=str(e),
            )
