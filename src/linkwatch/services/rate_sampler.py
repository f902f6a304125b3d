"""Counter-to-rate conversion."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..core.logging import get_logger
from ..models.interface import InterfaceReading
from ..models.traffic import TrafficSample

logger = get_logger(__name__)


@dataclass(frozen=True)
class CounterSnapshot:
    """Cumulative counters of one interface at one instant."""

    rx_bytes_total: int
    tx_bytes_total: int
    timestamp: datetime


def counter_rate(previous: int, current: int, elapsed: float) -> tuple[float, bool]:
    """Bytes per second between two cumulative reads.

    Returns the rate and whether the counter went backwards. A decrease is a
    reset (reboot, counter clear, wrap) and yields 0 for the tick; no wrap
    arithmetic is attempted.
    """
    if elapsed <= 0:
        return 0.0, False
    if current < previous:
        return 0.0, True
    return (current - previous) / elapsed, False


class RateSampler:
    """Keeps the previous counters per (device, interface) and emits rate samples.

    One instance per polling cadence. The steady scheduler and every realtime
    task own separate samplers so their deltas never interleave.
    """

    def __init__(self, max_gap_seconds: float | None = None) -> None:
        self.max_gap_seconds = max_gap_seconds
        self._previous: dict[tuple[str, str], CounterSnapshot] = {}
        self._seeded: set[str] = set()

    def is_seeded(self, device_id: str) -> bool:
        """Whether the device already has a baseline (observed or seeded)."""
        return device_id in self._seeded

    def seed(self, device_id: str, samples: Iterable[TrafficSample], now: datetime) -> int:
        """Prime baselines from persisted samples so a restart keeps its rates.

        Samples older than max_gap_seconds are ignored; a rate across a long
        outage would be an average over the gap, not a tick rate.
        """
        self._seeded.add(device_id)
        count = 0
        for sample in samples:
            age = (now - sample.timestamp).total_seconds()
            if self.max_gap_seconds is not None and age > self.max_gap_seconds:
                continue
            key = (device_id, sample.interface_name)
            if key in self._previous:
                continue
            self._previous[key] = CounterSnapshot(
                sample.rx_bytes_total, sample.tx_bytes_total, sample.timestamp
            )
            count += 1
        if count:
            logger.debug("rate_sampler_seeded", device_id=device_id, interfaces=count)
        return count

    def sample(
        self,
        device_id: str,
        readings: list[InterfaceReading],
        timestamp: datetime,
    ) -> list[TrafficSample]:
        """Convert one fetch into rate samples, one per interface."""
        self._seeded.add(device_id)
        samples = []
        for reading in readings:
            key = (device_id, reading.name)
            previous = self._previous.get(key)
            current = CounterSnapshot(reading.rx_bytes_total, reading.tx_bytes_total, timestamp)
            samples.append(self._rate(device_id, reading.name, previous, current))
            self._previous[key] = current
        return samples

    def _rate(
        self,
        device_id: str,
        interface_name: str,
        previous: CounterSnapshot | None,
        current: CounterSnapshot,
    ) -> TrafficSample:
        base = dict(
            device_id=device_id,
            interface_name=interface_name,
            timestamp=current.timestamp,
            rx_bytes_total=current.rx_bytes_total,
            tx_bytes_total=current.tx_bytes_total,
        )
        if previous is None:
            return TrafficSample(**base, is_baseline=True)

        elapsed = (current.timestamp - previous.timestamp).total_seconds()
        if elapsed <= 0:
            return TrafficSample(**base, is_baseline=True)
        if self.max_gap_seconds is not None and elapsed > self.max_gap_seconds:
            # an average over an outage is not a tick rate; restart from here
            logger.info(
                "rate_gap_rebaselined",
                device_id=device_id,
                interface=interface_name,
                gap_seconds=elapsed,
            )
            return TrafficSample(**base, is_baseline=True)

        rx_bps, rx_reset = counter_rate(previous.rx_bytes_total, current.rx_bytes_total, elapsed)
        tx_bps, tx_reset = counter_rate(previous.tx_bytes_total, current.tx_bytes_total, elapsed)
        if rx_reset or tx_reset:
            logger.info(
                "counter_reset_detected",
                device_id=device_id,
                interface=interface_name,
                rx=rx_reset,
                tx=tx_reset,
            )

        return TrafficSample(
            **base,
            rx_bps=rx_bps,
            tx_bps=tx_bps,
            total_bps=rx_bps + tx_bps,
            is_baseline=rx_reset or tx_reset,
        )

    def forget(self, device_id: str) -> None:
        """Drop every baseline of a device."""
        self._seeded.discard(device_id)
        for key in [k for k in self._previous if k[0] == device_id]:
            del self._previous[key]
