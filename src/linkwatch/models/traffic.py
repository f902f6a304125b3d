"""Traffic sample and time-series query models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Granularity(str, Enum):
    """Resolution of a traffic series."""
    AUTO = "auto"
    RAW = "raw"
    HOURLY = "hourly"
    DAILY = "daily"


class TrafficSample(BaseModel):
    """Immutable rate sample for one interface on one poll tick."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    interface_name: str
    timestamp: datetime
    rx_bytes_total: int = Field(ge=0)
    tx_bytes_total: int = Field(ge=0)
    rx_bps: float = Field(default=0.0, ge=0)
    tx_bps: float = Field(default=0.0, ge=0)
    total_bps: float = Field(default=0.0, ge=0)
    # Not persisted: first observation or counter reset, rate carries no signal
    is_baseline: bool = Field(default=False, exclude=True)

    @property
    def key(self) -> tuple[str, str, datetime]:
        """Natural key of the sample."""
        return (self.device_id, self.interface_name, self.timestamp)


class TrafficPoint(BaseModel):
    """One point of a traffic series, raw or rolled up."""

    interface_name: str
    timestamp: datetime
    rx_bps: float
    tx_bps: float
    total_bps: float
    max_rx_bps: float | None = None
    max_tx_bps: float | None = None
    max_total_bps: float | None = None
    sample_count: int = 1


class TrafficSeries(BaseModel):
    """Result of a traffic query."""

    device_id: str
    interface_name: str | None = None
    start: datetime
    end: datetime
    granularity: Granularity
    points: list[TrafficPoint] = Field(default_factory=list)


class RealtimePoint(BaseModel):
    """Live rate pushed to realtime viewers."""

    device_id: str
    interface_name: str
    comment: str | None = None
    timestamp: datetime
    rx_bps: float
    tx_bps: float
    total_bps: float
