"""Interface models: live readings, cached inventory and monitor configuration."""

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, model_validator


class InterfaceReading(BaseModel):
    """One interface as returned by a device client."""

    name: str = Field(..., min_length=1, max_length=255)
    comment: str | None = None
    mac_address: str | None = None
    type: str | None = None
    running: bool = False
    disabled: bool = False
    rx_bytes_total: int = Field(default=0, ge=0)
    tx_bytes_total: int = Field(default=0, ge=0)


class CachedInterface(BaseModel):
    """Interface inventory row refreshed as a side effect of polling."""

    device_id: str
    name: str
    comment: str | None = None
    mac_address: str | None = None
    type: str | None = None
    running: bool = False
    disabled: bool = False
    last_seen: datetime
    created_at: datetime | None = None

    class Config:
        from_attributes = True

    def is_stale(self, now: datetime, window: timedelta) -> bool:
        """Check whether the interface has not been seen within the window."""
        return now - self.last_seen > window


class AvailableInterface(CachedInterface):
    """Cached interface offered to the add-monitor flow."""

    stale: bool = False


class MonitoredInterface(BaseModel):
    """Interface an operator opted to alert on, with its thresholds."""

    id: str
    device_id: str
    interface_name: str = Field(..., min_length=1, max_length=255)
    enabled: bool = True
    min_rx_bps: float | None = Field(default=None, ge=0)
    min_tx_bps: float | None = Field(default=None, ge=0)
    min_total_bps: float | None = Field(default=None, ge=0)
    evaluation_window: int | None = Field(default=None, ge=1, le=60)
    alert_on_down: bool = True
    email_notifications: bool = False

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def require_a_condition(self) -> "MonitoredInterface":
        """A monitor must be able to breach on something."""
        floors = (self.min_rx_bps, self.min_tx_bps, self.min_total_bps)
        if not self.alert_on_down and all(f is None for f in floors):
            raise ValueError("monitor has no threshold and down alerts are disabled")
        return self

    @property
    def floors(self) -> dict[str, float]:
        """Configured floors keyed by direction."""
        configured = {
            "rx": self.min_rx_bps,
            "tx": self.min_tx_bps,
            "total": self.min_total_bps,
        }
        return {k: v for k, v in configured.items() if v is not None}
