"""Alert models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

SYSTEM_ACTOR = "system"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class BreachCause(str, Enum):
    """Why an incident was opened."""
    LOW_TRAFFIC = "low_traffic"
    INTERFACE_DOWN = "interface_down"
    DEVICE_UNREACHABLE = "device_unreachable"


class AlertEventType(str, Enum):
    """Alert lifecycle transitions published to operators."""
    CREATED = "created"
    ACKNOWLEDGED = "acknowledged"


def format_duration(seconds: float) -> str:
    """Render an incident duration using its two most significant units.

    45 -> "45s", 9000 -> "2h 30m", 194400 -> "2d 6h".
    """
    total = max(int(seconds), 0)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class AlertBase(BaseModel):
    """Base alert model."""

    device_id: str
    interface_name: str | None = None
    cause: BreachCause
    severity: AlertSeverity
    message: str
    current_bps: float | None = None
    threshold_bps: float | None = None
    interface_comment: str | None = None


class AlertCreate(AlertBase):
    """Model for opening a new incident."""
    pass


class Alert(AlertBase):
    """Full alert model with all fields."""

    id: str
    created_at: datetime
    acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def duration_seconds(self) -> float | None:
        """Incident length; None while the alert is open."""
        if not self.acknowledged or self.acknowledged_at is None:
            return None
        return (self.acknowledged_at - self.created_at).total_seconds()

    @computed_field
    @property
    def duration(self) -> str | None:
        """Human readable incident length."""
        seconds = self.duration_seconds
        return format_duration(seconds) if seconds is not None else None


class AlertAcknowledge(BaseModel):
    """Operator acknowledge request."""

    user_id: str = Field(..., min_length=1, max_length=255)


class AlertFilter(BaseModel):
    """Filter for listing alerts."""

    device_id: str | None = None
    interface_name: str | None = None
    acknowledged: bool | None = None
    since: datetime | None = None
    until: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=500)


class AlertEvent(BaseModel):
    """Notification payload for a lifecycle transition."""

    type: AlertEventType
    alert: Alert
    device_name: str | None = None
    timestamp: datetime
    # user id -> address of recipients mailed about this event; not serialized
    email_recipients: dict[str, str] = Field(default_factory=dict, exclude=True)
