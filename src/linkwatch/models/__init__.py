"""linkwatch data models."""

from .common import APIResponse, PaginatedResponse, Pagination, ErrorResponse
from .device import Device, ConnectionMethod, SNMPVersion
from .interface import InterfaceReading, CachedInterface, AvailableInterface, MonitoredInterface
from .traffic import Granularity, TrafficSample, TrafficPoint, TrafficSeries, RealtimePoint
from .alert import (
    SYSTEM_ACTOR,
    Alert,
    AlertAcknowledge,
    AlertCreate,
    AlertEvent,
    AlertEventType,
    AlertFilter,
    AlertSeverity,
    BreachCause,
    format_duration,
)

__all__ = [
    # Common
    "APIResponse",
    "PaginatedResponse",
    "Pagination",
    "ErrorResponse",
    # Device
    "Device",
    "ConnectionMethod",
    "SNMPVersion",
    # Interface
    "InterfaceReading",
    "CachedInterface",
    "AvailableInterface",
    "MonitoredInterface",
    # Traffic
    "Granularity",
    "TrafficSample",
    "TrafficPoint",
    "TrafficSeries",
    "RealtimePoint",
    # Alert
    "SYSTEM_ACTOR",
    "Alert",
    "AlertAcknowledge",
    "AlertCreate",
    "AlertEvent",
    "AlertEventType",
    "AlertFilter",
    "AlertSeverity",
    "BreachCause",
    "format_duration",
]
