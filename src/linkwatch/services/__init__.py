"""linkwatch services."""

from .alert_engine import AlertEngine, ViolationTracker, traffic_severity
from .crypto import CryptoService, get_crypto_service
from .interface_cache import InterfaceCache
from .maintenance import RetentionWorker, RollupWorker
from .notifications import (
    CompositePublisher,
    EmailPublisher,
    NATSPublisher,
    NotificationPublisher,
    NullPublisher,
    fan_out,
)
from .rate_sampler import RateSampler, counter_rate
from .timeseries import TimeSeriesStore, pick_granularity

__all__ = [
    "AlertEngine",
    "ViolationTracker",
    "traffic_severity",
    "CryptoService",
    "get_crypto_service",
    "InterfaceCache",
    "RetentionWorker",
    "RollupWorker",
    "CompositePublisher",
    "EmailPublisher",
    "NATSPublisher",
    "NotificationPublisher",
    "NullPublisher",
    "fan_out",
    "RateSampler",
    "counter_rate",
    "TimeSeriesStore",
    "pick_granularity",
]
