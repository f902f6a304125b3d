"""Device clients and polling drivers."""

from .base import DeviceClient, DeviceClientRegistry
from .realtime import RealtimePoller, RealtimeSubscription
from .routeros_api import RouterOSApiClient
from .routeros_rest import RouterOSRestClient
from .scheduler import DevicePollHealth, PollingScheduler, PollOutcome, tick_slot
from .snmp_client import SnmpInterfaceClient

__all__ = [
    "DeviceClient",
    "DeviceClientRegistry",
    "RealtimePoller",
    "RealtimeSubscription",
    "RouterOSApiClient",
    "RouterOSRestClient",
    "DevicePollHealth",
    "PollingScheduler",
    "PollOutcome",
    "tick_slot",
    "SnmpInterfaceClient",
]
