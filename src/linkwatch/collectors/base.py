"""Device client capability and per-family registry."""

from typing import Protocol

from ..core.exceptions import ConfigurationError, TransientDeviceError
from ..core.logging import get_logger
from ..models.device import ConnectionMethod, Device
from ..models.interface import InterfaceReading

logger = get_logger(__name__)


class DeviceClient(Protocol):
    """Fetches the interface list and cumulative counters of one device.

    Implementations raise TransientDeviceError for every failure.
    """

    async def fetch_interfaces(self, device: Device) -> list[InterfaceReading]: ...

    async def close(self) -> None: ...


class DeviceClientRegistry:
    """Selects a device client from the device's connection method."""

    def __init__(self, clients: dict[ConnectionMethod, DeviceClient] | None = None) -> None:
        self._clients: dict[ConnectionMethod, DeviceClient] = dict(clients or {})

    def register(self, method: ConnectionMethod, client: DeviceClient) -> None:
        self._clients[method] = client

    def client_for(self, device: Device) -> DeviceClient:
        try:
            return self._clients[device.connection_method]
        except KeyError:
            raise ConfigurationError(
                f"no device client for connection method {device.connection_method.value}"
            ) from None

    async def fetch_interfaces(self, device: Device) -> list[InterfaceReading]:
        """Fetch through the client registered for the device's family.

        A device that also has SNMP enabled is retried over SNMP when its
        primary transport fails.
        """
        try:
            return await self.client_for(device).fetch_interfaces(device)
        except TransientDeviceError as e:
            fallback = self._snmp_fallback(device)
            if fallback is None:
                raise
            logger.warning(
                "device_fetch_falling_back",
                device_id=device.id,
                method=device.connection_method.value,
                error=e.reason,
            )
            try:
                return await fallback.fetch_interfaces(device)
            except TransientDeviceError as snmp_error:
                raise TransientDeviceError(
                    device.id, f"{e.reason}; snmp fallback: {snmp_error.reason}"
                ) from snmp_error

    def _snmp_fallback(self, device: Device) -> DeviceClient | None:
        if not device.snmp_enabled or device.connection_method == ConnectionMethod.SNMP:
            return None
        return self._clients.get(ConnectionMethod.SNMP)

    async def close(self) -> None:
        for method, client in self._clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning("device_client_close_failed", method=method.value, error=str(e))
