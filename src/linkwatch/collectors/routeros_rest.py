"""RouterOS v7 REST API device client."""

from typing import Any

import httpx

from ..core.config import settings
from ..core.exceptions import TransientDeviceError
from ..core.logging import get_logger
from ..models.device import Device
from ..models.interface import InterfaceReading
from ..services.crypto import CryptoService, get_crypto_service

logger = get_logger(__name__)

INTERFACE_FIELDS = "name,type,mac-address,running,disabled,dynamic,comment,rx-byte,tx-byte"


def _flag(value: Any) -> bool:
    """RouterOS REST renders booleans as the strings 'true' / 'false'."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "yes")


def _counter(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def parse_interface(item: dict[str, Any]) -> InterfaceReading:
    """Build a reading from one /rest/interface entry."""
    return InterfaceReading(
        name=item["name"],
        comment=item.get("comment") or None,
        mac_address=item.get("mac-address") or None,
        type=item.get("type"),
        running=_flag(item.get("running", False)),
        disabled=_flag(item.get("disabled", False)),
        rx_bytes_total=_counter(item.get("rx-byte")),
        tx_bytes_total=_counter(item.get("tx-byte")),
    )


def select_interfaces(device: Device, items: list[Any]) -> list[InterfaceReading]:
    """Readings for the named entries, dropping dynamic ones unless the device opts in."""
    readings = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        if _flag(item.get("dynamic", False)) and not device.include_dynamic_interfaces:
            continue
        readings.append(parse_interface(item))
    return readings


class RouterOSRestClient:
    """Reads interfaces and byte counters over HTTPS with basic auth."""

    def __init__(
        self,
        crypto: CryptoService | None = None,
        timeout: float | None = None,
        verify: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.crypto = crypto or get_crypto_service()
        self.client = httpx.AsyncClient(
            timeout=timeout or settings.device_fetch_timeout,
            verify=settings.rest_verify_tls if verify is None else verify,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def base_url(self, device: Device) -> str:
        return f"https://{device.address}:{device.rest_port}/rest"

    async def fetch_interfaces(self, device: Device) -> list[InterfaceReading]:
        try:
            password = self.crypto.decrypt(device.encrypted_password)
        except ValueError as e:
            raise TransientDeviceError(device.id, "stored credential cannot be decrypted") from e

        try:
            response = await self.client.get(
                f"{self.base_url(device)}/interface",
                params={".proplist": INTERFACE_FIELDS},
                auth=(device.username or "", password),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise TransientDeviceError(
                device.id, f"HTTP {e.response.status_code} from {device.address}"
            ) from e
        except httpx.HTTPError as e:
            raise TransientDeviceError(device.id, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise TransientDeviceError(device.id, "response is not JSON") from e

        if not isinstance(payload, list):
            raise TransientDeviceError(device.id, "unexpected interface payload")

        readings = select_interfaces(device, payload)
        logger.debug("routeros_interfaces_fetched", device_id=device.id, count=len(readings))
        return readings
