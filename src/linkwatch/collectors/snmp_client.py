"""SNMP v1/v2c device client walking IF-MIB."""

from typing import Any

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    walk_cmd,
)

from ..core.config import settings
from ..core.exceptions import TransientDeviceError
from ..core.logging import get_logger
from ..models.device import Device, SNMPVersion
from ..models.interface import InterfaceReading

logger = get_logger(__name__)

# ============================================
# IF-MIB columns (RFC 2863)
# ============================================

OID_IF_DESCR = "1.3.6.1.2.1.2.2.1.2"
OID_IF_TYPE = "1.3.6.1.2.1.2.2.1.3"
OID_IF_PHYS_ADDRESS = "1.3.6.1.2.1.2.2.1.6"
OID_IF_ADMIN_STATUS = "1.3.6.1.2.1.2.2.1.7"
OID_IF_OPER_STATUS = "1.3.6.1.2.1.2.2.1.8"
OID_IF_IN_OCTETS = "1.3.6.1.2.1.2.2.1.10"
OID_IF_OUT_OCTETS = "1.3.6.1.2.1.2.2.1.16"
OID_IF_NAME = "1.3.6.1.2.1.31.1.1.1.1"
OID_IF_HC_IN_OCTETS = "1.3.6.1.2.1.31.1.1.1.6"
OID_IF_HC_OUT_OCTETS = "1.3.6.1.2.1.31.1.1.1.10"
OID_IF_ALIAS = "1.3.6.1.2.1.31.1.1.1.18"

# ifAdminStatus / ifOperStatus
STATUS_UP = 1
STATUS_DOWN = 2

IF_TYPE_NAMES = {
    6: "ether",
    24: "loopback",
    53: "vlan",
    71: "wlan",
    131: "tunnel",
    135: "vlan",
    136: "vlan",
    161: "bond",
    209: "bridge",
}


def format_mac(value: Any) -> str | None:
    """Render an ifPhysAddress octet string as AA:BB:CC:DD:EE:FF."""
    raw = value.asOctets() if hasattr(value, "asOctets") else bytes(value)
    if not raw:
        return None
    return ":".join(f"{b:02X}" for b in raw)


class SnmpInterfaceClient:
    """Reads interface state and octet counters with community-based SNMP."""

    def __init__(self, timeout: float | None = None, retries: int | None = None) -> None:
        self.engine = SnmpEngine()
        self.timeout = timeout if timeout is not None else settings.snmp_timeout
        self.retries = retries if retries is not None else settings.snmp_retries

    async def close(self) -> None:
        self.engine.close_dispatcher()

    def _auth(self, device: Device) -> CommunityData:
        mp_model = 0 if device.snmp_version == SNMPVersion.V1 else 1
        return CommunityData(device.snmp_community or "public", mpModel=mp_model)

    async def _walk(self, device: Device, target: Any, oid: str) -> dict[int, Any]:
        """Walk one IF-MIB column; returns values keyed by ifIndex."""
        column: dict[int, Any] = {}
        async for error_indication, error_status, error_index, var_binds in walk_cmd(
            self.engine,
            self._auth(device),
            target,
            ContextData(),
            ObjectType(ObjectIdentity(oid)),
            lexicographicMode=False,
        ):
            if error_indication:
                raise TransientDeviceError(device.id, f"SNMP {error_indication}")
            if error_status:
                raise TransientDeviceError(
                    device.id, f"SNMP {error_status.prettyPrint()} at {error_index}"
                )
            for name, value in var_binds:
                column[int(tuple(name)[-1])] = value
        return column

    async def fetch_interfaces(self, device: Device) -> list[InterfaceReading]:
        try:
            return await self._fetch(device)
        except TransientDeviceError:
            raise
        except Exception as e:
            raise TransientDeviceError(device.id, f"{type(e).__name__}: {e}") from e

    async def _fetch(self, device: Device) -> list[InterfaceReading]:
        target = await UdpTransportTarget.create(
            (device.address, device.snmp_port), timeout=self.timeout, retries=self.retries
        )

        names = await self._walk(device, target, OID_IF_NAME)
        if not names:
            # Agents without IF-MIB ifXTable only expose ifDescr
            names = await self._walk(device, target, OID_IF_DESCR)
        if not names:
            raise TransientDeviceError(device.id, "agent returned no interfaces")

        aliases = await self._walk(device, target, OID_IF_ALIAS)
        types = await self._walk(device, target, OID_IF_TYPE)
        macs = await self._walk(device, target, OID_IF_PHYS_ADDRESS)
        admin = await self._walk(device, target, OID_IF_ADMIN_STATUS)
        oper = await self._walk(device, target, OID_IF_OPER_STATUS)

        # 64-bit counters preferred; v1 agents and old firmware only have 32-bit
        rx = {}
        tx = {}
        if device.snmp_version != SNMPVersion.V1:
            rx = await self._walk(device, target, OID_IF_HC_IN_OCTETS)
            tx = await self._walk(device, target, OID_IF_HC_OUT_OCTETS)
        if not rx or not tx:
            rx = await self._walk(device, target, OID_IF_IN_OCTETS)
            tx = await self._walk(device, target, OID_IF_OUT_OCTETS)

        readings = []
        for index, name in sorted(names.items()):
            label = name.prettyPrint() if hasattr(name, "prettyPrint") else str(name)
            if not label:
                continue
            alias = aliases.get(index)
            alias_text = alias.prettyPrint() if alias is not None else ""
            if_type = types.get(index)
            readings.append(
                InterfaceReading(
                    name=label,
                    comment=alias_text or None,
                    mac_address=format_mac(macs[index]) if index in macs else None,
                    type=IF_TYPE_NAMES.get(int(if_type), str(int(if_type))) if if_type is not None else None,
                    running=int(oper.get(index, STATUS_DOWN)) == STATUS_UP,
                    disabled=int(admin.get(index, STATUS_UP)) == STATUS_DOWN,
                    rx_bytes_total=int(rx.get(index, 0)),
                    tx_bytes_total=int(tx.get(index, 0)),
                )
            )

        logger.debug("snmp_interfaces_fetched", device_id=device.id, count=len(readings))
        return readings
