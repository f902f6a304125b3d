"""Tests for the RouterOS REST and SNMP device clients."""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pysnmp.proto.rfc1902 import Counter32, Counter64, Integer, OctetString

from linkwatch.collectors import snmp_client
from linkwatch.collectors.base import DeviceClientRegistry
from linkwatch.collectors.routeros_rest import RouterOSRestClient, parse_interface
from linkwatch.collectors.snmp_client import SnmpInterfaceClient, format_mac
from linkwatch.core.exceptions import ConfigurationError, TransientDeviceError
from linkwatch.models.device import ConnectionMethod
from linkwatch.services.crypto import CryptoService

from fakes import make_device

INTERFACES = [
    {
        ".id": "*1", "name": "ether1", "type": "ether", "mac-address": "4C:5E:0C:11:22:33",
        "running": "true", "disabled": "false", "dynamic": "false", "comment": "WAN uplink",
        "rx-byte": "123456789", "tx-byte": "987654321",
    },
    {
        ".id": "*2", "name": "ether2", "type": "ether", "running": "false",
        "disabled": "true", "dynamic": "false", "rx-byte": "0", "tx-byte": "0",
    },
    {
        ".id": "*9", "name": "<pppoe-user1>", "type": "pppoe-in", "running": "true",
        "disabled": "false", "dynamic": "true", "rx-byte": "10", "tx-byte": "20",
    },
]


@pytest.fixture
def crypto():
    return CryptoService("test-credential-key")


def rest_client(crypto, handler) -> RouterOSRestClient:
    return RouterOSRestClient(crypto=crypto, transport=httpx.MockTransport(handler))


class TestParseInterface:
    def test_string_booleans_and_counters(self):
        iface = parse_interface(INTERFACES[0])

        assert iface.name == "ether1"
        assert iface.running is True
        assert iface.disabled is False
        assert iface.rx_bytes_total == 123456789
        assert iface.comment == "WAN uplink"
        assert iface.mac_address == "4C:5E:0C:11:22:33"

    def test_missing_fields_default(self):
        iface = parse_interface({"name": "bridge1", "rx-byte": "garbage"})

        assert iface.rx_bytes_total == 0
        assert iface.comment is None
        assert not iface.running


class TestRouterOSRestClient:
    @pytest.mark.asyncio
    async def test_fetch_interfaces(self, crypto):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json=INTERFACES)

        client = rest_client(crypto, handler)
        device = make_device(
            rest_port=8443, username="api", encrypted_password=crypto.encrypt("s3cret")
        )

        readings = await client.fetch_interfaces(device)
        await client.close()

        assert [r.name for r in readings] == ["ether1", "ether2"]
        assert seen["url"].startswith("https://192.0.2.1:8443/rest/interface")
        assert ".proplist" in seen["url"]
        expected = base64.b64encode(b"api:s3cret").decode()
        assert seen["auth"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_dynamic_interfaces_opt_in(self, crypto):
        client = rest_client(crypto, lambda request: httpx.Response(200, json=INTERFACES))

        readings = await client.fetch_interfaces(make_device(include_dynamic_interfaces=True))

        assert "<pppoe-user1>" in [r.name for r in readings]

    @pytest.mark.asyncio
    async def test_ddns_hostname_used(self, crypto):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return httpx.Response(200, json=[])

        client = rest_client(crypto, handler)
        await client.fetch_interfaces(make_device(cloud_ddns_hostname="abc123.sn.mynetname.net"))

        assert hosts == ["abc123.sn.mynetname.net"]

    @pytest.mark.asyncio
    async def test_http_error_is_transient(self, crypto):
        client = rest_client(crypto, lambda request: httpx.Response(401, json={"error": 401}))

        with pytest.raises(TransientDeviceError) as exc:
            await client.fetch_interfaces(make_device())

        assert exc.value.reason.startswith("HTTP 401")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, crypto):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = rest_client(crypto, handler)

        with pytest.raises(TransientDeviceError):
            await client.fetch_interfaces(make_device())

    @pytest.mark.asyncio
    async def test_non_json_is_transient(self, crypto):
        client = rest_client(crypto, lambda request: httpx.Response(200, text="<html>login</html>"))

        with pytest.raises(TransientDeviceError):
            await client.fetch_interfaces(make_device())

    @pytest.mark.asyncio
    async def test_unexpected_payload_is_transient(self, crypto):
        client = rest_client(crypto, lambda request: httpx.Response(200, json={"detail": "x"}))

        with pytest.raises(TransientDeviceError):
            await client.fetch_interfaces(make_device())

    @pytest.mark.asyncio
    async def test_undecryptable_credential_is_transient(self, crypto):
        other = CryptoService("another-key")
        client = rest_client(crypto, lambda request: httpx.Response(200, json=[]))

        with pytest.raises(TransientDeviceError):
            await client.fetch_interfaces(make_device(encrypted_password=other.encrypt("pw")))


def _oid(column: str, index: int) -> tuple[int, ...]:
    return tuple(int(part) for part in f"{column}.{index}".split("."))


def _snmp_table(hc: bool = True) -> dict[str, dict[int, object]]:
    table = {
        snmp_client.OID_IF_NAME: {1: OctetString("ether1"), 2: OctetString("ether2")},
        snmp_client.OID_IF_ALIAS: {1: OctetString("WAN uplink"), 2: OctetString("")},
        snmp_client.OID_IF_TYPE: {1: Integer(6), 2: Integer(6)},
        snmp_client.OID_IF_PHYS_ADDRESS: {1: OctetString(hexValue="4c5e0c112233")},
        snmp_client.OID_IF_ADMIN_STATUS: {1: Integer(1), 2: Integer(2)},
        snmp_client.OID_IF_OPER_STATUS: {1: Integer(1), 2: Integer(2)},
        snmp_client.OID_IF_IN_OCTETS: {1: Counter32(1000), 2: Counter32(0)},
        snmp_client.OID_IF_OUT_OCTETS: {1: Counter32(2000), 2: Counter32(0)},
    }
    if hc:
        table[snmp_client.OID_IF_HC_IN_OCTETS] = {1: Counter64(2**40), 2: Counter64(0)}
        table[snmp_client.OID_IF_HC_OUT_OCTETS] = {1: Counter64(2**41), 2: Counter64(0)}
    return table


class TestSnmpInterfaceClient:
    @pytest.fixture
    def client(self):
        with patch.object(snmp_client, "SnmpEngine"):
            yield SnmpInterfaceClient(timeout=1, retries=0)

    def _patch_walk(self, client, table):
        walked = []

        async def walk(device, target, oid):
            walked.append(oid)
            return dict(table.get(oid, {}))

        client._walk = walk
        return walked

    @pytest.mark.asyncio
    async def test_fetch_prefers_64_bit_counters(self, client):
        self._patch_walk(client, _snmp_table())
        device = make_device(connection_method=ConnectionMethod.SNMP)

        with patch.object(snmp_client.UdpTransportTarget, "create", new=AsyncMock()):
            readings = await client.fetch_interfaces(device)

        ether1, ether2 = readings
        assert ether1.name == "ether1"
        assert ether1.comment == "WAN uplink"
        assert ether1.mac_address == "4C:5E:0C:11:22:33"
        assert ether1.type == "ether"
        assert ether1.running and not ether1.disabled
        assert ether1.rx_bytes_total == 2**40
        assert ether2.comment is None
        assert not ether2.running and ether2.disabled

    @pytest.mark.asyncio
    async def test_falls_back_to_32_bit_counters(self, client):
        self._patch_walk(client, _snmp_table(hc=False))

        with patch.object(snmp_client.UdpTransportTarget, "create", new=AsyncMock()):
            readings = await client.fetch_interfaces(make_device(connection_method="snmp"))

        assert readings[0].rx_bytes_total == 1000
        assert readings[0].tx_bytes_total == 2000

    @pytest.mark.asyncio
    async def test_v1_never_walks_hc_counters(self, client):
        walked = self._patch_walk(client, _snmp_table())
        device = make_device(connection_method="snmp", snmp_version="1")

        with patch.object(snmp_client.UdpTransportTarget, "create", new=AsyncMock()):
            await client.fetch_interfaces(device)

        assert snmp_client.OID_IF_HC_IN_OCTETS not in walked

    @pytest.mark.asyncio
    async def test_ifdescr_fallback(self, client):
        table = _snmp_table()
        table[snmp_client.OID_IF_DESCR] = table.pop(snmp_client.OID_IF_NAME)
        self._patch_walk(client, table)

        with patch.object(snmp_client.UdpTransportTarget, "create", new=AsyncMock()):
            readings = await client.fetch_interfaces(make_device(connection_method="snmp"))

        assert [r.name for r in readings] == ["ether1", "ether2"]

    @pytest.mark.asyncio
    async def test_no_interfaces_is_transient(self, client):
        self._patch_walk(client, {})

        with patch.object(snmp_client.UdpTransportTarget, "create", new=AsyncMock()):
            with pytest.raises(TransientDeviceError):
                await client.fetch_interfaces(make_device(connection_method="snmp"))

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped(self, client):
        create = AsyncMock(side_effect=OSError("name resolution failed"))

        with patch.object(snmp_client.UdpTransportTarget, "create", new=create):
            with pytest.raises(TransientDeviceError):
                await client.fetch_interfaces(make_device(connection_method="snmp"))

    @pytest.mark.asyncio
    async def test_walk_reports_error_indication(self, client):
        async def failing_walk(*args, **kwargs):
            yield "requestTimedOut", 0, 0, []

        with patch.object(snmp_client, "walk_cmd", new=failing_walk):
            with pytest.raises(TransientDeviceError) as exc:
                await client._walk(make_device(), object(), snmp_client.OID_IF_NAME)

        assert "requestTimedOut" in exc.value.reason

    @pytest.mark.asyncio
    async def test_walk_keys_by_if_index(self, client):
        async def walk(*args, **kwargs):
            yield None, 0, 0, [(_oid(snmp_client.OID_IF_NAME, 3), OctetString("sfp1"))]
            yield None, 0, 0, [(_oid(snmp_client.OID_IF_NAME, 7), OctetString("lo"))]

        with patch.object(snmp_client, "walk_cmd", new=walk):
            column = await client._walk(make_device(), object(), snmp_client.OID_IF_NAME)

        assert sorted(column) == [3, 7]

    def test_format_mac(self):
        assert format_mac(OctetString(hexValue="000c29aabbcc")) == "00:0C:29:AA:BB:CC"
        assert format_mac(OctetString("")) is None


class TestRegistry:
    @pytest.mark.asyncio
    async def test_dispatches_by_connection_method(self):
        rest = AsyncMock()
        rest.fetch_interfaces.return_value = []
        registry = DeviceClientRegistry({ConnectionMethod.REST: rest})

        await registry.fetch_interfaces(make_device())

        rest.fetch_interfaces.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_family_is_a_configuration_error(self):
        registry = DeviceClientRegistry()

        with pytest.raises(ConfigurationError):
            await registry.fetch_interfaces(make_device(connection_method="snmp"))

    @pytest.mark.asyncio
    async def test_falls_back_to_snmp_when_api_fails(self):
        device = make_device(connection_method="api", snmp_enabled=True)
        api = AsyncMock()
        api.fetch_interfaces.side_effect = TransientDeviceError(device.id, "connection refused")
        snmp = AsyncMock()
        snmp.fetch_interfaces.return_value = [parse_interface(INTERFACES[0])]
        registry = DeviceClientRegistry({ConnectionMethod.API: api, ConnectionMethod.SNMP: snmp})

        readings = await registry.fetch_interfaces(device)

        assert [r.name for r in readings] == ["ether1"]
        snmp.fetch_interfaces.assert_awaited_once_with(device)

    @pytest.mark.asyncio
    async def test_no_fallback_without_snmp_enabled(self):
        device = make_device(connection_method="api")
        api = AsyncMock()
        api.fetch_interfaces.side_effect = TransientDeviceError(device.id, "connection refused")
        snmp = AsyncMock()
        registry = DeviceClientRegistry({ConnectionMethod.API: api, ConnectionMethod.SNMP: snmp})

        with pytest.raises(TransientDeviceError):
            await registry.fetch_interfaces(device)

        snmp.fetch_interfaces.assert_not_called()

    @pytest.mark.asyncio
    async def test_both_failures_are_reported(self):
        device = make_device(snmp_enabled=True)
        rest = AsyncMock()
        rest.fetch_interfaces.side_effect = TransientDeviceError(device.id, "HTTP 401")
        snmp = AsyncMock()
        snmp.fetch_interfaces.side_effect = TransientDeviceError(device.id, "no response")
        registry = DeviceClientRegistry({ConnectionMethod.REST: rest, ConnectionMethod.SNMP: snmp})

        with pytest.raises(TransientDeviceError) as exc:
            await registry.fetch_interfaces(device)

        assert exc.value.reason == "HTTP 401; snmp fallback: no response"

    @pytest.mark.asyncio
    async def test_snmp_devices_are_not_retried(self):
        device = make_device(connection_method="snmp", snmp_enabled=True)
        snmp = AsyncMock()
        snmp.fetch_interfaces.side_effect = TransientDeviceError(device.id, "no response")
        registry = DeviceClientRegistry({ConnectionMethod.SNMP: snmp})

        with pytest.raises(TransientDeviceError):
            await registry.fetch_interfaces(device)

        snmp.fetch_interfaces.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_continues_past_failures(self):
        broken = AsyncMock()
        broken.close.side_effect = RuntimeError("already closed")
        healthy = AsyncMock()
        registry = DeviceClientRegistry({ConnectionMethod.REST: broken, ConnectionMethod.SNMP: healthy})

        await registry.close()

        healthy.close.assert_awaited_once()
