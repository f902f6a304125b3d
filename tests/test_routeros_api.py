"""Tests for the RouterOS API client against an in-process router."""

import asyncio
import hashlib
from contextlib import asynccontextmanager

import pytest

from linkwatch.collectors.routeros_api import (
    RouterOSApiClient,
    encode_length,
    encode_sentence,
    parse_attributes,
    read_sentence,
)
from linkwatch.core.exceptions import TransientDeviceError
from linkwatch.services.crypto import CryptoService

from fakes import make_device

INTERFACES = [
    {"name": "ether1", "type": "ether", "running": "true", "disabled": "false",
     "dynamic": "false", "comment": "WAN uplink", "rx-byte": "1000", "tx-byte": "2000"},
    {"name": "<pppoe-user1>", "type": "pppoe-in", "running": "true", "disabled": "false",
     "dynamic": "true", "rx-byte": "10", "tx-byte": "20"},
]


class FakeRouter:
    """Speaks just enough of the API protocol for login and /interface/print."""

    def __init__(self, password="secret", challenge=None, silent=False):
        self.password = password
        self.challenge = challenge
        self.silent = silent
        self.commands = []

    async def handle(self, reader, writer):
        if self.silent:
            await reader.read()
            writer.close()
            return
        while True:
            try:
                words = await read_sentence(reader)
            except asyncio.IncompleteReadError:
                break
            command, attrs = words[0], parse_attributes(words[1:])
            self.commands.append((command, attrs))
            for reply in self.answer(command, attrs):
                writer.write(encode_sentence(reply))
            await writer.drain()
        writer.close()

    def answer(self, command, attrs):
        if command == "/login":
            if self.challenge and "response" not in attrs:
                return [["!done", f"=ret={self.challenge}"]]
            if self.challenge:
                expected = "00" + hashlib.md5(
                    b"\x00" + self.password.encode() + bytes.fromhex(self.challenge)
                ).hexdigest()
                ok = attrs["response"] == expected
            else:
                ok = attrs.get("password") == self.password
            if not ok:
                return [["!trap", "=message=invalid user name or password (6)"], ["!done"]]
            return [["!done"]]
        if command == "/interface/print":
            rows = [["!re"] + [f"={k}={v}" for k, v in item.items()] for item in INTERFACES]
            return rows + [["!done"]]
        return [["!trap", "=message=no such command"], ["!done"]]


@asynccontextmanager
async def running(router):
    server = await asyncio.start_server(router.handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()


def api_device(port, **overrides):
    return make_device(
        ip_address="127.0.0.1", connection_method="api", api_port=port, **overrides
    )


@pytest.fixture
def client():
    return RouterOSApiClient(crypto=CryptoService("test-credential-key"), timeout=1)


class TestSentenceCodec:
    @pytest.mark.parametrize("length,encoded", [
        (0, b"\x00"),
        (0x7F, b"\x7f"),
        (0x80, b"\x80\x80"),
        (0x3FFF, b"\xbf\xff"),
        (0x4000, b"\xc0\x40\x00"),
        (0x200000, b"\xe0\x20\x00\x00"),
        (0x10000000, b"\xf0\x10\x00\x00\x00"),
    ])
    def test_length_prefix(self, length, encoded):
        assert encode_length(length) == encoded

    @pytest.mark.asyncio
    async def test_long_words_survive_the_stream(self):
        words = ["/interface/print", "=comment=" + "x" * 300]
        reader = asyncio.StreamReader()
        reader.feed_data(encode_sentence(words))

        assert await read_sentence(reader) == words

    def test_attribute_values_may_contain_equals(self):
        assert parse_attributes(["!re", "=comment=a=b", "=name=ether1"]) == {
            "comment": "a=b", "name": "ether1",
        }


class TestRouterOSApiClient:
    @pytest.mark.asyncio
    async def test_fetches_counters(self, client):
        router = FakeRouter()
        async with running(router) as port:
            readings = await client.fetch_interfaces(api_device(port))

        assert [r.name for r in readings] == ["ether1"]
        assert readings[0].rx_bytes_total == 1000
        assert readings[0].comment == "WAN uplink"
        command, attrs = router.commands[-1]
        assert command == "/interface/print"
        assert "rx-byte" in attrs[".proplist"]

    @pytest.mark.asyncio
    async def test_dynamic_interfaces_on_request(self, client):
        async with running(FakeRouter()) as port:
            readings = await client.fetch_interfaces(
                api_device(port, include_dynamic_interfaces=True)
            )

        assert len(readings) == 2

    @pytest.mark.asyncio
    async def test_challenge_login(self, client):
        router = FakeRouter(challenge="0123456789abcdef0123456789abcdef")
        async with running(router) as port:
            readings = await client.fetch_interfaces(api_device(port))

        assert [c for c, _ in router.commands] == ["/login", "/login", "/interface/print"]
        assert readings

    @pytest.mark.asyncio
    async def test_bad_credentials(self, client):
        async with running(FakeRouter(password="other")) as port:
            with pytest.raises(TransientDeviceError) as exc:
                await client.fetch_interfaces(api_device(port))

        assert "invalid user name or password" in exc.value.reason

    @pytest.mark.asyncio
    async def test_silent_router_times_out(self):
        client = RouterOSApiClient(crypto=CryptoService("test-credential-key"), timeout=0.05)
        async with running(FakeRouter(silent=True)) as port:
            with pytest.raises(TransientDeviceError) as exc:
                await client.fetch_interfaces(api_device(port))

        assert "timed out" in exc.value.reason

    @pytest.mark.asyncio
    async def test_refused_connection(self, client):
        async with running(FakeRouter()) as port:
            pass

        with pytest.raises(TransientDeviceError):
            await client.fetch_interfaces(api_device(port))
