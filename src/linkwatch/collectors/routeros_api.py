"""RouterOS API device client (binary sentence protocol, TCP 8728)."""

import asyncio
import hashlib

from ..core.config import settings
from ..core.exceptions import TransientDeviceError
from ..core.logging import get_logger
from ..models.device import Device
from ..models.interface import InterfaceReading
from ..services.crypto import CryptoService, get_crypto_service
from .routeros_rest import INTERFACE_FIELDS, select_interfaces

logger = get_logger(__name__)


class RouterOSTrap(Exception):
    """The router answered a command with !trap or !fatal."""


# ============================================
# Sentence codec
# ============================================

def encode_length(length: int) -> bytes:
    """Variable-length word prefix used by the API."""
    if length < 0x80:
        return bytes([length])
    if length < 0x4000:
        return (length | 0x8000).to_bytes(2, "big")
    if length < 0x200000:
        return (length | 0xC00000).to_bytes(3, "big")
    if length < 0x10000000:
        return (length | 0xE0000000).to_bytes(4, "big")
    return b"\xf0" + length.to_bytes(4, "big")


def encode_sentence(words: list[str]) -> bytes:
    """Encode words followed by the empty terminator word."""
    out = bytearray()
    for word in words:
        raw = word.encode("utf-8")
        out += encode_length(len(raw)) + raw
    out += b"\x00"
    return bytes(out)


async def read_length(reader: asyncio.StreamReader) -> int:
    first = (await reader.readexactly(1))[0]
    if first < 0x80:
        return first
    if first < 0xC0:
        extra, mask = 1, 0x3F
    elif first < 0xE0:
        extra, mask = 2, 0x1F
    elif first < 0xF0:
        extra, mask = 3, 0x0F
    elif first == 0xF0:
        return int.from_bytes(await reader.readexactly(4), "big")
    else:
        raise ValueError(f"control byte 0x{first:02x} in word length")
    rest = await reader.readexactly(extra)
    return int.from_bytes(bytes([first & mask]) + rest, "big")


async def read_sentence(reader: asyncio.StreamReader) -> list[str]:
    """Read words up to the empty terminator."""
    words = []
    while True:
        length = await read_length(reader)
        if length == 0:
            return words
        words.append((await reader.readexactly(length)).decode("utf-8", errors="replace"))


def parse_attributes(words: list[str]) -> dict[str, str]:
    """'=key=value' words to a dict; the value may itself contain '='."""
    attrs = {}
    for word in words:
        if word.startswith("="):
            key, _, value = word[1:].partition("=")
            attrs[key] = value
    return attrs


class RouterOSApiSession:
    """One logged-in API connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    async def talk(self, command: str, **attributes: str) -> list[dict[str, str]]:
        """Send a command and collect its !re replies until !done."""
        words = [command] + [f"={key}={value}" for key, value in attributes.items()]
        self.writer.write(encode_sentence(words))
        await self.writer.drain()

        replies = []
        done: dict[str, str] = {}
        while True:
            sentence = await read_sentence(self.reader)
            if not sentence:
                continue
            kind, attrs = sentence[0], parse_attributes(sentence[1:])
            if kind == "!re":
                replies.append(attrs)
            elif kind == "!trap":
                # a !done always follows a trap
                await read_sentence(self.reader)
                raise RouterOSTrap(attrs.get("message", "command failed"))
            elif kind == "!fatal":
                raise RouterOSTrap(sentence[1] if len(sentence) > 1 else "fatal")
            elif kind == "!done":
                done = attrs
                break
        if done:
            replies.append(done)
        return replies

    async def login(self, username: str, password: str) -> None:
        """Plain login; answers the MD5 challenge of pre-6.43 firmware."""
        reply = await self.talk("/login", name=username, password=password)
        challenge = reply[-1].get("ret") if reply else None
        if challenge:
            digest = hashlib.md5(
                b"\x00" + password.encode("utf-8") + bytes.fromhex(challenge)
            ).hexdigest()
            await self.talk("/login", name=username, response=f"00{digest}")


class RouterOSApiClient:
    """Reads interfaces and byte counters over the RouterOS API."""

    def __init__(self, crypto: CryptoService | None = None, timeout: float | None = None) -> None:
        self.crypto = crypto or get_crypto_service()
        self.timeout = timeout or settings.device_fetch_timeout

    async def close(self) -> None:
        """Connections are per fetch; nothing is pooled."""

    async def fetch_interfaces(self, device: Device) -> list[InterfaceReading]:
        try:
            password = self.crypto.decrypt(device.encrypted_password)
        except ValueError as e:
            raise TransientDeviceError(device.id, "stored credential cannot be decrypted") from e

        try:
            items = await asyncio.wait_for(self._exchange(device, password), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientDeviceError(
                device.id, f"API {device.address}:{device.api_port} timed out"
            ) from e
        except RouterOSTrap as e:
            raise TransientDeviceError(device.id, f"API error: {e}") from e
        except (OSError, asyncio.IncompleteReadError, ValueError) as e:
            raise TransientDeviceError(device.id, f"{type(e).__name__}: {e}") from e

        readings = select_interfaces(device, items)
        logger.debug("routeros_api_interfaces_fetched", device_id=device.id, count=len(readings))
        return readings

    async def _exchange(self, device: Device, password: str) -> list[dict[str, str]]:
        reader, writer = await asyncio.open_connection(device.address, device.api_port)
        try:
            session = RouterOSApiSession(reader, writer)
            await session.login(device.username or "", password)
            replies = await session.talk("/interface/print", stats="", **{".proplist": INTERFACE_FIELDS})
            return [r for r in replies if "name" in r]
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("routeros_api_close_failed", device_id=device.id, error=str(e))
