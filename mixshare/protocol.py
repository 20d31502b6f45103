"""
Binary message codec and stream framing.

A message is an ordered sequence of typed fields.  The first field is always
the command tag.  Every field is laid out as:

    [ 1 byte: type ][ 4 bytes: big-endian length ][ N bytes: payload ]

Types: 0x01 UTF-8 string, 0x02 raw bytes, 0x03 string list.  A string list
payload is a 4-byte count followed by length-prefixed UTF-8 strings.

Whole messages travel over stream transports inside a length-prefixed frame:

    [ 4 bytes: length ][ N bytes: message ]
"""

import asyncio
import struct
from enum import Enum

from .config import MAX_FRAME_SIZE

FIELD_STR = 0x01
FIELD_BYTES = 0x02
FIELD_STR_LIST = 0x03

_FIELD_NAMES = {
    FIELD_STR: "string",
    FIELD_BYTES: "bytes",
    FIELD_STR_LIST: "string list",
}

_HEADER = struct.Struct("!BI")
_LENGTH = struct.Struct("!I")


class MalformedMessage(ValueError):
    """Raised when a buffer cannot be read as the expected field."""


class Command(Enum):
    """Known command tags.  Anything else decodes to UNKNOWN."""

    FILE_REQUEST = "FILE_REQUEST"
    ACK_FILE_REQUEST = "ACK_FILE_REQUEST"
    GETFILE = "GETFILE"
    ADVERTISE = "ADVERTISE"
    ACK_ADVERTISE_REQUEST = "ACK_ADVERTISE_REQUEST"
    GETADVERTISE = "GETADVERTISE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_tag(cls, tag: str) -> "Command":
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _pack_field(kind: int, payload: bytes) -> bytes:
    return _HEADER.pack(kind, len(payload)) + payload


def _pack_value(value) -> bytes:
    if isinstance(value, str):
        return _pack_field(FIELD_STR, value.encode("utf-8"))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _pack_field(FIELD_BYTES, bytes(value))
    if isinstance(value, (list, tuple)):
        parts = [_LENGTH.pack(len(value))]
        for item in value:
            if not isinstance(item, str):
                raise TypeError(f"String lists may only hold str, got {type(item).__name__}")
            raw = item.encode("utf-8")
            parts.append(_LENGTH.pack(len(raw)) + raw)
        return _pack_field(FIELD_STR_LIST, b"".join(parts))
    raise TypeError(f"Cannot encode field of type {type(value).__name__}")


def encode(command: "Command | str", *fields) -> bytes:
    """Encode a command tag followed by positional fields.

    Fields may be ``str``, ``bytes`` or a list/tuple of ``str``.
    """
    tag = command.value if isinstance(command, Command) else command
    return b"".join(_pack_value(value) for value in (tag, *fields))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class Frame:
    """A decoded message: the command, then positional typed reads."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._offset = 0
        self.tag = self.read_str()
        self.command = Command.from_tag(self.tag)

    def __repr__(self) -> str:
        return f"Frame({self.tag!r}, {len(self._data)} bytes)"

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, size: int) -> bytes:
        if size > self.remaining:
            raise MalformedMessage(
                f"Field needs {size} bytes but only {self.remaining} remain"
            )
        chunk = self._data[self._offset:self._offset + size]
        self._offset += size
        return chunk

    def _read_field(self, expected: int) -> bytes:
        if self.remaining < _HEADER.size:
            raise MalformedMessage("Read past end of message")
        kind, length = _HEADER.unpack(self._take(_HEADER.size))
        if kind != expected:
            raise MalformedMessage(
                f"Expected {_FIELD_NAMES[expected]} field, "
                f"found {_FIELD_NAMES.get(kind, f'type 0x{kind:02x}')}"
            )
        return self._take(length)

    def read_str(self) -> str:
        raw = self._read_field(FIELD_STR)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Invalid UTF-8 in string field: {e}") from e

    def read_bytes(self) -> bytes:
        return self._read_field(FIELD_BYTES)

    def read_str_list(self) -> list[str]:
        payload = self._read_field(FIELD_STR_LIST)
        if len(payload) < _LENGTH.size:
            raise MalformedMessage("String list is missing its count")
        (count,) = _LENGTH.unpack_from(payload)
        offset = _LENGTH.size
        items = []
        for _ in range(count):
            if len(payload) - offset < _LENGTH.size:
                raise MalformedMessage("String list is truncated")
            (size,) = _LENGTH.unpack_from(payload, offset)
            offset += _LENGTH.size
            if len(payload) - offset < size:
                raise MalformedMessage("String list item is truncated")
            try:
                items.append(payload[offset:offset + size].decode("utf-8"))
            except UnicodeDecodeError as e:
                raise MalformedMessage(f"Invalid UTF-8 in string list: {e}") from e
            offset += size
        return items


def decode(data: bytes) -> Frame:
    """Decode the command tag of *data*.  Raises MalformedMessage."""
    return Frame(data)


# ---------------------------------------------------------------------------
# Stream framing (used by stream-based transports)
# ---------------------------------------------------------------------------


def pack_frame(payload: bytes) -> bytes:
    """Prefix *payload* with its 4-byte big-endian length."""
    return _LENGTH.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> bytes | None:
    """Read one length-prefixed frame.  Returns None on a clean disconnect.

    Raises MalformedMessage if the declared length exceeds MAX_FRAME_SIZE,
    so a peer cannot make us allocate an arbitrary amount of memory.
    """
    try:
        raw_len = await reader.readexactly(_LENGTH.size)
    except asyncio.IncompleteReadError:
        return None
    (length,) = _LENGTH.unpack(raw_len)
    if length > MAX_FRAME_SIZE:
        raise MalformedMessage(
            f"Incoming frame too large: {length} bytes (max {MAX_FRAME_SIZE})"
        )
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError:
        return None
