"""Sequential little-endian reader for the stable client's binary files.

Every read advances a cursor. A read past the end of the buffer means the
stream lost synchronization, which is reported as StructuralDecodeError
with the offset where it happened.
"""

from __future__ import annotations

import struct
from datetime import datetime, timedelta, timezone

from ..errors import PerRecordDecodeError, StructuralDecodeError

STRING_EMPTY = 0x00
STRING_PRESENT = 0x0B

TICKS_MASK = 0x3FFF_FFFF_FFFF_FFFF
TICKS_WRAP = 0x4000_0000_0000_0000
MAX_TICKS = 3_155_378_975_999_999_999
KIND_LOCAL = 2
DOTNET_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)

_INT16 = struct.Struct("<h")
_UINT16 = struct.Struct("<H")
_INT32 = struct.Struct("<i")
_INT64 = struct.Struct("<q")
_FLOAT32 = struct.Struct("<f")
_FLOAT64 = struct.Struct("<d")


def ticks_to_datetime(raw: int) -> datetime:
    """Decode a .NET ``DateTime.ToBinary`` value to an aware UTC datetime.

    The top two bits carry the kind. Local-kind values already hold UTC
    ticks, possibly wrapped below zero; unspecified and UTC kinds are read
    as UTC.
    """
    value = raw & 0xFFFF_FFFF_FFFF_FFFF
    kind = value >> 62
    ticks = value & TICKS_MASK
    if kind == KIND_LOCAL and ticks > MAX_TICKS:
        ticks -= TICKS_WRAP
    if ticks < 0 or ticks > MAX_TICKS:
        raise PerRecordDecodeError("timestamp", f"ticks out of range: {ticks}")
    try:
        return DOTNET_EPOCH + timedelta(microseconds=ticks // 10)
    except OverflowError as exc:
        raise PerRecordDecodeError("timestamp", str(exc)) from exc


class BinaryStream:
    """Cursor over an in-memory copy of a binary file."""

    def __init__(self, data: bytes, source: str = "stream"):
        self._data = memoryview(data)
        self._pos = 0
        self.source = source

    @property
    def offset(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > len(self._data):
            raise StructuralDecodeError(self.source, self._pos, f"seek to {offset} out of bounds")
        self._pos = offset

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self._pos + count > len(self._data):
            raise StructuralDecodeError(
                self.source, self._pos, f"needed {count} bytes, {self.remaining} left"
            )
        chunk = self._data[self._pos:self._pos + count].tobytes()
        self._pos += count
        return chunk

    def skip(self, count: int) -> None:
        self.read_bytes(count)

    def _unpack(self, fmt: struct.Struct):
        return fmt.unpack(self.read_bytes(fmt.size))[0]

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def read_bool(self) -> bool:
        return self.read_byte() != 0

    def read_int16(self) -> int:
        return self._unpack(_INT16)

    def read_uint16(self) -> int:
        return self._unpack(_UINT16)

    def read_int32(self) -> int:
        return self._unpack(_INT32)

    def read_int64(self) -> int:
        return self._unpack(_INT64)

    def read_float32(self) -> float:
        return self._unpack(_FLOAT32)

    def read_float64(self) -> float:
        return self._unpack(_FLOAT64)

    def read_uleb128(self) -> int:
        result = 0
        shift = 0
        while True:
            byte = self.read_byte()
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7
            if shift > 63:
                raise StructuralDecodeError(self.source, self._pos, "ULEB128 length overflow")

    def read_string(self) -> str:
        """Read a flag-prefixed string. Unknown flags read as empty."""
        flag = self.read_byte()
        if flag != STRING_PRESENT:
            return ""
        length = self.read_uleb128()
        return self.read_bytes(length).decode("utf-8", errors="replace")

    def read_datetime(self) -> datetime:
        return ticks_to_datetime(self.read_int64())


def encode_uleb128(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_string(value: str | None) -> bytes:
    """Inverse of BinaryStream.read_string. ``None`` writes the empty flag."""
    if value is None:
        return bytes([STRING_EMPTY])
    raw = value.encode("utf-8")
    return bytes([STRING_PRESENT]) + encode_uleb128(len(raw)) + raw
