"""
Binary reader and writer for System4 files.

Provides low-level little-endian reading with strict bounds checking and
the length-prefixed string layout shared by EX documents and archives.
"""

import struct
from typing import Type

import numpy as np

from .errors import AliceError, FormatError


class BinaryReader:
    """Bounds-checked binary data reader.

    Every read that would run past the end of the buffer raises ``error``
    (``FormatError`` unless the caller supplies another class) instead of
    returning a short result.
    """

    def __init__(self, data: bytes, offset: int = 0, error: Type[AliceError] = FormatError):
        self.data = data
        self.pos = offset
        self.error = error

    def seek(self, pos: int):
        """Seek to absolute position."""
        if pos < 0 or pos > len(self.data):
            raise self.error("Seek outside of buffer", offset=pos, size=len(self.data))
        self.pos = pos

    def tell(self) -> int:
        """Return current position."""
        return self.pos

    def remaining(self) -> int:
        """Return remaining bytes."""
        return len(self.data) - self.pos

    def require(self, count: int, what: str = "data"):
        """Fail unless ``count`` more bytes are available."""
        if count < 0 or count > self.remaining():
            raise self.error(
                f"Unexpected end of {what}",
                offset=self.pos,
                wanted=count,
                remaining=self.remaining(),
            )

    def read_bytes(self, count: int) -> bytes:
        """Read raw bytes."""
        self.require(count)
        result = self.data[self.pos : self.pos + count]
        self.pos += count
        return bytes(result)

    def read_uint8(self) -> int:
        return self.read_bytes(1)[0]

    def read_uint16(self) -> int:
        return struct.unpack("<H", self.read_bytes(2))[0]

    def read_uint24(self) -> int:
        return int.from_bytes(self.read_bytes(3), "little")

    def read_int32(self) -> int:
        return struct.unpack("<i", self.read_bytes(4))[0]

    def read_uint32(self) -> int:
        return struct.unpack("<I", self.read_bytes(4))[0]

    def read_uint64(self) -> int:
        return struct.unpack("<Q", self.read_bytes(8))[0]

    def read_float(self) -> np.float32:
        # kept as float32 so NaN payload bits survive a round trip
        return np.frombuffer(self.read_bytes(4), "<f4")[0]

    def read_count(self, min_item_size: int, what: str = "items") -> int:
        """Read a u32 element count and check it can fit in the buffer.

        Each element needs at least ``min_item_size`` bytes, so an absurd
        count is rejected before anything is allocated.
        """
        start = self.pos
        count = self.read_uint32()
        if count * min_item_size > self.remaining():
            raise self.error(
                f"Count of {what} exceeds remaining data",
                offset=start,
                count=count,
                remaining=self.remaining(),
            )
        return count

    def read_string(self, encoding: str) -> str:
        """Read an i32 length-prefixed string and decode it."""
        start = self.pos
        length = self.read_int32()
        if length < 0:
            raise self.error("Negative string length", offset=start, length=length)
        raw = self.read_bytes(length)
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise self.error(
                f"String is not valid {encoding}", offset=start, reason=e.reason
            ) from e

    def read_cstring(self, size: int, encoding: str) -> str:
        """Read a fixed-size NUL-padded string."""
        raw = self.read_bytes(size).split(b"\x00", 1)[0]
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise self.error(f"Name is not valid {encoding}", offset=self.pos - size) from e


class BinaryWriter:
    """Little-endian writer mirroring BinaryReader."""

    def __init__(self):
        self.buf = bytearray()

    def tell(self) -> int:
        return len(self.buf)

    def getvalue(self) -> bytes:
        return bytes(self.buf)

    def write_bytes(self, data: bytes):
        self.buf += data

    def write_int32(self, value: int):
        self.buf += struct.pack("<i", value)

    def write_uint32(self, value: int):
        self.buf += struct.pack("<I", value)

    def write_float(self, value):
        self.buf += np.asarray(value, dtype="<f4").tobytes()

    def write_string(self, text: str, encoding: str):
        raw = text.encode(encoding)
        self.write_int32(len(raw))
        self.write_bytes(raw)


def pad4(n: int) -> int:
    """Round ``n`` up to a multiple of 4."""
    return (n + 3) & ~3
