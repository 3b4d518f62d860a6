"""
Little-endian cursor over a bounds-known byte buffer.

ByteReader is the only primitive the decoder reads through. It accepts any
sliceable buffer (bytes, bytearray, memoryview, mmap) and never exports a
buffer view of it, so an mmap can be closed as soon as decoding finishes.

Positions are always absolute offsets into the underlying buffer. A reader
may be restricted to a window [base, limit) with bounded(); reads that would
cross the window end raise TruncatedError and leave the cursor unchanged.
"""

import struct

from .errors import TruncatedError

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


class ByteReader:
    """Forward cursor with little-endian unsigned integer reads.

    Usage:
        reader = ByteReader(data)
        magic = reader.u16_at(0)
        reader.seek(0x80)
        signature = reader.u32()
    """

    def __init__(self, data, base: int = 0, limit: int | None = None):
        """Initialize a reader.

        Args:
            data: Buffer to read from (not copied)
            base: First readable offset, also the initial cursor position
            limit: One past the last readable offset (defaults to len(data))
        """
        size = len(data)
        if limit is None or limit > size:
            limit = size
        self._data = data
        self._base = base
        self._limit = max(base, limit)
        self._pos = base

    # =========================================================================
    # Cursor
    # =========================================================================

    @property
    def position(self) -> int:
        """Absolute cursor offset."""
        return self._pos

    @property
    def base(self) -> int:
        return self._base

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def remaining(self) -> int:
        """Bytes readable from the cursor to the window end."""
        return max(0, self._limit - self._pos)

    def seek(self, offset: int) -> None:
        """Move the cursor to an absolute offset.

        Seeking past the window end is allowed; the next read fails.
        """
        if offset < 0:
            raise ValueError(f"Negative seek offset: {offset}")
        self._pos = offset

    def skip(self, count: int) -> None:
        """Advance the cursor by count bytes, checking they exist."""
        self._check(self._pos, count)
        self._pos += count

    def bounded(self, length: int) -> "ByteReader":
        """Return a reader over [position, position + length), clipped to this window."""
        return ByteReader(self._data, self._pos, min(self._pos + length, self._limit))

    # =========================================================================
    # Reads
    # =========================================================================

    def read_bytes(self, count: int) -> bytes:
        """Read count raw bytes."""
        self._check(self._pos, count)
        start = self._pos
        self._pos += count
        return bytes(self._data[start : start + count])

    def u16(self) -> int:
        return self._unpack(_U16)

    def u32(self) -> int:
        return self._unpack(_U32)

    def u64(self) -> int:
        return self._unpack(_U64)

    def uint(self, width: int) -> int:
        """Read an unsigned integer of 2, 4 or 8 bytes."""
        if width == 2:
            return self.u16()
        if width == 4:
            return self.u32()
        if width == 8:
            return self.u64()
        raise ValueError(f"Unsupported integer width: {width}")

    def u16_at(self, offset: int) -> int:
        """Read a u16 at an absolute offset without moving the cursor."""
        self._check(offset, _U16.size)
        return _U16.unpack_from(self._data, offset)[0]

    def u32_at(self, offset: int) -> int:
        """Read a u32 at an absolute offset without moving the cursor."""
        self._check(offset, _U32.size)
        return _U32.unpack_from(self._data, offset)[0]

    # =========================================================================
    # Internal
    # =========================================================================

    def _unpack(self, fmt: struct.Struct) -> int:
        self._check(self._pos, fmt.size)
        (value,) = fmt.unpack_from(self._data, self._pos)
        self._pos += fmt.size
        return value

    def _check(self, offset: int, count: int) -> None:
        if offset < self._base or offset + count > self._limit:
            available = max(0, self._limit - offset) if offset >= self._base else 0
            raise TruncatedError(offset, count, available)
