"""
Seekable Byte Source
=====================

Random-access reader used by every binary parser in Warden.  A
:class:`SeekableSource` wraps either an open file handle (bundle
folders) or an in-memory buffer (bytes decompressed from a zip entry)
and tracks a single cursor.

Byte order is never stored on the source: every multi-byte read takes
an explicit :class:`ByteOrder`, so a Mach-O header read in the slice's
own order and a code-signature field read big-endian are visibly
different calls.

Each read re-positions the underlying stream at the tracked offset, so
nothing read before a :meth:`SeekableSource.seek` leaks into the next
read.
"""

from __future__ import annotations

import enum
import io
import os
import struct
from pathlib import Path
from typing import BinaryIO

from warden.core.errors import SourceOutOfBounds


class ByteOrder(str, enum.Enum):
    """Byte order of a multi-byte field, valued as its :mod:`struct` prefix."""
    BIG = ">"
    LITTLE = "<"

    @property
    def label(self) -> str:
        return "big" if self is ByteOrder.BIG else "little"


class SeekableSource:
    """Cursor-based reader over a binary stream of known size.

    Usage::

        with SeekableSource.from_file("MyApp") as src:
            magic = src.read_uint32(ByteOrder.BIG)
            src.seek(0x1000)
            blob = src.read(64)

    Args:
        stream: Binary stream supporting ``seek`` and ``read``.
        size:   Total number of readable bytes.
        name:   Display name used in error context.
    """

    def __init__(self, stream: BinaryIO, size: int, *, name: str = "<memory>") -> None:
        self._stream = stream
        self._size = size
        self._name = name
        self._offset = 0

    @classmethod
    def from_bytes(cls, data: bytes, *, name: str = "<memory>") -> SeekableSource:
        """Wrap an in-memory buffer."""
        return cls(io.BytesIO(data), len(data), name=name)

    @classmethod
    def from_file(cls, path: str | Path) -> SeekableSource:
        """Open *path* for reading; the handle is closed by :meth:`close`."""
        fh = open(path, "rb")
        return cls(fh, os.fstat(fh.fileno()).st_size, name=str(path))

    # ------------------------------------------------------------------ #
    #  Cursor
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return self._size

    @property
    def name(self) -> str:
        return self._name

    @property
    def offset(self) -> int:
        """Current cursor position."""
        return self._offset

    def seek(self, offset: int) -> None:
        """Move the cursor to the absolute *offset* (``0 <= offset <= size``)."""
        if offset < 0 or offset > self._size:
            raise SourceOutOfBounds(
                f"Seek outside source of {self._size} bytes",
                path=self._name,
                offset=offset,
            )
        self._offset = offset

    def skip(self, count: int) -> None:
        """Advance the cursor by *count* bytes."""
        self.seek(self._offset + count)

    # ------------------------------------------------------------------ #
    #  Raw reads
    # ------------------------------------------------------------------ #

    def read(self, length: int | None = None) -> bytes:
        """Read *length* bytes at the cursor, or everything up to the end.

        Raises:
            SourceOutOfBounds: Fewer than *length* bytes remain.
        """
        remaining = self._size - self._offset
        if length is None:
            length = remaining
        if length < 0 or length > remaining:
            raise SourceOutOfBounds(
                f"Read of {length} bytes exceeds the {remaining} remaining",
                path=self._name,
                offset=self._offset,
            )
        self._stream.seek(self._offset)
        data = self._stream.read(length)
        if len(data) != length:
            raise SourceOutOfBounds(
                f"Short read: wanted {length} bytes, got {len(data)}",
                path=self._name,
                offset=self._offset,
            )
        self._offset += length
        return data

    def read_at(self, offset: int, length: int | None = None) -> bytes:
        """Seek to *offset* then :meth:`read`."""
        self.seek(offset)
        return self.read(length)

    def slice(self, offset: int, length: int) -> bytes:
        """Copy ``length`` bytes starting at *offset* without disturbing the cursor."""
        saved = self._offset
        try:
            return self.read_at(offset, length)
        finally:
            self._offset = saved

    # ------------------------------------------------------------------ #
    #  Scalar reads
    # ------------------------------------------------------------------ #

    def read_struct(self, fmt: str, order: ByteOrder) -> tuple[int, ...]:
        """Unpack the :mod:`struct` format *fmt* (no order prefix) in *order*."""
        layout = struct.Struct(order.value + fmt)
        return layout.unpack(self.read(layout.size))

    def read_uint16(self, order: ByteOrder) -> int:
        return self.read_struct("H", order)[0]

    def read_uint32(self, order: ByteOrder) -> int:
        return self.read_struct("I", order)[0]

    def read_int32(self, order: ByteOrder) -> int:
        return self.read_struct("i", order)[0]

    def read_uint64(self, order: ByteOrder) -> int:
        return self.read_struct("Q", order)[0]

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> SeekableSource:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SeekableSource(name={self._name!r}, size={self._size}, offset={self._offset})"
