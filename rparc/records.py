from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional

from .constants import COPY_BUFFER_SIZE, U64_MASK
from .errors import FormatRecord


log = logging.getLogger(__name__)

_I64_SIGN = 1 << 63


def _as_u64(value: int) -> int:
    return value & U64_MASK


def _as_i64(value: int) -> int:
    value &= U64_MASK
    return value - (1 << 64) if value & _I64_SIGN else value


def copy_stream(reader: BinaryIO, writer: BinaryIO, limit: Optional[int] = None) -> int:
    """Copy up to ``limit`` bytes (everything when None) from reader to writer.

    Stops early at end of stream; returns the number of bytes written.
    """
    copied = 0
    while limit is None or copied < limit:
        want = COPY_BUFFER_SIZE if limit is None else min(COPY_BUFFER_SIZE, limit - copied)
        buf = reader.read(want)
        if not buf:
            break
        writer.write(buf)
        copied += len(buf)
    return copied


@dataclass
class Record:
    """Location of one archived file inside the archive body.

    ``length`` counts the optional ``prefix`` too: the prefix is written ahead
    of the ``length - len(prefix)`` bytes read from ``start``.
    """

    start: int
    length: int
    prefix: Optional[bytes] = None

    @classmethod
    def new(cls, start: int, length: int, prefix: Optional[bytes] = None, key: Optional[int] = None) -> "Record":
        """Build a record, XOR-ing ``start`` and ``length`` with ``key`` when given.

        Stored values are deobfuscated by the same call that obfuscates plain
        values, so this is used both when reading and when rebuilding an index.
        """
        start = _as_u64(start)
        length = _as_u64(length)
        if key is not None:
            start ^= key
            length ^= key
        return cls(start=start, length=length, prefix=prefix)

    @classmethod
    def from_value(cls, value: Any, key: Optional[int]) -> "Record":
        """Parse an unpickled index value: ``[[start, length]]`` or ``[[start, length, prefix]]``."""
        log.debug("Parsing record from value: %r", value)
        if not isinstance(value, (list, tuple)) or len(value) != 1:
            raise FormatRecord()
        inner = value[0]
        if not isinstance(inner, (list, tuple)) or len(inner) not in (2, 3):
            raise FormatRecord()
        start, length = inner[0], inner[1]
        if not _is_int(start) or not _is_int(length):
            raise FormatRecord()
        prefix = None
        if len(inner) == 3:
            prefix = inner[2]
            if isinstance(prefix, str):
                # Python 2 byte strings surface as latin-1 decoded text
                prefix = prefix.encode("latin-1")
            elif isinstance(prefix, (bytearray, memoryview)):
                prefix = bytes(prefix)
            elif not isinstance(prefix, bytes):
                raise FormatRecord()
        return cls.new(start, length, prefix, key)

    def to_value(self) -> list:
        log.debug("Creating value from record: [%d, %d, %r]", self.start, self.length, self.prefix)
        values: list = [_as_i64(self.start), _as_i64(self.length)]
        if self.prefix is not None:
            values.append(self.prefix)
        return [values]

    @property
    def actual_length(self) -> int:
        return max(0, self.length - len(self.prefix or b""))

    def copy_to(self, reader: BinaryIO, writer: BinaryIO) -> int:
        """Write the prefix then ``actual_length`` bytes read from ``start``.

        Returns the total number of bytes written, prefix included.
        """
        log.debug("Copying record bytes starting %d of length %d", self.start, self.actual_length)
        reader.seek(self.start)
        written = 0
        if self.prefix:
            log.debug("Writing prefix: %d bytes", len(self.prefix))
            writer.write(self.prefix)
            written += len(self.prefix)
        return written + copy_stream(reader, writer, self.actual_length)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
