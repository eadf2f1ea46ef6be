from __future__ import annotations

import io
import logging
import os
import re
from typing import BinaryIO, List, Optional, Tuple, Union

from .constants import DEFAULT_KEY, SIGNATURE_LEN, U64_MASK
from .content import Content, ContentMap
from .errors import NotFound, ParseKey, ParseOffset, RpaError
from .index import dump_index, load_index
from .records import Record
from .version import FormatVersion


log = logging.getLogger(__name__)

_HEX_RE = re.compile(rb"[0-9a-fA-F]+")


def _parse_hex(token: bytes, error_cls) -> int:
    if not _HEX_RE.fullmatch(token):
        raise error_cls()
    value = int(token, 16)
    if value > U64_MASK:
        raise error_cls()
    return value


class RenpyArchive:
    """An open Ren'Py archive: a reader plus the path to content bindings.

    The archive owns ``reader`` exclusively; every read seeks first. After
    :meth:`flush` the archive is consumed and can no longer be used.
    """

    def __init__(
        self,
        reader: BinaryIO,
        version: FormatVersion = FormatVersion.V3_0,
        key: Optional[int] = DEFAULT_KEY,
        offset: int = 0,
        content: Optional[ContentMap] = None,
    ):
        self.reader = reader
        self.version = version
        self.key = key
        self.offset = offset
        self.content: Optional[ContentMap] = content if content is not None else ContentMap()
        self.flushed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @classmethod
    def new(cls) -> "RenpyArchive":
        """Create an empty in-memory v3.0 archive using the default key."""
        log.info("Opening new empty in-memory archive")
        return cls(io.BytesIO(), version=FormatVersion.V3_0, key=DEFAULT_KEY)

    @classmethod
    def open(cls, path: Union[str, os.PathLike]) -> "RenpyArchive":
        """Open an archive file; the file name takes part in version detection."""
        log.info("Opening archive from file: %s", path)
        fh = open(path, "rb")
        try:
            return cls.read(fh, file_name=os.path.basename(os.fspath(path)))
        except (RpaError, OSError, ValueError):
            fh.close()
            raise

    @classmethod
    def read(cls, reader: BinaryIO, file_name: str = "") -> "RenpyArchive":
        """Parse an archive from a seekable binary reader, taking ownership of it."""
        log.info("Opening archive from reader")
        reader.seek(0)
        version = cls.identify(reader, file_name)
        offset, key, content = cls.metadata(reader, version)
        return cls(reader, version=version, key=key, offset=offset, content=content)

    @staticmethod
    def identify(reader: BinaryIO, file_name: str = "") -> FormatVersion:
        return FormatVersion.identify(file_name, reader.read(SIGNATURE_LEN))

    @staticmethod
    def metadata(reader: BinaryIO, version: FormatVersion) -> Tuple[int, Optional[int], ContentMap]:
        """Parse the rest of the header line and load the index table.

        Expects ``reader`` positioned right after the signature. Returns the
        index offset, the obfuscation key (None for unkeyed revisions) and the
        content map of archived records.
        """
        log.info("Parsing metadata from archive version (%s)", version)
        line = reader.readline()
        if line.endswith(b"\n"):
            line = line[:-1]
        log.debug("Read first line: %r", line)
        fields = line.split(b" ")

        if len(fields) < 2:
            raise ParseOffset()
        offset = _parse_hex(fields[1], ParseOffset)

        key: Optional[int] = None
        start = version.key_field_start
        if start is not None:
            key = 0
            for subkey in fields[start:]:
                key ^= _parse_hex(subkey, ParseKey)
        log.debug("Parsed the obfuscation key: %s", None if key is None else f"{key:#x}")

        log.info("Retrieving indexes")
        reader.seek(offset)
        raw = reader.read()
        log.debug("Read raw index bytes: %d", len(raw))

        content = ContentMap()
        for path, record in load_index(raw, key).items():
            content[path] = Content.from_record(record)
        log.debug("Parsed %d index entries", len(content))
        return offset, key, content

    def close(self):
        if self.reader is not None:
            self.reader.close()
            self.reader = None

    def list(self) -> List[str]:
        self._check_usable()
        return sorted(self.content)

    def copy_file(self, path: str, writer: BinaryIO) -> int:
        """Copy the bytes stored under ``path`` into ``writer``.

        Raises:
            NotFound: ``path`` is not part of the archive.
        """
        self._check_usable()
        key = self.content.resolve(path)
        if key is None:
            raise NotFound(path)
        return self.content[key].copy_to(self.reader, writer)

    def flush(self, writer: BinaryIO) -> None:
        """Write the whole archive to ``writer`` and consume this archive.

        The body is streamed after a zeroed placeholder header; ``writer`` is
        only rewound once, at the end, to fill in the real header. On failure
        the partial output must be discarded by the caller.
        """
        self._check_usable()
        log.info("Commencing archive flush")
        content, self.content = self.content, None
        self.flushed = True
        try:
            self._write(content, writer)
        finally:
            self.close()

    def _write(self, content: ContentMap, writer: BinaryIO) -> None:
        header_length = self.version.header_length()
        # Only keyed revisions store obfuscated records
        key = self.key if self.version.key_field_start is not None else None
        header_key = key if key is not None else 0
        self.version.check_key(header_key)

        # Placeholder header; the body can then be written without seeking.
        writer.write(b"\x00" * header_length)
        offset = header_length
        log.debug("Written placeholder header for version (%s) length (%d bytes)", self.version, header_length)

        log.info("Rebuilding indexes from content")
        records = {}
        for path in sorted(content):
            entry = content.pop(path)
            length = entry.copy_to(self.reader, writer)
            log.debug("Written content from path (%s) length (%d bytes)", path, length)
            records[path] = Record.new(offset, length, None, key)
            offset += length

        log.info("Preparing to write indexes")
        writer.write(dump_index(records))
        log.debug("Done writing indexes")

        log.info("Rewinding and writing archive header")
        writer.seek(0)
        writer.write(self.version.format_header(offset, header_key))
        writer.flush()
        log.debug("Done writing archive")

    def _check_usable(self):
        if self.flushed:
            raise RuntimeError("Archive already flushed")
