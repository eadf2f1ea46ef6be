from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple, Union

from .constants import CONTENT_RECORD, CONTENT_FILE, CONTENT_RAW
from .errors import NotFound
from .globutil import compile_pattern, matches
from .pathutil import norm_path
from .records import Record, copy_stream


log = logging.getLogger(__name__)


@dataclass
class Content:
    """Backing for one archive path.

    Exactly one of ``record``, ``path`` and ``data`` is set, according to
    ``kind``. File contents are opened when copied, not when inserted, so a
    file may be referenced before it exists.
    """

    kind: int  # 0=record, 1=file, 2=raw
    record: Optional[Record] = None
    path: Optional[str] = None
    data: Optional[bytes] = None

    @classmethod
    def from_record(cls, record: Record) -> "Content":
        return cls(kind=CONTENT_RECORD, record=record)

    @classmethod
    def from_file(cls, path: Union[str, os.PathLike]) -> "Content":
        return cls(kind=CONTENT_FILE, path=os.fspath(path))

    @classmethod
    def from_raw(cls, data: bytes) -> "Content":
        return cls(kind=CONTENT_RAW, data=bytes(data))

    def copy_to(self, reader: BinaryIO, writer: BinaryIO) -> int:
        """Copy this content's bytes into ``writer``.

        - record: bytes are read from the archive ``reader``
        - file: the file is opened and streamed
        - raw: the in-memory buffer is written
        """
        if self.kind == CONTENT_RECORD:
            return self.record.copy_to(reader, writer)
        if self.kind == CONTENT_FILE:
            log.debug("Copying file content: %s", self.path)
            with open(self.path, "rb") as fh:
                return copy_stream(fh, writer)
        if self.kind == CONTENT_RAW:
            log.debug("Copying raw content: %d bytes", len(self.data))
            writer.write(self.data)
            return len(self.data)
        raise ValueError(f"Unknown content kind: {self.kind}")


class ContentMap(dict):
    """Archive path to content bindings for one archive session."""

    def insert_file(self, path: Union[str, os.PathLike]) -> Optional[Content]:
        """Bind ``path`` (used both as archive path and filesystem path)."""
        return self.insert_file_mapped(path, path)

    def insert_file_mapped(self, archive_path: Union[str, os.PathLike], fs_path: Union[str, os.PathLike]) -> Optional[Content]:
        return self._insert(archive_path, Content.from_file(fs_path))

    def insert_raw(self, path: Union[str, os.PathLike], data: bytes) -> Optional[Content]:
        return self._insert(path, Content.from_raw(data))

    def resolve(self, path: Union[str, os.PathLike]) -> Optional[str]:
        """Return the key ``path`` is stored under, or None when it is absent.

        Keys read from an index are kept verbatim, so the exact spelling is
        tried before the normalized one.
        """
        if path in self:
            return path
        try:
            key = norm_path(path)
        except ValueError:
            return None
        return key if key in self else None

    def remove(self, path: Union[str, os.PathLike]) -> Optional[Content]:
        key = self.resolve(path)
        return None if key is None else self.pop(key)

    def rename(self, old_path: Union[str, os.PathLike], new_path: Union[str, os.PathLike]) -> Optional[Content]:
        """Move the content at ``old_path`` to ``new_path``.

        Returns whatever previously lived at ``new_path``.

        Raises:
            NotFound: ``old_path`` is not in the map.
        """
        old_key = self.resolve(old_path)
        if old_key is None:
            raise NotFound(os.fspath(old_path))
        new_path = norm_path(new_path)
        if new_path == old_key:
            return None
        content = self.pop(old_key)
        replaced = self.get(new_path)
        self[new_path] = content
        return replaced

    def filter_by_pattern(self, pattern: str) -> List[Tuple[str, Content]]:
        """Return ``(path, content)`` pairs whose path matches a glob, sorted by path."""
        compiled = compile_pattern(pattern)
        return [(p, c) for p, c in sorted(self.items()) if matches(compiled, p)]

    def _insert(self, path: Union[str, os.PathLike], content: Content) -> Optional[Content]:
        key = norm_path(path)
        previous = self.get(key)
        self[key] = content
        return previous
