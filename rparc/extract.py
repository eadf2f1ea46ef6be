from __future__ import annotations

import concurrent.futures as _fut
import io
import logging
import mmap
import os
import threading
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from .archive import RenpyArchive
from .content import Content
from .errors import IdentifyVersion
from .globutil import compile_pattern, matches
from .pathutil import norm_path, safe_join


log = logging.getLogger(__name__)


class MappedCursor(io.RawIOBase):
    """Independent read cursor over a shared, immutable buffer (e.g. an mmap).

    Several cursors may read the same buffer concurrently; each keeps its own
    position. Close every cursor before closing the underlying mapping.
    """

    def __init__(self, buf):
        super().__init__()
        self._view = memoryview(buf)
        self._pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        n = min(len(b), len(self._view) - self._pos)
        if n <= 0:
            return 0
        b[:n] = self._view[self._pos:self._pos + n]
        self._pos += n
        return n

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = len(self._view) + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if pos < 0:
            raise ValueError(f"negative seek position {pos}")
        self._pos = pos
        return pos

    def tell(self) -> int:
        return self._pos

    def close(self):
        if not self.closed:
            self._view.release()
        super().close()


def iter_selected(content, files: Iterable[str] = (), pattern: Optional[str] = None) -> List[Tuple[str, Content]]:
    """Select ``(path, content)`` pairs by explicit path and/or glob pattern.

    With neither selector everything is selected; with both, the union.
    """
    wanted = set()
    for f in files:
        wanted.add(f)
        wanted.add(norm_path(f))
    compiled = compile_pattern(pattern) if pattern is not None else None
    selected = []
    for path, entry in sorted(content.items()):
        if not wanted and compiled is None:
            selected.append((path, entry))
        elif path in wanted or (compiled is not None and matches(compiled, path)):
            selected.append((path, entry))
    return selected


def extract_content(reader: BinaryIO, arc_path: str, content: Content, out_dir: Union[str, os.PathLike]) -> Path:
    """Write one archive entry below ``out_dir``; returns the written path."""
    log.info("Extracting %s", arc_path)
    target = safe_join(out_dir, arc_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as fh:
        content.copy_to(reader, fh)
    return target


def extract_archive(
    archive: RenpyArchive,
    out_dir: Union[str, os.PathLike],
    files: Iterable[str] = (),
    pattern: Optional[str] = None,
) -> List[Path]:
    """Extract entries one after another through the archive's own reader."""
    selected = iter_selected(archive.content, files, pattern)
    return [extract_content(archive.reader, p, c, out_dir) for p, c in selected]


def extract_archive_mapped(
    path: Union[str, os.PathLike],
    out_dir: Union[str, os.PathLike],
    files: Iterable[str] = (),
    pattern: Optional[str] = None,
    jobs: Optional[int] = None,
) -> List[Path]:
    """Memory-map an archive read-only and extract entries on a thread pool.

    Each worker thread reads through its own :class:`MappedCursor`, so
    entries are copied without any coordination between workers.
    """
    local = threading.local()
    cursors: List[MappedCursor] = []
    lock = threading.Lock()

    with open(path, "rb") as fh:
        if os.fstat(fh.fileno()).st_size == 0:
            # A zero-length file cannot be mapped and carries no signature
            raise IdentifyVersion()
        with mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ) as mm:
            if hasattr(mm, "madvise") and hasattr(mmap, "MADV_WILLNEED"):
                mm.madvise(mmap.MADV_WILLNEED)
            main_cursor = MappedCursor(mm)
            try:
                archive = RenpyArchive.read(main_cursor, file_name=os.path.basename(os.fspath(path)))
            except BaseException:
                main_cursor.close()
                raise

            def _cursor() -> MappedCursor:
                cur = getattr(local, "cursor", None)
                if cur is None:
                    cur = MappedCursor(mm)
                    local.cursor = cur
                    with lock:
                        cursors.append(cur)
                return cur

            def _one(item: Tuple[str, Content]) -> Path:
                arc_path, content = item
                return extract_content(_cursor(), arc_path, content, out_dir)

            try:
                selected = iter_selected(archive.content, files, pattern)
                with _fut.ThreadPoolExecutor(max_workers=jobs) as ex:
                    return list(ex.map(_one, selected))
            finally:
                for cur in cursors:
                    cur.close()
                archive.close()
