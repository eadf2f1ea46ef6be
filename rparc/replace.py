from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

from .archive import RenpyArchive
from .constants import TEMP_SUFFIX


log = logging.getLogger(__name__)


def temp_path_for(path: Union[str, os.PathLike]) -> Path:
    p = Path(path)
    return p.with_name(p.name + TEMP_SUFFIX)


def replace_archive(archive: RenpyArchive, path: Union[str, os.PathLike]) -> Path:
    """Flush ``archive`` next to ``path`` and atomically swap it into place.

    The archive may be reading from ``path`` itself: the new bytes go to a
    temporary sibling first and the original is only replaced once the flush
    has completed. A leftover temporary file is removed whatever the outcome.

    Returns:
        The archive path that was written.
    """
    target = Path(path)
    temp_path = temp_path_for(target)
    log.debug("Replacing archive in %s", target)
    try:
        with open(temp_path, "wb") as fh:
            archive.flush(fh)
            os.fsync(fh.fileno())
        os.replace(str(temp_path), str(target))
    finally:
        if temp_path.exists():
            log.warning("Removing dangling %s", temp_path)
            temp_path.unlink()
    return target
