from __future__ import annotations

import fnmatch
import re
from typing import Pattern

from .errors import PatternError


def compile_pattern(pattern: str) -> Pattern[str]:
    """Compile a shell-style glob for matching archive paths.

    ``*`` and ``?`` also match ``/``; ``**`` must form a whole path segment.
    """
    for segment in pattern.split("/"):
        if "**" in segment and segment != "**":
            raise PatternError(f"invalid pattern '{pattern}': recursive wildcards must form a single path component")
    try:
        return re.compile(fnmatch.translate(pattern))
    except re.error as exc:
        raise PatternError(f"invalid pattern '{pattern}': {exc}") from exc


def matches(compiled: Pattern[str], path: str) -> bool:
    return compiled.match(path) is not None
