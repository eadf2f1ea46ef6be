from __future__ import annotations

import os
from pathlib import Path
from typing import Union


def norm_path(p: Union[str, os.PathLike]) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments and empty results
    """
    p = os.fspath(p).replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    if not parts:
        raise ValueError("Archive path is empty")
    return "/".join(parts)


def safe_join(out_dir: Union[str, os.PathLike], arc_path: str) -> Path:
    """Resolve an archive path under ``out_dir`` without escaping it."""
    rel = norm_path(arc_path)
    if ":" in rel.split("/")[0]:
        # drive-qualified names ("C:foo") would be absolute on Windows
        raise ValueError(f"Refusing drive-qualified archive path: {arc_path}")
    return Path(out_dir) / Path(*rel.split("/"))
