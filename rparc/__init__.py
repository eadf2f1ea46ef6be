"""
rparc: read, build and rewrite Ren'Py archives (.rpa).

Features:

- Version detection for RPA-3.2, RPA-3.0, RPA-2.0 and legacy .rpi archives.
- Index tables decoded with a restricted unpickler (no arbitrary globals) and
  XOR-obfuscated offsets resolved transparently.
- Archive entries backed by the archive itself, by files on disk, or by
  in-memory buffers, freely mixed and rebuilt into a new v2.0/v3.0 archive.
- Crash-safe rewrites through a temporary file and an atomic rename.
- Sequential or memory-mapped multi-threaded extraction.

The importable API lives in rparc.archive (RenpyArchive) and rparc.content
(Content, ContentMap); the CLI commands are in rparc.cli.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "version",
    "records",
    "index",
    "content",
    "archive",
    "extract",
    "replace",
]
