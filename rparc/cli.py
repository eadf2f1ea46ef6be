from __future__ import annotations

import argparse
import concurrent.futures as _fut
import glob as _glob
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from rparc.archive import RenpyArchive
from rparc.constants import CONTENT_RECORD
from rparc.content import Content
from rparc.errors import NotFound, RpaError
from rparc.extract import extract_archive, extract_archive_mapped
from rparc.globutil import compile_pattern, matches
from rparc.pathutil import safe_join
from rparc.replace import replace_archive
from rparc.version import FormatVersion


log = logging.getLogger("rparc.cli")

WRITE_VERSIONS = {"3": FormatVersion.V3_0, "2": FormatVersion.V2_0}
DEFAULT_WRITE_VERSION = FormatVersion.V3_0


def _hex_key(value: str) -> int:
    text = value[2:] if value.lower().startswith("0x") else value
    try:
        key = int(text, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a hexadecimal key") from None
    if key < 0 or "_" in text:
        raise argparse.ArgumentTypeError(f"'{value}' is not a hexadecimal key")
    return key


def _mapped_path(value: str) -> Tuple[str, str]:
    """Split ``archive/path=fs/path``; a plain path maps onto itself."""
    arc, sep, fs = value.partition("=")
    return (arc, fs) if sep else (value, value)


def _setup_logging(verbose: int) -> None:
    levels = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}
    logging.basicConfig(
        level=levels.get(verbose, logging.DEBUG),
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def _apply_write_options(
    archive: RenpyArchive,
    *,
    key: Optional[int] = None,
    write_version: Optional[str] = None,
    override_version: bool = False,
) -> None:
    """Apply command-line write settings to an archive before it is flushed."""
    if write_version is not None:
        archive.version = WRITE_VERSIONS[write_version]
    elif override_version and not archive.version.supports_write:
        log.warning("Archive version %s cannot be written; using %s", archive.version, DEFAULT_WRITE_VERSION)
        archive.version = DEFAULT_WRITE_VERSION
    if key is not None:
        archive.key = key


def _rewrite(archive: RenpyArchive, path: str, write_opts: dict) -> None:
    _apply_write_options(archive, **write_opts)
    replace_archive(archive, path)


# -------- Commands (exposed callables) --------

def cmd_add(archive: str, files: Iterable[str] = (), *, pattern: Optional[str] = None, **write_opts) -> bool:
    """Add files to an existing archive, or create a new one.

    Args:
        archive: Path to an existing archive or to a new archive file.
        files: Entries of the form ``archive/path=fs/path`` or a plain path used for both.
        pattern: Filesystem glob; every matching file is added under its own path.
        write_opts: ``key``, ``write_version`` and ``override_version`` settings.
    """
    p = Path(archive)
    if p.exists() and not p.is_file():
        raise RuntimeError(f"Expected an archive or empty path: {archive}")
    arc = RenpyArchive.open(p) if p.exists() else RenpyArchive.new()
    with arc:
        for item in files:
            arc_path, fs_path = _mapped_path(item)
            log.info("Adding %s...", item)
            if arc.content.insert_file_mapped(arc_path, fs_path) is not None:
                log.warning("Removed previous content in %s.", arc_path)
        if pattern is not None:
            for fs_path in sorted(_glob.glob(pattern, recursive=True)):
                if not os.path.isfile(fs_path):
                    continue
                log.info("Adding %s...", fs_path)
                if arc.content.insert_file(fs_path) is not None:
                    log.warning("Removed previous content in %s.", fs_path)
        _rewrite(arc, archive, write_opts)
    return True


def cmd_extract(
    archives: Iterable[str] = (),
    *,
    archive_pattern: Optional[str] = None,
    out: Optional[str] = None,
    files: Iterable[str] = (),
    pattern: Optional[str] = None,
    memory: bool = False,
    jobs: int = 4,
) -> int:
    """Extract files with full paths from one or more archives.

    Args:
        archives: Archive paths.
        archive_pattern: Filesystem glob adding more archives.
        out: Root output directory; defaults to each archive's directory.
        files: Archive paths to extract (all when neither files nor pattern is given).
        pattern: Glob over archive paths selecting entries to extract.
        memory: Memory-map each archive in turn and extract its entries on worker threads.
        jobs: Maximum parallel workers.

    Returns:
        The number of extracted files.

    Raises:
        RuntimeError: If no archives were given or matched.
    """
    paths = list(archives)
    if archive_pattern is not None:
        log.info("Adding archives from glob pattern '%s'...", archive_pattern)
        paths.extend(sorted(_glob.glob(archive_pattern, recursive=True)))
    if not paths:
        raise RuntimeError("No archives found")
    if pattern is not None:
        compile_pattern(pattern)
    files = list(files)
    workers = max(1, int(jobs))

    def _out_dir(path: str) -> str:
        return out if out is not None else (os.path.dirname(path) or ".")

    if memory:
        # One archive at a time; its entries fan out over the workers
        return sum(len(extract_archive_mapped(p, _out_dir(p), files, pattern, jobs=workers)) for p in paths)

    def _runner(path: str) -> int:
        with RenpyArchive.open(path) as arc:
            return len(extract_archive(arc, _out_dir(path), files, pattern))

    with _fut.ThreadPoolExecutor(max_workers=workers) as ex:
        return sum(ex.map(_runner, paths))


def cmd_list(archive: str) -> bool:
    """Print every archive path, one per line."""
    with RenpyArchive.open(archive) as arc:
        for path in arc.list():
            print(path)
    return True


def cmd_info(archive: str) -> bool:
    """Show the archive revision, index offset, key and entry count."""
    with RenpyArchive.open(archive) as arc:
        key = "-" if arc.key is None else f"{arc.key:#x}"
        print(f"version:  {arc.version}")
        print(f"writable: {'yes' if arc.version.supports_write else 'no'}")
        print(f"offset:   {arc.offset:#x}")
        print(f"key:      {key}")
        print(f"entries:  {len(arc.content)}")
    return True


def cmd_remove(archive: str, files: Iterable[str] = (), *, pattern: Optional[str] = None, keep: bool = False, **write_opts) -> bool:
    """Delete files from an archive.

    Args:
        archive: Archive path.
        files: Archive paths to delete; each one must exist.
        pattern: Glob over archive paths; matching entries are deleted.
        keep: Invert ``pattern``: keep matching entries and delete the rest.
    """
    compiled = compile_pattern(pattern) if pattern is not None else None
    with RenpyArchive.open(archive) as arc:
        for f in files:
            log.info("Removing %s...", f)
            if arc.content.remove(f) is None:
                raise NotFound(f)
        if compiled is not None:
            for path in sorted(arc.content):
                if matches(compiled, path) != keep:
                    log.info("Removing %s...", path)
                    arc.content.remove(path)
        _rewrite(arc, archive, write_opts)
    return True


def cmd_update(
    archive: str,
    files: Iterable[str] = (),
    *,
    pattern: Optional[str] = None,
    relative: Optional[str] = None,
    **write_opts,
) -> bool:
    """Refresh archive entries from files on disk.

    Args:
        archive: Archive path.
        files: Archive paths to update; each one must exist in the archive.
        pattern: Glob over archive paths selecting entries to update.
        relative: Directory the archive paths are resolved against; defaults
            to the archive's directory. Without files or pattern every entry
            is updated.
    """
    if relative is None:
        base = Path(archive).resolve().parent
    else:
        base = Path(relative)
        if not base.exists():
            raise FileNotFoundError(f"relative directory target not found. '{relative}' does not exist.")
        if not base.is_dir():
            raise NotADirectoryError(f"relative directory target not found. '{relative}' not a directory.")
    files = list(files)
    compiled = compile_pattern(pattern) if pattern is not None else None

    with RenpyArchive.open(archive) as arc:
        content = arc.content
        if not files and compiled is None:
            log.debug("Updating all files in archive, no specifics defined.")
            for path in sorted(content):
                log.info("Updating %s...", path)
                content[path] = Content.from_file(safe_join(base, path))
        else:
            if compiled is not None:
                for path in sorted(content):
                    if matches(compiled, path):
                        log.info("Updating %s...", path)
                        content[path] = Content.from_file(safe_join(base, path))
            for path in files:
                key = content.resolve(path)
                if key is None:
                    raise NotFound(path)
                if content[key].kind == CONTENT_RECORD:
                    log.info("Updating %s...", key)
                    content[key] = Content.from_file(safe_join(base, key))
        _rewrite(arc, archive, write_opts)
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="rparc",
        description="Ren'Py archive (.rpa) tool",
    )
    ap.add_argument("-v", "--verbose", action="count", default=0, help="Show more detail (default only shows errors)")
    ap.add_argument("-k", "--key", type=_hex_key, help="Hex obfuscation key for v3 archives (default DEADBEEF)")
    ap.add_argument("-w", "--write-version", choices=sorted(WRITE_VERSIONS), help="Archive version to write")
    ap.add_argument(
        "-o",
        "--override-version",
        action="store_true",
        help="Write the default version (3) when the archive's own version cannot be written",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_add = sub.add_parser("add", help="Add files to an existing or new archive")
    ap_add.add_argument("archive", help="Archive path (created if missing)")
    ap_add.add_argument("files", nargs="*", help="Files to add: 'archive/path=fs/path' or a plain path")
    ap_add.add_argument("-p", "--pattern", help="Add filesystem files matching this glob pattern")

    ap_extract = sub.add_parser("extract", help="Extract files with full paths")
    ap_extract.add_argument("archives", nargs="*", help="Archive paths")
    ap_extract.add_argument("-a", "--archive-pattern", help="Find archives using this glob pattern")
    ap_extract.add_argument("-O", "--out", help="Root output directory (default: the archive's directory)")
    ap_extract.add_argument("-f", "--file", dest="files", action="append", default=[], help="Archive path to extract (repeatable)")
    ap_extract.add_argument("-p", "--pattern", help="Extract archive paths matching this glob pattern")
    ap_extract.add_argument("-m", "--memory", action="store_true", help="Memory-map archives and extract with worker threads")
    ap_extract.add_argument("-j", "--jobs", type=int, default=4, help="Parallel jobs (default 4)")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")

    ap_info = sub.add_parser("info", help="Show archive information")
    ap_info.add_argument("archive", help="Archive path")

    ap_remove = sub.add_parser("remove", help="Delete files from an archive")
    ap_remove.add_argument("archive", help="Archive path")
    ap_remove.add_argument("files", nargs="*", help="Archive paths to delete")
    ap_remove.add_argument("-p", "--pattern", help="Delete archive paths matching this glob pattern")
    ap_remove.add_argument("--keep", action="store_true", help="Keep files matching the pattern and delete the rest")

    ap_update = sub.add_parser("update", help="Update an archive by reading from the filesystem")
    ap_update.add_argument("archive", help="Archive path")
    ap_update.add_argument("files", nargs="*", help="Archive paths to update")
    ap_update.add_argument("-p", "--pattern", help="Update archive paths matching this glob pattern")
    ap_update.add_argument("-r", "--relative", help="Find files relative to this directory (default: the archive's directory)")

    args = ap.parse_args(argv)
    _setup_logging(args.verbose)
    write_opts = {
        "key": args.key,
        "write_version": args.write_version,
        "override_version": args.override_version,
    }
    try:
        if args.cmd == "add":
            cmd_add(args.archive, args.files, pattern=args.pattern, **write_opts)
        elif args.cmd == "extract":
            cmd_extract(
                args.archives,
                archive_pattern=args.archive_pattern,
                out=args.out,
                files=args.files,
                pattern=args.pattern,
                memory=args.memory,
                jobs=args.jobs,
            )
        elif args.cmd == "list":
            cmd_list(args.archive)
        elif args.cmd == "info":
            cmd_info(args.archive)
        elif args.cmd == "remove":
            cmd_remove(args.archive, args.files, pattern=args.pattern, keep=args.keep, **write_opts)
        elif args.cmd == "update":
            cmd_update(args.archive, args.files, pattern=args.pattern, relative=args.relative, **write_opts)
        else:
            raise RuntimeError("Unknown command")
    except (RpaError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
