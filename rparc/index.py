from __future__ import annotations

import codecs
import io
import logging
import pickle
import zlib
from typing import Dict, Mapping, Optional

from .constants import INDEX_PICKLE_PROTOCOL, MAX_INDEX_UNCOMPRESSED
from .errors import DeserializeRecord, SerializeRecord
from .records import Record


log = logging.getLogger(__name__)


def _empty_bytes(*args):
    # Only the argument-free call is accepted
    if args:
        raise pickle.UnpicklingError("bytes() with arguments is not allowed in an archive index")
    return b""


# Protocol 2 has no bytes opcode; Python 3 pickles bytes as _codecs.encode(text, "latin1")
# and an empty bytes object as a bare call to __builtin__.bytes.
_ALLOWED_GLOBALS = {
    ("_codecs", "encode"): codecs.encode,
    ("__builtin__", "bytes"): _empty_bytes,
    ("builtins", "bytes"): _empty_bytes,
}


class _IndexUnpickler(pickle.Unpickler):
    """Unpickler that only rebuilds plain containers, numbers and strings.

    Index tables come from untrusted files, so no other globals resolve.
    """

    def find_class(self, module, name):
        try:
            return _ALLOWED_GLOBALS[(module, name)]
        except KeyError:
            raise pickle.UnpicklingError(f"global '{module}.{name}' is not allowed in an archive index") from None


def _inflate(data: bytes, limit: int) -> bytes:
    d = zlib.decompressobj()
    out = d.decompress(data, limit + 1)
    if len(out) > limit or d.unconsumed_tail:
        raise DeserializeRecord("archive index exceeds safety bound")
    out += d.flush()
    if not d.eof:
        raise DeserializeRecord("archive index stream is truncated")
    return out


def load_index(data: bytes, key: Optional[int], *, limit: int = MAX_INDEX_UNCOMPRESSED) -> Dict[str, Record]:
    """Inflate and unpickle an index table, returning deobfuscated records by path."""
    try:
        raw = _inflate(data, limit)
    except zlib.error as exc:
        raise DeserializeRecord(f"failed to deserialize archive index: {exc}") from exc
    log.debug("Decoded index data with zlib: %d bytes", len(raw))

    try:
        table = _IndexUnpickler(io.BytesIO(raw), encoding="bytes").load()
    except (pickle.UnpicklingError, EOFError, ValueError, TypeError, AttributeError, IndexError, KeyError) as exc:
        raise DeserializeRecord(f"failed to deserialize archive index: {exc}") from exc
    if not isinstance(table, dict):
        raise DeserializeRecord("archive index is not a mapping")
    log.debug("Deserialized index data using pickle: %d entries", len(table))

    records: Dict[str, Record] = {}
    for path, value in table.items():
        if isinstance(path, bytes):
            try:
                path = path.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DeserializeRecord(f"archive index path is not valid utf-8: {path!r}") from exc
        if not isinstance(path, str):
            raise DeserializeRecord(f"archive index path is not a string: {path!r}")
        records[path] = Record.from_value(value, key)
    return records


def dump_index(records: Mapping[str, Record]) -> bytes:
    """Pickle (protocol 2) and deflate an index table, ordered by path."""
    table = {path: records[path].to_value() for path in sorted(records)}
    try:
        raw = pickle.dumps(table, protocol=INDEX_PICKLE_PROTOCOL)
    except (pickle.PicklingError, TypeError, ValueError) as exc:
        raise SerializeRecord(f"failed to serialize archive index: {exc}") from exc
    log.debug("Encoded index using pickle protocol %d: %d bytes", INDEX_PICKLE_PROTOCOL, len(raw))
    compressed = zlib.compress(raw)
    log.debug("Compressed index using zlib: %d bytes", len(compressed))
    return compressed
