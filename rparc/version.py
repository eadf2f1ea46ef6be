from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from .constants import (
    SIGNATURE_V3_2,
    SIGNATURE_V3_0,
    SIGNATURE_V2_0,
    LEGACY_INDEX_SUFFIX,
    HEADER_LEN_V3_0,
    HEADER_LEN_V2_0,
    MAX_HEADER_KEY,
    U64_MASK,
)
from .errors import IdentifyVersion, KeyRangeError, WritingNotSupported


class FormatVersion(Enum):
    V3_2 = "v3.2"
    V3_0 = "v3.0"
    V2_0 = "v2.0"
    V1_0 = "v1.0"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def identify(cls, file_name: str, header: Union[bytes, str]) -> "FormatVersion":
        """Derive the archive revision from its leading signature.

        Archives without a recognised signature are only accepted as the
        legacy revision when ``file_name`` carries the ``rpi`` suffix.
        """
        if isinstance(header, bytes):
            try:
                header = header.decode("ascii")
            except UnicodeDecodeError:
                header = ""
        if header == SIGNATURE_V3_2:
            return cls.V3_2
        if header == SIGNATURE_V3_0:
            return cls.V3_0
        if header == SIGNATURE_V2_0:
            return cls.V2_0
        if file_name and file_name.endswith(LEGACY_INDEX_SUFFIX):
            return cls.V1_0
        raise IdentifyVersion()

    @property
    def supports_write(self) -> bool:
        return self in (FormatVersion.V3_0, FormatVersion.V2_0)

    @property
    def key_field_start(self) -> Optional[int]:
        # Index of the first subkey token on the header line
        if self is FormatVersion.V3_0:
            return 2
        if self is FormatVersion.V3_2:
            return 3
        return None

    def header_length(self) -> int:
        if self is FormatVersion.V3_0:
            return HEADER_LEN_V3_0
        if self is FormatVersion.V2_0:
            return HEADER_LEN_V2_0
        raise WritingNotSupported(self)

    def check_key(self, key: int) -> None:
        if self is FormatVersion.V3_0 and not 0 <= key <= MAX_HEADER_KEY:
            raise KeyRangeError(f"obfuscation key {key:#x} does not fit a {self} header")

    def format_header(self, offset: int, key: int = 0) -> bytes:
        """Render the fixed-width header line for a write-capable revision."""
        if not 0 <= offset <= U64_MASK:
            raise ValueError("index offset out of range")
        if self is FormatVersion.V3_0:
            self.check_key(key)
            header = f"{SIGNATURE_V3_0} {offset:016x} {key:08x}\n"
        elif self is FormatVersion.V2_0:
            header = f"{SIGNATURE_V2_0} {offset:016x}\n"
        else:
            raise WritingNotSupported(self)
        return header.encode("ascii")
