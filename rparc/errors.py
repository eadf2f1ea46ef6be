class RpaError(Exception):
    """Base class for rparc-specific errors."""


# Header
class IdentifyVersion(RpaError):
    def __init__(self, message: str = "failed to identify archive version"):
        super().__init__(message)


class ParseOffset(RpaError):
    def __init__(self, message: str = "failed to parse index offset"):
        super().__init__(message)


class ParseKey(RpaError):
    def __init__(self, message: str = "failed to parse index deobfuscation key"):
        super().__init__(message)


class KeyRangeError(RpaError):
    pass


# Index table
class FormatRecord(RpaError):
    def __init__(self, message: str = "failed to format archive index"):
        super().__init__(message)


class SerializeRecord(RpaError):
    def __init__(self, message: str = "failed to serialize archive index"):
        super().__init__(message)


class DeserializeRecord(RpaError):
    def __init__(self, message: str = "failed to deserialize archive index"):
        super().__init__(message)


# Content
class NotFound(RpaError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"file not found in indexes or content: '{path}'")


class PatternError(RpaError):
    pass


class WritingNotSupported(RpaError):
    def __init__(self, version):
        self.version = version
        super().__init__(f"writing archive not supported for {version}")
