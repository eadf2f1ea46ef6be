# Header signatures (first 7 bytes of an archive)
SIGNATURE_V3_2 = "RPA-3.2"
SIGNATURE_V3_0 = "RPA-3.0"
SIGNATURE_V2_0 = "RPA-2.0"
SIGNATURE_LEN = 7

# Legacy archives carry no signature; they are recognised by their index file suffix
LEGACY_INDEX_SUFFIX = "rpi"

# Fixed header lengths, trailing newline included:
#   "RPA-3.0 " + 16 hex + " " + 8 hex + "\n" == 34
#   "RPA-2.0 " + 16 hex + "\n"               == 25
HEADER_LEN_V3_0 = 34
HEADER_LEN_V2_0 = 25

# Obfuscation key written into fresh v3.0 archives
DEFAULT_KEY = 0xDEADBEEF

# A v3.0 header holds a single 8-digit subkey
MAX_HEADER_KEY = 0xFFFFFFFF

U64_MASK = (1 << 64) - 1

# Content kinds
CONTENT_RECORD = 0
CONTENT_FILE = 1
CONTENT_RAW = 2

# Index table
INDEX_PICKLE_PROTOCOL = 2
MAX_INDEX_UNCOMPRESSED = 256 * 1024 * 1024  # 256 MiB safety bound

COPY_BUFFER_SIZE = 1_048_576  # 1 MiB

# Temporary file suffix used when rewriting an archive in place
TEMP_SUFFIX = ".temp"
