"""
DC3 Firmware Image Loader
=========================

Loads a DC3 firmware binary, validates it, and serves it in chunks for
the flash pipeline.

Filename Convention
-------------------
Version and build time travel in the filename rather than inside the
binary:

    <Product>_v<MAJOR>.<MINOR>_<YYYYMMDDhhmmss>.bin

    DC3Appl_v01.02_20150428120611.bin
    ^^^^^^^  ^^ ^^ ^^^^^^^^^^^^^^
    product  |  |  build datetime (14 digits)
             |  minor version
             major version

The product must contain "DC3". Names are checked before the file is
read, so a badly named image fails before any network activity.

Checksums
---------
The whole image is covered by a CRC-32 sent in the flash metadata; each
chunk carries its own CRC-32. Both use the standard polynomial (see
``dc3_client.comms.crc``).

Chunking
--------
``next_chunk`` hands out consecutive slices and advances a cursor. The
last chunk may be shorter than the chunk size, or exactly full; callers
detect the end with ``remaining() == 0``, never by looking at the chunk.

Example
-------
    image = FirmwareImage.load("DC3Appl_v01.02_20150428120611.bin")
    print(image.packet_count(112), hex(image.checksum()))
    while image.remaining():
        data, crc = image.next_chunk(112)
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final, Optional, Union

from dc3_client.comms.crc import crc32_fast
from dc3_client.comms.messages import DATETIME_LEN
from dc3_client.errors import (
    FirmwareImageError,
    FirmwareNotFoundError,
    FirmwareUnreadableError,
    InvalidFilenameError,
    InvalidFilenameExtensionError,
    InvalidFilenameFormatError,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Product marker every firmware filename must contain
PRODUCT_MARKER: Final[str] = "DC3"

FIRMWARE_EXTENSION: Final[str] = ".bin"

# Largest image the DC3 application sector accepts
MAX_IMAGE_SIZE: Final[int] = 1_500_000

_DATETIME_FORMAT: Final[str] = "%Y%m%d%H%M%S"

_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?P<product>.+?)_v(?P<major>[0-9]{2})\.(?P<minor>[0-9]{2})_(?P<datetime>[0-9]+)"
)


# =============================================================================
# Filename Parsing
# =============================================================================

@dataclass(frozen=True)
class FirmwareName:
    """
    Metadata parsed from a firmware filename.

    Attributes:
        product: Product part of the name (e.g., "DC3Appl")
        version_major: Major version
        version_minor: Minor version
        build_datetime: Build time as YYYYMMDDhhmmss
    """

    product: str
    version_major: int
    version_minor: int
    build_datetime: str

    @classmethod
    def parse(cls, filename: str) -> "FirmwareName":
        """
        Parse a firmware filename. Any directory part is ignored.

        Raises:
            InvalidFilenameError: Product marker missing.
            InvalidFilenameExtensionError: Name does not end in .bin.
            InvalidFilenameFormatError: Version or datetime unparseable.

        Example:
            >>> FirmwareName.parse("DC3Boot_v01.02_20150428120611.bin")
            FirmwareName(product='DC3Boot', version_major=1, version_minor=2, build_datetime='20150428120611')
        """
        name = Path(filename).name

        if PRODUCT_MARKER not in name:
            raise InvalidFilenameError(
                f"Firmware filename must contain '{PRODUCT_MARKER}': {name}"
            )
        if not name.lower().endswith(FIRMWARE_EXTENSION):
            raise InvalidFilenameExtensionError(
                f"Firmware filename must end in '{FIRMWARE_EXTENSION}': {name}"
            )

        stem = name[:-len(FIRMWARE_EXTENSION)]
        match = _NAME_PATTERN.fullmatch(stem)
        if match is None or PRODUCT_MARKER not in match["product"]:
            raise InvalidFilenameFormatError(
                f"Expected <Product>_v<MM>.<mm>_<YYYYMMDDhhmmss>.bin, "
                f"got: {name}"
            )

        build_datetime = match["datetime"]
        if len(build_datetime) != DATETIME_LEN:
            raise InvalidFilenameFormatError(
                f"Build datetime must be {DATETIME_LEN} digits, "
                f"got '{build_datetime}' in {name}"
            )
        try:
            datetime.strptime(build_datetime, _DATETIME_FORMAT)
        except ValueError:
            raise InvalidFilenameFormatError(
                f"Build datetime is not a valid date: '{build_datetime}' in {name}"
            ) from None

        return cls(
            product=match["product"],
            version_major=int(match["major"]),
            version_minor=int(match["minor"]),
            build_datetime=build_datetime,
        )

    @property
    def version(self) -> str:
        return f"{self.version_major}.{self.version_minor}"


# =============================================================================
# Firmware Image
# =============================================================================

class FirmwareImage:
    """
    An in-memory firmware image with a chunk cursor.

    Use ``load`` for files or ``from_bytes`` for data already in memory;
    both apply the same validation.

    Attributes:
        filename: Name the image was loaded under (no directory)
        info: Metadata parsed from the filename
    """

    def __init__(self, data: bytes, info: FirmwareName, filename: str = ""):
        if not data:
            raise FirmwareImageError(f"Firmware image is empty: {filename}")
        if len(data) > MAX_IMAGE_SIZE:
            raise FirmwareImageError(
                f"Firmware image too large: {len(data)} bytes, "
                f"max {MAX_IMAGE_SIZE}"
            )
        self._data = bytes(data)
        self.info = info
        self.filename = filename
        self._cursor = 0
        self._crc: Optional[int] = None

    @classmethod
    def load(cls, path: Union[str, Path]) -> "FirmwareImage":
        """
        Read and validate a firmware image file.

        The filename is validated before the file is opened.

        Raises:
            InvalidFilenameError, InvalidFilenameExtensionError,
            InvalidFilenameFormatError: Bad filename.
            FirmwareNotFoundError: File does not exist.
            FirmwareUnreadableError: File cannot be read.
            FirmwareImageError: File is empty or too large.
        """
        path = Path(path)
        info = FirmwareName.parse(path.name)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise FirmwareNotFoundError(f"Firmware file not found: {path}") from None
        except OSError as e:
            raise FirmwareUnreadableError(f"Cannot read firmware file {path}: {e}") from e

        image = cls(data, info, path.name)
        logger.info(
            "Loaded %s: %d bytes, version %s, built %s",
            path.name, image.size, info.version, info.build_datetime,
        )
        return image

    @classmethod
    def from_bytes(cls, filename: str, data: bytes) -> "FirmwareImage":
        """Build an image from memory, validating ``filename`` like ``load``."""
        return cls(data, FirmwareName.parse(filename), Path(filename).name)

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def version_major(self) -> int:
        return self.info.version_major

    @property
    def version_minor(self) -> int:
        return self.info.version_minor

    @property
    def build_datetime(self) -> str:
        return self.info.build_datetime

    def checksum(self) -> int:
        """CRC-32 of the whole image, computed once and cached."""
        if self._crc is None:
            self._crc = crc32_fast(self._data)
        return self._crc

    def packet_count(self, chunk_size: int) -> int:
        """Number of chunks needed at ``chunk_size`` bytes each (ceiling)."""
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        return -(-self.size // chunk_size)

    # -------------------------------------------------------------------------
    # Chunking
    # -------------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        """Byte offset of the next chunk."""
        return self._cursor

    def remaining(self) -> int:
        """Bytes not yet handed out by next_chunk."""
        return self.size - self._cursor

    def next_chunk(self, chunk_size: int) -> tuple[bytes, int]:
        """
        Return the next chunk and its CRC-32, advancing the cursor.

        The chunk holds up to ``chunk_size`` bytes; the last one may be
        shorter. Past the end, returns an empty chunk with CRC 0.
        """
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        if self._cursor >= self.size:
            return b"", 0
        chunk = self._data[self._cursor:self._cursor + chunk_size]
        self._cursor += len(chunk)
        return chunk, crc32_fast(chunk)

    def rewind(self) -> None:
        """Move the cursor back to the start of the image."""
        self._cursor = 0

    # -------------------------------------------------------------------------
    # Debugging
    # -------------------------------------------------------------------------

    def hexdump(self, width: int = 16, limit: Optional[int] = None) -> str:
        """
        Format the image (or its first ``limit`` bytes) as a hex listing.

        Example:
            00000000  44 43 33 00 ...  DC3.
        """
        data = self._data if limit is None else self._data[:limit]
        lines = []
        for offset in range(0, len(data), width):
            row = data[offset:offset + width]
            hex_part = " ".join(f"{b:02X}" for b in row).ljust(width * 3 - 1)
            text = "".join(chr(b) if 32 <= b < 127 else "." for b in row)
            lines.append(f"{offset:08X}  {hex_part}  {text}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return (
            f"FirmwareImage({self.filename!r}, size={self.size}, "
            f"version={self.info.version}, built={self.build_datetime})"
        )
