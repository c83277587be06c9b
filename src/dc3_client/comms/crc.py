"""
CRC-32 Implementation for DC3 Firmware Transfers
================================================

This module implements the standard CRC-32 checksum used by the DC3
protocol. The host computes it over the whole firmware image (sent in the
flash metadata) and over every individual chunk (sent with each data
packet); the device recomputes both and rejects any mismatch.

Technical Details
-----------------
- Polynomial: 0x04C11DB7 (reflected: 0xEDB88320)
- Initial value: 0xFFFFFFFF
- Input and output reflected
- Final XOR: 0xFFFFFFFF

This is the same CRC produced by zlib, Ethernet, PNG and Boost's
``crc_32_type``, so the fast path simply delegates to ``zlib.crc32``.

Check Values
------------
    CRC("")          = 0x00000000
    CRC("123456789") = 0xCBF43926

Usage
-----
    from dc3_client.comms.crc import crc32, crc32_fast

    checksum = crc32_fast(b"123456789")  # Returns 0xCBF43926

    # Incremental calculation over a large image
    crc = 0
    for block in blocks:
        crc = crc32_fast(block, crc)
"""

import zlib
from typing import Final

# =============================================================================
# CRC-32 Constants
# =============================================================================

# Reflected form of polynomial 0x04C11DB7
CRC32_POLYNOMIAL: Final[int] = 0xEDB88320

# Value passed to start a new calculation (also the CRC of no data)
CRC_INITIAL: Final[int] = 0x00000000

# Mask for 32-bit values
CRC_MASK: Final[int] = 0xFFFFFFFF

# Canonical check vector for CRC-32
CRC32_CHECK_INPUT: Final[bytes] = b"123456789"
CRC32_CHECK_VALUE: Final[int] = 0xCBF43926


# =============================================================================
# Lookup Table Generation
# =============================================================================

def _generate_crc_table() -> tuple[int, ...]:
    """
    Generate the 256-entry lookup table for the reflected polynomial.

    Each entry is the CRC register after shifting one byte value through
    eight rounds of the bitwise algorithm.

    Returns:
        Tuple of 256 CRC values for each possible byte value.
    """
    table = []
    for byte_val in range(256):
        crc = byte_val
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC32_POLYNOMIAL
            else:
                crc >>= 1
        table.append(crc)
    return tuple(table)


# Pre-computed CRC lookup table - generated once at import time
CRC_TABLE: Final[tuple[int, ...]] = _generate_crc_table()


# =============================================================================
# Reference Implementation (Using lookup table)
# =============================================================================

def crc32(data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate CRC-32 using the table-driven reference algorithm.

    Args:
        data: Input bytes to calculate CRC over.
        initial: CRC of the data preceding ``data``. Default 0 starts a
                 new calculation. Passing a previous result continues it,
                 matching the ``zlib.crc32`` convention.

    Returns:
        32-bit CRC value (0x00000000 to 0xFFFFFFFF).

    Example:
        >>> hex(crc32(b"123456789"))
        '0xcbf43926'
        >>> crc32(b"")
        0
    """
    crc = (initial ^ CRC_MASK) & CRC_MASK
    for byte in data:
        crc = CRC_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ CRC_MASK


# =============================================================================
# Fast Implementation (zlib)
# =============================================================================

def crc32_fast(data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate CRC-32 using zlib.

    Produces identical results to crc32() and is the one used on the hot
    path (whole-image and per-chunk checksums).

    Args:
        data: Input bytes to calculate CRC over.
        initial: CRC of preceding data, for incremental calculation.

    Returns:
        32-bit CRC value.
    """
    return zlib.crc32(data, initial) & CRC_MASK
