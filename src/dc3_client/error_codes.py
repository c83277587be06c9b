"""
DC3 Error Codes
===============

Catalogue of the 32-bit error codes exchanged with the DC3 board, plus
the codes the host client assigns to its own failures.

Code Layout
-----------
Every error code is a 32-bit value:

    0xCCCCEEEE
      ^^^^       category (high 16 bits)
          ^^^^   category-specific error (low 16 bits)

For example, 0x00010012 is category 0x0001 (flash), error 0x0012 (a
firmware packet failed its CRC check). 0x00000000 means success;
0xFFFFFFFE and 0xFFFFFFFF are reserved for "unimplemented" and
"unknown". The layout is bit-exact with the device firmware and must
never be remapped.

Categories
----------
    0x0000  Serial, hardware and reset causes
    0x0001  Internal flash
    0x0003  NOR flash / FPGA bus
    0x0004  Communications manager
    0x0005  Device console menu
    0x0006  I2C bus
    0x0007  I2C1 devices
    0x0008  Settings database
    0x0009  I2C devices
    0x000A  Message handling
    0x000B  Memory
    0x00F0  Host client (never sent by the device)
"""

from enum import IntEnum
from typing import Final

# =============================================================================
# Layout Constants
# =============================================================================

CATEGORY_SHIFT: Final[int] = 16
DETAIL_MASK: Final[int] = 0xFFFF
CODE_MASK: Final[int] = 0xFFFFFFFF

CATEGORY_NAMES: Final[dict[int, str]] = {
    0x0000: "serial",
    0x0001: "flash",
    0x0003: "nor",
    0x0004: "comm",
    0x0005: "menu",
    0x0006: "i2c bus",
    0x0007: "i2c1 device",
    0x0008: "database",
    0x0009: "i2c device",
    0x000A: "message",
    0x000B: "memory",
    0x00F0: "client",
    0xFFFF: "reserved",
}


# =============================================================================
# Device Error Codes
# =============================================================================

class ErrorCode(IntEnum):
    """Error codes reported by the DC3 firmware."""

    # Serial / hardware
    NONE = 0x00000000
    SERIAL_HW_TIMEOUT = 0x00000001
    SERIAL_MSG_TOO_LONG = 0x00000002
    SERIAL_MSG_BASE64_ENC_FAILED = 0x00000003
    STM32_HW_CRYPTO_FAILED = 0x00000004
    LOW_POWER_RESET = 0x00000005
    WINDOW_WATCHDOG_RESET = 0x00000006
    INDEPENDENT_WATCHDOG_RESET = 0x00000007
    SOFTWARE_RESET = 0x00000008
    POR_PDR_RESET = 0x00000009
    PIN_RESET = 0x0000000A
    BOR_RESET = 0x0000000B
    SDRAM_DATA_BUS = 0x0000000C
    SDRAM_ADDR_BUS = 0x0000000D
    SDRAM_DEVICE_INTEGRITY = 0x0000000E

    # Flash
    FLASH_IMAGE_SIZE_INVALID = 0x00010000
    FLASH_IMAGE_TYPE_INVALID = 0x00010001
    FLASH_BUSY = 0x00010002
    FLASH_READ = 0x00010003
    FLASH_PGS = 0x00010004
    FLASH_PGP = 0x00010005
    FLASH_PGA = 0x00010006
    FLASH_WRP = 0x00010007
    FLASH_PROGRAM = 0x00010008
    FLASH_OPERATION = 0x00010009
    FLASH_READ_VERIFY_FAILED = 0x0001000A
    FLASH_WRITE_INCOMPLETE = 0x0001000B
    FLASH_SECTOR_ADDR_NOT_FOUND = 0x0001000C
    FLASH_ERASE_TIMEOUT = 0x0001000D
    FLASH_INVALID_IMAGE_CRC = 0x0001000E
    FLASH_INVALID_DATETIME_LEN = 0x0001000F
    FLASH_INVALID_DATETIME = 0x00010010
    FLASH_WAIT_FOR_DATA_TIMEOUT = 0x00010011
    FLASH_INVALID_FW_PACKET_CRC = 0x00010012
    FLASH_WRITE_TIMEOUT = 0x00010013
    FLASH_INVALID_IMAGE_CRC_AFTER_FLASH = 0x00010014
    SDRAM_DATA_BUS_TEST_TIMEOUT = 0x00010015
    SDRAM_ADDR_BUS_TEST_TIMEOUT = 0x00010016
    SDRAM_DEVICE_INTEGRITY_TEST_TIMEOUT = 0x00010017

    # NOR
    NOR_ERROR = 0x00030000
    NOR_TIMEOUT = 0x00030001
    NOR_BUSY = 0x00030002

    # Communications
    COMM_UNKNOWN_MSG_SOURCE = 0x00040000
    COMM_INVALID_MSG_LEN = 0x00040001
    COMM_UNIMPLEMENTED_MSG = 0x00040002
    COMM_FLASHMGR_TIMEOUT = 0x00040003
    COMM_INVALID_APPL_CRC = 0x00040004
    COMM_INVALID_APPL_SIZE = 0x00040005
    COMM_INVALID_APPL_CRC_MISMATCH = 0x00040006
    COMM_INVALID_BOOTMODE_REQUESTED = 0x00040007
    COMM_I2C_READ_CMD_TIMEOUT = 0x00040008

    # Menu
    MENU_NODE_STORAGE_ALLOC_NULL = 0x00050000
    MENU_TEXT_STORAGE_ALLOC_NULL = 0x00050001
    MENU_UNKNOWN_CMD = 0x00050002
    MENU_CURRENT_NODE_NULL = 0x00050003
    MENU_CMD_NOT_FOUND_AT_THIS_MENU = 0x00050004

    # I2C bus
    I2CBUS_BUSY = 0x00060000
    I2CBUS_RCVRY_SDA_STUCK_LOW = 0x00060001
    I2CBUS_RCVRY_EV5_NOT_REC = 0x00060002
    I2CBUS_RCVRY_EV6_NOT_REC = 0x00060003
    I2CBUS_EV5_TIMEOUT = 0x00060004
    I2CBUS_EV5_NOT_REC = 0x00060005
    I2CBUS_INVALID_PARAMS_FOR_7BIT_ADDR = 0x00060006
    I2CBUS_INVALID_PARAMS_FOR_SEND_DATA = 0x00060007
    I2CBUS_EV6_TIMEOUT = 0x00060008
    I2CBUS_EV6_NOT_REC = 0x00060009
    I2CBUS_EV8_TIMEOUT = 0x0006000A
    I2CBUS_EV8_NOT_REC = 0x0006000B
    I2CBUS_INVALID_PARAMS_FOR_BUS_CHECK_FREE = 0x0006000C
    I2CBUS_RXNE_FLAG_TIMEOUT = 0x0006000D
    I2CBUS_STOP_BIT_TIMEOUT = 0x0006000E
    I2CBUS_WRITE_BYTE_TIMEOUT = 0x0006000F

    # I2C1 device
    I2C1DEV_CHECK_BUS_TIMEOUT = 0x00070000
    I2C1DEV_EV5_TIMEOUT = 0x00070001
    I2C1DEV_EV6_TIMEOUT = 0x00070002
    I2C1DEV_EV8_TIMEOUT = 0x00070003
    I2C1DEV_READ_MEM_TIMEOUT = 0x00070004
    I2C1DEV_WRITE_MEM_TIMEOUT = 0x00070005
    I2C1DEV_READ_REG_TIMEOUT = 0x00070006
    I2C1DEV_WRITE_REG_TIMEOUT = 0x00070007
    I2C1DEV_ACK_DIS_TIMEOUT = 0x00070008
    I2C1DEV_ACK_EN_TIMEOUT = 0x00070009
    I2C1DEV_MEM_OUT_BOUNDS = 0x0007000A
    I2C1DEV_0_BYTE_REQUEST = 0x0007000B
    I2C1DEV_OVERFLOW_REQUEST = 0x0007000C
    I2C1DEV_INVALID_DEVICE = 0x0007000D
    I2C1DEV_READ_ONLY_DEVICE = 0x0007000E
    I2C1DEV_ACCESS_OVER_END_OF_DEVICE_MEM = 0x0007000F
    I2C1DEV_INVALID_OPERATION = 0x00070010

    # Database
    DB_NOT_INIT = 0x00080000
    DB_VER_MISMATCH = 0x00080001
    DB_ELEM_NOT_FOUND = 0x00080002
    DB_ELEM_IS_READ_ONLY = 0x00080003
    DB_ELEM_IS_NOT_IN_EEPROM = 0x00080004
    DB_ACCESS_TIMEOUT = 0x00080005
    DB_ELEM_SIZE_OVERFLOW = 0x00080006
    DB_INVALID_DATETIME_LENGTH = 0x00080007
    DB_INVALID_MAGIC_WORD_LENGTH = 0x00080008
    DB_DATETIME_MISMATCH = 0x00080009
    DB_INVALID_MAJ_VER_LENGTH = 0x0008000A
    DB_INVALID_MIN_VER_LENGTH = 0x0008000B
    DB_INVALID_MAJ_VER_MISMATCH = 0x0008000C
    DB_INVALID_MIN_VER_MISMATCH = 0x0008000D

    # I2C device
    I2C_DEV_INVALID_DEVICE = 0x00090000
    I2C_DEV_EEPROM_MEM_ADDR_BOUNDARY = 0x00090001
    I2C_DEV_IS_READ_ONLY = 0x00090002

    # Message handling
    MSG_ROUTE_INVALID = 0x000A0000
    MSG_UNKNOWN_BASIC = 0x000A0001
    MSG_UNEXPECTED_PAYLOAD = 0x000A0002
    MSG_UNSUPPORTED_IN_BOOTLOADER = 0x000A0003
    MSG_UNSUPPORTED_IN_APPLICATION = 0x000A0004

    # Memory
    MEM_NULL_VALUE = 0x000B0000
    MEM_BUFFER_LEN = 0x000B0001

    # Reserved
    UNIMPLEMENTED = 0xFFFFFFFE
    UNKNOWN = 0xFFFFFFFF


# =============================================================================
# Client Error Codes
# =============================================================================

class ClientErrorCode(IntEnum):
    """
    Error codes for failures detected on the host side.

    These live in category 0x00F0, which the device never uses, so a
    client code can never be confused with a device-reported one.
    """

    NONE = 0x00000000
    INVALID_CALLBACK = 0x00F00001
    MSG_ACK_WAIT_TIMED_OUT = 0x00F00002
    MSG_DONE_WAIT_TIMED_OUT = 0x00F00003
    MSG_WAITING_FOR_RESP = 0x00F00004
    TIMEOUT = 0x00F00005
    FW_UNABLE_TO_OPEN = 0x00F00010
    FW_FILENAME_INVALID = 0x00F00011
    FW_FILENAME_INVALID_EXT = 0x00F00012
    FW_FILENAME_INVALID_FORMAT = 0x00F00013
    FW_IMAGE_INVALID = 0x00F00014
    TRANSPORT_EXCEPTION = 0x00F00020
    QUEUE_FULL = 0x00F00021
    PROTOCOL_ERROR = 0x00F00030
    MALFORMED_FRAME = 0x00F00031
    FRAME_TOO_LARGE = 0x00F00032
    UNKNOWN_PAYLOAD = 0x00F00033
    UNEXPECTED_REQUEST = 0x00F00034
    UNEXPECTED_PAYLOAD = 0x00F00035
    MISSING_PAYLOAD = 0x00F00036
    TRANSFER_ERROR = 0x00F00040
    MODE_NEGOTIATION_FAILED = 0x00F00041
    FLASH_ABORTED = 0x00F00042
    UNIMPLEMENTED = 0xFFFFFFFE
    UNKNOWN = 0xFFFFFFFF


# =============================================================================
# Helpers
# =============================================================================

def error_category(code: int) -> int:
    """Return the category (high 16 bits) of an error code."""
    return (code & CODE_MASK) >> CATEGORY_SHIFT


def error_detail(code: int) -> int:
    """Return the category-specific error (low 16 bits) of an error code."""
    return code & DETAIL_MASK


def make_error_code(category: int, detail: int) -> int:
    """
    Build an error code from a category and a category-specific value.

    Raises:
        ValueError: If either part does not fit in 16 bits.
    """
    if not 0 <= category <= DETAIL_MASK:
        raise ValueError(f"Category out of range: {category:#x}")
    if not 0 <= detail <= DETAIL_MASK:
        raise ValueError(f"Detail out of range: {detail:#x}")
    return (category << CATEGORY_SHIFT) | detail


def is_success(code: int) -> bool:
    """Return True if the code means no error."""
    return code == ErrorCode.NONE


def describe_error(code: int) -> str:
    """
    Get a human-readable description of an error code.

    Known device codes render as their catalogue name, known client codes
    are prefixed with "CLIENT_", and anything else renders as the raw hex
    value with its category when the category is known.

    Example:
        >>> describe_error(0x00010012)
        'FLASH_INVALID_FW_PACKET_CRC'
        >>> describe_error(0x00F00002)
        'CLIENT_MSG_ACK_WAIT_TIMED_OUT'
        >>> describe_error(0x00017777)
        'unknown flash error 0x00017777'
    """
    code &= CODE_MASK
    try:
        return ErrorCode(code).name
    except ValueError:
        pass
    try:
        return f"CLIENT_{ClientErrorCode(code).name}"
    except ValueError:
        pass
    category = CATEGORY_NAMES.get(error_category(code))
    if category:
        return f"unknown {category} error 0x{code:08X}"
    return f"unknown error 0x{code:08X}"
