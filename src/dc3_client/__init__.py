"""
dc3-client - Host Client for the DC3 Controller Board
=====================================================

This package talks to a DC3 board from a host computer, over UDP or the
board's serial console. It can query and switch the board's boot mode,
upgrade its application firmware, read and write its I2C memories, run
RAM diagnostics and control its debug output.

Main Components
---------------
- **client**: ``Dc3Client``, one method per device command
- **comms**: Message model, codec, transports, transaction engine and
  the firmware upgrade pipeline
- **config**: Timeouts and tuning, overridable from DC3_* variables
- **error_codes**: The device's 32-bit error code catalogue
- **errors**: Exception hierarchy
- **cli**: The ``dc3cli`` command-line tool

Quick Start
-----------
Query the boot mode:
    >>> from dc3_client import Dc3Client
    >>> with Dc3Client.open_udp("192.168.1.75") as dc3:
    ...     print(dc3.get_boot_mode().label)
    Application

Upgrade the application firmware:
    >>> with Dc3Client.open_udp("192.168.1.75") as dc3:
    ...     dc3.flash_firmware("DC3Appl_v01.02_20150428120611.bin")

Or use the command-line tool:
    $ dc3cli --ip 192.168.1.75 get-mode
    $ dc3cli --ip 192.168.1.75 flash DC3Appl_v01.02_20150428120611.bin
    $ dc3cli --port /dev/ttyUSB0 read-i2c --dev EEPROM --start 0 --bytes 16

Version History
---------------
1.0.0 - Initial release: boot mode, version, flash, I2C, RAM test, debug
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from dc3_client.errors import (
    Dc3Error,
    CommsError,
    ConnectionError,
    ProtocolError,
    MalformedFrameError,
    FrameTooLargeError,
    BufferTooSmallError,
    UnknownPayloadError,
    UnexpectedRequestError,
    UnexpectedPayloadError,
    MissingPayloadError,
    TimeoutError,
    AckTimeoutError,
    DoneTimeoutError,
    QueueFullError,
    TransferError,
    ModeNegotiationError,
    FlashAbortedError,
    DeviceError,
    FirmwareImageError,
    FirmwareNotFoundError,
    FirmwareUnreadableError,
    InvalidFilenameError,
    InvalidFilenameExtensionError,
    InvalidFilenameFormatError,
)
from dc3_client.error_codes import ClientErrorCode, ErrorCode, describe_error
from dc3_client.config import ClientConfig, Timeouts
from dc3_client.comms.messages import (
    AccessType,
    BootMode,
    DebugModule,
    I2CDevice,
    RamTest,
    VersionPayload,
)
from dc3_client.comms.firmware import FirmwareImage
from dc3_client.comms.flash import FlashResult
from dc3_client.client import Dc3Client

__all__ = [
    # Version
    "__version__",
    # Client
    "Dc3Client",
    "ClientConfig",
    "Timeouts",
    # Enumerations
    "AccessType",
    "BootMode",
    "DebugModule",
    "I2CDevice",
    "RamTest",
    # Results
    "VersionPayload",
    "FirmwareImage",
    "FlashResult",
    # Error codes
    "ErrorCode",
    "ClientErrorCode",
    "describe_error",
    # Exceptions
    "Dc3Error",
    "CommsError",
    "ConnectionError",
    "ProtocolError",
    "MalformedFrameError",
    "FrameTooLargeError",
    "BufferTooSmallError",
    "UnknownPayloadError",
    "UnexpectedRequestError",
    "UnexpectedPayloadError",
    "MissingPayloadError",
    "TimeoutError",
    "AckTimeoutError",
    "DoneTimeoutError",
    "QueueFullError",
    "TransferError",
    "ModeNegotiationError",
    "FlashAbortedError",
    "DeviceError",
    "FirmwareImageError",
    "FirmwareNotFoundError",
    "FirmwareUnreadableError",
    "InvalidFilenameError",
    "InvalidFilenameExtensionError",
    "InvalidFilenameFormatError",
]
