"""
DC3 Client Error Hierarchy
==========================

This module defines the exception hierarchy for the DC3 host client.
All exceptions inherit from Dc3Error, so callers can catch every
client-related failure with a single except clause if desired.

Exception Hierarchy
-------------------
Dc3Error (base)
├── CommsError (transport and message protocol)
│   ├── ConnectionError - cannot open the socket or serial port
│   ├── ProtocolError - frame could not be encoded, decoded or accepted
│   │   ├── MalformedFrameError - truncated or garbage frame bytes
│   │   ├── FrameTooLargeError - encoded frame exceeds the channel maximum
│   │   ├── BufferTooSmallError - caller buffer cannot hold the frame
│   │   ├── UnknownPayloadError - payload tag not in the payload set
│   │   ├── UnexpectedRequestError - device sent a Request to the host
│   │   ├── UnexpectedPayloadError - Completion carried the wrong payload
│   │   └── MissingPayloadError - Completion carried no payload
│   ├── TimeoutError - no frame arrived in time
│   │   ├── AckTimeoutError - no Acknowledge for a Request
│   │   └── DoneTimeoutError - no Completion for an acknowledged Request
│   ├── QueueFullError - inbound queue rejected a received frame
│   └── TransferError - firmware transfer failed
│       ├── ModeNegotiationError - device never entered bootloader mode
│       └── FlashAbortedError - transfer cancelled by the caller
├── DeviceError - non-zero error code reported by the device
└── FirmwareImageError (firmware image loading)
    ├── FirmwareNotFoundError - image file does not exist
    ├── FirmwareUnreadableError - image file cannot be read
    ├── InvalidFilenameError - product marker missing from the name
    ├── InvalidFilenameExtensionError - name does not end in .bin
    └── InvalidFilenameFormatError - version or datetime unparseable

Error Codes
-----------
Every exception carries a 32-bit ``code``. Device-reported codes are kept
exactly as the device sent them; host-side failures use the client
category (0x00F0xxxx) defined in ``dc3_client.error_codes``.
"""

from typing import Optional

from dc3_client.error_codes import ClientErrorCode, describe_error


# =============================================================================
# Base Exception Class
# =============================================================================

class Dc3Error(Exception):
    """
    Base exception for all DC3 client errors.

    All exceptions in the client inherit from this class, allowing callers
    to catch all client-related errors with a single except clause:

        try:
            client.flash_firmware("DC3Appl_v01.02_20150428120611.bin")
        except Dc3Error as e:
            print(f"Error: {e} (0x{e.code:08X})")

    Attributes:
        code: 32-bit error code associated with this failure
    """

    default_code: int = ClientErrorCode.UNKNOWN

    def __init__(self, message: str = "", code: Optional[int] = None):
        self.code = self.default_code if code is None else code
        super().__init__(message or describe_error(self.code))


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(Dc3Error):
    """Base exception for transport and message protocol errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot open a connection to the DC3.

    Raised when:
    - Serial port not found or busy
    - Permission denied
    - UDP socket cannot be bound

    Note:
        This is a DC3-specific ConnectionError, distinct from the
        Python builtin ConnectionError.
    """

    default_code = ClientErrorCode.TRANSPORT_EXCEPTION


class ProtocolError(CommsError):
    """
    Message protocol error.

    Raised when a frame cannot be encoded or decoded, or when the device
    sends something the host never expects. Protocol errors are always
    fatal to the current transaction and are never retried.
    """

    default_code = ClientErrorCode.PROTOCOL_ERROR


class MalformedFrameError(ProtocolError):
    """Frame bytes are truncated or not a valid encoding."""

    default_code = ClientErrorCode.MALFORMED_FRAME


class FrameTooLargeError(ProtocolError):
    """Encoded frame does not fit in the channel's maximum frame size."""

    default_code = ClientErrorCode.FRAME_TOO_LARGE

    def __init__(self, size: int, limit: int, message: str = ""):
        self.size = size
        self.limit = limit
        if not message:
            message = f"Frame too large: {size} bytes, max {limit}"
        super().__init__(message)


class BufferTooSmallError(ProtocolError):
    """Caller-supplied encode buffer is smaller than the encoded frame."""

    default_code = ClientErrorCode.FRAME_TOO_LARGE

    def __init__(self, required: int, available: int, message: str = ""):
        self.required = required
        self.available = available
        if not message:
            message = (
                f"Buffer too small: need {required} bytes, have {available}"
            )
        super().__init__(message)


class UnknownPayloadError(ProtocolError):
    """Payload tag does not name any known payload variant."""

    default_code = ClientErrorCode.UNKNOWN_PAYLOAD

    def __init__(self, tag: int, message: str = ""):
        self.tag = tag
        super().__init__(message or f"Unknown payload tag: {tag}")


class UnexpectedRequestError(ProtocolError):
    """
    Device sent a Request frame to the host.

    The host is always the requesting side of this protocol; receiving
    a Request is a protocol violation and is never accepted silently.
    """

    default_code = ClientErrorCode.UNEXPECTED_REQUEST


class UnexpectedPayloadError(ProtocolError):
    """Completion carried a payload other than the one the request expects."""

    default_code = ClientErrorCode.UNEXPECTED_PAYLOAD


class MissingPayloadError(ProtocolError):
    """Completion frame arrived without a payload."""

    default_code = ClientErrorCode.MISSING_PAYLOAD


class TimeoutError(CommsError):
    """
    Timed out waiting for a frame from the DC3.

    Note:
        This is a DC3-specific TimeoutError, distinct from the Python
        builtin TimeoutError. It inherits from CommsError for consistent
        error handling in the comms package.

    Attributes:
        stage: What was being waited for ("ack", "done", "flash", ...)
        timeout: The budget that elapsed, in seconds
    """

    default_code = ClientErrorCode.TIMEOUT

    def __init__(
        self,
        message: str = "",
        stage: str = "",
        timeout: Optional[float] = None,
        code: Optional[int] = None,
    ):
        self.stage = stage
        self.timeout = timeout
        if not message:
            message = f"Timed out waiting for {stage or 'response'}"
            if timeout is not None:
                message += f" after {timeout:.3f}s"
        super().__init__(message, code)


class AckTimeoutError(TimeoutError):
    """No Acknowledge arrived for a Request within the ack timeout."""

    default_code = ClientErrorCode.MSG_ACK_WAIT_TIMED_OUT

    def __init__(self, timeout: Optional[float] = None, message: str = ""):
        super().__init__(message, stage="ack", timeout=timeout)


class DoneTimeoutError(TimeoutError):
    """No Completion arrived for an acknowledged Request in time."""

    default_code = ClientErrorCode.MSG_DONE_WAIT_TIMED_OUT

    def __init__(self, timeout: Optional[float] = None, message: str = ""):
        super().__init__(message, stage="done", timeout=timeout)


class QueueFullError(CommsError):
    """Inbound queue was full and a received frame had to be dropped."""

    default_code = ClientErrorCode.QUEUE_FULL


class TransferError(CommsError):
    """
    Error during firmware transfer.

    Raised when the flash pipeline cannot proceed for a reason that is
    neither a device-reported error nor a plain timeout.
    """

    default_code = ClientErrorCode.TRANSFER_ERROR


class ModeNegotiationError(TransferError):
    """
    Device never reported bootloader mode.

    Attributes:
        attempts: Number of query/set attempts that were made
        last_mode: The last boot mode the device reported
    """

    default_code = ClientErrorCode.MODE_NEGOTIATION_FAILED

    def __init__(self, attempts: int, last_mode: Optional[int] = None):
        self.attempts = attempts
        self.last_mode = last_mode
        super().__init__(
            f"Device did not enter bootloader mode after {attempts} attempts"
        )


class FlashAbortedError(TransferError):
    """Firmware transfer was cancelled by the caller between chunks."""

    default_code = ClientErrorCode.FLASH_ABORTED


# =============================================================================
# Device-Reported Errors
# =============================================================================

class DeviceError(Dc3Error):
    """
    Error reported by the DC3 in a Completion payload.

    The code is carried exactly as the device reported it; the client
    never reinterprets or remaps device error codes.

    Attributes:
        code: 32-bit device error code
        operation: Name of the operation that failed (optional)
    """

    def __init__(self, code: int, operation: str = "", message: str = ""):
        self.operation = operation
        if not message:
            message = f"Device error 0x{code:08X}: {describe_error(code)}"
            if operation:
                message = f"{operation} failed: {message}"
        super().__init__(message, code)


# =============================================================================
# Firmware Image Exceptions
# =============================================================================

class FirmwareImageError(Dc3Error):
    """Base exception for firmware image loading and validation errors."""

    default_code = ClientErrorCode.FW_IMAGE_INVALID


class FirmwareNotFoundError(FirmwareImageError):
    """Firmware image file does not exist."""

    default_code = ClientErrorCode.FW_UNABLE_TO_OPEN


class FirmwareUnreadableError(FirmwareImageError):
    """Firmware image file exists but could not be read."""

    default_code = ClientErrorCode.FW_UNABLE_TO_OPEN


class InvalidFilenameError(FirmwareImageError):
    """
    Firmware filename lacks the product marker.

    Firmware filenames must follow the convention:
        <Product>_v<MAJOR>.<MINOR>_<YYYYMMDDhhmmss>.bin
    where <Product> contains "DC3".
    """

    default_code = ClientErrorCode.FW_FILENAME_INVALID


class InvalidFilenameExtensionError(FirmwareImageError):
    """Firmware filename does not end in .bin."""

    default_code = ClientErrorCode.FW_FILENAME_INVALID_EXT


class InvalidFilenameFormatError(FirmwareImageError):
    """Version or build datetime cannot be parsed from the filename."""

    default_code = ClientErrorCode.FW_FILENAME_INVALID_FORMAT
