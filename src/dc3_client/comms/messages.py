"""
DC3 Message Definitions
=======================

This module defines the message model exchanged with the DC3: the
enumerations carried on the wire, the frame header, and the closed set
of payload variants that may follow it.

Frame Structure
---------------
Every frame is a header followed by at most one payload:

    +------------------+---------------------+
    | Header           | Payload (optional)  |
    | (delimited)      | (delimited)         |
    +------------------+---------------------+

The header's ``payload_tag`` names which payload variant follows, or
``MsgName.NONE`` when the frame carries no payload (Acknowledge frames
never do). See ``dc3_client.comms.codec`` for the byte-level encoding.

Message Flow
------------
    Host                        DC3
      |---- REQUEST (id=N) ------>|
      |<--- ACK     (id=N) -------|   request received
      |<--- DONE    (id=N) -------|   request processed, result payload

Field Declarations
------------------
Header and payload classes are plain dataclasses. Each field declares its
wire kind through ``dataclasses.field(metadata=...)``; field numbers are
assigned in declaration order starting at 1. The codec walks these
declarations, so adding a field to a payload is a one-line change here.
"""

from dataclasses import dataclass, field, fields
from enum import IntEnum, IntFlag
from typing import Any, ClassVar, Final, Optional, Union

# =============================================================================
# Protocol Constants
# =============================================================================

# Maximum encoded frame size shared by the host and the device
MAX_FRAME_SIZE: Final[int] = 300

# Length of a firmware build datetime string (YYYYMMDDhhmmss)
DATETIME_LEN: Final[int] = 14

# Largest value of a 32-bit field
UINT32_MAX: Final[int] = 0xFFFFFFFF


# =============================================================================
# Wire Enumerations
# =============================================================================

class MsgType(IntEnum):
    """Frame type. The host sends REQUEST; the device answers ACK then DONE."""

    NONE = 0
    REQUEST = 1
    ACK = 2
    PROGRESS = 3  # legacy, ignored by the host
    DONE = 4


class MsgRoute(IntEnum):
    """Physical channel or logical endpoint a frame travels through."""

    NONE = 0
    SERIAL = 1
    ETH_SYS = 2
    ETH_LOG = 3
    ETH_CLI = 4

    @property
    def label(self) -> str:
        return _ROUTE_LABELS[self]


_ROUTE_LABELS: Final[dict[int, str]] = {
    0: "None",
    1: "Serial",
    2: "TCPSys",
    3: "TCPLog",
    4: "UDPCli",
}


class MsgName(IntEnum):
    """
    Operation and payload identifiers.

    Request names and payload tags share this enumeration: a header's
    ``name`` says what operation the frame belongs to, and its
    ``payload_tag`` says which payload variant follows.
    """

    NONE = 0
    STATUS_PAYLOAD = 1
    GET_VERSION = 2
    VERSION_PAYLOAD = 3
    GET_BOOT_MODE = 4
    SET_BOOT_MODE = 5
    BOOT_MODE_PAYLOAD = 6
    FLASH = 7
    FLASH_META_PAYLOAD = 8
    FLASH_DATA_PAYLOAD = 9
    I2C_READ = 10
    I2C_WRITE = 11
    I2C_DATA_PAYLOAD = 12
    RAM_TEST = 13
    RAM_TEST_PAYLOAD = 14
    DBG_ENABLE_ETH = 15
    DBG_DISABLE_ETH = 16
    DBG_ENABLE_SER = 17
    DBG_DISABLE_SER = 18
    DBG_RESET_DEFAULT = 19
    DBG_ENABLE = 20
    DBG_DISABLE = 21
    DBG_GET_CURRENT = 22
    DBG_SET_CURRENT = 23
    DBG_PAYLOAD = 24
    DB_FULL_RESET = 25
    DB_GET_ELEM = 26
    DB_SET_ELEM = 27
    DB_DATA_PAYLOAD = 28


class BootMode(IntEnum):
    """Device operating mode. Firmware is accepted only in BOOTLOADER."""

    NONE = 0
    SYS_ROM_BOOT = 1
    BOOTLOADER = 2
    APPLICATION = 3

    @property
    def label(self) -> str:
        return _BOOT_MODE_LABELS[self]

    @classmethod
    def from_label(cls, text: str) -> "BootMode":
        """
        Look up a boot mode by its display label or member name.

        Raises:
            ValueError: If the text names no boot mode.
        """
        wanted = text.strip().lower()
        for mode in cls:
            if wanted in (mode.label.lower(), mode.name.lower()):
                return mode
        raise ValueError(f"Unknown boot mode: {text}")


_BOOT_MODE_LABELS: Final[dict[int, str]] = {
    0: "Invalid",
    1: "SystemROM",
    2: "Bootloader",
    3: "Application",
}


class I2CDevice(IntEnum):
    """I2C memories reachable through the peripheral read/write commands."""

    EEPROM = 0
    SNROM = 1
    EUIROM = 2

    @property
    def size(self) -> int:
        """Addressable size of the device in bytes."""
        return I2C_DEVICE_SIZES[self]


# Addressable bytes per I2C device
I2C_DEVICE_SIZES: Final[dict[int, int]] = {
    I2CDevice.EEPROM: 128,
    I2CDevice.SNROM: 16,
    I2CDevice.EUIROM: 16,
}


class AccessType(IntEnum):
    """How the device performs an I2C access."""

    NONE = 0
    BARE = 1  # direct blocking access
    QPC = 2   # through the event framework
    FRT = 3   # from the real-time thread


class RamTest(IntEnum):
    """External SDRAM diagnostics."""

    NONE = 0
    DATA_BUS = 1
    ADDR_BUS = 2
    DEV_INT = 3


class DebugModule(IntFlag):
    """Device debug output modules, one bit each."""

    NONE = 0
    GEN = 0x00000001
    SER = 0x00000002
    TIME = 0x00000004
    ETH = 0x00000008
    I2C = 0x00000010
    I2C_DEV = 0x00000020
    NOR = 0x00000040
    SDRAM = 0x00000080
    DBG = 0x00000100
    COMM = 0x00000200
    CPLR = 0x00000400
    DB = 0x00000800
    FLASH = 0x00001000
    SYS = 0x00002000

    @classmethod
    def parse(cls, names: list[str]) -> "DebugModule":
        """
        Combine module names (case-insensitive) into one mask.

        Raises:
            ValueError: If a name is not a debug module.
        """
        mask = cls.NONE
        for name in names:
            try:
                mask |= cls[name.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown debug module: {name}") from None
        return mask


class Role(IntEnum):
    """Which end of the protocol is decoding."""

    HOST = 0
    DEVICE = 1


# =============================================================================
# Field Declarations
# =============================================================================

# Wire kinds understood by the codec
KIND_UINT: Final[str] = "uint"
KIND_BOOL: Final[str] = "bool"
KIND_ENUM: Final[str] = "enum"
KIND_BYTES: Final[str] = "bytes"
KIND_STRING: Final[str] = "string"


def _uint(default: int = 0) -> Any:
    return field(default=default, metadata={"kind": KIND_UINT})


def _flag(default: bool = False) -> Any:
    return field(default=default, metadata={"kind": KIND_BOOL})


def _enum(enum_cls: type, default: int = 0) -> Any:
    return field(
        default=enum_cls(default),
        metadata={"kind": KIND_ENUM, "enum": enum_cls},
    )


def _bytes() -> Any:
    return field(default=b"", metadata={"kind": KIND_BYTES})


def _string() -> Any:
    return field(default="", metadata={"kind": KIND_STRING})


def wire_fields(message: Any) -> list[tuple[int, Any]]:
    """
    Return (field_number, dataclass_field) pairs for a message class.

    Field numbers follow declaration order, starting at 1.
    """
    return list(enumerate(fields(message), start=1))


def _check_uint32(message: Any) -> None:
    """Reject integer fields outside the 32-bit range."""
    for f in fields(message):
        if f.metadata.get("kind") == KIND_UINT:
            value = getattr(message, f.name)
            if not 0 <= value <= UINT32_MAX:
                raise ValueError(
                    f"{type(message).__name__}.{f.name} out of range: {value}"
                )


# =============================================================================
# Header
# =============================================================================

@dataclass(frozen=True)
class Header:
    """
    Frame header.

    Attributes:
        msg_id: 32-bit id assigned by the sender, echoed in ACK and DONE
        msg_type: REQUEST, ACK, PROGRESS or DONE
        route: Channel the frame is addressed through
        requesting_progress: Legacy progress flag (informational)
        name: Operation the frame belongs to
        payload_tag: Payload variant that follows, or NONE
    """

    msg_id: int = _uint()
    msg_type: MsgType = _enum(MsgType)
    route: MsgRoute = _enum(MsgRoute)
    requesting_progress: bool = _flag()
    name: MsgName = _enum(MsgName)
    payload_tag: MsgName = _enum(MsgName)

    def __post_init__(self) -> None:
        _check_uint32(self)

    def __str__(self) -> str:
        return (
            f"{self.msg_type.name} {self.name.name} id={self.msg_id} "
            f"route={self.route.name} payload={self.payload_tag.name}"
        )


# =============================================================================
# Payloads
# =============================================================================

@dataclass(frozen=True)
class StatusPayload:
    """Bare status result."""

    TAG: ClassVar[MsgName] = MsgName.STATUS_PAYLOAD

    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)


@dataclass(frozen=True)
class VersionPayload:
    """Version of the firmware currently running on the device."""

    TAG: ClassVar[MsgName] = MsgName.VERSION_PAYLOAD

    major: int = _uint()
    minor: int = _uint()
    build_datetime: str = _string()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)

    def __str__(self) -> str:
        return f"v{self.major:02d}.{self.minor:02d} built {self.build_datetime}"


@dataclass(frozen=True)
class BootModePayload:
    """Current (or requested) boot mode."""

    TAG: ClassVar[MsgName] = MsgName.BOOT_MODE_PAYLOAD

    mode: BootMode = _enum(BootMode)
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)


@dataclass(frozen=True)
class FlashMetaPayload:
    """
    Firmware image announcement, sent before any data packet.

    The device uses it to erase the target sector, then checks every
    subsequent packet against ``packet_count`` and the final image
    against ``crc32``.
    """

    TAG: ClassVar[MsgName] = MsgName.FLASH_META_PAYLOAD

    image_type: BootMode = _enum(BootMode)
    crc32: int = _uint()
    version_major: int = _uint()
    version_minor: int = _uint()
    size: int = _uint()
    packet_count: int = _uint()
    build_datetime: str = _string()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)


@dataclass(frozen=True)
class FlashDataPayload:
    """One firmware chunk with its 1-based sequence number and CRC-32."""

    TAG: ClassVar[MsgName] = MsgName.FLASH_DATA_PAYLOAD

    sequence: int = _uint()
    data: bytes = _bytes()
    crc32: int = _uint()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)

    def __repr__(self) -> str:
        return (
            f"FlashDataPayload(sequence={self.sequence}, "
            f"len={len(self.data)}, crc32=0x{self.crc32:08X}, "
            f"error_code=0x{self.error_code:08X})"
        )


@dataclass(frozen=True)
class PeripheralDataPayload:
    """I2C memory access parameters and the bytes read or written."""

    TAG: ClassVar[MsgName] = MsgName.I2C_DATA_PAYLOAD

    device: I2CDevice = _enum(I2CDevice)
    access: AccessType = _enum(AccessType)
    start: int = _uint()
    length: int = _uint()
    data: bytes = _bytes()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)


@dataclass(frozen=True)
class DiagnosticResultPayload:
    """RAM test result. ``address`` is the first failing address, if any."""

    TAG: ClassVar[MsgName] = MsgName.RAM_TEST_PAYLOAD

    test: RamTest = _enum(RamTest)
    address: int = _uint()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)


@dataclass(frozen=True)
class DebugConfigPayload:
    """Debug module bitmask."""

    TAG: ClassVar[MsgName] = MsgName.DBG_PAYLOAD

    bitmask: int = _uint()
    error_code: int = _uint()

    def __post_init__(self) -> None:
        _check_uint32(self)

    @property
    def modules(self) -> DebugModule:
        return DebugModule(self.bitmask & _ALL_DEBUG_MODULES)


_ALL_DEBUG_MODULES: Final[int] = sum(m.value for m in DebugModule)


Payload = Union[
    StatusPayload,
    VersionPayload,
    BootModePayload,
    FlashMetaPayload,
    FlashDataPayload,
    PeripheralDataPayload,
    DiagnosticResultPayload,
    DebugConfigPayload,
]

# Payload classes keyed by the tag that announces them
PAYLOAD_TYPES: Final[dict[MsgName, type]] = {
    cls.TAG: cls
    for cls in (
        StatusPayload,
        VersionPayload,
        BootModePayload,
        FlashMetaPayload,
        FlashDataPayload,
        PeripheralDataPayload,
        DiagnosticResultPayload,
        DebugConfigPayload,
    )
}

# Completion payloads each request may legitimately be answered with.
# StatusPayload is always accepted too: it is how the device reports
# an error for any request.
EXPECTED_RESPONSES: Final[dict[MsgName, tuple[type, ...]]] = {
    MsgName.GET_VERSION: (VersionPayload,),
    MsgName.GET_BOOT_MODE: (BootModePayload,),
    MsgName.SET_BOOT_MODE: (BootModePayload,),
    MsgName.FLASH: (FlashMetaPayload, FlashDataPayload),
    MsgName.I2C_READ: (PeripheralDataPayload,),
    MsgName.I2C_WRITE: (PeripheralDataPayload,),
    MsgName.RAM_TEST: (DiagnosticResultPayload,),
    MsgName.DBG_ENABLE_ETH: (DebugConfigPayload,),
    MsgName.DBG_DISABLE_ETH: (DebugConfigPayload,),
    MsgName.DBG_ENABLE_SER: (DebugConfigPayload,),
    MsgName.DBG_DISABLE_SER: (DebugConfigPayload,),
    MsgName.DBG_RESET_DEFAULT: (DebugConfigPayload,),
    MsgName.DBG_ENABLE: (DebugConfigPayload,),
    MsgName.DBG_DISABLE: (DebugConfigPayload,),
    MsgName.DBG_GET_CURRENT: (DebugConfigPayload,),
    MsgName.DBG_SET_CURRENT: (DebugConfigPayload,),
}


def payload_tag_of(payload: Optional[Payload]) -> MsgName:
    """Return the tag announcing ``payload`` (NONE for no payload)."""
    if payload is None:
        return MsgName.NONE
    return type(payload).TAG


# =============================================================================
# Frame
# =============================================================================

@dataclass(frozen=True)
class Frame:
    """
    One complete protocol message: a header and an optional payload.

    Invariants:
        - ``header.payload_tag`` names the type of ``payload``
        - ACK frames carry no payload
    """

    header: Header
    payload: Optional[Payload] = None

    def __post_init__(self) -> None:
        tag = payload_tag_of(self.payload)
        if tag != self.header.payload_tag:
            raise ValueError(
                f"Payload tag {self.header.payload_tag.name} does not match "
                f"payload {type(self.payload).__name__}"
            )
        if self.header.msg_type == MsgType.ACK and self.payload is not None:
            raise ValueError("ACK frames carry no payload")

    @property
    def msg_id(self) -> int:
        return self.header.msg_id

    @property
    def msg_type(self) -> MsgType:
        return self.header.msg_type

    @property
    def error_code(self) -> int:
        """Device error code carried by the payload (0 when none)."""
        return getattr(self.payload, "error_code", 0)
