"""
DC3 Communication Module
========================

This module provides everything between a ``Dc3Client`` call and the
bytes on the wire: the message model, its codec, the transports, and the
request/acknowledge/completion engine that drives every command.

Protocol Architecture
---------------------
The host is always the requesting side:

    Host                        DC3
      |---- REQUEST (id=N) ------>|
      |<--- ACK     (id=N) -------|
      |<--- DONE    (id=N) -------|   result payload + error code

The device never sends a REQUEST to the host; one is rejected as a
protocol error.

Module Structure
----------------
- **crc**: CRC-32 used for firmware images and chunks
- **messages**: Enumerations, header, payload variants, frame
- **codec**: Varint/length-delimited encoding of frames
- **inbound**: Bounded queue between the receive thread and the engine
- **serial**: Serial port utilities (detection, configuration)
- **transport**: UDP and serial (base64 line) transports
- **connection**: One transport, its queue and its message id counter
- **transaction**: Request/ACK/DONE engine with timeouts
- **firmware**: Firmware image loading and chunking
- **flash**: Firmware upgrade pipeline

Quick Start
-----------
    from dc3_client.comms import (
        Connection,
        MsgName,
        TransactionEngine,
        UdpTransport,
    )

    with Connection(UdpTransport("192.168.1.75")) as conn:
        engine = TransactionEngine(conn)
        frame = engine.transact(MsgName.GET_BOOT_MODE)
        print(frame.payload.mode.label)

Error Handling
--------------
All communication errors inherit from ``CommsError``:

- ``ConnectionError``: Cannot open the socket or serial port
- ``ProtocolError``: Frame could not be encoded, decoded or accepted
- ``TimeoutError``: No Acknowledge or Completion in time
- ``TransferError``: Firmware upgrade failed

These exceptions are defined in ``dc3_client.errors``.

Thread Safety
-------------
Transports run their own receive thread. Everything else is NOT
thread-safe: drive a connection from a single command thread.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# CRC utilities
from dc3_client.comms.crc import (
    CRC32_CHECK_INPUT,
    CRC32_CHECK_VALUE,
    CRC_INITIAL,
    CRC_TABLE,
    crc32,
    crc32_fast,
)

# Message model
from dc3_client.comms.messages import (
    DATETIME_LEN,
    MAX_FRAME_SIZE,
    AccessType,
    BootMode,
    BootModePayload,
    DebugConfigPayload,
    DebugModule,
    DiagnosticResultPayload,
    FlashDataPayload,
    FlashMetaPayload,
    Frame,
    Header,
    I2CDevice,
    MsgName,
    MsgRoute,
    MsgType,
    Payload,
    PeripheralDataPayload,
    RamTest,
    Role,
    StatusPayload,
    VersionPayload,
)

# Codec
from dc3_client.comms.codec import (
    decode_frame,
    decode_header,
    decode_payload,
    encode_frame,
    encode_into,
)

# Inbound queue
from dc3_client.comms.inbound import DEFAULT_QUEUE_CAPACITY, InboundQueue

# Serial port utilities
from dc3_client.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    close_serial_port,
    find_dc3_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)

# Transports
from dc3_client.comms.transport import (
    DEFAULT_LOCAL_PORT,
    DEFAULT_REMOTE_PORT,
    SerialTransport,
    Transport,
    UdpTransport,
)

# Connection and transactions
from dc3_client.comms.connection import Connection
from dc3_client.comms.transaction import (
    Transaction,
    TransactionEngine,
    TransactionState,
)

# Firmware upgrade
from dc3_client.comms.firmware import FirmwareImage, FirmwareName
from dc3_client.comms.flash import (
    FlashOrchestrator,
    FlashResult,
    FlashState,
    ProgressCallback,
)

# Public API - what gets exported with "from dc3_client.comms import *"
__all__ = [
    # CRC
    "CRC_TABLE",
    "CRC_INITIAL",
    "CRC32_CHECK_INPUT",
    "CRC32_CHECK_VALUE",
    "crc32",
    "crc32_fast",
    # Messages
    "MAX_FRAME_SIZE",
    "DATETIME_LEN",
    "MsgType",
    "MsgRoute",
    "MsgName",
    "BootMode",
    "I2CDevice",
    "AccessType",
    "RamTest",
    "DebugModule",
    "Role",
    "Header",
    "StatusPayload",
    "VersionPayload",
    "BootModePayload",
    "FlashMetaPayload",
    "FlashDataPayload",
    "PeripheralDataPayload",
    "DiagnosticResultPayload",
    "DebugConfigPayload",
    "Payload",
    "Frame",
    # Codec
    "encode_frame",
    "encode_into",
    "decode_frame",
    "decode_header",
    "decode_payload",
    # Inbound queue
    "DEFAULT_QUEUE_CAPACITY",
    "InboundQueue",
    # Serial
    "VALID_BAUD_RATES",
    "DEFAULT_BAUD_RATE",
    "PortInfo",
    "list_serial_ports",
    "find_dc3_port",
    "open_serial_port",
    "close_serial_port",
    "format_port_list",
    # Transports
    "DEFAULT_REMOTE_PORT",
    "DEFAULT_LOCAL_PORT",
    "Transport",
    "UdpTransport",
    "SerialTransport",
    # Connection and transactions
    "Connection",
    "Transaction",
    "TransactionEngine",
    "TransactionState",
    # Firmware upgrade
    "FirmwareName",
    "FirmwareImage",
    "FlashState",
    "FlashResult",
    "FlashOrchestrator",
    "ProgressCallback",
]
