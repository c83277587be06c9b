r"""
DC3 Frame Codec
===============

This module encodes and decodes DC3 frames to and from bytes.

Wire Format
-----------
The DC3 firmware speaks Protocol Buffers wire format, written with the
"delimited" convention: each message is preceded by its length as a
varint. A frame is a delimited header, optionally followed by a
delimited payload:

    +--------+---------------+--------+----------------+
    | varint | header fields | varint | payload fields |
    | length |               | length |                |
    +--------+---------------+--------+----------------+
     \________ header _______/ \______ payload _______/
                                (only if payload_tag != NONE)

Because both parts are independently delimited, the header is decoded
first and the payload is decoded starting at the header's end offset.

Field Encoding
--------------
Each field is written as a key followed by its value:

    key = (field_number << 3) | wire_type

    wire_type 0 (varint):           integers, enums, booleans
    wire_type 2 (length-delimited): bytes, strings

Fields equal to their default (0, False, empty) are omitted, as in
proto3. Unknown fields are skipped when decoding so that newer device
firmware can add fields without breaking older hosts.

Usage
-----
    from dc3_client.comms.codec import encode_frame, decode_frame

    header = Header(msg_id=1, msg_type=MsgType.REQUEST,
                    route=MsgRoute.ETH_CLI, name=MsgName.GET_BOOT_MODE)
    wire = encode_frame(header)

    frame, consumed = decode_frame(received_bytes)
"""

import logging
from dataclasses import fields
from typing import Any, Final, Optional

from dc3_client.comms.messages import (
    KIND_BOOL,
    KIND_BYTES,
    KIND_ENUM,
    KIND_STRING,
    KIND_UINT,
    MAX_FRAME_SIZE,
    PAYLOAD_TYPES,
    Frame,
    Header,
    MsgName,
    MsgType,
    Payload,
    Role,
    payload_tag_of,
    wire_fields,
)
from dc3_client.errors import (
    BufferTooSmallError,
    FrameTooLargeError,
    MalformedFrameError,
    UnexpectedRequestError,
    UnknownPayloadError,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Wire Constants
# =============================================================================

WIRE_VARINT: Final[int] = 0
WIRE_FIXED64: Final[int] = 1
WIRE_LENGTH_DELIMITED: Final[int] = 2
WIRE_FIXED32: Final[int] = 5

# A 64-bit varint never needs more than 10 bytes
MAX_VARINT_LEN: Final[int] = 10

_KIND_WIRE_TYPES: Final[dict[str, int]] = {
    KIND_UINT: WIRE_VARINT,
    KIND_BOOL: WIRE_VARINT,
    KIND_ENUM: WIRE_VARINT,
    KIND_BYTES: WIRE_LENGTH_DELIMITED,
    KIND_STRING: WIRE_LENGTH_DELIMITED,
}


# =============================================================================
# Varint Primitives
# =============================================================================

def encode_varint(value: int) -> bytes:
    """
    Encode a non-negative integer as a base-128 varint.

    Example:
        >>> encode_varint(1)
        b'\\x01'
        >>> encode_varint(300)
        b'\\xac\\x02'
    """
    if value < 0:
        raise ValueError(f"Varint must be non-negative, got {value}")
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode a varint starting at ``offset``.

    Returns:
        Tuple of (value, new_offset).

    Raises:
        MalformedFrameError: If the data ends mid-varint or the varint
            is longer than 10 bytes.
    """
    result = 0
    shift = 0
    pos = offset
    while True:
        if pos >= len(data):
            raise MalformedFrameError(f"Truncated varint at offset {offset}")
        if pos - offset >= MAX_VARINT_LEN:
            raise MalformedFrameError(f"Varint too long at offset {offset}")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7


# =============================================================================
# Message Encoding
# =============================================================================

def encode_message(message: Any) -> bytes:
    """
    Encode a header or payload dataclass as a message body (no length).

    Fields equal to their default value are omitted.
    """
    out = bytearray()
    for number, f in wire_fields(message):
        kind = f.metadata["kind"]
        value = getattr(message, f.name)

        if kind in (KIND_UINT, KIND_ENUM, KIND_BOOL):
            value = int(value)
            if value == 0:
                continue
            out += encode_varint((number << 3) | WIRE_VARINT)
            out += encode_varint(value)
        else:
            raw = value.encode("ascii") if kind == KIND_STRING else bytes(value)
            if not raw:
                continue
            out += encode_varint((number << 3) | WIRE_LENGTH_DELIMITED)
            out += encode_varint(len(raw))
            out += raw
    return bytes(out)


def encode_delimited(message: Any) -> bytes:
    """Encode a message body preceded by its varint length."""
    body = encode_message(message)
    return encode_varint(len(body)) + body


def _encode(header: Header, payload: Optional[Payload]) -> bytes:
    tag = payload_tag_of(payload)
    if tag != header.payload_tag:
        raise ValueError(
            f"Header payload tag {header.payload_tag.name} does not match "
            f"payload {type(payload).__name__}"
        )
    wire = encode_delimited(header)
    if payload is not None:
        wire += encode_delimited(payload)
    return wire


def encode_frame(
    header: Header,
    payload: Optional[Payload] = None,
    max_size: int = MAX_FRAME_SIZE,
) -> bytes:
    """
    Encode a complete frame.

    Args:
        header: Frame header. Its ``payload_tag`` must name the type of
                ``payload`` (or be NONE when there is no payload).
        payload: Optional payload variant.
        max_size: Largest frame the channel accepts.

    Returns:
        Self-delimiting frame bytes.

    Raises:
        FrameTooLargeError: If the encoded frame exceeds ``max_size``.
        ValueError: If the header's payload tag disagrees with the payload.
    """
    wire = _encode(header, payload)
    if len(wire) > max_size:
        raise FrameTooLargeError(len(wire), max_size)
    logger.debug("Encoded frame: %s (%d bytes)", header, len(wire))
    return wire


def encode_into(
    buffer: bytearray,
    header: Header,
    payload: Optional[Payload] = None,
) -> int:
    """
    Encode a frame into a caller-supplied buffer.

    Returns:
        Number of bytes written at the start of ``buffer``.

    Raises:
        BufferTooSmallError: If ``buffer`` cannot hold the frame. The
            buffer is left untouched in that case.
    """
    wire = _encode(header, payload)
    if len(wire) > len(buffer):
        raise BufferTooSmallError(len(wire), len(buffer))
    buffer[:len(wire)] = wire
    return len(wire)


# =============================================================================
# Message Decoding
# =============================================================================

def _skip_field(data: bytes, pos: int, wire_type: int, end: int) -> int:
    """Skip the value of an unknown field, returning the new position."""
    if wire_type == WIRE_VARINT:
        _, pos = decode_varint(data, pos)
    elif wire_type == WIRE_FIXED64:
        pos += 8
    elif wire_type == WIRE_LENGTH_DELIMITED:
        length, pos = decode_varint(data, pos)
        pos += length
    elif wire_type == WIRE_FIXED32:
        pos += 4
    else:
        raise MalformedFrameError(f"Unsupported wire type {wire_type}")
    if pos > end:
        raise MalformedFrameError("Field runs past end of message")
    return pos


def decode_message(message_cls: type, data: bytes) -> dict[str, Any]:
    """
    Decode a message body into keyword arguments for ``message_cls``.

    Enum fields are returned as raw integers; callers convert them so
    that an out-of-range value can be reported with the right error.

    Raises:
        MalformedFrameError: If the body is truncated or a known field
            arrives with the wrong wire type.
    """
    declared = {number: f for number, f in wire_fields(message_cls)}
    values: dict[str, Any] = {}
    pos = 0
    end = len(data)

    while pos < end:
        key, pos = decode_varint(data, pos)
        number, wire_type = key >> 3, key & 0x07
        f = declared.get(number)
        if f is None:
            pos = _skip_field(data, pos, wire_type, end)
            continue

        kind = f.metadata["kind"]
        if wire_type != _KIND_WIRE_TYPES[kind]:
            raise MalformedFrameError(
                f"{message_cls.__name__}.{f.name}: wire type {wire_type}, "
                f"expected {_KIND_WIRE_TYPES[kind]}"
            )

        if wire_type == WIRE_VARINT:
            value, pos = decode_varint(data, pos)
            values[f.name] = bool(value) if kind == KIND_BOOL else value
        else:
            length, pos = decode_varint(data, pos)
            if pos + length > end:
                raise MalformedFrameError(
                    f"{message_cls.__name__}.{f.name}: truncated "
                    f"({length} bytes declared, {end - pos} available)"
                )
            raw = bytes(data[pos:pos + length])
            pos += length
            if kind == KIND_STRING:
                try:
                    values[f.name] = raw.decode("ascii")
                except UnicodeDecodeError:
                    raise MalformedFrameError(
                        f"{message_cls.__name__}.{f.name}: not ASCII"
                    ) from None
            else:
                values[f.name] = raw

    return values


def _read_delimited(data: bytes, offset: int, what: str) -> tuple[bytes, int]:
    """Return (body, consumed) for a delimited message at ``offset``."""
    if offset >= len(data):
        raise MalformedFrameError(f"Missing {what}")
    length, pos = decode_varint(data, offset)
    if pos + length > len(data):
        raise MalformedFrameError(
            f"Truncated {what}: {length} bytes declared, "
            f"{len(data) - pos} available"
        )
    return bytes(data[pos:pos + length]), pos + length - offset


def _build(message_cls: type, values: dict[str, Any]) -> Any:
    """Convert raw enum integers and construct the message."""
    for f in fields(message_cls):
        if f.name in values and f.metadata["kind"] == KIND_ENUM:
            enum_cls = f.metadata["enum"]
            try:
                values[f.name] = enum_cls(values[f.name])
            except ValueError:
                raise MalformedFrameError(
                    f"{message_cls.__name__}.{f.name}: invalid "
                    f"{enum_cls.__name__} value {values[f.name]}"
                ) from None
    try:
        return message_cls(**values)
    except ValueError as e:
        raise MalformedFrameError(str(e)) from None


def decode_header(data: bytes, offset: int = 0) -> tuple[Header, int]:
    """
    Decode a delimited header starting at ``offset``.

    Returns:
        Tuple of (header, bytes_consumed).

    Raises:
        MalformedFrameError: If the header is truncated or invalid.
        UnknownPayloadError: If the payload tag is not a known name.
    """
    body, consumed = _read_delimited(data, offset, "header")
    values = decode_message(Header, body)

    # An unrecognised tag must surface as UnknownPayload, not as a
    # generic enum error
    tag = values.get("payload_tag", 0)
    try:
        values["payload_tag"] = MsgName(tag)
    except ValueError:
        raise UnknownPayloadError(tag) from None

    return _build(Header, values), consumed


def decode_payload(
    tag: MsgName,
    data: bytes,
    offset: int = 0,
) -> tuple[Optional[Payload], int]:
    """
    Decode the delimited payload announced by ``tag``.

    Returns:
        Tuple of (payload, bytes_consumed); (None, 0) when ``tag`` is NONE.

    Raises:
        UnknownPayloadError: If ``tag`` names no payload variant.
        MalformedFrameError: If the payload is truncated or invalid.
    """
    if tag == MsgName.NONE:
        return None, 0
    payload_cls = PAYLOAD_TYPES.get(tag)
    if payload_cls is None:
        raise UnknownPayloadError(int(tag))
    body, consumed = _read_delimited(data, offset, f"{tag.name} payload")
    return _build(payload_cls, decode_message(payload_cls, body)), consumed


def decode_frame(data: bytes, role: Role = Role.HOST) -> tuple[Frame, int]:
    """
    Decode one frame: the header, then the payload at the header's end.

    Args:
        data: Received bytes, starting with the frame.
        role: Which end is decoding. Hosts never accept REQUEST frames.

    Returns:
        Tuple of (frame, bytes_consumed). Trailing bytes are not consumed.

    Raises:
        UnexpectedRequestError: If a REQUEST frame is decoded by the host.
        UnknownPayloadError: If the payload tag is not a payload variant.
        MalformedFrameError: If the bytes do not form a valid frame.
    """
    header, consumed = decode_header(data)

    if role == Role.HOST and header.msg_type == MsgType.REQUEST:
        raise UnexpectedRequestError(
            f"Device sent a request to the host: {header}"
        )

    payload, payload_len = decode_payload(header.payload_tag, data, consumed)
    try:
        frame = Frame(header, payload)
    except ValueError as e:
        raise MalformedFrameError(str(e)) from None

    logger.debug("Decoded frame: %s", header)
    return frame, consumed + payload_len
