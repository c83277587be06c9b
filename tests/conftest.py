"""
Shared Fixtures for DC3 Client Tests
====================================

The fixtures here replace the network with a simulated DC3:

- ``FakeDevice`` decodes each request the way the board does and
  scripts the Acknowledge and Completion frames it answers with.
- ``FakeTransport`` hands every sent frame to the device and pushes the
  answers straight into the connection's inbound queue, with no thread.
- ``FakeClock`` stands in for ``time.monotonic``/``time.sleep`` so that
  timeouts elapse instantly.
"""

import dataclasses
from typing import Optional

import pytest

from dc3_client.client import Dc3Client
from dc3_client.comms.codec import decode_frame, encode_frame
from dc3_client.comms.connection import Connection
from dc3_client.comms.messages import (
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
    Role,
    StatusPayload,
    VersionPayload,
    payload_tag_of,
)
from dc3_client.comms.transaction import TransactionEngine
from dc3_client.comms.transport import Transport
from dc3_client.config import ClientConfig, Timeouts

DEFAULT_DEBUG_MODULES = DebugModule.GEN | DebugModule.SER | DebugModule.FLASH


# =============================================================================
# Simulated Board
# =============================================================================

class FakeDevice:
    """
    Scripted DC3 answering requests synchronously.

    Attributes:
        mode: Current boot mode
        stay_in_mode: If True, SET_BOOT_MODE answers but never changes mode
        drop_ack: Request names never acknowledged
        drop_done: Request names acknowledged but never completed
        done_before_ack: Send the Completion before the Acknowledge
        errors: Error code to report per request name
        fail_packet: (sequence, code) to report for one flash data packet
        drop_packet_done: Flash data sequence acknowledged but never completed
        requests: Every request frame received, in order
    """

    def __init__(self) -> None:
        self.mode = BootMode.APPLICATION
        self.stay_in_mode = False
        self.drop_ack: set[MsgName] = set()
        self.drop_done: set[MsgName] = set()
        self.done_before_ack = False
        self.errors: dict[MsgName, int] = {}
        self.fail_packet: Optional[tuple[int, int]] = None
        self.drop_packet_done: Optional[int] = None
        self.requests: list[Frame] = []

        self.memories = {
            device: bytearray(range(device.size)) for device in I2CDevice
        }
        self.debug_mask = DEFAULT_DEBUG_MODULES
        self.eth_output = True
        self.ser_output = True
        self.flash_meta: Optional[FlashMetaPayload] = None
        self.flash_packets: list[FlashDataPayload] = []

    @property
    def names(self) -> list[MsgName]:
        return [frame.header.name for frame in self.requests]

    def count(self, name: MsgName) -> int:
        return self.names.count(name)

    def handle(self, data: bytes) -> list[bytes]:
        """Return the encoded frames the board sends back for ``data``."""
        request, _ = decode_frame(data, Role.DEVICE)
        assert request.msg_type == MsgType.REQUEST
        self.requests.append(request)
        name = request.header.name

        if name in self.drop_ack:
            return []
        ack = self._frame(request, MsgType.ACK)
        if name in self.drop_done or self._is_dropped_packet(request):
            return [ack]

        payload = self.respond(request)
        if name in self.errors:
            payload = dataclasses.replace(payload, error_code=self.errors[name])
        done = self._frame(request, MsgType.DONE, payload)
        return [done, ack] if self.done_before_ack else [ack, done]

    def _is_dropped_packet(self, request: Frame) -> bool:
        payload = request.payload
        return (
            isinstance(payload, FlashDataPayload)
            and payload.sequence == self.drop_packet_done
        )

    @staticmethod
    def _frame(request: Frame, msg_type: MsgType, payload: Optional[Payload] = None) -> bytes:
        header = Header(
            msg_id=request.msg_id,
            msg_type=msg_type,
            route=request.header.route,
            name=request.header.name,
            payload_tag=payload_tag_of(payload),
        )
        return encode_frame(header, payload)

    def respond(self, request: Frame) -> Payload:
        name = request.header.name
        payload = request.payload

        if name == MsgName.GET_BOOT_MODE:
            return BootModePayload(mode=self.mode)
        if name == MsgName.SET_BOOT_MODE:
            if not self.stay_in_mode:
                self.mode = payload.mode
            return BootModePayload(mode=payload.mode)
        if name == MsgName.GET_VERSION:
            return VersionPayload(major=1, minor=2, build_datetime="20150428120611")

        if name == MsgName.FLASH and isinstance(payload, FlashMetaPayload):
            self.flash_meta = payload
            self.flash_packets.clear()
            return FlashMetaPayload(image_type=payload.image_type)
        if name == MsgName.FLASH and isinstance(payload, FlashDataPayload):
            self.flash_packets.append(payload)
            result = FlashDataPayload(sequence=payload.sequence, crc32=payload.crc32)
            if self.fail_packet and self.fail_packet[0] == payload.sequence:
                result = dataclasses.replace(result, error_code=self.fail_packet[1])
            return result

        if name == MsgName.I2C_READ:
            memory = self.memories[payload.device]
            return dataclasses.replace(
                payload, data=bytes(memory[payload.start:payload.start + payload.length])
            )
        if name == MsgName.I2C_WRITE:
            memory = self.memories[payload.device]
            memory[payload.start:payload.start + len(payload.data)] = payload.data
            return dataclasses.replace(payload, data=b"")

        if name == MsgName.RAM_TEST:
            return DiagnosticResultPayload(test=payload.test)

        if name == MsgName.DBG_GET_CURRENT:
            pass
        elif name == MsgName.DBG_SET_CURRENT:
            self.debug_mask = DebugModule(payload.bitmask)
        elif name == MsgName.DBG_ENABLE:
            self.debug_mask |= DebugModule(payload.bitmask)
        elif name == MsgName.DBG_DISABLE:
            self.debug_mask &= ~DebugModule(payload.bitmask)
        elif name == MsgName.DBG_RESET_DEFAULT:
            self.debug_mask = DEFAULT_DEBUG_MODULES
        elif name in (MsgName.DBG_ENABLE_ETH, MsgName.DBG_DISABLE_ETH):
            self.eth_output = name == MsgName.DBG_ENABLE_ETH
        elif name in (MsgName.DBG_ENABLE_SER, MsgName.DBG_DISABLE_SER):
            self.ser_output = name == MsgName.DBG_ENABLE_SER
        else:
            return StatusPayload()
        return DebugConfigPayload(bitmask=int(self.debug_mask))


class FakeTransport(Transport):
    """Transport delivering a FakeDevice's answers synchronously."""

    route = MsgRoute.ETH_CLI

    def __init__(self, device: FakeDevice):
        super().__init__()
        self.device = device
        self.sent: list[bytes] = []

    def start(self, sink) -> None:
        self._sink = sink
        self._running.set()

    def stop(self) -> None:
        self._running.clear()

    def send(self, data: bytes) -> None:
        self.sent.append(data)
        for answer in self.device.handle(data):
            self._deliver(answer)


class FakeClock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def transport(device):
    return FakeTransport(device)


@pytest.fixture
def connection(transport):
    conn = Connection(transport)
    conn.open()
    yield conn
    conn.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(connection, clock):
    return TransactionEngine(
        connection,
        ack_timeout=2.0,
        done_timeout=2.0,
        poll_interval=0.001,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def fast_config():
    """Configuration with short timeouts and no reboot delay."""
    return ClientConfig(
        timeouts=Timeouts(
            ack=0.05, simple=0.05, meta=0.05, packet=0.05, ram_test=0.05,
            total_flash=30.0,
        ),
        settle_delay=0.0,
    )


@pytest.fixture
def client(connection, fast_config):
    return Dc3Client(connection, fast_config)


@pytest.fixture
def firmware_file(tmp_path):
    """A 1000-byte application image with a valid name."""
    path = tmp_path / "DC3Appl_v01.02_20150428120611.bin"
    path.write_bytes(bytes(i % 251 for i in range(1000)))
    return path
