"""
Tests for Transports and Serial Port Utilities
==============================================

Sockets and serial ports are replaced by mocks; nothing here touches
real hardware or the network.
"""

import base64
import logging
import socket
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import serial

from dc3_client.comms.messages import MAX_FRAME_SIZE, MsgRoute
from dc3_client.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    find_dc3_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from dc3_client.comms.transport import (
    DEFAULT_LOCAL_PORT,
    DEFAULT_REMOTE_PORT,
    MAX_LINE_LENGTH,
    SerialTransport,
    UdpTransport,
    is_device_log_line,
    log_device_line,
)
from dc3_client.errors import CommsError, ConnectionError


def make_serial_transport(observer=None):
    """SerialTransport over a mock port, started without its thread."""
    port = Mock(spec=serial.Serial)
    transport = SerialTransport(port=port, log_observer=observer)
    received = []
    transport._sink = received.append
    return transport, port, received


# =============================================================================
# Serial Line Classification
# =============================================================================

class TestDeviceLogLines:
    """Tests for telling console output from base64 frames."""

    @pytest.mark.parametrize("line", [
        "DBG-SLOW-FLASH: Erasing sector 4",
        "00:01:23.456 LOG: Bootloader started",
        "WRN: buffer almost full",
        "ERR-SER: overrun",
        "ISR fired",
    ])
    def test_log_lines(self, line):
        assert is_device_log_line(line)

    @pytest.mark.parametrize("line", [
        "CAEQAhgEKAQwBg==",
        "DBG0",           # valid base64 that happens to start with a marker
        "LOGabc+/",
    ])
    def test_frames(self, line):
        assert not is_device_log_line(line)

    def test_relogged_at_marker_level(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="dc3_client.device"):
            log_device_line("ERR-FLASH: write failed")
            log_device_line("00:00:01 WRN: slow")
            log_device_line("LOG: idle")
        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.ERROR, logging.WARNING, logging.INFO]


# =============================================================================
# Serial Transport
# =============================================================================

class TestSerialTransport:
    """Tests for base64 line framing over the serial console."""

    def test_route(self):
        assert SerialTransport(port=Mock()).route == MsgRoute.SERIAL

    def test_send_base64_line(self):
        transport, port, _ = make_serial_transport()
        transport.send(b"\x08\x01\x10\x01")
        port.write.assert_called_once_with(base64.b64encode(b"\x08\x01\x10\x01") + b"\n")
        port.flush.assert_called_once()

    def test_send_not_started(self):
        with pytest.raises(CommsError, match="not started"):
            SerialTransport("/dev/ttyUSB0").send(b"\x00")

    def test_send_failure(self):
        transport, port, _ = make_serial_transport()
        port.write.side_effect = serial.SerialException("device disconnected")
        with pytest.raises(CommsError, match="Serial write failed"):
            transport.send(b"\x00")

    def test_frame_delivered(self):
        transport, _, received = make_serial_transport()
        transport.feed(base64.b64encode(b"\x01\x02\x03") + b"\r\n")
        assert received == [b"\x01\x02\x03"]

    def test_partial_lines_buffered(self):
        """A frame split across reads is delivered once the newline arrives."""
        transport, _, received = make_serial_transport()
        line = base64.b64encode(b"\xaa\xbb\xcc\xdd")
        transport.feed(line[:3])
        assert received == []
        transport.feed(line[3:] + b"\n")
        assert received == [b"\xaa\xbb\xcc\xdd"]

    def test_log_lines_go_to_observer(self):
        observer = Mock()
        transport, _, received = make_serial_transport(observer)
        transport.feed(
            b"DBG-SLOW-FLASH: Erasing sector 4\n"
            + base64.b64encode(b"\x05") + b"\n"
            + b"LOG: done\n"
        )
        assert received == [b"\x05"]
        assert [c.args[0] for c in observer.call_args_list] == [
            "DBG-SLOW-FLASH: Erasing sector 4",
            "LOG: done",
        ]

    def test_undecodable_line_dropped(self, caplog):
        transport, _, received = make_serial_transport()
        with caplog.at_level(logging.WARNING, logger="dc3_client.comms.transport"):
            transport.feed(b"not a frame!\n")
        assert received == []
        assert "undecodable" in caplog.text

    def test_unterminated_noise_discarded(self, caplog):
        """Line noise with no newline is dropped once it exceeds the cap."""
        transport, _, received = make_serial_transport()
        with caplog.at_level(logging.WARNING, logger="dc3_client.comms.transport"):
            for _ in range(MAX_LINE_LENGTH // 100 + 1):
                transport.feed(b"\xff" * 100)
        assert len(transport._buffer) == 0
        assert "no line end" in caplog.text
        transport.feed(base64.b64encode(b"\x07") + b"\n")
        assert received == [b"\x07"]

    def test_largest_frame_fits_line_cap(self):
        assert len(base64.b64encode(bytes(MAX_FRAME_SIZE))) < MAX_LINE_LENGTH

    def test_blank_lines_ignored(self):
        observer = Mock()
        transport, _, received = make_serial_transport(observer)
        transport.feed(b"\n\r\n")
        assert received == []
        observer.assert_not_called()

    def test_borrowed_port_not_closed(self):
        port = Mock(spec=serial.Serial)
        port.in_waiting = 0
        port.read.return_value = b""
        transport = SerialTransport(port=port)
        transport.start(Mock())
        transport.stop()
        port.close.assert_not_called()


# =============================================================================
# UDP Transport
# =============================================================================

class TestUdpTransport:
    """Tests for the UDP datagram transport."""

    def test_defaults(self):
        transport = UdpTransport("192.168.1.75")
        assert transport.remote_port == DEFAULT_REMOTE_PORT == 1502
        assert transport.local_port == DEFAULT_LOCAL_PORT == 50249
        assert transport.route == MsgRoute.ETH_CLI

    def test_send_one_datagram(self):
        sock = Mock()
        transport = UdpTransport("192.168.1.75", sock=sock)
        transport._open()
        transport.send(b"\x08\x01")
        sock.sendto.assert_called_once_with(b"\x08\x01", ("192.168.1.75", 1502))

    def test_send_not_started(self):
        with pytest.raises(CommsError, match="not started"):
            UdpTransport("192.168.1.75").send(b"\x00")

    def test_receive_delivers_datagram(self):
        sock = Mock()
        sock.recvfrom.return_value = (b"\x08\x01\x10\x02", ("192.168.1.75", 1502))
        transport = UdpTransport("192.168.1.75", sock=sock)
        received = []
        transport._sink = received.append
        transport._running.set()
        transport._receive_once()
        assert received == [b"\x08\x01\x10\x02"]

    def test_receive_timeout_is_quiet(self):
        sock = Mock()
        sock.recvfrom.side_effect = socket.timeout
        transport = UdpTransport("192.168.1.75", sock=sock)
        received = []
        transport._sink = received.append
        transport._running.set()
        transport._receive_once()
        assert received == []

    def test_bind_failure(self):
        with patch("dc3_client.comms.transport.socket.socket") as socket_cls:
            socket_cls.return_value.bind.side_effect = OSError("Address already in use")
            with pytest.raises(ConnectionError, match="Cannot bind UDP port 50249"):
                UdpTransport("192.168.1.75").start(Mock())


# =============================================================================
# Serial Port Utilities
# =============================================================================

def fake_comport(device, description="", vid=None, pid=None):
    return SimpleNamespace(
        device=device,
        description=description,
        manufacturer=None,
        serial_number=None,
        vid=vid,
        pid=pid,
    )


class TestSerialPorts:
    """Tests for serial port discovery and opening."""

    def test_default_baud_rate(self):
        """The DC3 console runs at 115200 baud."""
        assert DEFAULT_BAUD_RATE == 115200
        assert DEFAULT_BAUD_RATE in VALID_BAUD_RATES

    def test_port_info(self):
        info = PortInfo("/dev/ttyACM0", "STM32 STLink", None, None, 0x0483, 0x374B)
        assert info.is_usb
        assert info.vendor_name == "STMicroelectronics"
        assert str(info) == "/dev/ttyACM0 - STM32 STLink (STMicroelectronics)"

    def test_port_info_non_usb(self):
        info = PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None)
        assert not info.is_usb
        assert info.vendor_name is None

    def test_format_port_list(self):
        ports = [
            PortInfo("/dev/ttyUSB0", "USB Serial", "FTDI", "A1", 0x0403, 0x6001),
            PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None),
        ]
        assert "/dev/ttyS0" in format_port_list(ports)
        detailed = format_port_list(ports, verbose=True)
        assert "USB VID:PID: 0403:6001 (FTDI)" in detailed
        assert "Serial: A1" in detailed

    def test_format_port_list_empty(self):
        assert "No serial ports" in format_port_list([])

    def test_list_serial_ports(self):
        with patch("serial.tools.list_ports.comports",
                   return_value=[fake_comport("/dev/ttyS0", "Serial Port")]):
            ports = list_serial_ports()
        assert [p.device for p in ports] == ["/dev/ttyS0"]

    def test_find_prefers_stlink(self):
        comports = [
            fake_comport("/dev/ttyS0"),
            fake_comport("/dev/ttyUSB0", vid=0x1A86, pid=0x7523),
            fake_comport("/dev/ttyACM0", vid=0x0483, pid=0x374B),
        ]
        with patch("serial.tools.list_ports.comports", return_value=comports):
            assert find_dc3_port() == "/dev/ttyACM0"

    def test_find_first_usb(self):
        comports = [fake_comport("/dev/ttyS0"), fake_comport("/dev/ttyUSB3", vid=0x1A86)]
        with patch("serial.tools.list_ports.comports", return_value=comports):
            assert find_dc3_port() == "/dev/ttyUSB3"

    def test_find_none(self):
        with patch("serial.tools.list_ports.comports", return_value=[fake_comport("/dev/ttyS0")]):
            assert find_dc3_port() is None

    def test_open_invalid_baud(self):
        with pytest.raises(ValueError, match="Invalid baud rate"):
            open_serial_port("/dev/ttyUSB0", 1234)

    def test_open_permission_denied(self):
        with patch("serial.Serial", side_effect=serial.SerialException("[Errno 13] Permission denied")):
            with pytest.raises(ConnectionError, match="dialout"):
                open_serial_port("/dev/ttyUSB0")
