"""
DC3 Transports
==============

Transports move raw frame bytes between the host and the DC3. They know
nothing about the message protocol: a transport only sends bytes and
delivers every received frame to a sink (normally the connection's
``InboundQueue.push``) from its own background receive thread.

Two bindings are provided:

UDP (``UdpTransport``)
    One datagram carries exactly one frame. The DC3 listens on port 1502;
    the host binds a local port (50249 by default) to receive replies.

Serial (``SerialTransport``)
    The serial console is line oriented and shared with the device's log
    output. Each frame is base64-encoded and terminated by a newline:

        CAEQAhgEKAQwBg==\\n

    Lines carrying a log marker (DBG, LOG, WRN, ERR, ISR) are device
    console output, not frames; they go to a log observer instead of the
    queue. Because log lines contain spaces and punctuation, they can
    never be mistaken for a base64 frame.

Threading Model
---------------
``start(sink)`` spawns a daemon receive thread that only frames bytes and
calls ``sink``; it never runs protocol logic. ``send`` is called from the
command thread. ``stop`` signals the receive thread and waits for it.
"""

import base64
import binascii
import logging
import re
import socket
import threading
from typing import Callable, Final, Optional

import serial

from dc3_client.comms.messages import MAX_FRAME_SIZE, MsgRoute
from dc3_client.comms.serial import (
    DEFAULT_BAUD_RATE,
    close_serial_port,
    open_serial_port,
)
from dc3_client.error_codes import ClientErrorCode
from dc3_client.errors import CommsError, ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)

# Device console output is re-logged under this logger
device_logger = logging.getLogger("dc3_client.device")

# Receives each raw frame; returns False if the frame had to be dropped
FrameSink = Callable[[bytes], bool]

# Receives each line of device console output
DeviceLogObserver = Callable[[str], None]


# =============================================================================
# Constants
# =============================================================================

DEFAULT_REMOTE_PORT: Final[int] = 1502
DEFAULT_LOCAL_PORT: Final[int] = 50249

# Socket timeout; bounds how quickly stop() takes effect
DEFAULT_RECV_TIMEOUT: Final[float] = 0.1

# Largest datagram accepted from the socket
MAX_DATAGRAM_SIZE: Final[int] = 1024

# Longest unterminated serial line kept while waiting for its newline;
# covers a base64 frame of MAX_FRAME_SIZE and long console lines
MAX_LINE_LENGTH: Final[int] = 1024

# Markers identifying device console lines, with the level they map to
DEVICE_LOG_LEVELS: Final[dict[str, int]] = {
    "DBG": logging.DEBUG,
    "LOG": logging.INFO,
    "WRN": logging.WARNING,
    "ERR": logging.ERROR,
    "ISR": logging.DEBUG,
}

_BASE64_LINE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9+/]+={0,2}")


def log_device_line(line: str) -> None:
    """Default device log observer: re-log the line at its marker's level."""
    level = logging.INFO
    for marker, marker_level in DEVICE_LOG_LEVELS.items():
        if line.startswith(marker):
            level = marker_level
            break
    else:
        for marker, marker_level in DEVICE_LOG_LEVELS.items():
            if marker in line:
                level = marker_level
                break
    device_logger.log(level, "%s", line)


def is_device_log_line(line: str) -> bool:
    """True if a serial line is device console output rather than a frame."""
    if _BASE64_LINE.fullmatch(line):
        return False
    return any(marker in line for marker in DEVICE_LOG_LEVELS)


# =============================================================================
# Transport Base
# =============================================================================

class Transport:
    """
    Base class for DC3 transports.

    Subclasses implement ``_open``, ``_close``, ``send`` and
    ``_receive_once``; the base class owns the receive thread.

    Attributes:
        route: Route stamped on requests sent through this transport
        max_frame_size: Largest frame this transport can carry
    """

    route: MsgRoute = MsgRoute.NONE
    max_frame_size: int = MAX_FRAME_SIZE

    def __init__(self) -> None:
        self._sink: Optional[FrameSink] = None
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self, sink: FrameSink) -> None:
        """Open the transport and begin delivering received frames to sink."""
        if self.running:
            raise CommsError("Transport already started")
        self._open()
        self._sink = sink
        self._running.set()
        self._thread = threading.Thread(
            target=self._receive_loop,
            name=f"{type(self).__name__}-rx",
            daemon=True,
        )
        self._thread.start()
        logger.debug("%s started", type(self).__name__)

    def stop(self) -> None:
        """Stop the receive thread and release the underlying resource."""
        was_running = self.running
        self._running.clear()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        if was_running:
            self._close()
            logger.debug("%s stopped", type(self).__name__)

    def send(self, data: bytes) -> None:
        """Transmit one encoded frame (fire and forget)."""
        raise NotImplementedError

    def _deliver(self, frame: bytes) -> None:
        if self._sink is not None and frame:
            self._sink(frame)

    def _receive_loop(self) -> None:
        while self.running:
            try:
                self._receive_once()
            except CommsError as e:
                logger.error("Receive failed, stopping receiver: %s", e)
                self._running.clear()

    def _open(self) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError

    def _receive_once(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc) -> None:
        self.stop()


# =============================================================================
# UDP Transport
# =============================================================================

class UdpTransport(Transport):
    """
    UDP datagram transport to the DC3's client port.

    Args:
        host: DC3 IP address.
        remote_port: DC3 UDP port (default 1502).
        local_port: Local port to bind for replies (default 50249, 0 for any).
        sock: Pre-created socket, mainly for testing.
    """

    route = MsgRoute.ETH_CLI

    def __init__(
        self,
        host: str,
        remote_port: int = DEFAULT_REMOTE_PORT,
        local_port: int = DEFAULT_LOCAL_PORT,
        recv_timeout: float = DEFAULT_RECV_TIMEOUT,
        sock: Optional[socket.socket] = None,
    ):
        super().__init__()
        self.host = host
        self.remote_port = remote_port
        self.local_port = local_port
        self.recv_timeout = recv_timeout
        self._sock = sock

    def _open(self) -> None:
        if self._sock is None:
            try:
                self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
                self._sock.bind(("", self.local_port))
            except OSError as e:
                raise ConnectionError(
                    f"Cannot bind UDP port {self.local_port}: {e}"
                ) from e
        self._sock.settimeout(self.recv_timeout)
        logger.info(
            "UDP transport to %s:%d (local port %d)",
            self.host, self.remote_port, self.local_port,
        )

    def _close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def send(self, data: bytes) -> None:
        if self._sock is None:
            raise CommsError("UDP transport is not started")
        try:
            self._sock.sendto(data, (self.host, self.remote_port))
        except OSError as e:
            raise CommsError(
                f"UDP send to {self.host}:{self.remote_port} failed: {e}",
                code=ClientErrorCode.TRANSPORT_EXCEPTION,
            ) from e

    def _receive_once(self) -> None:
        sock = self._sock
        if sock is None:
            self._running.clear()
            return
        try:
            data, addr = sock.recvfrom(MAX_DATAGRAM_SIZE)
        except socket.timeout:
            return
        except OSError as e:
            if not self.running:
                return
            raise CommsError(
                f"UDP receive failed: {e}",
                code=ClientErrorCode.TRANSPORT_EXCEPTION,
            ) from e
        logger.debug("UDP datagram from %s:%d (%d bytes)", addr[0], addr[1], len(data))
        self._deliver(data)


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport(Transport):
    """
    Serial transport using base64 line framing.

    Args:
        device: Serial device path. Ignored if ``port`` is given.
        baud_rate: Baud rate (default 115200).
        port: Already-open pyserial port, mainly for testing.
        log_observer: Called with each device console line. Defaults to
            re-logging under the ``dc3_client.device`` logger.
    """

    route = MsgRoute.SERIAL

    def __init__(
        self,
        device: str = "",
        baud_rate: int = DEFAULT_BAUD_RATE,
        port: Optional[serial.Serial] = None,
        log_observer: Optional[DeviceLogObserver] = None,
    ):
        super().__init__()
        self.device = device
        self.baud_rate = baud_rate
        self.log_observer = log_observer or log_device_line
        self._port = port
        self._owns_port = port is None
        self._buffer = bytearray()

    def _open(self) -> None:
        if self._port is None:
            self._port = open_serial_port(self.device, self.baud_rate)
        self._buffer.clear()

    def _close(self) -> None:
        if self._owns_port:
            close_serial_port(self._port)
            self._port = None

    def send(self, data: bytes) -> None:
        if self._port is None:
            raise CommsError("Serial transport is not started")
        line = base64.b64encode(data) + b"\n"
        try:
            self._port.write(line)
            self._port.flush()
        except serial.SerialException as e:
            raise CommsError(
                f"Serial write failed: {e}",
                code=ClientErrorCode.TRANSPORT_EXCEPTION,
            ) from e

    def _receive_once(self) -> None:
        port = self._port
        if port is None:
            self._running.clear()
            return
        try:
            chunk = port.read(port.in_waiting or 1)
        except serial.SerialException as e:
            if not self.running:
                return
            raise CommsError(
                f"Serial read failed: {e}",
                code=ClientErrorCode.TRANSPORT_EXCEPTION,
            ) from e
        if chunk:
            self.feed(chunk)

    def feed(self, chunk: bytes) -> None:
        """Add received bytes and process every complete line."""
        self._buffer.extend(chunk)
        while (end := self._buffer.find(b"\n")) >= 0:
            line = bytes(self._buffer[:end])
            del self._buffer[:end + 1]
            self.handle_line(line)
        if len(self._buffer) > MAX_LINE_LENGTH:
            logger.warning(
                "Discarding %d bytes of serial input with no line end",
                len(self._buffer),
            )
            self._buffer.clear()

    def handle_line(self, raw: bytes) -> None:
        """Route one received line to the log observer or the frame sink."""
        line = raw.decode("ascii", errors="replace").strip()
        if not line:
            return
        if is_device_log_line(line):
            self.log_observer(line)
            return
        try:
            frame = base64.b64decode(line, validate=True)
        except binascii.Error:
            logger.warning("Discarding undecodable serial line: %.60r", line)
            return
        self._deliver(frame)
