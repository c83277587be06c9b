"""
Serial Port Utilities for the DC3
=================================

Finding and opening the DC3 debug console (a USART exposed through the
board's USB-serial bridge).

The console is fixed at 8N1 with no handshaking. It runs at 115200 baud
by default; the other standard rates are accepted for bench setups with
reflashed consoles.

Protocol frames and the device's human-readable log output share the
same line; see ``dc3_client.comms.transport.SerialTransport`` for how
they are told apart.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from dc3_client.errors import ConnectionError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    9600, 19200, 38400, 57600, 115200, 230400, 460800, 921600,
)

DEFAULT_BAUD_RATE: Final[int] = 115200

# Bounds how long the receive thread blocks in a single read
DEFAULT_TIMEOUT: Final[float] = 0.1

# Bridge chips seen on DC3 boards and on the bench
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0483: "STMicroelectronics",  # ST-LINK VCP
    0x0403: "FTDI",
    0x10C4: "Silicon Labs",
    0x1A86: "QinHeng",
}

# Auto-detection rank; lower wins, unlisted USB vendors come last
_VID_RANK: Final[dict[int, int]] = {0x0483: 0, 0x0403: 1}

# Substrings of pyserial's open() failure text, and what to tell the user
_OPEN_FAILURE_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("permission denied",),
     "Permission denied on {device}; add your user to the 'dialout' group."),
    (("no such file", "not found"),
     "No serial port at {device}; run 'dc3cli ports' to see what is attached."),
    (("busy", "in use"),
     "{device} is held by another program; close it and retry."),
)


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    One serial port as reported by pyserial.

    ``vid`` and ``pid`` are only set for USB adapters; legacy UARTs and
    virtual ports leave them as None.
    """

    device: str
    description: str
    manufacturer: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @classmethod
    def from_comport(cls, entry) -> "PortInfo":
        """Build from a ``serial.tools.list_ports`` entry."""
        return cls(
            entry.device,
            entry.description or "",
            entry.manufacturer,
            entry.serial_number,
            entry.vid,
            entry.pid,
        )

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return None if self.vid is None else USB_VENDOR_IDS.get(self.vid)

    @property
    def usb_id(self) -> str:
        """``VVVV:PPPP`` in hex, or empty for non-USB ports."""
        if self.vid is None:
            return ""
        return f"{self.vid:04X}:{self.pid or 0:04X}"

    def __str__(self) -> str:
        label = self.device
        if self.description:
            label = f"{label} - {self.description}"
        vendor = self.vendor_name
        return f"{label} ({vendor})" if vendor else label


# =============================================================================
# Discovery
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """Every serial port visible to pyserial, in enumeration order."""
    ports = [PortInfo.from_comport(c) for c in serial.tools.list_ports.comports()]
    for port in ports:
        logger.debug("Port %s [%s]", port.device, port.usb_id or "not USB")
    return ports


def find_dc3_port() -> Optional[str]:
    """
    Pick the port the DC3 is most likely on.

    USB ports are ranked by bridge vendor (ST-LINK first, then FTDI) and
    ties keep enumeration order. Non-USB ports are never chosen.
    """
    candidates = [p for p in list_serial_ports() if p.is_usb]
    if not candidates:
        logger.debug("No USB serial adapter present")
        return None

    best = min(candidates, key=lambda p: _VID_RANK.get(p.vid, len(_VID_RANK)))
    logger.info(
        "Selected %s (%s)", best.device, best.vendor_name or best.description
    )
    return best.device


# =============================================================================
# Open / Close
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open ``device`` at 8N1 without handshaking and flush both directions.

    Raises:
        ValueError: ``baud_rate`` is not in VALID_BAUD_RATES.
        ConnectionError: The OS refused to open the port.
    """
    if baud_rate not in VALID_BAUD_RATES:
        raise ValueError(
            f"Invalid baud rate {baud_rate}; choose one of "
            + ", ".join(map(str, VALID_BAUD_RATES))
        )

    logger.info("Opening %s @ %d", device, baud_rate)
    try:
        port = serial.Serial(
            device,
            baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
        )
    except serial.SerialException as e:
        raise ConnectionError(_describe_open_failure(device, e)) from e

    port.reset_input_buffer()
    port.reset_output_buffer()
    return port


def _describe_open_failure(device: str, exc: Exception) -> str:
    text = str(exc).lower()
    for needles, hint in _OPEN_FAILURE_HINTS:
        if any(n in text for n in needles):
            return hint.format(device=device)
    return f"Cannot open {device}: {exc}"


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """Close ``port`` if open. Failures are logged only."""
    if port is None or not port.is_open:
        return
    try:
        port.close()
    except serial.SerialException as e:
        logger.warning("Closing %s failed: %s", port.port, e)
    else:
        logger.debug("Closed %s", port.port)


# =============================================================================
# Display
# =============================================================================

def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """Render ports for ``dc3cli ports``; ``verbose`` adds indented details."""
    if not ports:
        return "No serial ports found."
    if not verbose:
        return "\n".join(f"  {p}" for p in ports)

    blocks = []
    for p in ports:
        usb = p.usb_id
        if usb and p.vendor_name:
            usb = f"{usb} ({p.vendor_name})"
        details = (
            ("Description", p.description),
            ("Manufacturer", p.manufacturer),
            ("USB VID:PID", usb),
            ("Serial", p.serial_number),
        )
        blocks.append("\n".join(
            [f"  {p.device}"]
            + [f"    {name}: {value}" for name, value in details if value]
        ))
    return "\n".join(blocks)
