"""
DC3 Client
==========

High-level command surface for one DC3 board. Every method runs one or
more transactions on a single connection and turns the device's answer
into a plain Python value, raising ``DeviceError`` when the device
reports a non-zero error code.

Usage
-----
    from dc3_client import BootMode, Dc3Client

    with Dc3Client.open_udp("192.168.1.75") as dc3:
        print(dc3.get_boot_mode().label)
        result = dc3.flash_firmware("DC3Appl_v01.02_20150428120611.bin")
        print(f"{result.packets_sent} packets, crc 0x{result.crc32:08X}")

Over the serial console instead:

    with Dc3Client.open_serial("/dev/ttyUSB0") as dc3:
        dc3.set_boot_mode(BootMode.APPLICATION)

Thread Safety
-------------
A client is NOT thread-safe. Only one transaction may be in flight per
connection, so drive each client from a single thread.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from dc3_client.comms.connection import Connection
from dc3_client.comms.firmware import FirmwareImage
from dc3_client.comms.flash import (
    AbortCallback,
    FlashOrchestrator,
    FlashResult,
    ProgressCallback,
)
from dc3_client.comms.messages import (
    AccessType,
    BootMode,
    BootModePayload,
    DebugConfigPayload,
    DebugModule,
    DiagnosticResultPayload,
    Frame,
    I2CDevice,
    MsgName,
    Payload,
    PeripheralDataPayload,
    RamTest,
    StatusPayload,
    VersionPayload,
)
from dc3_client.comms.serial import DEFAULT_BAUD_RATE
from dc3_client.comms.transaction import TransactionEngine
from dc3_client.comms.transport import (
    DEFAULT_LOCAL_PORT,
    DEFAULT_REMOTE_PORT,
    DeviceLogObserver,
    SerialTransport,
    UdpTransport,
)
from dc3_client.config import ClientConfig
from dc3_client.error_codes import ClientErrorCode
from dc3_client.errors import DeviceError, TransferError, UnexpectedPayloadError

# Configure module logger
logger = logging.getLogger(__name__)


class Dc3Client:
    """
    Commands for one DC3 board over one connection.

    Args:
        connection: Connection to the board. Opened on construction if it
            is not open already.
        config: Timeouts and flash tuning (default: ``ClientConfig()``).

    Attributes:
        connection: The underlying connection
        config: Active configuration
        engine: Transaction engine used for every command
    """

    def __init__(self, connection: Connection, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self.connection = connection
        self.engine = TransactionEngine(
            connection,
            ack_timeout=self.config.timeouts.ack,
            done_timeout=self.config.timeouts.simple,
            poll_interval=self.config.poll_interval,
        )
        self.connection.open()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def open_udp(
        cls,
        host: str,
        remote_port: int = DEFAULT_REMOTE_PORT,
        local_port: int = DEFAULT_LOCAL_PORT,
        config: Optional[ClientConfig] = None,
    ) -> "Dc3Client":
        """
        Connect to a DC3 over UDP.

        Raises:
            ConnectionError: If the local port cannot be bound.
        """
        config = config or ClientConfig()
        transport = UdpTransport(host, remote_port=remote_port, local_port=local_port)
        connection = Connection(
            transport, queue_capacity=config.queue_capacity, route=config.route
        )
        logger.info("Connecting to DC3 at %s:%d over UDP", host, remote_port)
        return cls(connection, config)

    @classmethod
    def open_serial(
        cls,
        device: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        config: Optional[ClientConfig] = None,
        log_observer: Optional[DeviceLogObserver] = None,
    ) -> "Dc3Client":
        """
        Connect to a DC3 over its serial console.

        Raises:
            ConnectionError: If the serial port cannot be opened.
        """
        config = config or ClientConfig()
        transport = SerialTransport(device, baud_rate, log_observer=log_observer)
        connection = Connection(
            transport, queue_capacity=config.queue_capacity, route=config.route
        )
        logger.info("Connecting to DC3 on %s at %d baud", device, baud_rate)
        return cls(connection, config)

    def close(self) -> None:
        """Stop the transport and release the socket or serial port."""
        self.connection.close()

    def __enter__(self) -> "Dc3Client":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _request(
        self,
        name: MsgName,
        payload: Optional[Payload] = None,
        expect: Optional[tuple[type, ...]] = None,
        done_timeout: Optional[float] = None,
    ) -> Payload:
        """
        Run one transaction and return the Completion payload.

        Raises:
            DeviceError: The payload carries a non-zero error code.
            UnexpectedPayloadError: The payload is a bare status where a
                result was required.
        """
        frame = self.engine.transact(
            name, payload, done_timeout=done_timeout, expect=expect
        )
        return self._check(frame, name.name, expect)

    @staticmethod
    def _check(
        frame: Frame,
        operation: str,
        expect: Optional[tuple[type, ...]],
    ) -> Payload:
        if frame.error_code:
            raise DeviceError(frame.error_code, operation)
        payload = frame.payload
        if (
            expect is not None
            and StatusPayload not in expect
            and isinstance(payload, StatusPayload)
        ):
            raise UnexpectedPayloadError(
                f"{operation} answered with a bare status, "
                f"expected {' or '.join(t.__name__ for t in expect)}"
            )
        return payload

    # -------------------------------------------------------------------------
    # Boot Mode and Version
    # -------------------------------------------------------------------------

    def get_boot_mode(self) -> BootMode:
        """Query the mode the DC3 is currently running in."""
        payload = self._request(MsgName.GET_BOOT_MODE, expect=(BootModePayload,))
        return payload.mode

    def set_boot_mode(self, mode: BootMode) -> BootMode:
        """
        Ask the DC3 to switch modes.

        The device reboots after answering; allow ``config.settle_delay``
        before the next command.

        Returns:
            The mode reported by the device in its answer.

        Raises:
            ValueError: If ``mode`` is not BOOTLOADER or APPLICATION.
        """
        mode = BootMode(mode)
        if mode not in (BootMode.BOOTLOADER, BootMode.APPLICATION):
            raise ValueError(f"Cannot request boot mode {mode.label}")
        payload = self._request(
            MsgName.SET_BOOT_MODE,
            BootModePayload(mode=mode),
            expect=(BootModePayload,),
        )
        return payload.mode

    def get_version(self) -> VersionPayload:
        """Query the version of the firmware currently running."""
        return self._request(MsgName.GET_VERSION, expect=(VersionPayload,))

    # -------------------------------------------------------------------------
    # I2C Memories
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_i2c_range(device: I2CDevice, start: int, length: int) -> None:
        size = I2CDevice(device).size
        if length < 1:
            raise ValueError(f"Length must be at least 1, got {length}")
        if start < 0 or start + length > size:
            raise ValueError(
                f"Range {start}..{start + length - 1} is outside "
                f"{I2CDevice(device).name} (0..{size - 1})"
            )

    def read_i2c(
        self,
        device: I2CDevice,
        start: int,
        length: int,
        access: AccessType = AccessType.BARE,
    ) -> bytes:
        """
        Read bytes from one of the board's I2C memories.

        Raises:
            ValueError: If the range does not fit in the device.
        """
        self._check_i2c_range(device, start, length)
        payload = self._request(
            MsgName.I2C_READ,
            PeripheralDataPayload(
                device=I2CDevice(device),
                access=AccessType(access),
                start=start,
                length=length,
            ),
            expect=(PeripheralDataPayload,),
        )
        return payload.data

    def write_i2c(
        self,
        device: I2CDevice,
        start: int,
        data: bytes,
        access: AccessType = AccessType.BARE,
    ) -> int:
        """
        Write bytes to one of the board's I2C memories.

        Returns:
            Number of bytes the device reports written.

        Raises:
            ValueError: If the data does not fit in the device at ``start``.
        """
        self._check_i2c_range(device, start, len(data))
        payload = self._request(
            MsgName.I2C_WRITE,
            PeripheralDataPayload(
                device=I2CDevice(device),
                access=AccessType(access),
                start=start,
                length=len(data),
                data=bytes(data),
            ),
            expect=(PeripheralDataPayload, StatusPayload),
        )
        if isinstance(payload, PeripheralDataPayload) and payload.length:
            return payload.length
        return len(data)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def ram_test(self, test: RamTest) -> DiagnosticResultPayload:
        """
        Run an external SDRAM test.

        Raises:
            DeviceError: The test failed; ``code`` says which check failed.
        """
        test = RamTest(test)
        if test == RamTest.NONE:
            raise ValueError("A RAM test must be selected")
        frame = self.engine.transact(
            MsgName.RAM_TEST,
            DiagnosticResultPayload(test=test),
            done_timeout=self.config.timeouts.ram_test,
            expect=(DiagnosticResultPayload,),
        )
        payload = frame.payload
        if frame.error_code and isinstance(payload, DiagnosticResultPayload):
            raise DeviceError(
                frame.error_code,
                f"RAM test {test.name} at address 0x{payload.address:08X}",
            )
        return self._check(frame, f"RAM test {test.name}", (DiagnosticResultPayload,))

    # -------------------------------------------------------------------------
    # Debug Output
    # -------------------------------------------------------------------------

    def _debug(self, name: MsgName, mask: Optional[DebugModule] = None) -> DebugModule:
        payload = None
        if mask is not None:
            payload = DebugConfigPayload(bitmask=int(mask))
        result = self._request(
            name, payload, expect=(DebugConfigPayload, StatusPayload)
        )
        if isinstance(result, DebugConfigPayload):
            return result.modules
        return DebugModule.NONE

    def get_debug_modules(self) -> DebugModule:
        """Return the debug modules currently enabled on the device."""
        payload = self._request(
            MsgName.DBG_GET_CURRENT, expect=(DebugConfigPayload,)
        )
        return payload.modules

    def set_debug_modules(self, mask: DebugModule) -> DebugModule:
        """Replace the enabled debug modules with ``mask``."""
        return self._debug(MsgName.DBG_SET_CURRENT, mask)

    def enable_debug_modules(self, mask: DebugModule) -> DebugModule:
        """Enable the modules in ``mask``, leaving others untouched."""
        return self._debug(MsgName.DBG_ENABLE, mask)

    def disable_debug_modules(self, mask: DebugModule) -> DebugModule:
        """Disable the modules in ``mask``, leaving others untouched."""
        return self._debug(MsgName.DBG_DISABLE, mask)

    def reset_debug_modules(self) -> DebugModule:
        """Restore the device's default set of debug modules."""
        return self._debug(MsgName.DBG_RESET_DEFAULT)

    def set_debug_output(self, ethernet: bool, serial: bool) -> None:
        """Turn debug output on the ethernet and serial channels on or off."""
        self._debug(MsgName.DBG_ENABLE_ETH if ethernet else MsgName.DBG_DISABLE_ETH)
        self._debug(MsgName.DBG_ENABLE_SER if serial else MsgName.DBG_DISABLE_SER)

    # -------------------------------------------------------------------------
    # Firmware Upgrade
    # -------------------------------------------------------------------------

    def flash_firmware(
        self,
        image: Union[str, Path, FirmwareImage],
        image_type: BootMode = BootMode.APPLICATION,
        progress: Optional[ProgressCallback] = None,
        abort: Optional[AbortCallback] = None,
    ) -> FlashResult:
        """
        Upgrade the DC3 firmware.

        Args:
            image: Path to a firmware file, or an already loaded image.
            image_type: Firmware being replaced. Only APPLICATION is
                supported.
            progress: Called with (bytes_transferred, total) per chunk.
            abort: Checked before each chunk; True cancels the upgrade.

        Returns:
            Packet and byte counts of the completed upgrade.

        Raises:
            FirmwareImageError: The file is missing, misnamed or invalid.
            TransferError: Unsupported image type, mode negotiation failed
                or the upgrade was aborted.
            DeviceError, TimeoutError, ProtocolError: The upgrade failed.
        """
        image_type = BootMode(image_type)
        if image_type == BootMode.BOOTLOADER:
            raise TransferError(
                "Flashing the bootloader is not supported",
                code=ClientErrorCode.UNIMPLEMENTED,
            )
        if image_type != BootMode.APPLICATION:
            raise ValueError(f"Cannot flash a {image_type.label} image")

        if not isinstance(image, FirmwareImage):
            image = FirmwareImage.load(image)

        orchestrator = FlashOrchestrator(
            self.engine, self.config, progress=progress, abort=abort
        )
        return orchestrator.run(image, image_type)
