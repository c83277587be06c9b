"""
DC3 Flash Orchestrator
======================

Drives a complete firmware upgrade through the transaction engine.

Pipeline
--------
    NEGOTIATE_MODE ──> SEND_META ──> SEND_CHUNK (repeated) ──> DONE
           │               │               │
           └───────────────┴───────────────┴──> FAILED

**NEGOTIATE_MODE**
    Query the boot mode. If the DC3 is not in Bootloader mode, ask it to
    switch, wait for it to reboot (settle delay, 2.7 s by default), and
    query again. Gives up after a fixed number of attempts (3).

**SEND_META**
    Announce the image: type, whole-image CRC-32, version, size, packet
    count and build datetime. The DC3 erases its application sector
    before answering, hence the long completion timeout.

**SEND_CHUNK**
    Send each chunk as a FlashData payload with a 1-based sequence number
    and its own CRC-32, one transaction per chunk. The loop ends when
    every byte of the image has been acknowledged by the device.

Failure Semantics
-----------------
Only mode negotiation retries. Any device error, timeout or protocol
error during SEND_META or SEND_CHUNK aborts the upgrade immediately; a
chunk is never re-sent and a partial upgrade is never resumed. Starting
again runs the whole pipeline from NEGOTIATE_MODE.

Cancellation is cooperative: an ``abort`` callable is checked before
each chunk.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from dc3_client.comms.firmware import FirmwareImage
from dc3_client.comms.messages import (
    BootMode,
    BootModePayload,
    Frame,
    FlashDataPayload,
    FlashMetaPayload,
    MsgName,
)
from dc3_client.comms.transaction import TransactionEngine
from dc3_client.config import ClientConfig
from dc3_client.errors import (
    DeviceError,
    FlashAbortedError,
    ModeNegotiationError,
    TimeoutError,
    TransferError,
    UnexpectedPayloadError,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Progress callback: (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]

# Abort check: return True to cancel before the next chunk
AbortCallback = Callable[[], bool]


class FlashState(Enum):
    """Flash pipeline states."""

    IDLE = "idle"
    NEGOTIATE_MODE = "negotiate_mode"
    SEND_META = "send_meta"
    SEND_CHUNK = "send_chunk"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class FlashResult:
    """
    Outcome of a successful upgrade.

    Attributes:
        packets_sent: Number of FlashData transactions completed
        bytes_transferred: Image bytes acknowledged by the device
        crc32: Whole-image CRC-32 announced in the metadata
        mode_attempts: Mode negotiation attempts used
        elapsed: Wall-clock seconds for the whole pipeline
    """

    packets_sent: int
    bytes_transferred: int
    crc32: int
    mode_attempts: int
    elapsed: float


class FlashOrchestrator:
    """
    Firmware upgrade state machine.

    Args:
        engine: Transaction engine for the target connection.
        config: Timeouts, chunk size, settle delay and retry count.
        progress: Called with (bytes_transferred, total) after each chunk.
        abort: Checked before each chunk; True cancels the upgrade.
        sleep: Used for the reboot settle delay (injectable for tests).
        clock: Monotonic time source for the overall time limit.

    Attributes:
        state: Current pipeline state
        bytes_transferred: Bytes acknowledged so far in the current run
        packets_sent: Chunks acknowledged so far in the current run

    Example:
        orchestrator = FlashOrchestrator(engine, ClientConfig())
        result = orchestrator.run(FirmwareImage.load(path))
        print(f"{result.packets_sent} packets in {result.elapsed:.1f}s")
    """

    def __init__(
        self,
        engine: TransactionEngine,
        config: Optional[ClientConfig] = None,
        progress: Optional[ProgressCallback] = None,
        abort: Optional[AbortCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.config = config or ClientConfig()
        self.progress = progress
        self.abort = abort
        self._sleep = sleep
        self._clock = clock
        self.state = FlashState.IDLE
        self.bytes_transferred = 0
        self.packets_sent = 0

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def run(
        self,
        image: FirmwareImage,
        image_type: BootMode = BootMode.APPLICATION,
    ) -> FlashResult:
        """
        Flash ``image`` onto the device.

        Raises:
            ModeNegotiationError: Device never reported Bootloader mode.
            DeviceError: Device rejected the metadata or a chunk.
            AckTimeoutError / DoneTimeoutError: Device stopped answering.
            TimeoutError: The overall flash time limit elapsed.
            FlashAbortedError: The abort callable returned True.
            ProtocolError: Any protocol violation.
        """
        self.bytes_transferred = 0
        self.packets_sent = 0
        start = self._clock()
        deadline = start + self.config.timeouts.total_flash

        try:
            self.state = FlashState.NEGOTIATE_MODE
            attempts = self.negotiate_mode()

            self.state = FlashState.SEND_META
            self.send_meta(image, image_type)

            self.state = FlashState.SEND_CHUNK
            self.send_chunks(image, deadline)
        except Exception as e:
            logger.error("Flash failed during %s: %s", self.state.value, e)
            self.state = FlashState.FAILED
            raise

        self.state = FlashState.DONE
        elapsed = self._clock() - start
        logger.info(
            "Flashed %d bytes in %d packets (%.1fs)",
            self.bytes_transferred, self.packets_sent, elapsed,
        )
        return FlashResult(
            packets_sent=self.packets_sent,
            bytes_transferred=self.bytes_transferred,
            crc32=image.checksum(),
            mode_attempts=attempts,
            elapsed=elapsed,
        )

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def negotiate_mode(self) -> int:
        """
        Get the device into Bootloader mode.

        Returns:
            The attempt number on which Bootloader mode was confirmed.

        Raises:
            ModeNegotiationError: Not in Bootloader mode after
                ``config.mode_retries`` queries.
            DeviceError: The device reported an error.
        """
        retries = self.config.mode_retries
        mode = BootMode.NONE

        for attempt in range(1, retries + 1):
            mode = self._boot_mode_transaction(MsgName.GET_BOOT_MODE)
            if mode == BootMode.BOOTLOADER:
                logger.info("DC3 in Bootloader mode (attempt %d)", attempt)
                return attempt

            logger.info(
                "DC3 in %s mode, attempt %d/%d", mode.label, attempt, retries
            )
            if attempt < retries:
                self._boot_mode_transaction(
                    MsgName.SET_BOOT_MODE, BootMode.BOOTLOADER
                )
                logger.info(
                    "Waiting %.1fs for DC3 to reboot", self.config.settle_delay
                )
                self._sleep(self.config.settle_delay)

        raise ModeNegotiationError(retries, mode)

    def send_meta(self, image: FirmwareImage, image_type: BootMode) -> None:
        """Announce the image and wait for the device to accept it."""
        meta = FlashMetaPayload(
            image_type=image_type,
            crc32=image.checksum(),
            version_major=image.version_major,
            version_minor=image.version_minor,
            size=image.size,
            packet_count=image.packet_count(self.config.chunk_size),
            build_datetime=image.build_datetime,
        )
        logger.info(
            "Sending metadata: %d bytes, %d packets, crc 0x%08X",
            meta.size, meta.packet_count, meta.crc32,
        )
        frame = self.engine.transact(
            MsgName.FLASH, meta, done_timeout=self.config.timeouts.meta
        )
        self._check(frame, "Flash metadata")

    def send_chunks(self, image: FirmwareImage, deadline: Optional[float] = None) -> None:
        """
        Send every chunk of ``image``, one transaction per chunk.

        The loop runs until the device has acknowledged ``image.size``
        bytes; an exactly-full last chunk ends it just like a short one.
        """
        chunk_size = self.config.chunk_size
        total = image.size
        image.rewind()
        sequence = 0

        while self.bytes_transferred < total:
            if self.abort is not None and self.abort():
                raise FlashAbortedError(
                    f"Flash aborted after {self.bytes_transferred} of {total} bytes"
                )
            if deadline is not None and self._clock() >= deadline:
                raise TimeoutError(
                    stage="flash", timeout=self.config.timeouts.total_flash
                )

            data, crc = image.next_chunk(chunk_size)
            if not data:
                raise TransferError(
                    f"Image exhausted at {self.bytes_transferred} of {total} bytes"
                )
            sequence += 1

            frame = self.engine.transact(
                MsgName.FLASH,
                FlashDataPayload(sequence=sequence, data=data, crc32=crc),
                done_timeout=self.config.timeouts.packet,
            )
            self._check(frame, f"Flash packet {sequence}")

            self.packets_sent = sequence
            self.bytes_transferred += len(data)
            logger.debug(
                "Packet %d: %d bytes, %d/%d total",
                sequence, len(data), self.bytes_transferred, total,
            )
            if self.progress is not None:
                self.progress(self.bytes_transferred, total)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _boot_mode_transaction(
        self, name: MsgName, mode: BootMode = BootMode.NONE
    ) -> BootMode:
        payload = BootModePayload(mode=mode) if name == MsgName.SET_BOOT_MODE else None
        frame = self.engine.transact(
            name, payload, done_timeout=self.config.timeouts.simple
        )
        self._check(frame, name.name)
        if not isinstance(frame.payload, BootModePayload):
            raise UnexpectedPayloadError(
                f"{name.name} answered with {type(frame.payload).__name__}"
            )
        return frame.payload.mode

    @staticmethod
    def _check(frame: Frame, operation: str) -> None:
        if frame.error_code:
            raise DeviceError(frame.error_code, operation)
