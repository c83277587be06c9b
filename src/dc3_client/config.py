"""
DC3 Client Configuration
========================

Timeouts and tuning knobs for the transaction engine and the flash
pipeline. Every value has a default matching the DC3 firmware's own
timing, and every value can be overridden from the environment:

    DC3_ACK_TIMEOUT       seconds to wait for an Acknowledge (2.0)
    DC3_DONE_TIMEOUT      seconds to wait for a simple Completion (2.0)
    DC3_META_TIMEOUT      seconds for the device to accept flash metadata (10.0)
    DC3_PACKET_TIMEOUT    seconds for the device to write one data packet (7.0)
    DC3_RAM_TEST_TIMEOUT  seconds for a RAM diagnostic to finish (10.0)
    DC3_FLASH_TIMEOUT     seconds for an entire firmware upgrade (120.0)
    DC3_CHUNK_SIZE        firmware bytes per data packet (112)
    DC3_SETTLE_DELAY      seconds to wait for a reboot after a mode change (2.7)
    DC3_MODE_RETRIES      mode negotiation attempts before giving up (3)
    DC3_POLL_INTERVAL     inbound queue polling interval in seconds (0.001)
    DC3_QUEUE_CAPACITY    inbound queue size in frames (128)

Usage
-----
    config = ClientConfig.from_env()
    config.settle_delay = 4.0      # slower board
    client = Dc3Client.open_udp("10.0.0.5", config=config)
"""

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Final, Optional

if TYPE_CHECKING:
    from dc3_client.comms.messages import MsgRoute

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_ACK_TIMEOUT: Final[float] = 2.0
DEFAULT_DONE_TIMEOUT: Final[float] = 2.0
DEFAULT_META_TIMEOUT: Final[float] = 10.0
DEFAULT_PACKET_TIMEOUT: Final[float] = 7.0
DEFAULT_RAM_TEST_TIMEOUT: Final[float] = 10.0
DEFAULT_FLASH_TIMEOUT: Final[float] = 120.0

# Keeps a base64-encoded FlashData frame under the 300-byte frame limit
DEFAULT_CHUNK_SIZE: Final[int] = 112

# Time for the DC3 to reboot into the requested mode
DEFAULT_SETTLE_DELAY: Final[float] = 2.7

DEFAULT_MODE_RETRIES: Final[int] = 3
DEFAULT_POLL_INTERVAL: Final[float] = 0.001

# Frames held by the inbound queue before new ones are dropped
DEFAULT_QUEUE_CAPACITY: Final[int] = 128


def _env_value(name: str, convert: Callable[[str], object]) -> Optional[object]:
    """Read and convert an environment variable, or None if unset."""
    if (raw := os.environ.get(name)) is None or raw.strip() == "":
        return None
    try:
        return convert(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


# =============================================================================
# Timeouts
# =============================================================================

@dataclass
class Timeouts:
    """
    Wait budgets, in seconds.

    Attributes:
        ack: Wait for the Acknowledge of any request
        simple: Wait for the Completion of quick commands (mode, I2C, debug)
        meta: Wait for the device to accept firmware metadata (it erases flash)
        packet: Wait for the device to write one firmware packet
        ram_test: Wait for a RAM diagnostic to finish
        total_flash: Upper bound for an entire firmware upgrade
    """

    ack: float = DEFAULT_ACK_TIMEOUT
    simple: float = DEFAULT_DONE_TIMEOUT
    meta: float = DEFAULT_META_TIMEOUT
    packet: float = DEFAULT_PACKET_TIMEOUT
    ram_test: float = DEFAULT_RAM_TEST_TIMEOUT
    total_flash: float = DEFAULT_FLASH_TIMEOUT

    def __post_init__(self) -> None:
        for name in ("ack", "simple", "meta", "packet", "ram_test", "total_flash"):
            if getattr(self, name) <= 0:
                raise ValueError(
                    f"Timeout '{name}' must be positive, got {getattr(self, name)}"
                )

    @classmethod
    def from_env(cls) -> "Timeouts":
        """Create Timeouts from DC3_*_TIMEOUT environment variables."""
        timeouts = cls()
        for attr, var in (
            ("ack", "DC3_ACK_TIMEOUT"),
            ("simple", "DC3_DONE_TIMEOUT"),
            ("meta", "DC3_META_TIMEOUT"),
            ("packet", "DC3_PACKET_TIMEOUT"),
            ("ram_test", "DC3_RAM_TEST_TIMEOUT"),
            ("total_flash", "DC3_FLASH_TIMEOUT"),
        ):
            if (value := _env_value(var, float)) is not None:
                setattr(timeouts, attr, value)
        timeouts.__post_init__()
        return timeouts


# =============================================================================
# Client Configuration
# =============================================================================

@dataclass
class ClientConfig:
    """
    Configuration for a DC3 client connection.

    Attributes:
        timeouts: Wait budgets for each kind of exchange
        chunk_size: Firmware bytes per FlashData packet
        settle_delay: Seconds to wait after asking the DC3 to change mode
        mode_retries: Mode negotiation attempts before giving up
        poll_interval: Sleep between inbound queue polls
        queue_capacity: Frames the inbound queue holds before dropping
        route: Route stamped on outgoing requests (None = transport default)
    """

    timeouts: Timeouts = field(default_factory=Timeouts)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    settle_delay: float = DEFAULT_SETTLE_DELAY
    mode_retries: int = DEFAULT_MODE_RETRIES
    poll_interval: float = DEFAULT_POLL_INTERVAL
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    route: Optional["MsgRoute"] = None

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.settle_delay < 0:
            raise ValueError(
                f"settle_delay cannot be negative, got {self.settle_delay}"
            )
        if self.mode_retries < 1:
            raise ValueError(
                f"mode_retries must be at least 1, got {self.mode_retries}"
            )
        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )
        if self.queue_capacity < 1:
            raise ValueError(
                f"queue_capacity must be positive, got {self.queue_capacity}"
            )

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Create ClientConfig from environment variables.

        Unset variables keep their defaults.

        Raises:
            ValueError: If a variable is set to an unparseable or out of
                range value. The message names the variable.
        """
        config = cls(timeouts=Timeouts.from_env())

        if (chunk_size := _env_value("DC3_CHUNK_SIZE", int)) is not None:
            config.chunk_size = chunk_size
        if (settle := _env_value("DC3_SETTLE_DELAY", float)) is not None:
            config.settle_delay = settle
        if (retries := _env_value("DC3_MODE_RETRIES", int)) is not None:
            config.mode_retries = retries
        if (poll := _env_value("DC3_POLL_INTERVAL", float)) is not None:
            config.poll_interval = poll
        if (capacity := _env_value("DC3_QUEUE_CAPACITY", int)) is not None:
            config.queue_capacity = capacity

        config.__post_init__()
        return config
