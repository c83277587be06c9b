"""
dc3cli - DC3 Command-Line Interface
===================================

This module implements the command-line interface for the DC3 host
client. Each subcommand opens a connection, runs one device command and
reports the result.

Connection
----------
Use ``--ip`` to reach the board over UDP, or ``--port`` for its serial
console. With neither, the serial port is auto-detected.

Usage Examples
--------------
List available serial ports:
    $ dc3cli ports

Query and change the boot mode:
    $ dc3cli --ip 192.168.1.75 get-mode
    Got back DC3 bootmode: Application with no errors.
    $ dc3cli --ip 192.168.1.75 set-mode Bootloader

Upgrade the application firmware:
    $ dc3cli --ip 192.168.1.75 flash DC3Appl_v01.02_20150428120611.bin
    [==================================================] 100% (54328/54328 bytes)

Read the serial number ROM:
    $ dc3cli --port /dev/ttyUSB0 read-i2c --dev SNROM --start 0 --bytes 16

Control debug output:
    $ dc3cli --ip 192.168.1.75 debug enable ETH FLASH
    $ dc3cli --ip 192.168.1.75 debug get

Exit Codes
----------
0 - Success
1 - Connection, protocol, timeout or transfer error
2 - Invalid arguments or firmware file
3 - Internal error
4 - The DC3 reported an error
"""

import logging
from pathlib import Path
from typing import Callable, Optional

import click

from dc3_client import __version__
from dc3_client.cli.errors import handle_cli_exception
from dc3_client.client import Dc3Client
from dc3_client.comms.messages import AccessType, BootMode, DebugModule, I2CDevice, RamTest
from dc3_client.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    find_dc3_port,
    format_port_list,
    list_serial_ports,
)
from dc3_client.comms.transport import DEFAULT_LOCAL_PORT, DEFAULT_REMOTE_PORT
from dc3_client.config import ClientConfig
from dc3_client.errors import Dc3Error

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the connection options and verbosity, and opens the client.

    Attributes:
        client_factory: Builds the client from this context. Replaced in
            tests to run commands against a simulated board.
    """

    def __init__(self, client_factory: Optional[Callable[["Context"], Dc3Client]] = None) -> None:
        self.ip: Optional[str] = None
        self.remote_port: int = DEFAULT_REMOTE_PORT
        self.local_port: int = DEFAULT_LOCAL_PORT
        self.port: Optional[str] = None
        self.baud: int = DEFAULT_BAUD_RATE
        self.verbose: bool = False
        self.client_factory = client_factory or _open_client

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def open_client(self) -> Dc3Client:
        """Open a client using the connection options."""
        return self.client_factory(self)


def _open_client(ctx: Context) -> Dc3Client:
    config = ClientConfig.from_env()
    if ctx.ip:
        return Dc3Client.open_udp(
            ctx.ip,
            remote_port=ctx.remote_port,
            local_port=ctx.local_port,
            config=config,
        )

    port_device = ctx.port or find_dc3_port()
    if not port_device:
        raise click.BadParameter(
            "No --ip or --port given and no serial port auto-detected. "
            "Use 'dc3cli ports' to find available ports.",
            param_hint="--ip / --port",
        )
    return Dc3Client.open_serial(port_device, baud_rate=ctx.baud, config=config)


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for firmware uploads."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def format_hex(data: bytes, start: int = 0, width: int = 16) -> str:
    """Format bytes as address-prefixed hex rows."""
    lines = []
    for offset in range(0, len(data), width):
        row = data[offset:offset + width]
        lines.append(f"  {start + offset:04X}: " + " ".join(f"{b:02X}" for b in row))
    return "\n".join(lines)


def parse_debug_mask(values: tuple[str, ...]) -> DebugModule:
    """
    Parse debug modules given by name, or a single numeric mask.

    Raises:
        click.BadParameter: If a name is unknown or the mask is invalid.
    """
    if len(values) == 1 and values[0].lower().startswith("0x"):
        try:
            return DebugModule(int(values[0], 16))
        except ValueError:
            raise click.BadParameter(f"Invalid debug mask: {values[0]}") from None
    try:
        return DebugModule.parse(list(values))
    except ValueError as e:
        raise click.BadParameter(str(e)) from None


def format_debug_modules(mask: DebugModule) -> str:
    names = [m.name for m in DebugModule if m and m in mask]
    return f"0x{int(mask):08X} ({', '.join(names) if names else 'none'})"


def _choice(enum_cls: type, exclude: tuple = ()) -> click.Choice:
    return click.Choice(
        [m.name for m in enum_cls if m not in exclude], case_sensitive=False
    )


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "--ip",
    type=str,
    default=None,
    help="DC3 IP address (use UDP)",
)
@click.option(
    "--remote-port",
    type=int,
    default=DEFAULT_REMOTE_PORT,
    help=f"DC3 UDP port (default: {DEFAULT_REMOTE_PORT})",
)
@click.option(
    "--local-port",
    type=int,
    default=DEFAULT_LOCAL_PORT,
    help=f"Local UDP port for replies (default: {DEFAULT_LOCAL_PORT})",
)
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if neither --ip nor --port given)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=str(DEFAULT_BAUD_RATE),
    help=f"Baud rate (default: {DEFAULT_BAUD_RATE})",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="dc3cli")
@pass_context
def main(
    ctx: Context,
    ip: Optional[str],
    remote_port: int,
    local_port: int,
    port: Optional[str],
    baud: str,
    verbose: bool,
) -> None:
    """
    Control a DC3 board over UDP or its serial console.

    Timeouts and flash tuning can be overridden with DC3_* environment
    variables (for example DC3_ACK_TIMEOUT or DC3_SETTLE_DELAY).
    """
    ctx.ip = ip
    ctx.remote_port = remote_port
    ctx.local_port = local_port
    ctx.port = port
    ctx.baud = int(baud)
    ctx.verbose = verbose
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
def ports(detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        dc3cli ports
        dc3cli ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect the DC3 debug USB cable")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_dc3_port()
    if auto_port:
        click.echo(f"\nSuggested port for DC3: {auto_port}")
    else:
        click.echo("\nNo DC3 serial port auto-detected.")


# =============================================================================
# Boot Mode and Version Commands
# =============================================================================

@main.command("get-mode")
@pass_context
def get_mode(ctx: Context) -> None:
    """
    Query the DC3 boot mode.

    Example:
        dc3cli --ip 192.168.1.75 get-mode
    """
    try:
        with ctx.open_client() as dc3:
            mode = dc3.get_boot_mode()
        click.echo(f"Got back DC3 bootmode: {mode.label} with no errors.")
    except (Dc3Error, click.BadParameter) as e:
        handle_cli_exception(e, ctx.verbose)


@main.command("set-mode")
@click.argument(
    "mode",
    type=click.Choice(
        [BootMode.BOOTLOADER.label, BootMode.APPLICATION.label],
        case_sensitive=False,
    ),
)
@pass_context
def set_mode(ctx: Context, mode: str) -> None:
    """
    Switch the DC3 into Bootloader or Application mode.

    The board reboots after answering.

    Example:
        dc3cli --ip 192.168.1.75 set-mode Bootloader
    """
    try:
        with ctx.open_client() as dc3:
            reported = dc3.set_boot_mode(BootMode.from_label(mode))
        click.echo(f"Got back DC3 bootmode: {reported.label} with no errors.")
    except (Dc3Error, click.BadParameter, ValueError) as e:
        handle_cli_exception(e, ctx.verbose)


@main.command()
@pass_context
def version(ctx: Context) -> None:
    """Query the version of the firmware running on the DC3."""
    try:
        with ctx.open_client() as dc3:
            info = dc3.get_version()
        click.echo(f"DC3 firmware {info} with no errors.")
    except (Dc3Error, click.BadParameter) as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Flash Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--type", "image_type",
    type=click.Choice(
        [BootMode.APPLICATION.label, BootMode.BOOTLOADER.label],
        case_sensitive=False,
    ),
    default=BootMode.APPLICATION.label,
    help="Firmware being replaced (default: Application)",
)
@pass_context
def flash(ctx: Context, file: Path, image_type: str) -> None:
    """
    Upgrade the DC3 firmware.

    FILE must follow <Product>_v<MAJOR>.<MINOR>_<YYYYMMDDhhmmss>.bin,
    with "DC3" in the product name. The board is switched into
    Bootloader mode first if needed.

    Example:
        dc3cli --ip 192.168.1.75 flash DC3Appl_v01.02_20150428120611.bin
    """
    try:
        with ctx.open_client() as dc3:
            click.echo(f"Flashing {file.name}...")
            result = dc3.flash_firmware(
                file,
                image_type=BootMode.from_label(image_type),
                progress=progress_bar,
            )
        click.echo(
            f"Flashed {result.bytes_transferred} bytes in "
            f"{result.packets_sent} packets (crc 0x{result.crc32:08X}, "
            f"{result.elapsed:.1f}s) with no errors."
        )
    except (Dc3Error, click.BadParameter, ValueError) as e:
        click.echo()
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# I2C Commands
# =============================================================================

@main.command("read-i2c")
@click.option("--dev", "device", type=_choice(I2CDevice), required=True,
              help="I2C memory to read")
@click.option("--start", type=int, default=0, show_default=True,
              help="First byte address")
@click.option("--bytes", "length", type=int, required=True,
              help="Number of bytes to read")
@click.option("--acc", "access", type=_choice(AccessType, (AccessType.NONE,)),
              default=AccessType.BARE.name, show_default=True,
              help="Device access type")
@pass_context
def read_i2c(ctx: Context, device: str, start: int, length: int, access: str) -> None:
    """
    Read bytes from an I2C memory (EEPROM 128 bytes, SNROM/EUIROM 16).

    Example:
        dc3cli --ip 192.168.1.75 read-i2c --dev EEPROM --start 0 --bytes 16
    """
    dev = I2CDevice[device.upper()]
    try:
        with ctx.open_client() as dc3:
            data = dc3.read_i2c(dev, start, length, AccessType[access.upper()])
        click.echo(f"Read {len(data)} bytes from {dev.name} with no errors:")
        click.echo(format_hex(data, start))
    except (Dc3Error, click.BadParameter, ValueError) as e:
        handle_cli_exception(e, ctx.verbose)


@main.command("write-i2c")
@click.option("--dev", "device", type=_choice(I2CDevice), required=True,
              help="I2C memory to write")
@click.option("--start", type=int, default=0, show_default=True,
              help="First byte address")
@click.option("--acc", "access", type=_choice(AccessType, (AccessType.NONE,)),
              default=AccessType.BARE.name, show_default=True,
              help="Device access type")
@click.argument("hexdata")
@pass_context
def write_i2c(ctx: Context, device: str, start: int, access: str, hexdata: str) -> None:
    """
    Write bytes, given as hex, to an I2C memory.

    Example:
        dc3cli --ip 192.168.1.75 write-i2c --dev EEPROM --start 16 DEADBEEF
    """
    try:
        data = bytes.fromhex(hexdata)
    except ValueError:
        handle_cli_exception(
            click.BadParameter(f"Not a hex string: {hexdata}"), ctx.verbose
        )
    if not data:
        handle_cli_exception(click.BadParameter("No data to write"), ctx.verbose)

    dev = I2CDevice[device.upper()]
    try:
        with ctx.open_client() as dc3:
            written = dc3.write_i2c(dev, start, data, AccessType[access.upper()])
        click.echo(f"Wrote {written} bytes to {dev.name} with no errors.")
    except (Dc3Error, click.BadParameter, ValueError) as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# RAM Test Command
# =============================================================================

@main.command("ram-test")
@click.argument("test", type=_choice(RamTest, (RamTest.NONE,)))
@pass_context
def ram_test(ctx: Context, test: str) -> None:
    """
    Run an external SDRAM test: DATA_BUS, ADDR_BUS or DEV_INT.

    Example:
        dc3cli --ip 192.168.1.75 ram-test DATA_BUS
    """
    selected = RamTest[test.upper()]
    try:
        with ctx.open_client() as dc3:
            dc3.ram_test(selected)
        click.echo(f"RAM test {selected.name} passed with no errors.")
    except (Dc3Error, click.BadParameter, ValueError) as e:
        handle_cli_exception(e, ctx.verbose)


# =============================================================================
# Debug Commands
# =============================================================================

@main.group()
def debug() -> None:
    """
    Control DC3 debug output modules.

    Modules: GEN SER TIME ETH I2C I2C_DEV NOR SDRAM DBG COMM CPLR DB
    FLASH SYS, or a hex mask such as 0x1008.
    """


def _run_debug(ctx: Context, action: Callable[[Dc3Client], DebugModule]) -> None:
    try:
        with ctx.open_client() as dc3:
            mask = action(dc3)
        click.echo(f"Debug modules: {format_debug_modules(mask)} with no errors.")
    except (Dc3Error, click.BadParameter, ValueError) as e:
        handle_cli_exception(e, ctx.verbose)


@debug.command("get")
@pass_context
def debug_get(ctx: Context) -> None:
    """Show the enabled debug modules."""
    _run_debug(ctx, lambda dc3: dc3.get_debug_modules())


@debug.command("set")
@click.argument("modules", nargs=-1, required=True)
@pass_context
def debug_set(ctx: Context, modules: tuple[str, ...]) -> None:
    """Enable exactly MODULES, disabling all others."""
    mask = parse_debug_mask(modules)
    _run_debug(ctx, lambda dc3: dc3.set_debug_modules(mask))


@debug.command("enable")
@click.argument("modules", nargs=-1, required=True)
@pass_context
def debug_enable(ctx: Context, modules: tuple[str, ...]) -> None:
    """Enable MODULES, leaving others untouched."""
    mask = parse_debug_mask(modules)
    _run_debug(ctx, lambda dc3: dc3.enable_debug_modules(mask))


@debug.command("disable")
@click.argument("modules", nargs=-1, required=True)
@pass_context
def debug_disable(ctx: Context, modules: tuple[str, ...]) -> None:
    """Disable MODULES, leaving others untouched."""
    mask = parse_debug_mask(modules)
    _run_debug(ctx, lambda dc3: dc3.disable_debug_modules(mask))


@debug.command("reset")
@pass_context
def debug_reset(ctx: Context) -> None:
    """Restore the default debug modules."""
    _run_debug(ctx, lambda dc3: dc3.reset_debug_modules())


@debug.command("output")
@click.option("--eth/--no-eth", default=True, help="Debug output over ethernet")
@click.option("--ser/--no-ser", default=True, help="Debug output over serial")
@pass_context
def debug_output(ctx: Context, eth: bool, ser: bool) -> None:
    """Turn debug output on or off per channel."""
    try:
        with ctx.open_client() as dc3:
            dc3.set_debug_output(ethernet=eth, serial=ser)
        click.echo(
            f"Debug output: ethernet {'on' if eth else 'off'}, "
            f"serial {'on' if ser else 'off'} with no errors."
        )
    except (Dc3Error, click.BadParameter) as e:
        handle_cli_exception(e, ctx.verbose)


if __name__ == "__main__":
    main()
