"""
Tests for the dc3cli Command-Line Interface
===========================================

Commands run through click's CliRunner with a client factory that
connects to the simulated board instead of a real DC3.
"""

import click
import pytest
from click.testing import CliRunner

from dc3_client.cli.dc3cli import Context, format_hex, main, parse_debug_mask
from dc3_client.cli.errors import ExitCode
from dc3_client.client import Dc3Client
from dc3_client.comms.connection import Connection
from dc3_client.comms.messages import BootMode, DebugModule, I2CDevice, MsgName
from dc3_client.error_codes import ErrorCode


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, transport, fast_config):
    """Run dc3cli against the simulated board."""
    def factory(ctx):
        return Dc3Client(Connection(transport), fast_config)

    def run(*args):
        return runner.invoke(main, list(args), obj=Context(client_factory=factory))
    return run


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:
    """Tests for CLI formatting and parsing helpers."""

    def test_format_hex(self):
        text = format_hex(bytes(range(20)), start=0x10)
        lines = text.splitlines()
        assert lines[0] == "  0010: " + " ".join(f"{b:02X}" for b in range(16))
        assert lines[1] == "  0020: 10 11 12 13"

    def test_parse_debug_names(self):
        assert parse_debug_mask(("eth", "FLASH")) == DebugModule.ETH | DebugModule.FLASH

    def test_parse_debug_hex(self):
        assert parse_debug_mask(("0x1008",)) == DebugModule.ETH | DebugModule.FLASH

    def test_parse_debug_unknown(self):
        with pytest.raises(click.BadParameter, match="BOGUS"):
            parse_debug_mask(("BOGUS",))


# =============================================================================
# Commands
# =============================================================================

class TestModeCommands:
    """Tests for get-mode, set-mode and version."""

    def test_get_mode(self, invoke):
        result = invoke("get-mode")
        assert result.exit_code == 0
        assert "Got back DC3 bootmode: Application with no errors." in result.output

    def test_set_mode(self, invoke, device):
        result = invoke("set-mode", "bootloader")
        assert result.exit_code == 0
        assert "Got back DC3 bootmode: Bootloader with no errors." in result.output
        assert device.mode == BootMode.BOOTLOADER

    def test_set_mode_rejects_other_modes(self, invoke, device):
        result = invoke("set-mode", "SysRomBoot")
        assert result.exit_code == 2
        assert device.requests == []

    def test_device_error(self, invoke, device):
        """A device error prints the code and exits with the device error status."""
        device.errors[MsgName.GET_BOOT_MODE] = ErrorCode.MSG_UNSUPPORTED_IN_BOOTLOADER
        result = invoke("get-mode")
        assert result.exit_code == ExitCode.DEVICE_ERROR
        assert "FAILED with ERROR: 0x000a0003" in result.output

    def test_timeout(self, invoke, device):
        device.drop_ack.add(MsgName.GET_BOOT_MODE)
        result = invoke("get-mode")
        assert result.exit_code == ExitCode.COMMS_ERROR
        assert "FAILED with ERROR: 0x00f00002" in result.output

    def test_version(self, invoke):
        result = invoke("version")
        assert result.exit_code == 0
        assert "DC3 firmware v01.02 built 20150428120611" in result.output
        assert "with no errors." in result.output


class TestFlashCommand:
    """Tests for the flash command."""

    def test_flash(self, invoke, device, firmware_file):
        result = invoke("flash", str(firmware_file))
        assert result.exit_code == 0, result.output
        assert "100% (1000/1000 bytes)" in result.output
        assert "Flashed 1000 bytes in 9 packets" in result.output
        assert len(device.flash_packets) == 9

    def test_bad_filename(self, invoke, device, tmp_path):
        path = tmp_path / "foo.bin"
        path.write_bytes(bytes(10))
        result = invoke("flash", str(path))
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "FAILED with ERROR: 0x00f00011" in result.output

    def test_bootloader_unsupported(self, invoke, firmware_file):
        result = invoke("flash", "--type", "Bootloader", str(firmware_file))
        assert result.exit_code == ExitCode.COMMS_ERROR
        assert "FAILED with ERROR: 0xfffffffe" in result.output

    def test_packet_rejected(self, invoke, device, firmware_file):
        device.fail_packet = (3, ErrorCode.FLASH_INVALID_FW_PACKET_CRC)
        result = invoke("flash", str(firmware_file))
        assert result.exit_code == ExitCode.DEVICE_ERROR
        assert "FLASH_INVALID_FW_PACKET_CRC" in result.output


class TestI2CCommands:
    """Tests for read-i2c and write-i2c."""

    def test_read(self, invoke):
        result = invoke("read-i2c", "--dev", "snrom", "--start", "0", "--bytes", "4")
        assert result.exit_code == 0
        assert "Read 4 bytes from SNROM with no errors:" in result.output
        assert "  0000: 00 01 02 03" in result.output

    def test_read_out_of_range(self, invoke, device):
        result = invoke("read-i2c", "--dev", "EUIROM", "--start", "10", "--bytes", "10")
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert device.requests == []

    def test_write(self, invoke, device):
        result = invoke("write-i2c", "--dev", "EEPROM", "--start", "16", "DEADBEEF")
        assert result.exit_code == 0
        assert "Wrote 4 bytes to EEPROM with no errors." in result.output
        assert device.memories[I2CDevice.EEPROM][16:20] == b"\xde\xad\xbe\xef"

    def test_write_bad_hex(self, invoke, device):
        result = invoke("write-i2c", "--dev", "EEPROM", "XYZ")
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "Not a hex string" in result.output
        assert device.requests == []


class TestDiagnosticCommands:
    """Tests for ram-test and the debug group."""

    def test_ram_test(self, invoke):
        result = invoke("ram-test", "DATA_BUS")
        assert result.exit_code == 0
        assert "RAM test DATA_BUS passed with no errors." in result.output

    def test_ram_test_failure(self, invoke, device):
        device.errors[MsgName.RAM_TEST] = 0x000B0001
        result = invoke("ram-test", "dev_int")
        assert result.exit_code == ExitCode.DEVICE_ERROR
        assert "FAILED with ERROR: 0x000b0001" in result.output

    def test_debug_get(self, invoke):
        result = invoke("debug", "get")
        assert result.exit_code == 0
        assert "Debug modules: 0x00001003 (GEN, SER, FLASH) with no errors." in result.output

    def test_debug_enable(self, invoke, device):
        result = invoke("debug", "enable", "ETH")
        assert result.exit_code == 0
        assert DebugModule.ETH in device.debug_mask

    def test_debug_set_hex(self, invoke, device):
        result = invoke("debug", "set", "0x40")
        assert result.exit_code == 0
        assert device.debug_mask == DebugModule.NOR

    def test_debug_unknown_module(self, invoke, device):
        result = invoke("debug", "disable", "BOGUS")
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert device.requests == []

    def test_debug_output(self, invoke, device):
        result = invoke("debug", "output", "--no-ser")
        assert result.exit_code == 0
        assert device.names == [MsgName.DBG_ENABLE_ETH, MsgName.DBG_DISABLE_SER]
        assert "serial off" in result.output


class TestConnectionOptions:
    """Tests for how the connection is chosen."""

    def test_options_reach_context(self, runner):
        seen = {}

        def factory(ctx):
            seen.update(ip=ctx.ip, remote_port=ctx.remote_port, baud=ctx.baud)
            raise click.BadParameter("stop here")

        result = runner.invoke(
            main,
            ["--ip", "10.0.0.5", "--remote-port", "1600", "get-mode"],
            obj=Context(client_factory=factory),
        )
        assert seen == {"ip": "10.0.0.5", "remote_port": 1600, "baud": 115200}
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_version_option(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "dc3cli" in result.output
