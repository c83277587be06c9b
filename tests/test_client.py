"""
Tests for the DC3 Client
========================

Every command runs end to end against the simulated board: request
encoding, the transaction, and the conversion of the answer.
"""

import pytest

from dc3_client.client import Dc3Client
from dc3_client.comms.firmware import FirmwareImage
from dc3_client.comms.flash import FlashResult
from dc3_client.comms.messages import (
    AccessType,
    BootMode,
    DebugModule,
    I2CDevice,
    MsgName,
    RamTest,
    StatusPayload,
    VersionPayload,
)
from dc3_client.error_codes import ClientErrorCode, ErrorCode
from dc3_client.errors import (
    DeviceError,
    FirmwareNotFoundError,
    InvalidFilenameError,
    InvalidFilenameFormatError,
    TransferError,
    UnexpectedPayloadError,
)

DEFAULT_DEBUG_MODULES = DebugModule.GEN | DebugModule.SER | DebugModule.FLASH


# =============================================================================
# Boot Mode and Version
# =============================================================================

class TestBootMode:
    """Tests for boot mode queries and changes."""

    def test_get_boot_mode(self, client, device):
        assert client.get_boot_mode() == BootMode.APPLICATION
        device.mode = BootMode.BOOTLOADER
        assert client.get_boot_mode() == BootMode.BOOTLOADER

    def test_set_boot_mode(self, client, device):
        assert client.set_boot_mode(BootMode.BOOTLOADER) == BootMode.BOOTLOADER
        assert device.mode == BootMode.BOOTLOADER
        assert device.requests[0].payload.mode == BootMode.BOOTLOADER

    @pytest.mark.parametrize("mode", [BootMode.NONE, BootMode.SYS_ROM_BOOT])
    def test_set_boot_mode_rejects_other_modes(self, client, device, mode):
        """Only Bootloader and Application can be requested."""
        with pytest.raises(ValueError, match="Cannot request"):
            client.set_boot_mode(mode)
        assert device.requests == []

    def test_unsupported_in_bootloader(self, client, device):
        """A device error code reaches the caller untouched."""
        device.errors[MsgName.GET_BOOT_MODE] = ErrorCode.MSG_UNSUPPORTED_IN_BOOTLOADER
        with pytest.raises(DeviceError) as exc_info:
            client.get_boot_mode()
        assert exc_info.value.code == 0x000A0003
        assert exc_info.value.operation == "GET_BOOT_MODE"
        assert "MSG_UNSUPPORTED_IN_BOOTLOADER" in str(exc_info.value)

    def test_get_version(self, client):
        version = client.get_version()
        assert isinstance(version, VersionPayload)
        assert (version.major, version.minor) == (1, 2)
        assert version.build_datetime == "20150428120611"

    def test_bare_status_rejected(self, client, device):
        """A result-less status where a result is required is a protocol error."""
        device.respond = lambda request: StatusPayload()
        with pytest.raises(UnexpectedPayloadError):
            client.get_boot_mode()


# =============================================================================
# I2C Memories
# =============================================================================

class TestI2C:
    """Tests for reading and writing the board's I2C memories."""

    def test_read(self, client, device):
        data = client.read_i2c(I2CDevice.EEPROM, 16, 8)
        assert data == bytes(range(16, 24))
        request = device.requests[0].payload
        assert request.device == I2CDevice.EEPROM
        assert request.access == AccessType.BARE
        assert (request.start, request.length) == (16, 8)

    def test_read_whole_device(self, client):
        assert client.read_i2c(I2CDevice.SNROM, 0, 16) == bytes(range(16))

    def test_access_type_sent(self, client, device):
        client.read_i2c(I2CDevice.EUIROM, 0, 4, access=AccessType.QPC)
        assert device.requests[0].payload.access == AccessType.QPC

    def test_write(self, client, device):
        written = client.write_i2c(I2CDevice.EEPROM, 120, b"\xde\xad\xbe\xef")
        assert written == 4
        assert device.memories[I2CDevice.EEPROM][120:124] == b"\xde\xad\xbe\xef"

    @pytest.mark.parametrize("device_type,start,length", [
        (I2CDevice.EEPROM, 120, 9),
        (I2CDevice.SNROM, 0, 17),
        (I2CDevice.EUIROM, 16, 1),
        (I2CDevice.EEPROM, 0, 0),
        (I2CDevice.EEPROM, -1, 4),
    ])
    def test_read_out_of_range(self, client, device, device_type, start, length):
        """Ranges outside the memory are rejected before anything is sent."""
        with pytest.raises(ValueError):
            client.read_i2c(device_type, start, length)
        assert device.requests == []

    def test_write_out_of_range(self, client, device):
        with pytest.raises(ValueError, match="outside SNROM"):
            client.write_i2c(I2CDevice.SNROM, 10, bytes(8))
        assert device.requests == []

    def test_write_nothing(self, client):
        with pytest.raises(ValueError, match="at least 1"):
            client.write_i2c(I2CDevice.EEPROM, 0, b"")


# =============================================================================
# Diagnostics
# =============================================================================

class TestRamTest:
    """Tests for the external SDRAM diagnostics."""

    def test_passes(self, client, device):
        result = client.ram_test(RamTest.DATA_BUS)
        assert result.test == RamTest.DATA_BUS
        assert result.error_code == 0
        assert device.requests[0].payload.test == RamTest.DATA_BUS

    def test_failure_reports_code(self, client, device):
        device.errors[MsgName.RAM_TEST] = 0x00080001
        with pytest.raises(DeviceError, match="ADDR_BUS at address 0x00000000") as exc_info:
            client.ram_test(RamTest.ADDR_BUS)
        assert exc_info.value.code == 0x00080001

    def test_no_test_selected(self, client, device):
        with pytest.raises(ValueError, match="must be selected"):
            client.ram_test(RamTest.NONE)
        assert device.requests == []


# =============================================================================
# Debug Output
# =============================================================================

class TestDebugModules:
    """Tests for debug module control."""

    def test_get(self, client):
        assert client.get_debug_modules() == DEFAULT_DEBUG_MODULES

    def test_set(self, client, device):
        mask = DebugModule.ETH | DebugModule.NOR
        assert client.set_debug_modules(mask) == mask
        assert device.debug_mask == mask
        assert device.requests[0].payload.bitmask == 0x48

    def test_enable(self, client):
        result = client.enable_debug_modules(DebugModule.ETH)
        assert result == DEFAULT_DEBUG_MODULES | DebugModule.ETH

    def test_disable(self, client):
        result = client.disable_debug_modules(DebugModule.SER)
        assert result == DebugModule.GEN | DebugModule.FLASH

    def test_reset(self, client, device):
        client.set_debug_modules(DebugModule.SYS)
        assert client.reset_debug_modules() == DEFAULT_DEBUG_MODULES
        assert device.requests[-1].payload is None

    def test_output_channels(self, client, device):
        client.set_debug_output(ethernet=False, serial=True)
        assert device.names == [MsgName.DBG_DISABLE_ETH, MsgName.DBG_ENABLE_SER]
        assert device.eth_output is False
        assert device.ser_output is True


# =============================================================================
# Firmware Upgrade
# =============================================================================

class TestFlashFirmware:
    """Tests for flash_firmware."""

    def test_from_path(self, client, device, firmware_file):
        result = client.flash_firmware(firmware_file)
        assert isinstance(result, FlashResult)
        assert result.bytes_transferred == 1000
        assert result.packets_sent == 9
        assert device.mode == BootMode.BOOTLOADER
        assert b"".join(p.data for p in device.flash_packets) == firmware_file.read_bytes()

    def test_from_image(self, client, device):
        device.mode = BootMode.BOOTLOADER
        image = FirmwareImage.from_bytes("DC3Appl_v02.00_20160101000000.bin", bytes(50))
        result = client.flash_firmware(image)
        assert result.packets_sent == 1
        assert device.flash_meta.version_major == 2

    def test_progress_callback(self, client, device, firmware_file):
        calls = []
        client.flash_firmware(firmware_file, progress=lambda done, total: calls.append(done))
        assert len(calls) == 9
        assert calls[-1] == 1000

    def test_bootloader_image_unsupported(self, client, device, firmware_file):
        with pytest.raises(TransferError) as exc_info:
            client.flash_firmware(firmware_file, image_type=BootMode.BOOTLOADER)
        assert exc_info.value.code == ClientErrorCode.UNIMPLEMENTED
        assert device.requests == []

    def test_other_image_type(self, client, firmware_file):
        with pytest.raises(ValueError):
            client.flash_firmware(firmware_file, image_type=BootMode.SYS_ROM_BOOT)

    def test_bad_filename(self, client, device, tmp_path):
        path = tmp_path / "foo.bin"
        path.write_bytes(bytes(10))
        with pytest.raises(InvalidFilenameError):
            client.flash_firmware(path)
        assert device.requests == []

    def test_oversized_version_rejected_before_talking(self, client, device, tmp_path):
        path = tmp_path / "DC3Appl_v99999999999.02_20150428120611.bin"
        path.write_bytes(bytes(10))
        with pytest.raises(InvalidFilenameFormatError):
            client.flash_firmware(path)
        assert device.requests == []

    def test_missing_file(self, client, tmp_path):
        with pytest.raises(FirmwareNotFoundError):
            client.flash_firmware(tmp_path / "DC3Appl_v01.02_20150428120611.bin")

    def test_packet_crc_rejected(self, client, device, firmware_file):
        device.fail_packet = (2, ErrorCode.FLASH_INVALID_FW_PACKET_CRC)
        with pytest.raises(DeviceError) as exc_info:
            client.flash_firmware(firmware_file)
        assert exc_info.value.code == 0x00010012


# =============================================================================
# Lifetime
# =============================================================================

class TestLifetime:
    """Tests for opening and closing a client."""

    def test_context_manager_closes(self, connection, fast_config):
        with Dc3Client(connection, fast_config) as dc3:
            assert dc3.connection.is_open
        assert not connection.is_open

    def test_engine_uses_config(self, client, fast_config):
        assert client.engine.ack_timeout == fast_config.timeouts.ack
        assert client.engine.done_timeout == fast_config.timeouts.simple
