"""
CLI Error Handling
==================

Maps client exceptions to a message and an exit code, so every dc3cli
command fails the same way.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from dc3_client.errors import CommsError, DeviceError, FirmwareImageError


class ExitCode(IntEnum):
    """Standard exit codes for dc3cli."""
    SUCCESS = 0
    COMMS_ERROR = 1      # Transport, protocol, timeout or transfer error
    INVALID_ARGS = 2     # Invalid arguments or firmware file
    INTERNAL_ERROR = 3   # Unexpected internal error
    DEVICE_ERROR = 4     # The DC3 reported a non-zero error code


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report ``error`` and exit with the matching exit code.

    Device and comms errors are printed as ``FAILED with ERROR: 0x%08x``
    followed by the description, which is what scripts driving dc3cli
    match on.

    Raises:
        SystemExit: Always.
    """
    if isinstance(error, DeviceError):
        click.echo(f"FAILED with ERROR: 0x{error.code:08x}", err=True)
        click.echo(f"  {error}", err=True)
        sys.exit(ExitCode.DEVICE_ERROR)

    elif isinstance(error, FirmwareImageError):
        click.echo(f"FAILED with ERROR: 0x{error.code:08x}", err=True)
        click.echo(f"  {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, CommsError):
        click.echo(f"FAILED with ERROR: 0x{error.code:08x}", err=True)
        click.echo(f"  {error}", err=True)
        sys.exit(ExitCode.COMMS_ERROR)

    elif isinstance(error, (click.BadParameter, ValueError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
