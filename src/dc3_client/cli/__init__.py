"""
DC3 Client Command-Line Interface
=================================

This package provides the ``dc3cli`` tool: a Click-based front end to
``Dc3Client`` with one subcommand per device command.
"""

__all__ = ["dc3cli"]
