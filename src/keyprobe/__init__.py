"""
keyprobe - see the bytes your terminal sends.

This package puts the terminal into raw mode, reads input one byte at a
time, and prints each byte, restoring the terminal afterwards.

Main classes:
- TerminalSession: Raw-mode session that restores the terminal exactly once
- TerminalConfig: Snapshot of terminal settings with named capability flags
- RawInputLoop: Reads and prints bytes until the quit byte arrives
"""

__version__ = "0.1.0"

from .reader import InputReadError, LoopStats, RawInputLoop, format_byte, is_control_byte
from .terminal import (
    DeviceConfigurationError,
    TerminalConfig,
    TerminalError,
    TerminalSession,
    get_config,
    make_raw,
    set_config,
)

__all__ = [
    "__version__",
    # Terminal mode controller
    "TerminalSession",
    "TerminalConfig",
    "get_config",
    "set_config",
    "make_raw",
    # Input loop
    "RawInputLoop",
    "LoopStats",
    "format_byte",
    "is_control_byte",
    # Errors
    "TerminalError",
    "DeviceConfigurationError",
    "InputReadError",
]
