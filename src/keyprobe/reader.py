"""
Raw input loop.

This module reads the terminal one byte at a time and prints what arrived.
The loop is a simple concept:

1. Ask read() for exactly one byte
2. read() returns when a byte arrives, or when the VTIME timeout elapses
3. Print the byte's decimal value, plus the character if it is printable
4. Stop on the quit byte, otherwise go back to step 1

It shows how keypresses translate into bytes. Most keys are their ASCII
code, Ctrl-A through Ctrl-Z are 1-26, Backspace is 127, and arrow keys send
multi-byte escape sequences starting with 27 (printed here byte by byte).
"""

import errno
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Callable

from .terminal import TerminalError

logger = logging.getLogger(__name__)

DEFAULT_QUIT_BYTE = ord("q")


class InputReadError(TerminalError):
    """Raised when read() fails with anything other than EAGAIN."""

    pass


def is_control_byte(value: int) -> bool:
    """
    Check whether a byte is a control character.

    ASCII codes 0-31 and 127 are control characters; 32-126 are printable.
    Bytes 128-255 are not control characters.
    """
    return 0 <= value <= 31 or value == 127


def format_byte(value: int) -> bytes:
    """
    Render a byte the way the loop prints it.

    Control bytes print as their decimal value only; everything else prints
    as "<decimal> ('<char>')". The character is the raw byte itself. Output
    post-processing is off in raw mode, so every line ends with "\\r\\n".

    Args:
        value: The byte value (0-255).

    Returns:
        The encoded line.
    """
    if not 0 <= value <= 255:
        raise ValueError(f"Not a byte value: {value}")

    if is_control_byte(value):
        return b"%d\r\n" % value
    return b"%d ('%c')\r\n" % (value, value)


@dataclass
class LoopStats:
    """Execution statistics returned by RawInputLoop.run()."""

    bytes_read: int = 0
    timeouts: int = 0
    reason: str | None = None


class RawInputLoop:
    """
    Reads and classifies input bytes until the quit byte arrives.

    The loop has two states: reading and terminated. It terminates when the
    quit byte is read or, in the blocking variant, when read() reports end of
    input. Every other read (including a timed-out one) keeps it reading.

    Usage:
        with TerminalSession(sys.stdin) as session:
            loop = RawInputLoop(session.fd, sys.stdout.buffer)
            stats = loop.run()
    """

    def __init__(
        self,
        fd: int,
        output: BinaryIO,
        quit_byte: int = DEFAULT_QUIT_BYTE,
        blocking: bool = False,
        read: Callable[[int, int], bytes] = os.read,
    ):
        """
        Create an input loop.

        Args:
            fd: File descriptor to read from (the terminal).
            output: Binary stream to write classified bytes to.
            quit_byte: Byte value that ends the loop.
            blocking: True if the terminal was configured for blocking reads
                      (VMIN=1, VTIME=0). A zero-byte read then means end of
                      input. With a read timeout, a zero-byte read just means
                      nothing was typed in time.
            read: Function with the os.read() signature. Tests pass a fake.
        """
        if not 0 <= quit_byte <= 255:
            raise ValueError(f"quit_byte must be a byte value, got {quit_byte}")

        self._fd = fd
        self._output = output
        self._quit_byte = quit_byte
        self._blocking = blocking
        self._read = read
        self._stats = LoopStats()

    @property
    def terminated(self) -> bool:
        """True once the quit byte or end of input has been seen."""
        return self._stats.reason is not None

    @property
    def stats(self) -> LoopStats:
        return self._stats

    def _read_byte(self) -> bytes:
        try:
            return self._read(self._fd, 1)
        except OSError as e:
            # Cygwin reports a VTIME timeout as -1/EAGAIN instead of 0 bytes
            if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                return b""
            raise InputReadError.from_os_error("read", e) from e

    def step(self) -> bool:
        """
        Run one iteration: read at most one byte and react to it.

        Returns:
            True if the loop should keep reading, False once terminated.

        Raises:
            InputReadError: If read() fails.
        """
        if self.terminated:
            return False

        data = self._read_byte()

        # Decide on the byte count, never on the byte value: a timeout must
        # not look like a NUL keypress
        if not data:
            if self._blocking:
                self._stats.reason = "eof"
                logger.debug("End of input after %d bytes", self._stats.bytes_read)
                return False
            self._stats.timeouts += 1
            return True

        value = data[0]
        self._stats.bytes_read += 1
        self._output.write(format_byte(value))
        self._output.flush()

        if value == self._quit_byte:
            self._stats.reason = "quit"
            logger.debug("Quit byte %d read", value)
            return False
        return True

    def run(self) -> LoopStats:
        """
        Read until the quit byte or end of input.

        Returns:
            LoopStats with the number of bytes read, the number of timed-out
            reads, and why the loop stopped ("quit" or "eof").

        Raises:
            InputReadError: If read() fails.
        """
        while self.step():
            pass
        return self._stats
