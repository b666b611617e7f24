"""
Terminal mode management for raw/cooked mode switching.

To see every keypress as it happens, the terminal has to be in raw mode:
- Bytes are delivered immediately (no line buffering)
- Typed bytes are not echoed back
- Ctrl-C, Ctrl-Z, Ctrl-S, Ctrl-Q and Ctrl-V arrive as plain data
- Newlines are not translated on output, so we must write "\\r\\n" ourselves

There is no single switch for raw mode. It is a collection of flags spread
over the input, output, control and local flag words, plus the VMIN/VTIME
read-timing slots. This module models those flags as a value object and
derives the raw configuration with a pure function, so the derivation can be
tested without a terminal.

The session object captures the original configuration, applies the raw one,
and guarantees the original is put back exactly once.
"""

import atexit
import dataclasses
import logging
import sys
import termios
from dataclasses import dataclass
from typing import TextIO

logger = logging.getLogger(__name__)

# Indices into the list returned by termios.tcgetattr()
IFLAG = 0
OFLAG = 1
CFLAG = 2
LFLAG = 3
ISPEED = 4
OSPEED = 5
CC = 6

# VTIME is a single unsigned byte, in tenths of a second
MAX_READ_TIMEOUT = 255
DEFAULT_READ_TIMEOUT = 1


class TerminalError(Exception):
    """
    Base exception for terminal operations.

    Carries the name of the operation that failed (e.g. "tcgetattr") and the
    system-level cause, so the message reads like perror(3) output.
    """

    def __init__(self, operation: str, strerror: str, errno: int | None = None):
        self.operation = operation
        self.strerror = strerror
        self.errno = errno
        super().__init__(f"{operation}: {strerror}")

    @classmethod
    def from_os_error(cls, operation: str, exc: BaseException) -> "TerminalError":
        """
        Build an error from a termios.error or OSError.

        termios.error carries (errno, strerror) in args rather than as
        attributes, so both shapes are handled here.
        """
        if isinstance(exc, OSError):
            return cls(operation, exc.strerror or str(exc), exc.errno)
        if len(exc.args) >= 2:
            return cls(operation, str(exc.args[1]), exc.args[0])
        return cls(operation, str(exc))


class DeviceConfigurationError(TerminalError):
    """Raised when terminal configuration cannot be read or applied."""

    pass


def _cc_value(slot: bytes | int) -> int:
    # termios reports VMIN/VTIME as ints in non-canonical mode and as
    # one-byte strings in canonical mode
    if isinstance(slot, int):
        return slot
    return slot[0] if slot else 0


@dataclass(frozen=True)
class TerminalConfig:
    """
    Immutable snapshot of a terminal's line-discipline settings.

    This mirrors the list returned by termios.tcgetattr(): four flag words,
    the input/output speeds, and the control-character slots. The capability
    properties below give names to the bits we care about.

    Usage:
        config = get_config(sys.stdin.fileno())
        if config.echo:
            print("terminal echoes input")
    """

    iflag: int
    oflag: int
    cflag: int
    lflag: int
    ispeed: int
    ospeed: int
    cc: tuple

    @classmethod
    def from_attrs(cls, attrs: list) -> "TerminalConfig":
        """Create a config from a termios.tcgetattr() list."""
        return cls(
            iflag=attrs[IFLAG],
            oflag=attrs[OFLAG],
            cflag=attrs[CFLAG],
            lflag=attrs[LFLAG],
            ispeed=attrs[ISPEED],
            ospeed=attrs[OSPEED],
            cc=tuple(attrs[CC]),
        )

    def to_attrs(self) -> list:
        """
        Convert back to the list form termios.tcsetattr() expects.

        A fresh list is returned each time, so callers cannot mutate the
        snapshot through it.
        """
        return [
            self.iflag,
            self.oflag,
            self.cflag,
            self.lflag,
            self.ispeed,
            self.ospeed,
            list(self.cc),
        ]

    def replace_flags(
        self,
        field: str,
        clear: int = 0,
        add: int = 0,
    ) -> "TerminalConfig":
        """
        Return a copy with bits cleared and then set in one flag word.

        Args:
            field: One of "iflag", "oflag", "cflag", "lflag".
            clear: Bits to turn off.
            add: Bits to turn on (applied after clear).

        Returns:
            A new TerminalConfig. Bits outside clear/add are untouched.
        """
        if field not in ("iflag", "oflag", "cflag", "lflag"):
            raise ValueError(f"Not a flag field: {field!r}")
        value = (getattr(self, field) & ~clear) | add
        return dataclasses.replace(self, **{field: value})

    def replace_cc(self, index: int, value: int) -> "TerminalConfig":
        """Return a copy with one control-character slot replaced."""
        cc = list(self.cc)
        cc[index] = value
        return dataclasses.replace(self, cc=tuple(cc))

    # ==========================================================================
    # Input flags
    # ==========================================================================

    @property
    def flow_control(self) -> bool:
        """Ctrl-S / Ctrl-Q pause and resume transmission (IXON)."""
        return bool(self.iflag & termios.IXON)

    @property
    def cr_to_nl(self) -> bool:
        """Carriage returns are translated into newlines on input (ICRNL)."""
        return bool(self.iflag & termios.ICRNL)

    @property
    def break_interrupt(self) -> bool:
        """A break condition sends SIGINT (BRKINT)."""
        return bool(self.iflag & termios.BRKINT)

    @property
    def parity_check(self) -> bool:
        return bool(self.iflag & termios.INPCK)

    @property
    def strip_high_bit(self) -> bool:
        return bool(self.iflag & termios.ISTRIP)

    # ==========================================================================
    # Output and control flags
    # ==========================================================================

    @property
    def output_processing(self) -> bool:
        """Output post-processing, e.g. "\\n" -> "\\r\\n" (OPOST)."""
        return bool(self.oflag & termios.OPOST)

    @property
    def eight_bit(self) -> bool:
        """Character size is 8 bits (CS8)."""
        return (self.cflag & termios.CSIZE) == termios.CS8

    # ==========================================================================
    # Local flags
    # ==========================================================================

    @property
    def echo(self) -> bool:
        return bool(self.lflag & termios.ECHO)

    @property
    def canonical(self) -> bool:
        """Line-buffered input, delivered after Enter (ICANON)."""
        return bool(self.lflag & termios.ICANON)

    @property
    def signals(self) -> bool:
        """Ctrl-C / Ctrl-Z generate SIGINT / SIGTSTP (ISIG)."""
        return bool(self.lflag & termios.ISIG)

    @property
    def extended_input(self) -> bool:
        """Implementation-defined processing such as Ctrl-V literal-next (IEXTEN)."""
        return bool(self.lflag & termios.IEXTEN)

    # ==========================================================================
    # Read timing
    # ==========================================================================

    @property
    def min_bytes(self) -> int:
        """Minimum number of bytes before read() returns (VMIN)."""
        return _cc_value(self.cc[termios.VMIN])

    @property
    def read_timeout(self) -> int:
        """Maximum wait before read() returns, in tenths of a second (VTIME)."""
        return _cc_value(self.cc[termios.VTIME])


def check_read_timeout(read_timeout: int | None) -> None:
    """Raise ValueError unless read_timeout is None or fits in VTIME (1-255)."""
    if read_timeout is not None and not 1 <= read_timeout <= MAX_READ_TIMEOUT:
        raise ValueError(
            f"read_timeout must be between 1 and {MAX_READ_TIMEOUT} "
            f"tenths of a second, got {read_timeout}"
        )


def make_raw(
    baseline: TerminalConfig,
    read_timeout: int | None = DEFAULT_READ_TIMEOUT,
) -> TerminalConfig:
    """
    Derive the raw-mode configuration from a baseline.

    This is a pure function: the baseline is not modified.

    Args:
        baseline: The configuration to start from (normally the original).
        read_timeout: Maximum wait for a read, in tenths of a second (1-255).
                      read() returns 0 bytes when it elapses. Pass None for
                      the blocking variant (VMIN=1, VTIME=0), where a read
                      waits until at least one byte arrives.

    Returns:
        The raw configuration.

    Raises:
        ValueError: If read_timeout is out of range.
    """
    check_read_timeout(read_timeout)

    raw = baseline
    # Input flags:
    # - IXON: Ctrl-S/Ctrl-Q read as 19/17 instead of pausing output
    # - ICRNL: Ctrl-M and Enter read as 13, not translated to 10
    # - BRKINT, INPCK, ISTRIP: legacy, cleared by raw-mode convention
    raw = raw.replace_flags(
        "iflag",
        clear=termios.IXON | termios.ICRNL | termios.BRKINT
        | termios.INPCK | termios.ISTRIP,
    )
    # Output flags: no "\n" -> "\r\n" translation
    raw = raw.replace_flags("oflag", clear=termios.OPOST)
    # Control flags: 8-bit characters. CS8 is a multi-bit value inside the
    # CSIZE mask, so clear the mask first.
    raw = raw.replace_flags("cflag", clear=termios.CSIZE, add=termios.CS8)
    # Local flags:
    # - ECHO: typed bytes are not printed
    # - ICANON: bytes arrive as typed, not line by line
    # - ISIG: Ctrl-C/Ctrl-Z read as 3/26
    # - IEXTEN: Ctrl-V reads as 22, Ctrl-O (macOS) as 15
    raw = raw.replace_flags(
        "lflag",
        clear=termios.ECHO | termios.ICANON | termios.ISIG | termios.IEXTEN,
    )

    if read_timeout is None:
        raw = raw.replace_cc(termios.VMIN, 1)
        raw = raw.replace_cc(termios.VTIME, 0)
    else:
        raw = raw.replace_cc(termios.VMIN, 0)
        raw = raw.replace_cc(termios.VTIME, read_timeout)
    return raw


def get_config(fd: int) -> TerminalConfig:
    """
    Read the current configuration of a terminal.

    This is a pure read; calling it twice without a change in between
    returns equal configs.

    Raises:
        DeviceConfigurationError: If fd is not a terminal. This is what
            happens when stdin is redirected from a file or a pipe.
    """
    try:
        attrs = termios.tcgetattr(fd)
    except (termios.error, OSError) as e:
        raise DeviceConfigurationError.from_os_error("tcgetattr", e) from e
    return TerminalConfig.from_attrs(attrs)


def set_config(fd: int, config: TerminalConfig) -> None:
    """
    Apply a configuration to a terminal.

    TCSAFLUSH waits for pending output to drain and discards any input that
    has not been read yet.

    Raises:
        DeviceConfigurationError: If the configuration cannot be applied.
    """
    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, config.to_attrs())
    except (termios.error, OSError) as e:
        raise DeviceConfigurationError.from_os_error("tcsetattr", e) from e


class TerminalSession:
    """
    Raw-mode session on a terminal, restored exactly once.

    Entering raw mode captures the original configuration, registers an
    atexit handler (before anything is changed), and applies the raw
    configuration. Leaving the session puts the original back.

    Usage:
        with TerminalSession(sys.stdin) as session:
            # Terminal is in raw mode here
            data = os.read(session.fd, 1)

    The terminal is restored when the with block exits, whether normally or
    through an exception. If the process exits without leaving the block
    (e.g. sys.exit() from a callback), the atexit handler restores it.
    A process killed by SIGKILL is not restored.
    """

    def __init__(
        self,
        stream: TextIO | int = sys.stdin,
        read_timeout: int | None = DEFAULT_READ_TIMEOUT,
    ):
        """
        Create a session manager.

        Args:
            stream: The terminal stream or file descriptor (default: stdin).
            read_timeout: Passed to make_raw(). None selects blocking reads.

        Raises:
            DeviceConfigurationError: If the stream has no file descriptor.
            ValueError: If read_timeout is out of range.
        """
        check_read_timeout(read_timeout)

        if isinstance(stream, int):
            self._fd = stream
        else:
            try:
                self._fd = stream.fileno()
            except (OSError, ValueError) as e:
                # io.UnsupportedOperation for in-memory streams
                raise DeviceConfigurationError(
                    "fileno", "stream has no file descriptor"
                ) from e

        self._read_timeout = read_timeout
        self._original: TerminalConfig | None = None
        self._in_raw_mode = False

    def enter_raw_mode(self) -> None:
        """
        Switch the terminal to raw mode.

        Does nothing if the session is already in raw mode, so the original
        configuration is never overwritten before it has been restored.

        Raises:
            DeviceConfigurationError: If the original configuration cannot be
                captured or the raw configuration cannot be applied. In the
                latter case the atexit handler stays registered.
        """
        if self._in_raw_mode:
            return

        self._original = get_config(self._fd)
        logger.debug("Captured terminal configuration on fd %d", self._fd)

        # From here on the terminal may change, so make sure it is put back
        # even if we never reach exit_raw_mode()
        self._in_raw_mode = True
        atexit.register(self._cleanup)

        raw = make_raw(self._original, self._read_timeout)
        set_config(self._fd, raw)
        logger.debug(
            "Applied raw mode on fd %d (VMIN=%d, VTIME=%d)",
            self._fd,
            raw.min_bytes,
            raw.read_timeout,
        )

    def restore(self) -> None:
        """
        Restore the terminal to its original configuration.

        Only the first call after enter_raw_mode() touches the terminal;
        later calls do nothing. A failed restore is not retried.

        Raises:
            DeviceConfigurationError: If the original configuration cannot be
                applied.
        """
        if not self._in_raw_mode:
            return

        self._in_raw_mode = False
        atexit.unregister(self._cleanup)

        if self._original is not None:
            set_config(self._fd, self._original)
            logger.debug("Restored terminal configuration on fd %d", self._fd)

    exit_raw_mode = restore

    def _cleanup(self) -> None:
        """Cleanup handler for atexit - restores terminal mode."""
        try:
            self.restore()
        except DeviceConfigurationError as e:
            # Nothing left to propagate to at interpreter shutdown
            logger.error("Failed to restore terminal at exit: %s", e)

    @property
    def fd(self) -> int:
        """Get the file descriptor of the terminal."""
        return self._fd

    @property
    def in_raw_mode(self) -> bool:
        """Check if the terminal is currently in raw mode."""
        return self._in_raw_mode

    @property
    def original(self) -> TerminalConfig | None:
        """The configuration captured on entry, or None before entry."""
        return self._original

    def __enter__(self) -> "TerminalSession":
        """Enter context manager - switch to raw mode."""
        self.enter_raw_mode()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - restore terminal mode."""
        if exc_type is None:
            self.restore()
            return

        # Don't let a restore failure hide the exception that got us here
        try:
            self.restore()
        except DeviceConfigurationError as e:
            logger.error("Failed to restore terminal: %s", e)
