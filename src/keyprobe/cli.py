"""
Command-line interface for keyprobe.

This module defines the CLI using the Typer library. Running `keyprobe`
puts the terminal in raw mode and prints every byte you type until you
press the quit key (q by default).
"""

import logging
import sys
from typing import Annotated, BinaryIO, TextIO

import typer

from keyprobe import __version__
from keyprobe.reader import DEFAULT_QUIT_BYTE, LoopStats, RawInputLoop
from keyprobe.terminal import (
    DEFAULT_READ_TIMEOUT,
    MAX_READ_TIMEOUT,
    TerminalError,
    TerminalSession,
)

app = typer.Typer(
    name="keyprobe",
    help="keyprobe - print the bytes your terminal sends in raw mode",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"keyprobe {__version__}")
        raise typer.Exit()


def parse_quit_byte(value: str) -> int:
    """Convert the --quit option to a byte value."""
    if len(value) != 1 or ord(value) > 127:
        raise typer.BadParameter("must be a single ASCII character")
    return ord(value)


def configure_logging(verbose: bool) -> None:
    """
    Send keyprobe's debug log to stderr.

    Output post-processing is off while the terminal is raw, so the handler
    ends records with "\\r\\n" itself.
    """
    if not verbose:
        return

    logger = logging.getLogger("keyprobe")
    logger.setLevel(logging.DEBUG)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.terminator = "\r\n"
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)


def probe(
    stream: TextIO | int,
    output: BinaryIO,
    quit_byte: int = DEFAULT_QUIT_BYTE,
    read_timeout: int | None = DEFAULT_READ_TIMEOUT,
) -> LoopStats:
    """
    Run one raw-mode session and print every byte read.

    The terminal is restored before this returns or raises.

    Args:
        stream: Terminal stream or file descriptor to read from.
        output: Binary stream for the printed lines.
        quit_byte: Byte value that ends the session.
        read_timeout: Read timeout in tenths of a second, or None for
                      blocking reads (end of input then ends the session).

    Returns:
        Statistics from the input loop.

    Raises:
        DeviceConfigurationError: If the terminal cannot be configured.
        InputReadError: If reading fails.
    """
    with TerminalSession(stream, read_timeout=read_timeout) as session:
        loop = RawInputLoop(
            session.fd,
            output,
            quit_byte=quit_byte,
            blocking=read_timeout is None,
        )
        return loop.run()


@app.command()
def main(
    quit_char: Annotated[
        str,
        typer.Option("--quit", "-q", help="Character that ends the session"),
    ] = chr(DEFAULT_QUIT_BYTE),
    timeout: Annotated[
        int,
        typer.Option(
            "--timeout",
            "-t",
            min=1,
            max=MAX_READ_TIMEOUT,
            help="Read timeout in tenths of a second",
        ),
    ] = DEFAULT_READ_TIMEOUT,
    blocking: Annotated[
        bool,
        typer.Option(
            "--blocking",
            help="Block until a byte arrives; end of input ends the session",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log terminal changes to stderr"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """
    Print each byte typed on the terminal until the quit key is pressed.

    Control bytes (0-31, 127) print as their decimal value; everything else
    also prints the character. Ctrl-C, Ctrl-Z and Ctrl-S are read as bytes
    instead of acting on the process.

    Example:
        keyprobe
        keyprobe --quit x --timeout 10
    """
    quit_byte = parse_quit_byte(quit_char)
    configure_logging(verbose)

    output = typer.get_binary_stream("stdout")

    try:
        stats = probe(
            sys.stdin,
            output,
            quit_byte=quit_byte,
            read_timeout=None if blocking else timeout,
        )
    except TerminalError as e:
        # Restored by the session on exit, or by its atexit hook if entering
        # raw mode failed part way
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    logging.getLogger(__name__).debug(
        "Session ended (%s) after %d bytes, %d timeouts",
        stats.reason,
        stats.bytes_read,
        stats.timeouts,
    )


if __name__ == "__main__":
    app()
