import io
import logging
import os
import threading

import pytest
from typer.testing import CliRunner

from keyprobe import cli
from keyprobe.cli import app, probe
from keyprobe.reader import LoopStats
from keyprobe.terminal import DeviceConfigurationError, get_config

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "keyprobe 0.1.0" in result.stdout


def test_help() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "--timeout" in result.stdout
    assert "--quit" in result.stdout


def test_stdin_not_a_terminal() -> None:
    result = runner.invoke(app, [], input="hiq")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "104" not in result.output


@pytest.mark.parametrize("quit_char", ["ab", "", "é"])
def test_invalid_quit(quit_char, monkeypatch) -> None:
    # A UTF-8 terminal sends "é" as two bytes, so it could never match
    calls = []
    monkeypatch.setattr(cli, "probe", lambda *args, **kwargs: calls.append(kwargs))

    result = runner.invoke(app, ["--quit", quit_char])
    assert result.exit_code == 2
    assert calls == []


def test_invalid_timeout() -> None:
    result = runner.invoke(app, ["--timeout", "0"])
    assert result.exit_code == 2


def test_options_reach_probe(monkeypatch) -> None:
    calls = []

    def fake_probe(stream, output, quit_byte, read_timeout):
        calls.append((quit_byte, read_timeout))
        output.write(b"120 ('x')\r\n")
        return LoopStats(bytes_read=1, reason="quit")

    monkeypatch.setattr(cli, "probe", fake_probe)

    result = runner.invoke(app, ["--quit", "x", "--timeout", "5"])
    assert result.exit_code == 0
    assert "120 ('x')" in result.stdout

    result = runner.invoke(app, ["--blocking"])
    assert result.exit_code == 0

    assert calls == [(ord("x"), 5), (ord("q"), None)]


def test_fatal_error_exit_code(monkeypatch) -> None:
    def failing_probe(stream, output, quit_byte, read_timeout):
        raise DeviceConfigurationError("tcsetattr", "Input/output error")

    monkeypatch.setattr(cli, "probe", failing_probe)

    result = runner.invoke(app, [])
    assert result.exit_code == 1
    assert "Error: tcsetattr: Input/output error" in result.output


def test_verbose_logging_uses_crlf() -> None:
    logger = logging.getLogger("keyprobe")
    saved = list(logger.handlers)
    try:
        logger.handlers.clear()
        cli.configure_logging(True)
        assert logger.level == logging.DEBUG
        assert logger.handlers[0].terminator == "\r\n"
    finally:
        logger.handlers[:] = saved
        logger.setLevel(logging.NOTSET)


class TestProbe:
    """End-to-end sessions without the typer layer."""

    def test_scenario_a(self, pty_pair) -> None:
        master, slave = pty_pair
        before = get_config(slave)
        output = io.BytesIO()

        timer = threading.Timer(0.2, os.write, (master, b"hiq"))
        timer.start()
        try:
            stats = probe(slave, output)
        finally:
            timer.join()

        assert output.getvalue() == b"104 ('h')\r\n105 ('i')\r\n113 ('q')\r\n"
        assert stats.reason == "quit"
        assert get_config(slave) == before

    def test_scenario_c(self, tmp_path) -> None:
        path = tmp_path / "input.txt"
        path.write_text("hiq")
        output = io.BytesIO()

        with open(path) as f:
            with pytest.raises(DeviceConfigurationError) as exc_info:
                probe(f, output)

        assert exc_info.value.operation == "tcgetattr"
        assert output.getvalue() == b""
