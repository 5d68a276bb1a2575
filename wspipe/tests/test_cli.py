from __future__ import annotations

import pytest
from typer.testing import CliRunner

from wspipe.cli import _parse_headers, app, specifier_listing
from wspipe.errors import ConfigError
from wspipe.version import __version__

runner = CliRunner()


def test_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "LEFT" in result.stdout and "--exit-on-eof" in result.stdout


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_list_specifiers():
    result = runner.invoke(app, ["--list-specifiers"])
    assert result.exit_code == 0
    for prefix in ("ws-l:", "tcp-l:", "broadcast:", "autoreconnect:", "ws://"):
        assert prefix in result.stdout
    assert "= ws-u:tcp-l:..." in result.stdout


def test_listing_marks_overlays_and_aliases():
    listing = specifier_listing()
    assert any("[overlay]" in line and "ws-u:" in line for line in listing.splitlines())
    assert any("[alias]" in line and "ws-l:" in line for line in listing.splitlines())


def test_missing_right_specifier():
    result = runner.invoke(app, ["mirror:"])
    assert result.exit_code == 2


def test_literal_to_file(tmp_path):
    out = tmp_path / "out.txt"
    result = runner.invoke(app, ["-q", "literal:hello", f"writefile:{out}"])
    assert result.exit_code == 0
    assert out.read_bytes() == b"hello"


def test_unidirectional_flag(tmp_path):
    src = tmp_path / "in.txt"
    out = tmp_path / "out.txt"
    src.write_bytes(b"one way")
    result = runner.invoke(app, ["-q", "-u", f"readfile:{src}", f"appendfile:{out}"])
    assert result.exit_code == 0
    assert out.read_bytes() == b"one way"


@pytest.mark.parametrize(
    "args",
    [
        ["nonsense", "mirror:"],
        ["ws-u:", "mirror:"],
        ["--buffer-size", "0", "mirror:", "mirror:"],
        ["--debt-handling", "sometimes", "mirror:", "mirror:"],
        ["-H", "no colon here", "mirror:", "mirror:"],
    ],
)
def test_bad_input_exits_with_1(args):
    result = runner.invoke(app, ["-q", *args])
    assert result.exit_code == 1


def test_connect_failure_exits_with_1(tmp_path):
    result = runner.invoke(app, ["-q", f"readfile:{tmp_path / 'missing'}", "mirror:"])
    assert result.exit_code == 1


def test_parse_headers():
    assert _parse_headers(["X-A: 1", "Authorization:Bearer t"]) == (("X-A", "1"), ("Authorization", "Bearer t"))
    with pytest.raises(ConfigError):
        _parse_headers([": empty"])


def test_line_mode_flags(tmp_path):
    src = tmp_path / "in.txt"
    out = tmp_path / "out.txt"
    src.write_bytes(b"a\r\nb\n\nc")
    result = runner.invoke(app, ["-q", "-u", "--strip", f"line2msg:readfile:{src}", f"appendfile:{out}"])
    assert result.exit_code == 0
    assert out.read_bytes() == b"abc"


def test_strict_null_terminated_flags(tmp_path):
    src = tmp_path / "in.bin"
    out = tmp_path / "out.bin"
    src.write_bytes(b"x\0y\0partial")
    args = ["-q", "-u", "-0", "--strict", "--strip", f"line2msg:readfile:{src}", f"appendfile:{out}"]
    result = runner.invoke(app, args)
    assert result.exit_code == 0
    assert out.read_bytes() == b"xy"


def test_new_flags_are_listed():
    result = runner.invoke(app, ["--help"])
    for flag in ("--websocket-version", "--udp-oneshot", "--strict", "--null-terminated", "--no-line"):
        assert flag in result.stdout
