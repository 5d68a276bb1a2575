"""
wspipe - connect two endpoints and copy bytes between them.

Usage:
  wspipe [OPTIONS] LEFT RIGHT

Examples:
  wspipe ws-l:127.0.0.1:8080 mirror:
  wspipe -t ws://127.0.0.1:8080/ -
  wspipe tcp-l:127.0.0.1:1234 broadcast:tcp:127.0.0.1:5678 -u
  wspipe --list-specifiers

Every option can also come from the environment (WSPIPE_TEXT, WSPIPE_BUFFER_SIZE,
...); command-line flags win.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Optional, Tuple

import typer

from . import metrics, specparse
from .errors import ConfigError, PipeError, as_error_dict
from .options import Options, load_options
from .peers.line import auto_linemode
from .session import serve
from .specifier import all_classes, build_specifier
from .version import version_with_git

log = logging.getLogger("wspipe.cli")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

app = typer.Typer(
    name="wspipe",
    help="Duplex pipe between WebSocket, TCP, UNIX socket, stdio, file and process endpoints.",
    add_completion=False,
)


def configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    else:
        level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(verbose, 2)]
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def specifier_listing() -> str:
    lines: List[str] = []
    for klass in all_classes():
        summary = klass.help.strip().splitlines()[0] if klass.help.strip() else ""
        kind = "alias" if klass.alias else ("overlay" if klass.overlay else "leaf")
        lines.append(f"  {', '.join(klass.prefixes):<48} [{kind}] {summary}")
        if klass.alias:
            lines.append(f"  {'':<48}   = {klass.alias}...")
    return "\n".join(lines)


def _parse_headers(raw: List[str]) -> Tuple[Tuple[str, str], ...]:
    out = []
    for item in raw:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise ConfigError(message=f"Bad header {item!r}, expected 'Name: value'")
        out.append((name.strip(), value.strip()))
    return tuple(out)


def _log_session_error(exc: BaseException) -> None:
    log.debug("session error details: %s", as_error_dict(exc, include_cause=True), exc_info=exc)


async def run_pipe(left: str, right: str, options: Options) -> None:
    lspec = build_specifier(specparse.parse(left))
    rspec = build_specifier(specparse.parse(right))
    lspec, rspec = auto_linemode(lspec, rspec, options)
    log.debug("left=%r right=%r", lspec, rspec)
    await serve(lspec, rspec, options, _log_session_error)


@app.command()
def main_command(
    left: Optional[str] = typer.Argument(None, help="Left specifier, e.g. ws-l:127.0.0.1:8080"),
    right: Optional[str] = typer.Argument(None, help="Right specifier, e.g. mirror:"),
    text: bool = typer.Option(False, "--text", "-t", help="Send text WebSocket messages instead of binary"),
    protocol: Optional[str] = typer.Option(None, "--protocol", help="WebSocket subprotocol to request/accept"),
    dont_close: bool = typer.Option(False, "--no-close", "-n", help="Don't send a Close message on shutdown"),
    ws_c_uri: Optional[str] = typer.Option(None, "--ws-c-uri", help="URI to use for ws-c: overlay"),
    websocket_version: Optional[str] = typer.Option(
        None, "--websocket-version", help="Override the Sec-WebSocket-Version request header"
    ),
    origin: Optional[str] = typer.Option(None, "--origin", help="Origin header for WebSocket clients"),
    header: List[str] = typer.Option([], "--header", "-H", help="Extra request header 'Name: value' (repeatable)"),
    restrict_uri: Optional[str] = typer.Option(None, "--restrict-uri", help="Only serve this request path"),
    max_message_size: Optional[int] = typer.Option(None, "--max-message-size", help="Largest incoming message"),
    unidirectional: bool = typer.Option(False, "--unidirectional", "-u", help="Only copy left to right"),
    unidirectional_reverse: bool = typer.Option(
        False, "--unidirectional-reverse", "-U", help="Only copy right to left"
    ),
    exit_on_eof: bool = typer.Option(False, "--exit-on-eof", "-E", help="Close the session when either side ends"),
    oneshot: bool = typer.Option(False, "--oneshot", help="Serve only one connection"),
    one_message: bool = typer.Option(False, "--one-message", help="Copy one chunk in each direction, then stop"),
    buffer_size: Optional[int] = typer.Option(None, "--buffer-size", "-B", help="Copy buffer size in bytes"),
    broadcast_queue_len: Optional[int] = typer.Option(
        None, "--broadcast-queue-len", help="Per-client queue length of broadcast:"
    ),
    debt_handling: Optional[str] = typer.Option(
        None, "--debt-handling", help="Oversized message policy: silent, warn, error, drop-message"
    ),
    autoreconnect_delay: Optional[float] = typer.Option(
        None, "--autoreconnect-delay", help="Seconds between autoreconnect: attempts"
    ),
    unlink: bool = typer.Option(False, "--unlink", help="Remove a stale UNIX socket file before listening"),
    exec_args: List[str] = typer.Option([], "--exec-args", help="Argument for exec: (repeatable)"),
    udp_oneshot: bool = typer.Option(False, "--udp-oneshot", help="udp-l: ends after sending its first reply"),
    strip: bool = typer.Option(False, "--strip", help="Line mode: remove trailing newlines from messages"),
    strict: bool = typer.Option(
        False, "--strict", help="Line mode: drop overlong and unterminated lines instead of splitting them"
    ),
    null_terminated: bool = typer.Option(
        False, "--null-terminated", "-0", help="Line mode: use NUL instead of newline as separator"
    ),
    no_line: bool = typer.Option(False, "--no-line", help="Don't switch to line mode automatically in text mode"),
    metrics_port: Optional[int] = typer.Option(None, "--metrics-port", help="Serve Prometheus metrics on this port"),
    list_specifiers: bool = typer.Option(False, "--list-specifiers", help="List known specifiers and exit"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging (repeatable)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
    version: bool = typer.Option(False, "--version", help="Print version and exit"),
) -> None:
    """Connect LEFT and RIGHT and copy data between them until done."""
    if version:
        typer.echo(version_with_git())
        raise typer.Exit()
    if list_specifiers:
        typer.echo(specifier_listing())
        raise typer.Exit()
    if left is None or right is None:
        typer.echo("Error: both LEFT and RIGHT specifiers are required (see --help)", err=True)
        raise typer.Exit(code=2)

    configure_logging(verbose, quiet)
    try:
        options = load_options(
            websocket_text_mode=text or None,
            websocket_protocol=protocol,
            websocket_dont_close=dont_close or None,
            ws_c_uri=ws_c_uri,
            websocket_version=websocket_version,
            origin=origin,
            custom_headers=_parse_headers(header) or None,
            restrict_uri=restrict_uri,
            max_message_size=max_message_size,
            unidirectional=unidirectional or None,
            unidirectional_reverse=unidirectional_reverse or None,
            exit_on_eof=exit_on_eof or None,
            oneshot=oneshot or None,
            one_message=one_message or None,
            buffer_size=buffer_size,
            broadcast_queue_len=broadcast_queue_len,
            read_debt_handling=debt_handling,
            autoreconnect_delay=autoreconnect_delay,
            unlink_unix_socket=unlink or None,
            exec_args=exec_args or None,
            udp_oneshot_mode=udp_oneshot or None,
            linemode_strip_newlines=strip or None,
            linemode_strict=strict or None,
            linemode_zero_terminated=null_terminated or None,
            no_auto_linemode=no_line or None,
        )
        if metrics_port is not None:
            metrics.start_metrics_server(metrics_port)
            log.info("metrics on 127.0.0.1:%d", metrics_port)
        asyncio.run(run_pipe(left, right, options))
    except PipeError as e:
        log.error("%s", e, extra={"error": e.to_dict()})
        typer.echo(f"wspipe: {e}", err=True)
        raise typer.Exit(code=1)
    except OSError as e:
        log.error("%s", e)
        typer.echo(f"wspipe: {e}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        raise typer.Exit(code=130)


def main() -> None:
    """Entry point for the wspipe CLI."""
    app()


if __name__ == "__main__":
    main()
