"""TCP and UNIX-socket endpoints: tcp:, tcp-l:, unix:, unix-l:."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple

from ..constructor import PeerConstructor, multi, once
from ..errors import ConnectFailure, ConstructionError
from ..peer import Peer, peer_from_streams
from ..specifier import ConstructParams, Multiconnect, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.net")

__all__ = ["TcpConnect", "TcpListen", "UnixConnect", "UnixListen", "parse_host_port", "listen_peers"]


def parse_host_port(arg: str, klass: str) -> Tuple[str, int]:
    """
    Parse "host:port", "[v6]:port" or ":port" (all interfaces).
    """
    if ":" not in arg:
        raise ConstructionError.bad_argument(klass, arg, "expected HOST:PORT")
    host, _, port_s = arg.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_s)
    except ValueError:
        raise ConstructionError.bad_argument(klass, arg, f"bad port {port_s!r}") from None
    if not 0 <= port <= 65535:
        raise ConstructionError.bad_argument(klass, arg, f"port out of range: {port}")
    return host or "0.0.0.0", port


def _peername(writer: asyncio.StreamWriter) -> Optional[str]:
    info = writer.get_extra_info("peername")
    if isinstance(info, tuple) and len(info) >= 2:
        return f"{info[0]}:{info[1]}"
    return str(info) if info else None


ServerFactory = Callable[[Callable[[asyncio.StreamReader, asyncio.StreamWriter], None]], Awaitable[asyncio.AbstractServer]]


async def listen_peers(start: ServerFactory, where: str, cp: ConstructParams) -> AsyncIterator[Peer]:
    """
    Bind with `start` and yield one Peer per accepted connection. Failing to
    bind raises ConnectFailure, which ends the stream. Closing the generator
    stops listening.
    """
    accepted: "asyncio.Queue[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]" = asyncio.Queue()

    def _on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        accepted.put_nowait((reader, writer))

    try:
        server = await start(_on_client)
    except OSError as e:
        raise ConnectFailure(message=f"cannot listen on {where}: {e}", retryable=False, cause=e) from e
    log.info("Listening on %s", where)
    try:
        while True:
            reader, writer = await accepted.get()
            client = _peername(writer)
            log.info("Incoming connection from %s", client or "?", extra={"listener": where})
            cp.l2r.fill(client_addr=client)
            yield peer_from_streams(reader, writer)
    finally:
        server.close()
        while not accepted.empty():
            _, writer = accepted.get_nowait()
            writer.close()
        with contextlib.suppress(Exception):
            await server.wait_closed()


async def _connect(opening: Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]], where: str) -> Peer:
    try:
        reader, writer = await opening
    except OSError as e:
        raise ConnectFailure(message=f"cannot connect to {where}: {e}", cause=e) from e
    log.info("Connected to %s", where)
    return peer_from_streams(reader, writer)


@register
class TcpConnect(Specifier):
    klass = SpecifierClass(
        name="tcp",
        prefixes=("tcp:", "tcp-connect:", "connect-tcp:", "tcp-c:", "c-tcp:"),
        help="Connect to specified TCP host and port. Argument is HOST:PORT.",
    )

    def __init__(self, arg: str = "", inner: Optional[Specifier] = None):
        super().__init__(arg, inner)
        self.host, self.port = parse_host_port(arg, self.klass.name)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        host, port = self.host, self.port

        async def _open() -> Peer:
            return await _connect(asyncio.open_connection(host, port), f"{host}:{port}")

        return once(_open)


@register
class TcpListen(Specifier):
    klass = SpecifierClass(
        name="tcp-l",
        prefixes=("tcp-l:", "tcp-listen:", "listen-tcp:", "l-tcp:"),
        multiconnect=Multiconnect.MULTI,
        help="Listen TCP port on specified address. Argument is HOST:PORT.",
    )

    def __init__(self, arg: str = "", inner: Optional[Specifier] = None):
        super().__init__(arg, inner)
        self.host, self.port = parse_host_port(arg, self.klass.name)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        host, port = self.host, self.port

        def start(cb):
            return asyncio.start_server(cb, host, port, reuse_address=True)

        return multi(listen_peers(start, f"{host}:{port}", cp))


@register
class UnixConnect(Specifier):
    klass = SpecifierClass(
        name="unix",
        prefixes=("unix:", "unix-connect:", "connect-unix:", "unix-c:", "c-unix:"),
        help="Connect to UNIX socket. Argument is filesystem path.",
    )

    @classmethod
    def from_node(cls, arg: str, inner: Optional[Specifier]) -> Specifier:
        if not arg:
            raise ConstructionError.bad_argument(cls.klass.name, arg, "expected a socket path")
        return cls(arg, inner)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        path = self.arg

        async def _open() -> Peer:
            return await _connect(asyncio.open_unix_connection(path), path)

        return once(_open)


@register
class UnixListen(Specifier):
    klass = SpecifierClass(
        name="unix-l",
        prefixes=("unix-l:", "unix-listen:", "listen-unix:", "l-unix:"),
        multiconnect=Multiconnect.MULTI,
        help="Listen for connections on a specified UNIX socket. "
        "With --unlink, remove a stale socket file before binding.",
    )

    @classmethod
    def from_node(cls, arg: str, inner: Optional[Specifier]) -> Specifier:
        if not arg:
            raise ConstructionError.bad_argument(cls.klass.name, arg, "expected a socket path")
        return cls(arg, inner)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        path = self.arg
        unlink = cp.options.unlink_unix_socket

        def start(cb):
            if unlink:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(path)
            return asyncio.start_unix_server(cb, path)

        return multi(listen_peers(start, path, cp))
