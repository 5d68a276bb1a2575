"""stdio: / "-": the process's own stdin and stdout."""
from __future__ import annotations

import asyncio
import logging
import os
import stat
import sys

from ..constructor import PeerConstructor, once
from ..errors import TransferError
from ..peer import Peer, Reader, StreamReaderAdapter, StreamWriterAdapter, Writer
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.stdio")

__all__ = ["Stdio", "open_stdio"]


def _is_regular_file(fd: int) -> bool:
    return stat.S_ISREG(os.fstat(fd).st_mode)


class _FdReader(Reader):
    """Blocking reads in a worker thread; used when stdin is a regular file."""

    __slots__ = ("_fd",)

    def __init__(self, fd: int):
        self._fd = fd

    async def read(self, n: int) -> bytes:
        try:
            return await asyncio.to_thread(os.read, self._fd, n)
        except OSError as e:
            raise TransferError(message=f"stdin read failed: {e}", cause=e) from e


class _FdWriter(Writer):
    """Blocking writes in a worker thread; used when stdout is a regular file."""

    __slots__ = ("_fd",)

    def __init__(self, fd: int):
        self._fd = fd

    async def write(self, data: bytes) -> None:
        view = memoryview(data)
        try:
            while view:
                n = await asyncio.to_thread(os.write, self._fd, view)
                view = view[n:]
        except OSError as e:
            raise TransferError(message=f"stdout write failed: {e}", cause=e) from e


async def _stdin_reader(loop: asyncio.AbstractEventLoop) -> Reader:
    fd = sys.stdin.fileno()
    if _is_regular_file(fd):
        return _FdReader(fd)
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return StreamReaderAdapter(reader)


async def _stdout_writer(loop: asyncio.AbstractEventLoop) -> Writer:
    fd = sys.stdout.fileno()
    if _is_regular_file(fd):
        return _FdWriter(fd)
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
    return StreamWriterAdapter(asyncio.StreamWriter(transport, protocol, None, loop))


async def open_stdio(cp: ConstructParams) -> Peer:
    """
    stdin/stdout as one Peer. Pipes can be registered with the loop only once
    per process, so the Peer is cached in ProgramState.
    """
    if cp.state.stdio is not None:
        return cp.state.stdio
    sys.stdout.flush()
    peer = Peer(await _stdin_reader(cp.loop), await _stdout_writer(cp.loop))
    cp.state.stdio = peer
    log.debug("stdio attached")
    return peer


@register
class Stdio(Specifier):
    klass = SpecifierClass(
        name="stdio",
        prefixes=("stdio:", "inetd:"),
        help="Read input from console, print to console. Can be specified as just '-'.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        async def _open() -> Peer:
            return await open_stdio(cp)

        return once(_open)
