"""readfile:, writefile:, appendfile:. File I/O runs in worker threads."""
from __future__ import annotations

import asyncio
import logging
from typing import BinaryIO, Optional

from ..constructor import PeerConstructor, once
from ..errors import ConnectFailure, ConstructionError, TransferError
from ..peer import NullWriter, Peer, Reader, Writer
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.file")

__all__ = ["ReadFile", "WriteFile", "AppendFile", "open_file_peer"]


class _FileReader(Reader):
    __slots__ = ("_f",)

    def __init__(self, f: BinaryIO):
        self._f = f

    async def read(self, n: int) -> bytes:
        try:
            return await asyncio.to_thread(self._f.read, n)
        except (OSError, ValueError) as e:
            raise TransferError(message=f"file read failed: {e}", cause=e) from e

    async def close(self) -> None:
        await asyncio.to_thread(self._f.close)


class _FileWriter(Writer):
    __slots__ = ("_f",)

    def __init__(self, f: BinaryIO):
        self._f = f

    def _write_all(self, data: bytes) -> None:
        self._f.write(data)
        self._f.flush()

    async def write(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_all, data)
        except (OSError, ValueError) as e:
            raise TransferError(message=f"file write failed: {e}", cause=e) from e

    async def shutdown(self) -> None:
        await self.close()

    async def close(self) -> None:
        await asyncio.to_thread(self._f.close)


class _EmptyReader(Reader):
    async def read(self, n: int) -> bytes:
        return b""


async def open_file_peer(path: str, mode: str) -> Peer:
    """Open `path` as a Peer: "rb" gives a reader, "wb"/"ab" a writer."""
    try:
        f = await asyncio.to_thread(open, path, mode)
    except OSError as e:
        raise ConnectFailure(message=f"cannot open {path}: {e}", retryable=False, cause=e) from e
    log.debug("opened %s (%s)", path, mode)
    if mode == "rb":
        return Peer(_FileReader(f), NullWriter())
    return Peer(_EmptyReader(), _FileWriter(f))


class _FileSpecifier(Specifier):
    mode = "rb"

    @classmethod
    def from_node(cls, arg: str, inner: Optional[Specifier]) -> Specifier:
        if not arg:
            raise ConstructionError.bad_argument(cls.klass.name, arg, "expected a file path")
        return cls(arg, inner)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        path, mode = self.arg, self.mode

        async def _open() -> Peer:
            return await open_file_peer(path, mode)

        return once(_open)


@register
class ReadFile(_FileSpecifier):
    klass = SpecifierClass(
        name="readfile",
        prefixes=("readfile:",),
        help="Read a file; writes are discarded. Argument is a file path.",
    )


@register
class WriteFile(_FileSpecifier):
    klass = SpecifierClass(
        name="writefile",
        prefixes=("writefile:",),
        help="Truncate and write a file; reading yields nothing. Argument is a file path.",
    )
    mode = "wb"


@register
class AppendFile(_FileSpecifier):
    klass = SpecifierClass(
        name="appendfile",
        prefixes=("appendfile:",),
        help="Append to a file; reading yields nothing. Argument is a file path.",
    )
    mode = "ab"
