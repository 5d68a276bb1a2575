from __future__ import annotations

import abc
import asyncio
import contextlib
from dataclasses import dataclass
from typing import Optional

from .errors import TransferError

__all__ = [
    "Reader",
    "Writer",
    "MessageSource",
    "Peer",
    "StreamReaderAdapter",
    "StreamWriterAdapter",
    "NullWriter",
    "SharedPeer",
    "peer_from_streams",
]


# --------------------------- #
# Byte-stream halves          #
# --------------------------- #


class Reader(abc.ABC):
    """
    Readable half of a Peer.

    Semantics:
      - read(n) returns at most n bytes, suspending until some are available.
      - b"" means end of data; later calls keep returning b"".
      - Message-oriented transports are adapted to this contract by
        wspipe.readdebt.DebtReader.
    """

    @abc.abstractmethod
    async def read(self, n: int) -> bytes:
        ...

    async def close(self) -> None:
        """Release the readable half. Idempotent."""


class Writer(abc.ABC):
    """
    Writable half of a Peer.

    Semantics:
      - write(data) may suspend for back-pressure.
      - shutdown() signals end of data to the remote side (half-close).
      - close() releases resources without further signalling.
    """

    @abc.abstractmethod
    async def write(self, data: bytes) -> None:
        ...

    async def shutdown(self) -> None:
        """Half-close for sending. Idempotent."""

    async def close(self) -> None:
        """Release the writable half. Idempotent."""


class MessageSource(abc.ABC):
    """One message per call; None at end of data."""

    @abc.abstractmethod
    async def recv_message(self) -> Optional[bytes]:
        ...

    async def close(self) -> None:
        """Release the source. Idempotent."""


@dataclass
class Peer:
    """One concrete duplex connection: an owned readable and writable half."""

    reader: Reader
    writer: Writer

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self.reader.close()
        with contextlib.suppress(Exception):
            await self.writer.close()


# --------------------------- #
# asyncio stream adapters     #
# --------------------------- #


class StreamReaderAdapter(Reader):
    __slots__ = ("_reader",)

    def __init__(self, reader: asyncio.StreamReader):
        self._reader = reader

    async def read(self, n: int) -> bytes:
        try:
            return await self._reader.read(n)
        except (ConnectionError, OSError) as e:
            raise TransferError(message=f"read failed: {e}", cause=e) from e


class StreamWriterAdapter(Writer):
    __slots__ = ("_writer", "_shut", "_closed")

    def __init__(self, writer: asyncio.StreamWriter):
        self._writer = writer
        self._shut = False
        self._closed = False

    async def write(self, data: bytes) -> None:
        if self._shut or self._closed:
            raise TransferError(message="write after shutdown")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransferError(message=f"write failed: {e}", cause=e) from e

    async def shutdown(self) -> None:
        if self._shut or self._closed:
            return
        self._shut = True
        try:
            if self._writer.can_write_eof():
                self._writer.write_eof()
            else:
                await self.close()
        except (ConnectionError, OSError):
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(Exception):
            await self._writer.wait_closed()


class NullWriter(Writer):
    """Accepts and discards everything."""

    async def write(self, data: bytes) -> None:
        return None


class SharedPeer:
    """
    One underlying Peer handed out to many consumers.

    Every handle reads from and writes to the same halves; reads and writes
    are serialized so concurrent consumers never interleave inside one call.
    A handle's shutdown()/close() leave the shared connection open; only
    SharedPeer.close() releases it.
    """

    __slots__ = ("peer", "_read_lock", "_write_lock")

    def __init__(self, peer: Peer):
        self.peer = peer
        self._read_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    def handle(self) -> Peer:
        return Peer(_SharedReader(self), _SharedWriter(self))

    async def close(self) -> None:
        await self.peer.close()


class _SharedReader(Reader):
    __slots__ = ("_shared",)

    def __init__(self, shared: SharedPeer):
        self._shared = shared

    async def read(self, n: int) -> bytes:
        async with self._shared._read_lock:
            return await self._shared.peer.reader.read(n)


class _SharedWriter(Writer):
    __slots__ = ("_shared",)

    def __init__(self, shared: SharedPeer):
        self._shared = shared

    async def write(self, data: bytes) -> None:
        async with self._shared._write_lock:
            await self._shared.peer.writer.write(data)


def peer_from_streams(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Peer:
    return Peer(StreamReaderAdapter(reader), StreamWriterAdapter(writer))
