"""In-memory endpoints: mirror:, literal:, clogged:."""
from __future__ import annotations

import asyncio

from ..constructor import PeerConstructor, once
from ..peer import NullWriter, Peer, Reader, StreamReaderAdapter, Writer
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

__all__ = ["Mirror", "Literal", "Clogged", "mirror_peer", "literal_peer"]


class _FeedWriter(Writer):
    """Writes land in an asyncio.StreamReader; shutdown() feeds EOF."""

    __slots__ = ("_buf", "_shut")

    def __init__(self, buf: asyncio.StreamReader):
        self._buf = buf
        self._shut = False

    async def write(self, data: bytes) -> None:
        if not self._shut:
            self._buf.feed_data(data)

    async def shutdown(self) -> None:
        if not self._shut:
            self._shut = True
            self._buf.feed_eof()

    async def close(self) -> None:
        await self.shutdown()


def mirror_peer() -> Peer:
    buf = asyncio.StreamReader()
    return Peer(StreamReaderAdapter(buf), _FeedWriter(buf))


def literal_peer(data: bytes) -> Peer:
    buf = asyncio.StreamReader()
    if data:
        buf.feed_data(data)
    buf.feed_eof()
    return Peer(StreamReaderAdapter(buf), NullWriter())


@register
class Mirror(Specifier):
    klass = SpecifierClass(
        name="mirror",
        prefixes=("mirror:",),
        help="Simply copy output to input. No arguments needed.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        async def _open() -> Peer:
            return mirror_peer()

        return once(_open)


@register
class Literal(Specifier):
    klass = SpecifierClass(
        name="literal",
        prefixes=("literal:",),
        help="Output a string, discard input.\n\nExample: wspipe ws-l:127.0.0.1:8080 literal:'Hello'",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        data = self.arg.encode()

        async def _open() -> Peer:
            return literal_peer(data)

        return once(_open)


class _HungReader(Reader):
    async def read(self, n: int) -> bytes:
        await asyncio.Event().wait()
        return b""


class _HungWriter(Writer):
    async def write(self, data: bytes) -> None:
        await asyncio.Event().wait()


@register
class Clogged(Specifier):
    klass = SpecifierClass(
        name="clogged",
        prefixes=("clogged:",),
        help="Do nothing. Don't read or write any bytes. Keep connections hung.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        async def _open() -> Peer:
            return Peer(_HungReader(), _HungWriter())

        return once(_open)
