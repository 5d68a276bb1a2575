"""
PeerConstructor: the result of realizing a specifier into pending connection(s).

Four shapes, {one Peer, a stream of Peers} x {untransformed, transformed}:

    ServeOnce(opener)             -> exactly one Peer
    ServeMultipleTimes(source)    -> lazy, possibly unbounded Peers
    Overlay1(opener, overlay)     -> one Peer, passed through `overlay`
    OverlayM(source, overlay)     -> each Peer passed through `overlay`

Attaching a transform to an already transformed shape composes the two
functions (new after old), so nesting depth never changes the shape.

`opener` is a zero-argument coroutine function: nothing starts until the
constructor is resolved, and dropping an unresolved constructor has no side
effects.
"""
from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from .errors import ConnectFailure
from .peer import Peer

__all__ = [
    "PeerOpener",
    "PeerOverlay",
    "PeerConstructor",
    "ServeOnce",
    "ServeMultipleTimes",
    "Overlay1",
    "OverlayM",
    "compose_overlays",
    "once",
    "multi",
    "peer_err",
]

PeerOpener = Callable[[], Awaitable[Peer]]
PeerOverlay = Callable[[Peer], Awaitable[Peer]]


def compose_overlays(first: PeerOverlay, second: PeerOverlay) -> PeerOverlay:
    """second . first"""

    async def composed(peer: Peer) -> Peer:
        return await second(await first(peer))

    return composed


class PeerConstructor:
    """Common behaviour of the four shapes."""

    is_multiconnect: bool = False
    overlay: Optional[PeerOverlay] = None

    def map(self, overlay: PeerOverlay) -> "PeerConstructor":
        raise NotImplementedError

    async def _apply(self, peer: Peer) -> Peer:
        if self.overlay is None:
            return peer
        return await self.overlay(peer)

    async def get_only_first_conn(self) -> Peer:
        """
        Resolve to exactly one Peer. For stream shapes this is the first item;
        the underlying stream is closed afterwards.
        """
        raise NotImplementedError

    def each(self) -> AsyncIterator[Awaitable[Peer]]:
        """
        Lazily yield one awaitable per Peer. A failing awaitable affects only
        its own item; an exception from the underlying stream ends iteration.
        """
        raise NotImplementedError


@dataclass
class ServeOnce(PeerConstructor):
    opener: PeerOpener

    def map(self, overlay: PeerOverlay) -> PeerConstructor:
        return Overlay1(self.opener, overlay)

    async def get_only_first_conn(self) -> Peer:
        return await self._apply(await self.opener())

    async def each(self) -> AsyncIterator[Awaitable[Peer]]:
        yield self.get_only_first_conn()


@dataclass
class Overlay1(ServeOnce):
    overlay: Optional[PeerOverlay] = None

    def map(self, overlay: PeerOverlay) -> PeerConstructor:
        if self.overlay is not None:
            overlay = compose_overlays(self.overlay, overlay)
        return Overlay1(self.opener, overlay)


@dataclass
class ServeMultipleTimes(PeerConstructor):
    source: AsyncIterator[Peer]
    is_multiconnect = True

    def map(self, overlay: PeerOverlay) -> PeerConstructor:
        return OverlayM(self.source, overlay)

    async def get_only_first_conn(self) -> Peer:
        async with contextlib.aclosing(self.source) as src:
            async for peer in src:
                return await self._apply(peer)
        raise ConnectFailure(message="peer stream ended before producing a connection", retryable=False)

    async def each(self) -> AsyncIterator[Awaitable[Peer]]:
        async with contextlib.aclosing(self.source) as src:
            async for peer in src:
                yield self._apply(peer)


@dataclass
class OverlayM(ServeMultipleTimes):
    overlay: Optional[PeerOverlay] = None

    def map(self, overlay: PeerOverlay) -> PeerConstructor:
        if self.overlay is not None:
            overlay = compose_overlays(self.overlay, overlay)
        return OverlayM(self.source, overlay)


# ---- helpers -----------------------------------------------------------------


def once(opener: PeerOpener) -> PeerConstructor:
    return ServeOnce(opener)


def multi(source: AsyncIterator[Peer]) -> PeerConstructor:
    return ServeMultipleTimes(source)


def peer_err(exc: BaseException) -> PeerConstructor:
    """A single-result constructor that fails with `exc` when resolved."""

    async def _fail() -> Peer:
        raise exc

    return ServeOnce(_fail)
