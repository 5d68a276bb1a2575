"""
autoreconnect: hide connection loss behind one continuous Peer.

Whenever the active inner Peer reports end of data or fails, it is dropped
and the inner specifier is constructed again after a fixed delay
(Options.autoreconnect_delay); attempts are not capped. Reads and writes that
find no live Peer wait for the next one. Errors that a new connection cannot
fix (bad specifier, writing into a read-only Peer, framing policy) are not
retried.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from .. import metrics
from ..constructor import PeerConstructor, once
from ..errors import ConfigError, ConstructionError, FramingViolation, TransferError, UnsupportedOperation
from ..peer import Peer, Reader, Writer
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.reconnect")

__all__ = ["Reconnector", "AutoReconnect"]

_NOT_RETRYABLE = (ConstructionError, ConfigError, UnsupportedOperation, FramingViolation)


class Reconnector:
    """The currently active inner Peer plus the logic to replace it."""

    def __init__(self, inner: Specifier, cp: ConstructParams):
        self.inner = inner
        self.cp = cp
        self.delay = cp.options.autoreconnect_delay
        self.peer: Optional[Peer] = None
        # Bumped per replacement so a stale failure cannot discard a fresh Peer.
        self.generation = 0
        self.attempts = 0
        self._connecting: Optional["asyncio.Future[None]"] = None
        self._closed = False

    async def current(self) -> Tuple[Peer, int]:
        while self.peer is None:
            if self._closed:
                raise TransferError(message="autoreconnect peer is closed", retryable=False)
            if self._connecting is None:
                self._connecting = asyncio.ensure_future(self._connect())
            await asyncio.shield(self._connecting)
        return self.peer, self.generation

    async def _connect(self) -> None:
        try:
            while True:
                if self.attempts:
                    await asyncio.sleep(self.delay)
                    metrics.inc_reconnect()
                self.attempts += 1
                try:
                    peer = await self.inner.construct(self.cp).get_only_first_conn()
                except _NOT_RETRYABLE:
                    raise
                except Exception as e:
                    log.warning("autoreconnect: attempt %d failed: %s", self.attempts, e)
                    continue
                self.peer = peer
                self.generation += 1
                log.info("autoreconnect: connected (generation %d)", self.generation)
                return
        finally:
            self._connecting = None

    async def discard(self, generation: int) -> None:
        if generation != self.generation or self.peer is None:
            return
        peer, self.peer = self.peer, None
        await peer.close()

    async def close(self) -> None:
        self._closed = True
        if self._connecting is not None:
            self._connecting.cancel()
        if self.peer is not None:
            peer, self.peer = self.peer, None
            await peer.close()


class _ReconnectReader(Reader):
    __slots__ = ("_rc",)

    def __init__(self, rc: Reconnector):
        self._rc = rc

    async def read(self, n: int) -> bytes:
        while True:
            peer, gen = await self._rc.current()
            try:
                data = await peer.reader.read(n)
            except _NOT_RETRYABLE:
                raise
            except Exception as e:
                log.info("autoreconnect: read failed: %s", e)
                await self._rc.discard(gen)
                continue
            if data:
                return data
            log.info("autoreconnect: end of data, reconnecting")
            await self._rc.discard(gen)

    async def close(self) -> None:
        await self._rc.close()


class _ReconnectWriter(Writer):
    __slots__ = ("_rc",)

    def __init__(self, rc: Reconnector):
        self._rc = rc

    async def write(self, data: bytes) -> None:
        while True:
            peer, gen = await self._rc.current()
            try:
                await peer.writer.write(data)
                return
            except _NOT_RETRYABLE:
                raise
            except Exception as e:
                log.info("autoreconnect: write failed: %s", e)
                await self._rc.discard(gen)

    async def shutdown(self) -> None:
        if self._rc.peer is not None:
            await self._rc.peer.writer.shutdown()

    async def close(self) -> None:
        await self._rc.close()


@register
class AutoReconnect(Specifier):
    klass = SpecifierClass(
        name="autoreconnect",
        prefixes=("autoreconnect:",),
        overlay=True,
        help="Re-establish underlying connection on any error or EOF. "
        "The delay between attempts is --autoreconnect-delay.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()

        async def _open() -> Peer:
            rc = Reconnector(inner, cp)
            await rc.current()
            return Peer(_ReconnectReader(rc), _ReconnectWriter(rc))

        return once(_open)
