"""
broadcast: one upstream connection fanned out to every consumer.

A pump task reads the upstream in buffer_size chunks and offers each chunk
to every subscriber's bounded queue. A full queue drops its oldest chunk, so
a slow consumer loses data instead of stalling the others. Consumers cannot
write; upstream end of data or failure reaches every consumer.
"""
from __future__ import annotations

import asyncio
import collections
import logging
from typing import Deque, Hashable, Optional, Set

from .. import metrics
from ..constructor import PeerConstructor, PeerOpener, once
from ..errors import UnsupportedOperation
from ..options import DebtHandling
from ..peer import MessageSource, Peer, Writer
from ..readdebt import DebtReader
from ..specifier import ConstructParams, Specifier, SpecifierClass, register
from ..state import ProgramState

log = logging.getLogger("wspipe.peers.broadcast")

__all__ = ["BroadcastHub", "Subscription", "Broadcast"]


class Subscription(MessageSource):
    """One consumer's view of the hub."""

    __slots__ = ("_hub", "_items", "_ready", "_ended", "_final", "dropped")

    def __init__(self, hub: "BroadcastHub", queue_len: int):
        self._hub = hub
        self._items: Deque[bytes] = collections.deque(maxlen=queue_len)
        self._ready = asyncio.Event()
        # End of data is kept apart from the chunks so it never costs one.
        self._ended = False
        self._final: Optional[BaseException] = None
        self.dropped = 0

    def offer(self, chunk: bytes) -> None:
        if len(self._items) == self._items.maxlen:
            self.dropped += 1
            metrics.inc_broadcast_drop()
            log.debug("broadcast drop: queue_full size=%s", self._items.maxlen)
        self._items.append(chunk)
        self._ready.set()

    def finish(self, final: Optional[BaseException]) -> None:
        """Mark the end of data; `final` is raised to the consumer once the chunks are drained."""
        if not self._ended:
            self._ended = True
            self._final = final
        self._ready.set()

    async def recv_message(self) -> Optional[bytes]:
        while not self._items:
            if self._ended:
                if self._final is not None:
                    raise self._final
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    async def close(self) -> None:
        self._hub.unsubscribe(self)


class _NoWrite(Writer):
    async def write(self, data: bytes) -> None:
        raise UnsupportedOperation(message="broadcast consumers cannot write")


class BroadcastHub:
    """Upstream connection, pump task and the live subscriptions."""

    def __init__(self, key: Hashable, state: ProgramState, *, buffer_size: int, queue_len: int):
        self.key = key
        self.state = state
        self.buffer_size = buffer_size
        self.queue_len = queue_len
        self.upstream: Optional[Peer] = None
        self.subscribers: Set[Subscription] = set()
        self._pending: Optional["asyncio.Future[None]"] = None
        self._pump: Optional["asyncio.Task[None]"] = None

    async def subscribe(self, opener: PeerOpener) -> Subscription:
        """Register a consumer, connecting the upstream on first use."""
        # Subscribed before the pump starts so the first chunk is not missed.
        sub = Subscription(self, self.queue_len)
        self.subscribers.add(sub)
        if self.upstream is None:
            if self._pending is None:
                self._pending = asyncio.ensure_future(self._connect(opener))
            try:
                await asyncio.shield(self._pending)
            except BaseException:
                self.subscribers.discard(sub)
                raise
        log.debug("broadcast subscriber added (total=%d)", len(self.subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self.subscribers.discard(sub)

    async def _connect(self, opener: PeerOpener) -> None:
        try:
            self.upstream = await opener()
        except BaseException:
            self._pending = None
            self._retire()
            raise
        self._pending = None
        self._pump = asyncio.create_task(self._run_pump(self.upstream), name="wspipe-broadcast-pump")

    async def _run_pump(self, upstream: Peer) -> None:
        final: Optional[BaseException] = None
        try:
            while True:
                data = await upstream.reader.read(self.buffer_size)
                if not data:
                    log.info("broadcast upstream finished")
                    break
                for sub in list(self.subscribers):
                    sub.offer(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("broadcast upstream failed: %s", e)
            final = e
        self._retire()
        for sub in list(self.subscribers):
            sub.finish(final)

    def _retire(self) -> None:
        # A finished hub leaves the registry; the next construction starts over.
        if self.state.broadcast_hubs.get(self.key) is self:
            del self.state.broadcast_hubs[self.key]

    async def close(self) -> None:
        self._retire()
        if self._pending is not None:
            self._pending.cancel()
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
            await asyncio.wait([self._pump])
        if self.upstream is not None:
            await self.upstream.close()
        for sub in list(self.subscribers):
            sub.finish(None)


def consumer_peer(sub: Subscription, handling: DebtHandling) -> Peer:
    return Peer(DebtReader(sub, handling), _NoWrite())


@register
class Broadcast(Specifier):
    klass = SpecifierClass(
        name="broadcast",
        prefixes=("broadcast:", "reuse:", "reuse-broadcast:", "broadcast-reuse:"),
        overlay=True,
        help="Reuse this connection for serving multiple clients, sending replicated data to "
        "each client. Clients that fall behind lose the oldest data.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner, state, options = self.require_inner(), cp.state, cp.options

        async def _open_inner() -> Peer:
            return await inner.construct(cp).get_only_first_conn()

        async def _open() -> Peer:
            hub = state.broadcast_hubs.get(self)
            if hub is None:
                hub = state.broadcast_hubs[self] = BroadcastHub(
                    self,
                    state,
                    buffer_size=options.buffer_size,
                    queue_len=options.broadcast_queue_len,
                )
            sub = await hub.subscribe(_open_inner)
            return consumer_peer(sub, options.read_debt_handling)

        return once(_open)
