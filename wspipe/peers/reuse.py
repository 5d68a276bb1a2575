"""
reuse-raw: one real connection shared by every consumer of the slot.

The slot is keyed by the overlay specifier instance in ProgramState. The
first consumer starts the construction; consumers arriving while it is in
flight wait on the same attempt. A failed attempt is delivered to all of
them and clears the slot, so the next consumer tries again.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..constructor import PeerConstructor, PeerOpener, once
from ..peer import Peer, SharedPeer
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.reuse")

__all__ = ["ReuseSlot", "ReuseRaw"]


class ReuseSlot:
    __slots__ = ("shared", "_pending", "constructions")

    def __init__(self) -> None:
        self.shared: Optional[SharedPeer] = None
        self._pending: Optional["asyncio.Future[SharedPeer]"] = None
        self.constructions = 0

    async def acquire(self, opener: PeerOpener) -> Peer:
        """A handle on the slot's connection, connecting first if needed."""
        if self.shared is None:
            if self._pending is None:
                self._pending = asyncio.ensure_future(self._connect(opener))
            shared = await asyncio.shield(self._pending)
        else:
            shared = self.shared
        return shared.handle()

    async def _connect(self, opener: PeerOpener) -> SharedPeer:
        self.constructions += 1
        log.debug("reuse slot connecting (attempt %d)", self.constructions)
        try:
            peer = await opener()
        except BaseException:
            self._pending = None
            raise
        self.shared = SharedPeer(peer)
        self._pending = None
        return self.shared

    async def close(self) -> None:
        shared, self.shared = self.shared, None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if shared is not None:
            await shared.close()


@register
class ReuseRaw(Specifier):
    klass = SpecifierClass(
        name="reuse-raw",
        prefixes=("reuse-raw:", "raw-reuse:"),
        overlay=True,
        help="Reuse subspecifier for serving multiple clients: unpredictable mode.\n\n"
        "All clients share one connection; nothing separates their data.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()
        slot = cp.state.reuse_slots.get(self)
        if slot is None:
            slot = cp.state.reuse_slots[self] = ReuseSlot()

        async def _open_inner() -> Peer:
            return await inner.construct(cp).get_only_first_conn()

        async def _open() -> Peer:
            return await slot.acquire(_open_inner)

        return once(_open)
