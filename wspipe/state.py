from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Hashable, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .peer import Peer
    from .peers.broadcast import BroadcastHub
    from .peers.reuse import ReuseSlot

__all__ = ["ProgramState"]


@dataclass
class ProgramState:
    """
    Process-wide registries, created once per run and passed by reference
    through ConstructParams.

    Keys are reuse-slot identities (the overlay specifier instance that owns
    the slot). The first construction for a slot populates it; later ones
    read it. Everything here is touched only from the event loop thread.
    """

    reuse_slots: Dict[Hashable, "ReuseSlot"] = field(default_factory=dict)
    broadcast_hubs: Dict[Hashable, "BroadcastHub"] = field(default_factory=dict)
    stdio: Optional["Peer"] = None

    async def aclose(self) -> None:
        """Release shared connections still held by the registries."""
        hubs, self.broadcast_hubs = list(self.broadcast_hubs.values()), {}
        slots, self.reuse_slots = list(self.reuse_slots.values()), {}
        for hub in hubs:
            await hub.close()
        for slot in slots:
            await slot.close()
