"""
Shared defaults for the wspipe engine.

Centralized so options, transports and the session driver agree on sizes and
timings. Values here are defaults only; runtime values live in
:class:`wspipe.options.Options`.
"""
from __future__ import annotations

from typing import Final

__all__ = [
    "ENV_PREFIX",
    "DEFAULT_BUFFER_SIZE",
    "DEFAULT_BROADCAST_QUEUE_LEN",
    "DEFAULT_AUTORECONNECT_DELAY",
    "MAX_MESSAGE_SIZE_DEFAULT",
    "WS_HANDSHAKE_READ_CHUNK",
    "ENV_URI",
    "ENV_CLIENT",
]

ENV_PREFIX: Final[str] = "WSPIPE_"

# ---- copy & fan-out sizing ---------------------------------------------------

DEFAULT_BUFFER_SIZE: Final[int] = 65536
DEFAULT_BROADCAST_QUEUE_LEN: Final[int] = 16

# Largest single WebSocket message accepted from the remote side.
MAX_MESSAGE_SIZE_DEFAULT: Final[int] = 1 << 20  # 1 MiB

# ---- timings (seconds) -------------------------------------------------------

DEFAULT_AUTORECONNECT_DELAY: Final[float] = 0.02

# ---- WebSocket plumbing ------------------------------------------------------

WS_HANDSHAKE_READ_CHUNK: Final[int] = 4096

# ---- environment handed to child processes ----------------------------------

ENV_URI: Final[str] = "WSPIPE_URI"
ENV_CLIENT: Final[str] = "WSPIPE_CLIENT"
