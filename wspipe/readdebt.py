"""
Message -> byte-stream boundary adapter.

Message-oriented sources (WebSocket, broadcast queues) hand out one whole
message per call, while stream consumers ask for arbitrary-sized chunks. A
message larger than the caller's chunk is split across several reads; the
undelivered remainder is the *debt*, and it is always drained before the next
message is pulled, so one read result never mixes bytes of two messages.
"""
from __future__ import annotations

import logging
from typing import Optional

from .errors import FramingViolation
from .options import DebtHandling
from .peer import MessageSource, Reader

log = logging.getLogger("wspipe.readdebt")

__all__ = ["ReadDebt", "DebtReader"]


class ReadDebt:
    __slots__ = ("_buf", "_pos", "handling")

    def __init__(self, handling: DebtHandling = DebtHandling.SILENT):
        self._buf: bytes = b""
        self._pos: int = 0
        self.handling = handling

    @property
    def pending(self) -> int:
        return len(self._buf) - self._pos

    def check_debt(self, n: int) -> Optional[bytes]:
        """Serve up to n bytes of outstanding debt, or None if there is none."""
        if self.pending == 0:
            return None
        end = min(self._pos + n, len(self._buf))
        chunk = self._buf[self._pos:end]
        if end == len(self._buf):
            self._buf, self._pos = b"", 0
        else:
            self._pos = end
        return chunk

    def process_message(self, n: int, msg: bytes) -> Optional[bytes]:
        """
        Take a freshly received message and return what fits into n bytes.

        Returns None when the message was dropped (DROP_MESSAGE policy) and the
        caller should read the next one. Raises FramingViolation under ERROR.
        """
        if self.pending:
            raise RuntimeError("process_message() called with outstanding debt")
        if len(msg) <= n:
            return msg
        if self.handling is DebtHandling.ERROR:
            raise FramingViolation.message_split(len(msg), n)
        if self.handling is DebtHandling.DROP_MESSAGE:
            log.warning("Dropping too large message (%d > %d)", len(msg), n)
            return None
        if self.handling is DebtHandling.WARN:
            log.warning("Incoming message too long (%d > %d): splitting it into parts", len(msg), n)
        self._buf, self._pos = msg, n
        return msg[:n]


class DebtReader(Reader):
    """Reader over a MessageSource, carrying debt between read calls."""

    __slots__ = ("_source", "_debt", "_failed")

    def __init__(self, source: MessageSource, handling: DebtHandling = DebtHandling.SILENT):
        self._source = source
        self._debt = ReadDebt(handling)
        self._failed: Optional[FramingViolation] = None

    @property
    def debt(self) -> ReadDebt:
        return self._debt

    async def read(self, n: int) -> bytes:
        if self._failed is not None:
            raise self._failed
        if n <= 0:
            return b""
        while True:
            owed = self._debt.check_debt(n)
            if owed is not None:
                return owed
            msg = await self._source.recv_message()
            if msg is None:
                return b""
            if not msg:
                # b"" would read as end of data
                log.debug("skipping empty message")
                continue
            try:
                out = self._debt.process_message(n, msg)
            except FramingViolation as e:
                self._failed = e
                raise
            if out is not None:
                return out

    async def close(self) -> None:
        await self._source.close()
