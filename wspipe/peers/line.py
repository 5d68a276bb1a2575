"""
Line mode: line2msg: and msg2line: overlays.

line2msg: reads the inner byte stream and hands out one line per read, so a
message-oriented peer on the other side sends one message per line. Writes
pass through unchanged.

msg2line: is the reverse adapter for the write direction: every write (one
message) becomes exactly one line on the inner stream. Reads pass through.

The separator is a newline, or NUL with linemode_zero_terminated.
"""
from __future__ import annotations

import logging
from typing import Tuple

from ..constructor import PeerConstructor
from ..options import Options
from ..peer import Peer, Reader, Writer
from ..specifier import (
    ConstructParams,
    MessageBoundary,
    Multiconnect,
    Specifier,
    SpecifierClass,
    register,
)

log = logging.getLogger("wspipe.peers.line")

__all__ = ["LineReader", "LineWriter", "Line2Message", "Message2Line", "auto_linemode"]


def separator(options: Options) -> bytes:
    return b"\0" if options.linemode_zero_terminated else b"\n"


def _strip(line: bytes, sep: bytes) -> bytes:
    if line.endswith(sep):
        line = line[:-1]
        if sep == b"\n" and line.endswith(b"\r"):
            line = line[:-1]
    return line


class LineReader(Reader):
    """
    Splits an inner byte stream on `sep`, one line per read.

    A line that does not fit into the caller's `n` is split into pieces, or,
    when strict, dropped whole. Strict mode also drops an unterminated last
    line. Lines that are empty after stripping are skipped, since an empty
    read means end of data.
    """

    __slots__ = ("_inner", "_sep", "_strip", "_strict", "_buf", "_eof", "_discarding")

    def __init__(self, inner: Reader, sep: bytes = b"\n", *, strip: bool = False, strict: bool = False):
        self._inner = inner
        self._sep = sep
        self._strip = strip
        self._strict = strict
        self._buf = bytearray()
        self._eof = False
        # Strict mode is skipping the rest of an overlong line.
        self._discarding = False

    def _emit(self, line: bytes) -> bytes:
        return _strip(line, self._sep) if self._strip else line

    async def read(self, n: int) -> bytes:
        if n <= 0:
            return b""
        while True:
            idx = self._buf.find(self._sep)
            if idx >= 0 and self._discarding:
                del self._buf[: idx + 1]
                self._discarding = False
                continue
            if 0 <= idx < n:
                line = bytes(self._buf[: idx + 1])
                del self._buf[: idx + 1]
                out = self._emit(line)
                if out:
                    return out
                continue
            if len(self._buf) >= n and not self._discarding:
                if self._strict:
                    log.warning("Dropping a line longer than %d bytes", n)
                    self._discarding = True
                    continue
                piece = bytes(self._buf[:n])
                del self._buf[:n]
                return piece
            if self._discarding:
                self._buf.clear()
            if self._eof:
                rest = bytes(self._buf)
                self._buf.clear()
                if rest and not self._strict and not self._discarding:
                    out = self._emit(rest)
                    if out:
                        return out
                elif rest:
                    log.debug("dropping unterminated last line (%d bytes)", len(rest))
                return b""
            data = await self._inner.read(n)
            if not data:
                self._eof = True
            else:
                self._buf += data

    async def close(self) -> None:
        await self._inner.close()


class LineWriter(Writer):
    """Each write becomes one `sep`-terminated line; inner separators turn into spaces."""

    __slots__ = ("_inner", "_sep")

    def __init__(self, inner: Writer, sep: bytes = b"\n"):
        self._inner = inner
        self._sep = sep

    async def write(self, data: bytes) -> None:
        line = _strip(data, self._sep).replace(self._sep, b" ")
        await self._inner.write(line + self._sep)

    async def shutdown(self) -> None:
        await self._inner.shutdown()

    async def close(self) -> None:
        await self._inner.close()


def _line_options(options: Options) -> Tuple[bytes, bool, bool]:
    return separator(options), options.linemode_strip_newlines, options.linemode_strict


@register
class Line2Message(Specifier):
    klass = SpecifierClass(
        name="line2msg",
        prefixes=("line2msg:",),
        overlay=True,
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        multiconnect=Multiconnect.DEPENDS_ON_INNER,
        help="Line delimited text -> messages. Each read yields one line; writes are passed through.\n\n"
        "Honours --strip, --strict and --null-terminated.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()
        sep, strip, strict = _line_options(cp.options)

        async def _overlay(peer: Peer) -> Peer:
            return Peer(LineReader(peer.reader, sep, strip=strip, strict=strict), peer.writer)

        return inner.construct(cp).map(_overlay)


@register
class Message2Line(Specifier):
    klass = SpecifierClass(
        name="msg2line",
        prefixes=("msg2line:",),
        overlay=True,
        multiconnect=Multiconnect.DEPENDS_ON_INNER,
        help="Messages -> line delimited text. Each write becomes one line; reads are passed through.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()
        sep = separator(cp.options)

        async def _overlay(peer: Peer) -> Peer:
            return Peer(peer.reader, LineWriter(peer.writer, sep))

        return inner.construct(cp).map(_overlay)


def auto_linemode(left: Specifier, right: Specifier, options: Options) -> Tuple[Specifier, Specifier]:
    """
    In text mode, put the stream side of a message <-> stream pair into line
    mode: its lines become messages and each message it receives becomes a
    line. Anything else is returned unchanged.
    """
    if not options.websocket_text_mode or options.no_auto_linemode:
        return left, right
    lb, rb = left.klass.message_boundary, right.klass.message_boundary
    if lb is rb:
        return left, right
    wrap_left = lb is MessageBoundary.STREAM_ORIENTED
    stream = left if wrap_left else right
    wrapped = Line2Message("", Message2Line("", stream))
    log.debug("auto line mode for %r", stream)
    return (wrapped, right) if wrap_left else (left, wrapped)
