"""line2msg:/msg2line: overlays and automatic line mode."""
from __future__ import annotations

import asyncio

import pytest

from wspipe.options import Options
from wspipe.peer import Peer
from wspipe.peers.line import Line2Message, LineReader, LineWriter, Message2Line, auto_linemode
from wspipe.peers.stdio import Stdio
from wspipe.session import serve
from wspipe.specifier import build_specifier
from wspipe.specparse import parse

from .fakes import ChunkReader, CollectWriter, FakeLeaf, make_cp, memory_peer


async def _lines(reader, n: int = 1024):
    out = []
    while True:
        chunk = await reader.read(n)
        if not chunk:
            return out
        out.append(chunk)


@pytest.mark.asyncio
async def test_one_line_per_read_keeps_separator():
    reader = LineReader(ChunkReader([b"ab\ncd", b"\nef"]))
    assert await _lines(reader) == [b"ab\n", b"cd\n", b"ef"]


@pytest.mark.asyncio
async def test_strip_removes_newlines_and_skips_empty_lines():
    reader = LineReader(ChunkReader([b"a\r\nb\n\n\r\nc\n"]), strip=True)
    assert await _lines(reader) == [b"a", b"b", b"c"]


@pytest.mark.asyncio
async def test_zero_terminated_lines():
    reader = LineReader(ChunkReader([b"x\ny\0z\0"]), b"\0", strip=True)
    assert await _lines(reader) == [b"x\ny", b"z"]


@pytest.mark.asyncio
async def test_long_lines_are_split_when_not_strict():
    reader = LineReader(ChunkReader([b"abcdefgh\nz\n"]), strip=True)
    assert await _lines(reader, 4) == [b"abcd", b"efgh", b"z"]


@pytest.mark.asyncio
async def test_strict_drops_long_and_unterminated_lines():
    reader = LineReader(ChunkReader([b"ab\nabcdefgh\ncd"]), strict=True)
    assert await _lines(reader, 4) == [b"ab\n"]


@pytest.mark.asyncio
async def test_unterminated_last_line_is_kept_when_not_strict():
    reader = LineReader(ChunkReader([b"ab\ncd"]), strip=True)
    assert await _lines(reader, 4) == [b"ab", b"cd"]


@pytest.mark.asyncio
async def test_each_write_becomes_one_line():
    inner = CollectWriter()
    writer = LineWriter(inner)
    await writer.write(b"hello")
    await writer.write(b"a\nb\n")
    await writer.write(b"crlf\r\n")
    assert inner.writes == [b"hello\n", b"a b\n", b"crlf\n"]

    zinner = CollectWriter()
    await LineWriter(zinner, b"\0").write(b"x\0y")
    assert zinner.writes == [b"x y\0"]


@pytest.mark.asyncio
async def test_line2msg_reads_lines_and_passes_writes():
    peer = memory_peer([b"one\ntwo\n"])
    spec = Line2Message("", FakeLeaf(peer))
    got = await spec.construct(make_cp(Options(linemode_strip_newlines=True))).get_only_first_conn()
    assert await got.reader.read(100) == b"one"
    await got.writer.write(b"raw")
    assert peer.writer.writes == [b"raw"]


@pytest.mark.asyncio
async def test_null_terminated_option_reaches_both_overlays():
    peer = memory_peer([b"a\0b\0"])
    spec = Line2Message("", Message2Line("", FakeLeaf(peer)))
    got = await spec.construct(make_cp(Options(linemode_zero_terminated=True))).get_only_first_conn()
    assert await got.reader.read(100) == b"a\0"
    await got.writer.write(b"msg")
    assert peer.writer.writes == [b"msg\0"]


@pytest.mark.asyncio
async def test_session_through_line_mode_keeps_message_boundaries(errors):
    stream = memory_peer([b"a\nb\n"])
    messages = Peer(ChunkReader([b"x", b"y\nz"]), CollectWriter())
    left = Line2Message("", Message2Line("", FakeLeaf(stream)))
    await asyncio.wait_for(
        serve(left, FakeLeaf(messages), Options(linemode_strip_newlines=True), errors.append), 2
    )
    assert messages.writer.writes == [b"a", b"b"]
    assert bytes(stream.writer.data) == b"x\ny z\n"
    assert errors == []


def test_auto_linemode_wraps_the_stream_side_in_text_mode():
    ws = build_specifier(parse("ws-l:127.0.0.1:8080"))
    stdio = build_specifier(parse("-"))
    left, right = auto_linemode(ws, stdio, Options(websocket_text_mode=True))
    assert left is ws
    assert isinstance(right, Line2Message)
    assert isinstance(right.inner, Message2Line)
    assert isinstance(right.inner.inner, Stdio)

    left, right = auto_linemode(stdio, ws, Options(websocket_text_mode=True))
    assert isinstance(left, Line2Message) and right is ws


@pytest.mark.parametrize(
    "options, texts",
    [
        (Options(), ("ws-l:127.0.0.1:8080", "-")),
        (Options(websocket_text_mode=True, no_auto_linemode=True), ("ws-l:127.0.0.1:8080", "-")),
        (Options(websocket_text_mode=True), ("tcp-l:127.0.0.1:8080", "-")),
        (Options(websocket_text_mode=True), ("ws-l:127.0.0.1:8080", "ws://127.0.0.1:1/")),
    ],
)
def test_auto_linemode_leaves_other_pairs_alone(options, texts):
    left, right = (build_specifier(parse(t)) for t in texts)
    assert auto_linemode(left, right, options) == (left, right)
