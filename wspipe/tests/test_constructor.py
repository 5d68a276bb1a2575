"""PeerConstructor shapes and overlay composition."""
from __future__ import annotations

import pytest

from wspipe.constructor import (
    Overlay1,
    OverlayM,
    ServeMultipleTimes,
    ServeOnce,
    multi,
    once,
    peer_err,
)
from wspipe.errors import ConnectFailure, TransferError
from wspipe.peer import Peer

from .fakes import memory_peer


def _tagging(calls, tag):
    async def overlay(peer: Peer) -> Peer:
        calls.append(tag)
        return peer

    return overlay


def _stream(peers, box=None, fail_with=None):
    async def gen():
        try:
            for p in peers:
                yield p
            if fail_with is not None:
                raise fail_with
        finally:
            if box is not None:
                box["closed"] = True

    return gen()


def test_map_keeps_shape_and_never_nests():
    async def opener():
        return memory_peer()

    pc = once(opener)
    assert type(pc) is ServeOnce and not pc.is_multiconnect
    m1 = pc.map(_tagging([], "a"))
    assert type(m1) is Overlay1
    m2 = m1.map(_tagging([], "b"))
    assert type(m2) is Overlay1
    assert m2.opener is opener

    spc = multi(_stream([]))
    assert type(spc) is ServeMultipleTimes and spc.is_multiconnect
    sm = spc.map(_tagging([], "a")).map(_tagging([], "b"))
    assert type(sm) is OverlayM and sm.is_multiconnect


@pytest.mark.asyncio
async def test_overlays_apply_in_attachment_order():
    calls = []
    peer = memory_peer()

    async def opener():
        calls.append("open")
        return peer

    pc = once(opener).map(_tagging(calls, "first")).map(_tagging(calls, "second")).map(_tagging(calls, "third"))
    assert await pc.get_only_first_conn() is peer
    assert calls == ["open", "first", "second", "third"]


@pytest.mark.asyncio
async def test_map_on_a_bare_overlay_shape():
    calls = []
    peer = memory_peer()

    async def opener():
        return peer

    pc = Overlay1(opener).map(_tagging(calls, "only"))
    assert await pc.get_only_first_conn() is peer
    assert calls == ["only"]

    sm = OverlayM(_stream([peer])).map(_tagging(calls, "item"))
    assert await sm.get_only_first_conn() is peer
    assert calls == ["only", "item"]


@pytest.mark.asyncio
async def test_nothing_runs_before_resolution():
    calls = []

    async def opener():
        calls.append("open")
        return memory_peer()

    pc = once(opener).map(_tagging(calls, "overlay"))
    assert calls == []
    del pc
    assert calls == []


@pytest.mark.asyncio
async def test_stream_each_applies_overlay_per_item():
    calls = []
    peers = [memory_peer(), memory_peer(), memory_peer()]
    pc = multi(_stream(peers)).map(_tagging(calls, "x")).map(_tagging(calls, "y"))
    got = [p async for p in _await_each(pc)]
    assert got == peers
    assert calls == ["x", "y"] * 3


async def _await_each(pc):
    async for item in pc.each():
        yield await item


@pytest.mark.asyncio
async def test_get_only_first_conn_on_stream_takes_first_and_closes_source():
    box = {}
    peers = [memory_peer(), memory_peer()]
    first = await multi(_stream(peers, box)).get_only_first_conn()
    assert first is peers[0]
    assert box.get("closed") is True


@pytest.mark.asyncio
async def test_empty_stream_has_no_first_connection():
    with pytest.raises(ConnectFailure):
        await multi(_stream([])).get_only_first_conn()


@pytest.mark.asyncio
async def test_failing_overlay_fails_only_its_item():
    peers = [memory_peer(), memory_peer(), memory_peer()]
    seen = []

    async def picky(peer: Peer) -> Peer:
        if peer is peers[1]:
            raise ConnectFailure(message="handshake failed")
        return peer

    async for item in multi(_stream(peers)).map(picky).each():
        try:
            seen.append(await item)
        except ConnectFailure:
            seen.append("failed")
    assert seen == [peers[0], "failed", peers[2]]


@pytest.mark.asyncio
async def test_stream_error_ends_iteration_and_propagates():
    peers = [memory_peer()]
    got = []
    with pytest.raises(TransferError):
        async for item in multi(_stream(peers, fail_with=TransferError(message="accept failed"))).each():
            got.append(await item)
    assert got == peers


@pytest.mark.asyncio
async def test_serve_once_each_yields_exactly_one():
    peer = memory_peer()

    async def opener():
        return peer

    items = [await item async for item in _collect(once(opener).each())]
    assert items == [peer]


async def _collect(aiter):
    async for item in aiter:
        yield item


@pytest.mark.asyncio
async def test_peer_err_fails_when_resolved():
    pc = peer_err(ConnectFailure(message="nope"))
    assert not pc.is_multiconnect
    with pytest.raises(ConnectFailure):
        await pc.get_only_first_conn()
