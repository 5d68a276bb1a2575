"""autoreconnect: failures and end of data hidden behind one continuous Peer."""
from __future__ import annotations

import asyncio

import pytest

from wspipe import metrics
from wspipe.errors import ConnectFailure, TransferError, UnsupportedOperation
from wspipe.options import Options
from wspipe.peer import Peer
from wspipe.peers.reconnect import AutoReconnect

from .fakes import ChunkReader, CollectWriter, FakeLeaf, HangingReader, make_cp, memory_peer

FAST = Options(autoreconnect_delay=0.0)


def _hanging_peer() -> Peer:
    return Peer(HangingReader(), CollectWriter())


def _reconnects() -> float:
    return metrics.wspipe_reconnects_total._value.get()


@pytest.mark.asyncio
async def test_k_failures_then_one_continuous_stream():
    k = 3
    leaf = FakeLeaf(
        *[ConnectFailure(message=f"refused {i}") for i in range(k)],
        memory_peer([b"hello"]),
        memory_peer([b" world"]),
        then=_hanging_peer,
    )
    spec = AutoReconnect("", leaf)
    before = _reconnects()

    peer = await asyncio.wait_for(spec.construct(make_cp(FAST)).get_only_first_conn(), 2)
    assert leaf.opens == k + 1

    got = b""
    while len(got) < len(b"hello world"):
        got += await asyncio.wait_for(peer.reader.read(64), 2)
    assert got == b"hello world"
    assert leaf.opens == k + 2
    assert _reconnects() - before >= k + 1
    await peer.close()


@pytest.mark.asyncio
async def test_read_error_is_replaced_not_raised():
    leaf = FakeLeaf(
        memory_peer([b"a"], read_error=TransferError(message="reset")),
        memory_peer([b"b"]),
        then=_hanging_peer,
    )
    peer = await AutoReconnect("", leaf).construct(make_cp(FAST)).get_only_first_conn()
    assert await peer.reader.read(10) == b"a"
    assert await asyncio.wait_for(peer.reader.read(10), 2) == b"b"
    await peer.close()


@pytest.mark.asyncio
async def test_failed_write_is_retried_on_a_fresh_peer():
    broken = memory_peer(write_error=TransferError(message="broken pipe"))
    good = memory_peer()
    leaf = FakeLeaf(broken, good)
    peer = await AutoReconnect("", leaf).construct(make_cp(FAST)).get_only_first_conn()

    await asyncio.wait_for(peer.writer.write(b"payload"), 2)
    assert bytes(good.writer.data) == b"payload"
    assert broken.writer.closed
    assert leaf.opens == 2
    await peer.close()


@pytest.mark.asyncio
async def test_write_waits_for_replacement():
    leaf = FakeLeaf(memory_peer())
    spec = AutoReconnect("", leaf)
    peer = await spec.construct(make_cp(Options(autoreconnect_delay=0.05))).get_only_first_conn()

    # Reading hits end of data; the replacement only arrives after the delay.
    replacement = _hanging_peer()
    leaf.outcomes.append(replacement)
    reading = asyncio.create_task(peer.reader.read(10))
    await asyncio.sleep(0.01)
    await asyncio.wait_for(peer.writer.write(b"later"), 2)
    assert bytes(replacement.writer.data) == b"later"
    reading.cancel()
    await asyncio.gather(reading, return_exceptions=True)
    await peer.close()


@pytest.mark.asyncio
async def test_errors_a_reconnect_cannot_fix_propagate():
    leaf = FakeLeaf(memory_peer(write_error=UnsupportedOperation(message="read-only")))
    peer = await AutoReconnect("", leaf).construct(make_cp(FAST)).get_only_first_conn()
    with pytest.raises(UnsupportedOperation):
        await peer.writer.write(b"x")
    assert leaf.opens == 1
    await peer.close()


@pytest.mark.asyncio
async def test_close_releases_active_peer():
    inner = Peer(ChunkReader([b"x"]), CollectWriter())
    peer = await AutoReconnect("", FakeLeaf(inner)).construct(make_cp(FAST)).get_only_first_conn()
    await peer.close()
    assert inner.reader.closed and inner.writer.closed
    with pytest.raises(TransferError):
        await peer.reader.read(1)
