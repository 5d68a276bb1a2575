"""
Message -> stream adapter: splitting, debt draining and the oversized-message
policies.
"""
from __future__ import annotations

import asyncio
import logging

import pytest
from hypothesis import given, settings, strategies as st

from wspipe.errors import FramingViolation
from wspipe.options import DebtHandling
from wspipe.readdebt import DebtReader, ReadDebt

from .fakes import ScriptedMessages


async def _reads(reader: DebtReader, n: int):
    out = []
    while True:
        chunk = await reader.read(n)
        if not chunk:
            return out
        out.append(chunk)


@settings(max_examples=60, deadline=None)
@given(msg=st.binary(min_size=1, max_size=600), cap=st.integers(min_value=1, max_value=64))
def test_message_drains_in_ceil_m_over_c_reads(msg: bytes, cap: int):
    reader = DebtReader(ScriptedMessages([msg]))
    chunks = asyncio.run(_reads(reader, cap))
    assert len(chunks) == -(-len(msg) // cap)
    assert all(len(c) <= cap for c in chunks)
    assert b"".join(chunks) == msg


@settings(max_examples=40, deadline=None)
@given(
    msgs=st.lists(st.binary(min_size=1, max_size=40), min_size=1, max_size=8),
    cap=st.integers(min_value=1, max_value=16),
)
def test_no_read_mixes_two_messages(msgs, cap):
    reader = DebtReader(ScriptedMessages(msgs))
    chunks = asyncio.run(_reads(reader, cap))
    # Regroup the reads by message: each message must be covered exactly by
    # a run of consecutive reads.
    it = iter(chunks)
    for msg in msgs:
        got = b""
        while len(got) < len(msg):
            got += next(it)
        assert got == msg
    assert next(it, None) is None


@pytest.mark.asyncio
async def test_debt_is_drained_before_next_message():
    reader = DebtReader(ScriptedMessages([b"abc", b"defgh"]))
    assert await reader.read(4) == b"abc"
    assert await reader.read(4) == b"defg"
    assert reader.debt.pending == 1
    assert await reader.read(4) == b"h"
    assert await reader.read(4) == b""


@pytest.mark.asyncio
async def test_error_policy_fails_reader_without_delivering_bytes():
    reader = DebtReader(ScriptedMessages([b"0123456789", b"ok"]), DebtHandling.ERROR)
    with pytest.raises(FramingViolation) as ei:
        await reader.read(4)
    assert ei.value.details == {"message_len": 10, "capacity": 4}
    assert reader.debt.pending == 0
    with pytest.raises(FramingViolation):
        await reader.read(100)


@pytest.mark.asyncio
async def test_error_policy_passes_messages_that_fit():
    reader = DebtReader(ScriptedMessages([b"abcd", b"ef"]), DebtHandling.ERROR)
    assert await reader.read(4) == b"abcd"
    assert await reader.read(4) == b"ef"
    assert await reader.read(4) == b""


@pytest.mark.asyncio
async def test_warn_policy_logs_and_splits(caplog):
    reader = DebtReader(ScriptedMessages([b"0123456789"]), DebtHandling.WARN)
    with caplog.at_level(logging.WARNING, logger="wspipe.readdebt"):
        assert await reader.read(6) == b"012345"
        assert await reader.read(6) == b"6789"
    assert any("too long" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_silent_policy_does_not_log(caplog):
    reader = DebtReader(ScriptedMessages([b"0123456789"]), DebtHandling.SILENT)
    with caplog.at_level(logging.DEBUG, logger="wspipe.readdebt"):
        assert await reader.read(3) == b"012"
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


@pytest.mark.asyncio
async def test_drop_message_policy_skips_oversized():
    reader = DebtReader(ScriptedMessages([b"far too long", b"ok", b"also too long"]), DebtHandling.DROP_MESSAGE)
    assert await reader.read(4) == b"ok"
    assert await reader.read(4) == b""


@pytest.mark.asyncio
async def test_empty_messages_do_not_end_the_stream():
    reader = DebtReader(ScriptedMessages([b"", b"x", b""]))
    assert await reader.read(10) == b"x"
    assert await reader.read(10) == b""


@pytest.mark.asyncio
async def test_close_closes_source():
    source = ScriptedMessages([])
    await DebtReader(source).close()
    assert source.closed


def test_check_debt_without_debt_is_none():
    debt = ReadDebt()
    assert debt.check_debt(10) is None
    assert debt.process_message(10, b"abc") == b"abc"
    assert debt.pending == 0


def test_process_message_with_outstanding_debt_is_a_bug():
    debt = ReadDebt()
    assert debt.process_message(2, b"abcd") == b"ab"
    with pytest.raises(RuntimeError):
        debt.process_message(2, b"next")
