"""
Session driver: pair Peers from the left and right specifiers and copy bytes
between them.

Pairing rules
-------------
- one  x one    : one Session, then the run ends.
- one  x stream : the single side's Peer is opened once (lazily, when the
                  first stream Peer shows up) and paired with every Peer the
                  stream side produces. Each of those Sessions ends when
                  the stream Peer stops sending.
- stream x stream: index-wise, in arrival order.

A failing Session or a stream item that fails to open is reported to the error
sink and the run continues. A producer that cannot continue (listener bind
failure, the single side failing to connect) ends the run: its exception
propagates out of :func:`serve`.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from . import metrics
from .constructor import PeerConstructor
from .errors import PipeError, TransferError, as_error_dict
from .options import Options
from .peer import Peer, Reader, SharedPeer, Writer
from .specifier import ConstructParams, Specifier
from .state import ProgramState

log = logging.getLogger("wspipe.session")

__all__ = ["ErrorSink", "CopyOptions", "copy", "Transfer", "Session", "serve"]

ErrorSink = Callable[[BaseException], None]


@dataclass(frozen=True)
class CopyOptions:
    buffer_size: int
    once: bool = False


async def copy(reader: Reader, writer: Writer, co: CopyOptions, *, direction: str = "forward") -> int:
    """
    Copy until end of data (or one chunk when `co.once`). Returns bytes copied.
    Bytes are written strictly in read order through one bounded buffer.
    """
    total = 0
    while True:
        try:
            data = await reader.read(co.buffer_size)
        except PipeError:
            raise
        except (ConnectionError, OSError) as e:
            raise TransferError(message=f"{direction} read failed: {e}", cause=e) from e
        if not data:
            break
        try:
            await writer.write(data)
        except PipeError:
            raise
        except (ConnectionError, OSError) as e:
            raise TransferError(message=f"{direction} write failed: {e}", cause=e) from e
        total += len(data)
        metrics.inc_bytes(direction, len(data))
        if co.once:
            break
    return total


@dataclass
class Transfer:
    """One direction of copying."""

    source: Reader
    sink: Writer
    direction: str = "forward"

    async def run(self, co: CopyOptions) -> int:
        n = await copy(self.source, self.sink, co, direction=self.direction)
        log.info("%s finished (%d bytes)", self.direction.capitalize(), n)
        await self.sink.shutdown()
        log.debug("%s shutdown finished", self.direction.capitalize())
        return n


@dataclass
class Session:
    forward: Transfer
    reverse: Transfer
    options: Options
    # Direction whose end also ends the Session ("forward"/"reverse"), if any.
    lead: Optional[str] = None

    def active_transfers(self) -> List[Transfer]:
        out: List[Transfer] = []
        if not self.options.unidirectional_reverse:
            out.append(self.forward)
        if not self.options.unidirectional:
            out.append(self.reverse)
        return out

    async def run(self) -> None:
        """
        Run the active Transfers. Ends when all of them finish or any of them
        fails. With exit_on_eof any Transfer reaching end of data ends it; the
        `lead` Transfer always does. Unfinished Transfers are cancelled.
        """
        co = CopyOptions(buffer_size=self.options.buffer_size, once=self.options.one_message)
        tasks = {
            asyncio.create_task(t.run(co), name=f"wspipe-{t.direction}"): t.direction
            for t in self.active_transfers()
        }
        if not tasks:
            return
        finished: List[asyncio.Task] = []
        try:
            pending = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                finished.extend(done)
                if self.options.exit_on_eof or any(tasks[t] == self.lead for t in done):
                    break
                if any(not t.cancelled() and t.exception() is not None for t in done):
                    break
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for t in finished:
            if not t.cancelled() and t.exception() is not None:
                raise t.exception()  # type: ignore[misc]



class _Driver:
    def __init__(self, options: Options, on_error: ErrorSink):
        self.options = options
        self.on_error = on_error
        self._fixed_task: Optional[asyncio.Task] = None
        self._fixed_shared: Optional[SharedPeer] = None

    # ---- reporting -----------------------------------------------------------

    def report(self, exc: BaseException) -> None:
        info = as_error_dict(exc)
        metrics.inc_error(info["code"] if isinstance(exc, PipeError) else type(exc).__name__)
        log.warning("session error: %s", exc, extra={"error": info})
        try:
            self.on_error(exc)
        except Exception:
            log.exception("error sink raised")

    # ---- sessions ------------------------------------------------------------

    async def run_session(
        self,
        left: Peer,
        right: Peer,
        *,
        close_left: bool = True,
        close_right: bool = True,
        lead: Optional[str] = None,
    ) -> None:
        session = Session(
            forward=Transfer(left.reader, right.writer, "forward"),
            reverse=Transfer(right.reader, left.writer, "reverse"),
            options=self.options,
            lead=lead,
        )
        metrics.session_started()
        try:
            await session.run()
        except Exception as e:
            self.report(e)
        finally:
            metrics.session_finished()
            if close_left:
                await left.close()
            if close_right:
                await right.close()

    async def _open_item(self, item: Awaitable[Peer]) -> Optional[Peer]:
        try:
            return await item
        except Exception as e:
            self.report(e)
            return None

    # ---- one x one -----------------------------------------------------------

    async def one_to_one(self, left: PeerConstructor, right: PeerConstructor) -> None:
        lp = await left.get_only_first_conn()
        try:
            rp = await right.get_only_first_conn()
        except BaseException:
            await lp.close()
            raise
        await self.run_session(lp, rp)

    # ---- one x stream --------------------------------------------------------

    def _fixed(self, pc: PeerConstructor) -> "asyncio.Task[Peer]":
        if self._fixed_task is None:
            self._fixed_task = asyncio.ensure_future(pc.get_only_first_conn())
        return self._fixed_task

    async def _fixed_handle(self, pc: PeerConstructor) -> Peer:
        peer = await asyncio.shield(self._fixed(pc))
        if self._fixed_shared is None:
            self._fixed_shared = SharedPeer(peer)
        return self._fixed_shared.handle()

    async def _pair_with_fixed(self, fixed_pc: PeerConstructor, item: Awaitable[Peer], fixed_is_left: bool) -> None:
        if fixed_is_left:
            try:
                fixed = await self._fixed_handle(fixed_pc)
            except BaseException:
                _discard(item)
                raise
            other = await self._open_item(item)
            if other is None:
                return
            # The client leaving ends the Session; the shared side is never at EOF.
            await self.run_session(fixed, other, close_left=False, lead="reverse")
        else:
            other = await self._open_item(item)
            if other is None:
                return
            try:
                fixed = await self._fixed_handle(fixed_pc)
            except BaseException:
                await other.close()
                raise
            await self.run_session(other, fixed, close_right=False, lead="forward")

    async def fixed_vs_stream(self, fixed: PeerConstructor, stream: PeerConstructor, *, fixed_is_left: bool) -> None:
        try:
            async with asyncio.TaskGroup() as tg:
                async with contextlib.aclosing(stream.each()) as items:
                    async for item in items:
                        task = tg.create_task(self._pair_with_fixed(fixed, item, fixed_is_left))
                        if self.options.oneshot:
                            await task
                            break
        finally:
            await self._close_fixed()

    async def _close_fixed(self) -> None:
        task, self._fixed_task = self._fixed_task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.wait([task])
        if not task.cancelled() and task.exception() is None:
            await task.result().close()
        self._fixed_shared = None

    # ---- stream x stream -----------------------------------------------------

    async def _pair(self, left: Awaitable[Peer], right: Awaitable[Peer]) -> None:
        lp = await self._open_item(left)
        if lp is None:
            _discard(right)
            return
        rp = await self._open_item(right)
        if rp is None:
            await lp.close()
            return
        await self.run_session(lp, rp)

    async def zip(self, left: PeerConstructor, right: PeerConstructor) -> None:
        async with asyncio.TaskGroup() as tg:
            async with contextlib.aclosing(left.each()) as lefts, contextlib.aclosing(right.each()) as rights:
                async for litem in lefts:
                    try:
                        ritem = await anext(rights)
                    except StopAsyncIteration:
                        _discard(litem)
                        break
                    task = tg.create_task(self._pair(litem, ritem))
                    if self.options.oneshot:
                        await task
                        break


def _discard(item: Awaitable[Peer]) -> None:
    close = getattr(item, "close", None)
    if close is not None:
        close()


async def serve(
    left: Specifier,
    right: Specifier,
    options: Options,
    on_error: ErrorSink,
    *,
    state: Optional[ProgramState] = None,
) -> None:
    """
    Construct both specifiers and serve Sessions until the run is complete.

    Raises whatever ends a top-level producer; per-Session failures only
    reach `on_error`.
    """
    loop = asyncio.get_running_loop()
    own_state = state is None
    state = state if state is not None else ProgramState()
    cp_left, cp_right = ConstructParams.pair(loop, options, state)
    lpc = left.construct(cp_left)
    rpc = right.construct(cp_right)
    log.debug("serving %r <-> %r", left, right, extra={"options": options.to_dict()})

    driver = _Driver(options, on_error)
    try:
        if not lpc.is_multiconnect and not rpc.is_multiconnect:
            await driver.one_to_one(lpc, rpc)
        elif not lpc.is_multiconnect:
            await driver.fixed_vs_stream(lpc, rpc, fixed_is_left=True)
        elif not rpc.is_multiconnect:
            await driver.fixed_vs_stream(rpc, lpc, fixed_is_left=False)
        else:
            await driver.zip(lpc, rpc)
    except BaseExceptionGroup as eg:
        raise _first_leaf(eg) from None
    finally:
        if own_state:
            await state.aclose()


def _first_leaf(eg: BaseExceptionGroup) -> BaseException:
    exc: BaseException = eg
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc
