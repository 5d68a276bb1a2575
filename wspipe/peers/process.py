"""exec: and sh-c: run a child process and use its stdin/stdout as a Peer."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import Dict, Optional

from ..constants import ENV_CLIENT, ENV_URI
from ..constructor import PeerConstructor, once
from ..errors import ConnectFailure, ConstructionError
from ..peer import Peer, StreamReaderAdapter, StreamWriterAdapter
from ..specifier import ConstructParams, Specifier, SpecifierClass, register

log = logging.getLogger("wspipe.peers.process")

__all__ = ["Exec", "ShC", "child_env"]

# Grace period between terminate() and kill() on close.
_TERMINATE_TIMEOUT = 2.0


def child_env(cp: ConstructParams) -> Dict[str, str]:
    """Environment for the child: ours plus what the left side reported."""
    env = dict(os.environ)
    info = cp.l2r.read()
    if info is not None:
        if info.uri is not None:
            env[ENV_URI] = info.uri
        if info.client_addr is not None:
            env[ENV_CLIENT] = info.client_addr
    return env


class _ChildReader(StreamReaderAdapter):
    __slots__ = ("_proc",)

    def __init__(self, proc: asyncio.subprocess.Process, stdout: asyncio.StreamReader):
        super().__init__(stdout)
        self._proc = proc

    async def close(self) -> None:
        if self._proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._proc.terminate()
            try:
                await asyncio.wait_for(self._proc.wait(), _TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                log.warning("child %d did not exit, killing it", self._proc.pid)
                with contextlib.suppress(ProcessLookupError):
                    self._proc.kill()
                await self._proc.wait()
        log.debug("child %d exited with %s", self._proc.pid, self._proc.returncode)


def _child_peer(proc: asyncio.subprocess.Process) -> Peer:
    if proc.stdout is None or proc.stdin is None:
        raise ConnectFailure(message=f"child {proc.pid} has no stdio pipes", retryable=False)
    return Peer(_ChildReader(proc, proc.stdout), StreamWriterAdapter(proc.stdin))


async def _spawn(what: str, starting) -> Peer:
    try:
        proc = await starting
    except OSError as e:
        raise ConnectFailure(message=f"cannot start {what}: {e}", retryable=False, cause=e) from e
    log.info("Started child process %d: %s", proc.pid, what)
    return _child_peer(proc)


@register
class Exec(Specifier):
    klass = SpecifierClass(
        name="exec",
        prefixes=("exec:",),
        help="Execute a program directly (without a subshell), providing a bidirectional "
        "channel to its stdin/stdout. Arguments come from --exec-args.",
    )

    @classmethod
    def from_node(cls, arg: str, inner: Optional[Specifier]) -> Specifier:
        if not arg:
            raise ConstructionError.bad_argument(cls.klass.name, arg, "expected a program")
        return cls(arg, inner)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        program, args = self.arg, cp.options.exec_args

        async def _open() -> Peer:
            starting = asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=child_env(cp),
            )
            return await _spawn(program, starting)

        return once(_open)


@register
class ShC(Specifier):
    klass = SpecifierClass(
        name="sh-c",
        prefixes=("sh-c:", "cmd:"),
        help="Start specified command line using `sh -c`.\n\n"
        "Example: wspipe ws-l:127.0.0.1:8080 sh-c:'cat -n'",
    )

    @classmethod
    def from_node(cls, arg: str, inner: Optional[Specifier]) -> Specifier:
        if not arg:
            raise ConstructionError.bad_argument(cls.klass.name, arg, "expected a command line")
        return cls(arg, inner)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        command = self.arg

        async def _open() -> Peer:
            starting = asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=child_env(cp),
            )
            return await _spawn(command, starting)

        return once(_open)
