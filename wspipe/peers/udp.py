"""
UDP endpoints: udp: and udp-l:.

One datagram is one message: reads hand out whole datagrams (through a
DebtReader), each write is sent as one datagram.

udp-l: binds and replies to whoever sent the last datagram. Writes before
any datagram arrived have nowhere to go and are dropped. With
udp_oneshot_mode the listener reports end of data once it has sent its
first reply.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from ..constructor import PeerConstructor, once
from ..errors import ConnectFailure, TransferError
from ..options import Options
from ..peer import MessageSource, Peer, Writer
from ..readdebt import DebtReader
from ..specifier import ConstructParams, MessageBoundary, Specifier, SpecifierClass, register
from .net import parse_host_port

log = logging.getLogger("wspipe.peers.udp")

__all__ = ["UdpEndpoint", "UdpConnect", "UdpListen"]

Address = Tuple[str, int]
# A datagram with its sender, or None once the socket is gone.
_Item = Optional[Tuple[bytes, Address]]


class _Proto(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.received: "asyncio.Queue[_Item]" = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.received.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        log.debug("UDP error: %s", exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.received.put_nowait(None)


class UdpEndpoint(MessageSource):
    """A datagram socket: the message source of the Peer and the state its writer needs."""

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        proto: _Proto,
        *,
        connected: bool,
        oneshot: bool = False,
    ):
        self.transport = transport
        self.proto = proto
        self.connected = connected
        self.oneshot = oneshot
        self.last_sender: Optional[Address] = None
        self.replied = False

    async def recv_message(self) -> Optional[bytes]:
        if self.oneshot and self.replied:
            return None
        item = await self.proto.received.get()
        if item is None:
            return None
        data, addr = item
        if self.last_sender != addr:
            log.debug("datagram from %s:%s", addr[0], addr[1])
        self.last_sender = addr
        return data

    def send(self, data: bytes) -> None:
        if self.transport.is_closing():
            raise TransferError(message="write to a closed UDP socket")
        if self.connected:
            self.transport.sendto(data)
        elif self.last_sender is None:
            log.warning("Dropping %d bytes: no UDP peer to reply to yet", len(data))
            return
        else:
            self.transport.sendto(data, self.last_sender)
        self.replied = True
        if self.oneshot:
            # Wake a reader parked on the queue so it sees end of data.
            self.proto.received.put_nowait(None)

    async def close(self) -> None:
        self.transport.close()


class _UdpWriter(Writer):
    __slots__ = ("_endpoint",)

    def __init__(self, endpoint: UdpEndpoint):
        self._endpoint = endpoint

    async def write(self, data: bytes) -> None:
        self._endpoint.send(data)

    async def close(self) -> None:
        await self._endpoint.close()


def _udp_peer(endpoint: UdpEndpoint, options: Options) -> Peer:
    return Peer(DebtReader(endpoint, options.read_debt_handling), _UdpWriter(endpoint))


async def _open_endpoint(
    where: str,
    *,
    remote: Optional[Address] = None,
    local: Optional[Address] = None,
) -> Tuple[asyncio.DatagramTransport, _Proto]:
    loop = asyncio.get_running_loop()
    proto = _Proto()
    kwargs: dict = {}
    if remote is not None:
        kwargs["remote_addr"] = remote
    if local is not None:
        kwargs["local_addr"] = local
    try:
        transport, _ = await loop.create_datagram_endpoint(lambda: proto, **kwargs)
    except OSError as e:
        verb = "bind" if local is not None else "connect"
        raise ConnectFailure(
            message=f"cannot {verb} UDP {where}: {e}", retryable=remote is not None, cause=e
        ) from e
    return transport, proto


class _UdpSpecifier(Specifier):
    def __init__(self, arg: str = "", inner: Optional[Specifier] = None):
        super().__init__(arg, inner)
        self.host, self.port = parse_host_port(arg, self.klass.name)

    @property
    def where(self) -> str:
        return f"{self.host}:{self.port}"


@register
class UdpConnect(_UdpSpecifier):
    klass = SpecifierClass(
        name="udp",
        prefixes=("udp:", "udp-connect:", "connect-udp:", "udp-c:", "c-udp:"),
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        help="Send and receive packets to specified UDP socket. Argument is HOST:PORT.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        remote, where, options = (self.host, self.port), self.where, cp.options

        async def _open() -> Peer:
            transport, proto = await _open_endpoint(where, remote=remote)
            log.info("UDP socket connected to %s", where)
            return _udp_peer(UdpEndpoint(transport, proto, connected=True), options)

        return once(_open)


@register
class UdpListen(_UdpSpecifier):
    klass = SpecifierClass(
        name="udp-l",
        prefixes=("udp-l:", "udp-listen:", "listen-udp:", "l-udp:"),
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        help="Bind an UDP socket to specified host:port, receive packet from any remote peer "
        "and send replies to the last sender. Argument is HOST:PORT.\n\n"
        "With --udp-oneshot the connection ends after the first reply.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        local, where, options = (self.host, self.port), self.where, cp.options

        async def _open() -> Peer:
            transport, proto = await _open_endpoint(where, local=local)
            log.info("UDP socket bound to %s", where)
            endpoint = UdpEndpoint(transport, proto, connected=False, oneshot=options.udp_oneshot_mode)
            return _udp_peer(endpoint, options)

        return once(_open)
