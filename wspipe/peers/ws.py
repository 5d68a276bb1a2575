"""
WebSocket endpoints on top of any inner Peer.

Handshake and framing are done by the sans-I/O protocol objects of
`websockets` (ServerProtocol / ClientProtocol); this module only moves bytes
between them and the inner Peer:

  - ws-upgrade: (ws-u:)  server side, one upgrade per inner connection
  - ws-c:                client side over an already connected inner Peer
  - ws:// wss://         connect TCP (TLS for wss) then run the client side

Incoming data messages are exposed as a byte stream through the debt
adapter. Pings are answered by the protocol object; the replies are flushed
on the next read.
"""
from __future__ import annotations

import asyncio
import collections
import logging
import ssl
from http import HTTPStatus
from typing import Deque, Iterable, List, Optional

from websockets.client import ClientProtocol
from websockets.exceptions import InvalidState, InvalidURI
from websockets.frames import CloseCode, Frame, Opcode
from websockets.http11 import Request, Response
from websockets.protocol import Protocol, State
from websockets.server import ServerProtocol
from websockets.uri import WebSocketURI, parse_uri

from ..constants import DEFAULT_BUFFER_SIZE, WS_HANDSHAKE_READ_CHUNK
from ..constructor import PeerConstructor, once
from ..errors import ConnectFailure, ConstructionError, TransferError
from ..options import Options
from ..peer import MessageSource, Peer, Reader, Writer, peer_from_streams
from ..readdebt import DebtReader
from ..specifier import (
    ConstructParams,
    MessageBoundary,
    Multiconnect,
    Specifier,
    SpecifierClass,
    register,
    register_alias,
)

log = logging.getLogger("wspipe.peers.ws")

__all__ = [
    "WsConnection",
    "ws_upgrade_peer",
    "ws_connect_peer",
    "WsUpgrade",
    "WsClient",
    "WsUrl",
]

NOT_WEBSOCKET_REPLY = "Only WebSocket connections are welcome here\n"
WRONG_URI_REPLY = "Request URI does not match the allowed path\n"


class WsConnection:
    """
    Glue between a websockets protocol object and the inner Peer.

    All outgoing bytes go through flush() under one lock, so frames queued by
    the reading side (pongs, close replies) and by writers never interleave.
    """

    def __init__(
        self,
        proto: Protocol,
        inner: Peer,
        *,
        text: bool = False,
        send_close: bool = True,
    ):
        self.proto = proto
        self.inner = inner
        self.text = text
        self.send_close = send_close
        self._events: Deque[object] = collections.deque()
        self._parts: Optional[List[bytes]] = None
        self._eof = False
        self._write_lock = asyncio.Lock()

    def push_events(self, events: Iterable[object]) -> None:
        self._events.extend(events)

    async def flush(self) -> None:
        async with self._write_lock:
            for chunk in self.proto.data_to_send():
                if chunk:
                    await self.inner.writer.write(chunk)
                else:
                    await self.inner.writer.shutdown()

    async def _pull(self) -> None:
        data = await self.inner.reader.read(DEFAULT_BUFFER_SIZE)
        if data:
            self.proto.receive_data(data)
        else:
            self.proto.receive_eof()
            self._eof = True
        self._events.extend(self.proto.events_received())
        try:
            await self.flush()
        except TransferError:
            if not self._eof:
                raise
            log.debug("could not flush after end of stream", exc_info=True)

    async def recv_message(self) -> Optional[bytes]:
        """Next complete data message, or None once the connection is closed."""
        while True:
            while self._events:
                frame = self._events.popleft()
                if not isinstance(frame, Frame):
                    continue
                op = frame.opcode
                if op is Opcode.CLOSE:
                    log.info("Received WebSocket close")
                    self._eof = True
                    self._events.clear()
                    return None
                if op is Opcode.TEXT or op is Opcode.BINARY:
                    self._parts = [bytes(frame.data)]
                elif op is Opcode.CONT and self._parts is not None:
                    self._parts.append(bytes(frame.data))
                else:
                    continue
                if frame.fin:
                    msg, self._parts = b"".join(self._parts), None
                    return msg
            exc = self.proto.parser_exc
            if exc is not None and not isinstance(exc, EOFError):
                raise TransferError(message=f"websocket protocol error: {exc}", cause=exc) from exc
            if self._eof or exc is not None:
                return None
            await self._pull()

    async def send(self, data: bytes) -> None:
        try:
            if self.text:
                self.proto.send_text(data)
            else:
                self.proto.send_binary(data)
        except InvalidState as e:
            raise TransferError(message="websocket is not open", cause=e) from e
        await self.flush()

    async def close_handshake(self) -> None:
        if not self.send_close or self.proto.state is not State.OPEN:
            return
        self.proto.send_close(CloseCode.NORMAL_CLOSURE)
        await self.flush()


class _WsMessages(MessageSource):
    __slots__ = ("_conn",)

    def __init__(self, conn: WsConnection):
        self._conn = conn

    async def recv_message(self) -> Optional[bytes]:
        return await self._conn.recv_message()

    async def close(self) -> None:
        await self._conn.inner.reader.close()


class _WsWriter(Writer):
    __slots__ = ("_conn",)

    def __init__(self, conn: WsConnection):
        self._conn = conn

    async def write(self, data: bytes) -> None:
        if data:
            await self._conn.send(data)

    async def shutdown(self) -> None:
        await self._conn.close_handshake()

    async def close(self) -> None:
        await self._conn.inner.writer.close()


def _as_peer(conn: WsConnection, options: Options) -> Peer:
    reader: Reader = DebtReader(_WsMessages(conn), options.read_debt_handling)
    return Peer(reader, _WsWriter(conn))


async def _feed_until_event(proto: Protocol, inner: Peer, stage: str) -> List[object]:
    """Read from the inner Peer until the protocol produces events."""
    while True:
        data = await inner.reader.read(WS_HANDSHAKE_READ_CHUNK)
        if data:
            proto.receive_data(data)
        else:
            proto.receive_eof()
        events = proto.events_received()
        if events:
            return events
        if proto.handshake_exc is not None:
            raise ConnectFailure(
                message=f"{stage} failed: {proto.handshake_exc}", retryable=False, cause=proto.handshake_exc
            )
        if not data:
            raise ConnectFailure(message=f"{stage} failed: connection closed", retryable=False)


# --------------------------- #
# Server side                 #
# --------------------------- #


async def ws_upgrade_peer(inner: Peer, options: Options, cp: Optional[ConstructParams] = None) -> Peer:
    """
    Perform the server side of the handshake over `inner`.

    Non-WebSocket HTTP requests and requests for a path other than
    `options.restrict_uri` get an HTTP error reply and fail with
    ConnectFailure.
    """
    subprotocols = [options.websocket_protocol] if options.websocket_protocol else None
    proto = ServerProtocol(subprotocols=subprotocols, max_size=options.max_message_size)
    conn = WsConnection(proto, inner, text=options.websocket_text_mode, send_close=not options.websocket_dont_close)
    try:
        events = await _feed_until_event(proto, inner, "websocket upgrade")
        request = events[0]
        if not isinstance(request, Request):
            raise ConnectFailure(message="websocket upgrade: expected an HTTP request", retryable=False)
        log.info("Incoming connection to websocket: %s", request.path)
        log.debug("request headers: %s", dict(request.headers.raw_items()))

        response: Response
        if options.restrict_uri is not None and request.path != options.restrict_uri:
            log.warning("Incoming request URI doesn't match the restricted URI")
            response = proto.reject(HTTPStatus.BAD_REQUEST, WRONG_URI_REPLY)
            failure = ConnectFailure(
                message="request URI does not match restrict_uri",
                retryable=False,
                details={"path": request.path, "restrict_uri": options.restrict_uri},
            )
        else:
            response = proto.accept(request)
            failure = None
            if proto.handshake_exc is not None:
                failure = ConnectFailure(
                    message=f"not a websocket request: {proto.handshake_exc}",
                    retryable=False,
                    cause=proto.handshake_exc,
                )
                response = proto.reject(HTTPStatus.BAD_REQUEST, NOT_WEBSOCKET_REPLY)
        proto.send_response(response)
        await conn.flush()
        if failure is not None:
            raise failure
    except BaseException:
        await inner.close()
        raise

    log.info("Upgraded")
    if cp is not None:
        cp.l2r.fill(uri=request.path)
    conn.push_events(events[1:])
    return _as_peer(conn, options)


@register
class WsUpgrade(Specifier):
    klass = SpecifierClass(
        name="ws-upgrade",
        prefixes=("ws-upgrade:", "upgrade-ws:", "ws-u:", "u-ws:"),
        overlay=True,
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        multiconnect=Multiconnect.DEPENDS_ON_INNER,
        help="WebSocket upgrader / raw server. Specify your own protocol instead of usual TCP.\n\n"
        "All other WebSocket server modes actually use this overlay under the hood.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()
        options = cp.options

        async def _upgrade(peer: Peer) -> Peer:
            return await ws_upgrade_peer(peer, options, cp)

        return inner.construct(cp).map(_upgrade)


register_alias(
    SpecifierClass(
        name="ws-listen",
        prefixes=("ws-listen:", "ws-l:", "l-ws:", "listen-ws:"),
        alias="ws-u:tcp-l:",
        help="WebSocket server. Argument is host and port to listen.",
    )
)
register_alias(
    SpecifierClass(
        name="ws-unix-listen",
        prefixes=("l-ws-unix:",),
        alias="ws-u:unix-l:",
        help="WebSocket UNIX socket-based server.",
    )
)
register_alias(
    SpecifierClass(
        name="ws-inetd",
        prefixes=("inetd-ws:", "ws-inetd:"),
        alias="ws-u:stdio:",
        help="WebSocket inetd server: serve one upgrade over stdin/stdout.",
    )
)


# --------------------------- #
# Client side                 #
# --------------------------- #


def _parse_ws_uri(uri: str, klass: str) -> WebSocketURI:
    try:
        return parse_uri(uri)
    except InvalidURI as e:
        raise ConstructionError.bad_argument(klass, uri, str(e)) from None


async def ws_connect_peer(inner: Peer, wsuri: WebSocketURI, options: Options) -> Peer:
    """Perform the client side of the handshake over `inner`."""
    subprotocols = [options.websocket_protocol] if options.websocket_protocol else None
    proto = ClientProtocol(
        wsuri,
        origin=options.origin,
        subprotocols=subprotocols,
        max_size=options.max_message_size,
    )
    conn = WsConnection(proto, inner, text=options.websocket_text_mode, send_close=not options.websocket_dont_close)
    try:
        request = proto.connect()
        if options.websocket_version is not None:
            # Headers are multi-valued: replace, do not append.
            del request.headers["Sec-WebSocket-Version"]
            request.headers["Sec-WebSocket-Version"] = options.websocket_version
        for name, value in options.custom_headers:
            request.headers[name] = value
        proto.send_request(request)
        await conn.flush()
        events = await _feed_until_event(proto, inner, "websocket handshake")
        if proto.handshake_exc is not None or proto.state is not State.OPEN:
            raise ConnectFailure(
                message=f"websocket handshake failed: {proto.handshake_exc}",
                retryable=False,
                cause=proto.handshake_exc,
            )
    except BaseException:
        await inner.close()
        raise

    log.info("Connected to ws")
    conn.push_events(e for e in events if not isinstance(e, Response))
    return _as_peer(conn, options)


@register
class WsClient(Specifier):
    klass = SpecifierClass(
        name="ws-c",
        prefixes=("ws-c:", "c-ws:", "ws-connect:", "connect-ws:"),
        overlay=True,
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        multiconnect=Multiconnect.DEPENDS_ON_INNER,
        help="Low-level WebSocket connector over an existing connection. "
        "The URI sent in the request comes from --ws-c-uri.",
    )

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        inner = self.require_inner()
        options = cp.options
        wsuri = _parse_ws_uri(options.ws_c_uri, self.klass.name)

        async def _connect(peer: Peer) -> Peer:
            return await ws_connect_peer(peer, wsuri, options)

        return inner.construct(cp).map(_connect)


@register
class WsUrl(Specifier):
    klass = SpecifierClass(
        name="ws-url",
        prefixes=("ws://", "wss://"),
        message_boundary=MessageBoundary.MESSAGE_ORIENTED,
        keep_prefix=True,
        help="WebSocket client. Argument is a ws:// or wss:// URL.",
    )

    def __init__(self, arg: str = "", inner: Optional[Specifier] = None):
        super().__init__(arg, inner)
        self.wsuri = _parse_ws_uri(arg, self.klass.name)

    def construct(self, cp: ConstructParams) -> PeerConstructor:
        wsuri = self.wsuri
        options = cp.options

        async def _open() -> Peer:
            ctx = ssl.create_default_context() if wsuri.secure else None
            where = f"{wsuri.host}:{wsuri.port}"
            try:
                reader, writer = await asyncio.open_connection(
                    wsuri.host, wsuri.port, ssl=ctx, server_hostname=wsuri.host if ctx else None
                )
            except OSError as e:
                raise ConnectFailure(message=f"cannot connect to {where}: {e}", cause=e) from e
            log.debug("TCP connection to %s established", where)
            return await ws_connect_peer(peer_from_streams(reader, writer), wsuri, options)

        return once(_open)

