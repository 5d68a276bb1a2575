"""WebSocket server and client endpoints over loopback TCP."""
from __future__ import annotations

import asyncio
import sys

import pytest

from wspipe.errors import ConnectFailure, TransferError
from wspipe.options import Options
from wspipe.peer import Peer
from wspipe.session import serve
from wspipe.specifier import build_specifier
from wspipe.specparse import parse

from .fakes import make_cp, read_all


def spec(text: str):
    return build_specifier(parse(text))


def start_server(port: int, right: str, options: Options, errors: list) -> asyncio.Task:
    return asyncio.create_task(serve(spec(f"ws-l:127.0.0.1:{port}"), spec(right), options, errors.append))


async def ws_client(url: str, options: Options = Options(), attempts: int = 100) -> Peer:
    """Connect, retrying while nothing is listening yet."""
    pc_spec = spec(url)
    for _ in range(attempts):
        try:
            return await pc_spec.construct(make_cp(options)).get_only_first_conn()
        except ConnectFailure as e:
            if not e.retryable:
                raise
            await asyncio.sleep(0.02)
    raise AssertionError(f"nothing listening for {url}")


@pytest.mark.asyncio
async def test_echo_through_websocket_server(free_port, errors):
    server = start_server(free_port, "mirror:", Options(oneshot=True, exit_on_eof=True), errors)
    client = await ws_client(f"ws://127.0.0.1:{free_port}/")

    await client.writer.write(b"hello")
    assert await asyncio.wait_for(client.reader.read(100), 2) == b"hello"

    await client.writer.shutdown()
    assert await asyncio.wait_for(client.reader.read(100), 2) == b""
    await client.close()
    await asyncio.wait_for(server, 2)
    assert errors == []


@pytest.mark.asyncio
async def test_restricted_path_is_refused(free_port, errors):
    server = start_server(free_port, "mirror:", Options(oneshot=True, restrict_uri="/chat"), errors)
    with pytest.raises(ConnectFailure) as ei:
        await ws_client(f"ws://127.0.0.1:{free_port}/other")
    assert not ei.value.retryable

    await asyncio.wait_for(server, 2)
    assert len(errors) == 1 and isinstance(errors[0], ConnectFailure)
    assert errors[0].details["path"] == "/other"


@pytest.mark.asyncio
async def test_restricted_path_is_accepted(free_port, errors):
    server = start_server(
        free_port, "literal:welcome", Options(oneshot=True, exit_on_eof=True, restrict_uri="/chat"), errors
    )
    client = await ws_client(f"ws://127.0.0.1:{free_port}/chat")
    assert await asyncio.wait_for(read_all(client.reader), 2) == b"welcome"
    await client.close()
    await asyncio.wait_for(server, 2)
    assert errors == []


@pytest.mark.asyncio
async def test_plain_http_request_gets_400(free_port, errors):
    server = start_server(free_port, "mirror:", Options(oneshot=True), errors)
    for _ in range(100):
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", free_port)
            break
        except OSError:
            await asyncio.sleep(0.02)
    else:
        raise AssertionError("websocket server never came up")

    writer.write(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
    await writer.drain()
    reply = await asyncio.wait_for(reader.read(), 2)
    writer.close()

    assert reply.startswith(b"HTTP/1.1 400")
    assert b"Only WebSocket connections are welcome here" in reply
    await asyncio.wait_for(server, 2)
    assert len(errors) == 1 and isinstance(errors[0], ConnectFailure)


@pytest.mark.asyncio
async def test_messages_are_delivered_whole_with_room(free_port, errors):
    server = start_server(free_port, "mirror:", Options(oneshot=True, exit_on_eof=True), errors)
    client = await ws_client(f"ws://127.0.0.1:{free_port}/")

    payload = bytes(range(256)) * 64
    await client.writer.write(payload)
    got = b""
    while len(got) < len(payload):
        got += await asyncio.wait_for(client.reader.read(len(payload)), 2)
    assert got == payload

    await client.writer.shutdown()
    await client.close()
    await asyncio.wait_for(server, 2)


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="needs sh")
async def test_request_path_reaches_child_environment(free_port, errors):
    server = start_server(
        free_port, 'sh-c:printf %s "$WSPIPE_URI"', Options(oneshot=True, exit_on_eof=True), errors
    )
    client = await ws_client(f"ws://127.0.0.1:{free_port}/hello?x=1")
    assert await asyncio.wait_for(read_all(client.reader), 5) == b"/hello?x=1"
    await client.close()
    await asyncio.wait_for(server, 5)
    assert errors == []


@pytest.mark.asyncio
async def test_ws_client_overlay_uses_configured_uri(free_port, errors):
    server = start_server(
        free_port, "literal:over-tcp", Options(oneshot=True, exit_on_eof=True, restrict_uri="/raw"), errors
    )
    opts = Options(ws_c_uri="ws://ignored.example/raw")
    client = await ws_client(f"ws-c:tcp:127.0.0.1:{free_port}", opts)
    assert await asyncio.wait_for(read_all(client.reader), 2) == b"over-tcp"
    await client.close()
    await asyncio.wait_for(server, 2)
    assert errors == []


@pytest.mark.asyncio
async def test_websocket_version_header_is_replaced(free_port):
    seen: asyncio.Queue = asyncio.Queue()

    async def on_client(reader, writer):
        await seen.put(await reader.readuntil(b"\r\n\r\n"))
        writer.close()

    srv = await asyncio.start_server(on_client, "127.0.0.1", free_port)
    try:
        with pytest.raises((ConnectFailure, TransferError)):
            await ws_client(f"ws://127.0.0.1:{free_port}/", Options(websocket_version="8"))
        request = await asyncio.wait_for(seen.get(), 2)
    finally:
        srv.close()
        await srv.wait_closed()
    assert b"Sec-WebSocket-Version: 8\r\n" in request
    assert b"Sec-WebSocket-Version: 13" not in request
