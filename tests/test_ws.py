import asyncio
import json

import pytest

from ethtransport.base import InvalidResponseError, RpcError, TransportError
from ethtransport.ws import WebSocket

try:
    from websockets.asyncio.server import serve
except ImportError:
    from websockets.server import serve  # type: ignore[no-redef]


class FakeConnection:
    def __init__(self):
        self.sent = []
        self.incoming = asyncio.Queue()
        self.closed = False

    async def send(self, text):
        if self.closed:
            raise OSError("closed")
        self.sent.append(text)

    def feed(self, message):
        self.incoming.put_nowait(message)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)


async def wait_sent(conn, count):
    for _ in range(200):
        if len(conn.sent) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("nothing was sent")


async def settle():
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_single_request_gets_result():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.execute("eth_accounts", ["1"]))
    await wait_sent(conn, 1)
    assert conn.sent[0] == '{"jsonrpc":"2.0","method":"eth_accounts","params":["1"],"id":1}'
    conn.feed('{"jsonrpc":"2.0","id":1,"result":"x"}')
    assert await task == "x"
    await ws.close()


@pytest.mark.asyncio
async def test_rpc_error_is_raised():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.execute("eth_call", []))
    await wait_sent(conn, 1)
    conn.feed('{"jsonrpc":"2.0","id":1,"error":{"code":-32000,"message":"boom"}}')
    with pytest.raises(RpcError) as info:
        await task
    assert info.value == RpcError(-32000, "boom", None)
    await ws.close()


@pytest.mark.asyncio
async def test_batch_request():
    conn = FakeConnection()
    ws = WebSocket(conn)
    requests = [ws.prepare("eth_test", [{"test": -1}]), ws.prepare("eth_test", [{"test": 3}])]
    task = asyncio.ensure_future(ws.send_batch(requests))
    await wait_sent(conn, 1)
    assert json.loads(conn.sent[0]) == [
        {"jsonrpc": "2.0", "method": "eth_test", "params": [{"test": -1}], "id": 1},
        {"jsonrpc": "2.0", "method": "eth_test", "params": [{"test": 3}], "id": 2},
    ]
    conn.feed(
        json.dumps(
            [
                {"jsonrpc": "2.0", "id": 1, "result": {"test": 1}},
                {"jsonrpc": "2.0", "id": 2, "error": {"code": 1, "message": "bad"}},
            ]
        )
    )
    results = await task
    assert results[0] == {"test": 1}
    assert results[1] == RpcError(1, "bad", None)
    await ws.close()


@pytest.mark.asyncio
async def test_empty_batch_uses_id_zero():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.send_batch([]))
    await wait_sent(conn, 1)
    assert conn.sent[0] == "[]"
    conn.feed("[]")
    assert await task == []
    await ws.close()


@pytest.mark.asyncio
async def test_unparseable_message_answers_request_zero_with_nothing():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.send(0, {"jsonrpc": "2.0", "method": "m", "params": [], "id": 0}))
    await wait_sent(conn, 1)
    conn.feed("not json")
    with pytest.raises(InvalidResponseError) as info:
        await task
    assert info.value == InvalidResponseError("Expected single, got batch.")
    await ws.close()


@pytest.mark.asyncio
async def test_response_for_unknown_request_is_ignored():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.execute("eth_test", []))
    await wait_sent(conn, 1)
    conn.feed('{"jsonrpc":"2.0","id":42,"result":"other"}')
    conn.feed('{"jsonrpc":"2.0","id":"1","result":"string id"}')
    conn.feed('{"jsonrpc":"2.0","id":1,"result":"mine"}')
    assert await task == "mine"
    await ws.close()


@pytest.mark.asyncio
async def test_notifications_reach_subscription():
    conn = FakeConnection()
    ws = WebSocket(conn)
    stream = ws.subscribe("0xabc")
    conn.feed('{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0xdef","result":0}}')
    conn.feed('{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0xabc","result":1}}')
    conn.feed('{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0xabc","result":2}}')
    received = [await stream.__anext__(), await stream.__anext__()]
    assert received == [1, 2]
    await ws.close()


@pytest.mark.asyncio
async def test_unsubscribe_ends_stream():
    conn = FakeConnection()
    ws = WebSocket(conn)
    stream = ws.subscribe("0x1")
    conn.feed('{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0x1","result":"a"}}')
    await settle()
    ws.unsubscribe("0x1")
    collected = [item async for item in stream]
    assert collected == ["a"]
    await ws.close()


@pytest.mark.asyncio
async def test_closed_connection_fails_pending_and_new_calls():
    conn = FakeConnection()
    ws = WebSocket(conn)
    task = asyncio.ensure_future(ws.execute("eth_test", []))
    await wait_sent(conn, 1)
    conn.feed(None)
    expected = TransportError("Cannot send request. Internal task finished.")
    with pytest.raises(TransportError) as info:
        await task
    assert info.value == expected
    with pytest.raises(TransportError) as info:
        await ws.execute("eth_test", [])
    assert info.value == expected
    with pytest.raises(TransportError) as info:
        ws.subscribe("0x1")
    assert info.value == expected


@pytest.mark.asyncio
async def test_ids_increase_from_one():
    conn = FakeConnection()
    ws = WebSocket(conn)
    first, _ = ws.prepare("a", [])
    second, request = ws.prepare("b", [2])
    assert (first, second) == (1, 2)
    assert request == {"jsonrpc": "2.0", "method": "b", "params": [2], "id": 2}
    await ws.close()


@pytest.mark.asyncio
async def test_connect_rejects_wrong_scheme():
    with pytest.raises(TransportError) as info:
        await WebSocket.connect("http://127.0.0.1:3000")
    assert info.value == TransportError("Wrong scheme: http")


@pytest.mark.asyncio
async def test_connect_rejects_missing_host():
    with pytest.raises(TransportError) as info:
        await WebSocket.connect("ws:///path")
    assert info.value == TransportError("Wrong host name")


@pytest.mark.asyncio
async def test_should_send_a_request():
    received = []

    async def handler(connection, *args):
        async for message in connection:
            received.append(message)
            await connection.send('{"jsonrpc":"2.0","id":1,"result":"x"}')

    async with serve(handler, "127.0.0.1", 0) as server:
        port = next(iter(server.sockets)).getsockname()[1]
        ws = await WebSocket.connect(f"ws://127.0.0.1:{port}")
        result = await ws.execute("eth_accounts", ["1"])
        await ws.close()

    assert result == "x"
    assert received == ['{"jsonrpc":"2.0","method":"eth_accounts","params":["1"],"id":1}']