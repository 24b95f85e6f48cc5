# ethtransport

Asynchronous transports that carry JSON-RPC calls to an Ethereum node.

Every transport implements the interface in `ethtransport.base`:

- `prepare(method, params)` gives the call an id and returns
  `(request_id, request)`. The request is a JSON-RPC 2.0 dict.
- `send(request_id, request)` returns an awaitable that yields the call's
  result.
- `execute(method, params)` is a coroutine that does both steps.
- `set_max_response_bytes(value)` limits response size on transports that
  support a limit. The others ignore it.

Batch-capable transports (`BatchTransport`) also have
`send_batch(requests)`. Its awaitable yields one entry per call, in the
order of the calls. Each entry is either the call's result or, when that
call failed, the exception instance.

Duplex transports (`DuplexTransport`) also have
`subscribe(subscription_id)` and `unsubscribe(subscription_id)`.
`subscribe` returns an async iterator over the `result` field of the
`eth_subscription` notifications that arrive for that id.

## Transports

- `ethtransport.http.Http(url, client=None)` sends each call as an HTTP
  POST to one URL. It supports batches. The node may answer a batch in any
  order; `handle_batch_response(ids, outputs)` puts the results back into
  request order. You may pass your own `httpx.AsyncClient`. Otherwise the
  transport creates one and `close()` closes it. `Http` can also be used
  as an async context manager.
- `ethtransport.ipc.Ipc` carries calls over a stream socket and supports
  batches and subscriptions.
  - `await Ipc.connect(path)` opens a Unix domain socket.
  - `Ipc.from_streams(reader, writer)` uses asyncio streams that are
    already connected.

  Both must be called while an event loop is running. `close()` waits for
  outstanding calls, then closes the connection.
- `ethtransport.ws.WebSocket` carries calls over a `ws://` or `wss://`
  connection and supports batches and subscriptions.
  - `await WebSocket.connect(url)` opens the connection. The port defaults
    to 80 or 443. When the URL carries a password, such as
    `ws://user:password@localhost:8546`, a Basic `Authorization` header is
    sent.
  - Any other scheme raises `TransportError`.
  - `close()` ends the connection; unanswered calls then fail.
- `ethtransport.batch.Batch(transport)` wraps a batch-capable transport.
  `send` queues a call and returns a future. `submit_batch()` sends every
  queued call at once and resolves those futures.
- `ethtransport.either.Either` holds one transport and passes every
  operation to it. `Left` and `Right` let code name which of two possible
  transports it holds.
- `ethtransport.testing.RecordingTransport` is for unit tests. It records
  each prepared call and answers `send` from a queue that you fill with
  `set_response` or `add_response`. When the queue is empty, `send` raises
  `UnreachableError`.

## Installation

```
pip install ethtransport
```

## Usage

```python
import asyncio
from ethtransport.http import Http

async def main():
    async with Http("http://localhost:8545") as transport:
        block = await transport.execute("eth_blockNumber", [])
        print(block)

asyncio.run(main())
```

### Batching

```python
import asyncio
from ethtransport.batch import Batch
from ethtransport.http import Http

async def main():
    async with Http("http://localhost:8545") as http:
        batch = Batch(http)
        first = batch.send(*batch.prepare("eth_blockNumber", []))
        second = batch.send(*batch.prepare("eth_chainId", []))
        results = await batch.submit_batch()
        print(results, await first, await second)

asyncio.run(main())
```

If the whole batch fails, `submit_batch()` raises, and every queued future
fails with the same error.

### Subscriptions

```python
from ethtransport.ws import WebSocket

async def watch_heads():
    ws = await WebSocket.connect("ws://localhost:8546")
    sub_id = await ws.execute("eth_subscribe", ["newHeads"])
    async for head in ws.subscribe(sub_id):
        print(head)
```

A subscription's iterator ends in two cases: after `unsubscribe`, or when
the connection closes. Notifications for an id nobody has subscribed to are
logged and dropped.

### Errors

Every failure raises a subclass of `Web3Error` from `ethtransport.base`:

- `TransportError`: connection failures, non-success HTTP statuses
  (the status is in `code`), and undecodable bodies.
- `InvalidResponseError`: malformed or mismatched responses.
- `RpcError`: a JSON-RPC error object, with `code`, `message` and `data`.
- `InternalError`: a batched call that got no result.
- `UnreachableError`: a `RecordingTransport` with no response queued.

### Testing code that uses a transport

```python
from ethtransport.testing import RecordingTransport

async def test_block_number():
    transport = RecordingTransport()
    transport.set_response("0x1")
    assert await transport.execute("eth_blockNumber", ["latest"]) == "0x1"
    transport.assert_request("eth_blockNumber", ['"latest"'])
    transport.assert_no_more_requests()
```

`assert_request` compares the recorded params with the JSON text you give
for each one.

## What this package does not do

It only carries raw JSON-RPC calls. It has:

- no typed `eth_*` API and no ABI encoding;
- no contracts, accounts or signing;
- no browser wallet provider;
- no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```