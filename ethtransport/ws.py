"""WebSocket transport."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import itertools
import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any
from urllib.parse import urlsplit

import websockets.exceptions

try:
    from websockets.asyncio.client import connect as _ws_connect

    _HEADERS_KEYWORD = "additional_headers"
except ImportError:  # older releases of the library
    from websockets.client import connect as _ws_connect  # type: ignore[no-redef]

    _HEADERS_KEYWORD = "extra_headers"

from ethtransport.base import (
    BatchTransport,
    DuplexTransport,
    InvalidResponseError,
    TransportError,
    build_request,
    results_from_outputs,
    to_json,
)

logger = logging.getLogger(__name__)

_END = object()
_DEFAULT_PORTS = {"ws": 80, "wss": 443}


def _dropped_error() -> TransportError:
    return TransportError("Cannot send request. Internal task finished.")


async def _failed(error: Exception) -> Any:
    raise error


def _is_output(value: Any) -> bool:
    return isinstance(value, dict) and "id" in value and (("result" in value) != ("error" in value))


def _parse_notification(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict) and isinstance(value.get("method"), str) and "id" not in value:
        return value
    return None


def _parse_outputs(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value if all(_is_output(item) for item in value) else []
    return [value] if _is_output(value) else []


def _status_code(err: Exception) -> int | None:
    response = getattr(err, "response", None)
    code = getattr(response, "status_code", None)
    if code is None:
        code = getattr(err, "status_code", None)
    return code if isinstance(code, int) else None


class _Subscription:
    """Async iterator over the notifications of one subscription."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, value: Any) -> None:
        self._queue.put_nowait(value)

    def end(self) -> None:
        self._queue.put_nowait(_END)

    def __aiter__(self) -> _Subscription:
        return self

    async def __anext__(self) -> Any:
        value = await self._queue.get()
        if value is _END:
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return value


class WebSocket(BatchTransport, DuplexTransport):
    """JSON-RPC over a WebSocket connection, with subscriptions.

    Create it with :meth:`connect`, or hand an open connection to the
    constructor while an event loop is running. Background tasks write
    outgoing calls and read responses and notifications.
    """

    def __init__(self, connection: Any) -> None:
        self._connection = connection
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[list[Any]]] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._outgoing: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
        self._finished = False
        loop = asyncio.get_running_loop()
        self._writer = loop.create_task(self._write_loop())
        self._reader = loop.create_task(self._read_loop())

    def __repr__(self) -> str:
        return f"WebSocket(id={self._ids!r})"

    @classmethod
    async def connect(cls, url: str) -> WebSocket:
        """Open a connection to a ``ws://`` or ``wss://`` URL."""
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as err:
            raise TransportError(f"failed to parse url: {err}") from err
        scheme = parts.scheme
        if scheme not in _DEFAULT_PORTS:
            raise TransportError(f"Wrong scheme: {scheme}")
        host = parts.hostname
        if not host:
            raise TransportError("Wrong host name")
        if port is None:
            port = _DEFAULT_PORTS[scheme]
        netloc = f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
        resource = parts.path or "/"
        if parts.query:
            resource = f"{resource}?{parts.query}"
        headers: dict[str, str] = {}
        if parts.password is not None:
            credentials = f"{parts.username or ''}:{parts.password}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")
        target = f"{scheme}://{netloc}{resource}"
        logger.debug("Connecting websocket client with host: %s and resource: %s", host, resource)
        options: dict[str, Any] = {"max_size": None}
        if headers:
            options[_HEADERS_KEYWORD] = headers
        try:
            connection = await _ws_connect(target, **options)
        except websockets.exceptions.InvalidHandshake as err:
            code = _status_code(err)
            if code is not None:
                raise TransportError(code=code) from err
            raise TransportError(f"Handshake Error: {err!r}") from err
        except websockets.exceptions.WebSocketException as err:
            raise TransportError(f"Connection Error: {err!r}") from err
        except (OSError, asyncio.TimeoutError) as err:
            raise TransportError(str(err)) from err
        return cls(connection)

    async def __aenter__(self) -> WebSocket:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the connection; unanswered calls fail."""
        with contextlib.suppress(Exception):
            await self._connection.close()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader
        self._finish()

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    def send(self, request_id: int, request: dict[str, Any]):
        try:
            future = self._enqueue(request_id, request)
        except TransportError as err:
            return _failed(err)
        return self._single(future)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]):
        pairs = list(requests)
        request_id = pairs[0][0] if pairs else 0
        try:
            future = self._enqueue(request_id, [call for _, call in pairs])
        except TransportError as err:
            return _failed(err)
        return self._batch(future)

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        if self._finished:
            raise _dropped_error()
        subscription = _Subscription()
        replaced = self._subscriptions.get(subscription_id)
        if replaced is not None:
            logger.warning("Replacing already-registered subscription with id %r", subscription_id)
            replaced.end()
        self._subscriptions[subscription_id] = subscription
        return subscription

    def unsubscribe(self, subscription_id: str) -> None:
        if self._finished:
            raise _dropped_error()
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            logger.warning("Unsubscribing from non-existent subscription with id %r", subscription_id)
        else:
            subscription.end()

    def _enqueue(self, request_id: int, request: Any) -> asyncio.Future[list[Any]]:
        if self._finished:
            raise _dropped_error()
        text = to_json(request)
        logger.debug("[%s] Calling: %s", request_id, text)
        future: asyncio.Future[list[Any]] = asyncio.get_running_loop().create_future()
        if request_id in self._pending:
            logger.warning("Replacing a pending request with id %r", request_id)
            self._drop(request_id)
        self._pending[request_id] = future
        self._outgoing.put_nowait((request_id, text))
        return future

    def _drop(self, request_id: int) -> None:
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.set_exception(_dropped_error())

    async def _single(self, future: asyncio.Future[list[Any]]) -> Any:
        outcomes = await future
        if not outcomes:
            raise InvalidResponseError("Expected single, got batch.")
        first = outcomes[0]
        if isinstance(first, BaseException):
            raise first
        return first

    async def _batch(self, future: asyncio.Future[list[Any]]) -> list[Any]:
        return await future

    async def _write_loop(self) -> None:
        while True:
            request_id, text = await self._outgoing.get()
            try:
                await self._connection.send(text)
            except (websockets.exceptions.ConnectionClosed, OSError, RuntimeError) as err:
                logger.error("WS connection error: %r", err)
                self._drop(request_id)

    async def _read_loop(self) -> None:
        try:
            async for message in self._connection:
                self._handle_message(message)
        except websockets.exceptions.ConnectionClosed as err:
            logger.error("WS connection error: %r", err)
        except OSError as err:
            logger.error("WS connection error: %r", err)
        finally:
            self._finish()

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._writer.cancel()
        for request_id in list(self._pending):
            self._drop(request_id)
        for subscription in self._subscriptions.values():
            subscription.end()
        self._subscriptions.clear()

    def _handle_message(self, data: str | bytes) -> None:
        logger.debug("Message received: %r", data)
        try:
            value = json.loads(data)
        except ValueError:
            value = None
        notification = _parse_notification(value)
        if notification is not None:
            self._notify(notification)
            return
        outputs = _parse_outputs(value)
        request_id = outputs[0]["id"] if outputs else 0
        if not isinstance(request_id, int) or isinstance(request_id, bool) or request_id < 0:
            logger.warning("Got unsupported response (id: %r)", request_id)
            return
        future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning("Got response for unknown request (id: %r)", request_id)
        elif future.done():
            logger.warning("Sending a response to deallocated channel (id: %r)", request_id)
        else:
            future.set_result(results_from_outputs(outputs))

    def _notify(self, notification: dict[str, Any]) -> None:
        params = notification.get("params")
        if not isinstance(params, dict):
            return
        subscription_id = params.get("subscription")
        if not isinstance(subscription_id, str) or "result" not in params:
            logger.error("Got unsupported notification (id: %r)", subscription_id)
            return
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            logger.warning("Got notification for unknown subscription (id: %r)", subscription_id)
            return
        subscription.push(params["result"])