"""Transport over a local stream socket, such as a Unix domain socket."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import itertools
import json
import logging
import os
import re
from collections.abc import AsyncIterator, Iterable
from typing import Any

from ethtransport.base import (
    BatchTransport,
    DuplexTransport,
    TransportError,
    Web3Error,
    build_request,
    result_from_output,
    to_json,
)

logger = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024
_WHITESPACE = re.compile(r"\s*")
_DECODER = json.JSONDecoder()
_END = object()


def _closed_error() -> TransportError:
    return TransportError("Send Error: transport is closed")


def _dropped_error() -> TransportError:
    return TransportError("Recv Error: channel closed")


def _rejected(error: Exception) -> asyncio.Future[Any]:
    """A future that already holds ``error``."""
    future = asyncio.get_running_loop().create_future()
    future.set_exception(error)
    return future


def _is_output(value: Any) -> bool:
    return isinstance(value, dict) and "id" in value and (("result" in value) != ("error" in value))


def _is_response(value: Any) -> bool:
    if isinstance(value, list):
        return all(_is_output(item) for item in value)
    return _is_output(value)


def _is_notification(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("method"), str) and "id" not in value


def _outcome(output: Any) -> Any:
    if isinstance(output, BaseException):
        return output
    try:
        return result_from_output(output)
    except Web3Error as err:
        return err


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


class Ipc(BatchTransport, DuplexTransport):
    """JSON-RPC over a pair of asyncio streams, with subscriptions.

    Create it with :meth:`connect` or :meth:`from_streams` while an event loop
    is running; a background task reads responses and notifications.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._closed = False
        self._finished = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    @classmethod
    async def connect(cls, path: str | os.PathLike[str]) -> Ipc:
        """Connect to a Unix domain socket at ``path``."""
        try:
            reader, writer = await asyncio.open_unix_connection(os.fspath(path))
        except OSError as err:
            raise TransportError(str(err)) from err
        return cls(reader, writer)

    @classmethod
    def from_streams(cls, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Ipc:
        """Use an already connected pair of streams."""
        return cls(reader, writer)

    async def __aenter__(self) -> Ipc:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop accepting calls, wait for outstanding ones, then close the connection."""
        self._closed = True
        outstanding = list(self._pending.values())
        if outstanding:
            await asyncio.gather(*outstanding, return_exceptions=True)
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._writer.close()
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()

    @property
    def _is_open(self) -> bool:
        return not (self._closed or self._finished)

    def _ensure_open(self) -> None:
        if not self._is_open:
            raise _closed_error()

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    def send(self, request_id: int, request: dict[str, Any]):
        if not self._is_open:
            return _rejected(_closed_error())
        future = self._register(request_id)
        self._write(request, [request_id])
        return self._single(future)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]):
        pairs = list(requests)
        if not self._is_open:
            return _rejected(_closed_error())
        futures = [self._register(request_id) for request_id, _ in pairs]
        self._write([call for _, call in pairs], [request_id for request_id, _ in pairs])
        return self._batch(futures)

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        self._ensure_open()
        subscription = _Subscription()
        replaced = self._subscriptions.get(subscription_id)
        if replaced is not None:
            logger.warning("Replacing a subscription with id %r", subscription_id)
            replaced.end()
        self._subscriptions[subscription_id] = subscription
        return subscription

    def unsubscribe(self, subscription_id: str) -> None:
        self._ensure_open()
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            logger.warning("Unsubscribing not subscribed id %r", subscription_id)
        else:
            subscription.end()

    def _register(self, request_id: int) -> asyncio.Future[Any]:
        future = asyncio.get_running_loop().create_future()
        if request_id in self._pending:
            logger.warning("Replacing a pending request with id %r", request_id)
            self._drop(request_id)
        self._pending[request_id] = future
        return future

    def _drop(self, request_id: int) -> None:
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.set_exception(_dropped_error())

    def _write(self, request: Any, ids: list[int]) -> None:
        try:
            self._writer.write(to_json(request).encode("utf-8"))
        except (OSError, RuntimeError) as err:
            logger.error("IPC write error: %r", err)
            for request_id in ids:
                self._drop(request_id)

    async def _single(self, future: asyncio.Future[Any]) -> Any:
        return result_from_output(await future)

    async def _batch(self, futures: list[asyncio.Future[Any]]) -> list[Any]:
        outputs = await asyncio.gather(*futures, return_exceptions=True)
        return [_outcome(output) for output in outputs]

    async def _run(self) -> None:
        text_decoder = codecs.getincrementaldecoder("utf-8")("replace")
        buffer = ""
        try:
            while True:
                chunk = await self._reader.read(_READ_SIZE)
                if not chunk:
                    break
                buffer = self._consume(buffer + text_decoder.decode(chunk))
        except OSError as err:
            logger.error("IPC read error: %r", err)
        finally:
            self._finished = True
            for request_id in list(self._pending):
                self._drop(request_id)
            for subscription in self._subscriptions.values():
                subscription.end()
            self._subscriptions.clear()

    def _consume(self, buffer: str) -> str:
        position = 0
        while True:
            position = _WHITESPACE.match(buffer, position).end()  # type: ignore[union-attr]
            if position == len(buffer):
                break
            try:
                value, position = _DECODER.raw_decode(buffer, position)
            except json.JSONDecodeError:
                break
            self._dispatch(value)
        return buffer[position:]

    def _dispatch(self, value: Any) -> None:
        if _is_notification(value):
            self._notify(value)
        elif _is_response(value):
            for output in value if isinstance(value, list) else [value]:
                self._respond(output)
        else:
            logger.warning("JSON is not a response or notification")

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

    def _respond(self, output: dict[str, Any]) -> None:
        request_id = output["id"]
        if not isinstance(request_id, int) or isinstance(request_id, bool) or request_id < 0:
            logger.warning("Got unsupported response (id: %r)", request_id)
            return
        future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning("Got response for unknown request (id: %r)", request_id)
        elif future.done():
            logger.warning("Sending a response to deallocated channel (id: %r)", request_id)
        else:
            future.set_result(output)