"""A transport that collects calls and sends them together."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any

from ethtransport.base import BatchTransport, InternalError, Transport, Web3Error


class Batch(Transport):
    """Queue calls made through :meth:`send` until :meth:`submit_batch` sends them."""

    def __init__(self, transport: BatchTransport) -> None:
        self._transport = transport
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._batch: list[tuple[int, dict[str, Any]]] = []

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        return self._transport.prepare(method, params)

    def send(self, request_id: int, request: dict[str, Any]) -> asyncio.Future[Any]:
        """Queue a call; the returned future resolves once the batch is submitted.

        Must be called while an event loop is running.
        """
        future = asyncio.get_running_loop().create_future()
        replaced = self._pending.get(request_id)
        if replaced is not None and not replaced.done():
            replaced.set_exception(InternalError())
        self._pending[request_id] = future
        self._batch.append((request_id, request))
        return future

    def submit_batch(self) -> Awaitable[list[Any]]:
        """Send every queued call; the awaitable yields the whole batch's results."""
        batch, self._batch = self._batch, []
        ids = [request_id for request_id, _ in batch]
        sending = self._transport.send_batch(batch)
        return self._complete(ids, sending)

    async def _complete(self, ids: list[int], sending: Awaitable[list[Any]]) -> list[Any]:
        try:
            results = await sending
        except Exception as err:
            for request_id in ids:
                future = self._pending.pop(request_id, None)
                if future is not None and not future.done():
                    future.set_exception(err)
            raise
        for index, request_id in enumerate(ids):
            future = self._pending.pop(request_id, None)
            if future is None or future.done():
                continue
            if index >= len(results):
                future.set_exception(InternalError())
            elif isinstance(results[index], Web3Error):
                future.set_exception(results[index])
            else:
                future.set_result(results[index])
        return results

    def set_max_response_bytes(self, value: int) -> None:
        self._transport.set_max_response_bytes(value)