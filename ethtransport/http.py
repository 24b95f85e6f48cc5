"""HTTP transport."""

from __future__ import annotations

import itertools
import json
import logging
from collections.abc import Iterable
from typing import Any

import httpx

from ethtransport.base import (
    BatchTransport,
    InvalidResponseError,
    TransportError,
    build_request,
    result_from_output,
    results_from_outputs,
    to_json,
)

logger = logging.getLogger(__name__)

USER_AGENT = "ethtransport"


def _id_of_output(output: Any) -> int:
    request_id = output.get("id") if isinstance(output, dict) else None
    if isinstance(request_id, int) and not isinstance(request_id, bool) and request_id >= 0:
        return request_id
    raise InvalidResponseError("response id is not u64")


def handle_batch_response(ids: Iterable[int], outputs: Iterable[Any]) -> list[Any]:
    """Match batch responses to request ids, restoring the order of the ids.

    Each entry is the call's result, or the exception instance for a failed call.
    """
    ids = list(ids)
    outputs = list(outputs)
    if len(ids) != len(outputs):
        raise InvalidResponseError("unexpected number of responses")
    by_id = {
        _id_of_output(output): outcome
        for output, outcome in zip(outputs, results_from_outputs(outputs))
    }
    ordered = []
    for request_id in ids:
        if request_id not in by_id:
            raise InvalidResponseError(f"batch response is missing id {request_id}")
        ordered.append(by_id.pop(request_id))
    return ordered


class Http(BatchTransport):
    """Sends JSON-RPC calls as HTTP POST requests to one URL."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        try:
            self._url = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as err:
            raise TransportError(f"failed to parse url: {err}") from err
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(headers={"User-Agent": USER_AGENT})
        self._ids = itertools.count()

    async def __aenter__(self) -> Http:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    async def send(self, request_id: int, request: dict[str, Any]) -> Any:
        output = await self._execute(request, request_id)
        return result_from_output(output)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]):
        # The batch gets an id of its own only to pair its log lines.
        log_id = next(self._ids)
        pairs = list(requests)
        ids = [request_id for request_id, _ in pairs]
        calls = [call for _, call in pairs]
        return self._send_batch(log_id, ids, calls)

    async def _send_batch(self, log_id: int, ids: list[int], calls: list[dict[str, Any]]) -> list[Any]:
        outputs = await self._execute(calls, log_id)
        if not isinstance(outputs, list):
            raise TransportError(f"failed to deserialize response: expected a JSON array: {to_json(outputs)}")
        return handle_batch_response(ids, outputs)

    async def _execute(self, request: Any, log_id: int) -> Any:
        body = to_json(request).encode("utf-8")
        logger.debug("[id:%s] sending request: %s", log_id, body.decode("utf-8"))
        try:
            response = await self._client.post(
                self._url, content=body, headers={"Content-Type": "application/json"}
            )
        except httpx.HTTPError as err:
            raise TransportError(f"failed to send request: {err}") from err
        content = response.content
        text = content.decode("utf-8", errors="replace")
        logger.debug("[id:%s] received response: %s", log_id, text)
        if not response.is_success:
            raise TransportError(code=response.status_code)
        try:
            return json.loads(content)
        except ValueError as err:
            raise TransportError(f"failed to deserialize response: {err}: {text}") from err