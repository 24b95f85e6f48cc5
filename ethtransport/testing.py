"""A transport that records calls and replays canned responses, for tests."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Iterable
from typing import Any

from ethtransport.base import Transport, UnreachableError, build_request


async def _settle(value: Any, error: Exception | None) -> Any:
    """Resolve to ``value``, or raise ``error`` when one is given."""
    if error is not None:
        raise error
    return value


class RecordingTransport(Transport):
    """Records every prepared call and answers sends from a queue of responses."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, list[Any]]] = []
        self._responses: deque[Any] = deque()
        self._asserted = 0

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        params = list(params)
        request = build_request(1, method, params)
        self.requests.append((method, params))
        return len(self.requests), request

    def send(self, request_id: int, request: dict[str, Any]):
        if self._responses:
            return _settle(self._responses.popleft(), None)
        return _settle(None, UnreachableError())

    def set_response(self, value: Any) -> None:
        """Replace the queued responses with a single one."""
        self._responses = deque([value])

    def add_response(self, value: Any) -> None:
        """Queue another response."""
        self._responses.append(value)

    def assert_request(self, method: str, params: Iterable[str]) -> None:
        """Check the next unchecked call against a method and JSON-encoded params."""
        index = self._asserted
        self._asserted += 1
        try:
            recorded_method, recorded_params = self.requests[index]
        except IndexError:
            raise AssertionError("Expected result.") from None
        if recorded_method != method:
            raise AssertionError(f"expected method {method!r}, got {recorded_method!r}")
        encoded = [json.dumps(param, separators=(",", ":"), ensure_ascii=False) for param in recorded_params]
        expected = list(params)
        if encoded != expected:
            raise AssertionError(f"expected params {expected!r}, got {encoded!r}")

    def assert_no_more_requests(self) -> None:
        """Check that every recorded call has been asserted."""
        if self._asserted != len(self.requests):
            remaining = self.requests[self._asserted:]
            raise AssertionError(f"Expected no more requests, got: {remaining!r}")