"""One of two possible transports behind a single type."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Iterable
from typing import Any

from ethtransport.base import BatchTransport, DuplexTransport, Transport


class Either(BatchTransport, DuplexTransport):
    """Delegates every operation to the wrapped transport."""

    __match_args__ = ("transport",)

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.transport!r})"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.transport == other.transport  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), id(self.transport)))

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        return self.transport.prepare(method, params)

    def send(self, request_id: int, request: dict[str, Any]) -> Awaitable[Any]:
        return self.transport.send(request_id, request)

    def set_max_response_bytes(self, value: int) -> None:
        self.transport.set_max_response_bytes(value)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        return self.transport.send_batch(requests)  # type: ignore[attr-defined]

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        return self.transport.subscribe(subscription_id)  # type: ignore[attr-defined]

    def unsubscribe(self, subscription_id: str) -> None:
        self.transport.unsubscribe(subscription_id)  # type: ignore[attr-defined]


class Left(Either):
    """The first possible transport."""


class Right(Either):
    """The second possible transport."""