"""JSON-RPC request building, response decoding, errors and transport interfaces."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Iterable
from typing import Any

JSONRPC_VERSION = "2.0"


class Web3Error(Exception):
    """Base class of every error raised by a transport."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), repr(self.args)))


class TransportError(Web3Error):
    """The underlying connection failed, with a message or a status code."""

    def __init__(self, message: str | None = None, code: int | None = None) -> None:
        super().__init__(message, code)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code is not None:
            return f"transport error: code {self.code}"
        return f"transport error: {self.message}"


class InvalidResponseError(Web3Error):
    """The server answered with something that is not a valid response."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"got invalid response: {self.message}"


class RpcError(Web3Error):
    """The server answered a call with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(code, message, data)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return f"RPC error {self.code}: {self.message}"


class InternalError(Web3Error):
    """A response was lost inside the library."""

    def __str__(self) -> str:
        return "internal error"


class UnreachableError(Web3Error):
    """A request was made that could never be answered."""

    def __str__(self) -> str:
        return "unreachable"


def build_request(request_id: int, method: str, params: Iterable[Any]) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 method call."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": list(params),
        "id": request_id,
    }


def to_json(request: Any) -> str:
    """Serialise a call or a batch of calls in compact form."""
    return json.dumps(request, separators=(",", ":"), ensure_ascii=False)


def _rpc_error(error: Any) -> Web3Error:
    if (
        isinstance(error, dict)
        and isinstance(error.get("code"), int)
        and not isinstance(error.get("code"), bool)
        and isinstance(error.get("message"), str)
    ):
        return RpcError(error["code"], error["message"], error.get("data"))
    return InvalidResponseError(f"malformed error object: {error!r}")


def result_from_output(output: Any) -> Any:
    """Return the result of a JSON-RPC response object, raising its error if it has one."""
    if not isinstance(output, dict):
        raise InvalidResponseError(f"expected a response object, got {output!r}")
    if "error" in output:
        raise _rpc_error(output["error"])
    if "result" in output:
        return output["result"]
    raise InvalidResponseError(f"response has neither result nor error: {output!r}")


def _outcome(output: Any) -> Any:
    try:
        return result_from_output(output)
    except Web3Error as err:
        return err


def results_from_outputs(outputs: Iterable[Any]) -> list[Any]:
    """Decode each response; a failed one appears as its exception instance."""
    return [_outcome(output) for output in outputs]


class Transport(ABC):
    """Something that can send JSON-RPC calls and await their results."""

    @abstractmethod
    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        """Assign an id to a call and build it."""

    @abstractmethod
    def send(self, request_id: int, request: dict[str, Any]) -> Awaitable[Any]:
        """Send a prepared call; the awaitable yields its result."""

    async def execute(self, method: str, params: Iterable[Any] = ()) -> Any:
        """Prepare and send a call, returning its result."""
        request_id, request = self.prepare(method, list(params))
        return await self.send(request_id, request)

    def set_max_response_bytes(self, value: int) -> None:
        """Limit the size of responses; transports without such a limit ignore it."""


class BatchTransport(Transport):
    """A transport that can send several calls at once."""

    @abstractmethod
    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        """Send prepared calls together.

        The awaitable yields one entry per call, in order: the result, or the
        exception instance for a call that failed.
        """


class DuplexTransport(Transport):
    """A transport that also delivers subscription notifications."""

    @abstractmethod
    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        """Return the stream of notifications for a subscription."""

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> None:
        """Stop delivering notifications for a subscription."""