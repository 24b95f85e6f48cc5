import pytest

from ethtransport.base import BatchTransport, DuplexTransport, build_request
from ethtransport.either import Either, Left, Right


class FakeTransport(BatchTransport, DuplexTransport):
    def __init__(self, name):
        self.name = name
        self.max_bytes = None
        self.subscribed = []
        self.unsubscribed = []

    def prepare(self, method, params):
        return 9, build_request(9, method, params)

    async def send(self, request_id, request):
        return (self.name, request_id, request["method"])

    async def send_batch(self, requests):
        return [(self.name, request_id) for request_id, _ in requests]

    def subscribe(self, subscription_id):
        self.subscribed.append(subscription_id)
        return self._stream(subscription_id)

    async def _stream(self, subscription_id):
        yield (self.name, subscription_id)

    def unsubscribe(self, subscription_id):
        self.unsubscribed.append(subscription_id)

    def set_max_response_bytes(self, value):
        self.max_bytes = value


def test_prepare_delegates():
    assert Left(FakeTransport("a")).prepare("eth_x", [1]) == (9, build_request(9, "eth_x", [1]))


@pytest.mark.asyncio
async def test_send_uses_wrapped_transport():
    assert await Left(FakeTransport("a")).send(1, build_request(1, "m", [])) == ("a", 1, "m")
    assert await Right(FakeTransport("b")).send(2, build_request(2, "n", [])) == ("b", 2, "n")


@pytest.mark.asyncio
async def test_execute_through_either():
    assert await Right(FakeTransport("b")).execute("eth_y", []) == ("b", 9, "eth_y")


@pytest.mark.asyncio
async def test_send_batch_delegates():
    requests = [(1, build_request(1, "a", [])), (2, build_request(2, "b", []))]
    assert await Left(FakeTransport("a")).send_batch(requests) == [("a", 1), ("a", 2)]


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe_delegate():
    inner = FakeTransport("b")
    either = Right(inner)
    received = [item async for item in either.subscribe("0x1")]
    either.unsubscribe("0x1")
    assert received == [("b", "0x1")]
    assert inner.subscribed == ["0x1"]
    assert inner.unsubscribed == ["0x1"]


def test_set_max_response_bytes_delegates():
    inner = FakeTransport("a")
    Left(inner).set_max_response_bytes(2048)
    assert inner.max_bytes == 2048


def test_pattern_matching_on_side():
    inner = FakeTransport("a")
    match Right(inner):
        case Left(transport=_):
            side = "left"
        case Right(transport=found):
            side = found.name
    assert side == "a"
    assert isinstance(Left(inner), Either)
    assert Left(inner) != Right(inner)