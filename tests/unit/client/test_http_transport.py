"""
Unit tests for HttpTransport and HttpBeacon against httpx.MockTransport.
"""

import json

import httpx
import pytest

from telemetry_forwarder.coordinator import BatchingEngine, DeliveryCoordinator, QueueItem, QueueOptions
from tfwd_client import APP_ROUTE, BATCH_ROUTE, EVENT_ROUTE, HttpBeacon, HttpTransport
from tfwd_client.errors import RetryableTransportError, TransportError

BASE = "http://ingest.test/v1"


class Recorder:
    """MockTransport handler that records requests and answers with ``status``."""

    def __init__(self, status=200):
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text="ok")

    @property
    def bodies(self):
        return [(r.url.path, json.loads(r.content)) for r in self.requests]


def _transport(handler, retries=0, **kwargs):
    client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return HttpTransport(BASE, "k", client=client, retries=retries, **kwargs), client


def _items(destination, *payloads):
    return [QueueItem(destination, p) for p in payloads]


@pytest.mark.asyncio
async def test_single_item_route_posts_each_payload():
    rec = Recorder()
    transport, client = _transport(rec)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}, {"m": 2}))

    assert result.ok
    assert rec.bodies == [("/v1/ingest/app", {"m": 1}), ("/v1/ingest/app", {"m": 2})]
    await client.aclose()


@pytest.mark.asyncio
async def test_batch_route_wraps_items():
    rec = Recorder()
    transport, client = _transport(rec)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(BATCH_ROUTE, _items(BATCH_ROUTE, "a", "b"))

    assert result.ok
    assert rec.bodies == [("/v1/ingest/batch", {"items": ["a", "b"]})]
    await client.aclose()


@pytest.mark.asyncio
async def test_server_error_is_retryable():
    transport, client = _transport(Recorder(status=503))
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(EVENT_ROUTE, _items(EVENT_ROUTE, {"e": 1}))

    assert not result.ok
    assert isinstance(result.error, RetryableTransportError)
    assert result.error.status_code == 503
    await client.aclose()


@pytest.mark.asyncio
async def test_client_error_is_not_retryable():
    transport, client = _transport(Recorder(status=400))
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}))

    assert isinstance(result.error, TransportError)
    assert not isinstance(result.error, RetryableTransportError)
    await client.aclose()


@pytest.mark.asyncio
async def test_network_error_is_retryable():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    transport, client = _transport(boom)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}))

    assert isinstance(result.error, RetryableTransportError)
    await client.aclose()


@pytest.mark.asyncio
async def test_unknown_destination_fails_group():
    rec = Recorder()
    transport, client = _transport(rec)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver("/ingest/nope", _items("/ingest/nope", 1))

    assert isinstance(result.error, TransportError)
    assert rec.requests == []
    await client.aclose()


@pytest.mark.asyncio
async def test_engine_retries_through_transport():
    statuses = iter([500, 200])

    def flaky(request):
        return httpx.Response(next(statuses))

    transport, client = _transport(flaky)
    engine = BatchingEngine(transport, QueueOptions(max_retries=2))
    engine.submit(APP_ROUTE, {"m": 1})

    await engine.drain()
    assert engine.pending()[0].retry_count == 1
    await engine.drain()
    assert engine.size == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    transport, client = _transport(Recorder())
    await transport.aclose()
    assert not client.is_closed
    await client.aclose()


def test_auth_header_on_owned_client():
    transport = HttpTransport(BASE, "secret")
    assert transport._client.headers["Authorization"] == "Bearer secret"


def test_beacon_posts_per_destination():
    rec = Recorder()
    client = httpx.Client(base_url=BASE, transport=httpx.MockTransport(rec))
    beacon = HttpBeacon(BASE, "k", client=client)

    assert beacon(APP_ROUTE, [{"m": 1}, {"m": 2}]) == 2
    assert beacon(BATCH_ROUTE, [1, 2, 3]) == 1
    assert rec.bodies[-1] == ("/v1/ingest/batch", {"items": [1, 2, 3]})
    client.close()


def test_beacon_swallows_transport_errors():
    def boom(request):
        raise httpx.ConnectError("gone", request=request)

    client = httpx.Client(base_url=BASE, transport=httpx.MockTransport(boom))
    beacon = HttpBeacon(BASE, "k", client=client)

    assert beacon(APP_ROUTE, [{"m": 1}]) == 1
    client.close()


class Scripted:
    """MockTransport handler answering with the given statuses in order."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        return httpx.Response(self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0])


@pytest.mark.asyncio
async def test_transient_error_retried_within_one_delivery():
    handler = Scripted(503, 200)
    transport, client = _transport(handler, retries=2, retry_base_delay_ms=1)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}))

    assert result.ok
    assert handler.calls == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_rate_limit_and_network_errors_retried():
    answers = iter(["connect", 429, 200])

    def handler(request):
        answer = next(answers)
        if answer == "connect":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(answer)

    transport, client = _transport(handler, retries=3, retry_base_delay_ms=1)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(EVENT_ROUTE, _items(EVENT_ROUTE, {"e": 1}))

    assert result.ok
    await client.aclose()


@pytest.mark.asyncio
async def test_retries_exhausted_fail_group():
    handler = Scripted(503)
    transport, client = _transport(handler, retries=2, retry_base_delay_ms=1)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}))

    assert isinstance(result.error, RetryableTransportError)
    assert handler.calls == 3
    await client.aclose()


@pytest.mark.asyncio
async def test_client_error_not_retried():
    handler = Scripted(422)
    transport, client = _transport(handler, retries=3, retry_base_delay_ms=1)
    coordinator = DeliveryCoordinator(transport, timeout=1.0)

    result = await coordinator.deliver(APP_ROUTE, _items(APP_ROUTE, {"m": 1}))

    assert result.error.status_code == 422
    assert handler.calls == 1
    await client.aclose()


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        HttpTransport(BASE, "k", retries=-1)
