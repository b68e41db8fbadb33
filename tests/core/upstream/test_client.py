"""Tests for the upstream HTTP client using httpx.MockTransport."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from barsync.core.config import UpstreamConfig
from barsync.core.exceptions import (
    UpstreamBadResponseError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from barsync.core.monitoring.metrics import MetricsCollector
from barsync.core.upstream.client import UpstreamClient, classify_response


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    sleep: RecordingSleep | None = None,
    metrics: MetricsCollector | None = None,
    **config: object,
) -> UpstreamClient:
    return UpstreamClient(
        UpstreamConfig(base_url="http://gateway.test", **config),
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
        metrics=metrics,
    )


def test_classify_response() -> None:
    request = httpx.Request("GET", "http://gateway.test/x")

    assert classify_response("history", httpx.Response(200, request=request)) is None
    assert isinstance(classify_response("history", httpx.Response(503, request=request)), UpstreamUnavailableError)
    assert isinstance(
        classify_response("history", httpx.Response(500, text="Service temporarily unavailable", request=request)),
        UpstreamUnavailableError,
    )
    assert isinstance(classify_response("history", httpx.Response(400, request=request)), UpstreamBadResponseError)


@pytest.mark.asyncio
async def test_history_sends_contract_qualifiers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"bars": []})

    async with make_client(handler, account_mode="paper") as client:
        payload = await client.history("AAPL", "1hour", period="1M", exchange="NASDAQ")

    assert payload == {"bars": []}
    params = seen[0].url.params
    assert seen[0].url.path == "/market-data/history"
    assert params["symbol"] == "AAPL"
    assert params["timeframe"] == "1hour"
    assert params["period"] == "1M"
    assert params["secType"] == "STK"
    assert params["exchange"] == "NASDAQ"
    assert params["currency"] == "USD"
    assert params["account_mode"] == "paper"
    assert "start_date" not in params


@pytest.mark.asyncio
async def test_unavailable_is_retried_with_exponential_backoff() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            return httpx.Response(503, text="down")
        return httpx.Response(200, json={"bars": [{"timestamp": 1}]})

    sleep = RecordingSleep()
    client = make_client(handler, sleep=sleep, max_retries=3, backoff_base=1.0, backoff_max=30.0)
    try:
        payload = await client.history("AAPL", "1day", period="1Y")
    finally:
        await client.close()

    assert attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert payload["bars"][0]["timestamp"] == 1


@pytest.mark.asyncio
async def test_retries_are_bounded() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("refused", request=request)

    sleep = RecordingSleep()
    client = make_client(handler, sleep=sleep, max_retries=2, backoff_base=1.0, backoff_max=1.5)
    with pytest.raises(UpstreamUnavailableError):
        await client.history("AAPL", "1day", period="1Y")
    await client.close()

    assert attempts == 3
    assert sleep.delays == [1.0, 1.5]


@pytest.mark.asyncio
async def test_timeout_maps_to_upstream_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = make_client(handler, max_retries=0)
    with pytest.raises(UpstreamTimeoutError):
        await client.history("AAPL", "1day", period="1Y")
    await client.close()


@pytest.mark.asyncio
async def test_bad_response_is_not_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(422, json={"detail": "bad symbol"})

    sleep = RecordingSleep()
    client = make_client(handler, sleep=sleep)
    with pytest.raises(UpstreamBadResponseError):
        await client.history("???", "1day", period="1Y")
    await client.close()

    assert attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_json_body_is_bad_response() -> None:
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(UpstreamBadResponseError):
        await client.realtime("AAPL")
    await client.close()


@pytest.mark.asyncio
async def test_search_posts_body_and_returns_results() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"results": [{"symbol": "AAPL", "contractId": 265598}, "junk"]})

    client = make_client(handler)
    results = await client.search("AAPL", by_name=True)
    await client.close()

    assert results == [{"symbol": "AAPL", "contractId": 265598}]
    assert bodies[0]["symbol"] == "AAPL"
    assert bodies[0]["secType"] == "STK"
    assert bodies[0]["name"] is True


@pytest.mark.asyncio
async def test_health_never_raises_and_records_metrics() -> None:
    metrics = MetricsCollector()
    client = make_client(lambda request: httpx.Response(503), metrics=metrics)

    assert await client.health() is False
    await client.close()

    failures = metrics.registry.get_sample_value(
        "barsync_upstream_failures_total", {"operation": "health", "kind": "unavailable"}
    )
    assert failures == 1.0
