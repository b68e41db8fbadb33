"""Tests for the HTTP API."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from barsync import __version__
from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions import UpstreamTimeoutError, UpstreamUnavailableError
from barsync.core.services.bulk import BulkCollector
from barsync.core.services.market_data import MarketDataService
from barsync.web.app import create_app

START = 1_704_067_200
NOW = datetime(2024, 1, 1, 5, 0, tzinfo=UTC)
BASE = "/api/v1/market-data"


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def rows(make_bars, bars_to_rows) -> list[dict[str, Any]]:
    return bars_to_rows(make_bars(START, 5))


@pytest.fixture
def build_client(store: BarStore, make_upstream) -> Iterator[Any]:
    clients: list[TestClient] = []

    def factory(upstream: Any = None, **client_kwargs: Any) -> TestClient:
        upstream = upstream or make_upstream()
        service = MarketDataService(
            store,
            upstream,
            bulk=BulkCollector(upstream, store, timeframe_delay=0, symbol_delay=0, sleep=no_sleep),
            clock=lambda: NOW,
        )
        client = TestClient(create_app(service=service), **client_kwargs)
        client.__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


def test_history_fetches_and_echoes_request_id(build_client, make_upstream, rows) -> None:
    client = build_client(make_upstream({"bars": rows}))

    response = client.get(f"{BASE}/history/aapl", params={"timeframe": "1hour"}, headers={"X-Request-ID": "req-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["kind"] == "ok"
    assert body["request_id"] == "req-1"
    assert body["data"]["source"] == "upstream"
    assert body["data"]["count"] == 5
    assert response.headers["X-Request-ID"] == "req-1"


def test_history_generates_request_id(build_client, make_upstream, rows) -> None:
    client = build_client(make_upstream({"bars": rows}))

    response = client.get(f"{BASE}/history/AAPL", params={"timeframe": "1hour", "period": "1W"})

    assert response.status_code == 200
    assert len(response.headers["X-Request-ID"]) == 32


def test_history_without_data_is_404(build_client, make_upstream) -> None:
    client = build_client(make_upstream(UpstreamUnavailableError("gateway down", "history")))

    response = client.get(f"{BASE}/history/AAPL")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["kind"] == "no_data"
    assert body["details"]["cause_kind"] == "upstream_unavailable"


def test_history_rejects_unknown_timeframe(build_client) -> None:
    response = build_client().get(f"{BASE}/history/AAPL", params={"timeframe": "7min"})

    assert response.status_code == 422
    assert response.json()["kind"] == "invalid_request"


def test_history_rejects_inverted_range(build_client) -> None:
    response = build_client().get(
        f"{BASE}/history/AAPL", params={"start": "2024-02-01T00:00:00", "end": "2024-01-01T00:00:00"}
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_request"


def test_latest_serves_store_only(build_client, make_upstream, rows) -> None:
    upstream = make_upstream({"bars": rows})
    client = build_client(upstream)

    missing = client.get(f"{BASE}/latest/AAPL", params={"timeframe": "1hour"})
    client.get(f"{BASE}/history/AAPL", params={"timeframe": "1hour"})
    latest = client.get(f"{BASE}/latest/AAPL", params={"timeframe": "1hour", "limit": 2})

    assert missing.status_code == 404
    assert latest.status_code == 200
    assert [bar["timestamp"] for bar in latest.json()["data"]["bars"]] == [START + 4 * 3600, START + 3 * 3600]
    assert len(upstream.history_calls) == 1


def test_bulk_collect_with_commit(build_client, make_upstream, rows, store: BarStore) -> None:
    client = build_client(make_upstream({"bars": rows}))

    response = client.post(
        f"{BASE}/bulk-collect",
        json={"symbols": ["AAPL", "MSFT"], "timeframes": ["1hour"], "period": "1M", "commit": True},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["successful_operations"] == 2
    assert "data" not in data["results"][0]
    assert data["commit"]["committed_cells"] == 2
    assert data["commit"]["total_uploaded"] == 10


def test_bulk_collect_then_commit_endpoint(build_client, make_upstream, rows) -> None:
    client = build_client(make_upstream({"bars": rows}))

    collected = client.post(
        f"{BASE}/bulk-collect", json={"symbols": ["AAPL"], "timeframes": ["1hour"], "include_data": True}
    )
    results = collected.json()["data"]["results"]
    committed = client.post(f"{BASE}/commit", json={"results": results})
    stats = client.get(f"{BASE}/stats", params={"symbol": "AAPL"})

    assert len(results[0]["data"]) == 5
    assert committed.status_code == 200
    assert committed.json()["data"]["committed_cells"] == 1
    assert stats.json()["data"]["bars"] == 5


def test_bulk_collect_validates_body(build_client) -> None:
    response = build_client().post(f"{BASE}/bulk-collect", json={"symbols": [], "timeframes": ["1day"]})

    assert response.status_code == 422


def test_validate_missing_series(build_client) -> None:
    response = build_client().post(f"{BASE}/validate", json={"symbols": ["AAPL"]})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["invalid_count"] == 1
    assert data["results"]["AAPL"]["1day"]["record_count"] == 0


def test_search(build_client, make_upstream) -> None:
    upstream = make_upstream(search=[{"symbol": "AAPL", "secType": "STK", "contractId": 265598}])
    client = build_client(upstream)

    response = client.post(f"{BASE}/search", json={"pattern": "AAPL"})
    blank = client.post(f"{BASE}/search", json={"pattern": "   "})

    assert response.status_code == 200
    assert response.json()["data"]["persisted"] == 1
    assert blank.status_code == 400


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (UpstreamUnavailableError("down", "realtime"), 503),
        (UpstreamTimeoutError("slow", "realtime"), 504),
    ],
)
def test_realtime_upstream_failures(build_client, make_upstream, error: Exception, status: int) -> None:
    response = build_client(make_upstream(realtime=error)).get(f"{BASE}/realtime/AAPL")

    assert response.status_code == status
    assert response.json()["details"]["operation"] == "realtime"


def test_stream_snapshot(build_client, make_upstream) -> None:
    client = build_client(make_upstream(realtime={"last": 101.0, "volume": 10}))

    response = client.post(f"{BASE}/stream/AAPL", params={"timeframe": "1hour"})
    bad = build_client(make_upstream(realtime={"bid": 1.0})).post(f"{BASE}/stream/AAPL")

    assert response.status_code == 200
    assert response.json()["data"]["action"] == "new_bar"
    assert response.json()["data"]["bar"]["timestamp"] == START + 5 * 3600
    assert bad.status_code == 502


def test_series(build_client, make_upstream, rows) -> None:
    client = build_client(make_upstream({"bars": rows}))
    client.get(f"{BASE}/history/AAPL", params={"timeframe": "1hour"})

    response = client.get(f"{BASE}/series")

    assert response.status_code == 200
    assert response.json()["data"]["series"][0]["timeframe"] == "1hour"


def test_health_reports_degraded_with_200(build_client, make_upstream) -> None:
    response = build_client(make_upstream(healthy=False)).get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["healthy"] is False
    assert data["store"] is True
    assert data["version"] == __version__
    assert data["uptime_seconds"] >= 0


def test_liveness(build_client) -> None:
    response = build_client().get("/api/v1/health/live")

    assert response.status_code == 200
    assert response.json()["data"] == {"alive": True}


def test_unexpected_errors_become_internal_error(build_client) -> None:
    client = build_client(raise_server_exceptions=False)
    client.app.state.market_data = None

    response = client.get(f"{BASE}/series")

    assert response.status_code == 500
    assert response.json()["kind"] == "internal_error"
