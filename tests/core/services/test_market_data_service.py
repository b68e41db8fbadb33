"""Tests for the boundary facade: every operation answers with an Outcome."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions import UpstreamUnavailableError
from barsync.core.models.instrument import InstrumentDescriptor
from barsync.core.models.outcome import OutcomeKind
from barsync.core.services.bulk import BulkCollector
from barsync.core.services.market_data import MarketDataService

START = 1_704_067_200
HOUR = 3600
NOW = datetime(2024, 1, 1, 5, 0, tzinfo=UTC)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def build_service(store: BarStore, make_upstream):
    def factory(upstream: Any = None) -> MarketDataService:
        upstream = upstream or make_upstream()
        return MarketDataService(
            store,
            upstream,
            bulk=BulkCollector(upstream, store, timeframe_delay=0, symbol_delay=0, sleep=no_sleep),
            clock=lambda: NOW,
        )

    return factory


@pytest.fixture
def history_rows(make_bars, bars_to_rows) -> list[dict[str, Any]]:
    return bars_to_rows(make_bars(START, 5))


@pytest.mark.asyncio
async def test_fetch_history_serves_fresh_series_from_store(build_service, make_upstream, history_rows) -> None:
    upstream = make_upstream({"bars": history_rows})
    service = build_service(upstream)

    first = await service.fetch_history("aapl", "1hour")
    second = await service.fetch_history("AAPL", "1hour")

    assert first.ok and first.data["source"] == "upstream"
    assert first.data["count"] == 5
    assert first.context["symbol"] == "AAPL"
    assert second.ok and second.data["source"] == "store"
    assert len(upstream.history_calls) == 1


@pytest.mark.asyncio
async def test_fetch_history_without_any_data_is_no_data(build_service, make_upstream) -> None:
    service = build_service(make_upstream(UpstreamUnavailableError("gateway down", "history")))

    outcome = await service.fetch_history("AAPL", "1day")

    assert outcome.kind is OutcomeKind.NO_DATA
    assert outcome.data is None
    assert outcome.context["cause_kind"] == "upstream_unavailable"


@pytest.mark.asyncio
async def test_fetch_history_rejects_unknown_timeframe(build_service) -> None:
    outcome = await build_service().fetch_history("AAPL", "7min")

    assert outcome.kind is OutcomeKind.INVALID_REQUEST
    assert outcome.context["operation"] == "fetch_history"


@pytest.mark.asyncio
async def test_latest_never_calls_upstream(build_service, make_upstream, history_rows) -> None:
    upstream = make_upstream({"bars": history_rows})
    service = build_service(upstream)

    missing = await service.latest("AAPL", "1hour")
    await service.fetch_history("AAPL", "1hour")
    newest = await service.latest("AAPL", "1hour", limit=2)
    invalid = await service.latest("AAPL", "1hour", limit=0)

    assert missing.kind is OutcomeKind.NO_DATA
    assert [bar["timestamp"] for bar in newest.data["bars"]] == [START + 4 * HOUR, START + 3 * HOUR]
    assert invalid.kind is OutcomeKind.INVALID_REQUEST
    assert len(upstream.history_calls) == 1


@pytest.mark.asyncio
async def test_validate_reports_missing_instrument_as_no_data_verdict(build_service) -> None:
    outcome = await build_service().validate(["msft"], ["1day"])

    assert outcome.ok
    verdict = outcome.data.results["MSFT"]["1day"]
    assert verdict.valid is False
    assert verdict.record_count == 0
    assert outcome.data.summary.invalid_count == 1
    assert outcome.data.summary.error_count == 0


@pytest.mark.asyncio
async def test_validate_stored_series(build_service, make_upstream, history_rows) -> None:
    service = build_service(make_upstream({"bars": history_rows}))
    await service.fetch_history("AAPL", "1hour")

    outcome = await service.validate(["AAPL"], ["1hour"], start=datetime(2024, 1, 1, tzinfo=UTC), end=NOW)

    verdict = outcome.data.results["AAPL"]["1hour"]
    assert verdict.record_count == 5
    assert verdict.valid is True
    assert outcome.data.summary.valid_count == 1


@pytest.mark.asyncio
async def test_validate_requires_symbols(build_service) -> None:
    outcome = await build_service().validate([], ["1day"])

    assert outcome.kind is OutcomeKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_search_remembers_contracts(build_service, make_upstream, store: BarStore) -> None:
    candidates = [
        {
            "symbol": "aapl",
            "secType": "STK",
            "exchange": "SMART",
            "currency": "USD",
            "contractId": 265598,
            "localSymbol": "AAPL",
        },
        {"symbol": ""},
    ]
    upstream = make_upstream(search=candidates)
    service = build_service(upstream)

    outcome = await service.search("  apple ", by_name=True)

    assert outcome.ok
    assert outcome.data["count"] == 2
    assert outcome.data["persisted"] == 1
    assert upstream.search_calls[0]["pattern"] == "apple"
    assert upstream.search_calls[0]["by_name"] is True
    instrument = await store.find_instrument(InstrumentDescriptor(symbol="AAPL"))
    assert instrument is not None
    assert instrument.contract_id == 265598


@pytest.mark.asyncio
async def test_search_rejects_blank_pattern(build_service) -> None:
    outcome = await build_service().search("   ")

    assert outcome.kind is OutcomeKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_stream_snapshot_opens_new_bar_after_interval(build_service, make_upstream, history_rows) -> None:
    service = build_service(make_upstream({"bars": history_rows}, realtime={"last": 110.0, "volume": 5}))
    await service.fetch_history("AAPL", "1hour")

    outcome = await service.stream_snapshot("AAPL", "1hour")

    assert outcome.ok
    assert outcome.data["action"] == "new_bar"
    assert outcome.data["bar"]["timestamp"] == START + 5 * HOUR
    assert outcome.data["store_result"] == {"inserted": 1, "updated": 0}


@pytest.mark.asyncio
async def test_stream_snapshot_with_bad_quote(build_service, make_upstream) -> None:
    outcome = await build_service(make_upstream(realtime={"bid": 1.0})).stream_snapshot("AAPL", "1min")

    assert outcome.kind is OutcomeKind.UPSTREAM_BAD_RESPONSE


@pytest.mark.asyncio
async def test_bulk_collect_then_commit(build_service, make_upstream, history_rows, store: BarStore) -> None:
    service = build_service(make_upstream({"bars": history_rows}))

    collected = await service.bulk_collect(["AAPL", "MSFT"], ["1hour"], period="1M")
    assert collected.ok
    assert collected.data.summary.successful_operations == 2
    assert (await store.stats())["bars"] == 0

    committed = await service.commit(collected.data)

    assert committed.ok
    assert committed.data.committed_cells == 2
    assert committed.data.total_uploaded == 10
    assert (await store.stats())["bars"] == 10


@pytest.mark.asyncio
async def test_bulk_collect_requires_symbols_and_timeframes(build_service) -> None:
    service = build_service()

    assert (await service.bulk_collect([], ["1day"])).kind is OutcomeKind.INVALID_REQUEST
    assert (await service.bulk_collect(["AAPL"], [])).kind is OutcomeKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_series_and_stats(build_service, make_upstream, history_rows) -> None:
    service = build_service(make_upstream({"bars": history_rows}))
    await service.fetch_history("AAPL", "1hour")

    series = await service.series()
    stats = await service.stats("aapl")

    assert series.data["count"] == 1
    assert series.data["series"][0]["bar_count"] == 5
    assert stats.data == {"symbol": "AAPL", "instruments": 1, "bars": 5, "series": 1}


@pytest.mark.asyncio
async def test_health_reports_degraded_upstream(build_service, make_upstream) -> None:
    healthy = await build_service().health()
    degraded = await build_service(make_upstream(healthy=False)).health()

    assert healthy.data == {"healthy": True, "store": True, "upstream": True}
    assert degraded.ok
    assert degraded.data["healthy"] is False
    assert degraded.message == "degraded"


@pytest.mark.asyncio
async def test_close_releases_upstream(build_service, make_upstream) -> None:
    upstream = make_upstream()
    service = build_service(upstream)

    await service.close()

    assert upstream.closed is True
