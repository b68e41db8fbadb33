"""Tests for the core data models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from barsync.core.models import (
    Bar,
    BulkOperationResult,
    BulkReport,
    BulkSummary,
    CollectionContext,
    DataSource,
    InstrumentDescriptor,
    Outcome,
    OutcomeKind,
    Period,
    RequestWindow,
    ResolveResult,
    TimeFrame,
    merge_bars,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def test_timeframe_intervals() -> None:
    assert TimeFrame("1min").interval_seconds == 60
    assert TimeFrame.HOUR_4.interval_seconds == 14_400
    assert TimeFrame("1day").interval_seconds == 86_400
    with pytest.raises(ValueError):
        TimeFrame("2day")


def test_period_days() -> None:
    assert Period("1M").days == 30
    assert Period.YEAR_2.days == 730


def test_window_for_period_resolves_against_now() -> None:
    window = RequestWindow.for_period("1W")

    start, end = window.resolve(NOW)

    assert end == NOW
    assert start == NOW - timedelta(days=7)
    assert window.token() == "period:1W"


def test_window_between_normalizes_to_utc() -> None:
    eastern = timezone(timedelta(hours=-5))
    window = RequestWindow.between(datetime(2024, 1, 1), datetime(2024, 1, 2, 7, tzinfo=eastern))

    assert window.start == datetime(2024, 1, 1, tzinfo=UTC)
    assert window.end == datetime(2024, 1, 2, 12, tzinfo=UTC)
    assert window.token() == "range:2024-01-01T00:00:00+00:00/2024-01-02T12:00:00+00:00"
    assert RequestWindow.between(datetime(2024, 1, 1)).token().endswith("/now")


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"start": datetime(2024, 2, 1), "end": datetime(2024, 1, 1)},
    ],
)
def test_window_rejects_invalid_bounds(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        RequestWindow(**kwargs)


def test_instrument_descriptor_normalizes_identity() -> None:
    descriptor = InstrumentDescriptor(symbol=" aapl ", exchange="nasdaq")

    assert descriptor.identity == ("AAPL", "STK", "NASDAQ", "USD")
    with pytest.raises(ValidationError):
        InstrumentDescriptor(symbol="   ")


def test_bar_serialization() -> None:
    bar = Bar(1_704_067_200, 10.0, 11.0, 9.5, 10.5, 200.0)

    assert bar.as_datetime == datetime(2024, 1, 1, tzinfo=UTC)
    assert bar.to_json()["time"] == "2024-01-01T00:00:00+00:00"
    assert bar.to_dict()["volume"] == 200.0


def test_merge_bars_prefers_incoming_and_sorts() -> None:
    persisted = [Bar(300, 3, 3, 3, 3), Bar(100, 1, 1, 1, 1)]
    incoming = [Bar(300, 30, 30, 30, 30), Bar(200, 2, 2, 2, 2)]

    merged = merge_bars(persisted, incoming)

    assert [bar.timestamp for bar in merged] == [100, 200, 300]
    assert merged[-1].close == 30


def test_resolve_result_payload() -> None:
    result = ResolveResult(
        bars=[Bar(100, 1, 1, 1, 1)],
        source=DataSource.STORE_DEGRADED,
        store_bars=1,
        refill_period=Period.MONTH_3,
        degraded_reason="gateway down",
    )

    payload = result.to_payload()

    assert result.degraded is True
    assert payload["source"] == "store (upstream-gap-failed)"
    assert payload["refill_period"] == "3M"
    assert payload["count"] == 1


def test_outcome_helpers() -> None:
    success = Outcome.success({"count": 1}, "done", symbol="AAPL")
    failure = Outcome.failure(OutcomeKind.NO_DATA, "nothing stored")

    assert success.ok and success.context == {"symbol": "AAPL"}
    assert failure.ok is False
    assert failure.to_payload()["kind"] == "no_data"


def test_bulk_report_payload_hides_data_by_default() -> None:
    report = BulkReport(
        period="1Y",
        context=CollectionContext(),
        summary=BulkSummary(total_operations=1, successful_operations=1, total_records_collected=1),
        results=[BulkOperationResult(symbol="AAPL", timeframe="1day", success=True, records_fetched=1, data=[{"close": 1}])],
    )

    assert "data" not in report.to_payload()["results"][0]
    assert report.to_payload(include_data=True)["results"][0]["data"] == [{"close": 1}]
    assert report.cell("AAPL", "1day") is report.results[0]
    assert report.cell("AAPL", "1hour") is None
