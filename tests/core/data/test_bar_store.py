"""Tests for the DuckDB bar store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions import PersistenceError
from barsync.core.models.bars import Bar
from barsync.core.models.instrument import InstrumentDescriptor
from barsync.core.models.market import TimeFrame

START = 1_704_067_200  # 2024-01-01T00:00:00Z


@pytest.mark.asyncio
async def test_get_or_create_instrument_is_idempotent(store: BarStore) -> None:
    first = await store.get_or_create_instrument(InstrumentDescriptor(symbol="aapl"))
    second = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL "))
    other = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL", exchange="NASDAQ"))

    assert first.id == second.id
    assert first.symbol == "AAPL"
    assert other.id != first.id
    assert len(await store.list_instruments()) == 2


@pytest.mark.asyncio
async def test_find_instrument_returns_none_when_unknown(store: BarStore) -> None:
    assert await store.find_instrument(InstrumentDescriptor(symbol="MSFT")) is None


@pytest.mark.asyncio
async def test_attach_contract_never_clears_existing_values(store: BarStore) -> None:
    instrument = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))

    enriched = await store.attach_contract(instrument.id, 265598, "AAPL")
    unchanged = await store.attach_contract(instrument.id, None, None)

    assert enriched is not None and enriched.contract_id == 265598
    assert unchanged is not None
    assert unchanged.contract_id == 265598
    assert unchanged.local_symbol == "AAPL"


@pytest.mark.asyncio
async def test_upsert_is_idempotent_and_reports_counts(store: BarStore, make_bars) -> None:
    instrument = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))
    bars = make_bars(START, 3)

    first = await store.upsert_bars(instrument.id, TimeFrame.HOUR_1, bars)
    second = await store.upsert_bars(instrument.id, TimeFrame.HOUR_1, bars)

    assert (first.inserted, first.updated) == (3, 0)
    assert (second.inserted, second.updated) == (0, 3)
    assert await store.get_bars(instrument.id, TimeFrame.HOUR_1) == bars


@pytest.mark.asyncio
async def test_upsert_overwrites_values_for_existing_timestamp(store: BarStore, make_bars) -> None:
    instrument = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))
    original = make_bars(START, 2)
    await store.upsert_bars(instrument.id, "1hour", original)

    revised = Bar(timestamp=START + 3600, open=1.0, high=5.0, low=0.5, close=4.0, volume=42.0)
    result = await store.upsert_bars(instrument.id, "1hour", [revised, make_bars(START + 7200, 1)[0]])

    assert (result.inserted, result.updated) == (1, 1)
    stored = await store.get_bars(instrument.id, "1hour")
    assert [bar.timestamp for bar in stored] == [START, START + 3600, START + 7200]
    assert stored[1] == revised


@pytest.mark.asyncio
async def test_get_bars_filters_window_and_timeframe(store: BarStore, make_bars) -> None:
    instrument = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))
    await store.upsert_bars(instrument.id, "1hour", make_bars(START, 5))
    await store.upsert_bars(instrument.id, "1day", make_bars(START, 2, step=86400))

    window = await store.get_bars(
        instrument.id,
        "1hour",
        datetime(2024, 1, 1, 1, tzinfo=UTC),
        datetime(2024, 1, 1, 3, tzinfo=UTC),
    )

    assert [bar.timestamp for bar in window] == [START + 3600, START + 7200, START + 10800]


@pytest.mark.asyncio
async def test_get_latest_bars_newest_first(store: BarStore, make_bars) -> None:
    instrument = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))
    await store.upsert_bars(instrument.id, "1hour", make_bars(START, 4))

    latest = await store.get_latest_bars(instrument.id, "1hour", 2)

    assert [bar.timestamp for bar in latest] == [START + 3 * 3600, START + 2 * 3600]


@pytest.mark.asyncio
async def test_series_and_stats(store: BarStore, make_bars) -> None:
    aapl = await store.get_or_create_instrument(InstrumentDescriptor(symbol="AAPL"))
    msft = await store.get_or_create_instrument(InstrumentDescriptor(symbol="MSFT"))
    await store.upsert_bars(aapl.id, "1hour", make_bars(START, 3))
    await store.upsert_bars(aapl.id, "1day", make_bars(START, 1, step=86400))
    await store.upsert_bars(msft.id, "1hour", make_bars(START, 2))

    series = await store.list_series()
    stats = await store.stats()
    aapl_stats = await store.stats("aapl")

    assert [(row["symbol"], row["timeframe"], row["bar_count"]) for row in series] == [
        ("AAPL", "1day", 1),
        ("AAPL", "1hour", 3),
        ("MSFT", "1hour", 2),
    ]
    assert stats == {"symbol": None, "instruments": 2, "bars": 6, "series": 3}
    assert aapl_stats == {"symbol": "AAPL", "instruments": 1, "bars": 4, "series": 2}


@pytest.mark.asyncio
async def test_closed_connection_raises_persistence_error(make_bars) -> None:
    bar_store = BarStore()
    bar_store.close()

    with pytest.raises(PersistenceError):
        await bar_store.get_bars(1, "1hour")
    assert await bar_store.health_check() is False
