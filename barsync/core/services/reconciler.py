"""Answer bar requests from the store, topping it up from upstream when stale."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from loguru import logger

from barsync.core.data.normalizer import normalize_payload
from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions.base import PersistenceError, UpstreamError
from barsync.core.logging import log_context
from barsync.core.models.bars import Bar, merge_bars
from barsync.core.models.instrument import Instrument
from barsync.core.models.market import Period, TimeFrame
from barsync.core.models.results import DataSource, ResolveResult
from barsync.core.models.window import RequestWindow
from barsync.core.monitoring.metrics import MetricsCollector, get_metrics_collector
from barsync.core.services.dedup import CollectionRequestKey, RequestDeduplicator
from barsync.core.upstream.base import MarketDataUpstream

DEFAULT_FRESHNESS_THRESHOLD = 2 * 60 * 60
_DAY = 24 * 60 * 60

# (max staleness in days, refill period), checked in order.
REFILL_TIERS: tuple[tuple[int, Period], ...] = (
    (30, Period.MONTH_1),
    (90, Period.MONTH_3),
    (180, Period.MONTH_6),
)


def refill_period_for(staleness_seconds: float) -> Period:
    """Smallest lookback period covering a gap of ``staleness_seconds``."""

    gap_days = staleness_seconds / _DAY
    for max_days, period in REFILL_TIERS:
        if gap_days <= max_days:
            return period
    return Period.YEAR_1


class GapFillReconciler:
    """Gap-fill reconciler.

    A series whose newest stored bar is younger than the freshness threshold
    is served from the store alone. Older series get one upstream call sized
    by how stale they are; only bars newer than the stored tail are merged and
    persisted. Upstream failures degrade to the stored bars.
    """

    def __init__(
        self,
        store: BarStore,
        upstream: MarketDataUpstream,
        *,
        freshness_threshold_seconds: int = DEFAULT_FRESHNESS_THRESHOLD,
        deduplicator: RequestDeduplicator | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._upstream = upstream
        self._threshold = freshness_threshold_seconds
        self._dedup = deduplicator or RequestDeduplicator()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = metrics

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._dedup

    async def resolve(self, instrument: Instrument, timeframe: TimeFrame | str, window: RequestWindow) -> ResolveResult:
        tf = TimeFrame(timeframe)
        key = CollectionRequestKey(instrument.symbol, tf.value, window.token(), instrument.id)
        result = await self._dedup.run(key, lambda: self._resolve(instrument, tf, window))
        return result

    async def _resolve(self, instrument: Instrument, timeframe: TimeFrame, window: RequestWindow) -> ResolveResult:
        with log_context(symbol=instrument.symbol, timeframe=timeframe.value):
            now = self._clock()
            start, end = window.resolve(now)
            persisted = await self._store.get_bars(instrument.id, timeframe, start, end)
            if not persisted:
                result = await self._fill_empty(instrument, timeframe, window, start, end)
            else:
                result = await self._top_up(instrument, timeframe, window, persisted, now)
            (self._metrics or get_metrics_collector()).record_resolution(result.source.value)
            logger.info(
                "Resolved {count} bars from {source}",
                count=result.count,
                source=result.source.value,
            )
            return result

    async def _fill_empty(
        self,
        instrument: Instrument,
        timeframe: TimeFrame,
        window: RequestWindow,
        start: datetime,
        end: datetime,
    ) -> ResolveResult:
        logger.info("No stored bars in window, fetching full window from upstream")
        if window.period is not None:
            payload = await self._fetch(instrument, timeframe, period=window.period, end=window.end)
        else:
            payload = await self._fetch(instrument, timeframe, start=start, end=window.end)
        fetched = normalize_payload(payload).bars
        persisted = await self._persist(instrument, timeframe, fetched)
        start_ts, end_ts = int(start.timestamp()), int(end.timestamp())
        bars = [bar for bar in fetched if start_ts <= bar.timestamp <= end_ts]
        return ResolveResult(
            bars=bars,
            source=DataSource.UPSTREAM,
            upstream_bars=len(bars),
            upstream_calls=1,
            persisted=persisted,
        )

    async def _top_up(
        self,
        instrument: Instrument,
        timeframe: TimeFrame,
        window: RequestWindow,
        persisted: list[Bar],
        now: datetime,
    ) -> ResolveResult:
        last_ts = persisted[-1].timestamp
        staleness = now.timestamp() - last_ts
        if staleness <= self._threshold:
            return ResolveResult(bars=persisted, source=DataSource.STORE, store_bars=len(persisted))

        period = refill_period_for(staleness)
        logger.info(
            "Stored series is {hours:.1f}h stale, refilling with {period}",
            hours=staleness / 3600,
            period=period.value,
        )
        try:
            payload = await self._fetch(instrument, timeframe, period=period)
            fetched = normalize_payload(payload).bars
        except UpstreamError as exc:
            logger.warning("Gap-fill failed, serving stored bars: {error}", error=exc.message)
            return ResolveResult(
                bars=persisted,
                source=DataSource.STORE_DEGRADED,
                store_bars=len(persisted),
                upstream_calls=1,
                refill_period=period,
                degraded_reason=exc.message,
            )

        tail = [bar for bar in fetched if bar.timestamp > last_ts]
        if not tail:
            return ResolveResult(
                bars=persisted,
                source=DataSource.STORE,
                store_bars=len(persisted),
                upstream_calls=1,
                refill_period=period,
            )

        stored = await self._persist(instrument, timeframe, tail)
        if window.end is not None:
            end_ts = int(window.end.timestamp())
            tail = [bar for bar in tail if bar.timestamp <= end_ts]
        return ResolveResult(
            bars=merge_bars(persisted, tail),
            source=DataSource.STORE_UPSTREAM if tail else DataSource.STORE,
            store_bars=len(persisted),
            upstream_bars=len(tail),
            upstream_calls=1,
            refill_period=period,
            persisted=stored,
        )

    async def _fetch(
        self,
        instrument: Instrument,
        timeframe: TimeFrame,
        *,
        period: Period | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> object:
        return await self._upstream.history(
            instrument.symbol,
            timeframe,
            period=period,
            start=start,
            end=end,
            sec_type=instrument.sec_type,
            exchange=instrument.exchange,
            currency=instrument.currency,
        )

    async def _persist(self, instrument: Instrument, timeframe: TimeFrame, bars: list[Bar]) -> bool:
        if not bars:
            return True
        try:
            await self._store.upsert_bars(instrument.id, timeframe, bars)
        except PersistenceError as exc:
            logger.error("Could not persist {count} fetched bars: {error}", count=len(bars), error=exc.message)
            return False
        return True


__all__ = ["GapFillReconciler", "REFILL_TIERS", "refill_period_for"]
