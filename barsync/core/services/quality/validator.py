"""Structural quality checks over persisted bar series."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from barsync.core.data.storage.repository import BarStore
from barsync.core.models.bars import Bar
from barsync.core.models.instrument import Instrument
from barsync.core.models.market import TimeFrame
from barsync.core.models.results import ValidationVerdict

NO_DATA_ISSUE = "no data"


@dataclass(frozen=True)
class QualityThresholds:
    """``zero_volume_ratio`` is a share of bars; ``gap_tolerance`` a multiple of the bar interval."""

    zero_volume_ratio: float = 0.1
    gap_tolerance: float = 1.5


def is_invalid_ohlc(bar: Bar) -> bool:
    return bar.high < max(bar.open, bar.close) or bar.low > min(bar.open, bar.close) or bar.high < bar.low


def has_non_positive_price(bar: Bar) -> bool:
    return min(bar.open, bar.high, bar.low, bar.close) <= 0


def count_gaps(bars: Sequence[Bar], timeframe: TimeFrame, tolerance: float) -> int:
    """Consecutive pairs spaced wider than ``tolerance`` bar intervals."""

    limit = tolerance * timeframe.interval_seconds
    ordered = sorted(bar.timestamp for bar in bars)
    return sum(1 for prev, curr in zip(ordered, ordered[1:]) if curr - prev > limit)


class DataQualityValidator:
    """Produces a :class:`ValidationVerdict` for one series window."""

    def __init__(
        self,
        store: BarStore | None = None,
        *,
        thresholds: QualityThresholds | None = None,
        default_lookback_days: int = 30,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.thresholds = thresholds or QualityThresholds()
        self.default_lookback_days = default_lookback_days
        self._clock = clock or (lambda: datetime.now(UTC))

    def default_range(self) -> tuple[datetime, datetime]:
        end = self._clock()
        return end - timedelta(days=self.default_lookback_days), end

    def evaluate(self, symbol: str, timeframe: TimeFrame | str, bars: Sequence[Bar]) -> ValidationVerdict:
        """Check ``bars`` without touching the store; same input, same verdict."""

        tf = TimeFrame(timeframe)
        verdict = ValidationVerdict(symbol=symbol, timeframe=tf.value, record_count=len(bars))
        if not bars:
            verdict.issues.append(NO_DATA_ISSUE)
            return verdict

        verdict.invalid_ohlc_count = sum(1 for bar in bars if is_invalid_ohlc(bar))
        verdict.non_positive_price_count = sum(1 for bar in bars if has_non_positive_price(bar))
        verdict.zero_volume_count = sum(1 for bar in bars if bar.volume == 0)
        verdict.gap_count = count_gaps(bars, tf, self.thresholds.gap_tolerance)

        verdict.invalid_ohlc = verdict.invalid_ohlc_count > 0
        verdict.non_positive_price = verdict.non_positive_price_count > 0
        verdict.excess_zero_volume = verdict.zero_volume_count > len(bars) * self.thresholds.zero_volume_ratio
        verdict.has_gaps = verdict.gap_count > 0

        if verdict.invalid_ohlc:
            verdict.issues.append(f"{verdict.invalid_ohlc_count} invalid OHLC bars")
        if verdict.non_positive_price:
            verdict.issues.append(f"{verdict.non_positive_price_count} bars with invalid prices")
        if verdict.excess_zero_volume:
            verdict.issues.append(f"High zero volume count: {verdict.zero_volume_count}")
        if verdict.has_gaps:
            verdict.issues.append("Time gaps detected in data")

        verdict.valid = not verdict.issues
        return verdict

    async def validate(
        self,
        instrument: Instrument,
        timeframe: TimeFrame | str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ValidationVerdict:
        """Load the stored window (default: the last 30 days) and evaluate it."""

        if self._store is None:
            raise RuntimeError("DataQualityValidator.validate needs a store")
        if start is None or end is None:
            default_start, default_end = self.default_range()
            start = start or default_start
            end = end or default_end
        bars = await self._store.get_bars(instrument.id, timeframe, start, end)
        return self.evaluate(instrument.symbol, timeframe, bars)


__all__ = [
    "DataQualityValidator",
    "NO_DATA_ISSUE",
    "QualityThresholds",
    "count_gaps",
    "has_non_positive_price",
    "is_invalid_ohlc",
]
