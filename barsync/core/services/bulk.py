"""Throttled bulk collection across a symbol x timeframe matrix.

``collect`` only fetches: every cell keeps its raw rows in the report and
nothing touches the store. ``commit`` persists the successful cells of a
report afterwards.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from loguru import logger

from barsync.core.data.normalizer import PAYLOAD_KEYS, extract_rows, normalize_rows
from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions.base import BarSyncError, UpstreamBadResponseError
from barsync.core.logging import log_context
from barsync.core.models.instrument import InstrumentDescriptor
from barsync.core.models.market import Period, TimeFrame
from barsync.core.models.results import (
    BulkOperationResult,
    BulkReport,
    BulkSummary,
    CollectionContext,
    CommitReport,
    CommitResult,
)
from barsync.core.monitoring.metrics import MetricsCollector, get_metrics_collector
from barsync.core.patterns.retry import SleepFunc
from barsync.core.upstream.base import MarketDataUpstream

DEADLINE_MESSAGE = "Run deadline exceeded before this cell completed"


def _response_debug(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {"response_type": type(payload).__name__, "response_keys": []}
    debug: dict[str, Any] = {"response_keys": sorted(str(k) for k in payload)}
    for key in PAYLOAD_KEYS:
        value = payload.get(key)
        debug[f"has_{key}"] = bool(value)
        debug[f"{key}_length"] = len(value) if isinstance(value, list) else 0
    return debug


class BulkCollector:
    """Fetch-only bulk collection with per-cell failure isolation."""

    def __init__(
        self,
        upstream: MarketDataUpstream,
        store: BarStore | None = None,
        *,
        timeframe_delay: float = 1.0,
        symbol_delay: float = 2.0,
        run_timeout: float = 20 * 60,
        sleep: SleepFunc | None = None,
        clock: Callable[[], float] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._upstream = upstream
        self._store = store
        self.timeframe_delay = timeframe_delay
        self.symbol_delay = symbol_delay
        self.run_timeout = run_timeout
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._metrics = metrics

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics_collector()

    async def collect(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[TimeFrame | str],
        period: Period | str = Period.YEAR_1,
        context: CollectionContext | None = None,
    ) -> BulkReport:
        """Fetch every (symbol, timeframe) cell in order, symbol-major."""

        context = context or CollectionContext()
        period = Period(period)
        frames = [TimeFrame(tf) for tf in timeframes]
        symbols = [symbol.strip().upper() for symbol in symbols]
        summary = BulkSummary(total_operations=len(symbols) * len(frames))
        results: list[BulkOperationResult] = []
        deadline = self._clock() + self.run_timeout

        logger.info(
            "Starting bulk collection for {symbols} symbols across {timeframes} timeframes",
            symbols=len(symbols),
            timeframes=len(frames),
        )
        for symbol in symbols:
            for timeframe in frames:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    result = BulkOperationResult(
                        symbol=symbol, timeframe=timeframe.value, success=False, error=DEADLINE_MESSAGE
                    )
                else:
                    result = await self._collect_cell(symbol, timeframe, period, context, remaining)
                self._tally(summary, result)
                results.append(result)
                if remaining > 0:
                    await self._sleep(self.timeframe_delay)
            if deadline - self._clock() > 0:
                await self._sleep(self.symbol_delay)

        logger.info(
            "Bulk collection completed: {ok}/{total} successful",
            ok=summary.successful_operations,
            total=summary.total_operations,
        )
        return BulkReport(period=period.value, context=context, summary=summary, results=results)

    def _tally(self, summary: BulkSummary, result: BulkOperationResult) -> None:
        self.metrics.record_bulk_cell(result.success)
        if result.success:
            summary.successful_operations += 1
            summary.total_records_collected += result.records_fetched
        else:
            summary.failed_operations += 1
            summary.errors.append(f"{result.symbol} {result.timeframe}: {result.error}")

    async def _collect_cell(
        self,
        symbol: str,
        timeframe: TimeFrame,
        period: Period,
        context: CollectionContext,
        remaining: float,
    ) -> BulkOperationResult:
        with log_context(symbol=symbol, timeframe=timeframe.value):
            try:
                async with asyncio.timeout(remaining):
                    payload = await self._upstream.history(
                        symbol,
                        timeframe,
                        period=period,
                        sec_type=context.sec_type,
                        exchange=context.exchange,
                        currency=context.currency,
                    )
            except TimeoutError:
                logger.warning("Bulk cell cut off by the run deadline")
                return BulkOperationResult(symbol=symbol, timeframe=timeframe.value, success=False, error=DEADLINE_MESSAGE)
            except BarSyncError as exc:
                logger.warning("Bulk cell failed: {error}", error=exc.message)
                return BulkOperationResult(
                    symbol=symbol,
                    timeframe=timeframe.value,
                    success=False,
                    error=exc.message,
                    response_debug=exc.to_payload(),
                )
            except Exception as exc:
                logger.opt(exception=exc).error("Unexpected error collecting bulk cell")
                return BulkOperationResult(symbol=symbol, timeframe=timeframe.value, success=False, error=str(exc))

            try:
                rows = extract_rows(payload)
            except UpstreamBadResponseError:
                rows = []
            if not rows:
                debug = _response_debug(payload)
                message = (
                    f"No data received from upstream - bars: 0, "
                    f"response keys: {', '.join(debug['response_keys']) or '(none)'}"
                )
                logger.warning(message)
                return BulkOperationResult(
                    symbol=symbol,
                    timeframe=timeframe.value,
                    success=False,
                    error=message,
                    response_debug=debug,
                )

            source = payload.get("source") if isinstance(payload, dict) else None
            logger.info("Fetched {count} records", count=len(rows))
            return BulkOperationResult(
                symbol=symbol,
                timeframe=timeframe.value,
                success=True,
                records_fetched=len(rows),
                source=str(source) if source else "upstream",
                data=list(rows),
            )

    async def commit(
        self,
        report: BulkReport | Iterable[BulkOperationResult],
        context: CollectionContext | None = None,
    ) -> CommitReport:
        """Persist the successful cells of a bulk report, one cell at a time."""

        if self._store is None:
            raise BarSyncError("Bulk commit needs a store")
        if isinstance(report, BulkReport):
            results = report.results
            context = context or report.context
        else:
            results = list(report)
        context = context or CollectionContext()

        commit = CommitReport()
        for cell in results:
            if not cell.success or not cell.data:
                continue
            outcome = await self._commit_cell(cell, context)
            commit.results.append(outcome)
            if outcome.success:
                commit.committed_cells += 1
                commit.total_uploaded += outcome.records_uploaded
            else:
                commit.failed_cells += 1
            commit.total_skipped += outcome.records_skipped
        logger.info(
            "Committed {cells} cells, {uploaded} bars written",
            cells=commit.committed_cells,
            uploaded=commit.total_uploaded,
        )
        return commit

    async def _commit_cell(self, cell: BulkOperationResult, context: CollectionContext) -> CommitResult:
        assert self._store is not None
        with log_context(symbol=cell.symbol, timeframe=cell.timeframe):
            normalized = normalize_rows(cell.data)
            try:
                instrument = await self._store.get_or_create_instrument(
                    InstrumentDescriptor(
                        symbol=cell.symbol,
                        sec_type=context.sec_type,
                        exchange=context.exchange,
                        currency=context.currency,
                    )
                )
                written = await self._store.upsert_bars(instrument.id, cell.timeframe, normalized.bars)
            except BarSyncError as exc:
                logger.error("Commit failed: {error}", error=exc.message)
                return CommitResult(
                    symbol=cell.symbol,
                    timeframe=cell.timeframe,
                    success=False,
                    records_skipped=normalized.skipped,
                    error=exc.message,
                )
            cell.records_uploaded = written.written
            cell.records_skipped = normalized.skipped
            return CommitResult(
                symbol=cell.symbol,
                timeframe=cell.timeframe,
                success=True,
                records_uploaded=written.written,
                inserted=written.inserted,
                updated=written.updated,
                records_skipped=normalized.skipped,
            )


__all__ = ["BulkCollector", "DEADLINE_MESSAGE"]
