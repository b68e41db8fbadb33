"""Boundary facade used by the CLI and HTTP layers.

Every public coroutine returns an :class:`Outcome` instead of raising, so
presentation layers only map outcome kinds to exit codes or status codes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from barsync.core.config.settings import BarSyncConfig
from barsync.core.data.storage.duckdb_factory import DuckDBFactory, DuckDBFactoryConfig
from barsync.core.data.storage.repository import BarStore
from barsync.core.exceptions.base import BarSyncError, UpstreamError
from barsync.core.exceptions.handler import ErrorHandler, error_handler
from barsync.core.models.instrument import InstrumentDescriptor
from barsync.core.models.market import Period, TimeFrame
from barsync.core.models.outcome import Outcome
from barsync.core.models.results import (
    BulkOperationResult,
    BulkReport,
    CollectionContext,
    ValidationReport,
    ValidationSummary,
    ValidationVerdict,
)
from barsync.core.models.window import RequestWindow
from barsync.core.services.bulk import BulkCollector
from barsync.core.services.collaborators import (
    ActiveSetupSource,
    ConnectionHealthCollaborator,
    StrategySignalCollaborator,
    UpstreamHealthCheck,
)
from barsync.core.services.dedup import RequestDeduplicator
from barsync.core.services.quality import DataQualityValidator, QualityThresholds
from barsync.core.services.reconciler import GapFillReconciler
from barsync.core.services.scheduler import Scheduler
from barsync.core.services.snapshot import merge_snapshot
from barsync.core.upstream.base import MarketDataUpstream
from barsync.core.upstream.client import UpstreamClient

DEFAULT_FETCH_PERIOD = Period.MONTH_1


def _descriptor(symbol: str, options: CollectionContext | None) -> InstrumentDescriptor:
    options = options or CollectionContext()
    return InstrumentDescriptor(
        symbol=symbol, sec_type=options.sec_type, exchange=options.exchange, currency=options.currency
    )


def _candidate_descriptor(candidate: Mapping[str, Any], defaults: CollectionContext) -> InstrumentDescriptor:
    return InstrumentDescriptor(
        symbol=str(candidate.get("symbol") or ""),
        sec_type=str(candidate.get("secType") or candidate.get("sec_type") or defaults.sec_type),
        exchange=str(candidate.get("exchange") or defaults.exchange),
        currency=str(candidate.get("currency") or defaults.currency),
    )


def _contract_id(candidate: Mapping[str, Any]) -> int | None:
    raw = candidate.get("contractId", candidate.get("conid"))
    if raw is None or raw == "":
        return None
    return int(raw)


class MarketDataService:
    """Market data operations exposed to presentation layers."""

    def __init__(
        self,
        store: BarStore,
        upstream: MarketDataUpstream,
        *,
        config: BarSyncConfig | None = None,
        reconciler: GapFillReconciler | None = None,
        bulk: BulkCollector | None = None,
        validator: DataQualityValidator | None = None,
        clock: Callable[[], datetime] | None = None,
        errors: ErrorHandler | None = None,
    ) -> None:
        self.config = config or BarSyncConfig()
        self.store = store
        self.upstream = upstream
        self._clock = clock or (lambda: datetime.now(UTC))
        self._errors = errors or error_handler
        self.reconciler = reconciler or GapFillReconciler(
            store,
            upstream,
            freshness_threshold_seconds=self.config.reconciler.freshness_threshold_seconds,
            deduplicator=RequestDeduplicator(),
            clock=self._clock,
        )
        self.bulk = bulk or BulkCollector(
            upstream,
            store,
            timeframe_delay=self.config.bulk.timeframe_delay,
            symbol_delay=self.config.bulk.symbol_delay,
            run_timeout=self.config.bulk.run_timeout,
        )
        self.validator = validator or DataQualityValidator(
            store,
            thresholds=QualityThresholds(
                zero_volume_ratio=self.config.quality.zero_volume_ratio,
                gap_tolerance=self.config.quality.gap_tolerance,
            ),
            default_lookback_days=self.config.quality.default_lookback_days,
            clock=self._clock,
        )

    @classmethod
    def from_config(
        cls,
        config: BarSyncConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "MarketDataService":
        """Build the store, upstream client and services described by ``config``."""

        store = BarStore(DuckDBFactory(DuckDBFactoryConfig.from_storage(config.storage)))
        upstream = UpstreamClient(config.upstream, transport=transport)
        return cls(store, upstream, config=config)

    async def close(self) -> None:
        close = getattr(self.upstream, "close", None)
        if close is not None:
            await close()
        self.store.close()

    def build_scheduler(
        self,
        setups: ActiveSetupSource,
        *,
        strategies: StrategySignalCollaborator | None = None,
        health: ConnectionHealthCollaborator | None = None,
    ) -> Scheduler:
        """Scheduler sharing this service's reconciler and store."""

        return Scheduler(
            self.store,
            self.reconciler,
            setups,
            strategies=strategies,
            health=health or UpstreamHealthCheck(self.upstream),
            config=self.config.scheduler,
            timeframe_delay=self.config.bulk.timeframe_delay,
            setup_delay=self.config.bulk.symbol_delay,
        )

    async def _guard(self, operation: str, work: Callable[[], Awaitable[Outcome]], **context: Any) -> Outcome:
        try:
            return await work()
        except Exception as exc:
            return self._errors.to_outcome(exc, operation, **context)

    async def fetch_history(
        self,
        symbol: str,
        timeframe: TimeFrame | str,
        window: RequestWindow | None = None,
        options: CollectionContext | None = None,
    ) -> Outcome:
        """Bars for one series, reconciled between the store and upstream."""

        async def work() -> Outcome:
            tf = TimeFrame(timeframe)
            request_window = window or RequestWindow.for_period(DEFAULT_FETCH_PERIOD)
            instrument = await self.store.get_or_create_instrument(_descriptor(symbol, options))
            try:
                result = await self.reconciler.resolve(instrument, tf, request_window)
            except UpstreamError as exc:
                return self._errors.no_data(
                    f"No data available for {instrument.symbol} {tf.value}",
                    cause=exc,
                    symbol=instrument.symbol,
                    timeframe=tf.value,
                )
            if not result.bars:
                return self._errors.no_data(
                    f"No data available for {instrument.symbol} {tf.value}",
                    symbol=instrument.symbol,
                    timeframe=tf.value,
                    source=result.source.value,
                )
            return Outcome.success(
                result.to_payload(),
                f"{result.count} bars from {result.source.value}",
                symbol=instrument.symbol,
                timeframe=tf.value,
            )

        return await self._guard("fetch_history", work, symbol=symbol, timeframe=str(timeframe))

    async def bulk_collect(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[TimeFrame | str],
        period: Period | str | None = None,
        context: CollectionContext | None = None,
    ) -> Outcome:
        async def work() -> Outcome:
            if not symbols:
                raise ValueError("symbols must be a non-empty list")
            if not timeframes:
                raise ValueError("timeframes must be a non-empty list")
            report = await self.bulk.collect(
                symbols, timeframes, period or self.config.bulk.default_period, context
            )
            summary = report.summary
            return Outcome.success(
                report,
                f"Bulk collection completed: {summary.successful_operations}/{summary.total_operations} successful",
            )

        return await self._guard("bulk_collect", work)

    async def commit(
        self,
        report: BulkReport | Sequence[BulkOperationResult],
        context: CollectionContext | None = None,
    ) -> Outcome:
        async def work() -> Outcome:
            committed = await self.bulk.commit(report, context)
            return Outcome.success(
                committed,
                f"Committed {committed.committed_cells} cells ({committed.total_uploaded} bars)",
            )

        return await self._guard("commit", work)

    async def validate(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[TimeFrame | str],
        start: datetime | None = None,
        end: datetime | None = None,
        options: CollectionContext | None = None,
    ) -> Outcome:
        """Quality verdicts for each (symbol, timeframe), keyed symbol then timeframe."""

        async def work() -> Outcome:
            if not symbols:
                raise ValueError("symbols must be a non-empty list")
            frames = [TimeFrame(tf) for tf in timeframes]
            report = ValidationReport(summary=ValidationSummary())
            for symbol in symbols:
                descriptor = _descriptor(symbol, options)
                per_symbol = report.results.setdefault(descriptor.symbol, {})
                for tf in frames:
                    verdict = await self._validate_cell(descriptor, tf, start, end)
                    per_symbol[tf.value] = verdict
                    report.summary.total_validations += 1
                    if verdict.error:
                        report.summary.error_count += 1
                    elif verdict.valid:
                        report.summary.valid_count += 1
                    else:
                        report.summary.invalid_count += 1
            summary = report.summary
            return Outcome.success(
                report,
                f"Validation completed: {summary.valid_count}/{summary.total_validations} valid",
            )

        return await self._guard("validate", work)

    async def _validate_cell(
        self,
        descriptor: InstrumentDescriptor,
        timeframe: TimeFrame,
        start: datetime | None,
        end: datetime | None,
    ) -> ValidationVerdict:
        try:
            instrument = await self.store.find_instrument(descriptor)
            if instrument is None:
                return self.validator.evaluate(descriptor.symbol, timeframe, [])
            return await self.validator.validate(instrument, timeframe, start, end)
        except BarSyncError as exc:
            logger.bind(symbol=descriptor.symbol, timeframe=timeframe.value).error(
                "Validation failed: {error}", error=exc.message
            )
            return ValidationVerdict(symbol=descriptor.symbol, timeframe=timeframe.value, error=exc.message)

    async def search(
        self,
        pattern: str,
        *,
        sec_type: str | None = None,
        exchange: str | None = None,
        currency: str | None = None,
        by_name: bool = False,
    ) -> Outcome:
        """Search upstream contracts and remember them as instruments."""

        async def work() -> Outcome:
            if not pattern.strip():
                raise ValueError("search pattern must not be empty")
            defaults = CollectionContext()
            candidates = await self.upstream.search(
                pattern.strip(),
                sec_type=sec_type or defaults.sec_type,
                exchange=exchange,
                currency=currency,
                by_name=by_name,
            )
            persisted = 0
            for candidate in candidates:
                if await self._remember_candidate(candidate, defaults):
                    persisted += 1
            return Outcome.success(
                {"results": candidates, "count": len(candidates), "persisted": persisted},
                f"Found {len(candidates)} contracts",
                pattern=pattern,
            )

        return await self._guard("search", work, pattern=pattern)

    async def _remember_candidate(self, candidate: Mapping[str, Any], defaults: CollectionContext) -> bool:
        try:
            instrument = await self.store.get_or_create_instrument(_candidate_descriptor(candidate, defaults))
            contract_id = _contract_id(candidate)
            local_symbol = candidate.get("localSymbol") or candidate.get("local_symbol")
            if contract_id is not None or local_symbol:
                await self.store.attach_contract(instrument.id, contract_id, local_symbol)
        except (BarSyncError, ValidationError, ValueError, TypeError) as exc:
            logger.warning("Skipping search candidate {candidate}: {error}", candidate=dict(candidate), error=str(exc))
            return False
        return True

    async def realtime(self, symbol: str) -> Outcome:
        async def work() -> Outcome:
            snapshot = await self.upstream.realtime(symbol.strip().upper())
            return Outcome.success(snapshot, symbol=symbol)

        return await self._guard("realtime", work, symbol=symbol)

    async def stream_snapshot(
        self,
        symbol: str,
        timeframe: TimeFrame | str,
        options: CollectionContext | None = None,
    ) -> Outcome:
        """Merge the current real-time quote into the newest stored bar."""

        async def work() -> Outcome:
            tf = TimeFrame(timeframe)
            instrument = await self.store.get_or_create_instrument(_descriptor(symbol, options))
            latest = await self.store.get_latest_bars(instrument.id, tf, 1)
            snapshot = await self.upstream.realtime(instrument.symbol)
            now = int(self._clock().timestamp())
            merged = merge_snapshot(latest[0] if latest else None, snapshot, tf, now)
            written = await self.store.upsert_bars(instrument.id, tf, [merged.bar])
            return Outcome.success(
                {
                    "bar": merged.bar.to_json(),
                    "action": merged.action.value,
                    "snapshot": snapshot,
                    "store_result": {"inserted": written.inserted, "updated": written.updated},
                },
                f"{merged.action.value} for {instrument.symbol} {tf.value}",
                symbol=instrument.symbol,
                timeframe=tf.value,
            )

        return await self._guard("stream_snapshot", work, symbol=symbol, timeframe=str(timeframe))

    async def latest(
        self,
        symbol: str,
        timeframe: TimeFrame | str,
        limit: int = 1,
        options: CollectionContext | None = None,
    ) -> Outcome:
        """Newest stored bars of a series, newest first; never calls upstream."""

        async def work() -> Outcome:
            tf = TimeFrame(timeframe)
            if limit < 1:
                raise ValueError("limit must be at least 1")
            descriptor = _descriptor(symbol, options)
            instrument = await self.store.find_instrument(descriptor)
            bars = await self.store.get_latest_bars(instrument.id, tf, limit) if instrument else []
            if not bars:
                return self._errors.no_data(
                    f"No stored data for {descriptor.symbol} {tf.value}", symbol=descriptor.symbol, timeframe=tf.value
                )
            return Outcome.success(
                {"symbol": descriptor.symbol, "timeframe": tf.value, "bars": [bar.to_json() for bar in bars]},
                symbol=descriptor.symbol,
                timeframe=tf.value,
            )

        return await self._guard("latest", work, symbol=symbol, timeframe=str(timeframe))

    async def series(self) -> Outcome:
        async def work() -> Outcome:
            rows = await self.store.list_series()
            return Outcome.success({"series": rows, "count": len(rows)})

        return await self._guard("series", work)

    async def stats(self, symbol: str | None = None) -> Outcome:
        async def work() -> Outcome:
            return Outcome.success(await self.store.stats(symbol))

        return await self._guard("stats", work, symbol=symbol)

    async def health(self) -> Outcome:
        async def work() -> Outcome:
            store_ok = await self.store.health_check()
            upstream_ok = await self.upstream.health()
            healthy = store_ok and upstream_ok
            return Outcome.success(
                {"healthy": healthy, "store": store_ok, "upstream": upstream_ok},
                "healthy" if healthy else "degraded",
            )

        return await self._guard("health", work)


__all__ = ["DEFAULT_FETCH_PERIOD", "MarketDataService"]
