"""Report models produced by the reconciler, bulk collector and validator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from barsync.core.models.bars import Bar
from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE, Period


class DataSource(str, Enum):
    """Where the bars returned by a resolve came from."""

    STORE = "store"
    UPSTREAM = "upstream"
    STORE_UPSTREAM = "store+upstream"
    STORE_DEGRADED = "store (upstream-gap-failed)"


@dataclass(slots=True)
class ResolveResult:
    """Bars answering one reconciler request."""

    bars: list[Bar]
    source: DataSource
    store_bars: int = 0
    upstream_bars: int = 0
    upstream_calls: int = 0
    refill_period: Period | None = None
    persisted: bool = True
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.source is DataSource.STORE_DEGRADED

    @property
    def new_bars(self) -> int:
        return self.upstream_bars

    @property
    def count(self) -> int:
        return len(self.bars)

    def to_payload(self) -> dict[str, Any]:
        return {
            "bars": [bar.to_json() for bar in self.bars],
            "source": self.source.value,
            "count": self.count,
            "store_bars": self.store_bars,
            "upstream_bars": self.upstream_bars,
            "upstream_calls": self.upstream_calls,
            "refill_period": self.refill_period.value if self.refill_period else None,
            "persisted": self.persisted,
            "degraded": self.degraded,
            "degraded_reason": self.degraded_reason,
        }


class CollectionContext(BaseModel):
    """Contract qualifiers applied to every cell of a bulk run."""

    sec_type: str = DEFAULT_SEC_TYPE
    exchange: str = DEFAULT_EXCHANGE
    currency: str = DEFAULT_CURRENCY
    account_mode: str | None = None


class BulkOperationResult(BaseModel):
    """Outcome of a single (symbol, timeframe) cell."""

    symbol: str
    timeframe: str
    success: bool
    records_fetched: int = 0
    records_uploaded: int = 0
    records_skipped: int = 0
    error: str | None = None
    source: str | None = None
    response_debug: dict[str, Any] | None = None
    data: list[Any] = Field(default_factory=list, repr=False)


class BulkSummary(BaseModel):
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    total_records_collected: int = 0
    errors: list[str] = Field(default_factory=list)


class BulkReport(BaseModel):
    """Fetch-only report of a bulk run; nothing in it has been persisted."""

    period: str
    context: CollectionContext
    summary: BulkSummary
    results: list[BulkOperationResult] = Field(default_factory=list)

    def cell(self, symbol: str, timeframe: str) -> BulkOperationResult | None:
        for result in self.results:
            if result.symbol == symbol and result.timeframe == timeframe:
                return result
        return None

    def to_payload(self, include_data: bool = False) -> dict[str, Any]:
        exclude = None if include_data else {"results": {"__all__": {"data"}}}
        return self.model_dump(mode="json", exclude=exclude)


class CommitResult(BaseModel):
    symbol: str
    timeframe: str
    success: bool
    records_uploaded: int = 0
    inserted: int = 0
    updated: int = 0
    records_skipped: int = 0
    error: str | None = None


class CommitReport(BaseModel):
    committed_cells: int = 0
    failed_cells: int = 0
    total_uploaded: int = 0
    total_skipped: int = 0
    results: list[CommitResult] = Field(default_factory=list)


class ValidationVerdict(BaseModel):
    """Data quality verdict for one (symbol, timeframe) window."""

    symbol: str
    timeframe: str
    record_count: int = 0
    invalid_ohlc: bool = False
    excess_zero_volume: bool = False
    has_gaps: bool = False
    non_positive_price: bool = False
    invalid_ohlc_count: int = 0
    zero_volume_count: int = 0
    non_positive_price_count: int = 0
    gap_count: int = 0
    issues: list[str] = Field(default_factory=list)
    valid: bool = False
    error: str | None = None


class ValidationSummary(BaseModel):
    total_validations: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    error_count: int = 0


class ValidationReport(BaseModel):
    summary: ValidationSummary
    results: dict[str, dict[str, ValidationVerdict]] = Field(default_factory=dict)


@dataclass(slots=True)
class KeepAliveResult:
    """Result of one connection health check.

    ``interval_seconds`` carries the active profile's preferred keep-alive
    cadence when it has one.
    """

    checked: bool = False
    connected: bool = False
    reconnect_attempted: bool = False
    profile_name: str | None = None
    message: str = ""
    interval_seconds: float | None = None


@dataclass(slots=True)
class ActiveSetup:
    """An active trading setup whose instrument the scheduler keeps fresh."""

    id: int
    symbol: str
    timeframes: list[str]
    strategies: list[str] = field(default_factory=list)
    sec_type: str = DEFAULT_SEC_TYPE
    exchange: str = DEFAULT_EXCHANGE
    currency: str = DEFAULT_CURRENCY


__all__ = [
    "DataSource",
    "ResolveResult",
    "CollectionContext",
    "BulkOperationResult",
    "BulkSummary",
    "BulkReport",
    "CommitResult",
    "CommitReport",
    "ValidationVerdict",
    "ValidationSummary",
    "ValidationReport",
    "KeepAliveResult",
    "ActiveSetup",
]
