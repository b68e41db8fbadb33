"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE, Period, TimeFrame
from barsync.core.models.results import CollectionContext


def _utcnow() -> datetime:
    return datetime.now(UTC)


class APIResponse(BaseModel):
    """Envelope returned by every successful call."""

    success: bool = Field(..., description="Whether the operation succeeded")
    kind: str = Field("ok", description="Outcome kind")
    data: Any | None = Field(None, description="Response data")
    message: str | None = Field(None, description="Human readable summary")
    timestamp: datetime = Field(default_factory=_utcnow, description="Response timestamp")
    request_id: str | None = Field(None, description="Request id used for log correlation")


class ErrorResponse(BaseModel):
    """Envelope returned for failed calls."""

    success: bool = Field(False, description="Always false")
    kind: str = Field(..., description="Outcome kind, e.g. no_data or upstream_timeout")
    message: str = Field(..., description="Error message")
    details: dict[str, Any] | None = Field(None, description="Structured error context")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
    request_id: str | None = Field(None, description="Request id used for log correlation")


class ContractFields(BaseModel):
    sec_type: str = Field(DEFAULT_SEC_TYPE, description="Security type")
    exchange: str = Field(DEFAULT_EXCHANGE, description="Exchange code")
    currency: str = Field(DEFAULT_CURRENCY, description="Currency code")

    def context(self) -> CollectionContext:
        return CollectionContext(sec_type=self.sec_type, exchange=self.exchange, currency=self.currency)


class BulkCollectRequest(ContractFields):
    """Symbols times timeframes to fetch in one run."""

    symbols: list[str] = Field(..., min_length=1, description="Ticker symbols")
    timeframes: list[TimeFrame] = Field(..., min_length=1, description="Bar timeframes")
    period: Period | None = Field(None, description="Lookback period; defaults to the configured one")
    commit: bool = Field(False, description="Persist the collected bars after the run")
    include_data: bool = Field(False, description="Return the fetched rows with each cell")


class CommitRequest(ContractFields):
    """Cells of an earlier bulk run, including their fetched rows."""

    results: list[dict[str, Any]] = Field(..., min_length=1)


class ValidateRequest(ContractFields):
    symbols: list[str] = Field(..., min_length=1)
    timeframes: list[TimeFrame] = Field(default_factory=lambda: [TimeFrame.DAY_1])
    start: datetime | None = None
    end: datetime | None = None


class SearchRequest(BaseModel):
    pattern: str = Field(..., min_length=1, description="Symbol or company name pattern")
    sec_type: str | None = None
    exchange: str | None = None
    currency: str | None = None
    by_name: bool = False


__all__ = [
    "APIResponse",
    "BulkCollectRequest",
    "CommitRequest",
    "ContractFields",
    "ErrorResponse",
    "SearchRequest",
    "ValidateRequest",
]
