"""Data models module."""

from barsync.core.models.bars import Bar, UpsertResult, merge_bars
from barsync.core.models.instrument import Instrument, InstrumentDescriptor
from barsync.core.models.market import Period, SecurityType, TimeFrame
from barsync.core.models.outcome import Outcome, OutcomeKind
from barsync.core.models.results import (
    ActiveSetup,
    BulkOperationResult,
    BulkReport,
    BulkSummary,
    CollectionContext,
    CommitReport,
    CommitResult,
    DataSource,
    KeepAliveResult,
    ResolveResult,
    ValidationReport,
    ValidationSummary,
    ValidationVerdict,
)
from barsync.core.models.window import RequestWindow

__all__ = [
    "Bar",
    "UpsertResult",
    "merge_bars",
    "Instrument",
    "InstrumentDescriptor",
    "Period",
    "SecurityType",
    "TimeFrame",
    "Outcome",
    "OutcomeKind",
    "RequestWindow",
    "ActiveSetup",
    "BulkOperationResult",
    "BulkReport",
    "BulkSummary",
    "CollectionContext",
    "CommitReport",
    "CommitResult",
    "DataSource",
    "KeepAliveResult",
    "ResolveResult",
    "ValidationReport",
    "ValidationSummary",
    "ValidationVerdict",
]
