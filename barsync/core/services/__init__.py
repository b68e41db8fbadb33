"""Core services module."""

from barsync.core.services.bulk import BulkCollector
from barsync.core.services.dedup import CollectionRequestKey, InFlightGuard, RequestDeduplicator
from barsync.core.services.market_data import MarketDataService
from barsync.core.services.quality import DataQualityValidator, QualityThresholds
from barsync.core.services.reconciler import GapFillReconciler, refill_period_for
from barsync.core.services.scheduler import ScheduledJob, Scheduler
from barsync.core.services.snapshot import merge_snapshot

__all__ = [
    "BulkCollector",
    "CollectionRequestKey",
    "DataQualityValidator",
    "GapFillReconciler",
    "InFlightGuard",
    "MarketDataService",
    "QualityThresholds",
    "RequestDeduplicator",
    "ScheduledJob",
    "Scheduler",
    "merge_snapshot",
    "refill_period_for",
]
