"""Prometheus metrics helpers for barsync services."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import DefaultDict

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


@dataclass
class _OperationStats:
    total: int = 0
    failures: int = 0


class MetricsCollector:
    """Collects upstream, reconciler, bulk and scheduler metrics on a private registry."""

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.upstream_latency_seconds = Histogram(
            "barsync_upstream_latency_seconds",
            "Latency distribution of upstream gateway calls.",
            ("operation",),
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")),
            registry=self.registry,
        )
        self.upstream_requests_total = Counter(
            "barsync_upstream_requests_total",
            "Total count of upstream gateway calls.",
            ("operation",),
            registry=self.registry,
        )
        self.upstream_failures_total = Counter(
            "barsync_upstream_failures_total",
            "Total count of failed upstream gateway calls.",
            ("operation", "kind"),
            registry=self.registry,
        )
        self.upstream_error_rate = Gauge(
            "barsync_upstream_error_rate",
            "Error rate of upstream gateway calls per operation (0-1 range).",
            ("operation",),
            registry=self.registry,
        )
        self.resolutions_total = Counter(
            "barsync_reconciler_resolutions_total",
            "Reconciler resolutions grouped by the source of the returned bars.",
            ("source",),
            registry=self.registry,
        )
        self.bulk_cells_total = Counter(
            "barsync_bulk_cells_total",
            "Bulk collection cells grouped by outcome.",
            ("outcome",),
            registry=self.registry,
        )
        self.scheduler_iterations_total = Counter(
            "barsync_scheduler_iterations_total",
            "Scheduler job iterations grouped by job and outcome.",
            ("job", "outcome"),
            registry=self.registry,
        )
        self._operation_stats: DefaultDict[str, _OperationStats] = defaultdict(_OperationStats)

    def observe_upstream(self, operation: str, latency_seconds: float, *, success: bool = True, kind: str = "") -> None:
        """Record one upstream call."""

        self.upstream_latency_seconds.labels(operation=operation).observe(latency_seconds)
        stats = self._operation_stats[operation]
        stats.total += 1
        self.upstream_requests_total.labels(operation=operation).inc()
        if not success:
            stats.failures += 1
            self.upstream_failures_total.labels(operation=operation, kind=kind or "error").inc()
        self.upstream_error_rate.labels(operation=operation).set(stats.failures / stats.total)

    def record_resolution(self, source: str) -> None:
        self.resolutions_total.labels(source=source).inc()

    def record_bulk_cell(self, success: bool) -> None:
        self.bulk_cells_total.labels(outcome="success" if success else "failure").inc()

    def record_scheduler_iteration(self, job: str, *, success: bool) -> None:
        self.scheduler_iterations_total.labels(job=job, outcome="success" if success else "failure").inc()

    def render(self) -> bytes:
        """Render metrics in Prometheus exposition format."""

        return generate_latest(self.registry)


_DEFAULT_COLLECTOR: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Return the global metrics collector instance."""

    global _DEFAULT_COLLECTOR
    if _DEFAULT_COLLECTOR is None:
        _DEFAULT_COLLECTOR = MetricsCollector()
    return _DEFAULT_COLLECTOR


def configure_metrics_collector(collector: MetricsCollector | None) -> None:
    """Override the global metrics collector for application wiring or tests."""

    global _DEFAULT_COLLECTOR
    _DEFAULT_COLLECTOR = collector


__all__ = ["MetricsCollector", "configure_metrics_collector", "get_metrics_collector"]
