"""Tests for the Prometheus metrics collector."""

from prometheus_client import CollectorRegistry

from barsync.core.monitoring.metrics import MetricsCollector, configure_metrics_collector, get_metrics_collector


def test_observe_upstream_updates_metrics() -> None:
    registry = CollectorRegistry()
    collector = MetricsCollector(registry=registry)

    collector.observe_upstream("history", 0.25, success=True)
    collector.observe_upstream("history", 0.5, success=False, kind="upstream_timeout")

    labels = {"operation": "history"}
    assert registry.get_sample_value("barsync_upstream_latency_seconds_count", labels) == 2.0
    assert registry.get_sample_value("barsync_upstream_latency_seconds_sum", labels) == 0.75
    assert registry.get_sample_value("barsync_upstream_requests_total", labels) == 2.0
    assert (
        registry.get_sample_value(
            "barsync_upstream_failures_total",
            {"operation": "history", "kind": "upstream_timeout"},
        )
        == 1.0
    )
    assert registry.get_sample_value("barsync_upstream_error_rate", labels) == 0.5


def test_domain_counters() -> None:
    registry = CollectorRegistry()
    collector = MetricsCollector(registry=registry)

    collector.record_resolution("store+upstream")
    collector.record_bulk_cell(True)
    collector.record_bulk_cell(False)
    collector.record_bulk_cell(False)
    collector.record_scheduler_iteration("keep-alive", success=True)

    assert registry.get_sample_value("barsync_reconciler_resolutions_total", {"source": "store+upstream"}) == 1.0
    assert registry.get_sample_value("barsync_bulk_cells_total", {"outcome": "failure"}) == 2.0
    assert registry.get_sample_value("barsync_bulk_cells_total", {"outcome": "success"}) == 1.0
    assert (
        registry.get_sample_value("barsync_scheduler_iterations_total", {"job": "keep-alive", "outcome": "success"})
        == 1.0
    )


def test_render_outputs_exposition_format() -> None:
    collector = MetricsCollector()
    collector.observe_upstream("search", 0.1)

    rendered = collector.render().decode("utf-8")

    assert 'barsync_upstream_requests_total{operation="search"} 1.0' in rendered


def test_global_collector_can_be_replaced() -> None:
    replacement = MetricsCollector()

    configure_metrics_collector(replacement)

    assert get_metrics_collector() is replacement
