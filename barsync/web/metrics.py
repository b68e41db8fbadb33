"""Prometheus scrape endpoint for the barsync API."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from barsync.core.monitoring.metrics import get_metrics_collector

router = APIRouter()


@router.get("/metrics", include_in_schema=False, summary="Prometheus metrics endpoint")
def scrape_metrics() -> Response:
    """Upstream, reconciler, bulk and scheduler metrics in exposition format."""

    payload = get_metrics_collector().render()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST, headers={"Cache-Control": "no-store"})
