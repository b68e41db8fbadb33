"""Upstream market data gateway access."""

from barsync.core.upstream.base import MarketDataUpstream
from barsync.core.upstream.client import UpstreamClient, classify_response

__all__ = ["MarketDataUpstream", "UpstreamClient", "classify_response"]
