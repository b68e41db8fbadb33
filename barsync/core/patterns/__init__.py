"""Resilience patterns module."""

from barsync.core.patterns.retry import ExponentialBackoffRetry, RetryConfig, RetryState

__all__ = ["ExponentialBackoffRetry", "RetryConfig", "RetryState"]
