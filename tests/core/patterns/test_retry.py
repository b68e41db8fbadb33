"""Tests for bounded exponential backoff."""

from __future__ import annotations

import pytest

from barsync.core.exceptions import UpstreamBadResponseError, UpstreamTimeoutError, UpstreamUnavailableError
from barsync.core.patterns import ExponentialBackoffRetry, RetryConfig
from barsync.core.patterns.retry import RetryState


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_from_retries_counts_the_first_attempt() -> None:
    config = RetryConfig.from_retries(3, 0.5, 10.0)

    assert config.max_attempts == 4
    assert config.base_delay == 0.5
    assert config.max_delay == 10.0


def test_delay_doubles_and_is_capped() -> None:
    retry = ExponentialBackoffRetry(RetryConfig(base_delay=1.0, max_delay=5.0))

    assert [retry._calculate_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_successful_call_is_not_retried() -> None:
    sleep = RecordingSleep()
    retry = ExponentialBackoffRetry(RetryConfig(), sleep=sleep)

    async def succeed() -> str:
        return "ok"

    assert await retry.execute(succeed) == "ok"
    assert retry.attempt_count == 1
    assert retry.state is RetryState.COMPLETED
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transient_failures_are_retried_until_success() -> None:
    sleep = RecordingSleep()
    retry = ExponentialBackoffRetry(RetryConfig(max_attempts=4, base_delay=0.5), sleep=sleep)
    failures = [UpstreamTimeoutError("slow", "history"), UpstreamUnavailableError("down", "history")]

    async def flaky() -> int:
        if failures:
            raise failures.pop(0)
        return 7

    assert await retry.execute(flaky) == 7
    assert retry.attempt_count == 3
    assert sleep.delays == [0.5, 1.0]
    assert retry.get_stats()["total_delay"] == 1.5


@pytest.mark.asyncio
async def test_attempt_budget_is_enforced() -> None:
    sleep = RecordingSleep()
    retry = ExponentialBackoffRetry(RetryConfig(max_attempts=2), sleep=sleep)

    async def always_down() -> None:
        raise UpstreamUnavailableError("down", "history")

    with pytest.raises(UpstreamUnavailableError):
        await retry.execute(always_down)
    assert retry.attempt_count == 2
    assert retry.state is RetryState.FAILED
    assert len(sleep.delays) == 1


@pytest.mark.asyncio
async def test_non_retryable_errors_fail_immediately() -> None:
    sleep = RecordingSleep()
    retry = ExponentialBackoffRetry(RetryConfig(), sleep=sleep)

    async def malformed() -> None:
        raise UpstreamBadResponseError("bad payload")

    with pytest.raises(UpstreamBadResponseError):
        await retry.execute(malformed)
    assert retry.attempt_count == 1
    assert sleep.delays == []
