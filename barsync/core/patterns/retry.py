"""Bounded exponential backoff retry."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

from barsync.core.exceptions.base import UpstreamTimeoutError, UpstreamUnavailableError

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryState(Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryConfig:
    """Retry settings.

    ``max_attempts`` counts the first call, so ``max_attempts=4`` allows three
    retries. The delay before retry ``n`` (0-based) is
    ``base_delay * exponential_base ** n`` capped at ``max_delay``.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = False
    retry_on_exceptions: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (UpstreamUnavailableError, UpstreamTimeoutError)
    )
    skip_on_exceptions: tuple[type[BaseException], ...] = ()

    @classmethod
    def from_retries(cls, max_retries: int, base_delay: float, max_delay: float) -> "RetryConfig":
        return cls(max_attempts=max_retries + 1, base_delay=base_delay, max_delay=max_delay)


class ExponentialBackoffRetry:
    """Runs an async callable, retrying transient failures with backoff."""

    def __init__(self, config: RetryConfig, sleep: SleepFunc | None = None):
        self.config = config
        self._sleep = sleep or asyncio.sleep
        self.attempt_count = 0
        self.total_delay = 0.0
        self.state = RetryState.READY
        self.last_exception: BaseException | None = None

    async def execute(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the attempt budget is spent.

        Raises:
            The last exception raised by ``func`` when it is not retryable or
            when every attempt failed.
        """
        self.state = RetryState.RUNNING
        self.attempt_count = 0
        self.total_delay = 0.0

        while True:
            self.attempt_count += 1
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                self.last_exception = exc
                if not self._should_retry(exc) or self.attempt_count >= self.config.max_attempts:
                    self.state = RetryState.FAILED
                    raise
                delay = self._calculate_delay(self.attempt_count - 1)
                logger.bind(attempt=self.attempt_count, delay=delay).warning(
                    "Transient failure, retrying: {error}", error=str(exc)
                )
                await self._sleep(delay)
                self.total_delay += delay
            else:
                self.state = RetryState.COMPLETED
                return result

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, self.config.skip_on_exceptions):
            return False
        return isinstance(exc, self.config.retry_on_exceptions)

    def _calculate_delay(self, attempt_number: int) -> float:
        if attempt_number < 0:
            return 0.0
        delay = self.config.base_delay * (self.config.exponential_base**attempt_number)
        if self.config.jitter:
            jitter_range = min(delay * 0.1, 1.0)
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0.0, min(delay, self.config.max_delay))

    def get_stats(self) -> dict[str, Any]:
        return {
            "attempts": self.attempt_count,
            "max_attempts": self.config.max_attempts,
            "total_delay": self.total_delay,
            "state": self.state.value,
            "last_exception": str(self.last_exception) if self.last_exception else None,
        }


__all__ = ["ExponentialBackoffRetry", "RetryConfig", "RetryState"]
