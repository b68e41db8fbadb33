"""Collapse concurrent identical collection requests into one unit of work."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from barsync.core.exceptions.base import UpstreamError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CollectionRequestKey:
    """Identity of an in-flight fetch; never persisted."""

    symbol: str
    timeframe: str
    window: str
    instrument_id: int | None = None

    def __str__(self) -> str:
        return f"{self.symbol}:{self.timeframe}:{self.window}"


@dataclass(frozen=True, slots=True)
class InFlightGuard:
    key: CollectionRequestKey
    already_in_flight: bool
    future: asyncio.Future[Any] | None = None

    async def wait(self) -> Any:
        """Await the result of the request already in flight."""
        if self.future is None:
            raise RuntimeError(f"no request in flight for {self.key}")
        # shield so a cancelled joiner does not cancel the shared work
        return await asyncio.shield(self.future)


class RequestDeduplicator:
    """Process-local registry of in-flight requests.

    A caller whose key is already in flight joins the first caller: it
    receives the same result, or the same exception. The shared work runs
    as its own task: cancelling one caller (the first included) leaves the
    work and the other callers untouched, and the work is cancelled only
    once no caller is left waiting on it.
    """

    def __init__(self) -> None:
        self._in_flight: dict[CollectionRequestKey, asyncio.Future[Any]] = {}
        self._waiters: dict[asyncio.Future[Any], int] = {}

    def __len__(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, key: CollectionRequestKey) -> bool:
        return key in self._in_flight

    def guard(self, key: CollectionRequestKey) -> InFlightGuard:
        future = self._in_flight.get(key)
        return InFlightGuard(key=key, already_in_flight=future is not None, future=future)

    def register(self, key: CollectionRequestKey) -> asyncio.Future[Any]:
        if key in self._in_flight:
            raise RuntimeError(f"request already in flight for {key}")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        return future

    def release(self, key: CollectionRequestKey, result: Any = None, error: BaseException | None = None) -> None:
        """Publish the outcome of a registered request to joined callers and forget the key.

        An abandoned request (the owner was cancelled) reaches joiners as an
        :class:`UpstreamError`, never as a cancellation of their own.
        """

        future = self._in_flight.pop(key, None)
        if future is None or future.done():
            return
        if isinstance(error, asyncio.CancelledError):
            error = UpstreamError(f"in-flight request for {key} was abandoned", operation="history")
        if error is not None:
            future.set_exception(error)
            # joiners re-raise it; nobody else has to retrieve it
            future.exception()
        else:
            future.set_result(result)

    async def run(self, key: CollectionRequestKey, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work`` unless an identical request is in flight, then join it."""

        guard = self.guard(key)
        if guard.already_in_flight:
            logger.debug("Joining in-flight request {key}", key=str(key))
            if isinstance(guard.future, asyncio.Task):
                return await self._join(guard.future)
            return await guard.wait()
        task: asyncio.Task[T] = asyncio.ensure_future(work())
        self._in_flight[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return await self._join(task)

    async def _join(self, task: asyncio.Task[T]) -> T:
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # the last caller to leave takes the shared work with it
            if not task.done() and self._waiters.get(task) == 1:
                task.cancel()
            raise
        finally:
            remaining = self._waiters.pop(task, 1) - 1
            if remaining > 0:
                self._waiters[task] = remaining

    def _forget(self, key: CollectionRequestKey, task: asyncio.Future[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # every caller may have gone; retrieve so the loop does not warn
            task.exception()


__all__ = ["CollectionRequestKey", "InFlightGuard", "RequestDeduplicator"]
