"""Periodic background jobs: data collection, strategy calculation, keep-alive."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loguru import logger

from barsync.core.config.settings import SchedulerConfig
from barsync.core.data.storage.repository import BarStore
from barsync.core.logging import log_context
from barsync.core.models.instrument import InstrumentDescriptor
from barsync.core.models.market import Period
from barsync.core.models.results import ActiveSetup
from barsync.core.models.window import RequestWindow
from barsync.core.monitoring.metrics import MetricsCollector, get_metrics_collector
from barsync.core.patterns.retry import SleepFunc
from barsync.core.services.collaborators import (
    ActiveSetupSource,
    ConnectionHealthCollaborator,
    StrategySignalCollaborator,
)
from barsync.core.services.reconciler import GapFillReconciler

DATA_COLLECTION = "data-collection"
STRATEGY_CALCULATION = "strategy-calculation"
KEEP_ALIVE = "keep-alive"


class JobState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class JobStatus:
    name: str
    state: JobState
    interval: float
    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "interval": self.interval,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class ScheduledJob:
    """An action repeated on an interval by a single asyncio task."""

    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        interval: float,
        *,
        initial_delay: float = 0.0,
        sleep: SleepFunc | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.name = name
        self._action = action
        self.initial_delay = initial_delay
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = metrics
        self._task: asyncio.Task[None] | None = None
        self._status = JobStatus(name=name, state=JobState.STOPPED, interval=interval)

    @property
    def interval(self) -> float:
        return self._status.interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_interval(self, seconds: float) -> None:
        """Change the cadence; takes effect from the next wait."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        if seconds != self._status.interval:
            logger.bind(job=self.name).info("Interval changed to {seconds}s", seconds=seconds)
        self._status.interval = seconds

    def start(self) -> bool:
        if self.running:
            logger.bind(job=self.name).info("Job already running")
            return False
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"barsync:{self.name}")
        self._status.state = JobState.RUNNING
        logger.bind(job=self.name).info("Job started (every {interval}s)", interval=self.interval)
        return True

    async def stop(self) -> bool:
        task, self._task = self._task, None
        self._status.state = JobState.STOPPED
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.bind(job=self.name).info("Job stopped")
        return True

    async def run_once(self) -> bool:
        """Run the action once; failures are logged and counted, never raised."""

        with log_context(job=self.name):
            self._status.last_run_at = self._clock()
            self._status.runs += 1
            try:
                await self._action()
            except Exception as exc:
                self._status.failures += 1
                self._status.last_error = str(exc)
                logger.opt(exception=exc).error("Job iteration failed")
                (self._metrics or get_metrics_collector()).record_scheduler_iteration(self.name, success=False)
                return False
            self._status.last_error = None
            (self._metrics or get_metrics_collector()).record_scheduler_iteration(self.name, success=True)
            return True

    async def _loop(self) -> None:
        if self.initial_delay > 0:
            await self._sleep(self.initial_delay)
        while True:
            await self.run_once()
            await self._sleep(self.interval)

    def status(self) -> JobStatus:
        self._status.state = JobState.RUNNING if self.running else JobState.STOPPED
        return self._status


class Scheduler:
    """Owns the background jobs; no job state lives at module level."""

    def __init__(
        self,
        store: BarStore,
        reconciler: GapFillReconciler,
        setups: ActiveSetupSource,
        *,
        strategies: StrategySignalCollaborator | None = None,
        health: ConnectionHealthCollaborator | None = None,
        config: SchedulerConfig | None = None,
        collection_period: Period = Period.MONTH_1,
        timeframe_delay: float = 1.0,
        setup_delay: float = 2.0,
        sleep: SleepFunc | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._setups = setups
        self._strategies = strategies
        self._health = health
        self._collection_period = collection_period
        self._timeframe_delay = timeframe_delay
        self._setup_delay = setup_delay
        self._sleep = sleep or asyncio.sleep
        config = config or SchedulerConfig()

        def job(name: str, action: Callable[[], Awaitable[Any]], interval: float, initial_delay: float = 0.0) -> ScheduledJob:
            return ScheduledJob(
                name, action, interval, initial_delay=initial_delay, sleep=sleep, clock=clock, metrics=metrics
            )

        self.jobs: dict[str, ScheduledJob] = {
            DATA_COLLECTION: job(DATA_COLLECTION, self.run_data_collection, config.collection_interval),
        }
        if strategies is not None:
            self.jobs[STRATEGY_CALCULATION] = job(
                STRATEGY_CALCULATION, self.run_strategy_calculation, config.strategy_interval
            )
        if health is not None:
            self.jobs[KEEP_ALIVE] = job(
                KEEP_ALIVE, self.run_keep_alive, config.keep_alive_interval, config.keep_alive_warmup
            )

    def job(self, name: str) -> ScheduledJob:
        try:
            return self.jobs[name]
        except KeyError:
            raise KeyError(f"unknown job {name!r}; known jobs: {', '.join(self.jobs)}") from None

    def start(self, name: str) -> bool:
        return self.job(name).start()

    async def stop(self, name: str) -> bool:
        return await self.job(name).stop()

    def start_all(self) -> None:
        for job in self.jobs.values():
            job.start()
        logger.info("All background jobs started")

    async def stop_all(self) -> None:
        for job in self.jobs.values():
            await job.stop()
        logger.info("All background jobs stopped")

    def set_interval(self, name: str, seconds: float) -> None:
        self.job(name).set_interval(seconds)

    def status(self) -> dict[str, dict[str, Any]]:
        return {name: job.status().to_dict() for name, job in self.jobs.items()}

    async def run_data_collection(self) -> dict[str, Any]:
        """Reconcile every timeframe of every active setup."""

        setups = await self._setups.list_active_setups()
        stats: dict[str, Any] = {"total_setups": len(setups), "total_timeframes": 0, "successful": 0, "failed": 0}
        window = RequestWindow.for_period(self._collection_period)
        for setup in setups:
            stats["total_timeframes"] += len(setup.timeframes)
            for timeframe in setup.timeframes:
                if await self._collect_one(setup, timeframe, window):
                    stats["successful"] += 1
                else:
                    stats["failed"] += 1
                await self._sleep(self._timeframe_delay)
            await self._sleep(self._setup_delay)
        logger.info(
            "Data collection completed: {successful}/{total} successful",
            successful=stats["successful"],
            total=stats["total_timeframes"],
        )
        return stats

    async def _collect_one(self, setup: ActiveSetup, timeframe: str, window: RequestWindow) -> bool:
        with log_context(symbol=setup.symbol, timeframe=timeframe):
            try:
                instrument = await self._store.get_or_create_instrument(
                    InstrumentDescriptor(
                        symbol=setup.symbol,
                        sec_type=setup.sec_type,
                        exchange=setup.exchange,
                        currency=setup.currency,
                    )
                )
                result = await self._reconciler.resolve(instrument, timeframe, window)
            except Exception as exc:
                logger.opt(exception=exc).error("Collection failed for setup {setup_id}", setup_id=setup.id)
                return False
            return not result.degraded

    async def run_strategy_calculation(self) -> int:
        """Recompute signals for every active setup that has strategies."""

        if self._strategies is None:
            return 0
        total = 0
        for setup in await self._setups.list_active_setups():
            if not setup.strategies:
                continue
            try:
                result = await self._strategies.calculate_for_setup(setup.id)
                signals = int(result.get("total_signals", 0))
            except Exception as exc:
                logger.opt(exception=exc).error("Strategy calculation failed for setup {setup_id}", setup_id=setup.id)
                continue
            total += signals
            logger.info("Strategy calculation for setup {setup_id}: {signals} signals", setup_id=setup.id, signals=signals)
        return total

    async def run_keep_alive(self) -> None:
        if self._health is None:
            return
        result = await self._health.perform_check()
        if not result.checked:
            return
        if result.reconnect_attempted:
            logger.warning("Keep-alive: {message} for profile {profile}", message=result.message, profile=result.profile_name)
        elif result.connected:
            logger.info("Keep-alive: connection healthy for profile {profile}", profile=result.profile_name)
        else:
            logger.warning("Keep-alive: {message}", message=result.message)
        if result.interval_seconds and KEEP_ALIVE in self.jobs:
            self.jobs[KEEP_ALIVE].set_interval(result.interval_seconds)


__all__ = [
    "DATA_COLLECTION",
    "JobState",
    "JobStatus",
    "KEEP_ALIVE",
    "STRATEGY_CALCULATION",
    "ScheduledJob",
    "Scheduler",
]
