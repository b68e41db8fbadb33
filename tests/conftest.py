"""Pytest configuration and shared fixtures for the barsync test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from barsync.core.data.storage.repository import BarStore
from barsync.core.models.bars import Bar
from barsync.core.models.market import TimeFrame
from barsync.core.monitoring.metrics import MetricsCollector, configure_metrics_collector


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--barsync-run-integration",
        action="store_true",
        default=False,
        help="Run barsync integration tests that require a live upstream gateway.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks barsync tests requiring network or external services",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested."""

    if config.getoption("--barsync-run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="integration tests require --barsync-run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeUpstream:
    """In-memory stand-in for :class:`UpstreamClient`.

    ``history`` may be a payload, an exception instance, or a callable
    ``(symbol, timeframe, **kwargs)`` returning either.
    """

    def __init__(
        self,
        history: Any = None,
        *,
        realtime: Any = None,
        search: Any = None,
        healthy: bool = True,
    ) -> None:
        self.history_response = history
        self.realtime_response = realtime
        self.search_response = search if search is not None else []
        self.healthy = healthy
        self.history_calls: list[dict[str, Any]] = []
        self.search_calls: list[dict[str, Any]] = []
        self.closed = False

    @staticmethod
    def _resolve(response: Any, *args: Any, **kwargs: Any) -> Any:
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(*args, **kwargs)
            if isinstance(response, BaseException):
                raise response
        return response

    async def history(self, symbol: str, timeframe: TimeFrame | str, **kwargs: Any) -> Any:
        tf = TimeFrame(timeframe).value
        self.history_calls.append({"symbol": symbol, "timeframe": tf, **kwargs})
        return self._resolve(self.history_response, symbol, tf, **kwargs)

    async def search(self, pattern: str, **kwargs: Any) -> list[dict[str, Any]]:
        self.search_calls.append({"pattern": pattern, **kwargs})
        return self._resolve(self.search_response, pattern, **kwargs)

    async def realtime(self, symbol: str) -> dict[str, Any]:
        return self._resolve(self.realtime_response, symbol)

    async def health(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_metrics() -> Iterator[MetricsCollector]:
    collector = MetricsCollector()
    configure_metrics_collector(collector)
    yield collector
    configure_metrics_collector(None)


@pytest.fixture
def store() -> Iterator[BarStore]:
    bar_store = BarStore()
    yield bar_store
    bar_store.close()


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_bars() -> Callable[..., list[Bar]]:
    """Build ``count`` well-formed bars spaced ``step`` seconds apart."""

    def factory(start: int, count: int, step: int = 3600, price: float = 100.0, volume: float = 1000.0) -> list[Bar]:
        bars = []
        for index in range(count):
            base = price + index
            bars.append(
                Bar(
                    timestamp=start + index * step,
                    open=base,
                    high=base + 1,
                    low=base - 1,
                    close=base + 0.5,
                    volume=volume,
                )
            )
        return bars

    return factory


def rows_for(bars: list[Bar]) -> list[dict[str, Any]]:
    return [bar.to_dict() for bar in bars]


@pytest.fixture
def bars_to_rows() -> Callable[[list[Bar]], list[dict[str, Any]]]:
    return rows_for


@pytest.fixture
def make_upstream() -> type[FakeUpstream]:
    return FakeUpstream
