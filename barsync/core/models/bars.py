"""Canonical OHLCV bar records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class Bar:
    """One OHLCV sample; ``timestamp`` is UTC epoch seconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> dict[str, Any]:
        """Serialize with an ISO timestamp alongside the epoch value."""
        payload = asdict(self)
        payload["time"] = self.as_datetime.isoformat()
        return payload


@dataclass(slots=True, frozen=True)
class UpsertResult:
    """Row counts reported by a batch upsert."""

    inserted: int = 0
    updated: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated


def merge_bars(persisted: list[Bar], incoming: list[Bar]) -> list[Bar]:
    """Merge two series keyed by timestamp; ``incoming`` wins on conflict.

    The result is sorted ascending and holds at most one bar per timestamp.
    """

    merged: dict[int, Bar] = {bar.timestamp: bar for bar in persisted}
    for bar in incoming:
        merged[bar.timestamp] = bar
    return [merged[ts] for ts in sorted(merged)]


__all__ = ["Bar", "UpsertResult", "merge_bars"]
