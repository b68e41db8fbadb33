"""Fold a real-time quote into the newest stored bar of a series."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from barsync.core.exceptions.base import UpstreamBadResponseError
from barsync.core.models.bars import Bar
from barsync.core.models.market import TimeFrame


class SnapshotAction(str, Enum):
    NEW_BAR = "new_bar"
    UPDATED_BAR = "updated_bar"


@dataclass(frozen=True, slots=True)
class SnapshotMerge:
    bar: Bar
    action: SnapshotAction


def align_timestamp(timestamp: int, timeframe: TimeFrame) -> int:
    """Start of the timeframe bucket containing ``timestamp``."""
    interval = timeframe.interval_seconds
    return timestamp - timestamp % interval


def read_snapshot(snapshot: Mapping[str, Any]) -> tuple[float, float]:
    """Return ``(last, volume)`` from a realtime payload."""

    last = snapshot.get("last")
    if last is None or isinstance(last, bool):
        raise UpstreamBadResponseError(
            "Realtime snapshot has no last price",
            operation="realtime",
            missing_fields=["last"],
            present_fields=sorted(str(k) for k in snapshot),
        )
    price = float(last)
    if not math.isfinite(price):
        raise UpstreamBadResponseError(f"Realtime last price is not finite: {last!r}", operation="realtime")
    volume = float(snapshot.get("volume") or 0)
    return price, max(volume, 0.0)


def merge_snapshot(latest: Bar | None, snapshot: Mapping[str, Any], timeframe: TimeFrame | str, now: int) -> SnapshotMerge:
    """Create a new aligned bar or update ``latest`` with the snapshot.

    A new bar is opened when there is no stored bar or when at least one full
    interval has passed since the stored bar's timestamp.
    """

    tf = TimeFrame(timeframe)
    price, volume = read_snapshot(snapshot)
    if latest is None or now - latest.timestamp >= tf.interval_seconds:
        bar = Bar(
            timestamp=align_timestamp(now, tf),
            open=price,
            high=price,
            low=price,
            close=price,
            volume=volume,
        )
        return SnapshotMerge(bar=bar, action=SnapshotAction.NEW_BAR)
    bar = Bar(
        timestamp=latest.timestamp,
        open=latest.open,
        high=max(latest.high, price),
        low=min(latest.low, price),
        close=price,
        volume=latest.volume + volume,
    )
    return SnapshotMerge(bar=bar, action=SnapshotAction.UPDATED_BAR)


__all__ = ["SnapshotAction", "SnapshotMerge", "align_timestamp", "merge_snapshot", "read_snapshot"]
