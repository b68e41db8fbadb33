"""Tests for folding real-time quotes into stored bars."""

from __future__ import annotations

import pytest

from barsync.core.exceptions import UpstreamBadResponseError
from barsync.core.models.bars import Bar
from barsync.core.models.market import TimeFrame
from barsync.core.services.snapshot import SnapshotAction, align_timestamp, merge_snapshot, read_snapshot

MINUTE_START = 1_704_067_200


def test_align_timestamp_floors_to_bucket() -> None:
    assert align_timestamp(MINUTE_START + 59, TimeFrame.MINUTE_1) == MINUTE_START
    assert align_timestamp(MINUTE_START + 3_599, TimeFrame.HOUR_1) == MINUTE_START


def test_new_bar_when_store_is_empty() -> None:
    merge = merge_snapshot(None, {"last": 101.5, "volume": 300}, "1min", MINUTE_START + 42)

    assert merge.action is SnapshotAction.NEW_BAR
    assert merge.bar == Bar(MINUTE_START, 101.5, 101.5, 101.5, 101.5, 300.0)


def test_update_within_interval_extends_range_and_volume() -> None:
    latest = Bar(MINUTE_START, 100.0, 101.0, 99.5, 100.5, 50.0)

    higher = merge_snapshot(latest, {"last": 102.0, "volume": 10}, "1min", MINUTE_START + 30)
    lower = merge_snapshot(latest, {"last": 98.0}, "1min", MINUTE_START + 30)

    assert higher.action is SnapshotAction.UPDATED_BAR
    assert higher.bar == Bar(MINUTE_START, 100.0, 102.0, 99.5, 102.0, 60.0)
    assert lower.bar == Bar(MINUTE_START, 100.0, 101.0, 98.0, 98.0, 50.0)


def test_new_bar_once_a_full_interval_has_passed() -> None:
    latest = Bar(MINUTE_START, 100.0, 101.0, 99.5, 100.5, 50.0)

    merge = merge_snapshot(latest, {"last": 103.0, "volume": 5}, "1min", MINUTE_START + 61)

    assert merge.action is SnapshotAction.NEW_BAR
    assert merge.bar.timestamp == MINUTE_START + 60
    assert merge.bar.open == merge.bar.close == 103.0


@pytest.mark.parametrize("snapshot", [{}, {"last": None}, {"last": True}, {"last": float("nan")}])
def test_snapshot_without_usable_price_is_rejected(snapshot: dict) -> None:
    with pytest.raises(UpstreamBadResponseError):
        read_snapshot(snapshot)


def test_negative_volume_is_clamped() -> None:
    assert read_snapshot({"last": "12.5", "volume": -3}) == (12.5, 0.0)
