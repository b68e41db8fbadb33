"""Convert raw upstream bar payloads into canonical :class:`Bar` records.

The upstream gateway answers history requests with one of a closed set of
shapes: ``{"bars": [...]}``, ``{"data": [...]}`` or a bare list of rows.
Anything else is rejected with :class:`UpstreamBadResponseError` so that a
shape change upstream is noticed instead of silently producing empty series.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from barsync.core.exceptions.base import UpstreamBadResponseError
from barsync.core.models.bars import Bar

PAYLOAD_KEYS = ("bars", "data")
TIMESTAMP_KEYS = ("timestamp", "time", "date")
PRICE_KEYS = ("open", "high", "low", "close")

# Epoch values above this magnitude are milliseconds.
_MILLISECOND_THRESHOLD = 10**12


@dataclass(frozen=True)
class RejectedRow:
    index: int
    row: Any
    reason: str


@dataclass
class NormalizationReport:
    """Bars that survived normalization plus the rows that did not."""

    bars: list[Bar] = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)
    duplicates: int = 0

    @property
    def skipped(self) -> int:
        return len(self.rejected)


def extract_rows(payload: Any, operation: str = "history") -> list[Any]:
    """Return the row list carried by a recognised payload shape."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in PAYLOAD_KEYS:
            if key in payload and payload[key] is not None:
                rows = payload[key]
                if not isinstance(rows, list):
                    raise UpstreamBadResponseError(
                        f"Field '{key}' holds {type(rows).__name__}, expected a list",
                        operation=operation,
                        present_fields=sorted(str(k) for k in payload),
                    )
                return rows
        present = sorted(str(k) for k in payload)
        raise UpstreamBadResponseError(
            f"No data received: missing fields {list(PAYLOAD_KEYS)}, response keys: {present}",
            operation=operation,
            missing_fields=list(PAYLOAD_KEYS),
            present_fields=present,
        )
    raise UpstreamBadResponseError(
        f"Unexpected payload type {type(payload).__name__}",
        operation=operation,
        missing_fields=list(PAYLOAD_KEYS),
        present_fields=[],
    )


def normalize_timestamp(value: Any) -> int:
    """Return ``value`` as UTC epoch seconds.

    Accepts epoch seconds or milliseconds, numeric strings, ISO-8601 strings,
    ``datetime`` and ``date`` objects. Naive datetimes are taken as UTC.
    """

    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=UTC).timestamp())
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        try:
            return _from_epoch(float(text))
        except ValueError:
            pass
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return normalize_timestamp(parsed)
    raise ValueError(f"unsupported timestamp type: {type(value).__name__}")


def _from_epoch(number: float) -> int:
    if not math.isfinite(number):
        raise ValueError(f"invalid timestamp: {number!r}")
    if abs(number) > _MILLISECOND_THRESHOLD:
        number /= 1000.0
    return int(number)


def _price(row: Mapping[str, Any], key: str) -> float:
    if key not in row or row[key] is None:
        raise ValueError(f"missing field '{key}'")
    value = row[key]
    if isinstance(value, bool):
        raise ValueError(f"invalid {key}: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite {key}: {value!r}")
    return number


def normalize_row(row: Any) -> Bar:
    """Normalize one upstream row; raises ``ValueError`` describing the defect."""

    if not isinstance(row, Mapping):
        raise ValueError(f"row is {type(row).__name__}, expected an object")
    raw_ts = next((row[key] for key in TIMESTAMP_KEYS if row.get(key) is not None), None)
    if raw_ts is None:
        raise ValueError(f"missing timestamp (one of {', '.join(TIMESTAMP_KEYS)})")
    timestamp = normalize_timestamp(raw_ts)
    open_, high, low, close = (_price(row, key) for key in PRICE_KEYS)

    volume_raw = row.get("volume")
    volume = 0.0 if volume_raw is None else float(volume_raw)
    if not math.isfinite(volume) or volume < 0:
        raise ValueError(f"invalid volume: {volume_raw!r}")
    return Bar(timestamp=timestamp, open=open_, high=high, low=low, close=close, volume=volume)


def normalize_rows(rows: Iterable[Any]) -> NormalizationReport:
    """Normalize a batch of rows.

    Duplicate timestamps collapse to the last occurrence and the output is
    sorted ascending by timestamp.
    """

    report = NormalizationReport()
    by_timestamp: dict[int, Bar] = {}
    for index, row in enumerate(rows):
        try:
            bar = normalize_row(row)
        except (TypeError, ValueError) as exc:
            report.rejected.append(RejectedRow(index=index, row=row, reason=str(exc)))
            continue
        if bar.timestamp in by_timestamp:
            report.duplicates += 1
        by_timestamp[bar.timestamp] = bar
    report.bars = [by_timestamp[ts] for ts in sorted(by_timestamp)]
    return report


def normalize_payload(payload: Any, operation: str = "history") -> NormalizationReport:
    return normalize_rows(extract_rows(payload, operation=operation))


__all__ = [
    "NormalizationReport",
    "RejectedRow",
    "extract_rows",
    "normalize_payload",
    "normalize_row",
    "normalize_rows",
    "normalize_timestamp",
]
