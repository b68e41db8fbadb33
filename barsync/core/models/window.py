"""Request windows: a lookback period or explicit bounds."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, model_validator

from barsync.core.models.market import Period


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class RequestWindow(BaseModel):
    """Either ``period`` or ``start`` (with optional ``end``) must be set."""

    period: Period | None = None
    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "RequestWindow":
        if self.period is None and self.start is None:
            raise ValueError("a request window needs a period or a start date")
        if self.start is not None:
            self.start = ensure_utc(self.start)
        if self.end is not None:
            self.end = ensure_utc(self.end)
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("window start must be on or before its end")
        return self

    @classmethod
    def for_period(cls, period: Period | str) -> "RequestWindow":
        return cls(period=Period(period))

    @classmethod
    def between(cls, start: datetime, end: datetime | None = None) -> "RequestWindow":
        return cls(start=start, end=end)

    def resolve(self, now: datetime) -> tuple[datetime, datetime]:
        """Concrete UTC bounds of the window relative to ``now``."""

        end = self.end or ensure_utc(now)
        if self.start is not None:
            return self.start, end
        assert self.period is not None
        return end - timedelta(days=self.period.days), end

    def token(self) -> str:
        """Stable textual form used in request keys."""

        if self.start is None:
            assert self.period is not None
            return f"period:{self.period.value}"
        end = self.end.isoformat() if self.end else "now"
        return f"range:{self.start.isoformat()}/{end}"


__all__ = ["RequestWindow", "ensure_utc"]
