"""Interface of the upstream market data gateway used by the services."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE, Period, TimeFrame


class MarketDataUpstream(Protocol):
    """What the reconciler, bulk collector and facade need from the gateway."""

    async def history(
        self,
        symbol: str,
        timeframe: TimeFrame | str,
        *,
        period: Period | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        sec_type: str = DEFAULT_SEC_TYPE,
        exchange: str = DEFAULT_EXCHANGE,
        currency: str = DEFAULT_CURRENCY,
    ) -> Any: ...

    async def search(
        self,
        pattern: str,
        *,
        sec_type: str = DEFAULT_SEC_TYPE,
        exchange: str | None = None,
        currency: str | None = None,
        by_name: bool = False,
    ) -> list[dict[str, Any]]: ...

    async def realtime(self, symbol: str) -> dict[str, Any]: ...

    async def health(self) -> bool: ...


__all__ = ["MarketDataUpstream"]
