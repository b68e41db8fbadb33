"""HTTP client for the upstream market data gateway."""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from barsync.core.config.settings import UpstreamConfig
from barsync.core.exceptions.base import (
    UpstreamBadResponseError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE, Period, TimeFrame
from barsync.core.models.window import ensure_utc
from barsync.core.monitoring.metrics import MetricsCollector, get_metrics_collector
from barsync.core.patterns.retry import ExponentialBackoffRetry, RetryConfig, SleepFunc

UNAVAILABLE_STATUS_CODES = frozenset({502, 503, 504})
UNAVAILABLE_MARKER = "temporarily unavailable"


def classify_response(operation: str, response: httpx.Response) -> UpstreamError | None:
    """Return the error a non-success response maps to, or ``None`` on success."""

    if response.is_success:
        return None
    body = response.text[:500]
    if response.status_code in UNAVAILABLE_STATUS_CODES or UNAVAILABLE_MARKER in body.lower():
        return UpstreamUnavailableError(
            f"Upstream unavailable during {operation} (HTTP {response.status_code})",
            operation=operation,
            status_code=response.status_code,
            details={"body": body},
        )
    return UpstreamBadResponseError(
        f"Upstream rejected {operation} with HTTP {response.status_code}",
        operation=operation,
        details={"status_code": response.status_code, "body": body},
    )


class UpstreamClient:
    """Async client for the gateway's search, history, realtime and health endpoints.

    Every call carries its operation's timeout. Unavailable and timeout
    failures are retried with bounded exponential backoff; anything else is
    raised on the first attempt.
    """

    def __init__(
        self,
        config: UpstreamConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: MetricsCollector | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self.config = config or UpstreamConfig()
        self._transport = transport
        self._metrics = metrics
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "UpstreamClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics_collector()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                transport=self._transport,
                headers={"Connection": "close", "User-Agent": "barsync"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _retry(self) -> ExponentialBackoffRetry:
        config = RetryConfig.from_retries(self.config.max_retries, self.config.backoff_base, self.config.backoff_max)
        return ExponentialBackoffRetry(config, sleep=self._sleep)

    async def _send(self, operation: str, method: str, path: str, timeout: float, **kwargs: Any) -> httpx.Response:
        client = self._ensure_client()
        started = time.perf_counter()
        try:
            response = await client.request(method, path, timeout=timeout, **kwargs)
        except httpx.TimeoutException as exc:
            self.metrics.observe_upstream(operation, time.perf_counter() - started, success=False, kind="timeout")
            raise UpstreamTimeoutError(
                f"Upstream {operation} timed out after {timeout}s", operation=operation, timeout=timeout
            ) from exc
        except httpx.TransportError as exc:
            self.metrics.observe_upstream(operation, time.perf_counter() - started, success=False, kind="unavailable")
            raise UpstreamUnavailableError(
                f"Upstream unreachable during {operation}: {exc}", operation=operation
            ) from exc

        error = classify_response(operation, response)
        latency = time.perf_counter() - started
        if error is not None:
            kind = "unavailable" if isinstance(error, UpstreamUnavailableError) else "bad_response"
            self.metrics.observe_upstream(operation, latency, success=False, kind=kind)
            raise error
        self.metrics.observe_upstream(operation, latency)
        return response

    async def _request_json(self, operation: str, method: str, path: str, timeout: float, **kwargs: Any) -> Any:
        response = await self._retry().execute(self._send, operation, method, path, timeout, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamBadResponseError(
                f"Upstream {operation} returned a non-JSON body",
                operation=operation,
                details={"content_type": response.headers.get("content-type")},
            ) from exc

    def _with_account_mode(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.config.account_mode:
            params["account_mode"] = self.config.account_mode
        return params

    async def search(
        self,
        pattern: str,
        *,
        sec_type: str = DEFAULT_SEC_TYPE,
        exchange: str | None = None,
        currency: str | None = None,
        by_name: bool = False,
    ) -> list[dict[str, Any]]:
        """Search contracts matching ``pattern``; returns the ``results`` list."""

        body = self._with_account_mode(
            {"symbol": pattern, "secType": sec_type, "exchange": exchange, "currency": currency, "name": by_name}
        )
        payload = await self._request_json("search", "POST", "/contract/search", self.config.search_timeout, json=body)
        if not isinstance(payload, Mapping):
            raise UpstreamBadResponseError(
                "Search response is not an object", operation="search", missing_fields=["results"], present_fields=[]
            )
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise UpstreamBadResponseError(
                "Search 'results' is not a list", operation="search", present_fields=sorted(payload)
            )
        logger.bind(pattern=pattern).info("Upstream search returned {count} contracts", count=len(results))
        return [item for item in results if isinstance(item, Mapping)]

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
    ) -> Any:
        """Fetch historical bars; returns the raw payload for the normalizer."""

        params: dict[str, Any] = {
            "symbol": symbol,
            "timeframe": TimeFrame(timeframe).value,
            "secType": sec_type,
            "exchange": exchange,
            "currency": currency,
        }
        if period is not None:
            params["period"] = Period(period).value
        if start is not None:
            params["start_date"] = ensure_utc(start).isoformat()
        if end is not None:
            params["end_date"] = ensure_utc(end).isoformat()
        self._with_account_mode(params)
        with logger.contextualize(symbol=symbol, timeframe=params["timeframe"]):
            logger.debug("Requesting upstream history {params}", params=params)
            return await self._request_json(
                "history", "GET", "/market-data/history", self.config.history_timeout, params=params
            )

    async def realtime(self, symbol: str) -> dict[str, Any]:
        params = self._with_account_mode({"symbol": symbol})
        payload = await self._request_json(
            "realtime", "GET", "/market-data/realtime", self.config.realtime_timeout, params=params
        )
        if not isinstance(payload, Mapping):
            raise UpstreamBadResponseError("Realtime response is not an object", operation="realtime")
        return dict(payload)

    async def health(self) -> bool:
        """Probe ``/health`` once; never raises."""

        try:
            await self._send("health", "GET", "/health", self.config.health_timeout)
        except UpstreamError as exc:
            logger.warning("Upstream health check failed: {error}", error=exc.message)
            return False
        return True


__all__ = ["UpstreamClient", "classify_response"]
