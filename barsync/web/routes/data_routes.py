"""Market data routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE, Period, TimeFrame
from barsync.core.models.results import BulkOperationResult, BulkReport, CollectionContext
from barsync.core.models.window import RequestWindow
from barsync.web.models import BulkCollectRequest, CommitRequest, SearchRequest, ValidateRequest
from barsync.web.utils import get_service, outcome_response

router = APIRouter()


def _context(sec_type: str, exchange: str, currency: str) -> CollectionContext:
    return CollectionContext(sec_type=sec_type, exchange=exchange, currency=currency)


@router.get("/history/{symbol}")
async def get_history(
    request: Request,
    symbol: str,
    timeframe: TimeFrame = Query(TimeFrame.DAY_1, description="Bar timeframe"),
    period: Period | None = Query(None, description="Lookback period (ignored when start is given)"),
    start: datetime | None = Query(None, description="Window start (ISO-8601)"),
    end: datetime | None = Query(None, description="Window end (ISO-8601)"),
    sec_type: str = Query(DEFAULT_SEC_TYPE),
    exchange: str = Query(DEFAULT_EXCHANGE),
    currency: str = Query(DEFAULT_CURRENCY),
) -> JSONResponse:
    """Bars for one series, served from the store and topped up from upstream.

    - **source** in the response tells whether upstream was consulted
    - **degraded** is true when stored bars were served because the top-up failed
    """
    window = None
    if start is not None:
        window = RequestWindow.between(start, end)
    elif period is not None:
        window = RequestWindow.for_period(period)
    outcome = await get_service(request).fetch_history(symbol, timeframe, window, _context(sec_type, exchange, currency))
    return outcome_response(request, outcome)


@router.get("/latest/{symbol}")
async def get_latest(
    request: Request,
    symbol: str,
    timeframe: TimeFrame = Query(TimeFrame.DAY_1),
    limit: int = Query(1, ge=1, le=10000),
    sec_type: str = Query(DEFAULT_SEC_TYPE),
    exchange: str = Query(DEFAULT_EXCHANGE),
    currency: str = Query(DEFAULT_CURRENCY),
) -> JSONResponse:
    """Newest stored bars, newest first. Never contacts upstream."""
    outcome = await get_service(request).latest(symbol, timeframe, limit, _context(sec_type, exchange, currency))
    return outcome_response(request, outcome)


@router.post("/bulk-collect")
async def bulk_collect(body: BulkCollectRequest, request: Request) -> JSONResponse:
    """Fetch every (symbol, timeframe) cell; optionally persist the results."""
    service = get_service(request)
    context = body.context()
    outcome = await service.bulk_collect(body.symbols, body.timeframes, body.period, context)
    if not outcome.ok:
        return outcome_response(request, outcome)
    report: BulkReport = outcome.data
    payload = report.to_payload(include_data=body.include_data)
    if body.commit:
        committed = await service.commit(report, context)
        if not committed.ok:
            return outcome_response(request, committed)
        payload["commit"] = committed.data.model_dump(mode="json")
    return outcome_response(request, outcome, payload)


@router.post("/commit")
async def commit(body: CommitRequest, request: Request) -> JSONResponse:
    """Persist cells returned by an earlier bulk-collect call with include_data."""
    cells = [BulkOperationResult.model_validate(result) for result in body.results]
    outcome = await get_service(request).commit(cells, body.context())
    return outcome_response(request, outcome)


@router.post("/validate")
async def validate(body: ValidateRequest, request: Request) -> JSONResponse:
    outcome = await get_service(request).validate(
        body.symbols, body.timeframes, body.start, body.end, body.context()
    )
    return outcome_response(request, outcome)


@router.post("/search")
async def search(body: SearchRequest, request: Request) -> JSONResponse:
    """Search upstream contracts; matches are remembered as instruments."""
    outcome = await get_service(request).search(
        body.pattern,
        sec_type=body.sec_type,
        exchange=body.exchange,
        currency=body.currency,
        by_name=body.by_name,
    )
    return outcome_response(request, outcome)


@router.get("/realtime/{symbol}")
async def realtime(request: Request, symbol: str) -> JSONResponse:
    outcome = await get_service(request).realtime(symbol)
    return outcome_response(request, outcome)


@router.post("/stream/{symbol}")
async def stream_snapshot(
    request: Request,
    symbol: str,
    timeframe: TimeFrame = Query(TimeFrame.MINUTE_1),
    sec_type: str = Query(DEFAULT_SEC_TYPE),
    exchange: str = Query(DEFAULT_EXCHANGE),
    currency: str = Query(DEFAULT_CURRENCY),
) -> JSONResponse:
    """Merge the current quote into the newest stored bar of the series."""
    outcome = await get_service(request).stream_snapshot(symbol, timeframe, _context(sec_type, exchange, currency))
    return outcome_response(request, outcome)


@router.get("/series")
async def series(request: Request) -> JSONResponse:
    outcome = await get_service(request).series()
    return outcome_response(request, outcome)


@router.get("/stats")
async def stats(request: Request, symbol: str | None = Query(None)) -> JSONResponse:
    outcome = await get_service(request).stats(symbol)
    return outcome_response(request, outcome)
