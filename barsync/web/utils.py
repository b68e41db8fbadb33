"""Helpers shared by the HTTP routes."""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from barsync.core.models.outcome import Outcome, OutcomeKind
from barsync.web.models import APIResponse, ErrorResponse

STATUS_CODES: dict[OutcomeKind, int] = {
    OutcomeKind.OK: 200,
    OutcomeKind.NO_DATA: 404,
    OutcomeKind.INVALID_REQUEST: 400,
    OutcomeKind.VALIDATION_FAILURE: 422,
    OutcomeKind.UPSTREAM_BAD_RESPONSE: 502,
    OutcomeKind.UPSTREAM_UNAVAILABLE: 503,
    OutcomeKind.UPSTREAM_TIMEOUT: 504,
    OutcomeKind.PERSISTENCE_FAILURE: 500,
    OutcomeKind.INTERNAL_ERROR: 500,
}


def get_request_id(request: Request) -> str | None:
    """Request id from the ``X-Request-ID`` header or the tracing middleware."""
    return request.headers.get("X-Request-ID") or getattr(request.state, "request_id", None)


def get_service(request: Request) -> Any:
    return request.app.state.market_data


def outcome_response(request: Request, outcome: Outcome, data: Any = None) -> JSONResponse:
    """Render an outcome, mapping its kind to an HTTP status code.

    ``data`` overrides ``outcome.data`` for routes that reshape the payload.
    """

    request_id = get_request_id(request)
    if outcome.ok:
        body: Any = APIResponse(
            success=True,
            kind=outcome.kind.value,
            data=outcome.data if data is None else data,
            message=outcome.message or None,
            request_id=request_id,
        )
    else:
        body = ErrorResponse(
            kind=outcome.kind.value,
            message=outcome.message,
            details=outcome.context or None,
            request_id=request_id,
        )
    return JSONResponse(status_code=STATUS_CODES.get(outcome.kind, 500), content=jsonable_encoder(body))


__all__ = ["STATUS_CODES", "get_request_id", "get_service", "outcome_response"]
