"""FastAPI application factory."""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from barsync import __version__
from barsync.core.config import ConfigManager
from barsync.core.exceptions.base import BarSyncError
from barsync.core.exceptions.handler import error_handler
from barsync.core.logging import log_context
from barsync.core.services.market_data import MarketDataService
from barsync.web.models import ErrorResponse
from barsync.web.routes import data_router, health_router, metrics_router
from barsync.web.utils import get_request_id, outcome_response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the market data service unless one was injected, and close what we opened."""

    owned = False
    if getattr(app.state, "market_data", None) is None:
        config = ConfigManager().get_config()
        app.state.market_data = MarketDataService.from_config(config)
        owned = True
    app.state.started_at = time.monotonic()
    logger.info("barsync API started")
    try:
        yield
    finally:
        if owned:
            await app.state.market_data.close()
            app.state.market_data = None
        logger.info("barsync API stopped")


def create_app(service: MarketDataService | None = None) -> FastAPI:
    """Create the FastAPI application, optionally around an existing service."""

    app = FastAPI(
        title="barsync",
        description="Store-first OHLCV bar service backed by an upstream market data gateway",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.market_data = service
    app.state.started_at = time.monotonic()

    _setup_middleware(app)
    _setup_routes(app)
    _setup_exception_handlers(app)
    return app


def _setup_middleware(app: FastAPI) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def trace_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        with log_context(trace_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _setup_routes(app: FastAPI) -> None:
    app.include_router(data_router, prefix="/api/v1/market-data", tags=["market-data"])
    app.include_router(health_router, prefix="/api/v1", tags=["health"])
    app.include_router(metrics_router)


def _setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ErrorResponse(
            kind="invalid_request",
            message="Request validation failed",
            details={"errors": exc.errors()},
            request_id=get_request_id(request),
        )
        return JSONResponse(status_code=422, content=jsonable_encoder(body))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        body = ErrorResponse(
            kind="http_error",
            message=str(exc.detail),
            details={"status_code": exc.status_code},
            request_id=get_request_id(request),
        )
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))

    @app.exception_handler(BarSyncError)
    @app.exception_handler(ValueError)
    async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        outcome = error_handler.to_outcome(exc, f"{request.method} {request.url.path}")
        return outcome_response(request, outcome)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        outcome = error_handler.to_outcome(exc, f"{request.method} {request.url.path}")
        return outcome_response(request, outcome)


__all__ = ["create_app", "lifespan"]
