"""Translate exceptions into boundary outcomes and log them once."""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import ValidationError

from barsync.core.exceptions.base import (
    BarSyncError,
    ConfigurationError,
    PersistenceError,
    UpstreamBadResponseError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationFailure,
)
from barsync.core.models.outcome import Outcome, OutcomeKind

_KIND_BY_ERROR: tuple[tuple[type[BaseException], OutcomeKind], ...] = (
    (UpstreamUnavailableError, OutcomeKind.UPSTREAM_UNAVAILABLE),
    (UpstreamTimeoutError, OutcomeKind.UPSTREAM_TIMEOUT),
    (UpstreamBadResponseError, OutcomeKind.UPSTREAM_BAD_RESPONSE),
    (PersistenceError, OutcomeKind.PERSISTENCE_FAILURE),
    (ValidationFailure, OutcomeKind.VALIDATION_FAILURE),
    (ConfigurationError, OutcomeKind.INVALID_REQUEST),
    (ValidationError, OutcomeKind.INVALID_REQUEST),
    (ValueError, OutcomeKind.INVALID_REQUEST),
)


def classify_error(error: BaseException) -> OutcomeKind:
    """Return the outcome kind matching ``error``."""
    for error_type, kind in _KIND_BY_ERROR:
        if isinstance(error, error_type):
            return kind
    return OutcomeKind.INTERNAL_ERROR


class ErrorHandler:
    """Converts exceptions raised below the boundary into ``Outcome`` values."""

    def to_outcome(self, error: BaseException, operation: str, **context: Any) -> Outcome:
        kind = classify_error(error)
        payload_context: dict[str, Any] = {"operation": operation, **context}
        if isinstance(error, BarSyncError):
            payload_context["error"] = error.to_payload()
            message = error.message
        else:
            payload_context["error"] = {"type": type(error).__name__, "message": str(error)}
            message = str(error) or type(error).__name__
        self.log_error(error, kind, payload_context)
        return Outcome.failure(kind, message, **payload_context)

    def no_data(self, message: str, cause: BaseException | None = None, **context: Any) -> Outcome:
        """Explicit "no data" outcome, optionally recording what caused it."""
        if cause is not None:
            context["cause"] = cause.to_payload() if isinstance(cause, BarSyncError) else str(cause)
            context["cause_kind"] = classify_error(cause).value
        logger.bind(**_loggable(context)).warning(message)
        return Outcome.failure(OutcomeKind.NO_DATA, message, **context)

    @staticmethod
    def log_error(error: BaseException, kind: OutcomeKind, context: dict[str, Any]) -> None:
        bound = logger.bind(error_type=type(error).__name__, outcome=kind.value, **_loggable(context))
        if kind is OutcomeKind.INTERNAL_ERROR:
            bound.opt(exception=error).error("Unhandled error in {operation}", operation=context.get("operation"))
        else:
            bound.warning("{operation} failed: {error}", operation=context.get("operation"), error=str(error))


def _loggable(context: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in context.items() if key not in {"error", "cause"}}


error_handler = ErrorHandler()


__all__ = ["ErrorHandler", "classify_error", "error_handler"]
