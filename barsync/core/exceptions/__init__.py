"""Exception handling module."""

from barsync.core.exceptions.base import (
    BarSyncError,
    ConfigurationError,
    PersistenceError,
    UpstreamBadResponseError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    ValidationFailure,
)
from barsync.core.exceptions.codes import ErrorCode
from barsync.core.exceptions.handler import ErrorHandler, classify_error, error_handler

__all__ = [
    "BarSyncError",
    "ConfigurationError",
    "PersistenceError",
    "UpstreamError",
    "UpstreamBadResponseError",
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    "ValidationFailure",
    "ErrorCode",
    "ErrorHandler",
    "classify_error",
    "error_handler",
]
