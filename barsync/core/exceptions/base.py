"""barsync core exception hierarchy."""

from __future__ import annotations

from typing import Any

from barsync.core.exceptions.codes import ErrorCode


class BarSyncError(Exception):
    """Base class for every error raised by barsync."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | str = ErrorCode.GENERAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        """Initialise the error.

        Args:
            message: human readable message
            error_code: stable error code
            details: extra context for logs and payloads
        """
        super().__init__(message)
        self.message = message
        self.error_code = ErrorCode(error_code).value
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Return a serializable payload representing the error."""

        return {
            "code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }


class ConfigurationError(BarSyncError):
    """Invalid configuration value."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class UpstreamError(BarSyncError):
    """Failure talking to the upstream market data gateway."""

    def __init__(
        self,
        message: str,
        operation: str,
        error_code: ErrorCode | str = ErrorCode.UPSTREAM_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details.setdefault("operation", operation)
        super().__init__(message, error_code, super_details)
        self.operation = operation


class UpstreamUnavailableError(UpstreamError):
    """Upstream refused the connection or reported itself temporarily unavailable."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if status_code is not None:
            super_details["status_code"] = status_code
        super().__init__(message, operation, ErrorCode.UPSTREAM_UNAVAILABLE, super_details)
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded its timeout."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: str,
        timeout: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if timeout is not None:
            super_details["timeout"] = timeout
        super().__init__(message, operation, ErrorCode.UPSTREAM_TIMEOUT, super_details)
        self.timeout = timeout


class UpstreamBadResponseError(UpstreamError):
    """Upstream answered with a malformed, empty or unrecognized payload."""

    def __init__(
        self,
        message: str,
        operation: str = "normalize",
        missing_fields: list[str] | None = None,
        present_fields: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if missing_fields:
            super_details["missing_fields"] = list(missing_fields)
        if present_fields is not None:
            super_details["present_fields"] = list(present_fields)
        super().__init__(message, operation, ErrorCode.UPSTREAM_BAD_RESPONSE, super_details)
        self.missing_fields = list(missing_fields or [])
        self.present_fields = list(present_fields or [])


class ValidationFailure(BarSyncError):
    """A data-quality finding; not a system fault."""

    def __init__(
        self,
        message: str,
        issues: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if issues:
            super_details["issues"] = list(issues)
        super().__init__(message, ErrorCode.VALIDATION_FAILURE, super_details)
        self.issues = list(issues or [])


class PersistenceError(BarSyncError):
    """The store could not complete a read or write."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if operation:
            super_details["operation"] = operation
        super().__init__(message, ErrorCode.PERSISTENCE_FAILURE, super_details)
        self.operation = operation


__all__ = [
    "BarSyncError",
    "ConfigurationError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "UpstreamTimeoutError",
    "UpstreamBadResponseError",
    "ValidationFailure",
    "PersistenceError",
]
