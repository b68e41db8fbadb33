"""Structured results returned across the service boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OutcomeKind(str, Enum):
    """Classification of a boundary operation result."""

    OK = "ok"
    NO_DATA = "no_data"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_BAD_RESPONSE = "upstream_bad_response"
    VALIDATION_FAILURE = "validation_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    INVALID_REQUEST = "invalid_request"
    INTERNAL_ERROR = "internal_error"


class Outcome(BaseModel):
    """Result envelope: ``kind`` and ``message`` always set, ``data`` on success."""

    kind: OutcomeKind = OutcomeKind.OK
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @classmethod
    def success(cls, data: Any, message: str = "", **context: Any) -> "Outcome":
        return cls(kind=OutcomeKind.OK, message=message, context=context, data=data)

    @classmethod
    def failure(cls, kind: OutcomeKind, message: str, **context: Any) -> "Outcome":
        return cls(kind=kind, message=message, context=context)

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["ok"] = self.ok
        return payload


__all__ = ["Outcome", "OutcomeKind"]
