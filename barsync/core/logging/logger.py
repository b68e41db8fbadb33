"""Structured logging with trace ids and per-task context."""

from __future__ import annotations

import json
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import IO, TYPE_CHECKING, Any, Iterator
from uuid import uuid4

from loguru import logger

from barsync.core.logging.config import LogConfig

if TYPE_CHECKING:
    from loguru import Logger

_TRACE_ID_VAR: ContextVar[str | None] = ContextVar("barsync_trace_id", default=None)
_CONTEXT_VAR: ContextVar[dict[str, Any]] = ContextVar("barsync_log_context", default={})

# Promoted to top-level keys of every JSON line.
_PROMOTED_KEYS = ("symbol", "timeframe", "job")

_TEXT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[trace_id]} | {message}\n"


def _ensure_trace_id() -> str:
    trace_id = _TRACE_ID_VAR.get()
    if trace_id is None:
        trace_id = uuid4().hex
        _TRACE_ID_VAR.set(trace_id)
    return trace_id


def _patch_record(record: dict[str, Any]) -> None:
    extra = record["extra"]
    if not extra.get("trace_id"):
        extra["trace_id"] = _ensure_trace_id()
    for key, value in _CONTEXT_VAR.get().items():
        if extra.get(key) is None:
            extra[key] = value
    for key in _PROMOTED_KEYS:
        extra.setdefault(key, None)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _format_payload(record: dict[str, Any]) -> dict[str, Any]:
    extra = record["extra"]
    context = {k: v for k, v in extra.items() if k != "trace_id" and k not in _PROMOTED_KEYS}
    payload: dict[str, Any] = {
        "timestamp": record["time"].astimezone(UTC).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "trace_id": extra.get("trace_id"),
    }
    for key in _PROMOTED_KEYS:
        payload[key] = extra.get(key)
    if context:
        payload["context"] = context
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    return payload


class _StreamJsonSink:
    """Sink writing one JSON object per line to a text stream."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream

    def __call__(self, message: Any) -> None:
        # resolved per call so redirected stderr is honoured
        stream = self._stream or sys.stderr
        stream.write(json.dumps(_format_payload(message.record), default=_json_default))
        stream.write("\n")
        stream.flush()


class _StreamTextSink:
    """Sink writing loguru-formatted text lines."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream

    def __call__(self, message: Any) -> None:
        stream = self._stream or sys.stderr
        stream.write(str(message))
        stream.flush()


class _FileJsonSink:
    """Sink appending JSON lines to a file path."""

    def __init__(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._path = path

    def __call__(self, message: Any) -> None:
        with open(self._path, "a", encoding="utf-8") as file:
            file.write(json.dumps(_format_payload(message.record), default=_json_default))
            file.write("\n")


def _configure_from_config(config: LogConfig) -> None:
    handlers: list[dict[str, Any]] = []
    if config.console_output:
        # stderr by default; stdout belongs to CLI output
        if config.json_format:
            handlers.append({"sink": _StreamJsonSink(config.console_stream), "level": config.level.upper()})
        else:
            handlers.append(
                {
                    "sink": _StreamTextSink(config.console_stream),
                    "level": config.level.upper(),
                    "format": _TEXT_FORMAT,
                    "colorize": False,
                }
            )
    if config.file_output and config.file_path:
        handlers.append({"sink": _FileJsonSink(config.file_path), "level": config.level.upper()})
    logger.configure(handlers=handlers, patcher=_patch_record, extra=dict(config.extra))


def configure_logging(level: str = "INFO", **kwargs: Any) -> None:
    """Configure structured logging with the provided level and options."""

    _configure_from_config(LogConfig(level=level, **kwargs))


class StructuredLogger:
    """Owns a logging configuration and exposes trace-aware helpers."""

    def __init__(self, config: LogConfig | None = None) -> None:
        self.config = config or LogConfig()
        _configure_from_config(self.config)

    @property
    def logger(self) -> "Logger":
        return logger

    def configure(self, **kwargs: Any) -> None:
        """Update logger configuration at runtime."""

        self.config = self.config.model_copy(update=kwargs)
        _configure_from_config(self.config)

    @contextmanager
    def context(self, *, trace_id: str | None = None, **extra: Any) -> Iterator[str]:
        with log_context(trace_id=trace_id, **extra) as active_trace:
            yield active_trace


def get_logger(name: str | None = None) -> "Logger":
    """Return the global logger, bound to ``name`` when given."""

    if name:
        return logger.bind(logger_name=name)
    return logger


def bind(**kwargs: Any) -> "Logger":
    return logger.bind(**kwargs)


@contextmanager
def log_context(*, trace_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Propagate a trace id and extra fields to every log call in the block.

    Context is stored in ``contextvars`` so concurrent asyncio tasks keep
    their own values.
    """

    context_token = _CONTEXT_VAR.set({**_CONTEXT_VAR.get(), **extra})
    active_trace = trace_id or _TRACE_ID_VAR.get() or uuid4().hex
    trace_token = _TRACE_ID_VAR.set(active_trace)
    try:
        yield active_trace
    finally:
        _TRACE_ID_VAR.reset(trace_token)
        _CONTEXT_VAR.reset(context_token)


def current_trace_id() -> str:
    return _ensure_trace_id()


configure_logging()


__all__ = [
    "StructuredLogger",
    "bind",
    "configure_logging",
    "current_trace_id",
    "get_logger",
    "log_context",
    "logger",
]
