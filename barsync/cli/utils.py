"""Helpers shared across CLI commands."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO, TypeVar

import typer

from barsync.core.models.outcome import Outcome, OutcomeKind

from .constants import (
    DATA_QUALITY_EXIT_CODE,
    NO_DATA_EXIT_CODE,
    PROVIDER_EXIT_CODE,
    SYSTEM_EXIT_CODE,
    VALIDATION_EXIT_CODE,
)
from .formatters import OutputFormatter, create_formatter

T = TypeVar("T")

_EXIT_CODES: dict[OutcomeKind, int] = {
    OutcomeKind.INVALID_REQUEST: VALIDATION_EXIT_CODE,
    OutcomeKind.VALIDATION_FAILURE: DATA_QUALITY_EXIT_CODE,
    OutcomeKind.UPSTREAM_UNAVAILABLE: PROVIDER_EXIT_CODE,
    OutcomeKind.UPSTREAM_TIMEOUT: PROVIDER_EXIT_CODE,
    OutcomeKind.UPSTREAM_BAD_RESPONSE: PROVIDER_EXIT_CODE,
    OutcomeKind.NO_DATA: NO_DATA_EXIT_CODE,
}


@dataclass(slots=True)
class CLIOptions:
    """Resolved options derived from the Typer context."""

    format: str = "table"
    output_path: Path | None = None
    no_color: bool = False
    config_path: Path | None = None


def get_cli_options(ctx: typer.Context) -> CLIOptions:
    ctx.ensure_object(dict)
    data = ctx.obj or {}
    return CLIOptions(
        format=str(data.get("format", "table")),
        output_path=data.get("output_path"),
        no_color=bool(data.get("no_color", False)),
        config_path=data.get("config_path"),
    )


def prepare_output(ctx: typer.Context) -> tuple[OutputFormatter, TextIO, ExitStack, CLIOptions]:
    """Resolve formatter and writable stream for the current command."""

    options = get_cli_options(ctx)
    try:
        formatter = create_formatter(options.format, no_color=options.no_color)
    except ValueError as exc:
        emit_error(str(exc), "INVALID_FORMAT")
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc

    stack = ExitStack()
    stream: TextIO
    if options.output_path is not None:
        try:
            stream = stack.enter_context(open(options.output_path, "w", encoding="utf-8"))
        except OSError as exc:
            stack.close()
            emit_error(f"Unable to open '{options.output_path}': {exc}", "OUTPUT_WRITE_ERROR")
            raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc
    else:
        stream = sys.stdout
    return formatter, stream, stack, options


def emit_error(message: str, code: str, *, details: Mapping[str, object] | None = None) -> None:
    """Print a structured error payload to stderr."""

    payload: dict[str, object] = {"code": code, "message": message}
    if details:
        payload["details"] = _sanitize_details(details)
    typer.echo(json.dumps(payload, ensure_ascii=False, default=str), err=True)


def _sanitize_details(details: Mapping[str, object]) -> Mapping[str, object]:
    sanitized: dict[str, object] = {}
    for key, value in details.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            sanitized[key] = value
        elif isinstance(value, Mapping):
            sanitized[key] = _sanitize_details(value)
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            sanitized[key] = [str(item) for item in value]
        else:
            sanitized[key] = str(value)
    return sanitized


def exit_code_for(outcome: Outcome) -> int:
    if outcome.ok:
        return 0
    return _EXIT_CODES.get(outcome.kind, SYSTEM_EXIT_CODE)


def fail_on_error(outcome: Outcome) -> None:
    """Report a failed outcome on stderr and exit with its mapped code."""

    if outcome.ok:
        return
    emit_error(outcome.message, outcome.kind.value.upper(), details=outcome.context)
    raise typer.Exit(code=exit_code_for(outcome))


def call_service(service: Any, operation: Callable[[Any], Awaitable[T]]) -> T:
    """Run one async service operation, closing the service afterwards."""

    async def runner() -> T:
        try:
            return await operation(service)
        finally:
            close = getattr(service, "close", None)
            if close is not None:
                await close()

    return asyncio.run(runner())


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_datetime(value: str | None, param_hint: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid date '{value}', expected ISO-8601", param_hint=param_hint) from exc


__all__ = [
    "CLIOptions",
    "call_service",
    "emit_error",
    "exit_code_for",
    "fail_on_error",
    "get_cli_options",
    "parse_datetime",
    "prepare_output",
    "split_csv",
]
