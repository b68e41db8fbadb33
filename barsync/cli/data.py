"""Data command implementations for the barsync CLI."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import typer

from barsync.core.config import ConfigManager
from barsync.core.exceptions import ConfigurationError, ValidationFailure
from barsync.core.exceptions.handler import error_handler
from barsync.core.logging import configure_logging
from barsync.core.models.market import (
    DEFAULT_CURRENCY,
    DEFAULT_EXCHANGE,
    DEFAULT_SEC_TYPE,
    Period,
    TimeFrame,
)
from barsync.core.models.outcome import Outcome
from barsync.core.models.results import (
    BulkReport,
    CollectionContext,
    CommitReport,
    ValidationReport,
)
from barsync.core.models.window import RequestWindow
from barsync.core.services.market_data import MarketDataService

from .constants import SYSTEM_EXIT_CODE, VALIDATION_EXIT_CODE
from .utils import (
    CLIOptions,
    call_service,
    emit_error,
    fail_on_error,
    get_cli_options,
    parse_datetime,
    prepare_output,
    split_csv,
)

data_app = typer.Typer(help="Market data operations.")

BAR_COLUMNS = ["time", "timestamp", "open", "high", "low", "close", "volume"]
BULK_COLUMNS = [
    "symbol",
    "timeframe",
    "success",
    "records_fetched",
    "records_uploaded",
    "records_skipped",
    "error",
]
VALIDATION_COLUMNS = ["symbol", "timeframe", "record_count", "valid", "issues", "error"]
SEARCH_COLUMNS = ["symbol", "secType", "exchange", "currency", "contractId", "localSymbol", "description"]
SERIES_COLUMNS = ["symbol", "sec_type", "exchange", "currency", "timeframe", "bar_count", "earliest", "latest"]


def register(app: typer.Typer) -> None:
    """Register the data command group on the provided application."""

    app.add_typer(data_app, name="data", help="Fetch, collect, validate and inspect bars")


def get_market_data_service(options: CLIOptions) -> MarketDataService:
    """Factory hook for obtaining a :class:`MarketDataService` instance."""

    config = ConfigManager(options.config_path).get_config()
    if config.logging.file or not config.logging.json:
        configure_logging(
            level=config.logging.level,
            json_format=config.logging.json,
            file_output=bool(config.logging.file),
            file_path=config.logging.file,
        )
    return MarketDataService.from_config(config)


def open_service(ctx: typer.Context) -> Any:
    options = get_cli_options(ctx)
    try:
        return get_market_data_service(options)
    except ConfigurationError as error:
        emit_error(error.message, error.error_code, details=error.details)
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from error


def _render(ctx: typer.Context, rows: list[Mapping[str, object]], columns: list[str], title: str | None = None) -> None:
    formatter, stream, stack, _ = prepare_output(ctx)
    try:
        formatter.render(rows, stream=stream, columns=columns, title=title)
    finally:
        stack.close()


def _context(sec_type: str, exchange: str, currency: str) -> CollectionContext:
    return CollectionContext(sec_type=sec_type, exchange=exchange, currency=currency)


def _collect_symbols(symbols: str | None, symbols_from: Path | None) -> list[str]:
    collected = [value.upper() for value in split_csv(symbols)]
    if symbols_from is not None:
        if not symbols_from.exists() or not symbols_from.is_file():
            msg = f"Symbols file '{symbols_from}' does not exist or is not a file."
            raise OSError(msg)
        try:
            contents = symbols_from.read_text(encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Unable to read symbols file '{symbols_from}': {exc}") from exc
        collected.extend(line.strip().upper() for line in contents.splitlines() if line.strip())

    unique: list[str] = []
    seen: set[str] = set()
    for symbol in collected:
        if symbol not in seen:
            seen.add(symbol)
            unique.append(symbol)
    return unique


def _parse_timeframe(value: str, param_hint: str = "--timeframe") -> TimeFrame:
    try:
        return TimeFrame(value)
    except ValueError as exc:
        allowed = ", ".join(timeframe.value for timeframe in TimeFrame)
        raise typer.BadParameter(
            f"Unsupported timeframe '{value}'. Allowed values: {allowed}", param_hint=param_hint
        ) from exc


def _parse_period(value: str) -> Period:
    try:
        return Period(value.upper())
    except ValueError as exc:
        allowed = ", ".join(period.value for period in Period)
        raise typer.BadParameter(f"Unsupported period '{value}'. Allowed values: {allowed}", param_hint="--period") from exc


def _build_window(period: str | None, start: str | None, end: str | None) -> RequestWindow | None:
    start_at = parse_datetime(start, "--start")
    end_at = parse_datetime(end, "--end")
    if start_at is None:
        if end_at is not None:
            raise typer.BadParameter("--end requires --start", param_hint="--end")
        return RequestWindow.for_period(_parse_period(period)) if period else None
    if period:
        raise typer.BadParameter("Use either --period or --start/--end, not both", param_hint="--period")
    try:
        return RequestWindow.between(start_at, end_at)
    except ValueError as exc:
        raise typer.BadParameter("--start must be on or before --end", param_hint="--start") from exc


@data_app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker symbol to fetch."),
    timeframe: str = typer.Option("1day", "--timeframe", "-t", help="Bar timeframe."),
    period: str | None = typer.Option(None, "--period", "-p", help="Lookback period (1D..2Y)."),
    start: str | None = typer.Option(None, "--start", help="Start date (ISO-8601)."),
    end: str | None = typer.Option(None, "--end", help="End date (ISO-8601)."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Fetch bars, serving from the store and topping up from upstream."""

    tf = _parse_timeframe(timeframe)
    window = _build_window(period, start, end)
    service = open_service(ctx)
    outcome: Outcome = call_service(
        service,
        lambda svc: svc.fetch_history(symbol, tf, window, _context(sec_type, exchange, currency)),
    )
    fail_on_error(outcome)
    data = outcome.data or {}
    typer.echo(
        f"source={data.get('source')} count={data.get('count')} upstream_calls={data.get('upstream_calls')}",
        err=True,
    )
    _render(ctx, list(data.get("bars", [])), BAR_COLUMNS)


@data_app.command("bulk-collect")
def bulk_collect_command(
    ctx: typer.Context,
    symbols: str | None = typer.Option(None, "--symbols", help="Comma separated list of symbols."),
    symbols_from: Path | None = typer.Option(
        None, "--symbols-from", help="Read newline-delimited symbols from a file."
    ),
    timeframes: str = typer.Option("1day", "--timeframes", help="Comma separated list of timeframes."),
    period: str | None = typer.Option(None, "--period", "-p", help="Lookback period; defaults to [bulk] default_period."),
    commit: bool = typer.Option(False, "--commit", help="Persist the collected bars after the run."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Collect bars for every (symbol, timeframe) pair."""

    try:
        collected = _collect_symbols(symbols, symbols_from)
    except OSError as exc:
        emit_error(str(exc), "SYMBOL_FILE_ERROR")
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc
    if not collected:
        emit_error("No symbols supplied for bulk-collect command.", "SYMBOLS_MISSING")
        raise typer.Exit(code=VALIDATION_EXIT_CODE)

    frames = [_parse_timeframe(value, "--timeframes") for value in split_csv(timeframes)]
    if not frames:
        raise typer.BadParameter("At least one timeframe is required", param_hint="--timeframes")
    period_value = _parse_period(period) if period else None
    context = _context(sec_type, exchange, currency)

    async def run(svc: Any) -> tuple[Outcome, Outcome | None]:
        collected_outcome = await svc.bulk_collect(collected, frames, period_value, context)
        if not commit or not collected_outcome.ok:
            return collected_outcome, None
        return collected_outcome, await svc.commit(collected_outcome.data, context)

    service = open_service(ctx)
    outcome, commit_outcome = call_service(service, run)
    fail_on_error(outcome)
    report: BulkReport = outcome.data
    rows = [result.model_dump(exclude={"data", "response_debug"}) for result in report.results]

    if commit_outcome is not None:
        fail_on_error(commit_outcome)
        committed: CommitReport = commit_outcome.data
        by_cell = {(result.symbol, result.timeframe): result for result in committed.results}
        for row in rows:
            result = by_cell.get((row["symbol"], row["timeframe"]))
            if result is not None:
                row["records_uploaded"] = result.records_uploaded
                row["records_skipped"] = result.records_skipped
                if not result.success:
                    row["error"] = result.error

    typer.echo(outcome.message, err=True)
    _render(ctx, rows, BULK_COLUMNS)
    if report.summary.successful_operations == 0:
        raise typer.Exit(code=SYSTEM_EXIT_CODE)


@data_app.command("validate")
def validate_command(
    ctx: typer.Context,
    symbols: str = typer.Option(..., "--symbols", help="Comma separated list of symbols."),
    timeframes: str = typer.Option("1day", "--timeframes", help="Comma separated list of timeframes."),
    start: str | None = typer.Option(None, "--start", help="Start date (ISO-8601)."),
    end: str | None = typer.Option(None, "--end", help="End date (ISO-8601)."),
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero when any series fails validation."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Check stored bars for OHLC violations, zero volume and time gaps."""

    symbol_list = [value.upper() for value in split_csv(symbols)]
    frames = [_parse_timeframe(value, "--timeframes") for value in split_csv(timeframes)]
    start_at = parse_datetime(start, "--start")
    end_at = parse_datetime(end, "--end")
    context = _context(sec_type, exchange, currency)

    service = open_service(ctx)
    outcome: Outcome = call_service(
        service, lambda svc: svc.validate(symbol_list, frames, start_at, end_at, context)
    )
    fail_on_error(outcome)
    report: ValidationReport = outcome.data
    rows = [
        verdict.model_dump()
        for per_symbol in report.results.values()
        for verdict in per_symbol.values()
    ]
    typer.echo(outcome.message, err=True)
    _render(ctx, rows, VALIDATION_COLUMNS)
    if strict and (report.summary.invalid_count or report.summary.error_count):
        failed = [
            f"{verdict.symbol} {verdict.timeframe}"
            for per_symbol in report.results.values()
            for verdict in per_symbol.values()
            if verdict.error or not verdict.valid
        ]
        finding = ValidationFailure(f"{len(failed)} series failed validation", issues=failed)
        fail_on_error(error_handler.to_outcome(finding, "validate"))


@data_app.command("search")
def search_command(
    ctx: typer.Context,
    pattern: str = typer.Argument(..., help="Symbol or name pattern."),
    sec_type: str | None = typer.Option(None, "--sec-type", help="Security type filter."),
    exchange: str | None = typer.Option(None, "--exchange", help="Exchange filter."),
    currency: str | None = typer.Option(None, "--currency", help="Currency filter."),
    by_name: bool = typer.Option(False, "--by-name", help="Match company names instead of symbols."),
) -> None:
    """Search upstream contracts and remember them as instruments."""

    service = open_service(ctx)
    outcome: Outcome = call_service(
        service,
        lambda svc: svc.search(pattern, sec_type=sec_type, exchange=exchange, currency=currency, by_name=by_name),
    )
    fail_on_error(outcome)
    _render(ctx, list(outcome.data.get("results", [])), SEARCH_COLUMNS)


@data_app.command("latest")
def latest_command(
    ctx: typer.Context,
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker symbol."),
    timeframe: str = typer.Option("1day", "--timeframe", "-t", help="Bar timeframe."),
    limit: int = typer.Option(1, "--limit", "-n", min=1, help="Number of bars to show."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Show the newest stored bars without contacting upstream."""

    tf = _parse_timeframe(timeframe)
    service = open_service(ctx)
    outcome: Outcome = call_service(
        service, lambda svc: svc.latest(symbol, tf, limit, _context(sec_type, exchange, currency))
    )
    fail_on_error(outcome)
    _render(ctx, list(outcome.data.get("bars", [])), BAR_COLUMNS)


@data_app.command("snapshot")
def snapshot_command(
    ctx: typer.Context,
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker symbol."),
    timeframe: str = typer.Option("1min", "--timeframe", "-t", help="Bar timeframe to update."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Merge the current real-time quote into the newest stored bar."""

    tf = _parse_timeframe(timeframe)
    service = open_service(ctx)
    outcome: Outcome = call_service(
        service, lambda svc: svc.stream_snapshot(symbol, tf, _context(sec_type, exchange, currency))
    )
    fail_on_error(outcome)
    typer.echo(outcome.message, err=True)
    _render(ctx, [outcome.data["bar"]], BAR_COLUMNS)


@data_app.command("series")
def series_command(ctx: typer.Context) -> None:
    """List stored series with their bar counts and time span."""

    service = open_service(ctx)
    outcome: Outcome = call_service(service, lambda svc: svc.series())
    fail_on_error(outcome)
    _render(ctx, list(outcome.data.get("series", [])), SERIES_COLUMNS)


@data_app.command("stats")
def stats_command(
    ctx: typer.Context,
    symbol: str | None = typer.Option(None, "--symbol", "-s", help="Restrict counts to one symbol."),
) -> None:
    """Show instrument, bar and series counts."""

    service = open_service(ctx)
    outcome: Outcome = call_service(service, lambda svc: svc.stats(symbol))
    fail_on_error(outcome)
    _render(ctx, [outcome.data], ["symbol", "instruments", "bars", "series"])


@data_app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Check the store and the upstream gateway."""

    service = open_service(ctx)
    outcome: Outcome = call_service(service, lambda svc: svc.health())
    fail_on_error(outcome)
    _render(ctx, [outcome.data], ["healthy", "store", "upstream"])
    if not outcome.data.get("healthy"):
        raise typer.Exit(code=SYSTEM_EXIT_CODE)
