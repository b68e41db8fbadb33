"""Background collection commands."""

from __future__ import annotations

import asyncio
from typing import Any

import typer
from loguru import logger

from barsync.core.models.market import DEFAULT_CURRENCY, DEFAULT_EXCHANGE, DEFAULT_SEC_TYPE
from barsync.core.models.results import ActiveSetup
from barsync.core.services.collaborators import StaticSetupSource

from .constants import SYSTEM_EXIT_CODE, VALIDATION_EXIT_CODE
from .data import _parse_timeframe, _render, open_service
from .utils import call_service, emit_error, split_csv

schedule_app = typer.Typer(help="Background data collection.")

STATUS_COLUMNS = ["name", "state", "interval", "runs", "failures", "last_run_at", "last_error"]


def register(app: typer.Typer) -> None:
    app.add_typer(schedule_app, name="schedule", help="Keep configured series fresh in the background")


def _setups(symbols: str, timeframes: str, sec_type: str, exchange: str, currency: str) -> list[ActiveSetup]:
    symbol_list = [value.upper() for value in split_csv(symbols)]
    frames = [_parse_timeframe(value, "--timeframes").value for value in split_csv(timeframes)]
    if not symbol_list:
        emit_error("No symbols supplied for schedule command.", "SYMBOLS_MISSING")
        raise typer.Exit(code=VALIDATION_EXIT_CODE)
    if not frames:
        raise typer.BadParameter("At least one timeframe is required", param_hint="--timeframes")
    return [
        ActiveSetup(
            id=index,
            symbol=symbol,
            timeframes=list(frames),
            sec_type=sec_type,
            exchange=exchange,
            currency=currency,
        )
        for index, symbol in enumerate(symbol_list, start=1)
    ]


@schedule_app.command("run")
def run_command(
    ctx: typer.Context,
    symbols: str = typer.Option(..., "--symbols", help="Comma separated list of symbols to keep fresh."),
    timeframes: str = typer.Option("1day", "--timeframes", help="Comma separated list of timeframes."),
    duration: float = typer.Option(
        0.0, "--duration", min=0.0, help="Stop after this many seconds; 0 runs until interrupted."
    ),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Run the collection and keep-alive jobs in the foreground."""

    setups = _setups(symbols, timeframes, sec_type, exchange, currency)

    async def run(svc: Any) -> dict[str, dict[str, Any]]:
        scheduler = svc.build_scheduler(StaticSetupSource(setups))
        scheduler.start_all()
        try:
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await scheduler.stop_all()
        return scheduler.status()

    service = open_service(ctx)
    try:
        status = call_service(service, run)
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
        return
    _render(ctx, list(status.values()), STATUS_COLUMNS)


@schedule_app.command("once")
def once_command(
    ctx: typer.Context,
    symbols: str = typer.Option(..., "--symbols", help="Comma separated list of symbols."),
    timeframes: str = typer.Option("1day", "--timeframes", help="Comma separated list of timeframes."),
    sec_type: str = typer.Option(DEFAULT_SEC_TYPE, "--sec-type", help="Security type."),
    exchange: str = typer.Option(DEFAULT_EXCHANGE, "--exchange", help="Exchange code."),
    currency: str = typer.Option(DEFAULT_CURRENCY, "--currency", help="Currency code."),
) -> None:
    """Run a single data collection pass and report its counts."""

    setups = _setups(symbols, timeframes, sec_type, exchange, currency)

    async def run(svc: Any) -> dict[str, Any]:
        return await svc.build_scheduler(StaticSetupSource(setups)).run_data_collection()

    service = open_service(ctx)
    stats = call_service(service, run)
    _render(ctx, [stats], ["total_setups", "total_timeframes", "successful", "failed"])
    if stats["total_timeframes"] and not stats["successful"]:
        raise typer.Exit(code=SYSTEM_EXIT_CODE)
