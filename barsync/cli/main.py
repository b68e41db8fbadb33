"""Main entry point for the barsync command line interface."""

from __future__ import annotations

from pathlib import Path

import typer

from barsync.core.logging import configure_logging

from .data import register as register_data_commands
from .formatters import create_formatter
from .schedule import register as register_schedule_commands


def create_app() -> typer.Typer:
    """Create a Typer application instance for barsync."""

    app = typer.Typer(add_completion=False, help="barsync market data command line interface")

    @app.callback()
    def main(
        ctx: typer.Context,
        format: str = typer.Option(
            "table",
            "--format",
            "-f",
            help="Output format (table or jsonl).",
            show_default=True,
        ),
        output: Path | None = typer.Option(
            None,
            "--output",
            "-o",
            help="Write output to a file instead of stdout.",
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            help="Log level; defaults to the configured [logging] level.",
        ),
        no_color: bool = typer.Option(
            False,
            "--no-color",
            help="Disable colorized output for table format.",
        ),
        config: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="Path to a TOML configuration file.",
            envvar="BARSYNC_CONFIG",
        ),
    ) -> None:
        ctx.ensure_object(dict)
        normalized_format = format.strip().lower()
        try:
            create_formatter(normalized_format, no_color=no_color)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--format") from exc

        ctx.obj.update(
            {
                "format": normalized_format,
                "output_path": output,
                "log_level": log_level.upper() if log_level else None,
                "no_color": no_color,
                "config_path": config,
            }
        )
        configure_logging(level=(log_level or "INFO").upper())

    register_data_commands(app)
    register_schedule_commands(app)
    return app


app = create_app()
