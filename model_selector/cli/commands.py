"""CLI commands for model-selector."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from model_selector import __version__

if TYPE_CHECKING:
    from model_selector.config.schema import Config
    from model_selector.selection.selector import ModelSelector, SelectionOutcome

app = typer.Typer(
    name="model-selector",
    help="model-selector - pick the model with the most usable quota",
    no_args_is_help=True,
)
console = Console()

_LEVEL_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}


def version_callback(value: bool) -> None:
    if value:
        console.print(f"model-selector v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (default ~/.model-selector/config.json).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output to stderr."),
) -> None:
    """model-selector entrypoint."""
    del version
    ctx.obj = {"config_path": config, "verbose": verbose}


def _configure_logging(config: "Config", verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")
    if config.debug_log.enabled:
        path = config.debug_log_path
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(path), level="DEBUG", rotation="1 MB", retention=3)


def _print_notification(level: str, message: str) -> None:
    style = _LEVEL_STYLES.get(level, "white")
    console.print(message, style=style, markup=False)


def _build_selector(ctx: typer.Context) -> "ModelSelector":
    from model_selector.config.loader import load_config
    from model_selector.host import FileModelHost
    from model_selector.selection.cooldown import CooldownStore
    from model_selector.selection.selector import ModelSelector
    from model_selector.usage.aggregator import UsageAggregator

    options = ctx.obj or {}
    config = load_config(options.get("config_path"))
    _configure_logging(config, bool(options.get("verbose")))
    return ModelSelector(
        config,
        UsageAggregator.from_config(config),
        CooldownStore(),
        FileModelHost(),
        on_notify=_print_notification,
    )


def _finish(outcome: "SelectionOutcome") -> None:
    if not outcome.success:
        raise typer.Exit(1)


@app.command()
def select(ctx: typer.Context) -> None:
    """Switch to the best available model."""
    selector = _build_selector(ctx)
    outcome = asyncio.run(selector.select(reason="command"))
    _finish(outcome)


@app.command()
def skip(ctx: typer.Context) -> None:
    """Cool down the current pick and switch to the next best model."""
    selector = _build_selector(ctx)
    outcome = asyncio.run(selector.skip())
    _finish(outcome)


@app.command()
def status(
    ctx: typer.Context,
    count: int = typer.Option(0, "--count", "-n", help="Rows to show (default from config)."),
) -> None:
    """Show the ranked usage candidates without switching."""
    from model_selector.selection.mapping import is_above_reserve, resolve_model
    from model_selector.usage.parsing import format_reset

    selector = _build_selector(ctx)
    ranked = asyncio.run(selector.preview())
    config = selector.config
    limit = count if count > 0 else config.display.show_count

    for report in selector.last_reports:
        if not report.ok:
            console.print(f"[dim]{report.display_name}: {report.error}[/dim]")

    if not ranked:
        console.print("[yellow]No usable provider: no eligible usage buckets.[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Priority: {' > '.join(config.priority)}")
    table.add_column("#", justify="right")
    table.add_column("Provider")
    table.add_column("Window")
    table.add_column("Left", justify="right")
    table.add_column("Resets")
    table.add_column("Model", style="cyan")

    for index, candidate in enumerate(ranked[:limit], start=1):
        if candidate.resets_at is not None:
            resets = format_reset(candidate.resets_at)
        else:
            resets = candidate.reset_description or "-"
        left = f"{candidate.remaining_percent:.0f}%"
        if candidate.is_exhausted:
            left = f"[red]{left}[/red]"
        elif not is_above_reserve(candidate, config.mappings):
            left = f"[yellow]{left} (reserve)[/yellow]"
        table.add_row(
            str(index),
            candidate.display_name,
            candidate.window_label,
            left,
            resets,
            str(resolve_model(candidate, config.mappings)),
        )

    console.print(table)
    current = selector.host.current_model()
    console.print(f"Active model: [cyan]{current or 'none'}[/cyan]")


if __name__ == "__main__":
    app()
