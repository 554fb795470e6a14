"""Command-line interface for the sync job."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .adapters import (
    AdapterError,
    AirtableAuth,
    AirtableClient,
    GoogleCalendarClient,
    ServiceAccount,
    TrelloAuth,
    TrelloClient,
)
from .config import ConfigError, SyncConfig, load_config
from .pipeline import RunReport, StageStatus
from .stages import build_pipeline
from .timestamps import DecodeError, id_to_time


console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    StageStatus.SUCCESS: "green",
    StageStatus.SKIPPED: "yellow",
    StageStatus.FAILED: "red",
    StageStatus.NOT_RUN: "dim",
}


def setup_logging(verbose: bool):
    """Send log records to the console through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load(ctx: click.Context) -> SyncConfig:
    config_path = ctx.obj.get("config_path")
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)


def build_clients(config: SyncConfig):
    """Create the service clients for a configuration.

    Raises:
        ConfigError: If the service-account key cannot be loaded
    """
    account = None
    if config.google and config.calendars:
        try:
            account = ServiceAccount.load(config.google.service_account)
        except (OSError, AdapterError) as e:
            raise ConfigError(f"Failed to load service account key: {e}") from e

    board = TrelloClient(
        TrelloAuth(app_id=config.trello.app_id, token=config.trello.token),
        timeout=config.timeout_seconds,
    )
    store = AirtableClient(
        AirtableAuth(
            api_key=config.airtable.api_key,
            database_id=config.airtable.database_id,
            table_name=config.airtable.table_name,
        ),
        timeout=config.timeout_seconds,
    )
    calendar = None
    if account is not None:
        calendar = GoogleCalendarClient(account, timeout=config.timeout_seconds)

    return board, store, calendar


async def run_sync(config: SyncConfig, dry_run: bool = False) -> RunReport:
    """Run the sync once against the live services."""
    board, store, calendar = build_clients(config)
    try:
        pipeline = build_pipeline(config, board, store, calendar=calendar, dry_run=dry_run)
        return await pipeline.run()
    finally:
        await board.aclose()
        await store.aclose()
        if calendar is not None:
            await calendar.aclose()


def display_report(report: RunReport):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")
    table.add_column("Error")

    for result in report.results.values():
        style = STATUS_STYLES[result.status]
        duration = f"{result.duration_seconds:.2f}s" if result.completed_at else "-"
        table.add_row(
            result.name,
            f"[{style}]{result.status.value}[/{style}]",
            duration,
            result.error or "",
        )

    console.print(table)


@click.group()
@click.version_option(__version__, prog_name="board-sync")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              help="Path to YAML config file")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx, config_path: Optional[str], verbose: bool):
    """Reconcile board cards with the records table and promote calendar events."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@main.command()
@click.option("--dry-run", is_flag=True, help="Compute changes without writing them")
@click.pass_context
def run(ctx, dry_run: bool):
    """Run one sync pass."""
    config = _load(ctx)
    try:
        report = asyncio.run(run_sync(config, dry_run=dry_run))
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)

    display_report(report)
    if not report.ok:
        console.print("[yellow]Some stages failed; they will be retried on the next run[/yellow]")


@main.command("check-config")
@click.pass_context
def check_config(ctx):
    """Validate configuration and show a summary."""
    config = _load(ctx)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in config.masked().items():
        table.add_row(key, str(value))

    console.print(table)
    console.print("[green]Configuration is valid[/green]")


@main.command("decode-id")
@click.argument("card_id")
def decode_id(card_id: str):
    """Show the creation time encoded in a card ID."""
    try:
        created = id_to_time(card_id)
    except DecodeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"{card_id}: {created.isoformat()} ({int(created.timestamp())})")


if __name__ == "__main__":
    main()
