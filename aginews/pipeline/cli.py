"""CLI interface for the AGI News pipeline.

Usage:
    aginews run                  # immediate run (debug)
    aginews schedule             # daily at 14:00 UTC
    aginews seed                 # load sources/subscribers from config.yaml
    aginews status
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from aginews.config import DEFAULT_CONFIG_PATH, DEFAULT_DB_PATH, ConfigError, load_config
from aginews.pipeline.clients import build_clients
from aginews.pipeline.orchestrator import (
    DEFAULT_RUN_HOUR,
    DEFAULT_RUN_MINUTE,
    NewsletterPipeline,
    PipelineResult,
    seed_from_config,
)
from aginews.storage.db import DatabaseManager

console = Console()


def run_async(coro):
    """Run an async function to completion."""
    return asyncio.run(coro)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load(ctx) -> Dict[str, Any]:
    try:
        config = load_config(ctx.obj["config_path"])
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    if not ctx.obj["db_path"]:
        ctx.obj["db_path"] = (config.get("database", {}) or {}).get("path") or DEFAULT_DB_PATH
    return config


@click.group()
@click.option("--db", default=None, help="Database path (default: database.path from config)")
@click.option("--config", default=DEFAULT_CONFIG_PATH, help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db: Optional[str], config: str, verbose: bool):
    """AGI News daily newsletter pipeline."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["config_path"] = config
    setup_logging(verbose)


def _print_result(result: PipelineResult) -> None:
    table = Table(title="Scrape Results")
    table.add_column("Source", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Fetched", justify="right")
    table.add_column("Accepted", justify="right", style="green")
    table.add_column("Dropped", justify="right", style="yellow")
    table.add_column("Error", style="red", max_width=50)
    for r in result.scrape.results:
        table.add_row(
            r.source_url,
            str(r.attempts),
            str(r.fetched),
            str(r.accepted),
            str(r.dropped),
            (r.error_message or "")[:50],
        )
    table.add_section()
    table.add_row(
        "[bold]Total",
        "",
        f"[bold]{result.scrape.total_fetched}",
        f"[bold green]{result.scrape.total_accepted}",
        f"[bold yellow]{result.scrape.total_dropped}",
        f"[bold red]{result.scrape.total_errors} failed",
    )
    console.print(table)
    console.print(f"Stories saved: {result.stories_saved}")
    if result.delivery is not None:
        console.print(f"Delivery: {result.delivery}")
    if result.error:
        console.print(f"[red]Run failed:[/red] {result.error}")


async def _build_pipeline(ctx, config: Dict[str, Any]):
    clients = build_clients(config)
    db = DatabaseManager(ctx.obj["db_path"])
    await db.initialize()
    return db, NewsletterPipeline.from_config(db, clients, config)


@cli.command()
@click.pass_context
def run(ctx):
    """Run the full pipeline once, now."""
    config = _load(ctx)

    async def _run():
        try:
            db, pipeline = await _build_pipeline(ctx, config)
        except ConfigError as e:
            console.print(f"[red]Error:[/red] {e}")
            return 1
        try:
            result = await pipeline.run()
        finally:
            await db.close()
        _print_result(result)
        return 0 if result.success else 1

    sys.exit(run_async(_run()))


@cli.command()
@click.option("--hour", type=int, default=None, help="UTC hour (default: schedule.hour or 14)")
@click.option("--minute", type=int, default=None, help="UTC minute (default: schedule.minute or 0)")
@click.pass_context
def schedule(ctx, hour: Optional[int], minute: Optional[int]):
    """Run the pipeline every day at the given UTC time."""
    config = _load(ctx)
    sched = config.get("schedule", {}) or {}
    hour = hour if hour is not None else int(sched.get("hour", DEFAULT_RUN_HOUR))
    minute = minute if minute is not None else int(sched.get("minute", DEFAULT_RUN_MINUTE))

    async def _run():
        try:
            db, pipeline = await _build_pipeline(ctx, config)
        except ConfigError as e:
            console.print(f"[red]Error:[/red] {e}")
            return
        console.print(f"[green]Scheduled daily run at {hour:02d}:{minute:02d} UTC")
        try:
            await pipeline.run_daily(hour, minute)
        finally:
            await db.close()

    try:
        run_async(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")


@cli.command()
@click.pass_context
def seed(ctx):
    """Load sources and subscribers from the config file."""
    config = _load(ctx)

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            counts = await seed_from_config(db, config)
        finally:
            await db.close()
        console.print(
            f"[green]Seeded {counts['sources']} sources and {counts['subscribers']} subscribers."
        )

    run_async(_run())


@cli.command()
@click.pass_context
def status(ctx):
    """Show database counts and the latest newsletter's delivery."""
    _load(ctx)

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            stats = await db.get_stats()
            sources = await db.get_active_sources()
        finally:
            await db.close()

        console.print("\n[bold]Database Status[/bold]")
        console.print(f"  Path: {ctx.obj['db_path']}")
        console.print(f"  Active sources: {stats['total_sources']}")
        console.print(f"  Stories: {stats['total_stories']}")
        console.print(f"  Active subscribers: {stats['active_subscribers']}")
        console.print(f"  Newsletters: {stats['total_newsletters']}")

        latest = stats["latest_newsletter"]
        if latest is not None:
            sends = stats["latest_sends"]
            console.print("\n[bold]Latest Newsletter[/bold]")
            console.print(f"  ID: {latest.id}  status: {latest.status}")
            console.print(f"  Created: {latest.created_at}  sent: {latest.sent_at or 'never'}")
            console.print(f"  Sends: {sends.get('sent', 0)} sent, {sends.get('failed', 0)} failed")

        if sources:
            console.print()
            table = Table(title="Sources")
            table.add_column("ID", justify="right")
            table.add_column("Name", style="cyan")
            table.add_column("Type")
            table.add_column("URL")
            table.add_column("Stories", justify="right")
            for s in sources:
                table.add_row(
                    str(s.id), s.name, s.type, s.url,
                    str(stats["stories_by_source"].get(s.id, 0)),
                )
            console.print(table)

    run_async(_run())


def main():
    cli()


if __name__ == "__main__":
    main()
