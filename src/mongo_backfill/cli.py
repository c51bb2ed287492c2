from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from mongo_backfill import __version__
from mongo_backfill.config import DEFAULT_CONFIG_PATH, RuntimeConfig, load_runtime_config, write_default_config
from mongo_backfill.db import get_document_source, get_motor_client
from mongo_backfill.exceptions import ConfigurationError
from mongo_backfill.reporting import print_json, print_migration_summary, summary_message
from mongo_backfill.runner import MigrationReport, MigrationRunner

logger = logging.getLogger("mongo_backfill")

app = typer.Typer(help="Backfill missing match fields in MongoDB.")
console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )


async def _run_migration(config: RuntimeConfig, dry_run: bool) -> MigrationReport:
    client = get_motor_client(config.mongodb_uri)
    try:
        runner = MigrationRunner(
            get_document_source(client, config),
            collection=config.collection,
            batch_size=config.batch_size,
            dry_run=dry_run,
            rate_limit_ms=config.rate_limit_ms,
        )
        return await runner.run()
    finally:
        client.close()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    uri: Optional[str] = typer.Option(None, "--uri", help="MongoDB URI"),
    db: Optional[str] = typer.Option(None, "--db", help="Database name"),
    collection: Optional[str] = typer.Option(None, "--collection", help="Collection name"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Patches per commit (max 500)"),
    rate_limit_ms: Optional[int] = typer.Option(None, "--rate-limit-ms", help="Delay between batches"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Scan and report without writing"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path for config file"),
) -> None:
    """Run the match backfill when no subcommand is given."""
    if ctx.invoked_subcommand is not None:
        return

    overrides = {
        "mongodb_uri": uri,
        "default_db": db,
        "collection": collection,
        "batch_size": batch_size,
        "rate_limit_ms": rate_limit_ms,
    }

    try:
        config = load_runtime_config(config_path, overrides)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    _configure_logging(config.log_level)
    logger.info(f"Starting migration of {config.default_db}.{config.collection}")

    report = asyncio.run(_run_migration(config, dry_run))

    logger.info(summary_message(report))
    print_migration_summary(report)
    print_json(report.model_dump(mode="json"))

    if not report.succeeded:
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    console.print(f"mongo-backfill v{__version__}")


@app.command()
def init(path: Optional[Path] = typer.Option(None, "--path", help="Path for config file")) -> None:
    config_path = path or DEFAULT_CONFIG_PATH
    if config_path.exists():
        console.print(f"Config already exists at {config_path}")
        raise typer.Exit(code=0)

    write_default_config(config_path)
    console.print(f"Created config at {config_path}")
