"""Rich-based reporting utilities for the mbackfill CLI."""

from __future__ import annotations

import json
from typing import Any, Dict

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel

from mongo_backfill.runner import MigrationReport, RunState, summary_message

console = Console()


def print_json(payload: Dict[str, Any]) -> None:
    """Print a JSON payload with syntax highlighting."""
    console.print(JSON(json.dumps(payload, indent=2, default=str)))


def print_migration_summary(report: MigrationReport) -> None:
    """Print the outcome of a migration run as a panel."""
    message = summary_message(report)
    stats = (
        f"Scanned: {report.scanned} | Candidates: {report.candidates} | "
        f"Updated: [green]{report.updated}[/green] | "
        f"Batches: {report.batches_committed}/{report.batches_total} | "
        f"Elapsed: {report.elapsed_seconds:.2f}s"
    )

    if report.state == RunState.FAILED:
        console.print(Panel(f"[red]✗ {message}[/red]\n\n{stats}", title="Migration Result", border_style="red"))
        return

    style = "yellow" if report.dry_run else "green"
    console.print(Panel(f"[{style}]✓ {message}[/{style}]\n\n{stats}", title="Migration Result"))
