#!/usr/bin/env python3
"""
Utility functions for the localci CLI
"""

import logging
from typing import Dict, List

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from localci.core.errors import ErrorHandler, set_error_handler
from localci.model import Workflow


# Initialize Rich console
console = Console()

_STATUS_LABELS = {
    "success": "✅ Success",
    "failure": "❌ Failed",
    "skipped": "⏭️  Skipped",
}


def setup_logging(verbose: bool = False) -> None:
    """Setup Rich logging configuration and unified error handler."""
    log_level = logging.DEBUG if verbose else logging.INFO

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
        force=True,
    )

    error_handler = ErrorHandler(console=console, verbose=verbose)
    set_error_handler(error_handler)


def display_results_table(summary: Dict, title: str) -> None:
    """Display job results, one row per job instance."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Index", justify="right", style="dim")
    table.add_column("Status", style="bold")
    table.add_column("Job", style="cyan")
    table.add_column("Details", style="dim")

    rows = (
        summary.get("successful_jobs", [])
        + summary.get("failed_jobs", [])
        + summary.get("skipped_jobs", [])
    )
    for index, result in enumerate(rows, start=1):
        table.add_row(str(index), _STATUS_LABELS.get(result.status, result.status), result.name, result.error)

    if not rows:
        table.add_row("1", "ℹ️ No jobs", "", "")

    console.print(table)


def display_jobs_table(workflow: Workflow) -> None:
    """List the jobs of a workflow."""
    table = Table(title=workflow.name, show_header=True, header_style="bold magenta")
    table.add_column("Job ID", style="cyan")
    table.add_column("Job name")
    table.add_column("Runs on", style="yellow")
    table.add_column("Needs", style="dim")

    for job in workflow.jobs.values():
        table.add_row(job.id, job.name, ", ".join(job.runs_on), ", ".join(job.needs))

    console.print(table)


def parse_platforms(pairs: List[str]) -> Dict[str, str]:
    """Parse ``label=image`` pairs given with ``--platform``."""
    platforms = {}
    for pair in pairs or []:
        label, sep, image = pair.partition("=")
        if not sep or not label:
            raise ValueError(f"Invalid platform mapping '{pair}', expected label=image")
        platforms[label.lower()] = image
    return platforms
