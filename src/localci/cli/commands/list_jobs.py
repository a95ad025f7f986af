#!/usr/bin/env python3
"""
List command for the localci CLI
"""

import typer

try:
    from typing import Annotated  # Python 3.9+
except ImportError:
    from typing_extensions import Annotated  # Python 3.8

from localci.model import load_workflow

from ..constants import DEFAULT_WORKFLOW_FILE, ExitCode
from ..utils import console, display_jobs_table, setup_logging


def list_jobs(
    workflow: Annotated[
        str, typer.Argument(help="Workflow file to inspect")
    ] = DEFAULT_WORKFLOW_FILE,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    📋 List the jobs of a workflow.
    """
    setup_logging(verbose)

    try:
        parsed = load_workflow(workflow)
    except FileNotFoundError as e:
        console.print(f"📁 [bold red]File not found: {e}[/bold red]")
        raise typer.Exit(ExitCode.INVALID_ARGS)

    display_jobs_table(parsed)
