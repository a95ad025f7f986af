#!/usr/bin/env python3
"""
Main CLI Application for localci

This module contains the main Typer app and entry point for the localci CLI.
"""

import sys

import typer
from rich.traceback import install

try:
    from typing import Annotated  # Python 3.9+
except ImportError:
    from typing_extensions import Annotated  # Python 3.8

from localci import __version__

from .commands import list_jobs, run
from .constants import ExitCode
from .utils import console

# Install rich traceback handler for better error displays
install(show_locals=False)

app = typer.Typer(
    name="localci",
    help="🚀 localci - run CI workflow jobs on your machine",
    rich_markup_mode="rich",
    add_completion=False,
    no_args_is_help=True,
)

app.command()(run)
app.command(name="list")(list_jobs)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool, typer.Option("--version", help="Show version and exit")
    ] = False,
) -> None:
    """
    🚀 localci

    Run the jobs of a CI workflow in local containers.
    """
    if version:
        console.print(f"🚀 [bold cyan]localci[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        ctx.exit()


def cli_main() -> None:
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n🛑 [yellow]Operation cancelled by user[/yellow]")
        sys.exit(ExitCode.FAILURE)
    except Exception as e:
        console.print(f"💥 [bold red]Unexpected error: {e}[/bold red]")
        console.print_exception()
        sys.exit(ExitCode.FAILURE)


if __name__ == "__main__":
    cli_main()
