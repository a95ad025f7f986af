#!/usr/bin/env python3
"""
Run command for the localci CLI
"""

from typing import List, Optional

import typer
from rich.panel import Panel

try:
    from typing import Annotated  # Python 3.9+
except ImportError:
    from typing_extensions import Annotated  # Python 3.8

from localci.core.errors import ConfigurationError, LocalCIError, ValidationError, handle_error
from localci.orchestration import WorkflowRunner
from localci.runner.config import ConfigLoader, parse_key_values

from ..constants import DEFAULT_PLATFORMS, DEFAULT_WORKFLOW_FILE, ExitCode
from ..utils import console, display_results_table, parse_platforms, setup_logging


def run(
    workflow: Annotated[
        str, typer.Argument(help="Workflow file to run")
    ] = DEFAULT_WORKFLOW_FILE,
    job: Annotated[
        Optional[str], typer.Option("--job", "-j", help="Run only this job (and what it needs)")
    ] = None,
    platform: Annotated[
        List[str],
        typer.Option("--platform", "-P", help="Runner label to image mapping, label=image"),
    ] = [],
    env: Annotated[
        List[str], typer.Option("--env", help="Environment variable KEY=VALUE")
    ] = [],
    secret: Annotated[
        List[str], typer.Option("--secret", "-s", help="Secret KEY=VALUE (KEY alone reads the host env)")
    ] = [],
    event_path: Annotated[
        Optional[str], typer.Option("--event-path", "-e", help="Event payload JSON file")
    ] = None,
    config_file: Annotated[
        Optional[str], typer.Option("--config-file", "-c", help="YAML or JSON configuration file")
    ] = None,
    bind: Annotated[
        Optional[bool], typer.Option("--bind", help="Bind the working directory instead of copying it")
    ] = None,
    reuse: Annotated[
        Optional[bool], typer.Option("--reuse", help="Keep containers and volumes between runs")
    ] = None,
    auto_remove: Annotated[
        Optional[bool], typer.Option("--rm/--no-rm", help="Remove containers when a job ends")
    ] = None,
    pull: Annotated[
        Optional[bool], typer.Option("--pull/--no-pull", help="Pull images before running")
    ] = None,
    force_pull: Annotated[
        Optional[bool], typer.Option("--force-pull", help="Pull images even when present locally")
    ] = None,
    dryrun: Annotated[
        Optional[bool], typer.Option("--dryrun", "-n", help="Plan and log without side effects")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🚀 Run workflow jobs locally.
    """
    setup_logging(verbose)

    try:
        overrides = {
            "bind_workdir": bind,
            "reuse_containers": reuse,
            "auto_remove": auto_remove,
            "pull": pull,
            "force_pull": force_pull,
            "dryrun": dryrun,
            "event_path": event_path,
            "log_output": True if verbose else None,
            "env": parse_key_values(env, "--env") or None,
            "secrets": parse_key_values(secret, "--secret") or None,
        }
        platforms = dict(DEFAULT_PLATFORMS)
        platforms.update(parse_platforms(platform))
        overrides["platforms"] = platforms
        config = ConfigLoader.load_config(config_file, overrides)
    except (ConfigurationError, ValueError) as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)

    console.print(
        Panel(
            f"🚀 [bold cyan]Running Workflow[/bold cyan]\n"
            f"Workflow: [yellow]{workflow}[/yellow]\n"
            f"Job: [yellow]{job or 'All jobs'}[/yellow]\n"
            f"Dry run: [yellow]{config.dryrun}[/yellow]",
            title="Run Configuration",
            border_style="green",
        )
    )

    runner = WorkflowRunner(config)
    try:
        summary = runner.execute(workflow, job)
    except KeyboardInterrupt:
        runner.cancel()
        console.print("\n🛑 [yellow]Run cancelled by user[/yellow]")
        raise typer.Exit(ExitCode.FAILURE)
    except (ConfigurationError, ValidationError) as e:
        handle_error(e)
        raise typer.Exit(ExitCode.INVALID_ARGS)
    except LocalCIError as e:
        handle_error(e, show_traceback=True)
        raise typer.Exit(ExitCode.FAILURE)

    display_results_table(summary, "Job Results")

    failed = len(summary["failed_jobs"])
    if failed:
        console.print(f"💥 [bold red]{failed} job(s) failed[/bold red]")
        raise typer.Exit(ExitCode.RUN_FAILURE)
    console.print("🎉 [bold green]All jobs completed successfully![/bold green]")
