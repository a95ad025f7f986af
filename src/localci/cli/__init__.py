#!/usr/bin/env python3
"""
CLI Package for localci
"""

from .app import app, cli_main
from .constants import DEFAULT_WORKFLOW_FILE, ExitCode
from .utils import display_jobs_table, display_results_table, setup_logging

__all__ = [
    "app",
    "cli_main",
    "DEFAULT_WORKFLOW_FILE",
    "ExitCode",
    "display_jobs_table",
    "display_results_table",
    "setup_logging",
]
