#!/usr/bin/env python3
"""
Constants and configuration for the localci CLI
"""


# Exit codes
class ExitCode:
    """Exit codes for CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    RUN_FAILURE = 3
    INVALID_ARGS = 4


# Default file paths and values
DEFAULT_WORKFLOW_FILE = ".github/workflows/main.yml"
DEFAULT_WORKFLOWS_DIR = ".github/workflows"
DEFAULT_EVENT_NAME = "push"
DEFAULT_PLATFORMS = {
    "ubuntu-latest": "node:16-buster-slim",
    "ubuntu-22.04": "node:16-bullseye-slim",
    "ubuntu-20.04": "node:16-buster-slim",
    "ubuntu-18.04": "node:16-buster-slim",
}
