"""
Orchestration layer for localci workflows.

Sits between the CLI (presentation) and the job orchestrator: plans the
jobs of a workflow, expands matrices and runs job instances concurrently.
"""

from .workflow_runner import (
    JobInstance,
    JobRunResult,
    WorkflowRunner,
    expand_matrix,
    job_instances,
    plan_stages,
)

__all__ = [
    "JobInstance",
    "JobRunResult",
    "WorkflowRunner",
    "expand_matrix",
    "job_instances",
    "plan_stages",
]
