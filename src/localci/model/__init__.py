"""
Workflow document model consumed by the runner.
"""

from .workflow import (
    Action,
    ActionInput,
    ActionOutput,
    Job,
    JobContainer,
    Run,
    Step,
    StepResult,
    StepStatus,
    StepType,
    Workflow,
    load_action,
    load_workflow,
)

__all__ = [
    "Action",
    "ActionInput",
    "ActionOutput",
    "Job",
    "JobContainer",
    "Run",
    "Step",
    "StepResult",
    "StepStatus",
    "StepType",
    "Workflow",
    "load_action",
    "load_workflow",
]
