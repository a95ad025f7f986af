"""
Job orchestration: configuration, context building, naming, steps and RunContext.
"""

from .config import Config, ConfigLoader
from .expression import ContextEvaluator, ExpressionEvaluator, eval_bool
from .github_context import GithubContext
from .job_executor import new_job_executor
from .naming import create_container_name
from .run_context import ContainerState, JobScope, MappableOutput, RunContext
from .step import StepContext, new_step_context

__all__ = [
    "Config",
    "ConfigLoader",
    "ContainerState",
    "ContextEvaluator",
    "ExpressionEvaluator",
    "GithubContext",
    "JobScope",
    "MappableOutput",
    "RunContext",
    "StepContext",
    "create_container_name",
    "eval_bool",
    "new_job_executor",
    "new_step_context",
]
