"""
Common building blocks: the executor pipeline and job scoped logging.
"""

from .executor import (
    Cleanup,
    ExecutionContext,
    Executor,
    Guard,
    JobErrorContainer,
    Leaf,
    Sequence,
    error_executor,
    executor,
    get_job_error,
    job_error_executor,
    noop,
    pipeline,
    set_job_error,
)
from .logger import JobLogger, job_logger

__all__ = [
    "Cleanup",
    "ExecutionContext",
    "Executor",
    "Guard",
    "JobErrorContainer",
    "JobLogger",
    "Leaf",
    "Sequence",
    "error_executor",
    "executor",
    "get_job_error",
    "job_error_executor",
    "job_logger",
    "noop",
    "pipeline",
    "set_job_error",
]
