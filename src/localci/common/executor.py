#!/usr/bin/env python3
"""
Composable units of work.

An Executor is a unit of work run against an ExecutionContext. A run either
returns normally (success) or raises (failure). Pipelines are built from a
closed set of node kinds:

- Leaf:     wraps a plain callable ``fn(ctx)``
- Sequence: runs units in order, the first failure aborts the rest
- Guard:    runs a unit only when a predicate holds at invocation time
- Cleanup:  always runs a cleanup unit after the body

Cancellation is observed at node boundaries: before each member of a
Sequence and before a Guard evaluates its predicate. A leaf that is already
running is never abandoned, and the cleanup stage of a Cleanup node always
runs, even after cancellation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union

from localci.core.errors import PipelineCancelled

logger = logging.getLogger(__name__)

Predicate = Callable[["ExecutionContext"], bool]


class JobErrorContainer:
    """Holds the first-or-latest error recorded for a job scope."""

    def __init__(self) -> None:
        self.error: Optional[BaseException] = None


class ExecutionContext:
    """Cancellation-aware context shared by every unit of a pipeline.

    Attributes:
        dryrun: Skip side effects in drivers that honour it.
        logger: Logger (usually a JobLogger) for job scoped output.
        job_errors: Container used by composite sub-pipelines, if any.
    """

    def __init__(
        self,
        dryrun: bool = False,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        cancel_event: Optional[threading.Event] = None,
        job_errors: Optional[JobErrorContainer] = None,
    ):
        self.dryrun = dryrun
        self.logger = log or logger
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.job_errors = job_errors

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def err(self) -> Optional[PipelineCancelled]:
        """Return the cancellation error if cancellation was requested."""
        if self.cancelled:
            return PipelineCancelled()
        return None

    def _derive(self, **overrides) -> "ExecutionContext":
        fields = dict(
            dryrun=self.dryrun,
            log=self.logger,
            cancel_event=self._cancel_event,
            job_errors=self.job_errors,
        )
        fields.update(overrides)
        return ExecutionContext(**fields)

    def with_logger(self, log) -> "ExecutionContext":
        return self._derive(log=log)

    def with_job_error_container(self) -> "ExecutionContext":
        return self._derive(job_errors=JobErrorContainer())

    def background(self) -> "ExecutionContext":
        """A context that is never cancelled, for teardown work."""
        return self._derive(cancel_event=threading.Event())


class Executor(ABC):
    """A unit of work."""

    @abstractmethod
    def run(self, ctx: ExecutionContext) -> None:
        """Run the unit, raising on failure."""

    def __call__(self, ctx: ExecutionContext) -> None:
        self.run(ctx)

    def then(self, other: "Executor") -> "Executor":
        return Sequence(self, other)

    def finally_(self, cleanup: "Executor") -> "Executor":
        return Cleanup(self, cleanup)

    def if_(self, predicate: Predicate) -> "Executor":
        return Guard(predicate, self)

    def if_bool(self, flag: bool) -> "Executor":
        return Guard(lambda ctx: flag, self)


class Leaf(Executor):
    def __init__(self, fn: Callable[[ExecutionContext], None], name: str = ""):
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "leaf")

    def run(self, ctx: ExecutionContext) -> None:
        self.fn(ctx)

    def __repr__(self) -> str:
        return f"Leaf({self.name})"


class Sequence(Executor):
    def __init__(self, *units: Executor):
        self.units: List[Executor] = [u for u in units if u is not None]

    def run(self, ctx: ExecutionContext) -> None:
        for unit in self.units:
            cancelled = ctx.err()
            if cancelled is not None:
                raise cancelled
            unit.run(ctx)

    def __repr__(self) -> str:
        return f"Sequence({', '.join(map(repr, self.units))})"


class Guard(Executor):
    def __init__(self, predicate: Predicate, unit: Executor):
        self.predicate = predicate
        self.unit = unit

    def run(self, ctx: ExecutionContext) -> None:
        cancelled = ctx.err()
        if cancelled is not None:
            raise cancelled
        if self.predicate(ctx):
            self.unit.run(ctx)

    def __repr__(self) -> str:
        return f"Guard({self.unit!r})"


class Cleanup(Executor):
    def __init__(self, unit: Executor, cleanup: Executor):
        self.unit = unit
        self.cleanup = cleanup

    def run(self, ctx: ExecutionContext) -> None:
        try:
            self.unit.run(ctx)
        except BaseException:
            try:
                self.cleanup.run(ctx)
            except Exception as cleanup_error:
                ctx.logger.debug("cleanup failed after body error: %s", cleanup_error)
            raise
        self.cleanup.run(ctx)

    def __repr__(self) -> str:
        return f"Cleanup({self.unit!r}, {self.cleanup!r})"


def executor(fn: Callable[[ExecutionContext], None]) -> Executor:
    """Decorator turning a ``fn(ctx)`` callable into a Leaf."""
    return Leaf(fn)


def pipeline(*units: Executor) -> Executor:
    return Sequence(*units)


def noop() -> Executor:
    return Leaf(lambda ctx: None, name="noop")


def error_executor(error: BaseException) -> Executor:
    """A unit that always fails with ``error``."""

    def _raise(ctx: ExecutionContext) -> None:
        raise error

    return Leaf(_raise, name="error")


def set_job_error(ctx: ExecutionContext, error: BaseException) -> None:
    if ctx.job_errors is not None:
        ctx.job_errors.error = error


def get_job_error(ctx: ExecutionContext) -> Optional[BaseException]:
    if ctx.job_errors is None:
        return None
    return ctx.job_errors.error


def job_error_executor() -> Executor:
    """A unit that surfaces the error recorded in the job-error container."""

    def _surface(ctx: ExecutionContext) -> None:
        error = get_job_error(ctx)
        if error is not None:
            raise error

    return Leaf(_surface, name="job_error")
