#!/usr/bin/env python3
"""
Workflow Runner - Plans and runs the jobs of a workflow.

Supports:
1. Matrix expansion (cartesian product with include/exclude)
2. Ordering by ``needs:`` into stages
3. Concurrent execution of the job instances of a stage
"""

import copy
import itertools
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from localci.common.executor import ExecutionContext
from localci.common.logger import job_logger
from localci.core.console import Console
from localci.core.errors import ConfigurationError, ValidationError, create_error_context
from localci.model import Job, Run, Workflow, load_workflow
from localci.runner.config import Config
from localci.runner.run_context import ContainerFactory, RunContext

logger = logging.getLogger(__name__)


@dataclass
class JobInstance:
    """One job, with one matrix assignment."""

    job_id: str
    name: str
    matrix: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobRunResult:
    job_id: str
    name: str
    status: str
    error: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)


def expand_matrix(matrix: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Expand a ``strategy.matrix`` block into its combinations.

    ``exclude`` entries drop every combination they match. An ``include``
    entry extends the combinations it matches on the original matrix keys,
    or is added as a combination of its own when it matches none.
    """
    if not matrix:
        return [{}]

    dimensions = {
        key: value if isinstance(value, list) else [value]
        for key, value in matrix.items()
        if key not in ("include", "exclude")
    }
    keys = list(dimensions)
    combinations = [dict(zip(keys, values)) for values in itertools.product(*dimensions.values())] if keys else []

    for exclude in matrix.get("exclude") or []:
        if not isinstance(exclude, dict):
            continue
        combinations = [
            combo for combo in combinations
            if not all(combo.get(key) == value for key, value in exclude.items())
        ]

    for include in matrix.get("include") or []:
        if not isinstance(include, dict):
            continue
        matched = False
        for combo in combinations:
            if all(combo.get(key) == value for key, value in include.items() if key in dimensions):
                combo.update({key: value for key, value in include.items() if key not in dimensions})
                matched = True
        if not matched:
            combinations.append(dict(include))

    return combinations or [{}]


def job_instances(job: Job) -> List[JobInstance]:
    """Matrix instances of a job; several instances are named ``<job>-<n>``."""
    combinations = expand_matrix(job.matrix())
    if len(combinations) == 1:
        return [JobInstance(job.id, job.id, combinations[0])]
    return [JobInstance(job.id, f"{job.id}-{i}", combo) for i, combo in enumerate(combinations, start=1)]


def plan_stages(workflow: Workflow, job_id: Optional[str] = None) -> List[List[str]]:
    """Order job ids into stages; a job only depends on earlier stages.

    When ``job_id`` is given only that job and what it needs are planned.

    Raises:
        ValidationError: On an unknown job or a dependency cycle.
    """
    selected = set(workflow.jobs)
    if job_id is not None:
        if job_id not in workflow.jobs:
            raise ValidationError(
                f"Job '{job_id}' not found in workflow",
                suggestions=[f"Available jobs: {', '.join(sorted(workflow.jobs))}"],
            )
        selected = set()
        pending = [job_id]
        while pending:
            current = pending.pop()
            if current in selected or current not in workflow.jobs:
                continue
            selected.add(current)
            pending.extend(workflow.jobs[current].needs)

    remaining = {}
    for jid in selected:
        needs = [n for n in workflow.jobs[jid].needs if n in selected]
        for missing in set(workflow.jobs[jid].needs) - set(workflow.jobs):
            logger.warning("Job '%s' needs unknown job '%s'", jid, missing)
        remaining[jid] = set(needs)

    stages: List[List[str]] = []
    done: set = set()
    while remaining:
        ready = sorted(jid for jid, needs in remaining.items() if needs <= done)
        if not ready:
            raise ValidationError(
                f"Dependency cycle between jobs: {', '.join(sorted(remaining))}",
                context=create_error_context("plan_stages", file_path=workflow.file),
            )
        stages.append(ready)
        done.update(ready)
        for jid in ready:
            del remaining[jid]
    return stages


class WorkflowRunner:
    """
    Runs the jobs of one workflow file.

    Responsibilities:
    - Load the workflow and the event payload
    - Plan stages and expand matrices
    - Run one RunContext per job instance, concurrently within a stage
    - Collect job results
    """

    def __init__(
        self,
        config: Config,
        console: Optional[Console] = None,
        container_factory: Optional[ContainerFactory] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.console = console or Console(shellVerbose=False)
        self.container_factory = container_factory
        self.max_workers = max_workers
        self.cancel_event = cancel_event or threading.Event()

    def load(self, workflow_path: str) -> Workflow:
        if not os.path.isfile(workflow_path):
            raise ConfigurationError(f"Workflow file not found: {workflow_path}")
        return load_workflow(workflow_path)

    def event_json(self) -> str:
        if not self.config.event_path:
            return "{}"
        if not os.path.isfile(self.config.event_path):
            raise ConfigurationError(f"Event file not found: {self.config.event_path}")
        with open(self.config.event_path) as f:
            return f.read()

    def cancel(self) -> None:
        self.cancel_event.set()

    def new_run_context(self, workflow: Workflow, instance: JobInstance, event_json: str) -> RunContext:
        # every instance gets its own job object so results and outputs never mix
        isolated = Workflow(
            name=workflow.name,
            file=workflow.file,
            env=dict(workflow.env),
            jobs={instance.job_id: copy.deepcopy(workflow.jobs[instance.job_id])},
        )
        return RunContext(
            self.config,
            Run(isolated, instance.job_id),
            name=instance.name,
            matrix=instance.matrix,
            event_json=event_json,
            console=self.console,
            container_factory=self.container_factory,
        )

    def _run_instance(self, rc: RunContext) -> JobRunResult:
        ctx = ExecutionContext(
            dryrun=self.config.dryrun,
            log=job_logger(str(rc)),
            cancel_event=self.cancel_event,
        )
        job = rc.run.job()
        try:
            rc.executor().run(ctx)
        except Exception as e:
            ctx.logger.error("%s", e)
            return JobRunResult(job.id, rc.name, "failure", str(e), dict(job.outputs))
        return JobRunResult(job.id, rc.name, job.result or "skipped", "", dict(job.outputs))

    def run_workflow(self, workflow: Workflow, job_id: Optional[str] = None) -> List[JobRunResult]:
        event_json = self.event_json()
        results: List[JobRunResult] = []
        failed_jobs: set = set()

        for stage in plan_stages(workflow, job_id):
            contexts = []
            for jid in stage:
                blocked = [n for n in workflow.jobs[jid].needs if n in failed_jobs]
                for instance in job_instances(workflow.jobs[jid]):
                    if blocked or self.cancel_event.is_set():
                        logger.info("⏭️  Skipping %s", instance.name)
                        results.append(JobRunResult(jid, instance.name, "skipped"))
                        failed_jobs.add(jid)
                        continue
                    contexts.append(self.new_run_context(workflow, instance, event_json))

            if contexts:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    stage_results = list(pool.map(self._run_instance, contexts))
                for result in stage_results:
                    if result.status != "success":
                        failed_jobs.add(result.job_id)
                results.extend(stage_results)

        return results

    def execute(self, workflow_path: str, job_id: Optional[str] = None) -> Dict[str, Any]:
        """Run a workflow file and summarize the job results."""
        workflow = self.load(workflow_path)
        results = self.run_workflow(workflow, job_id)
        return {
            "workflow": workflow.name,
            "successful_jobs": [r for r in results if r.status == "success"],
            "failed_jobs": [r for r in results if r.status == "failure"],
            "skipped_jobs": [r for r in results if r.status == "skipped"],
        }
