#!/usr/bin/env python3
"""Pipeline of a single job: start the container, run the steps, record the result."""

import typing

from localci.common.executor import ExecutionContext, Executor, Leaf, pipeline


def new_job_executor(rc) -> Executor:
    """Build the job pipeline for a RunContext.

    Steps without an ``id`` get their position as id. The first failing
    step (without continue-on-error) halts the job. The job's ``outputs:``
    are interpolated whatever the result.
    """
    units: typing.List[Executor] = [rc.start_job_container()]
    for i, step in enumerate(rc.steps()):
        if not step.id:
            step.id = str(i)
        units.append(rc.new_step_executor(step))
    body = pipeline(*units)

    def _run(ctx: ExecutionContext) -> None:
        try:
            body.run(ctx)
        except Exception:
            rc.result("failure")
            ctx.logger.info("🏁  Job failed")
            raise
        rc.result("success")
        ctx.logger.info("🏁  Job succeeded")

    return Leaf(_run, name="job").finally_(rc.interpolate_outputs())
