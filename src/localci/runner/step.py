#!/usr/bin/env python3
"""Module of the step runners.

A step is run through the StepContext contract: ``is_enabled`` evaluates the
step's ``if:``, ``setup_env`` builds the step environment and evaluator, and
``executor`` returns the unit of work that runs the step body. The job
orchestrator only talks to steps through this contract.

Workflow commands printed by step processes (``::set-output``, ``::debug``
and friends) are interpreted by ``handle_workflow_command``.
"""
# built-in modules
import logging
import os
import re
import shlex
import typing
from abc import ABC, abstractmethod

# user-defined modules
from localci.common.executor import ExecutionContext, Executor, Leaf, error_executor, pipeline
from localci.container.base import FileEntry
from localci.core.errors import ExpressionError, StepError, create_error_context
from localci.model import Step, StepType, load_action
from localci.runner.expression import ExpressionEvaluator, eval_bool

logger = logging.getLogger(__name__)

# shell name -> (command template, script extension)
SHELLS = {
    "bash": ("bash --noprofile --norc -e -o pipefail {0}", ".sh"),
    "sh": ("sh -e {0}", ".sh"),
    "python": ("python {0}", ".py"),
    "pwsh": ("pwsh -command . '{0}'", ".ps1"),
}
DEFAULT_SHELL = "bash"

_COMMAND = re.compile(r"^::([^ :]+)( (.+))?::(.*)$")
_OUTPUT_REFERENCE = re.compile(r"^\$\{\{\s*steps\.([\w-]+)\.outputs\.([\w-]+)\s*\}\}$")


def _unescape(value: str) -> str:
    return value.replace("%0D", "\r").replace("%0A", "\n").replace("%25", "%")


def _parse_command_properties(text: str) -> typing.Dict[str, str]:
    properties = {}
    for pair in (text or "").split(","):
        key, sep, value = pair.partition("=")
        if sep:
            properties[key.strip()] = _unescape(value)
    return properties


def handle_workflow_command(rc, line: str, log=None) -> bool:
    """Interpret one ``::command key=value::arg`` line of step output.

    Args:
        rc: RunContext of the step that printed the line.
        line: The output line.
        log: Logger for debug/warning/error annotations.

    Returns:
        bool: True if the line was a workflow command.
    """
    match = _COMMAND.match(line.strip())
    if not match:
        return False
    log = log or logger
    command = match.group(1)
    properties = _parse_command_properties(match.group(3))
    arg = _unescape(match.group(4))

    if command == "set-output":
        rc.set_output(properties.get("name", ""), arg)
    elif command == "save-state":
        rc.intra_action_state.setdefault(rc.current_step, {})[properties.get("name", "")] = arg
    elif command == "set-env":
        rc.get_env()[properties.get("name", "")] = arg
    elif command == "add-path":
        rc.extra_path.insert(0, arg)
    elif command == "debug":
        log.debug("  💬  %s", arg)
    elif command in ("warning", "notice"):
        log.warning("  ⚠️  %s", arg)
    elif command == "error":
        log.error("  ❗  %s", arg)
    elif command == "add-mask":
        log.info("  ⚙  ***")
    else:
        return False
    return True


class StepContext(ABC):
    """Contract between the job orchestrator and one step.

    Attributes:
        rc: RunContext the step runs in.
        step: The step definition.
        env: Step environment, filled by ``setup_env``.
    """

    def __init__(self, rc, step: Step) -> None:
        self.rc = rc
        self.step = step
        self.env: typing.Dict[str, str] = {}

    def is_enabled(self, ctx: ExecutionContext) -> bool:
        """Evaluate the step's ``if:`` condition.

        Raises:
            ExpressionError: If the condition cannot be evaluated.
        """
        try:
            return eval_bool(self.rc.new_expression_evaluator(ctx=ctx), self.step.if_)
        except ExpressionError as e:
            raise ExpressionError(
                f"Error in if-expression: \"if: {self.step.if_}\" ({e})",
                context=create_error_context("step_if", step_id=self.step.id),
                cause=e,
            ) from e

    def setup_env(self, ctx: ExecutionContext) -> ExpressionEvaluator:
        """Build the step environment and return an evaluator over it.

        Layers, lowest first: the job environment, the job container's
        ``env:``, the inherited composite environment, the provider
        projection, files appended through GITHUB_ENV and GITHUB_PATH, saved
        state, and finally the step's own interpolated ``env:``.
        """
        rc = self.rc
        env = dict(rc.get_env())

        job_container = rc.run.job().container()
        if job_container is not None:
            evaluator = rc.new_expression_evaluator(env=env, ctx=ctx)
            for key, value in job_container.env.items():
                env[key] = evaluator.interpolate(value)

        env.update(rc.inherited_env)
        rc.with_github_env(env)

        if rc.container is not None:
            rc.container.update_from_env(env["GITHUB_ENV"], env).run(ctx)
            rc.container.update_from_path(env).run(ctx)
        for path in reversed(rc.extra_path):
            env["PATH"] = f"{path}:{env['PATH']}" if env.get("PATH") else path

        for key, value in rc.intra_action_state.get(self.step.id, {}).items():
            env[f"STATE_{key}"] = value

        evaluator = rc.new_expression_evaluator(env=env, ctx=ctx)
        for key, value in self.step.env.items():
            env[key] = evaluator.interpolate(value)

        self.env = env
        return rc.new_expression_evaluator(env=env, ctx=ctx)

    @abstractmethod
    def executor(self, ctx: ExecutionContext) -> Executor:
        """Return the unit of work running the step body."""


class RunStep(StepContext):
    """A ``run:`` step executed with a shell inside the job container."""

    def shell_command(self, script_path: str) -> typing.List[str]:
        shell = self.step.shell or DEFAULT_SHELL
        template = SHELLS.get(shell, (shell, ""))[0]
        if "{0}" not in template:
            template = f"{template} {{0}}"
        return shlex.split(template.replace("{0}", script_path))

    def executor(self, ctx: ExecutionContext) -> Executor:
        rc = self.rc
        evaluator = rc.new_expression_evaluator(env=self.env, ctx=ctx)
        script = evaluator.interpolate(self.step.run)
        extension = SHELLS.get(self.step.shell or DEFAULT_SHELL, ("", ""))[1]
        name = f"workflow/{self.step.id}{extension}"
        act_path = rc.get_act_path()
        command = self.shell_command(f"{act_path}/{name}")
        workdir = evaluator.interpolate(self.step.working_directory)

        ctx.logger.debug("Wrote command \n%s\n to '%s'", script, name)
        return pipeline(
            rc.container.copy(act_path, FileEntry(name=name, mode=0o755, body=script)),
            rc.container.exec(command, "", self.env, "", workdir),
        )


class LocalActionStep(StepContext):
    """A ``uses: ./path`` composite action expanded in a cloned scope."""

    def action_dir(self) -> str:
        return os.path.join(self.rc.config.workdir, self.step.uses)

    def executor(self, ctx: ExecutionContext) -> Executor:
        rc = self.rc
        try:
            action = load_action(self.action_dir())
        except FileNotFoundError as e:
            return error_executor(
                StepError(str(e), context=create_error_context("load_action", step_id=self.step.id), cause=e)
            )
        if not action.is_composite():
            return error_executor(
                StepError(f"Unsupported action type '{action.using}' in {self.step.uses}")
            )

        evaluator = rc.new_expression_evaluator(env=self.env, ctx=ctx)
        inputs = {}
        for name, spec in action.inputs.items():
            value = self.step.with_.get(name)
            inputs[name] = evaluator.interpolate(value) if value is not None else evaluator.interpolate(spec.default)

        child = rc.clone()
        child.composite = action
        child.inputs = inputs
        child.inherited_env = dict(self.env)
        child.action_path = os.path.join(rc.container_workdir(), self.step.uses)
        for name, output in action.outputs.items():
            reference = _OUTPUT_REFERENCE.match(output.value.strip())
            if reference:
                child.map_output(reference.group(1), reference.group(2), self.step.id, name)

        def _publish_outputs(ctx: ExecutionContext) -> None:
            outputs_evaluator = child.new_expression_evaluator(ctx=ctx)
            for name, output in action.outputs.items():
                if _OUTPUT_REFERENCE.match(output.value.strip()):
                    continue
                rc.set_output(name, outputs_evaluator.interpolate(output.value))

        return child.composite_executor().finally_(Leaf(_publish_outputs, name="composite-outputs"))


class UnsupportedStep(StepContext):
    """Any step kind the local runner cannot execute."""

    def executor(self, ctx: ExecutionContext) -> Executor:
        if self.step.type() == StepType.INVALID:
            message = f"Invalid step '{self.step}': exactly one of 'run' or 'uses' is required"
        else:
            message = f"Unsupported step reference: {self.step.uses}"
        return error_executor(
            StepError(message, context=create_error_context("step", step_id=self.step.id))
        )


def new_step_context(rc, step: Step) -> StepContext:
    """Return the StepContext implementation for ``step``."""
    step_type = step.type()
    if step_type == StepType.RUN:
        return RunStep(rc, step)
    if step_type == StepType.LOCAL_ACTION:
        return LocalActionStep(rc, step)
    return UnsupportedStep(rc, step)
