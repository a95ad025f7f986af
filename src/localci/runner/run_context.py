#!/usr/bin/env python3
"""Module of the job orchestrator.

RunContext drives a single job: it owns the job container, composes the
layered environment, sequences the steps, expands composite actions in
cloned scopes and recovers step outputs and state from the files step
processes write in the scratch directory.

Classes:
    ContainerState: Lifecycle state of the job container.
    MappableOutput: (step id, output name) reference.
    JobScope: Values fixed for the lifetime of a job.
    JobResources: Per-job resources shared by a RunContext and its clones.
    RunContext: Orchestrator of one job, or of one composite expansion.
"""
# built-in modules
import copy
import dataclasses
import logging
import os
import platform
import shlex
import shutil
import sys
import typing
import uuid
from enum import Enum

# user-defined modules
from localci.common.executor import (
    ExecutionContext,
    Executor,
    Leaf,
    job_error_executor,
    pipeline,
    set_job_error,
)
from localci.common.logger import JobLogger
from localci.container import (
    Container,
    DockerContainer,
    FileEntry,
    HostExecutor,
    NewContainerInput,
    volume_remove_executor,
)
from localci.core.console import Console
from localci.core.errors import ConfigurationError, ExpressionError, create_error_context
from localci.model import Action, Run, Step, StepResult, StepStatus
from localci.runner.config import Config
from localci.runner.expression import ContextEvaluator, ExpressionEvaluator, eval_bool
from localci.runner.github_context import (
    GithubContext,
    apply_defaults,
    github_env,
    is_local_checkout,
)
from localci.runner.job_executor import new_job_executor
from localci.runner.naming import create_container_name
from localci.runner.step import handle_workflow_command, new_step_context

logger = logging.getLogger(__name__)

DEFAULT_ACT_PATH = "/var/run/act"
DEFAULT_DAEMON_SOCKET = "/var/run/docker.sock"
SELF_HOSTED_IMAGE = "-self-hosted"
LOCAL_MARKER = "ACT"

ContainerFactory = typing.Callable[[NewContainerInput, Console], Container]


class ContainerState(Enum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    STOPPED = "stopped"
    CLOSED = "closed"


@dataclasses.dataclass(frozen=True)
class MappableOutput:
    step_id: str
    output_name: str


@dataclasses.dataclass(frozen=True)
class JobScope:
    """Values fixed for the lifetime of a job, shared by every clone."""

    config: Config
    run: Run
    name: str
    job_name: str
    matrix: typing.Dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    event_json: str = ""
    github_context_base: typing.Optional[str] = None


class JobResources:
    """Per-job mutable resources, shared by reference by every clone.

    Attributes:
        container: The job container handle, owned by the top-level context.
        state: Lifecycle state of the container.
        local: True when the job runs as host processes.
        act_path: Scratch directory inside the sandbox.
        env: Memoized base environment.
        extra_path: Entries added through ``::add-path``.
        active: Context of the step currently running, for output commands.
    """

    def __init__(self) -> None:
        self.container: typing.Optional[Container] = None
        self.state = ContainerState.NOT_STARTED
        self.local = False
        self.act_path = ""
        self.env: typing.Optional[typing.Dict[str, str]] = None
        self.extra_path: typing.List[str] = []
        self.github: typing.Optional[GithubContext] = None
        self.github_from_base = False
        self.active: typing.Optional["RunContext"] = None


def _docker_container(input: NewContainerInput, console: Console) -> Container:
    return DockerContainer(input, console=console)


def _selinux_enabled() -> bool:
    return os.path.exists("/sys/fs/selinux/enforce")


def merge_maps(*maps: typing.Optional[typing.Dict[str, str]]) -> typing.Dict[str, str]:
    merged: typing.Dict[str, str] = {}
    for m in maps:
        merged.update(m or {})
    return merged


class RunContext:
    """Orchestrator of one job run.

    A top-level RunContext exclusively owns its container. ``clone()`` makes
    a child scope for a composite action: it shares the JobScope and the
    JobResources but has its own step results, inputs and output mappings.

    Args:
        config: Runner configuration, read-only once the job starts.
        run: Workflow and job being executed.
        name: Job instance name (``<job>-<n>`` for matrix instances).
        matrix: Matrix assignment of this job instance.
        event_json: Event payload staged as ``workflow/event.json``.
        github_context_base: Serialized context replacing computed defaults.
        expr_eval: Evaluator for job level expressions.
        console: Console used by the drivers.
        container_factory: Builds the container driver from its input.
    """

    def __init__(
        self,
        config: Config,
        run: Run,
        name: str = "",
        matrix: typing.Optional[typing.Dict[str, typing.Any]] = None,
        event_json: str = "",
        github_context_base: typing.Optional[str] = None,
        expr_eval: typing.Optional[ExpressionEvaluator] = None,
        console: typing.Optional[Console] = None,
        container_factory: typing.Optional[ContainerFactory] = None,
    ) -> None:
        self.scope = JobScope(
            config=config,
            run=run,
            name=name or run.job_id,
            job_name=run.job_id,
            matrix=dict(matrix or {}),
            event_json=event_json,
            github_context_base=github_context_base,
        )
        self.resources = JobResources()
        self.console = console or Console(shellVerbose=False)
        self.container_factory = container_factory or _docker_container
        self._expr_eval = expr_eval

        self.current_step = ""
        self.step_results: typing.Dict[str, StepResult] = {}
        self.output_mappings: typing.Dict[MappableOutput, MappableOutput] = {}
        self.intra_action_state: typing.Dict[str, typing.Dict[str, str]] = {}
        self.inherited_env: typing.Dict[str, str] = {}
        self.composite: typing.Optional[Action] = None
        self.inputs: typing.Dict[str, typing.Any] = {}
        self.parent: typing.Optional["RunContext"] = None
        self.context_data: typing.Dict[str, typing.Any] = {}
        self.action_path = ""
        self.action_ref = ""
        self.action_repository = ""

    # shared values

    @property
    def config(self) -> Config:
        return self.scope.config

    @property
    def run(self) -> Run:
        return self.scope.run

    @property
    def matrix(self) -> typing.Dict[str, typing.Any]:
        return self.scope.matrix

    @property
    def name(self) -> str:
        return self.scope.name

    @property
    def job_name(self) -> str:
        return self.scope.job_name

    @property
    def container(self) -> typing.Optional[Container]:
        return self.resources.container

    @property
    def state(self) -> ContainerState:
        return self.resources.state

    @property
    def local(self) -> bool:
        return self.resources.local

    @property
    def extra_path(self) -> typing.List[str]:
        return self.resources.extra_path

    @property
    def expr_eval(self) -> ExpressionEvaluator:
        if self._expr_eval is None:
            self._expr_eval = self.new_expression_evaluator()
        return self._expr_eval

    @expr_eval.setter
    def expr_eval(self, evaluator: ExpressionEvaluator) -> None:
        self._expr_eval = evaluator

    def __str__(self) -> str:
        return f"{self.run.workflow.name}/{self.name}"

    def clone(self) -> "RunContext":
        """Child scope for a composite action expansion."""
        child = copy.copy(self)
        child.current_step = ""
        child.step_results = {}
        child.output_mappings = {}
        child.intra_action_state = {}
        child.inherited_env = dict(self.inherited_env)
        child.composite = None
        child.inputs = {}
        child.parent = self
        child.context_data = {"github": self.context_data["github"]} if "github" in self.context_data else {}
        return child

    # environment

    def get_act_path(self) -> str:
        return self.resources.act_path or DEFAULT_ACT_PATH

    def set_act_path(self, act_path: str) -> None:
        self.resources.act_path = act_path

    def get_env(self) -> typing.Dict[str, str]:
        """Base environment: config, then workflow, then job ``env:``."""
        if self.resources.env is None:
            self.resources.env = merge_maps(
                self.config.env, self.run.workflow.env, self.run.job().environment()
            )
        self.resources.env[LOCAL_MARKER] = "true"
        return self.resources.env

    def job_container_name(self) -> str:
        return create_container_name("act", str(self))

    def container_workdir(self) -> str:
        return self.config.workdir

    def get_binds_and_mounts(self) -> typing.Tuple[typing.List[str], typing.Dict[str, str]]:
        name = self.job_container_name()
        socket = self.config.container_daemon_socket or DEFAULT_DAEMON_SOCKET

        binds = [f"{socket}:{DEFAULT_DAEMON_SOCKET}"]
        mounts = {
            "act-toolcache": "/toolcache",
            f"{name}-env": self.get_act_path(),
        }

        if self.config.bind_workdir:
            modifiers = ""
            if sys.platform == "darwin":
                modifiers = ":delegated"
            if _selinux_enabled():
                modifiers = ":z"
            binds.append(f"{self.config.workdir}:{self.container_workdir()}{modifiers}")
        else:
            mounts[name] = self.container_workdir()

        return binds, mounts

    def action_cache_dir(self) -> str:
        if self.config.action_cache_dir:
            return self.config.action_cache_dir
        xdg_cache = os.environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
        return os.path.join(xdg_cache, "act")

    # container lifecycle

    def _line_writer(self, ctx: ExecutionContext) -> typing.Callable[[str], None]:
        raw = ctx.logger.raw() if isinstance(ctx.logger, JobLogger) else ctx.logger

        def _write(line: str) -> None:
            handle_workflow_command(self.resources.active or self, line, ctx.logger)
            if self.config.log_output:
                raw.info(line)
            else:
                raw.debug(line)

        return _write

    def _staging_files(self) -> typing.List[FileEntry]:
        return [
            FileEntry(name="workflow/event.json", mode=0o644, body=self.scope.event_json),
            FileEntry(name="workflow/envs.txt", mode=0o666, body=""),
            FileEntry(name="workflow/paths.txt", mode=0o666, body=""),
        ]

    def _workspace_target(self, root: str) -> typing.Tuple[str, bool]:
        if self.config.bind_workdir:
            return "", False
        checkout = self.local_checkout_path()
        if checkout is None:
            return "", False
        return os.path.join(root, checkout), True

    def _start_host(self, ctx: ExecutionContext) -> None:
        cache_dir = self.action_cache_dir()
        misc_path = os.path.join(cache_dir, str(uuid.uuid4()))
        act_path = os.path.join(misc_path, "act")
        path = os.path.join(misc_path, "hostexecutor")
        runner_tmp = os.path.join(misc_path, "tmp")
        for directory in (act_path, path, runner_tmp):
            os.makedirs(directory, mode=0o777, exist_ok=True)
        self.set_act_path(act_path)

        def _clean_up() -> None:
            shutil.rmtree(misc_path, ignore_errors=True)

        self.resources.container = HostExecutor(
            path, clean_up=_clean_up, stdout=self._line_writer(ctx), console=self.console
        )
        self.resources.local = True
        copy_to, copy_workspace = self._workspace_target(path)

        env = self.get_env()
        env["RUNNER_TOOL_CACHE"] = os.path.join(cache_dir, "tool_cache")
        env["RUNNER_OS"] = platform.system()
        env["RUNNER_ARCH"] = platform.machine()
        env["RUNNER_TEMP"] = runner_tmp
        env.update(os.environ)

        ctx.logger.info("🚀  Start host executor in %s", path)
        pipeline(
            self.container.copy_dir(copy_to, os.path.join(self.config.workdir, "."), self.config.use_gitignore)
            .if_bool(copy_workspace),
            self.container.copy(self.get_act_path() + "/", *self._staging_files()),
        ).run(ctx)

    def _start_docker(self, ctx: ExecutionContext, image: str) -> None:
        try:
            username, password = self.handle_credentials()
        except ConfigurationError as e:
            raise ConfigurationError(f"failed to handle credentials: {e}", context=e.context, cause=e) from e

        ctx.logger.info("🚀  Start image=%s", image)
        binds, mounts = self.get_binds_and_mounts()
        self.resources.container = self.container_factory(
            NewContainerInput(
                image=image,
                name=self.job_container_name(),
                username=username,
                password=password,
                entrypoint=["/usr/bin/tail", "-f", "/dev/null"],
                working_dir=self.container_workdir(),
                env=["RUNNER_TOOL_CACHE=/opt/hostedtoolcache", "RUNNER_OS=Linux", "RUNNER_TEMP=/tmp"],
                binds=binds,
                mounts=mounts,
                stdout=self._line_writer(ctx),
                network_mode="host",
                privileged=self.config.privileged,
                userns_mode=self.config.userns_mode,
                platform=self.config.container_architecture,
                hostname=self.hostname(),
                allocate_terminal=self.config.allocate_terminal,
            ),
            self.console,
        )
        copy_to, copy_workspace = self._workspace_target(self.container_workdir())
        env = self.get_env()

        pipeline(
            self.container.pull(self.config.force_pull).if_bool(self.config.pull or self.config.force_pull),
            self._remove_job_container(),
            self.container.create(self.config.container_cap_add, self.config.container_cap_drop),
            self.container.start(False),
            self.container.update_from_image_env(env),
            self.container.update_from_env("/etc/environment", env),
            self.container.exec(["mkdir", "-m", "0777", "-p", self.get_act_path()], "", env, "root", ""),
            self.container.copy_dir(copy_to, os.path.join(self.config.workdir, "."), self.config.use_gitignore)
            .if_bool(copy_workspace),
            self.container.copy(self.get_act_path() + "/", *self._staging_files()),
        ).run(ctx)

    def start_job_container(self) -> Executor:
        """Provision the sandbox and stage the scratch directory."""

        def _start(ctx: ExecutionContext) -> None:
            image = self.platform_image()
            if image == SELF_HOSTED_IMAGE:
                self._start_host(ctx)
            else:
                self._start_docker(ctx, image)
            self.resources.state = ContainerState.STARTED

        return Leaf(_start, name="start-job-container")

    def _remove_job_container(self) -> Executor:
        def _remove(ctx: ExecutionContext) -> None:
            if self.container is None or self.config.reuse_containers:
                return
            name = self.job_container_name()
            volumes = volume_remove_executor(name, False, console=self.console).finally_(
                volume_remove_executor(f"{name}-env", False, console=self.console)
            )
            self.container.remove().then(volumes.if_(lambda ctx: not self.local)).run(ctx)

        return Leaf(_remove, name="remove-job-container")

    def stop_job_container(self) -> Executor:
        """Remove the container and, outside host mode, its two volumes."""

        def _stop(ctx: ExecutionContext) -> None:
            if self.state in (ContainerState.STOPPED, ContainerState.CLOSED):
                return
            self._remove_job_container().run(ctx)
            if self.container is not None:
                self.resources.state = ContainerState.STOPPED

        return Leaf(_stop, name="stop-job-container")

    def close_container(self) -> Executor:
        def _close(ctx: ExecutionContext) -> None:
            if self.container is None:
                return
            self.container.close().run(ctx)
            self.resources.state = ContainerState.CLOSED

        return Leaf(_close, name="close-job-container")

    def _teardown(self, ctx: ExecutionContext) -> None:
        if self.container is None:
            return
        background = ctx.background()
        if self.config.auto_remove:
            ctx.logger.info("Cleaning up container for job %s", self.job_name)
            try:
                self.stop_job_container().run(background)
            except Exception as e:
                ctx.logger.error("Error while cleaning container: %s", e)
        try:
            self.close_container().run(background)
        except Exception as e:
            ctx.logger.error("Error while closing container: %s", e)

    # pipelines

    def executor(self) -> Executor:
        """The whole job: steps, then teardown, gated by ``is_enabled``."""
        return new_job_executor(self).finally_(Leaf(self._teardown, name="teardown")).if_(self.is_enabled)

    def composite_executor(self) -> Executor:
        """Run every step of the composite action, recording failures.

        A failing step does not stop its siblings; the last recorded error is
        raised once every step had its turn. A cancellation is recorded the
        same way and stops the remaining steps.
        """
        units = []
        for i, step in enumerate(self.composite.steps):
            if not step.id:
                step.id = str(i)
            units.append(self._recording(self.new_step_executor(step)))
        units.append(job_error_executor())
        body = pipeline(*units)

        def _run(ctx: ExecutionContext) -> None:
            body.run(ctx.with_job_error_container())

        return Leaf(_run, name="composite")

    @staticmethod
    def _recording(unit: Executor) -> Executor:
        def _run(ctx: ExecutionContext) -> None:
            try:
                unit.run(ctx)
            except Exception as e:
                ctx.logger.error("%s", e)
                set_job_error(ctx, e)
                return
            cancelled = ctx.err()
            if cancelled is not None:
                ctx.logger.error("%s", cancelled)
                set_job_error(ctx, cancelled)

        return Leaf(_run, name="record-step")

    def new_step_executor(self, step: Step) -> Executor:
        """Run one step and publish the outputs it wrote."""

        def _run(ctx: ExecutionContext) -> None:
            self.current_step = step.id
            result = StepResult(StepStatus.SUCCESS, StepStatus.SUCCESS, {})
            self.step_results[step.id] = result
            previous = self.resources.active
            self.resources.active = self
            try:
                self._run_step(ctx, step, result)
            finally:
                self.resources.active = previous

        return Leaf(_run, name=f"step-{step.id}")

    def _run_step(self, ctx: ExecutionContext, step: Step, result: StepResult) -> None:
        sc = new_step_context(self, step)
        try:
            enabled = sc.is_enabled(ctx)
        except ExpressionError:
            result.outcome = result.conclusion = StepStatus.FAILURE
            raise
        if not enabled:
            ctx.logger.debug("Skipping step '%s' due to '%s'", step, step.if_)
            result.outcome = result.conclusion = StepStatus.SKIPPED
            return

        self.expr_eval = sc.setup_env(ctx)
        ctx.logger.info("⭐  Run %s", step)

        act_path = self.get_act_path()
        output_file = "workflow/outputcmd.txt"
        state_file = "workflow/statecmd.txt"
        sc.env["GITHUB_OUTPUT"] = f"{act_path}/{output_file}"
        sc.env["GITHUB_STATE"] = f"{act_path}/{state_file}"
        try:
            self.container.copy(
                act_path, FileEntry(name=output_file, mode=0o666), FileEntry(name=state_file, mode=0o666)
            ).run(ctx)
        except Exception:
            ctx.logger.error("  ❌  Failure - %s", step)
            result.outcome = result.conclusion = StepStatus.FAILURE
            raise

        error = None
        try:
            sc.executor(ctx).run(ctx)
            ctx.logger.info("  ✅  Success - %s", step)
        except Exception as e:
            ctx.logger.error("  ❌  Failure - %s", step)
            result.outcome = StepStatus.FAILURE
            if step.continue_on_error:
                ctx.logger.info("Failed but continue next step")
                result.conclusion = StepStatus.SUCCESS
            else:
                result.conclusion = StepStatus.FAILURE
                error = e

        # a failure to read back the files wins over the step's own error
        outputs: typing.Dict[str, str] = {}
        self.container.update_from_env(sc.env["GITHUB_OUTPUT"], outputs).run(ctx)
        for key, value in outputs.items():
            self.set_output(key, value)
        state: typing.Dict[str, str] = {}
        self.container.update_from_env(sc.env["GITHUB_STATE"], state).run(ctx)
        if state:
            self.intra_action_state.setdefault(step.id, {}).update(state)

        if error is not None:
            raise error

    # outputs

    def map_output(self, step_id: str, output_name: str, parent_step_id: str, parent_output_name: str) -> None:
        """Forward an output of one of this scope's steps to the parent step."""
        self.output_mappings[MappableOutput(step_id, output_name)] = MappableOutput(
            parent_step_id, parent_output_name
        )

    def set_output(self, name: str, value: str) -> None:
        result = self.step_results.get(self.current_step)
        if result is None:
            logger.warning("Unable to set output '%s': no step is running", name)
            return
        result.outputs[name] = value

        mapped = self.output_mappings.get(MappableOutput(self.current_step, name))
        if mapped is not None and self.parent is not None:
            target = self.parent.step_results.get(mapped.step_id)
            if target is not None:
                target.outputs[mapped.output_name] = value

    def interpolate_outputs(self) -> Executor:
        """Resolve ``${{ }}`` in the job's ``outputs:`` once the steps ran."""

        def _interpolate(ctx: ExecutionContext) -> None:
            evaluator = self.new_expression_evaluator(ctx=ctx)
            outputs = self.run.job().outputs
            for key, value in outputs.items():
                interpolated = evaluator.interpolate(value)
                if interpolated != value:
                    outputs[key] = interpolated

        return Leaf(_interpolate, name="interpolate-outputs")

    def result(self, status: str) -> None:
        self.run.job().result = status

    def steps(self) -> typing.List[Step]:
        return self.run.job().steps

    # platform and options

    def platform_image(self) -> str:
        job = self.run.job()
        job_container = job.container()
        if job_container is not None:
            return self.expr_eval.interpolate(job_container.image)

        if not job.runs_on:
            logger.error("'runs-on' key not defined in %s", self)

        for label in job.runs_on:
            image = self.config.platforms.get(self.expr_eval.interpolate(label).lower(), "")
            if image:
                return image
        return ""

    def hostname(self) -> str:
        """Value of ``-h``/``--hostname`` in the job container's options.

        Only the hostname flag is looked at. Any other option, known to
        ``docker create`` or not, is stepped over instead of failing the
        parse, and its value is skipped like any other token. An unterminated
        quote or a trailing ``--hostname`` without a value yields ''.
        """
        job_container = self.run.job().container()
        if job_container is None:
            return ""
        try:
            args = shlex.split(job_container.options)
        except ValueError:
            logger.warning("Cannot parse container options: %s", job_container.options)
            return ""

        hostname = ""
        i = 0
        while i < len(args):
            arg = args[i]
            if arg in ("-h", "--hostname"):
                if i + 1 >= len(args):
                    logger.warning("Cannot parse container options: %s", job_container.options)
                    return ""
                hostname = args[i + 1]
                i += 1
            elif arg.startswith("--hostname="):
                hostname = arg.split("=", 1)[1]
            elif arg.startswith("-h") and not arg.startswith("--"):
                hostname = arg[2:]
            i += 1
        return hostname

    def is_enabled(self, ctx: ExecutionContext) -> bool:
        job = self.run.job()
        try:
            run_job = eval_bool(self.expr_eval, job.if_)
        except ExpressionError as e:
            ctx.logger.error("  ❌  Error in if: expression - %s: %s", job.name, e)
            return False
        if not run_job:
            ctx.logger.debug("Skipping job '%s' due to '%s'", job.name, job.if_)
            return False

        if not self.platform_image():
            if not job.runs_on:
                logger.error("'runs-on' key not defined in %s", self)
            for label in job.runs_on:
                ctx.logger.info(
                    "🚧  Skipping unsupported platform -- Try running with `-P %s=...`",
                    self.expr_eval.interpolate(label),
                )
            return False
        return True

    def handle_credentials(self) -> typing.Tuple[str, str]:
        """Registry credentials of the job container.

        Raises:
            ConfigurationError: If the ``credentials:`` block is malformed.
        """
        # DOCKER_USERNAME / DOCKER_PASSWORD secrets are the deprecated fallback
        username = self.config.secrets.get("DOCKER_USERNAME", "")
        password = self.config.secrets.get("DOCKER_PASSWORD", "")

        job_container = self.run.job().container()
        if job_container is None or job_container.credentials is None:
            return username, password

        credentials = job_container.credentials
        context = create_error_context("handle_credentials", job_name=self.job_name)
        if len(credentials) != 2:
            raise ConfigurationError("invalid property count for key 'credentials:'", context=context)

        evaluator = self.new_expression_evaluator()
        username = evaluator.interpolate(credentials.get("username", ""))
        if not username:
            raise ConfigurationError("failed to interpolate container.credentials.username", context=context)
        password = evaluator.interpolate(credentials.get("password", ""))
        if not password:
            raise ConfigurationError("failed to interpolate container.credentials.password", context=context)

        if not credentials.get("username") or not credentials.get("password"):
            raise ConfigurationError("container.credentials cannot be empty", context=context)

        return username, password

    # contexts

    def _initial_github_context(self) -> GithubContext:
        return GithubContext(
            event_path=f"{self.get_act_path()}/workflow/event.json",
            workflow=self.run.workflow.name,
            run_id=self.config.env.get("GITHUB_RUN_ID", ""),
            run_number=self.config.env.get("GITHUB_RUN_NUMBER", ""),
            run_attempt=self.config.env.get("GITHUB_RUN_ATTEMPT", ""),
            actor=self.config.actor,
            event_name=self.config.event_name,
            workspace=self.container_workdir(),
            action=self.current_step,
            token=self.config.secrets.get("GITHUB_TOKEN", ""),
            action_path=self.action_path,
            action_ref=self.action_ref,
            action_repository=self.action_repository,
            job=self.job_name,
            repository_owner=self.config.env.get("GITHUB_REPOSITORY_OWNER", ""),
            retention_days=self.config.env.get("GITHUB_RETENTION_DAYS", ""),
            runner_perflog=self.config.env.get("RUNNER_PERFLOG", ""),
            runner_tracking_id=self.config.env.get("RUNNER_TRACKING_ID", ""),
        )

    def get_github_context(self) -> GithubContext:
        """The job's ``github`` context.

        Defaults (git lookups included) are computed once per job. The step
        dependent fields are refreshed on every call unless the context came
        from a serialized base, which is returned as supplied.
        """
        resources = self.resources
        if resources.github is None:
            github = self._initial_github_context()
            base = self.scope.github_context_base
            if base is not None and github.overlay_json(base):
                resources.github_from_base = True
            else:
                github = apply_defaults(
                    github,
                    self.config.workdir,
                    self.config.github_instance,
                    self.config.default_branch,
                    self.scope.event_json,
                    self.console,
                )
            resources.github = github

        if resources.github_from_base:
            return dataclasses.replace(resources.github)
        return dataclasses.replace(
            resources.github,
            event_path=f"{self.get_act_path()}/workflow/event.json",
            workspace=self.container_workdir(),
            action=self.current_step,
            action_path=self.action_path,
            action_ref=self.action_ref,
            action_repository=self.action_repository,
        )

    def with_github_env(self, env: typing.Dict[str, str]) -> typing.Dict[str, str]:
        labels = [self.expr_eval.interpolate(label) for label in self.run.job().runs_on]
        return github_env(
            env,
            self.get_github_context(),
            act_path=self.get_act_path(),
            job_name=self.job_name,
            config=self.config,
            runner_labels=labels,
        )

    def local_checkout_path(self) -> typing.Optional[str]:
        """``with.path`` of the first step checking out this same repository."""
        if self.config.force_remote_checkout:
            return None
        github = self.get_github_context()
        for step in self.run.job().steps:
            if is_local_checkout(github, step):
                return step.with_.get("path", "")
        return None

    def get_job_context(self) -> typing.Dict[str, str]:
        status = "success"
        for result in self.step_results.values():
            if result.conclusion == StepStatus.FAILURE:
                status = "failure"
                break
        return {"status": status}

    def get_steps_context(self) -> typing.Dict[str, StepResult]:
        return self.step_results

    def new_expression_evaluator(
        self,
        env: typing.Optional[typing.Dict[str, str]] = None,
        ctx: typing.Optional[ExecutionContext] = None,
    ) -> ExpressionEvaluator:
        github = self.context_data.get("github") or self.get_github_context().to_dict()
        contexts = {
            "github": github,
            "env": dict(env if env is not None else self.get_env()),
            "matrix": self.matrix,
            "steps": {k: v.to_dict() for k, v in self.get_steps_context().items()},
            "job": self.get_job_context(),
            "inputs": dict(self.inputs),
            "secrets": dict(self.config.secrets),
            "runner": {
                "os": "Linux",
                "temp": "/tmp",
                "tool_cache": "/opt/hostedtoolcache",
            },
        }
        return ContextEvaluator(
            contexts,
            job_status=lambda: self.get_job_context()["status"],
            is_cancelled=(lambda: ctx.cancelled) if ctx is not None else None,
        )
