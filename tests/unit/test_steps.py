#!/usr/bin/env python3
"""
Unit tests for step execution.

Covers run steps, workflow commands, output and state files, the step
environment, continue-on-error and composite actions.
"""

from unittest.mock import MagicMock, patch

import pytest

from localci.common.executor import error_executor, set_job_error
from localci.core.errors import ContainerError, ExpressionError, PipelineCancelled, StepError
from localci.model import Step, StepStatus
from localci.runner.step import (
    LocalActionStep,
    RunStep,
    UnsupportedStep,
    handle_workflow_command,
    new_step_context,
)

OUTPUT_FILE = "/var/run/act/workflow/outputcmd.txt"
STATE_FILE = "/var/run/act/workflow/statecmd.txt"
ENV_FILE = "/var/run/act/workflow/envs.txt"


def job(*steps, **extra):
    data = {"runs-on": "ubuntu-latest", "steps": list(steps)}
    data.update(extra)
    return data


def step_execs(container):
    """Execs of step scripts, without the scratch directory mkdir."""
    return [e for e in container.execs if e["command"][0] != "mkdir"]


# ============================================================================
# Workflow commands
# ============================================================================

@pytest.mark.unit
class TestWorkflowCommands:
    """Test ``::command::`` lines printed by step processes."""

    def _rc(self):
        rc = MagicMock()
        rc.current_step = "s1"
        rc.intra_action_state = {}
        rc.extra_path = []
        rc.get_env.return_value = {}
        return rc

    def test_set_output(self):
        rc = self._rc()
        assert handle_workflow_command(rc, "::set-output name=result::a%0Ab")
        rc.set_output.assert_called_once_with("result", "a\nb")

    def test_save_state(self):
        rc = self._rc()
        handle_workflow_command(rc, "::save-state name=pid::42")
        assert rc.intra_action_state == {"s1": {"pid": "42"}}

    def test_add_path_prepends(self):
        rc = self._rc()
        handle_workflow_command(rc, "::add-path::/opt/a")
        handle_workflow_command(rc, "::add-path::/opt/b")
        assert rc.extra_path == ["/opt/b", "/opt/a"]

    def test_set_env(self):
        rc = self._rc()
        env = {}
        rc.get_env.return_value = env
        handle_workflow_command(rc, "::set-env name=FOO::bar")
        assert env == {"FOO": "bar"}

    def test_annotations_are_logged(self):
        log = MagicMock()
        rc = self._rc()
        handle_workflow_command(rc, "::warning file=a.py::careful", log)
        handle_workflow_command(rc, "::error::broken", log)
        log.warning.assert_called_once()
        log.error.assert_called_once()

    def test_plain_lines_are_not_commands(self):
        rc = self._rc()
        assert not handle_workflow_command(rc, "hello world")
        assert not handle_workflow_command(rc, "::unknown::x")


# ============================================================================
# Step contexts
# ============================================================================

@pytest.mark.unit
class TestStepContextFactory:
    def test_kinds(self):
        rc = MagicMock()
        assert isinstance(new_step_context(rc, Step(run="ls")), RunStep)
        assert isinstance(new_step_context(rc, Step(uses="./local")), LocalActionStep)
        assert isinstance(new_step_context(rc, Step(uses="actions/checkout@v4")), UnsupportedStep)
        assert isinstance(new_step_context(rc, Step(run="ls", uses="./x")), UnsupportedStep)

    @pytest.mark.parametrize(
        "shell,expected",
        [
            ("", ["bash", "--noprofile", "--norc", "-e", "-o", "pipefail", "/s.sh"]),
            ("sh", ["sh", "-e", "/s.sh"]),
            ("python", ["python", "/s.sh"]),
            ("perl {0}", ["perl", "/s.sh"]),
            ("zsh", ["zsh", "/s.sh"]),
        ],
    )
    def test_shell_command(self, shell, expected):
        step = RunStep(MagicMock(), Step(run="x", shell=shell))
        assert step.shell_command("/s.sh") == expected


# ============================================================================
# Run steps through the job pipeline
# ============================================================================

@pytest.mark.unit
class TestRunSteps:
    """Test run steps executed by the job pipeline."""

    def test_script_is_copied_and_executed(self, make_rc, fake_container, ctx):
        rc = make_rc(job({"id": "hello", "run": "echo ${{ env.WHO }}", "working-directory": "sub"}, env={"WHO": "me"}))
        rc.executor().run(ctx)

        assert fake_container.files["/var/run/act/workflow/hello.sh"] == "echo me"
        executed = step_execs(fake_container)[0]
        assert executed["command"][-1] == "/var/run/act/workflow/hello.sh"
        assert executed["workdir"] == "sub"
        assert rc.run.job().result == "success"

    def test_steps_without_id_get_their_position(self, make_rc, ctx):
        rc = make_rc(job({"run": "a"}, {"id": "named", "run": "b"}, {"run": "c"}))
        rc.executor().run(ctx)
        assert list(rc.step_results) == ["0", "named", "2"]

    def test_outputs_from_output_file(self, make_rc, fake_container, ctx):
        def _write(container, command, env, workdir, exec_ctx):
            if command[0] == "mkdir":
                return
            container.append(env["GITHUB_OUTPUT"], "greeting=hello")
            container.append(env["GITHUB_OUTPUT"], "multi<<EOF")
            container.append(env["GITHUB_OUTPUT"], "line 1")
            container.append(env["GITHUB_OUTPUT"], "line 2")
            container.append(env["GITHUB_OUTPUT"], "EOF")

        fake_container.on_exec = _write
        rc = make_rc(job({"id": "greet", "run": "echo"}, outputs={"said": "${{ steps.greet.outputs.greeting }}"}))

        rc.executor().run(ctx)

        assert rc.step_results["greet"].outputs == {"greeting": "hello", "multi": "line 1\nline 2"}
        assert rc.run.job().outputs == {"said": "hello"}

    def test_output_file_is_reset_per_step(self, make_rc, fake_container, ctx):
        def _write(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/first.sh"):
                container.append(env["GITHUB_OUTPUT"], "only=first")

        fake_container.on_exec = _write
        rc = make_rc(job({"id": "first", "run": "a"}, {"id": "second", "run": "b"}))
        rc.executor().run(ctx)

        assert rc.step_results["second"].outputs == {}

    def test_outputs_are_published_when_the_step_fails(self, make_rc, fake_container, ctx):
        def _fail(container, command, env, workdir, exec_ctx):
            if command[0] == "mkdir":
                return
            container.append(env["GITHUB_OUTPUT"], "partial=yes")
            raise ContainerError("exit code 1")

        fake_container.on_exec = _fail
        rc = make_rc(job({"id": "broken", "run": "false"}, {"id": "after", "run": "echo"}))

        with pytest.raises(ContainerError):
            rc.executor().run(ctx)

        result = rc.step_results["broken"]
        assert result.outputs == {"partial": "yes"}
        assert result.outcome == StepStatus.FAILURE
        assert result.conclusion == StepStatus.FAILURE
        assert "after" not in rc.step_results
        assert rc.run.job().result == "failure"

    def test_continue_on_error(self, make_rc, fake_container, ctx):
        def _fail(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/flaky.sh"):
                raise ContainerError("exit code 1")

        fake_container.on_exec = _fail
        rc = make_rc(job({"id": "flaky", "run": "false", "continue-on-error": True}, {"id": "after", "run": "echo"}))

        rc.executor().run(ctx)

        assert rc.step_results["flaky"].outcome == StepStatus.FAILURE
        assert rc.step_results["flaky"].conclusion == StepStatus.SUCCESS
        assert rc.step_results["after"].outcome == StepStatus.SUCCESS
        assert rc.run.job().result == "success"

    def test_output_read_error_wins_over_step_error(self, make_rc, fake_container, ctx):
        def _fail(container, command, env, workdir, exec_ctx):
            if command[0] != "mkdir":
                raise ContainerError("step")

        fake_container.on_exec = _fail
        fake_container.fail_read.add(OUTPUT_FILE)
        rc = make_rc(job({"run": "false"}))

        with pytest.raises(OSError, match="cannot read"):
            rc.executor().run(ctx)

    def test_failed_file_staging_marks_the_step_failed(self, make_rc, fake_container, ctx):
        stage = fake_container.copy

        def _copy(dest_path, *files):
            if any(f.name == "workflow/outputcmd.txt" for f in files):
                return error_executor(OSError("disk full"))
            return stage(dest_path, *files)

        fake_container.copy = _copy
        rc = make_rc(job({"id": "staged", "run": "echo"}))

        with pytest.raises(OSError, match="disk full"):
            rc.executor().run(ctx)

        result = rc.step_results["staged"]
        assert result.outcome == StepStatus.FAILURE
        assert result.conclusion == StepStatus.FAILURE
        assert step_execs(fake_container) == []
        assert rc.run.job().result == "failure"

    def test_skipped_step(self, make_rc, fake_container, ctx):
        rc = make_rc(job({"id": "never", "run": "echo", "if": "${{ env.MISSING == 'x' }}"}))
        rc.executor().run(ctx)

        assert rc.step_results["never"].outcome == StepStatus.SKIPPED
        assert rc.step_results["never"].conclusion == StepStatus.SKIPPED
        assert step_execs(fake_container) == []

    def test_failure_condition_runs_after_failure(self, make_rc, fake_container, ctx):
        def _fail(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/bad.sh"):
                raise ContainerError("exit code 1")

        fake_container.on_exec = _fail
        rc = make_rc(job(
            {"id": "bad", "run": "false", "continue-on-error": True},
            {"id": "report", "run": "echo", "if": "${{ steps.bad.outcome == 'failure' }}"},
        ))
        rc.executor().run(ctx)

        assert rc.step_results["report"].outcome == StepStatus.SUCCESS

    def test_invalid_step_condition_fails_the_step(self, make_rc, ctx):
        rc = make_rc(job({"id": "bad", "run": "echo", "if": "${{ ( }}"}))

        with pytest.raises(ExpressionError, match="Error in if-expression"):
            rc.executor().run(ctx)
        assert rc.step_results["bad"].conclusion == StepStatus.FAILURE

    def test_unsupported_step_fails(self, make_rc, ctx):
        rc = make_rc(job({"uses": "actions/setup-node@v4"}))
        with pytest.raises(StepError, match="Unsupported step reference"):
            rc.executor().run(ctx)


# ============================================================================
# Step environment
# ============================================================================

@pytest.mark.unit
class TestStepEnvironment:
    """Test how the step environment is layered."""

    def _capture(self, fake_container):
        seen = {}

        def _exec(container, command, env, workdir, exec_ctx):
            if command[0] != "mkdir":
                seen[command[-1].rsplit("/", 1)[-1]] = dict(env)

        fake_container.on_exec = _exec
        return seen

    def test_layers(self, make_rc, fake_container, ctx):
        seen = self._capture(fake_container)
        rc = make_rc(
            job(
                {"id": "s", "run": "echo", "env": {"C": "${{ env.A }}-step", "B": "step"}},
                env={"A": "job", "B": "job"},
                container={"image": "alpine", "env": {"FROM_CONTAINER": "${{ env.A }}"}},
            ),
            workflow_env={"A": "workflow", "W": "workflow"},
        )
        rc.executor().run(ctx)

        env = seen["s.sh"]
        assert env["A"] == "job"
        assert env["W"] == "workflow"
        assert env["B"] == "step"
        assert env["C"] == "job-step"
        assert env["FROM_CONTAINER"] == "job"
        assert env["ACT"] == "true"
        assert env["GITHUB_OUTPUT"] == OUTPUT_FILE
        assert env["GITHUB_STATE"] == STATE_FILE
        assert env["GITHUB_ENV"] == ENV_FILE

    def test_env_and_path_files_reach_later_steps(self, make_rc, fake_container, ctx):
        seen = self._capture(fake_container)
        capture = fake_container.on_exec

        def _exec(container, command, env, workdir, exec_ctx):
            capture(container, command, env, workdir, exec_ctx)
            if command[-1].endswith("/first.sh"):
                container.append(env["GITHUB_ENV"], "FROM_FILE=yes")
                container.append(env["GITHUB_PATH"], "/opt/tool/bin")

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "first", "run": "a"}, {"id": "second", "run": "b"}))
        rc.executor().run(ctx)

        assert "FROM_FILE" not in seen["first.sh"]
        assert seen["second.sh"]["FROM_FILE"] == "yes"
        assert seen["second.sh"]["PATH"].startswith("/opt/tool/bin")

    def test_workflow_commands_from_process_output(self, make_rc, fake_container, ctx):
        seen = self._capture(fake_container)
        capture = fake_container.on_exec

        def _exec(container, command, env, workdir, exec_ctx):
            capture(container, command, env, workdir, exec_ctx)
            if command[-1].endswith("/first.sh"):
                container.input.stdout("::set-output name=version::1.2.3")
                container.input.stdout("::add-path::/usr/local/extra")
                container.input.stdout("ordinary output")

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "first", "run": "a"}, {"id": "second", "run": "b"}))
        rc.executor().run(ctx)

        assert rc.step_results["first"].outputs == {"version": "1.2.3"}
        assert rc.extra_path == ["/usr/local/extra"]
        assert seen["second.sh"]["PATH"].split(":")[0] == "/usr/local/extra"

    def test_state_file_is_exposed_to_the_same_step(self, make_rc, fake_container, ctx):
        seen = self._capture(fake_container)
        rc = make_rc(job({"id": "s", "run": "echo"}))
        rc.intra_action_state["s"] = {"pid": "42"}

        rc.executor().run(ctx)

        assert seen["s.sh"]["STATE_pid"] == "42"

    def test_state_file_is_recorded(self, make_rc, fake_container, ctx):
        def _exec(container, command, env, workdir, exec_ctx):
            if command[0] != "mkdir":
                container.append(env["GITHUB_STATE"], "token=abc")

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "s", "run": "echo"}))
        rc.executor().run(ctx)

        assert rc.intra_action_state == {"s": {"token": "abc"}}


# ============================================================================
# Composite actions
# ============================================================================

COMPOSITE = """
name: greet
inputs:
  who:
    default: world
outputs:
  mapped:
    value: ${{ steps.inner.outputs.value }}
  computed:
    value: hello-${{ inputs.who }}
runs:
  using: composite
  steps:
    - id: inner
      run: echo ${{ inputs.who }}
      shell: bash
    - id: second
      run: echo second
      shell: bash
"""


@pytest.mark.unit
class TestCompositeActions:
    """Test ``uses: ./path`` composite actions."""

    def test_inputs_and_outputs(self, make_rc, fake_container, write_action, ctx):
        uses = write_action("actions/greet", COMPOSITE)

        def _exec(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/inner.sh"):
                container.input.stdout("::set-output name=value::42")

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "comp", "uses": uses, "with": {"who": "me"}}))

        rc.executor().run(ctx)

        assert fake_container.files["/var/run/act/workflow/inner.sh"] == "echo me"
        outputs = rc.step_results["comp"].outputs
        assert outputs["mapped"] == "42"
        assert outputs["computed"] == "hello-me"
        assert "inner" not in rc.step_results

    def test_input_defaults(self, make_rc, fake_container, write_action, ctx):
        uses = write_action("actions/greet", COMPOSITE)
        rc = make_rc(job({"id": "comp", "uses": uses}))
        rc.executor().run(ctx)

        assert fake_container.files["/var/run/act/workflow/inner.sh"] == "echo world"
        assert rc.step_results["comp"].outputs["computed"] == "hello-world"

    def test_failing_inner_step_does_not_stop_siblings(self, make_rc, fake_container, write_action, ctx):
        uses = write_action("actions/greet", COMPOSITE)

        def _exec(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/inner.sh"):
                raise ContainerError("exit code 2")

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "comp", "uses": uses}))

        with pytest.raises(ContainerError, match="exit code 2"):
            rc.executor().run(ctx)

        scripts = [e["command"][-1].rsplit("/", 1)[-1] for e in step_execs(fake_container)]
        assert scripts == ["inner.sh", "second.sh"]
        assert rc.step_results["comp"].conclusion == StepStatus.FAILURE
        assert rc.run.job().result == "failure"

    def test_cancellation_during_inner_step_is_the_job_error(self, make_rc, fake_container, write_action, ctx):
        uses = write_action("actions/greet", COMPOSITE)

        def _exec(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/inner.sh"):
                exec_ctx.cancel()

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "comp", "uses": uses}))

        with patch("localci.runner.run_context.set_job_error", wraps=set_job_error) as record:
            with pytest.raises(PipelineCancelled):
                rc.executor().run(ctx)

        recorded = [c.args[1] for c in record.call_args_list]
        assert len(recorded) == 1
        assert isinstance(recorded[0], PipelineCancelled)
        scripts = [e["command"][-1].rsplit("/", 1)[-1] for e in step_execs(fake_container)]
        assert scripts == ["inner.sh"]
        assert rc.step_results["comp"].conclusion == StepStatus.FAILURE
        assert rc.run.job().result == "failure"

    def test_composite_env_is_inherited(self, make_rc, fake_container, write_action, ctx):
        uses = write_action("actions/greet", COMPOSITE)
        seen = {}

        def _exec(container, command, env, workdir, exec_ctx):
            if command[-1].endswith("/inner.sh"):
                seen.update(env)

        fake_container.on_exec = _exec
        rc = make_rc(job({"id": "comp", "uses": uses, "env": {"OUTER": "1"}}))
        rc.executor().run(ctx)

        assert seen["OUTER"] == "1"
        assert seen["GITHUB_ACTION_PATH"].endswith("actions/greet")

    def test_missing_action(self, make_rc, ctx):
        rc = make_rc(job({"id": "comp", "uses": "./does/not/exist"}))
        with pytest.raises(StepError, match="No action.yml"):
            rc.executor().run(ctx)

    def test_non_composite_action(self, make_rc, write_action, ctx):
        uses = write_action("actions/node", "runs:\n  using: node20\n  main: index.js\n")
        rc = make_rc(job({"id": "comp", "uses": uses}))
        with pytest.raises(StepError, match="Unsupported action type 'node20'"):
            rc.executor().run(ctx)
