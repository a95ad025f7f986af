"""
Pytest configuration and shared fixtures for localci tests.

Provides an in-memory container driver, workflow builders and RunContext
factories so job pipelines can be exercised without a docker daemon.
"""

import logging
from unittest.mock import MagicMock

import pytest

from localci.common.executor import ExecutionContext, Leaf
from localci.container.base import Container, parse_env_file, prepend_paths
from localci.model import Run, Workflow
from localci.runner.config import Config
from localci.runner.run_context import RunContext


# ============================================================================
# Fake Container Driver
# ============================================================================

class FakeContainer(Container):
    """Container driver keeping files in a dict and recording every call.

    ``on_exec(container, command, env, workdir, ctx)`` is called for each
    exec and may write files, print lines through ``input.stdout`` or raise.
    """

    def __init__(self, input=None):
        self.input = input
        self.calls = []
        self.files = {}
        self.execs = []
        self.on_exec = None
        self.fail_read = set()
        self.fail_close = None

    def _record(self, name, fn=None):
        def _run(ctx):
            self.calls.append(name)
            if fn is not None:
                fn(ctx)

        return Leaf(_run, name=f"fake-{name}")

    def pull(self, force_pull):
        return self._record("pull")

    def create(self, cap_add, cap_drop):
        return self._record("create")

    def start(self, attach):
        return self._record("start")

    def update_from_image_env(self, env):
        return self._record("update_from_image_env")

    def update_from_env(self, src_path, env):
        def _update(ctx):
            if src_path in self.fail_read:
                raise OSError(f"cannot read {src_path}")
            env.update(parse_env_file(self.files.get(src_path, "")))

        return self._record("update_from_env", _update)

    def update_from_path(self, env):
        def _update(ctx):
            if env.get("GITHUB_PATH"):
                prepend_paths(env, self.files.get(env["GITHUB_PATH"], ""))

        return self._record("update_from_path", _update)

    def exec(self, command, cmdline, env, user, workdir):
        def _exec(ctx):
            self.execs.append({"command": list(command), "env": dict(env), "workdir": workdir, "user": user})
            if self.on_exec is not None:
                self.on_exec(self, command, env, workdir, ctx)

        return self._record("exec", _exec)

    def copy(self, dest_path, *files):
        def _copy(ctx):
            for entry in files:
                self.files[f"{dest_path.rstrip('/')}/{entry.name}"] = entry.body

        return self._record("copy", _copy)

    def copy_dir(self, dest_path, src_path, use_gitignore):
        return self._record("copy_dir")

    def get_container_archive(self, src_path):
        return b""

    def remove(self):
        return self._record("remove")

    def close(self):
        def _close(ctx):
            if self.fail_close is not None:
                raise self.fail_close

        return self._record("close", _close)

    def append(self, path, line):
        self.files[path] = self.files.get(path, "") + line + "\n"


@pytest.fixture
def fake_container():
    """The container handed out by ``container_factory``."""
    return FakeContainer()


@pytest.fixture
def container_factory(fake_container):
    """Container factory returning ``fake_container`` with its input set."""

    def _factory(input, console):
        fake_container.input = input
        return fake_container

    return _factory


@pytest.fixture
def fresh_container_factory():
    """Container factory building one FakeContainer per job.

    Every container shares the factory's ``on_exec`` hook.
    """
    created = []

    def _factory(input, console):
        container = FakeContainer(input)
        container.on_exec = _factory.on_exec
        created.append(container)
        return container

    _factory.created = created
    _factory.on_exec = None
    return _factory


# ============================================================================
# Console and Execution Context Fixtures
# ============================================================================

@pytest.fixture
def mock_console():
    """Console whose commands all succeed with empty output."""
    console = MagicMock()
    console.sh.return_value = ""
    return console


@pytest.fixture
def ctx():
    """Execution context with a mock logger."""
    return ExecutionContext(log=MagicMock())


@pytest.fixture
def log_ctx():
    """Execution context logging through the standard logging module."""
    return ExecutionContext(log=logging.getLogger("localci.tests"))


# ============================================================================
# Workflow and RunContext Builders
# ============================================================================

@pytest.fixture
def make_config(tmp_path):
    """Build a Config rooted in a temporary working directory."""

    def _make(**kwargs):
        kwargs.setdefault("workdir", str(tmp_path))
        kwargs.setdefault("platforms", {"ubuntu-latest": "node:16-buster-slim"})
        return Config(**kwargs)

    return _make


@pytest.fixture
def make_run():
    """Build a Run of job ``build`` from plain workflow data."""

    def _make(job, workflow_env=None, name="wf", jobs=None):
        data = {"name": name, "env": workflow_env or {}, "jobs": jobs or {"build": job}}
        return Run(Workflow.from_dict(data, file="main.yml"), "build")

    return _make


@pytest.fixture
def make_rc(make_config, make_run, mock_console, container_factory):
    """Build a RunContext driving ``fake_container``."""

    def _make(job=None, config=None, workflow_env=None, **kwargs):
        job = job if job is not None else {"runs-on": "ubuntu-latest", "steps": []}
        kwargs.setdefault("console", mock_console)
        kwargs.setdefault("container_factory", container_factory)
        return RunContext(config or make_config(), make_run(job, workflow_env), **kwargs)

    return _make


@pytest.fixture
def write_action(tmp_path):
    """Write an ``action.yml`` below the working directory."""

    def _write(directory, content):
        path = tmp_path / directory
        path.mkdir(parents=True, exist_ok=True)
        (path / "action.yml").write_text(content)
        return f"./{directory}"

    return _write


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as fast unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that run host processes"
    )
