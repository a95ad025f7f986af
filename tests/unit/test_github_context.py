#!/usr/bin/env python3
"""
Unit tests for the github context builder.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from localci.model import Step
from localci.runner.config import Config
from localci.runner.github_context import (
    GithubContext,
    RemoteAction,
    apply_defaults,
    find_git_ref,
    find_git_revision,
    find_github_repo,
    github_env,
    image_os,
    is_local_checkout,
    nested_map_lookup,
)


def git_console(outputs):
    """Mock Console answering ``git -C <path> <args...>`` from ``outputs``."""
    console = MagicMock()
    console.sh.side_effect = lambda command, **kwargs: outputs.get(" ".join(command[3:]), "")
    return console


@pytest.mark.unit
class TestOverlay:
    def test_overlay_known_fields(self):
        ghc = GithubContext(workflow="wf", actor="me")
        assert ghc.overlay_json(json.dumps({"actor": "you", "event": {"a": 1}, "unknown": "x"}))
        assert ghc.actor == "you"
        assert ghc.workflow == "wf"
        assert ghc.event == {"a": 1}

    @pytest.mark.parametrize("data", ["", "not json", "[1, 2]", "null"])
    def test_overlay_rejects_non_objects(self, data):
        ghc = GithubContext(actor="me")
        assert not ghc.overlay_json(data)
        assert ghc.actor == "me"


@pytest.mark.unit
class TestRefAndSha:
    """Test ref and sha resolution per event."""

    def _resolve(self, event_name, event, git=None, default_branch=""):
        ghc = GithubContext(event_name=event_name, event=event)
        ghc.set_ref_and_sha(default_branch, "/repo", git_console(git or {}))
        return ghc

    def test_push(self):
        ghc = self._resolve("push", {"ref": "refs/heads/dev", "deleted": False, "after": "abc"})
        assert (ghc.ref, ghc.ref_name, ghc.sha) == ("refs/heads/dev", "dev", "abc")

    def test_pull_request(self):
        ghc = self._resolve("pull_request", {"number": 7}, {"rev-parse HEAD": "a" * 40})
        assert ghc.ref == "refs/pull/7/merge"
        assert ghc.sha == "a" * 40

    def test_pull_request_target_uses_base(self):
        ghc = GithubContext(
            event_name="pull_request_target",
            base_ref="main",
            event={"pull_request": {"base": {"sha": "base-sha"}}},
        )
        ghc.set_ref_and_sha("", "/repo", git_console({}))
        assert (ghc.ref, ghc.sha) == ("refs/heads/main", "base-sha")

    def test_deployment(self):
        ghc = self._resolve("deployment", {"deployment": {"ref": "v2", "sha": "d"}})
        assert (ghc.ref, ghc.sha) == ("v2", "d")

    def test_release(self):
        assert self._resolve("release", {"release": {"tag_name": "v1"}}).ref == "v1"

    def test_other_events_use_repository_default_branch(self):
        ghc = self._resolve("schedule", {"repository": {"default_branch": "trunk"}})
        assert ghc.ref == "refs/heads/trunk"

    def test_falls_back_to_git(self):
        ghc = self._resolve("push", {}, {"symbolic-ref -q HEAD": "refs/heads/feature"})
        assert ghc.ref == "refs/heads/feature"

    def test_falls_back_to_tag(self):
        ghc = self._resolve("push", {}, {"describe --tags --exact-match": "v3.1"})
        assert (ghc.ref, ghc.ref_name) == ("refs/tags/v3.1", "v3.1")

    def test_falls_back_to_default_branch(self):
        assert self._resolve("push", {}, default_branch="main").ref == "refs/heads/main"
        assert self._resolve("push", {}).ref == "refs/heads/master"


@pytest.mark.unit
class TestGitHelpers:
    def test_find_git_ref_ignores_errors(self):
        console = git_console({"describe --tags --exact-match": "fatal: no tag exactly matches"})
        assert find_git_ref("/repo", console) == ""

    def test_find_git_revision_requires_a_sha(self):
        assert find_git_revision("/repo", git_console({"rev-parse HEAD": "fatal: bad"})) == ""

    def test_missing_git_binary(self):
        console = MagicMock()
        console.sh.side_effect = FileNotFoundError("git")
        assert find_git_ref("/repo", console) == ""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/nektos/act.git",
            "git@github.com:nektos/act.git",
            "ssh://git@github.com/nektos/act",
            "https://token@github.com/nektos/act",
        ],
    )
    def test_find_github_repo(self, url):
        console = git_console({"config --get remote.origin.url": url})
        assert find_github_repo("/repo", "github.com", console) == "nektos/act"

    def test_find_github_repo_on_enterprise_instance(self):
        console = git_console({"config --get remote.origin.url": "https://ghe.corp/team/tool.git"})
        assert find_github_repo("/repo", "ghe.corp", console) == "team/tool"

    def test_find_github_repo_other_host(self):
        console = git_console({"config --get remote.origin.url": "https://gitlab.com/a/b.git"})
        with pytest.raises(ValueError):
            find_github_repo("/repo", "github.com", console)


@pytest.mark.unit
class TestApplyDefaults:
    def test_defaults(self):
        console = git_console({"config --get remote.origin.url": "git@github.com:org/repo.git"})
        ghc = apply_defaults(GithubContext(event_name="push"), "/repo", "github.com", "", "", console)

        assert (ghc.run_id, ghc.run_number, ghc.run_attempt) == ("1", "1", "1")
        assert ghc.retention_days == "0"
        assert ghc.runner_perflog == "/dev/null"
        assert ghc.actor == "nektos/act"
        assert ghc.repository == "org/repo"
        assert ghc.repository_owner == "org"

    def test_configured_values_are_kept(self):
        ghc = apply_defaults(
            GithubContext(run_id="99", actor="me"), "/repo", "github.com", "", "", git_console({})
        )
        assert ghc.run_id == "99"
        assert ghc.actor == "me"

    def test_pull_request_refs(self):
        event = {"pull_request": {"base": {"ref": "main"}, "head": {"ref": "topic"}}, "number": 3}
        ghc = apply_defaults(
            GithubContext(event_name="pull_request"), "/repo", "github.com", "", json.dumps(event), git_console({})
        )
        assert (ghc.base_ref, ghc.head_ref, ghc.ref) == ("main", "topic", "refs/pull/3/merge")

    def test_unparseable_event_is_logged(self):
        with patch("localci.runner.github_context.logger") as log:
            ghc = apply_defaults(GithubContext(), "/repo", "github.com", "", "{oops", git_console({}))
        log.error.assert_called_once()
        assert ghc.event == {}

    def test_enterprise_urls(self):
        ghc = apply_defaults(GithubContext(), "/repo", "ghe.corp", "", "", git_console({}))
        assert ghc.server_url == "https://ghe.corp"
        assert ghc.api_url == "https://ghe.corp/api/v3"
        assert ghc.graphql_url == "https://ghe.corp/api/graphql"


@pytest.mark.unit
class TestGithubEnv:
    """Test the environment variable projection."""

    def _env(self, config, github=None, labels=()):
        return github_env(
            {}, github or GithubContext(ref="refs/heads/main", ref_name="main"),
            act_path="/act", job_name="build", config=config, runner_labels=labels,
        )

    def test_core_variables(self):
        env = self._env(Config(workdir="."))
        assert env["GITHUB_REF"] == "refs/heads/main"
        assert env["GITHUB_REF_NAME"] == "main"
        assert env["GITHUB_ENV"] == "/act/workflow/envs.txt"
        assert env["GITHUB_PATH"] == "/act/workflow/paths.txt"
        assert env["GITHUB_SERVER_URL"] == "https://github.com"
        assert env["GITHUB_API_URL"] == "https://api.github.com"
        assert env["GITHUB_GRAPHQL_URL"] == "https://api.github.com/graphql"
        assert "ACTIONS_RUNTIME_URL" not in env

    def test_url_overrides_are_independent(self):
        env = self._env(Config(workdir=".", github_api_server_url="https://api.internal"))
        assert env["GITHUB_SERVER_URL"] == "https://github.com"
        assert env["GITHUB_API_URL"] == "https://api.internal"
        assert env["GITHUB_GRAPHQL_URL"] == "https://api.github.com/graphql"

    def test_artifact_server(self, monkeypatch):
        monkeypatch.delenv("ACTIONS_RUNTIME_URL", raising=False)
        monkeypatch.setenv("ACTIONS_RUNTIME_TOKEN", "from-host")
        with patch("localci.runner.github_context.get_outbound_ip", return_value="10.0.0.5"):
            env = self._env(Config(workdir=".", artifact_server_path="/tmp/artifacts", artifact_server_port="1234"))
        assert env["ACTIONS_RUNTIME_URL"] == "http://10.0.0.5:1234/"
        assert env["ACTIONS_RUNTIME_TOKEN"] == "from-host"

    def test_image_os(self):
        assert self._env(Config(workdir="."), labels=["ubuntu-22.04"])["ImageOS"] == "ubuntu22"

    @pytest.mark.parametrize(
        "label,expected",
        [("ubuntu-latest", "ubuntu20"), ("ubuntu-18.04", "ubuntu18"), ("macos-12", "macos12")],
    )
    def test_image_os_names(self, label, expected):
        assert image_os(label) == expected


@pytest.mark.unit
class TestCheckoutDetection:
    def test_remote_action_parse(self):
        action = RemoteAction.parse("actions/checkout/sub@v4")
        assert (action.org, action.repo, action.path, action.ref) == ("actions", "checkout", "sub", "v4")
        assert action.is_checkout()
        assert RemoteAction.parse("not-a-reference") is None

    def test_local_checkout(self):
        ghc = GithubContext(repository="o/r", ref="refs/heads/main")
        assert is_local_checkout(ghc, Step(uses="actions/checkout@v4"))
        assert is_local_checkout(ghc, Step(uses="actions/checkout@v4", with_={"repository": "o/r"}))
        assert not is_local_checkout(ghc, Step(uses="actions/checkout@v4", with_={"ref": "other"}))
        assert not is_local_checkout(ghc, Step(uses="actions/setup-node@v4"))
        assert not is_local_checkout(ghc, Step(run="git clone"))

    def test_nested_map_lookup(self):
        assert nested_map_lookup({"a": {"b": 1}}, "a", "b") == 1
        assert nested_map_lookup({"a": 1}, "a", "b") is None
        assert nested_map_lookup({}) is None
