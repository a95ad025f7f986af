#!/usr/bin/env python3
"""Module of the provider compatible context.

This module builds the ``github`` context of a job from configuration, the
event payload and repository metadata, and projects it onto the well-known
environment variables step processes read.

Classes:
    GithubContext: Snapshot of the provider context.
    RemoteAction: Parsed ``uses:`` reference of a remote action.

Functions:
    apply_defaults: Fill the computed defaults of a context.
    github_env: Project a context onto environment variables.
    is_local_checkout: Whether a step checks out the current repository.
"""
# built-in modules
import json
import logging
import os
import re
import socket
import typing
from dataclasses import dataclass, field, fields

# user-defined modules
from localci.core.console import Console
from localci.model import Step, StepType

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://github.com"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"

_REMOTE_URL = re.compile(
    r"^(?:https?://(?:[^@/]+@)?|ssh://(?:[^@/]+@)?|[^@/]+@)(?P<host>[^:/]+)(?::\d+)?[:/](?P<slug>[^/]+/[^/]+?)(?:\.git)?/?$"
)
_REMOTE_ACTION = re.compile(r"^([^/@]+)/([^/@]+)(?:/([^@]*))?(?:@(.*))?$")


@dataclass
class GithubContext:
    """Provider compatible ``github`` context of a job."""

    event: typing.Dict[str, typing.Any] = field(default_factory=dict)
    event_path: str = ""
    workflow: str = ""
    run_id: str = ""
    run_number: str = ""
    run_attempt: str = ""
    actor: str = ""
    repository: str = ""
    event_name: str = ""
    sha: str = ""
    ref: str = ""
    ref_name: str = ""
    head_ref: str = ""
    base_ref: str = ""
    token: str = ""
    workspace: str = ""
    action: str = ""
    action_path: str = ""
    action_ref: str = ""
    action_repository: str = ""
    job: str = ""
    repository_owner: str = ""
    retention_days: str = ""
    runner_perflog: str = ""
    runner_tracking_id: str = ""
    server_url: str = ""
    api_url: str = ""
    graphql_url: str = ""

    def overlay_json(self, data: str) -> bool:
        """Overwrite fields from a serialized snapshot.

        Returns False, leaving the context untouched, when ``data`` is not a
        JSON object.
        """
        try:
            parsed = json.loads(data)
        except (TypeError, ValueError):
            return False
        if not isinstance(parsed, dict):
            return False
        known = {f.name for f in fields(self)}
        for key, value in parsed.items():
            if key not in known:
                continue
            if key == "event":
                self.event = value if isinstance(value, dict) else {}
            else:
                setattr(self, key, "" if value is None else str(value))
        return True

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def set_ref_and_sha(self, default_branch: str, repo_path: str, console: typing.Optional[Console] = None) -> None:
        """Resolve ``ref``/``sha`` from the event payload, falling back to git."""
        console = console or Console(shellVerbose=False)

        if self.event_name == "pull_request_target":
            self.ref = f"refs/heads/{self.base_ref}"
            self.sha = as_string(nested_map_lookup(self.event, "pull_request", "base", "sha"))
        elif self.event_name in ("pull_request", "pull_request_review", "pull_request_review_comment"):
            number = self.event.get("number")
            if number is not None:
                self.ref = f"refs/pull/{number}/merge"
        elif self.event_name in ("deployment", "deployment_status"):
            self.ref = as_string(nested_map_lookup(self.event, "deployment", "ref"))
            self.sha = as_string(nested_map_lookup(self.event, "deployment", "sha"))
        elif self.event_name == "release":
            self.ref = as_string(nested_map_lookup(self.event, "release", "tag_name"))
        elif self.event_name in ("push", "create", "workflow_dispatch"):
            self.ref = as_string(self.event.get("ref"))
            if self.event.get("deleted") is False:
                self.sha = as_string(self.event.get("after"))
        else:
            branch = as_string(nested_map_lookup(self.event, "repository", "default_branch"))
            if branch:
                self.ref = f"refs/heads/{branch}"

        if not self.ref:
            self.ref = find_git_ref(repo_path, console)
            if not self.ref:
                branch = default_branch or as_string(
                    nested_map_lookup(self.event, "repository", "default_branch")
                ) or "master"
                self.ref = f"refs/heads/{branch}"

        if not self.sha:
            self.sha = find_git_revision(repo_path, console)

        for prefix in ("refs/heads/", "refs/tags/"):
            if self.ref.startswith(prefix):
                self.ref_name = self.ref[len(prefix):]
                break
        else:
            self.ref_name = self.ref


def as_string(value: typing.Any) -> str:
    return value if isinstance(value, str) else ""


def nested_map_lookup(mapping: typing.Any, *keys: str) -> typing.Any:
    """Walk nested dicts; a missing key or non-dict level yields None."""
    if not keys:
        return None
    value = mapping
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


def _git(console: Console, repo_path: str, *args: str) -> str:
    """Run a read-only git query; an unavailable git binary yields ""."""
    try:
        return console.sh(["git", "-C", repo_path, *args], canFail=True)
    except OSError as e:
        logger.debug("git %s failed: %s", " ".join(args), e)
        return ""


def find_git_ref(repo_path: str, console: Console) -> str:
    ref = _git(console, repo_path, "symbolic-ref", "-q", "HEAD")
    if ref.startswith("refs/"):
        return ref
    tag = _git(console, repo_path, "describe", "--tags", "--exact-match")
    if tag and "fatal" not in tag:
        return f"refs/tags/{tag}"
    return ""


def find_git_revision(repo_path: str, console: Console) -> str:
    sha = _git(console, repo_path, "rev-parse", "HEAD")
    return sha if re.fullmatch(r"[0-9a-f]{40}", sha) else ""


def find_github_repo(repo_path: str, github_instance: str, console: typing.Optional[Console] = None) -> str:
    """Return ``owner/repo`` of the origin remote.

    Raises:
        ValueError: If there is no origin or it is not hosted on the instance.
    """
    console = console or Console(shellVerbose=False)
    url = _git(console, repo_path, "config", "--get", "remote.origin.url")
    match = _REMOTE_URL.match(url)
    if not match:
        raise ValueError(f"unable to parse origin remote url: {url!r}")
    if match.group("host") not in ("github.com", github_instance):
        raise ValueError(f"origin remote {url!r} is not hosted on {github_instance}")
    return match.group("slug")


def apply_defaults(
    ghc: GithubContext,
    repo_path: str,
    github_instance: str,
    default_branch: str,
    event_json: str,
    console: typing.Optional[Console] = None,
) -> GithubContext:
    """Fill the fields configuration left unset, then resolve ref and sha."""
    ghc.run_id = ghc.run_id or "1"
    ghc.run_number = ghc.run_number or "1"
    ghc.run_attempt = ghc.run_attempt or "1"
    ghc.retention_days = ghc.retention_days or "0"
    ghc.runner_perflog = ghc.runner_perflog or "/dev/null"
    # configs that never set an actor still expect one
    ghc.actor = ghc.actor or "nektos/act"
    if github_instance and github_instance != "github.com":
        ghc.server_url = ghc.server_url or f"https://{github_instance}"
        ghc.api_url = ghc.api_url or f"https://{github_instance}/api/v3"
        ghc.graphql_url = ghc.graphql_url or f"https://{github_instance}/api/graphql"
    else:
        ghc.server_url = ghc.server_url or DEFAULT_SERVER_URL
        ghc.api_url = ghc.api_url or DEFAULT_API_URL
        ghc.graphql_url = ghc.graphql_url or DEFAULT_GRAPHQL_URL

    try:
        ghc.repository = find_github_repo(repo_path, github_instance, console)
        if not ghc.repository_owner:
            ghc.repository_owner = ghc.repository.split("/")[0]
    except ValueError as e:
        logger.warning("unable to get git repo: %s", e)

    if event_json:
        try:
            event = json.loads(event_json)
            ghc.event = event if isinstance(event, dict) else {}
        except ValueError as e:
            logger.error("Unable to parse event '%s': %s", event_json, e)

    if ghc.event_name == "pull_request":
        ghc.base_ref = as_string(nested_map_lookup(ghc.event, "pull_request", "base", "ref"))
        ghc.head_ref = as_string(nested_map_lookup(ghc.event, "pull_request", "head", "ref"))

    ghc.set_ref_and_sha(default_branch, repo_path, console)
    return ghc


def get_outbound_ip() -> str:
    """Best effort address of the interface used for outbound traffic."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"


def set_action_runtime_vars(env: typing.Dict[str, str], artifact_server_port: str) -> None:
    env["ACTIONS_RUNTIME_URL"] = os.environ.get("ACTIONS_RUNTIME_URL") or (
        f"http://{get_outbound_ip()}:{artifact_server_port}/"
    )
    env["ACTIONS_RUNTIME_TOKEN"] = os.environ.get("ACTIONS_RUNTIME_TOKEN") or "token"


def image_os(platform_name: str) -> str:
    """ImageOS hint for a runner label, e.g. ``ubuntu-18.04`` -> ``ubuntu18``."""
    if platform_name == "ubuntu-latest":
        # no way to resolve what ubuntu-latest points to at run time
        return "ubuntu20"
    return platform_name.replace("-", "", 1).split(".", 1)[0]


def github_env(
    env: typing.Dict[str, str],
    github: GithubContext,
    *,
    act_path: str,
    job_name: str,
    config,
    runner_labels: typing.Sequence[str] = (),
) -> typing.Dict[str, str]:
    """Project ``github`` onto the provider environment variables of ``env``."""
    env["CI"] = "true"
    env["GITHUB_ENV"] = f"{act_path}/workflow/envs.txt"
    env["GITHUB_PATH"] = f"{act_path}/workflow/paths.txt"
    env["GITHUB_WORKFLOW"] = github.workflow
    env["GITHUB_RUN_ID"] = github.run_id
    env["GITHUB_RUN_NUMBER"] = github.run_number
    env["GITHUB_RUN_ATTEMPT"] = github.run_attempt
    env["GITHUB_ACTION"] = github.action
    env["GITHUB_ACTION_PATH"] = github.action_path
    env["GITHUB_ACTION_REPOSITORY"] = github.action_repository
    env["GITHUB_ACTION_REF"] = github.action_ref
    env["GITHUB_ACTIONS"] = "true"
    env["GITHUB_ACTOR"] = github.actor
    env["GITHUB_REPOSITORY"] = github.repository
    env["GITHUB_EVENT_NAME"] = github.event_name
    env["GITHUB_EVENT_PATH"] = github.event_path
    env["GITHUB_WORKSPACE"] = github.workspace
    env["GITHUB_SHA"] = github.sha
    env["GITHUB_REF"] = github.ref
    env["GITHUB_REF_NAME"] = github.ref_name
    env["GITHUB_TOKEN"] = github.token
    env["GITHUB_SERVER_URL"] = github.server_url or DEFAULT_SERVER_URL
    env["GITHUB_API_URL"] = github.api_url or DEFAULT_API_URL
    env["GITHUB_GRAPHQL_URL"] = github.graphql_url or DEFAULT_GRAPHQL_URL
    env["GITHUB_BASE_REF"] = github.base_ref
    env["GITHUB_HEAD_REF"] = github.head_ref
    env["GITHUB_JOB"] = job_name
    env["GITHUB_REPOSITORY_OWNER"] = github.repository_owner
    env["GITHUB_RETENTION_DAYS"] = github.retention_days
    env["RUNNER_PERFLOG"] = github.runner_perflog
    env["RUNNER_TRACKING_ID"] = github.runner_tracking_id

    if config.github_instance != "github.com":
        env["GITHUB_SERVER_URL"] = f"https://{config.github_instance}"
        env["GITHUB_API_URL"] = f"https://{config.github_instance}/api/v3"
        env["GITHUB_GRAPHQL_URL"] = f"https://{config.github_instance}/api/graphql"
    if config.github_server_url:
        env["GITHUB_SERVER_URL"] = config.github_server_url
    if config.github_api_server_url:
        env["GITHUB_API_URL"] = config.github_api_server_url
    if config.github_graphql_api_server_url:
        env["GITHUB_GRAPHQL_URL"] = config.github_graphql_api_server_url

    if config.artifact_server_path:
        set_action_runtime_vars(env, config.artifact_server_port)

    for label in runner_labels:
        if label:
            env["ImageOS"] = image_os(label)

    return env


@dataclass
class RemoteAction:
    """``org/repo[/path][@ref]`` reference of a remote action."""

    org: str
    repo: str
    path: str = ""
    ref: str = ""

    @classmethod
    def parse(cls, uses: str) -> typing.Optional["RemoteAction"]:
        match = _REMOTE_ACTION.match(uses or "")
        if not match:
            return None
        return cls(match.group(1), match.group(2), match.group(3) or "", match.group(4) or "")

    def is_checkout(self) -> bool:
        return self.org == "actions" and self.repo == "checkout"


def is_local_checkout(ghc: GithubContext, step: Step) -> bool:
    """Whether ``step`` checks out the same repository and ref as ``ghc``."""
    if step.type() != StepType.REMOTE_ACTION:
        return False
    remote = RemoteAction.parse(step.uses)
    if remote is None or not remote.is_checkout():
        return False
    if "repository" in step.with_ and step.with_["repository"] != ghc.repository:
        return False
    if "ref" in step.with_ and step.with_["ref"] != ghc.ref:
        return False
    return True
