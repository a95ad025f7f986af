#!/usr/bin/env python3
"""
Workflow document model.

A tolerant, read-only view of workflow and action YAML documents. Unknown
keys are ignored and loosely typed values (matrix, with, event payload)
are kept as plain dicts; nothing here validates the document.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml


class StepStatus(Enum):
    """Step outcome / conclusion values."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Raw outcome, post continue-on-error conclusion, and outputs of a step."""

    outcome: StepStatus = StepStatus.SUCCESS
    conclusion: StepStatus = StepStatus.SUCCESS
    outputs: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "conclusion": self.conclusion.value,
            "outputs": dict(self.outputs),
        }


class StepType(Enum):
    RUN = "run"
    LOCAL_ACTION = "local-action"
    REMOTE_ACTION = "remote-action"
    DOCKER = "docker"
    INVALID = "invalid"


def _str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): "" if v is None else _scalar(v) for k, v in value.items()}


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


@dataclass
class Step:
    """A single step of a job or composite action."""

    id: str = ""
    name: str = ""
    uses: str = ""
    run: str = ""
    shell: str = ""
    working_directory: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    with_: Dict[str, str] = field(default_factory=dict)
    if_: str = ""
    continue_on_error: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        data = data or {}
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            uses=str(data.get("uses") or ""),
            run=str(data.get("run") or ""),
            shell=str(data.get("shell") or ""),
            working_directory=str(data.get("working-directory") or ""),
            env=_str_map(data.get("env")),
            with_=_str_map(data.get("with")),
            if_=_scalar(data["if"]) if data.get("if") is not None else "",
            continue_on_error=bool(data.get("continue-on-error", False)),
        )

    def type(self) -> StepType:
        if bool(self.run) == bool(self.uses):
            return StepType.INVALID
        if self.run:
            return StepType.RUN
        if self.uses.startswith("docker://"):
            return StepType.DOCKER
        if self.uses.startswith("./"):
            return StepType.LOCAL_ACTION
        return StepType.REMOTE_ACTION

    def __str__(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        if self.run:
            return self.run.strip().splitlines()[0] if self.run.strip() else self.run
        return self.id


@dataclass
class JobContainer:
    """The ``container:`` block of a job."""

    image: str = ""
    options: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    credentials: Optional[Dict[str, str]] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["JobContainer"]:
        if value is None:
            return None
        if isinstance(value, str):
            return cls(image=value)
        if not isinstance(value, dict):
            return None
        credentials = value.get("credentials")
        return cls(
            image=str(value.get("image") or ""),
            options=str(value.get("options") or ""),
            env=_str_map(value.get("env")),
            credentials=_str_map(credentials) if isinstance(credentials, dict) else None,
        )


@dataclass
class Job:
    """One job of a workflow."""

    id: str
    name: str = ""
    runs_on: List[str] = field(default_factory=list)
    container_spec: Optional[JobContainer] = None
    env: Dict[str, str] = field(default_factory=dict)
    if_: str = ""
    needs: List[str] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    strategy: Dict[str, Any] = field(default_factory=dict)
    result: str = ""

    @classmethod
    def from_dict(cls, job_id: str, data: Dict[str, Any]) -> "Job":
        data = data or {}
        strategy = data.get("strategy")
        return cls(
            id=job_id,
            name=str(data.get("name") or job_id),
            runs_on=_str_list(data.get("runs-on")),
            container_spec=JobContainer.from_value(data.get("container")),
            env=_str_map(data.get("env")),
            if_=_scalar(data["if"]) if data.get("if") is not None else "",
            needs=_str_list(data.get("needs")),
            steps=[Step.from_dict(s) for s in data.get("steps") or [] if isinstance(s, dict)],
            outputs=_str_map(data.get("outputs")),
            strategy=strategy if isinstance(strategy, dict) else {},
        )

    def container(self) -> Optional[JobContainer]:
        return self.container_spec

    def environment(self) -> Dict[str, str]:
        return dict(self.env)

    def matrix(self) -> Dict[str, Any]:
        matrix = self.strategy.get("matrix")
        return matrix if isinstance(matrix, dict) else {}


@dataclass
class Workflow:
    """A parsed workflow document."""

    name: str = ""
    file: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    jobs: Dict[str, Job] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], file: str = "") -> "Workflow":
        data = data or {}
        jobs = data.get("jobs") or {}
        return cls(
            name=str(data.get("name") or file),
            file=file,
            env=_str_map(data.get("env")),
            jobs={str(k): Job.from_dict(str(k), v) for k, v in jobs.items() if isinstance(v, dict)},
        )


@dataclass
class Run:
    """A workflow paired with the job being executed."""

    workflow: Workflow
    job_id: str

    def job(self) -> Job:
        return self.workflow.jobs[self.job_id]

    def __str__(self) -> str:
        return f"{self.workflow.name}/{self.job_id}"


@dataclass
class ActionInput:
    description: str = ""
    required: bool = False
    default: str = ""


@dataclass
class ActionOutput:
    description: str = ""
    value: str = ""


@dataclass
class Action:
    """A parsed action.yml; only composite actions are executable locally."""

    name: str = ""
    description: str = ""
    using: str = ""
    inputs: Dict[str, ActionInput] = field(default_factory=dict)
    outputs: Dict[str, ActionOutput] = field(default_factory=dict)
    steps: List[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        data = data or {}
        runs = data.get("runs") or {}
        inputs = {}
        for key, spec in (data.get("inputs") or {}).items():
            spec = spec if isinstance(spec, dict) else {}
            inputs[str(key)] = ActionInput(
                description=str(spec.get("description") or ""),
                required=bool(spec.get("required", False)),
                default="" if spec.get("default") is None else _scalar(spec.get("default")),
            )
        outputs = {}
        for key, spec in (data.get("outputs") or {}).items():
            spec = spec if isinstance(spec, dict) else {}
            outputs[str(key)] = ActionOutput(
                description=str(spec.get("description") or ""),
                value=str(spec.get("value") or ""),
            )
        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            using=str(runs.get("using") or ""),
            inputs=inputs,
            outputs=outputs,
            steps=[Step.from_dict(s) for s in runs.get("steps") or [] if isinstance(s, dict)],
        )

    def is_composite(self) -> bool:
        return self.using == "composite"


def load_workflow(path: str) -> Workflow:
    """Load a workflow YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return Workflow.from_dict(data if isinstance(data, dict) else {}, file=os.path.basename(path))


def load_action(directory: str) -> Action:
    """Load ``action.yml`` (or ``action.yaml``) from an action directory."""
    for filename in ("action.yml", "action.yaml"):
        path = os.path.join(directory, filename)
        if os.path.isfile(path):
            with open(path) as f:
                data = yaml.safe_load(f)
            return Action.from_dict(data if isinstance(data, dict) else {})
    raise FileNotFoundError(f"No action.yml found in {directory}")
