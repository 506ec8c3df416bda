# model.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

EVENT_PUSH = "push"
EVENT_PULL_REQUEST = "pull_request"
EVENT_TYPES = (EVENT_PUSH, EVENT_PULL_REQUEST)

# Job / step statuses
SUCCESS = "success"
FAILED = "failed"
CANCELLED = "cancelled"
SKIPPED = "skipped"


@dataclass(frozen=True)
class Event:
    """An incoming repository event."""
    type: str
    branch: str


@dataclass(frozen=True)
class Trigger:
    """
    Event type + exact branch names that start a run.

    `branches=None` means "any branch" (bare `on: [push]`).
    """
    event: str
    branches: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class Step:
    """
    A single step inside a job.

    Exactly one of `run` (shell command) or `uses` (action name) is set.
    """
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = field(default_factory=dict)
    condition: Union[str, Callable[..., bool], None] = None
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} must set exactly one of run= or uses=")

    @property
    def is_action(self) -> bool:
        return self.uses is not None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return f"Run {self.uses}"
        first_line = (self.run or "").strip().splitlines()[0] if (self.run or "").strip() else ""
        return f"Run {first_line}"


@dataclass
class MatrixSpec:
    """Axis -> ordered values, plus `include` records."""
    axes: Dict[str, List[Any]] = field(default_factory=dict)
    include: List[Dict[str, Any]] = field(default_factory=list)
    additive_includes: bool = False


@dataclass
class Job:
    """A job definition: platform label, optional matrix, ordered steps."""
    name: str
    steps: List[Step]
    runs_on: str = "local"
    matrix: Optional[MatrixSpec] = None
    fail_fast: bool = True
    needs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class PipelineDefinition:
    name: str
    triggers: List[Trigger]
    jobs: List[Job]
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobInstance:
    """
    One concrete job: (job name, matrix assignment).

    This pair is the job identity for scheduling and caching.
    """
    job: Job
    assignment: Tuple[Tuple[str, Any], ...]
    runs_on: str

    @property
    def matrix(self) -> Dict[str, Any]:
        return dict(self.assignment)

    @property
    def identity(self) -> Tuple[str, Tuple[Tuple[str, Any], ...]]:
        return (self.job.name, self.assignment)

    @property
    def display_name(self) -> str:
        if not self.assignment:
            return self.job.name
        axes = self.job.matrix.axes if self.job.matrix else {}
        shown = [str(v) for k, v in self.assignment if k in axes] or [str(v) for _, v in self.assignment]
        return f"{self.job.name} ({', '.join(shown)})"


@dataclass(frozen=True)
class CacheSpec:
    """What the `cache` action stores, and what its key is derived from."""
    path: str
    fingerprint_inputs: Tuple[str, ...] = ()
    prefix: str = ""
    key: Optional[str] = None  # explicit key (already interpolated), overrides computation


@dataclass(frozen=True)
class DeploySpec:
    source: str
    target: str
    clean: bool = False
    clean_exclude: Tuple[str, ...] = ()
    single_commit: bool = False
    commit_message: str = "Deploy generated artifacts"


class CancelToken:
    """Cooperative cancellation flag shared by the instances of one matrix job."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class JobContext:
    """
    Everything a step needs to know about the job it runs in.

    Passed explicitly to every runner/action call; there is no global
    "current job".
    """
    instance: JobInstance
    workspace: Path
    env: Dict[str, str]
    cancel_token: CancelToken = field(default_factory=CancelToken)
    event: Optional[Event] = None
    post_steps: List[Tuple[str, Callable[[], None]]] = field(default_factory=list)

    @property
    def matrix(self) -> Dict[str, Any]:
        return self.instance.matrix

    @property
    def platform(self) -> str:
        return self.instance.runs_on

    @property
    def job_name(self) -> str:
        return self.instance.display_name

    def add_post_step(self, name: str, fn: Callable[[], None]) -> None:
        self.post_steps.append((name, fn))


@dataclass
class StepResult:
    name: str
    status: str
    exit_code: Optional[int] = None
    message: str = ""


@dataclass
class JobResult:
    name: str
    status: str
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


@dataclass
class RunResult:
    pipeline: str
    triggered: bool
    jobs: Dict[str, JobResult] = field(default_factory=dict)

    @property
    def status(self) -> str:
        statuses = [r.status for r in self.jobs.values()]
        if FAILED in statuses:
            return FAILED
        if CANCELLED in statuses:
            return CANCELLED
        return SUCCESS

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS
