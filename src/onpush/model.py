# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Dict, List, Optional


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ActionRef:
    """Parsed `uses:` reference, e.g. actions-rs/toolchain@v1."""
    name: str
    version: Optional[str] = None

    @classmethod
    def parse(cls, ref: str) -> ActionRef:
        ref = ref.strip()
        if not ref:
            raise ValueError("empty action reference")
        name, sep, version = ref.partition("@")
        return cls(name=name, version=version if sep else None)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


@dataclass(frozen=True)
class Step:
    """
    A single unit of execution inside a job.

    Exactly one of `run` (inline shell command) or `uses` (external action
    reference) is set.
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    always: bool = False
    cwd: str | None = None
    id: Optional[str] = None
    timeout_minutes: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} must set exactly one of 'run' or 'uses'")

    @property
    def is_action(self) -> bool:
        return self.uses is not None

    @property
    def action(self) -> Optional[ActionRef]:
        return ActionRef.parse(self.uses) if self.uses else None

    def describe(self) -> str:
        """One-line summary: the action reference or the first line of the command."""
        if self.uses:
            return self.uses
        lines = (self.run or "").strip().splitlines()
        return lines[0] if lines else ""


@dataclass
class Job:
    """A CI job: ordered steps plus scheduling metadata."""
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    runs_on: str = "ubuntu-latest"
    container: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def title(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class Trigger:
    """An event the pipeline reacts to, optionally narrowed by branch globs."""
    event: str
    branches: Optional[List[str]] = None

    def matches(self, event: TriggerEvent) -> bool:
        if event.name != self.event:
            return False
        if not self.branches:
            return True
        return any(fnmatch(event.branch, pattern) for pattern in self.branches)


@dataclass
class Pipeline:
    name: str
    jobs: list[Job]
    triggers: list[Trigger] = field(default_factory=lambda: [Trigger("push")])

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def is_triggered_by(self, event: TriggerEvent) -> bool:
        return any(t.matches(event) for t in self.triggers)


@dataclass(frozen=True)
class TriggerEvent:
    """The occurrence that starts a run. Only `push` is used by the reference pipeline."""
    name: str
    ref: str = "refs/heads/main"
    sha: str = ""

    @property
    def branch(self) -> str:
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else self.ref


# ---------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------

class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.SKIPPED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
}


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    error: Optional[str] = None


@dataclass
class Artifact:
    """A named, retained output of a job."""
    run_id: str
    job: str
    name: str
    path: str
    files: List[str] = field(default_factory=list)


@dataclass
class JobResult:
    name: str
    status: JobStatus = JobStatus.PENDING
    steps: list[StepResult] = field(default_factory=list)
    exit_code: Optional[int] = None
    artifacts: list[Artifact] = field(default_factory=list)
    error: Optional[str] = None
    duration: float = 0.0

    def transition(self, new: JobStatus) -> None:
        allowed = _TRANSITIONS.get(self.status, set())
        if new not in allowed:
            raise ValueError(f"job {self.name!r}: illegal transition {self.status.value} -> {new.value}")
        self.status = new

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCEEDED


@dataclass
class PipelineResult:
    run_id: str
    event: TriggerEvent
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    triggered: bool = True

    @property
    def status(self) -> str:
        if not self.triggered:
            return "skipped"
        if all(r.ok for r in self.jobs.values()):
            return "succeeded"
        return "failed"

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
