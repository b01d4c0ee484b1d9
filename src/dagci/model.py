# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import CIError


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (JobState.PENDING, JobState.RUNNING)


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Trigger:
    """An event that starts the workflow, optionally limited to some branches."""
    event: str
    branches: Tuple[str, ...] = ()

    def matches(self, event: str, branch: Optional[str]) -> bool:
        if event != self.event:
            return False
        if not self.branches:
            return True
        if branch is None:
            return False
        return any(fnmatch(branch, pattern) for pattern in self.branches)


@dataclass(frozen=True)
class Step:
    """
    A single step inside a CI job.

    Exactly one of `run` (shell command) or `uses` (action reference) is set.
    The core never looks inside either; it only hands the step to an executor.
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    condition: Optional[str] = None
    continue_on_error: bool = False
    cwd: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def action(self) -> str:
        """Human readable action reference, used in output and errors."""
        return self.uses if self.uses is not None else (self.run or "")


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps + dependencies + gate.

    `id` is what `needs` refers to; `name` is only a label.
    """
    id: str
    steps: Tuple[Step, ...]
    name: str = ""
    needs: Tuple[str, ...] = ()
    condition: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)

    # advisory job: a failure here never fails the run or blocks dependents
    continue_on_error: bool = False
    timeout: Optional[float] = None

    @property
    def title(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Workflow:
    name: str
    jobs: Tuple[Job, ...]
    triggers: Tuple[Trigger, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.id == job_id:
                return j
        raise KeyError(job_id)

    @property
    def job_ids(self) -> List[str]:
        return [j.id for j in self.jobs]

    def is_triggered(self, event: str, branch: Optional[str]) -> bool:
        # no declared triggers -> runs for any context (e.g. Python DSL workflows)
        if not self.triggers:
            return True
        return any(t.matches(event, branch) for t in self.triggers)


@dataclass(frozen=True)
class ArtifactRef:
    name: str
    version: int
    job: str
    run_id: str
    size: int
    sha256: str
    retention_days: int
    created_at: datetime

    def __str__(self) -> str:
        return f"{self.name}@v{self.version}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "job": self.job,
            "run_id": self.run_id,
            "size": self.size,
            "sha256": self.sha256,
            "retention_days": self.retention_days,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of one step.

    Executors fill `artifacts` with raw payloads; the scheduler moves them
    into the artifact store and keeps only `artifact_refs` on the recorded
    result.
    """
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    artifacts: Mapping[str, bytes] = field(default_factory=dict)
    artifact_refs: Tuple[ArtifactRef, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    tolerated: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILURE

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "error": self.error,
            "tolerated": self.tolerated,
            "artifacts": [str(r) for r in self.artifact_refs],
            "duration": self.duration,
        }


@dataclass
class JobRecord:
    """Per-run state of one job. Only the scheduler's coordinator mutates it."""
    job: Job
    state: JobState = JobState.PENDING
    skip_reason: Optional[str] = None
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[CIError] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.job.id

    @property
    def advisory(self) -> bool:
        return self.job.continue_on_error

    @property
    def tolerated_failures(self) -> List[StepResult]:
        return [s for s in self.steps if s.tolerated]

    @property
    def result(self) -> str:
        """
        What dependents see as `needs.<id>.result`.

        An advisory job that failed is reported as success to its dependents.
        """
        if self.state is JobState.FAILURE and self.advisory:
            return JobState.SUCCESS.value
        return self.state.value

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.job.title,
            "state": self.state.value,
            "skip_reason": self.skip_reason,
            "advisory": self.advisory,
            "error": self.error.to_dict() if self.error else None,
            "duration": self.duration,
            "steps": [s.to_dict() for s in self.steps],
        }
