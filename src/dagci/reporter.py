# reporter.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import CIError, ValidationError
from .model import ArtifactRef, Job, JobRecord, JobState, Outcome

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130  # same as an interrupted shell command


def summarize(records: Iterable[JobRecord], cancelled: bool = False) -> Outcome:
    """
    Aggregate terminal job states into one outcome.

      cancelled            run was cancelled, whatever else happened
      failed               a non-advisory job failed
      partially_succeeded  only advisory jobs / continue-on-error steps failed
      succeeded            everything passed or was skipped by its gate

    A step failure absorbed by continue_on_error counts as partial even when
    every job ended success, so a run whose advisory scans all failed is not
    reported as a clean success.
    """
    if cancelled:
        return Outcome.CANCELLED

    records = list(records)
    if any(r.state is JobState.CANCELLED for r in records):
        return Outcome.CANCELLED
    if any(r.state is JobState.FAILURE and not r.advisory for r in records):
        return Outcome.FAILED
    if any(r.state is JobState.FAILURE for r in records):
        return Outcome.PARTIALLY_SUCCEEDED
    if any(r.tolerated_failures for r in records):
        return Outcome.PARTIALLY_SUCCEEDED
    return Outcome.SUCCEEDED


def exit_code_for(outcome: Outcome) -> int:
    if outcome in (Outcome.SUCCEEDED, Outcome.PARTIALLY_SUCCEEDED):
        return EXIT_OK
    if outcome is Outcome.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


@dataclass
class RunReport:
    """Complete per-job status table plus the aggregate outcome of a run."""
    workflow: str
    run_id: str
    jobs: List[JobRecord]
    outcome: Outcome
    artifacts: List[ArtifactRef] = field(default_factory=list)
    error: Optional[CIError] = None

    @classmethod
    def from_records(
        cls,
        workflow: str,
        run_id: str,
        records: List[JobRecord],
        *,
        cancelled: bool = False,
        artifacts: Optional[List[ArtifactRef]] = None,
    ) -> "RunReport":
        return cls(
            workflow=workflow,
            run_id=run_id,
            jobs=list(records),
            outcome=summarize(records, cancelled),
            artifacts=list(artifacts or []),
        )

    @classmethod
    def for_validation_error(
        cls,
        workflow: str,
        jobs: Iterable[Job],
        error: ValidationError,
        run_id: str = "",
    ) -> "RunReport":
        """The run never started: every declared job stays pending."""
        return cls(
            workflow=workflow,
            run_id=run_id,
            jobs=[JobRecord(job=j) for j in jobs],
            outcome=Outcome.FAILED,
            error=error,
        )

    @property
    def exit_code(self) -> int:
        if isinstance(self.error, ValidationError):
            return EXIT_INVALID
        return exit_code_for(self.outcome)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == EXIT_OK

    def job(self, job_id: str) -> JobRecord:
        for record in self.jobs:
            if record.id == job_id:
                return record
        raise KeyError(job_id)

    def states(self) -> Dict[str, str]:
        return {r.id: r.state.value for r in self.jobs}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow,
            "run_id": self.run_id,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "error": self.error.to_dict() if self.error else None,
            "jobs": [r.to_dict() for r in self.jobs],
            "artifacts": [a.to_dict() for a in self.artifacts],
        }

    def write_json(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        return out
