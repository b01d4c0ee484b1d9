# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the per-job report table
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: Optional[str] = None
    step: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "job": self.job,
            "step": self.step,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool, type(None))):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


class ValidationError(CIError):
    """Malformed workflow: cycle, dangling reference, bad expression, bad schema."""

    def __init__(
        self,
        message: str,
        *,
        job: Optional[str] = None,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        kind: str = "validation",
    ):
        super().__init__(kind=kind, message=message, job=job, step=step, details=dict(details or {}))

    @property
    def cycle(self) -> Optional[List[str]]:
        cycle = self.details.get("cycle")
        return list(cycle) if cycle is not None else None


class ConditionError(ValidationError):
    """An `if` expression that cannot be parsed."""

    def __init__(self, message: str, *, expression: str, position: Optional[int] = None):
        details: Dict[str, Any] = {"expression": expression}
        if position is not None:
            details["position"] = position
        super().__init__(message, details=details, kind="configuration")
        self.expression = expression


class StepFailure(CIError):
    """A step executor call that returned (or raised) non-success."""

    def __init__(
        self,
        message: str,
        *,
        job: Optional[str] = None,
        step: Optional[str] = None,
        exit_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        kind: str = "step_failure",
    ):
        merged = dict(details or {})
        if exit_code is not None:
            merged.setdefault("exit_code", exit_code)
        super().__init__(kind=kind, message=message, job=job, step=step, details=merged)
        self.exit_code = exit_code


class StepTimeout(StepFailure):
    def __init__(self, message: str, *, timeout: float, job: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message, job=job, step=step, details={"timeout": timeout}, kind="timeout")
        self.timeout = timeout


class JobFailure(CIError):
    """Recorded on a job whose step failed without continue_on_error."""

    def __init__(self, message: str, *, job: str, step: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(kind="job_failure", message=message, job=job, step=step, details=dict(details or {}))


class CancellationError(CIError):
    def __init__(self, message: str = "run cancelled", *, job: Optional[str] = None, step: Optional[str] = None):
        super().__init__(kind="cancelled", message=message, job=job, step=step)


class ArtifactNotFound(CIError):
    def __init__(self, name: str, version: Optional[int] = None):
        details: Dict[str, Any] = {"artifact": name}
        if version is not None:
            details["version"] = version
        super().__init__(kind="artifact_not_found", message=f"Artifact not found: {name}", details=details)
