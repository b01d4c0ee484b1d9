# context.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

MASK = "***"


class Secrets(Mapping[str, str]):
    """
    Read-only secret lookup.

    Values never show up in repr() or in the run report; use mask() on any
    text that may have seen them (captured step output, error messages).
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Secrets({sorted(self._values)})"

    def mask(self, text: str) -> str:
        if not text:
            return text
        # longest first so a secret containing another one is fully hidden
        for value in sorted(self._values.values(), key=len, reverse=True):
            if value:
                text = text.replace(value, MASK)
        return text


class CancelToken:
    """Run-level cancellation signal shared by the scheduler and executors."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class StatusChecks:
    """Values returned by success() / failure() / cancelled() in conditions."""
    success: bool = True
    failure: bool = False
    cancelled: bool = False


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Context:
    """
    Immutable key/value environment threaded through conditions and executors.

    Built once per run with `Context.create()` and narrowed with `for_job()` and
    `for_step()`; each narrowing returns a new object.
    """
    event: str
    branch: Optional[str] = None
    sha: Optional[str] = None
    run_id: str = ""
    env: Mapping[str, str] = field(default_factory=dict)
    secrets: Secrets = field(default_factory=Secrets)
    needs: Mapping[str, str] = field(default_factory=dict)
    checks: StatusChecks = StatusChecks()
    job: Optional[str] = None
    step: Optional[str] = None
    workflow: str = ""

    @classmethod
    def create(
        cls,
        *,
        event: str = "push",
        branch: Optional[str] = None,
        sha: Optional[str] = None,
        secrets: Optional[Mapping[str, str]] = None,
        env: Optional[Mapping[str, str]] = None,
        run_id: Optional[str] = None,
        workflow: str = "",
    ) -> "Context":
        return cls(
            event=event,
            branch=branch,
            sha=sha,
            run_id=run_id or uuid.uuid4().hex[:12],
            env=_frozen(env),
            secrets=secrets if isinstance(secrets, Secrets) else Secrets(secrets),
            workflow=workflow,
        )

    @property
    def ref(self) -> Optional[str]:
        return f"refs/heads/{self.branch}" if self.branch else None

    def for_workflow(self, name: str, env: Optional[Mapping[str, str]] = None) -> "Context":
        """Workflow-level env is the base layer; values already on the context win."""
        merged = {k: str(v) for k, v in (env or {}).items()}
        merged.update(self.env)
        return replace(self, workflow=name, env=_frozen(merged))

    def with_env(self, extra: Optional[Mapping[str, str]]) -> "Context":
        if not extra:
            return self
        merged = dict(self.env)
        merged.update({k: str(v) for k, v in extra.items()})
        return replace(self, env=_frozen(merged))

    def for_job(
        self,
        job_id: str,
        needs: Mapping[str, str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cancelled: bool = False,
    ) -> "Context":
        """
        Context for a job gate: `needs` maps each needed job id to its result.
        """
        results = list(needs.values())
        checks = StatusChecks(
            success=all(r == "success" for r in results),
            failure=any(r == "failure" for r in results),
            cancelled=cancelled,
        )
        ctx = replace(self, job=job_id, step=None, needs=_frozen(needs), checks=checks)
        return ctx.with_env(env)

    def for_step(
        self,
        step_name: str,
        *,
        job_failed: bool,
        env: Optional[Mapping[str, str]] = None,
        cancelled: bool = False,
    ) -> "Context":
        checks = StatusChecks(success=not job_failed, failure=job_failed, cancelled=cancelled)
        ctx = replace(self, step=step_name, checks=checks)
        return ctx.with_env(env)

    def lookup(self, path: str) -> Any:
        """
        Resolve a dotted context path (`env.IMAGE_NAME`, `github.ref`,
        `needs.build.result`). Unknown paths resolve to None.
        """
        parts = path.split(".")
        return _walk(self._namespaces(), parts)

    def _namespaces(self) -> Dict[str, Any]:
        github = {
            "ref": self.ref,
            "ref_name": self.branch,
            "head_ref": self.branch,
            "event_name": self.event,
            "sha": self.sha,
            "run_id": self.run_id,
            "workflow": self.workflow,
            "job": self.job,
        }
        return {
            "github": github,
            "run": github,
            "branch": self.branch,
            "event": self.event,
            "ref": self.ref,
            "sha": self.sha,
            "env": self.env,
            "secrets": self.secrets,
            "needs": {k: {"result": v} for k, v in self.needs.items()},
            "job": {"id": self.job, "status": "failure" if self.checks.failure else "success"},
        }


def _walk(root: Any, parts: list) -> Any:
    node = root
    for part in parts:
        if isinstance(node, Mapping):
            if part in node:
                node = node[part]
                continue
            # GitHub contexts are case-insensitive on property names
            lowered = {str(k).lower(): k for k in node}
            key = lowered.get(part.lower())
            if key is None:
                return None
            node = node[key]
        else:
            return None
    return node
