# executor.py
from __future__ import annotations

import abc
import os
import shutil
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from .conditions import interpolate
from .context import CancelToken, Context
from .errors import CancellationError, StepFailure, StepTimeout
from .model import Step, StepResult, StepStatus

# Keep the tail of captured output so huge logs don't end up in the report
OUTPUT_TAIL = 4000

TOOL_HINTS = {
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "semgrep": "Install semgrep (e.g., pip install semgrep).",
    "trivy": "Install trivy or run it through its container image.",
    "gitleaks": "Download gitleaks or fix PATH.",
}


def now() -> datetime:
    return datetime.now(timezone.utc)


class StepExecutor(abc.ABC):
    """
    Boundary to the tool layer.

    `run` performs the step's side effect and reports success or failure plus
    any bytes to persist as artifacts. Implementations should honour `timeout`
    (seconds) and poll `cancel`; they may also raise StepFailure, StepTimeout
    or CancellationError, which the scheduler turns into results.
    """

    @abc.abstractmethod
    def run(
        self,
        step: Step,
        context: Context,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> StepResult:
        raise NotImplementedError


# ---------------------------------------------------------------------
# `uses:` actions
# ---------------------------------------------------------------------

ActionHandler = Callable[[Step, Context, Path], StepResult]


def _action_name(ref: str) -> str:
    return ref.split("@", 1)[0].strip()


class ActionRegistry:
    """Maps action references (without `@version`) to handlers."""

    def __init__(self, handlers: Optional[Mapping[str, ActionHandler]] = None):
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})

    def register(self, name: str, handler: ActionHandler) -> None:
        self._handlers[_action_name(name)] = handler

    def get(self, ref: str) -> Optional[ActionHandler]:
        return self._handlers.get(_action_name(ref))

    def __contains__(self, ref: str) -> bool:
        return _action_name(ref) in self._handlers

    @classmethod
    def default(cls) -> "ActionRegistry":
        return cls({
            "actions/checkout": checkout_action,
            "actions/upload-artifact": upload_artifact_action,
            "actions/setup-node": setup_node_action,
        })


def checkout_action(step: Step, context: Context, workdir: Path) -> StepResult:
    # the executor's working directory already is the checkout
    started = now()
    return StepResult(
        name=step.name,
        status=StepStatus.SUCCESS,
        exit_code=0,
        stdout=f"using existing checkout at {workdir}",
        started_at=started,
        finished_at=now(),
    )


def _tool_version(tool: str) -> Optional[str]:
    """Best-effort `<tool> --version`; None when the tool is not installed."""
    if shutil.which(tool) is None:
        return None
    completed = subprocess.run([tool, "--version"], text=True, capture_output=True, check=False)
    text = (completed.stdout or completed.stderr or "").strip()
    return text.splitlines()[0] if text else None


def setup_node_action(step: Step, context: Context, workdir: Path) -> StepResult:
    """
    Nothing is installed: the step checks that a local Node.js is on PATH and
    reports its version next to the requested `node-version`.
    """
    started = now()
    wanted = interpolate(str(step.with_.get("node-version", "")), context)
    version = _tool_version("node")
    if version is None:
        return StepResult(
            name=step.name,
            status=StepStatus.FAILURE,
            error=f"node not found. Hint: {TOOL_HINTS['node']}",
            started_at=started,
            finished_at=now(),
        )
    note = f"using node {version}"
    if wanted and not version.lstrip("v").startswith(wanted):
        note += f" (workflow asked for {wanted})"
    return StepResult(
        name=step.name,
        status=StepStatus.SUCCESS,
        exit_code=0,
        stdout=note,
        started_at=started,
        finished_at=now(),
    )


def upload_artifact_action(step: Step, context: Context, workdir: Path) -> StepResult:
    """Read `with.path` and hand it back as artifact `with.name`."""
    started = now()
    inputs = {k: interpolate(str(v), context) for k, v in step.with_.items()}
    name = inputs.get("name") or "artifact"
    raw_path = inputs.get("path")
    if not raw_path:
        raise StepFailure("upload-artifact requires a 'path' input", step=step.name, job=context.job)

    path = (workdir / raw_path).resolve()
    if not path.is_file():
        if inputs.get("if-no-files-found", "warn") == "error":
            raise StepFailure(f"No file found at {raw_path}", step=step.name, job=context.job)
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCESS,
            exit_code=0,
            stderr=f"warning: no file found at {raw_path}, nothing uploaded",
            started_at=started,
            finished_at=now(),
        )

    return StepResult(
        name=step.name,
        status=StepStatus.SUCCESS,
        exit_code=0,
        stdout=f"uploaded {raw_path} as {name}",
        artifacts={name: path.read_bytes()},
        started_at=started,
        finished_at=now(),
    )


# ---------------------------------------------------------------------
# Shell executor
# ---------------------------------------------------------------------

class ShellExecutor(StepExecutor):
    """
    Reference adapter: `run:` steps go to the shell, `uses:` steps to the
    action registry.
    """

    def __init__(
        self,
        workdir: str | Path = ".",
        *,
        actions: Optional[ActionRegistry] = None,
        poll_interval: float = 0.05,
    ):
        self.workdir = Path(workdir).resolve()
        self.actions = actions if actions is not None else ActionRegistry.default()
        self.poll_interval = poll_interval

    def run(
        self,
        step: Step,
        context: Context,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> StepResult:
        if step.uses is not None:
            return self._run_action(step, context)
        return self._run_shell(step, context, timeout=timeout, cancel=cancel)

    def _run_action(self, step: Step, context: Context) -> StepResult:
        handler = self.actions.get(step.uses or "")
        if handler is None:
            started = now()
            return StepResult(
                name=step.name,
                status=StepStatus.FAILURE,
                error=(
                    f"No adapter registered for action '{step.uses}'. "
                    f"Register one with ActionRegistry.register()."
                ),
                started_at=started,
                finished_at=now(),
            )
        return handler(step, context, self.workdir)

    def _run_shell(
        self,
        step: Step,
        context: Context,
        *,
        timeout: Optional[float],
        cancel: Optional[CancelToken],
    ) -> StepResult:
        cwd = (self.workdir / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise StepFailure(f"working directory not found: {cwd}", job=context.job, step=step.name)

        cmd = interpolate(step.run or "", context)

        env = os.environ.copy()
        env.update(context.env)

        started = now()
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=env,
            encoding="utf-8",
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        deadline = time.monotonic() + timeout if timeout else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    _stop(proc)
                    raise CancellationError(job=context.job, step=step.name)
                if deadline is not None and time.monotonic() >= deadline:
                    _stop(proc)
                    raise StepTimeout(
                        f"step exceeded its {timeout:g}s timeout",
                        timeout=timeout or 0,
                        job=context.job,
                        step=step.name,
                    )

        status = StepStatus.SUCCESS if proc.returncode == 0 else StepStatus.FAILURE
        error = None
        if status is StepStatus.FAILURE:
            error = f"command exited with {proc.returncode}"
            tool = cmd.split()[0] if cmd.split() else ""
            if proc.returncode == 127 and tool in TOOL_HINTS:
                error = f"{error}. Hint: {TOOL_HINTS[tool]}"

        mask = context.secrets.mask
        return StepResult(
            name=step.name,
            status=status,
            exit_code=proc.returncode,
            stdout=mask(stdout)[-OUTPUT_TAIL:],
            stderr=mask(stderr)[-OUTPUT_TAIL:],
            error=error,
            started_at=started,
            finished_at=now(),
        )


def _stop(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
