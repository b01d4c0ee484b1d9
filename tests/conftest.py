from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from dagci.context import CancelToken, Context
from dagci.errors import CancellationError
from dagci.executor import StepExecutor, now
from dagci.model import Step, StepResult, StepStatus
from dagci.ui.console import Console, set_console


class ScriptedExecutor(StepExecutor):
    """
    In-memory executor: every step succeeds unless its name is listed in
    `failing`. Records (job, step) calls in order.
    """

    def __init__(
        self,
        failing: Optional[List[str]] = None,
        *,
        artifacts: Optional[Dict[str, Dict[str, bytes]]] = None,
        delay: float = 0.0,
        hooks: Optional[Dict[str, Callable[[Step, Context], None]]] = None,
    ):
        self.failing = set(failing or [])
        self.artifacts = artifacts or {}
        self.delay = delay
        self.hooks = hooks or {}
        self.calls: List[tuple] = []
        self.contexts: Dict[str, Context] = {}
        self.timeouts: Dict[str, Optional[float]] = {}
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def run(self, step: Step, context: Context, *, timeout=None, cancel: Optional[CancelToken] = None) -> StepResult:
        with self._lock:
            self.calls.append((context.job, step.name))
            self.contexts[f"{context.job}/{step.name}"] = context
            self.timeouts[f"{context.job}/{step.name}"] = timeout
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            started = now()
            hook = self.hooks.get(step.name)
            if hook is not None:
                hook(step, context)
            if self.delay:
                end = time.monotonic() + self.delay
                while time.monotonic() < end:
                    if cancel is not None and cancel.cancelled:
                        raise CancellationError(job=context.job, step=step.name)
                    time.sleep(0.005)
            failed = step.name in self.failing
            return StepResult(
                name=step.name,
                status=StepStatus.FAILURE if failed else StepStatus.SUCCESS,
                exit_code=1 if failed else 0,
                error="scripted failure" if failed else None,
                artifacts=self.artifacts.get(step.name, {}),
                started_at=started,
                finished_at=now(),
            )
        finally:
            with self._lock:
                self.active -= 1

    def ran(self, job_id: str) -> List[str]:
        return [s for j, s in self.calls if j == job_id]

    def jobs_run(self) -> List[str]:
        seen: List[str] = []
        for j, _ in self.calls:
            if j not in seen:
                seen.append(j)
        return seen


@pytest.fixture
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    return console


@pytest.fixture
def context():
    return Context.create(event="push", branch="master", sha="abc123", run_id="run-1")


@pytest.fixture
def scripted():
    return ScriptedExecutor
