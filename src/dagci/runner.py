# runner.py
from __future__ import annotations

import os
import subprocess
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from .artifacts import ArtifactStore
from .conditions import evaluate
from .context import CancelToken, Context
from .dag import JobGraph, build
from .errors import (
    CancellationError,
    CIError,
    ConditionError,
    JobFailure,
    StepFailure,
    StepTimeout,
    ValidationError,
)
from .executor import StepExecutor, now
from .model import Job, JobRecord, JobState, Step, StepResult, StepStatus, Workflow
from .reporter import RunReport
from .ui.console import Console, get_console


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass
class _JobOutcome:
    """What a worker thread hands back to the coordinator."""
    state: JobState
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[CIError] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class Run:
    """
    One execution of a workflow against a trigger context.

    A single coordinator (the thread calling execute()) owns every state
    transition; job threads only run steps and return a _JobOutcome.

        pending -> skipped
        pending -> running -> success | failure | cancelled
        pending -> cancelled
    """

    def __init__(
        self,
        graph: JobGraph,
        context: Context,
        executor: StepExecutor,
        *,
        store: Optional[ArtifactStore] = None,
        max_workers: Optional[int] = None,
        step_timeout: Optional[float] = None,
        console: Optional[Console] = None,
        ignore_triggers: bool = False,
        cancel: Optional[CancelToken] = None,
    ):
        self.graph = graph
        self.workflow: Workflow = graph.workflow
        self.context = context.for_workflow(self.workflow.name, self.workflow.env)
        self.run_id = self.context.run_id
        self.executor = executor
        self.store = store if store is not None else ArtifactStore(self.run_id)
        self.max_workers = max_workers if max_workers and max_workers > 0 else default_workers()
        # zero or negative means no per-step bound
        self.step_timeout = step_timeout if step_timeout and step_timeout > 0 else None
        self.console = console or get_console()
        self.ignore_triggers = ignore_triggers
        self._cancel = cancel or CancelToken()
        self._records: Dict[str, JobRecord] = {j.id: JobRecord(job=j) for j in self.workflow.jobs}
        self._started = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; safe to call from any thread or a signal handler."""
        self._cancel.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancel.cancelled

    @property
    def states(self) -> Dict[str, JobState]:
        return {job_id: r.state for job_id, r in self._records.items()}

    def record(self, job_id: str) -> JobRecord:
        return self._records[job_id]

    def execute(self) -> RunReport:
        if self._started:
            raise RuntimeError("A Run can only be executed once")
        self._started = True

        ctx = self.context
        self.console.print_run_started(
            workflow=self.workflow.name,
            run_id=self.run_id,
            event=ctx.event,
            branch=ctx.branch,
            job_count=len(self._records),
        )

        if not self.ignore_triggers and not self.workflow.is_triggered(ctx.event, ctx.branch):
            self.console.print_not_triggered(ctx.event, ctx.branch)
            for record in self._records.values():
                record.state = JobState.SKIPPED
                record.skip_reason = "trigger"
            return self._report()

        self._drive()
        return self._report()

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------

    def _drive(self) -> None:
        pending: List[str] = list(self.graph.ready_order)
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="dagci-job") as pool:
            while True:
                if self.cancelled:
                    for job_id in pending:
                        self._mark_cancelled(job_id)
                    pending.clear()
                else:
                    self._schedule(pending, in_flight, pool)

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready jobs
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    job_id = in_flight.pop(fut)
                    self._finish(job_id, fut)

        # only reachable with jobs left over if the graph was inconsistent
        for job_id in pending:
            self._mark_cancelled(job_id)

    def _schedule(self, pending: List[str], in_flight: Dict[Future, str], pool: ThreadPoolExecutor) -> None:
        progressed = True
        while progressed:
            progressed = False
            for job_id in list(pending):
                needs = self.graph.predecessors(job_id)
                if not all(self._records[n].state.terminal for n in needs):
                    continue

                job = self.graph.job(job_id)
                needs_results = {n: self._records[n].result for n in needs}
                job_ctx = self.context.for_job(job_id, needs_results, env=job.env, cancelled=self.cancelled)

                try:
                    should_run = evaluate(job.condition, job_ctx)
                except ConditionError as e:
                    pending.remove(job_id)
                    self._fail_gate(job_id, e)
                    progressed = True
                    continue

                if not should_run:
                    pending.remove(job_id)
                    upstream_ok = all(r == JobState.SUCCESS.value for r in needs_results.values())
                    self._mark_skipped(job_id, "condition" if upstream_ok else "upstream")
                    progressed = True
                    continue

                if len(in_flight) >= self.max_workers:
                    # no free slot; stays pending until a job finishes
                    continue

                pending.remove(job_id)
                record = self._records[job_id]
                record.state = JobState.RUNNING
                record.started_at = now()
                self.console.print_job_start(job_id, job.title)
                in_flight[pool.submit(self._run_job, job, job_ctx)] = job_id

    def _finish(self, job_id: str, fut: Future) -> None:
        record = self._records[job_id]
        try:
            outcome: _JobOutcome = fut.result()
        except Exception as e:
            outcome = _JobOutcome(
                state=JobState.FAILURE,
                error=CIError(kind="internal", message=f"{type(e).__name__}: {e}", job=job_id),
                finished_at=now(),
            )
        record.state = outcome.state
        record.steps = outcome.steps
        record.error = outcome.error
        record.finished_at = outcome.finished_at or now()
        if outcome.state is JobState.CANCELLED:
            self.console.print_job_cancelled(job_id)
        else:
            self.console.print_job_finished(record)

    def _mark_skipped(self, job_id: str, reason: str) -> None:
        record = self._records[job_id]
        record.state = JobState.SKIPPED
        record.skip_reason = reason
        self.console.print_job_skipped(job_id, reason)

    def _mark_cancelled(self, job_id: str) -> None:
        record = self._records[job_id]
        if record.state.terminal:
            return
        record.state = JobState.CANCELLED
        record.error = CancellationError(job=job_id)
        self.console.print_job_cancelled(job_id)

    def _fail_gate(self, job_id: str, error: ConditionError) -> None:
        record = self._records[job_id]
        record.state = JobState.FAILURE
        record.error = ValidationError(
            f"Job '{job_id}' has a malformed if condition: {error.message}",
            job=job_id,
            details=error.details,
            kind="configuration",
        )
        self.console.print_job_finished(record)

    def _report(self) -> RunReport:
        records = [self._records[j.id] for j in self.workflow.jobs]
        return RunReport.from_records(
            self.workflow.name,
            self.run_id,
            records,
            cancelled=self.cancelled,
            artifacts=self.store.refs(),
        )

    # ------------------------------------------------------------------
    # Job thread
    # ------------------------------------------------------------------

    def _run_job(self, job: Job, ctx: Context) -> _JobOutcome:
        started = now()
        steps: List[StepResult] = []
        failed_step: Optional[StepResult] = None
        deadline = time.monotonic() + job.timeout if job.timeout else None

        for step in job.steps:
            if self.cancelled:
                return _JobOutcome(JobState.CANCELLED, steps, CancellationError(job=job.id), started, now())

            step_ctx = ctx.for_step(
                step.name,
                job_failed=failed_step is not None,
                env=step.env,
                cancelled=self.cancelled,
            )

            try:
                should_run = evaluate(step.condition, step_ctx)
            except ConditionError as e:
                result = StepResult(
                    name=step.name,
                    status=StepStatus.FAILURE,
                    error=f"malformed if condition: {e.message}",
                    started_at=now(),
                    finished_at=now(),
                )
                steps.append(result)
                failed_step = failed_step or result
                self.console.print_step_result(job.id, result)
                continue

            if not should_run:
                result = StepResult(name=step.name, status=StepStatus.SKIPPED)
                steps.append(result)
                self.console.print_step_result(job.id, result)
                continue

            self.console.print_step(job.id, step.name)
            try:
                result = self._invoke(job, step, step_ctx, deadline)
            except CancellationError:
                steps.append(StepResult(
                    name=step.name,
                    status=StepStatus.FAILURE,
                    error="cancelled",
                    finished_at=now(),
                ))
                return _JobOutcome(JobState.CANCELLED, steps, CancellationError(job=job.id, step=step.name), started, now())

            result = self._store_artifacts(job, result)
            if result.status is StepStatus.FAILURE:
                if step.continue_on_error:
                    result = replace(result, tolerated=True)
                elif failed_step is None:
                    failed_step = result
            steps.append(result)
            self.console.print_step_result(job.id, result)

        if self.cancelled:
            return _JobOutcome(JobState.CANCELLED, steps, CancellationError(job=job.id), started, now())

        if failed_step is not None:
            error = JobFailure(
                f"step '{failed_step.name}' failed",
                job=job.id,
                step=failed_step.name,
                details={"reason": failed_step.error} if failed_step.error else None,
            )
            return _JobOutcome(JobState.FAILURE, steps, error, started, now())
        return _JobOutcome(JobState.SUCCESS, steps, None, started, now())

    def _step_timeout(self, step: Step, deadline: Optional[float]) -> Optional[float]:
        timeout = step.timeout or self.step_timeout
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())
            timeout = remaining if timeout is None else min(timeout, remaining)
        return timeout

    def _invoke(self, job: Job, step: Step, ctx: Context, deadline: Optional[float]) -> StepResult:
        """
        Call the executor and normalise whatever happens into a StepResult.

        Only CancellationError escapes.
        """
        timeout = self._step_timeout(step, deadline)
        started = now()
        mask = ctx.secrets.mask

        if deadline is not None and timeout is not None and timeout <= 0:
            return self._failed(step, started, f"job '{job.id}' exceeded its {job.timeout or 0:g}s timeout", kind="timeout")

        try:
            result = self.executor.run(step, ctx, timeout=timeout, cancel=self._cancel)
        except CancellationError:
            raise
        except StepTimeout as e:
            return self._failed(step, started, mask(e.message), kind="timeout")
        except (TimeoutError, subprocess.TimeoutExpired):
            return self._failed(step, started, f"step exceeded its {timeout or 0:g}s timeout", kind="timeout")
        except StepFailure as e:
            return self._failed(step, started, mask(e.message), exit_code=e.exit_code)
        except Exception as e:
            # the executor is a black box: anything it raises is a step failure
            return self._failed(step, started, mask(f"{type(e).__name__}: {e}"))

        if result.name != step.name:
            result = replace(result, name=step.name)
        if result.error:
            result = replace(result, error=mask(result.error))
        if result.started_at is None:
            result = replace(result, started_at=started)
        if result.finished_at is None:
            result = replace(result, finished_at=now())
        return result

    @staticmethod
    def _failed(
        step: Step,
        started: datetime,
        message: str,
        *,
        exit_code: Optional[int] = None,
        kind: str = "step_failure",
    ) -> StepResult:
        error = message if kind == "step_failure" else f"{kind}: {message}"
        return StepResult(
            name=step.name,
            status=StepStatus.FAILURE,
            exit_code=exit_code,
            error=error,
            started_at=started,
            finished_at=now(),
        )

    def _store_artifacts(self, job: Job, result: StepResult) -> StepResult:
        if not result.artifacts:
            return result
        try:
            refs = tuple(self.store.put(name, data, job.id) for name, data in result.artifacts.items())
        except ValueError as e:
            return replace(result, status=StepStatus.FAILURE, artifacts={}, error=str(e))
        return replace(result, artifacts={}, artifact_refs=result.artifact_refs + refs)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_workflow(
    workflow: Workflow,
    context: Context,
    executor: StepExecutor,
    **options,
) -> RunReport:
    """
    Validate and execute a workflow.

    A ValidationError never raises out of here: the returned report lists
    every declared job as never started.
    """
    try:
        graph = build(workflow)
    except ValidationError as e:
        return RunReport.for_validation_error(workflow.name, workflow.jobs, e, run_id=context.run_id)

    return Run(graph, context, executor, **options).execute()
