"""Console output formatting utilities for dagci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from ..model import JobRecord, StepResult
    from ..reporter import RunReport


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only print the final results and errors
        """
        self.debug = debug
        self.quiet = quiet
        # job threads print concurrently
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        run_id: str,
        event: str,
        branch: Optional[str],
        job_count: int,
    ) -> None:
        """Print run start information."""
        if self.quiet:
            return
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Run ID: {run_id}",
            f"Trigger: {event} on {branch or '(detached)'}",
            f"Jobs: {job_count}",
            "",
        )

    def print_not_triggered(self, event: str, branch: Optional[str]) -> None:
        if self.quiet:
            return
        self._out(f"Workflow is not triggered by {event} on {branch or '(detached)'}; all jobs skipped")

    def print_job_start(self, job_id: str, title: str) -> None:
        """Print job start message."""
        if self.quiet:
            return
        label = job_id if title == job_id else f"{job_id} ({title})"
        self._out(f"\nJOB STARTED: {label}")

    def print_step(self, job_id: str, name: str) -> None:
        """Print step start message."""
        if self.quiet:
            return
        self._out(f"[{job_id}] STEP: {name}")

    def print_step_result(self, job_id: str, result: "StepResult") -> None:
        if self.quiet:
            return
        lines = []
        if result.status.value == "skipped":
            lines.append(f"[{job_id}] STEP SKIPPED: {result.name}")
        elif result.ok:
            lines.append(f"[{job_id}] STEP OK: {result.name}")
        else:
            suffix = " (continue-on-error)" if result.tolerated else ""
            lines.append(f"[{job_id}] STEP FAILED: {result.name}{suffix}")
            if result.exit_code is not None:
                lines.append(f"[{job_id}] Exit code: {result.exit_code}")
            if result.error:
                # first line only unless debugging
                error = result.error if self.debug else result.error.split("\n")[0]
                lines.append(f"[{job_id}] Error: {error}")
            if self.debug and result.stderr:
                lines.append(result.stderr.rstrip())
        for ref in result.artifact_refs:
            lines.append(f"[{job_id}] ARTIFACT: {ref} ({ref.size} bytes)")
        self._out(*lines)

    def print_job_finished(self, record: "JobRecord") -> None:
        if self.quiet:
            return
        state = record.state.value
        if record.advisory and state == "failure":
            state = "failure (advisory)"
        line = f"[{record.id}] STATUS: {state}"
        if record.duration is not None:
            line += f" in {record.duration:.1f}s"
        self._out(line)

    def print_job_skipped(self, job_id: str, reason: str) -> None:
        """Print job skipped message."""
        if self.quiet:
            return
        self._out(f"\nJOB SKIPPED: {job_id} ({reason})")

    def print_job_cancelled(self, job_id: str) -> None:
        if self.quiet:
            return
        self._out(f"JOB CANCELLED: {job_id}")

    def print_plan_stage(self, index: int, jobs: List[str]) -> None:
        self._out(f"=== Stage {index}: {', '.join(jobs)} ===")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._out(f"  {name} ({reason})")

    def print_results(self, report: "RunReport") -> None:
        """Print final per-job table and outcome."""
        width = max([len(r.id) for r in report.jobs] + [3])
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for record in report.jobs:
            status = record.state.value.upper()
            notes = []
            if record.skip_reason:
                notes.append(record.skip_reason)
            if record.advisory and record.state.value == "failure":
                notes.append("advisory")
            tolerated = len(record.tolerated_failures)
            if tolerated:
                notes.append(f"{tolerated} tolerated step failure{'s' if tolerated != 1 else ''}")
            note = f" ({', '.join(notes)})" if notes else ""
            lines.append(f"  {record.id.ljust(width)}  {status}{note}")
        lines.append("-" * 40)
        lines.append(f"OUTCOME: {report.outcome.value.upper()} (exit {report.exit_code})")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
