# cli.py
from __future__ import annotations

import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Optional

import click

from dagci.artifacts import DirectorySink
from dagci.config import Settings, secrets_from_env
from dagci.context import Context
from dagci.dag import build
from dagci.errors import ValidationError
from dagci.executor import ShellExecutor
from dagci.git_facts.git import detect
from dagci.loader import load_workflow
from dagci.model import Workflow
from dagci.reporter import RunReport
from dagci.runner import Run
from dagci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "dagci_workflow.py"
WORKFLOW_PATTERNS = ("*_workflow.py", "*_workflow.yml", "*_workflow.yaml")


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """Workflow files in `root`: the default one first, then pattern matches."""
    found = {p for pattern in WORKFLOW_PATTERNS for p in root.glob(pattern)}
    default = root / DEFAULT_WORKFLOW
    found.discard(default)
    return ([default] if default.exists() else []) + sorted(found)


def _with_suffix(path: Path) -> Path:
    # `--workflow devsecops` finds devsecops.yml
    if path.exists() or path.suffix:
        return path
    for suffix in (".py", ".yml", ".yaml"):
        candidate = path.with_name(path.name + suffix)
        if candidate.exists():
            return candidate
    return path


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve --workflow, or pick the single workflow file in the current
    directory. Exits with status 1 when there is none or more than one.
    """
    console = get_console()

    if workflow_arg:
        path = _with_suffix(Path(workflow_arg))
        if path.exists():
            return path
        console.print_error(
            "Workflow file not found",
            f"No such file: {workflow_arg}",
            suggestion="Pass an existing file:\n  dagci run --workflow workflows/devsecops.yml",
        )
        sys.exit(1)

    candidates = find_workflow_files()
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        console.print_error(
            "No workflow file found",
            "Nothing in the current directory looks like a workflow.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", *(f"  {p}" for p in WORKFLOW_PATTERNS)],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow path/to/workflow.yml",
        )
    else:
        console.print_error(
            "Multiple workflow files found",
            "Choose one with --workflow:",
            details=[str(p) for p in candidates],
            suggestion=f"  dagci run --workflow {candidates[0]}",
        )
    sys.exit(1)


def _pairs(values: Iterable[str], option: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=option)
        key, value = item.split("=", 1)
        out[key.strip()] = value
    return out


def _load(ctx: click.Context, workflow_arg: Optional[str]) -> Workflow:
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        return load_workflow(workflow_path)
    except ValidationError as e:
        console.print_error("Invalid workflow", e.message, details=_detail_lines(e))
        sys.exit(2)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


def _detail_lines(error: ValidationError) -> list[str]:
    lines = []
    for key, value in error.details.items():
        if isinstance(value, (list, tuple)):
            if key == "cycle":
                lines.append(f"cycle: {' -> '.join(value)}")
            else:
                lines.append(f"{key}:")
                lines.extend(f"  {v}" for v in value)
        else:
            lines.append(f"{key}: {value}")
    return lines


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors and the final results table")
@click.pass_context
def cli(ctx, debug, quiet):
    """dagci: dependency-gated CI workflow runner."""
    settings = Settings.from_env()
    debug = debug or settings.debug
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--event", default="push", show_default=True, help="Trigger event name")
@click.option("--branch", default=None, help="Branch name (defaults to the current git branch)")
@click.option("--sha", default=None, help="Commit SHA (defaults to git HEAD)")
@click.option("--secret", "secret_pairs", multiple=True, metavar="KEY=VALUE", help="Secret available as secrets.KEY")
@click.option("--secrets-from-env", "secrets_prefix", default=None, metavar="PREFIX",
              help="Expose every PREFIXNAME environment variable as secrets.NAME")
@click.option("--env", "env_pairs", multiple=True, metavar="KEY=VALUE", help="Extra env value for every job")
@click.option("--workers", default=None, type=int, help="Number of jobs run in parallel")
@click.option("--step-timeout", default=None, type=float, help="Default per-step timeout in seconds")
@click.option("--workdir", default=None, help="Directory steps run in (defaults to .)")
@click.option("--artifacts-dir", default=None, help="Export artifacts here after the run")
@click.option("--report-json", default=None, help="Write the run report as JSON")
@click.option("--ignore-triggers", is_flag=True, default=False, help="Run even if the workflow's `on` filters do not match")
@click.pass_context
def run(ctx, workflow, event, branch, sha, secret_pairs, secrets_prefix, env_pairs, workers, step_timeout,
        workdir, artifacts_dir, report_json, ignore_triggers):
    """Run a workflow."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    wf = _load(ctx, workflow)

    secrets = secrets_from_env(secrets_prefix) if secrets_prefix else {}
    secrets.update(_pairs(secret_pairs, "--secret"))

    if branch is None or sha is None:
        git_branch, git_sha = detect(workdir or settings.workdir)
        branch = branch or git_branch
        sha = sha or git_sha

    context = Context.create(
        event=event,
        branch=branch,
        sha=sha,
        secrets=secrets,
        env=_pairs(env_pairs, "--env"),
        workflow=wf.name,
    )

    try:
        graph = build(wf)
    except ValidationError as e:
        console.print_error("Invalid workflow", e.message, details=_detail_lines(e))
        report = RunReport.for_validation_error(wf.name, wf.jobs, e, run_id=context.run_id)
        console.print_results(report)
        _write_report(report, report_json)
        sys.exit(report.exit_code)

    executor = ShellExecutor(workdir or settings.workdir)
    pipeline = Run(
        graph,
        context,
        executor,
        max_workers=workers or settings.max_workers,
        step_timeout=step_timeout or settings.step_timeout,
        console=console,
        ignore_triggers=ignore_triggers,
    )

    try:
        with _cancel_on_interrupt(pipeline, console):
            report = pipeline.execute()
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(report)

    target = artifacts_dir or settings.artifact_dir
    if target and len(pipeline.store):
        manifest = DirectorySink(target).collect(pipeline.store)
        console.print_info(f"Artifacts exported to {manifest.parent}")

    _write_report(report, report_json)
    sys.exit(report.exit_code)


@contextmanager
def _cancel_on_interrupt(pipeline: Run, console: Console):
    """First Ctrl-C cancels the run; a second one aborts immediately."""
    if threading.current_thread() is not threading.main_thread():
        # signal handlers can only be installed from the main thread
        yield
        return

    def _on_interrupt(signum, frame):
        console.print_info("\nInterrupted by user, cancelling run...")
        pipeline.cancel()
        signal.signal(signal.SIGINT, previous)

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _write_report(report: RunReport, path: Optional[str]) -> None:
    if path:
        report.write_json(path)
        get_console().print_debug(f"report written to {path}")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def validate(ctx, workflow):
    """Check a workflow without running it."""
    console = get_console()
    wf = _load(ctx, workflow)
    try:
        graph = build(wf)
    except ValidationError as e:
        console.print_error("Invalid workflow", e.message, details=_detail_lines(e))
        sys.exit(2)
    console.print_info(f"OK: {wf.name} ({len(graph.jobs)} jobs)")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def plan(ctx, workflow):
    """Print the stages the workflow's jobs run in."""
    console = get_console()
    wf = _load(ctx, workflow)
    try:
        graph = build(wf)
    except ValidationError as e:
        console.print_error("Invalid workflow", e.message, details=_detail_lines(e))
        sys.exit(2)

    console.print_header(f"Plan: {wf.name}")
    for trigger in wf.triggers:
        branches = ", ".join(trigger.branches) if trigger.branches else "any branch"
        console.print_info(f"on {trigger.event}: {branches}")
    for index, stage in enumerate(graph.stages(), start=1):
        console.print_plan_stage(index, stage)
        for job_id in stage:
            job = graph.job(job_id)
            notes = []
            if job.needs:
                notes.append("needs " + ", ".join(job.needs))
            if job.condition:
                notes.append(f"if {job.condition}")
            if job.continue_on_error:
                notes.append("advisory")
            console.print_plan_job(job_id, "; ".join(notes) or "no gate")


if __name__ == "__main__":
    cli()
