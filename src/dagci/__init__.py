from .dsl import job, sh, uses, upload, on, matrix, wf, JobBuilder
from .dag import JobGraph, build
from .context import Context
from .executor import StepExecutor, ShellExecutor, ActionRegistry
from .artifacts import ArtifactStore, DirectorySink
from .loader import load_workflow
from .model import Job, Step, StepResult, StepStatus, JobState, Outcome, Workflow, Trigger
from .reporter import RunReport
from .runner import Run, run_workflow
from .errors import ValidationError

__all__ = [
    "job", "sh", "uses", "upload", "on", "matrix", "wf", "JobBuilder", "build",
    "JobGraph", "Context", "StepExecutor", "ShellExecutor", "ActionRegistry",
    "ArtifactStore", "DirectorySink", "load_workflow",
    "Job", "Step", "StepResult", "StepStatus", "JobState", "Outcome", "Workflow", "Trigger",
    "RunReport", "Run", "run_workflow", "ValidationError",
]
