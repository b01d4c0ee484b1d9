# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pydantic
import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError
from .model import Job, Step, Trigger, Workflow

YAML_SUFFIXES = (".yml", ".yaml")


# -------------------- Schemas --------------------

class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _as_str_map(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("must be a mapping")
    # YAML turns `true` / `18` into bool / int; env values are always strings
    return {str(k): _scalar_to_str(v) for k, v in value.items()}


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _minutes(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(value) * 60


class StepSchema(_Schema):
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    if_: Optional[Union[str, bool]] = Field(default=None, alias="if")
    continue_on_error: bool = Field(
        default=False,
        validation_alias=AliasChoices("continue-on-error", "continue_on_error"),
    )
    working_directory: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("working-directory", "working_directory", "cwd"),
    )
    timeout_minutes: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("timeout-minutes", "timeout_minutes"),
    )

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _as_str_map(v)

    @field_validator("with_", mode="before")
    @classmethod
    def with_mapping(cls, v: Any) -> Dict[str, Any]:
        return dict(v or {})

    def display_name(self, index: int) -> str:
        if self.name:
            return self.name
        if self.uses:
            return self.uses
        lines = (self.run or "").strip().splitlines()
        return lines[0] if lines else f"step {index + 1}"

    def to_step(self, index: int) -> Step:
        return Step(
            name=self.display_name(index),
            run=self.run,
            uses=self.uses,
            with_=dict(self.with_),
            env=dict(self.env),
            condition=_condition(self.if_),
            continue_on_error=self.continue_on_error,
            cwd=self.working_directory,
            timeout=_minutes(self.timeout_minutes),
        )


class JobSchema(_Schema):
    name: Optional[str] = None
    needs: List[str] = Field(default_factory=list)
    if_: Optional[Union[str, bool]] = Field(default=None, alias="if")
    env: Dict[str, str] = Field(default_factory=dict)
    continue_on_error: bool = Field(
        default=False,
        validation_alias=AliasChoices("continue-on-error", "continue_on_error"),
    )
    timeout_minutes: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("timeout-minutes", "timeout_minutes"),
    )
    steps: List[StepSchema] = Field(default_factory=list)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _as_str_map(v)

    @field_validator("needs", mode="before")
    @classmethod
    def needs_list(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    def to_job(self, job_id: str) -> Job:
        return Job(
            id=job_id,
            name=self.name or "",
            steps=tuple(s.to_step(i) for i, s in enumerate(self.steps)),
            needs=tuple(self.needs),
            condition=_condition(self.if_),
            env=dict(self.env),
            continue_on_error=self.continue_on_error,
            timeout=_minutes(self.timeout_minutes),
        )


class WorkflowSchema(_Schema):
    name: Optional[str] = None
    on: Any = None
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobSchema]

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _as_str_map(v)

    @field_validator("jobs", mode="before")
    @classmethod
    def jobs_mapping(cls, v: Any) -> Any:
        if not isinstance(v, dict) or not v:
            raise ValueError("'jobs' must be a non-empty mapping of job id -> job")
        return v


def _condition(value: Optional[Union[str, bool]]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def parse_triggers(on: Any) -> List[Trigger]:
    """
    Accept the three shapes GitHub allows:

        on: push
        on: [push, pull_request]
        on: {push: {branches: [master]}, workflow_dispatch: }
    """
    if on is None:
        return []
    if isinstance(on, str):
        return [Trigger(event=on)]
    if isinstance(on, list):
        return [Trigger(event=str(e)) for e in on]
    if isinstance(on, dict):
        triggers: List[Trigger] = []
        for event, options in on.items():
            branches: List[str] = []
            if isinstance(options, dict):
                raw = options.get("branches") or []
                branches = [raw] if isinstance(raw, str) else [str(b) for b in raw]
            triggers.append(Trigger(event=str(event), branches=tuple(branches)))
        return triggers
    raise ValidationError(f"Unsupported 'on' value: {on!r}")


def _format_pydantic(err: pydantic.ValidationError) -> List[str]:
    lines = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", ()))
        lines.append(f"{loc}: {e.get('msg')}")
    return lines


def parse_workflow(document: Any, *, default_name: str = "workflow") -> Workflow:
    """Turn an already-parsed YAML/JSON document into a Workflow."""
    if not isinstance(document, dict):
        raise ValidationError("Workflow document must be a mapping")

    doc = dict(document)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in doc and "on" not in doc:
        doc["on"] = doc.pop(True)

    try:
        schema = WorkflowSchema.model_validate(doc)
    except pydantic.ValidationError as e:
        problems = _format_pydantic(e)
        raise ValidationError(
            "Workflow document does not match the schema",
            details={"problems": problems},
        ) from e

    return Workflow(
        name=schema.name or default_name,
        jobs=tuple(j.to_job(job_id) for job_id, j in schema.jobs.items()),
        triggers=tuple(parse_triggers(schema.on)),
        env=dict(schema.env),
    )


def load_yaml_workflow(path: Path) -> Workflow:
    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e
    return parse_workflow(document, default_name=path.stem)


# ----------------------------------------------------------------------
# Python workflow files
# ----------------------------------------------------------------------

def load_python_workflow(path: Path) -> Workflow:
    """
    The file must define either:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]
    """
    module_name = f"dagci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    value = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            value = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from dagci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        value = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        value = globals_dict["JOBS"]

    if isinstance(value, Workflow):
        return value
    if isinstance(value, list) and all(isinstance(j, Job) for j in value):
        return Workflow(name=path.stem, jobs=tuple(value))
    raise TypeError(
        "Workflow must return/define a Workflow or a List[Job]. "
        "Define workflow() -> Workflow, WORKFLOW = wf(...) or JOBS = [Job, ...]."
    )


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a .yml/.yaml document or a .py file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_workflow(wf_path)
    if wf_path.suffix == ".py":
        return load_python_workflow(wf_path)
    raise ValueError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")
