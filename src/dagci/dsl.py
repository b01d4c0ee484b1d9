# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .model import Job, Step, Trigger, Workflow


def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    if_: Optional[str] = None,
    continue_on_error: bool = False,
    timeout: Optional[float] = None,
) -> Step:
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        condition=if_,
        continue_on_error=continue_on_error,
        timeout=timeout,
    )


def uses(
    name: str,
    action: str,
    *,
    with_: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None,
    if_: Optional[str] = None,
    continue_on_error: bool = False,
    timeout: Optional[float] = None,
) -> Step:
    """A step delegated to a registered action (`actions/upload-artifact@v4`)."""
    return Step(
        name=name,
        uses=action,
        with_=dict(with_ or {}),
        env={k: str(v) for k, v in (env or {}).items()},
        condition=if_,
        continue_on_error=continue_on_error,
        timeout=timeout,
    )


def upload(name: str, artifact: str, path: str, *, if_: Optional[str] = None) -> Step:
    """Shorthand for an upload-artifact step."""
    return uses(name, "actions/upload-artifact@v4", with_={"name": artifact, "path": path}, if_=if_)


def job(
    id: str,
    *steps: Step,  # allow job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # still allow job(..., steps_list=[...])
    name: str = "",
    needs: Optional[Union[str, Sequence[str]]] = None,
    if_: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    continue_on_error: bool = False,
    timeout: Optional[float] = None,
    # convenience
    cwd: str | None = None,  # default cwd for steps
) -> Job:
    if steps_list is None:
        steps_list = []
    steps_final = list(steps_list) + list(steps)

    if not steps_final:
        raise ValueError(f"job({id!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            s if s.cwd is not None else replace(s, cwd=cwd)
            for s in steps_final
        ]

    if isinstance(needs, str):
        needs = [needs]

    return Job(
        id=id,
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        condition=if_,
        env={k: str(v) for k, v in (env or {}).items()},
        continue_on_error=continue_on_error,
        timeout=timeout,
    )


def on(event: str, *branches: str) -> Trigger:
    """Trigger helper: on("push", "master")."""
    return Trigger(event=event, branches=tuple(branches))


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, id: str):
        self.id = id
        self._name = ""
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._condition: Optional[str] = None
        self._continue_on_error = False
        self._timeout: Optional[float] = None

    def named(self, name: str):
        self._name = name
        return self

    def depends_on(self, *job_ids: str):
        self._needs.extend(job_ids)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **options):
        self._steps.append(sh(name, run, cwd=cwd, **options))
        return self

    def use_action(self, name: str, action: str, **options):
        self._steps.append(uses(name, action, **options))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def when(self, condition: str):
        self._condition = condition
        return self

    def advisory(self, enabled: bool = True):
        self._continue_on_error = enabled
        return self

    def timeout_after(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.id}' has no steps")
        return job(
            self.id,
            steps_list=self._steps,
            name=self._name,
            needs=self._needs,
            if_=self._condition,
            env=self._env,
            continue_on_error=self._continue_on_error,
            timeout=self._timeout,
        )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("node", ["18", "20"]).jobs(
            lambda v: job(f"test-node{v}", sh(...))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Union[Job, List[Job]],
    name: str = "workflow",
    triggers: Optional[Sequence[Trigger]] = None,
    env: Optional[Mapping[str, Any]] = None,
) -> Workflow:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).

    Users can write:
        from dagci import wf, job, sh, on

        def workflow():
            return wf(
                job(...),
                job(...),
                name="ci",
                triggers=[on("push", "master")],
            )

    Lists (e.g. from matrix(...).jobs(...)) are flattened in place.
    """
    flat: List[Job] = []
    for item in jobs:
        if isinstance(item, Job):
            flat.append(item)
        else:
            flat.extend(item)
    return Workflow(
        name=name,
        jobs=tuple(flat),
        triggers=tuple(triggers or ()),
        env={k: str(v) for k, v in (env or {}).items()},
    )
