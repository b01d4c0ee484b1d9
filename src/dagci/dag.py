# dag.py
from __future__ import annotations

import heapq
from typing import Dict, List, Optional, Set

from .conditions import compile_expression
from .errors import ConditionError, ValidationError
from .model import Job, Workflow


class JobGraph:
    """
    Validated job dependency graph.

    Edges run need -> dependent (the need must finish BEFORE the dependent).
    """

    def __init__(self, workflow: Workflow, preds: Dict[str, List[str]], succs: Dict[str, List[str]]):
        self.workflow = workflow
        self._preds = preds
        self._succs = succs
        self._index = {j.id: i for i, j in enumerate(workflow.jobs)}
        self.ready_order: List[str] = _ready_order(self._index, preds, succs)

    @property
    def jobs(self) -> List[Job]:
        return list(self.workflow.jobs)

    def job(self, job_id: str) -> Job:
        return self.workflow.jobs[self._index[job_id]]

    def index(self, job_id: str) -> int:
        return self._index[job_id]

    def predecessors(self, job_id: str) -> List[str]:
        return list(self._preds[job_id])

    def successors(self, job_id: str) -> List[str]:
        return list(self._succs[job_id])

    def roots(self) -> List[str]:
        return [j for j in self.ready_order if not self._preds[j]]

    def stages(self) -> List[List[str]]:
        """
        Convert the DAG into topological "levels" (stages).
        Each stage can run in parallel once the previous one is done.
        """
        indeg = {n: len(p) for n, p in self._preds.items()}
        level = [n for n in self.ready_order if indeg[n] == 0]
        levels: List[List[str]] = []
        while level:
            levels.append(level)
            nxt: List[str] = []
            for node in level:
                for child in self._succs[node]:
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        nxt.append(child)
            level = sorted(nxt, key=self._index.__getitem__)
        return levels


def _ready_order(index: Dict[str, int], preds: Dict[str, List[str]], succs: Dict[str, List[str]]) -> List[str]:
    # Kahn's algorithm; ties broken by declaration order
    indeg = {n: len(p) for n, p in preds.items()}
    heap = [(index[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        _, node = heapq.heappop(heap)
        order.append(node)
        for child in succs[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, (index[child], child))
    return order


def find_cycle(jobs: List[Job]) -> Optional[List[str]]:
    """
    Depth-first search with a recursion stack.

    Returns the offending path (first node repeated at the end), or None.
    """
    needs = {j.id: list(j.needs) for j in jobs}
    done: Set[str] = set()
    stack: List[str] = []
    on_stack: Set[str] = set()

    def visit(node: str) -> Optional[List[str]]:
        stack.append(node)
        on_stack.add(node)
        for dep in needs.get(node, []):
            if dep in on_stack:
                start = stack.index(dep)
                return stack[start:] + [dep]
            if dep not in done and dep in needs:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        on_stack.discard(node)
        done.add(node)
        return None

    for j in jobs:
        if j.id not in done:
            found = visit(j.id)
            if found:
                # report in execution direction: need -> dependent
                return list(reversed(found))
    return None


def _check_conditions(job: Job) -> None:
    if job.condition is not None:
        try:
            compile_expression(job.condition)
        except ConditionError as e:
            raise ValidationError(
                f"Job '{job.id}' has a malformed if condition: {e.message}",
                job=job.id,
                details=e.details,
                kind=e.kind,
            ) from e
    for step in job.steps:
        if step.condition is None:
            continue
        try:
            compile_expression(step.condition)
        except ConditionError as e:
            raise ValidationError(
                f"Step '{step.name}' of job '{job.id}' has a malformed if condition: {e.message}",
                job=job.id,
                step=step.name,
                details=e.details,
                kind=e.kind,
            ) from e


def _check_steps(job: Job) -> None:
    if not job.steps:
        raise ValidationError(f"Job '{job.id}' has no steps", job=job.id)
    for step in job.steps:
        if (step.run is None) == (step.uses is None):
            raise ValidationError(
                f"Step '{step.name}' of job '{job.id}' must set exactly one of 'run' or 'uses'",
                job=job.id,
                step=step.name,
            )


def build(workflow: Workflow) -> JobGraph:
    """
    Validate a workflow and build its DAG.

    Raises ValidationError for duplicate ids, dangling or self `needs`,
    cycles (with the cycle path), malformed conditions and empty jobs.
    """
    jobs = list(workflow.jobs)
    names = [j.id for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValidationError(f"Duplicate job ids found: {dupes}", details={"duplicates": dupes})

    name_set = set(names)
    preds: Dict[str, List[str]] = {n: [] for n in names}
    succs: Dict[str, List[str]] = {n: [] for n in names}

    for job in jobs:
        for need in job.needs:
            if need == job.id:
                raise ValidationError(f"Job '{job.id}' needs itself", job=job.id, details={"cycle": [job.id, job.id]})
            if need not in name_set:
                raise ValidationError(
                    f"Job '{job.id}' needs missing job '{need}'. Known jobs: {sorted(name_set)}",
                    job=job.id,
                    details={"missing": need},
                )
            if need not in preds[job.id]:
                preds[job.id].append(need)
                succs[need].append(job.id)

    cycle = find_cycle(jobs)
    if cycle:
        raise ValidationError(
            "Job dependencies form a cycle: " + " -> ".join(cycle),
            details={"cycle": cycle},
        )

    for job in jobs:
        _check_steps(job)
        _check_conditions(job)

    return JobGraph(workflow, preds, succs)
