from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from pathlib import PurePath
from typing import Any, Callable, Iterable, Iterator

from .types import (
    CycleDetectedError,
    DuplicateOutputError,
    DuplicateTaskError,
    Outcome,
    UnknownDependencyError,
)

Action = Callable[[], Any]


class _Visit(Enum):
    UNVISITED = auto()
    VISITING = auto()
    VISITED = auto()


@dataclass
class Task:
    name: str
    deps: tuple[str, ...]
    action: Action
    outputs: tuple[str, ...] = ()
    last_outcome: Outcome = Outcome.NOT_RUN


@dataclass(frozen=True)
class ExecutionPlan:
    """Stages of task names; every stage only depends on earlier stages."""

    stages: tuple[tuple[str, ...], ...]

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    def order(self) -> list[str]:
        return [tid for stage in self.stages for tid in stage]


class TaskGraph:
    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._output_owners: dict[str, str] = {}
        self._plan: ExecutionPlan | None = None

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> TaskGraph:
        """Register a batch of tasks declared in any order.

        Unlike `add_task`, dependencies may point forward inside the batch, so
        cycles are possible and only surface in `compute_plan`.
        """
        graph = cls()
        batch = list(tasks)
        for task in batch:
            graph._register(task)

        for task in batch:
            for dep in task.deps:
                if dep not in graph._tasks:
                    raise UnknownDependencyError(task.name, dep)

        return graph

    def add_task(
        self,
        name: str,
        deps: Iterable[str],
        action: Action,
        *,
        outputs: Iterable[str] = (),
    ) -> Task:
        deps_tuple = _dedupe(deps)
        for dep in deps_tuple:
            if dep not in self._tasks:
                raise UnknownDependencyError(name, dep)

        task = Task(name, deps_tuple, action, tuple(outputs))
        self._register(task)
        return task

    def _register(self, task: Task) -> None:
        if task.name in self._tasks:
            raise DuplicateTaskError(task.name)

        for output in task.outputs:
            for claimed, owner in self._output_owners.items():
                if _overlaps(output, claimed):
                    raise DuplicateOutputError(output, owner, task.name)

        task.deps = _dedupe(task.deps)
        self._tasks[task.name] = task
        for output in task.outputs:
            self._output_owners[output] = task.name
        self._plan = None

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def get(self, name: str) -> Task:
        if name not in self._tasks:
            raise KeyError(name)

        return self._tasks[name]

    def names(self) -> list[str]:
        return list(self._tasks)

    def compute_plan(self) -> ExecutionPlan:
        if self._plan is None:
            self._plan = self._kahn_stages()
        return self._plan

    def topo_order(self) -> list[str]:
        return self.compute_plan().order()

    def closure(self, targets: Iterable[str]) -> set[str]:
        needed: set[str] = set()
        worklist: list[str] = list(targets)

        while worklist:
            task_id = worklist.pop()
            if task_id in needed:
                continue
            needed.add(self.get(task_id).name)
            worklist.extend(self._tasks[task_id].deps)

        return needed

    def dependents_of(self, name: str) -> set[str]:
        self.get(name)
        children = self._dependents()
        found: set[str] = set()
        worklist = list(children[name])

        while worklist:
            task_id = worklist.pop()
            if task_id in found:
                continue
            found.add(task_id)
            worklist.extend(children[task_id])

        return found

    def subset(self, names: Iterable[str]) -> TaskGraph:
        """Graph restricted to `names`.

        Dependencies that run through dropped tasks are contracted onto the
        nearest kept ancestors, so kept tasks keep their relative order.
        """
        keep = set(names)
        for task_id in keep:
            self.get(task_id)

        graph = TaskGraph()
        for task_id in self.topo_order():
            if task_id not in keep:
                continue
            task = self._tasks[task_id]
            graph.add_task(
                task_id,
                self._nearest_kept(task_id, keep),
                task.action,
                outputs=task.outputs,
            )

        return graph

    def _nearest_kept(self, task_id: str, keep: set[str]) -> tuple[str, ...]:
        found: set[str] = set()
        seen: set[str] = set()
        worklist = list(self._tasks[task_id].deps)

        while worklist:
            dep = worklist.pop()
            if dep in seen:
                continue
            seen.add(dep)
            if dep in keep:
                found.add(dep)
            else:
                worklist.extend(self._tasks[dep].deps)

        return tuple(sorted(found))

    def _dependents(self) -> dict[str, list[str]]:
        children: dict[str, list[str]] = {tid: [] for tid in self._tasks}
        for task in self._tasks.values():
            for dep in task.deps:
                children[dep].append(task.name)
        return children

    def _kahn_stages(self) -> ExecutionPlan:
        indeg = {tid: len(task.deps) for tid, task in self._tasks.items()}
        children = self._dependents()
        ready = sorted(tid for tid, deg in indeg.items() if deg == 0)
        stages: list[tuple[str, ...]] = []
        placed = 0

        while ready:
            stages.append(tuple(ready))
            placed += len(ready)
            unlocked: list[str] = []
            for tid in ready:
                for child in children[tid]:
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        unlocked.append(child)
            ready = sorted(unlocked)

        if placed != len(indeg):
            stuck = {tid for tid, deg in indeg.items() if deg > 0}
            raise CycleDetectedError(self._find_cycle(stuck))

        return ExecutionPlan(tuple(stages))

    def _find_cycle(self, universe: set[str]) -> list[str]:
        state = {tid: _Visit.UNVISITED for tid in universe}
        stack: list[str] = []
        pos: dict[str, int] = {}

        def visit(tid: str) -> list[str] | None:
            if state[tid] == _Visit.VISITING:
                return stack[pos[tid] :] + [tid]
            if state[tid] == _Visit.VISITED:
                return None

            state[tid] = _Visit.VISITING
            pos[tid] = len(stack)
            stack.append(tid)

            for dep in self._tasks[tid].deps:
                if dep in state:
                    cycle = visit(dep)
                    if cycle is not None:
                        return cycle

            stack.pop()
            pos.pop(tid)
            state[tid] = _Visit.VISITED
            return None

        # Every stuck task waits on another stuck task, so a cycle exists.
        for tid in sorted(universe):
            cycle = visit(tid)
            if cycle is not None:
                return cycle

        raise AssertionError("Unreachable")


def _dedupe(deps: Iterable[str]) -> tuple[str, ...]:
    out: list[str] = []
    for dep in deps:
        if dep not in out:
            out.append(dep)
    return tuple(out)


def _overlaps(a: str, b: str) -> bool:
    """True when one output path equals or contains the other."""
    pa, pb = PurePath(a), PurePath(b)
    return pa == pb or pa in pb.parents or pb in pa.parents
