"""
Dependency graph over tasks, within and across features.

An edge task -> dep means "task depends on dep". Cycles are rejected before
an edge is inserted: an edge task -> dep is refused when task is already
reachable from dep.
"""

import logging
from typing import Callable, Iterable, Iterator, Optional

from coordinator.lib.errors import CycleDetected, DuplicateTask, UnknownTask

logger = logging.getLogger(__name__)

# A task at or past in_progress has already been picked up
NOT_ELIGIBLE_STATES = frozenset({"in_progress", "implemented", "validated", "done"})


class EligibleTasks:
    """Lazy, restartable view of the tasks that may run now.

    Every iteration re-reads the graph and statuses; iterating has no side effects.
    """

    def __init__(self, graph: "TaskGraph", feature_id: Optional[str] = None):
        self._graph = graph
        self._feature_id = feature_id

    def __iter__(self) -> Iterator[str]:
        graph = self._graph
        for task_id in sorted(graph._deps):
            if self._feature_id is not None and graph._feature.get(task_id) != self._feature_id:
                continue
            if graph.status_of(task_id) in NOT_ELIGIBLE_STATES:
                continue
            if all(graph.status_of(dep) == "done" for dep in graph._deps[task_id]):
                yield task_id

    def __contains__(self, task_id: str) -> bool:
        return any(t == task_id for t in self)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class TaskGraph:
    """Acyclic dependency graph.

    Args:
        status_of: returns the current status string of a task id
    """

    def __init__(self, status_of: Callable[[str], str]):
        self.status_of = status_of
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}
        self._feature: dict[str, str] = {}

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._deps

    def __len__(self) -> int:
        return len(self._deps)

    def copy(self) -> "TaskGraph":
        """Independent copy for dry-run validation."""
        clone = TaskGraph(self.status_of)
        clone._deps = {k: set(v) for k, v in self._deps.items()}
        clone._dependents = {k: set(v) for k, v in self._dependents.items()}
        clone._feature = dict(self._feature)
        return clone

    def _require(self, task_id: str) -> None:
        if task_id not in self._deps:
            raise UnknownTask(task_id)

    def _path(self, start: str, goal: str) -> Optional[list[str]]:
        """Dependency path start -> ... -> goal, or None if goal is unreachable."""
        stack = [(start, [start])]
        seen = {start}
        while stack:
            node, path = stack.pop()
            if node == goal:
                return path
            for nxt in sorted(self._deps.get(node, ())):
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append((nxt, path + [nxt]))
        return None

    def _check_edge(self, task_id: str, dep_id: str) -> None:
        if task_id == dep_id:
            raise CycleDetected(task_id, dep_id, [task_id, task_id])
        path = self._path(dep_id, task_id)
        if path is not None:
            raise CycleDetected(task_id, dep_id, [task_id] + path)

    def add_task(self, task_id: str, deps: Iterable[str] = (), feature_id: str = "") -> None:
        """Insert a task with its dependencies.

        Raises:
            DuplicateTask: task already in the graph
            UnknownTask: a dependency does not exist
            CycleDetected: the edges would create a cycle
        """
        if task_id in self._deps:
            raise DuplicateTask(task_id)
        deps = set(deps)
        for dep in sorted(deps):
            if dep == task_id:
                raise CycleDetected(task_id, dep, [task_id, task_id])
            self._require(dep)

        # A fresh node has no dependents yet; the generic check still runs
        self._deps[task_id] = set()
        self._dependents[task_id] = set()
        self._feature[task_id] = feature_id
        try:
            for dep in sorted(deps):
                self._check_edge(task_id, dep)
                self._link(task_id, dep)
        except CycleDetected:
            self._unlink_all(task_id)
            raise
        logger.debug(f"[GRAPH] Added {task_id} (deps: {sorted(deps) or 'none'})")

    def add_dependency(self, task_id: str, dep_id: str) -> None:
        """Add an edge to an existing task.

        Raises:
            UnknownTask: either task does not exist
            CycleDetected: dep_id already (transitively) depends on task_id
        """
        self._require(task_id)
        self._require(dep_id)
        self._check_edge(task_id, dep_id)
        self._link(task_id, dep_id)
        logger.debug(f"[GRAPH] Added edge {task_id} -> {dep_id}")

    def _link(self, task_id: str, dep_id: str) -> None:
        self._deps[task_id].add(dep_id)
        self._dependents[dep_id].add(task_id)

    def _unlink_all(self, task_id: str) -> None:
        for dep in self._deps.pop(task_id, set()):
            self._dependents[dep].discard(task_id)
        self._dependents.pop(task_id, None)
        self._feature.pop(task_id, None)

    def dependencies(self, task_id: str) -> set[str]:
        self._require(task_id)
        return set(self._deps[task_id])

    def dependents(self, task_id: str) -> set[str]:
        self._require(task_id)
        return set(self._dependents[task_id])

    def dependency_count(self, task_id: str) -> int:
        self._require(task_id)
        return len(self._deps[task_id])

    def has_cycle(self) -> bool:
        """Full check over the whole graph (diagnostics and tests)."""
        return any(
            self._path(dep, task_id) is not None
            for task_id, deps in self._deps.items()
            for dep in deps
        )

    def eligible_tasks(self, feature_id: Optional[str] = None) -> EligibleTasks:
        """Tasks whose dependencies are all done and that haven't started yet."""
        return EligibleTasks(self, feature_id)

    def topological_batches(self, feature_id: Optional[str] = None) -> list[list[str]]:
        """Successive layers of mutually independent tasks.

        Layer n holds the tasks whose dependencies all sit in layers < n.
        Dependencies outside the selected feature are treated as satisfied.
        """
        nodes = {
            t for t in self._deps
            if feature_id is None or self._feature.get(t) == feature_id
        }
        remaining = {t: {d for d in self._deps[t] if d in nodes} for t in nodes}
        batches = []
        while remaining:
            layer = sorted(t for t, deps in remaining.items() if not deps)
            if not layer:
                # Unreachable while insertion keeps the graph acyclic
                raise CycleDetected(next(iter(remaining)), "", sorted(remaining))
            batches.append(layer)
            for t in layer:
                del remaining[t]
            for deps in remaining.values():
                deps.difference_update(layer)
        return batches
