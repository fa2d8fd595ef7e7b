"""
Conflict detection over task touch sets.

Two tasks conflict iff their touch sets intersect. The detector picks a
concurrency-safe batch from the eligible tasks; ResourceClaims tracks which
task currently holds which resource keys. Mutual exclusion is logical: it is
decided here before dispatch, not by runtime locks.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from coordinator.lib.errors import ConflictDetected
from coordinator.pm.models import Task
from coordinator.workflow.graph import TaskGraph

logger = logging.getLogger(__name__)


class ResourceClaims:
    """Which task holds which resource keys right now."""

    def __init__(self):
        self._owner: dict[str, str] = {}

    def owner_of(self, key: str) -> Optional[str]:
        return self._owner.get(key)

    def claimed_keys(self) -> set[str]:
        return set(self._owner)

    def held_by(self, task_id: str) -> list[str]:
        return sorted(k for k, owner in self._owner.items() if owner == task_id)

    def as_dict(self) -> dict[str, str]:
        return dict(self._owner)

    def claim(self, task_id: str, keys: Iterable[str]) -> None:
        """Claim all keys for task_id, or none of them.

        Raises:
            ConflictDetected: if another task holds any of the keys
        """
        keys = set(keys)
        conflicts: dict[str, list[str]] = {}
        for key in sorted(keys):
            owner = self._owner.get(key)
            if owner is not None and owner != task_id:
                conflicts.setdefault(owner, []).append(key)
        if conflicts:
            raise ConflictDetected(task_id, conflicts)
        for key in keys:
            self._owner[key] = task_id
        logger.debug(f"[CONFLICT] {task_id} claimed {sorted(keys)}")

    def release(self, task_id: str) -> list[str]:
        """Release every key held by task_id. Returns the released keys."""
        released = self.held_by(task_id)
        for key in released:
            del self._owner[key]
        if released:
            logger.debug(f"[CONFLICT] {task_id} released {released}")
        return released


@dataclass
class BatchSelection:
    """Result of one admission round.

    excluded maps a task to the tasks it conflicts with (batch members or
    running claim holders). deferred lists conflict-free tasks left out
    because the batch was full.
    """
    admitted: list[str] = field(default_factory=list)
    excluded: dict[str, list[str]] = field(default_factory=dict)
    deferred: list[str] = field(default_factory=list)

    def reason(self, task_id: str) -> Optional[str]:
        if task_id in self.excluded:
            return f"conflicts with {', '.join(self.excluded[task_id])}"
        if task_id in self.deferred:
            return "deferred: worker limit reached"
        return None


def overlap(a: Iterable[str], b: Iterable[str]) -> list[str]:
    return sorted(set(a) & set(b))


class ConflictDetector:
    """Greedy, deterministic batch admission.

    Candidates are ranked by (dependency count descending, task id ascending)
    and admitted while their touch set is disjoint from every key already
    claimed. The rank of a task never changes when it is excluded, so an
    excluded task is first in line once its conflicting peers finish.
    """

    def __init__(self, graph: TaskGraph):
        self.graph = graph

    def rank(self, task: Task) -> tuple[int, str]:
        return (-self.graph.dependency_count(task.id), task.id)

    def select_batch(
        self,
        candidates: Iterable[Task],
        claims: Optional[ResourceClaims] = None,
        limit: Optional[int] = None,
    ) -> BatchSelection:
        """Pick a concurrency-safe subset of candidates.

        Args:
            candidates: eligible tasks
            claims: keys already held by running tasks
            limit: maximum batch size (free worker slots)
        """
        selection = BatchSelection()
        claimed: dict[str, str] = claims.as_dict() if claims else {}

        for task in sorted(candidates, key=self.rank):
            owners = sorted({claimed[k] for k in task.touch_set if k in claimed})
            if owners:
                selection.excluded[task.id] = owners
                logger.info(f"[CONFLICT] {task.id} excluded: conflicts with {', '.join(owners)}")
                continue
            if limit is not None and len(selection.admitted) >= limit:
                selection.deferred.append(task.id)
                continue
            selection.admitted.append(task.id)
            for key in task.touch_set:
                claimed[key] = task.id

        return selection

    def find_conflicts(self, task: Task, others: Iterable[Task]) -> dict[str, list[str]]:
        """Map each other task whose touch set intersects task's to the shared keys."""
        conflicts = {}
        for other in others:
            if other.id == task.id:
                continue
            shared = overlap(task.touch_set, other.touch_set)
            if shared:
                conflicts[other.id] = shared
        return conflicts
