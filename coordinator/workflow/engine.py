"""Coordinator engine.

The Orchestrator is the only writer of the FeatureStore and HistoryLog and
the only caller of LegacyArchive.snapshot(). Workers run in a bounded
thread pool and report back through a completion queue; the coordinator
processes reports one at a time, so every state write happens on the
coordinator thread.

Loop body:
1. ask the TaskGraph for eligible tasks (scheduled and planned)
2. ask the ConflictDetector for a concurrency-safe batch, bounded by free workers
3. claim touch sets, move tasks to in_progress, dispatch
4. on success: snapshot every resource about to change, apply, release, log
5. on failure: release and block; no automatic retry
"""

import itertools
import json
import logging
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from coordinator.lib.config import CoordinatorConfig
from coordinator.lib.constants import (
    CHANGE_TYPES,
    REASON_CANCELLED,
    REASON_CONFLICT,
    REASON_SNAPSHOT,
    REASON_TIMEOUT,
    REASON_WRITE,
)
from coordinator.lib.errors import (
    ConflictDetected,
    IntegrityHalt,
    SnapshotWriteFailure,
    ValidationError,
)
from coordinator.lib.history import HistoryLog, utc_now
from coordinator.lib.legacy import LegacyArchive
from coordinator.lib.resources import ResourceStore, normalize_keys
from coordinator.lib.types import ChangelogEntry
from coordinator.pm.features import FeatureStore
from coordinator.pm.models import Feature, Plan, Task
from coordinator.workflow.conflicts import BatchSelection, ConflictDetector, ResourceClaims
from coordinator.workflow.state_machine import (
    FeatureState,
    InvalidTransition,
    TaskState,
    cancel,
    transition,
    transition_feature,
)
from coordinator.workflow.worker import (
    CancelToken,
    WorkRequest,
    WorkResult,
    Worker,
    run_worker,
)

logger = logging.getLogger(__name__)

REASON_INTERRUPTED = "Interrupted: coordinator restarted while task was in progress"
HALT_FILENAME = "halt.json"


@dataclass
class _Dispatch:
    task_id: str
    dispatch_id: int
    worker_name: str
    token: CancelToken
    deadline: Optional[float] = None
    future: Optional[Future] = field(default=None, repr=False)


@dataclass
class _Completion:
    task_id: str
    dispatch_id: int
    result: WorkResult


class Orchestrator:
    """Single authority over task and feature status."""

    def __init__(
        self,
        store: FeatureStore,
        history: HistoryLog,
        archive: LegacyArchive,
        resources: ResourceStore,
        worker: Optional[Worker] = None,
        config: Optional[CoordinatorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.history = history
        self.archive = archive
        self.resources = resources
        self.worker = worker
        self.config = config or CoordinatorConfig(root=resources.root)
        self.clock = clock

        self.detector = ConflictDetector(store.graph)
        self.claims = ResourceClaims()
        self.last_selection: Optional[BatchSelection] = None
        self._halt_path = store.state_dir / HALT_FILENAME
        self.halted: Optional[str] = self._load_halt()

        self._pool: Optional[ThreadPoolExecutor] = None
        self._completions: "queue.Queue[_Completion]" = queue.Queue()
        self._inflight: dict[str, _Dispatch] = {}
        self._dispatch_ids = itertools.count(1)

        self._recover_in_progress_tasks()

    @classmethod
    def from_config(cls, config: CoordinatorConfig, worker: Optional[Worker] = None) -> "Orchestrator":
        """Open the persisted state described by config."""
        state_dir = config.state_path
        resources = ResourceStore(config.root)
        history = HistoryLog(state_dir)
        archive = LegacyArchive(state_dir, resources, history, config.snapshot_write_attempts)
        store = FeatureStore(state_dir)
        return cls(store, history, archive, resources, worker=worker, config=config)

    @property
    def max_workers(self) -> int:
        return self.config.max_parallel_workers

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="coord-worker")
        return self._pool

    def shutdown(self, wait: bool = True) -> None:
        """Signal cancellation to running workers and stop the pool."""
        for dispatch in self._inflight.values():
            dispatch.token.cancel("coordinator shutting down")
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None

    def _recover_in_progress_tasks(self) -> None:
        """Tasks left in_progress by an earlier process have no worker any more."""
        for task in self.store.tasks_with_status(TaskState.IN_PROGRESS.value):
            self._block(task, REASON_INTERRUPTED)

    # ------------------------------------------------------------------
    # Feature / task lifecycle
    # ------------------------------------------------------------------

    def create_feature(self, description: str) -> Feature:
        if not description or not description.strip():
            raise ValidationError("feature", "Feature description must not be empty")
        return self.store.create_feature(description)

    def attach_prd(self, feature_id: str, content: str) -> str:
        feature = self.store.get_feature(feature_id)
        prd_id = self.store.attach_prd(feature_id, content)
        if feature.status == FeatureState.DRAFT.value:
            transition_feature(feature, FeatureState.SCOPED, reason=f"{prd_id} attached")
            self.store.save_feature(feature)
        return prd_id

    def create_tasks(self, feature_id: str, specs: list[dict]) -> list[Task]:
        return self.store.create_tasks(feature_id, specs)

    def create_task(self, feature_id: str, task_id: str, **kwargs) -> Task:
        return self.store.create_task(feature_id, task_id, **kwargs)

    def add_dependency(self, task_id: str, dep_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task.status in (TaskState.IN_PROGRESS.value, TaskState.DONE.value):
            raise InvalidTransition(task.status, TaskState.PLANNED, task_id)
        return self.store.add_dependency(task_id, dep_id)

    def approve_prd(self, task_id: str) -> Task:
        """Draft -> PRDApproved. The feature must have a PRD attached."""
        task = self.store.get_task(task_id)
        feature = self.store.get_feature(task.feature_id)
        if not feature.prd_ids:
            raise ValidationError("task", f"Feature {feature.id} has no PRD attached")
        if task.status != TaskState.DRAFT.value:
            raise InvalidTransition(task.status, TaskState.PRD_APPROVED, task_id)
        transition(task, TaskState.PRD_APPROVED)
        task.blocked_reason = None
        self.store.save_task(task)
        return task

    def _build_plan(self, task: Task, impact_matrix: Optional[dict], notes: str) -> Plan:
        if impact_matrix is None:
            impact_matrix = {key: "modify" for key in task.touch_set}
        matrix = {normalize_keys([k])[0]: v for k, v in impact_matrix.items()}
        outside = sorted(set(matrix) - set(task.touch_set))
        if outside:
            raise ValidationError(
                "plan", f"Impact matrix for {task.id} names resources outside its touch set: {outside}"
            )
        return Plan(task_id=task.id, impact_matrix=matrix, created_at=utc_now(), duplicate_risk_notes=notes)

    def _planned_peers(self, task: Task) -> list[Task]:
        return [
            t for t in self.store.tasks_with_status(TaskState.PLANNED.value, TaskState.IN_PROGRESS.value)
            if t.id != task.id
        ]

    def plan(
        self,
        task_id: str,
        impact_matrix: Optional[dict[str, str]] = None,
        duplicate_risk_notes: str = "",
        serialize: bool = False,
    ) -> Plan:
        """PRDApproved -> Planned, recording the task's impact matrix.

        Raises:
            ConflictDetected: touch set overlaps a planned or running task and
                serialize is False. Nothing is stored.
        """
        task = self.store.get_task(task_id)
        if task.status != TaskState.PRD_APPROVED.value:
            raise InvalidTransition(task.status, TaskState.PLANNED, task_id)

        conflicts = self.detector.find_conflicts(task, self._planned_peers(task))
        if conflicts and not serialize:
            raise ConflictDetected(task_id, conflicts)
        if conflicts:
            serialized = "; ".join(f"{peer}: {', '.join(keys)}" for peer, keys in sorted(conflicts.items()))
            note = f"Serialized against {serialized}"
            duplicate_risk_notes = f"{duplicate_risk_notes}\n{note}".strip()

        plan = self._build_plan(task, impact_matrix, duplicate_risk_notes)
        self.store.save_plan(plan)
        transition(task, TaskState.PLANNED, reason="plan recorded")
        self.store.save_task(task)
        return plan

    def replan(self, task_id: str, impact_matrix: Optional[dict[str, str]] = None, duplicate_risk_notes: str = "") -> Plan:
        """Blocked -> Planned with a fresh plan. The old plan is superseded.

        Only a task that was planned before it was blocked can be replanned;
        one cancelled earlier must be reopened and approved again.
        """
        task = self.store.get_task(task_id)
        if task.status != TaskState.BLOCKED.value:
            raise InvalidTransition(task.status, TaskState.PLANNED, task_id)
        if self.store.get_plan(task_id) is None:
            raise ValidationError(
                "plan", f"{task_id} was never planned; reopen it and approve its PRD coverage first"
            )
        plan = self._build_plan(task, impact_matrix, duplicate_risk_notes)
        self.store.save_plan(plan)
        transition(task, TaskState.PLANNED, reason="replanned")
        task.blocked_reason = None
        task.scheduled = False
        self.store.save_task(task)
        return plan

    def reopen(self, task_id: str) -> Task:
        """Blocked -> Draft. Any current plan is superseded."""
        task = self.store.get_task(task_id)
        if task.status != TaskState.BLOCKED.value:
            raise InvalidTransition(task.status, TaskState.DRAFT, task_id)
        self.store.supersede_plan(task_id)
        transition(task, TaskState.DRAFT, reason="reopened")
        task.blocked_reason = None
        task.scheduled = False
        self.store.save_task(task)
        return task

    def request_code(self, task_id: str, deadline_seconds: Optional[float] = None) -> Task:
        """Ask for a planned task to be scheduled.

        Raises:
            InvalidTransition: the task is not Planned
        """
        task = self.store.get_task(task_id)
        if task.status != TaskState.PLANNED.value:
            raise InvalidTransition(task.status, TaskState.IN_PROGRESS, task_id)
        if deadline_seconds is not None and deadline_seconds <= 0:
            raise ValidationError("task", f"Deadline must be positive, got {deadline_seconds}")
        task.scheduled = True
        task.deadline_seconds = deadline_seconds
        self.store.save_task(task)
        logger.info(f"[DISPATCH] {task_id} scheduled")
        return task

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    def schedulable(self) -> list[Task]:
        """Eligible tasks that are planned and have been requested."""
        tasks = []
        for task_id in self.store.graph.eligible_tasks():
            task = self.store.get_task(task_id)
            if task.status == TaskState.PLANNED.value and task.scheduled:
                tasks.append(task)
        return tasks

    def preview_batch(self, scheduled_only: bool = False) -> BatchSelection:
        """What the next admission round would pick, without dispatching."""
        if scheduled_only:
            candidates = self.schedulable()
        else:
            candidates = [self.store.get_task(t) for t in self.store.graph.eligible_tasks()]
        free = max(self.max_workers - len(self._inflight), 0)
        return self.detector.select_batch(candidates, self.claims, limit=free)

    def running(self) -> list[str]:
        return sorted(self._inflight)

    def step(self) -> list[str]:
        """Expire deadlines, then dispatch one admissible batch. Returns dispatched ids."""
        if self.halted is not None:
            raise IntegrityHalt(f"Dispatch halted after integrity failure: {self.halted}")

        self.check_deadlines()
        free = self.max_workers - len(self._inflight)
        if free <= 0:
            return []

        selection = self.detector.select_batch(self.schedulable(), self.claims, limit=free)
        self.last_selection = selection
        dispatched = []
        for task_id in selection.admitted:
            self._dispatch(self.store.get_task(task_id))
            dispatched.append(task_id)
        return dispatched

    def _dispatch(self, task: Task) -> None:
        if self.worker is None:
            raise ValidationError("config", "No worker configured; set worker_command in coord.yaml")

        self.claims.claim(task.id, task.touch_set)
        dispatch_id = next(self._dispatch_ids)
        worker_name = f"worker-{dispatch_id}"

        transition(task, TaskState.IN_PROGRESS, reason=f"dispatched to {worker_name}")
        task.assigned_worker = worker_name
        self.store.save_task(task)

        feature = self.store.get_feature(task.feature_id)
        if feature.status == FeatureState.SCOPED.value:
            transition_feature(feature, FeatureState.ACTIVE, reason=f"{task.id} started")
            self.store.save_feature(feature)

        seconds = task.deadline_seconds or self.config.task_deadline_seconds
        dispatch = _Dispatch(
            task_id=task.id,
            dispatch_id=dispatch_id,
            worker_name=worker_name,
            token=CancelToken(),
            deadline=self.clock() + seconds if seconds else None,
        )
        plan = self.store.get_plan(task.id)
        request = WorkRequest(
            task_id=task.id,
            feature_id=task.feature_id,
            description=task.description,
            acceptance_criteria=list(task.acceptance_criteria),
            touch_set=list(task.touch_set),
            impact_matrix=dict(plan.impact_matrix) if plan else {},
        )
        self._inflight[task.id] = dispatch

        future = self._get_pool().submit(run_worker, self.worker, request, dispatch.token)
        dispatch.future = future
        future.add_done_callback(
            lambda f, task_id=task.id, dispatch_id=dispatch_id: self._on_worker_done(task_id, dispatch_id, f)
        )
        logger.info(f"[DISPATCH] {task.id} -> {worker_name} (touch: {', '.join(task.touch_set) or 'none'})")

    def _on_worker_done(self, task_id: str, dispatch_id: int, future: Future) -> None:
        """Runs on the worker thread: only enqueues the report."""
        if future.cancelled():
            result = WorkResult.failed("Worker was cancelled before it started")
        elif future.exception() is not None:
            result = WorkResult.failed(str(future.exception()))
        else:
            result = future.result()
        self._completions.put(_Completion(task_id, dispatch_id, result))

    def _next_deadline_wait(self) -> Optional[float]:
        deadlines = [d.deadline for d in self._inflight.values() if d.deadline is not None]
        if not deadlines:
            return None
        return max(min(deadlines) - self.clock(), 0.0)

    def process_next_completion(self, timeout: Optional[float] = None) -> Optional[str]:
        """Wait for one completion report and apply it.

        Wakes early when a deadline passes. Returns the task id processed,
        or None if nothing arrived in time.

        Raises:
            SnapshotWriteFailure: the task's changes could not be made undoable
        """
        wait = timeout
        deadline_wait = self._next_deadline_wait()
        if deadline_wait is not None:
            wait = deadline_wait if wait is None else min(wait, deadline_wait)

        try:
            message = self._completions.get(timeout=wait)
        except queue.Empty:
            self.check_deadlines()
            return None

        self._handle_completion(message)
        return message.task_id

    def run_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Drive the loop until nothing is running and nothing can be dispatched.

        Returns True when idle, False if timeout elapsed first.
        """
        stop_at = self.clock() + timeout if timeout is not None else None
        while True:
            self.step()
            if not self._inflight:
                return True
            remaining = None
            if stop_at is not None:
                remaining = stop_at - self.clock()
                if remaining <= 0:
                    return False
            self.process_next_completion(timeout=remaining)

    def _handle_completion(self, message: _Completion) -> None:
        dispatch = self._inflight.get(message.task_id)
        if dispatch is None or dispatch.dispatch_id != message.dispatch_id:
            logger.info(f"[DISPATCH] Ignoring stale report for {message.task_id} (dispatch {message.dispatch_id})")
            return
        del self._inflight[message.task_id]

        task = self.store.get_task(message.task_id)
        result = message.result
        if not result.success:
            self._block(task, result.error or "Worker reported failure")
            return
        self._commit(task, result)

    def _commit(self, task: Task, result: WorkResult) -> None:
        try:
            changes = {normalize_keys([k])[0]: v for k, v in result.changes.items()}
        except ValidationError as e:
            self._block(task, f"Invalid resource key in result: {e}")
            return

        undeclared = sorted(set(changes) - set(task.touch_set))
        if undeclared:
            self._block(task, f"Result changes undeclared resources: {', '.join(undeclared)}")
            return
        change_type = result.change_type or "feature"
        if change_type not in CHANGE_TYPES:
            self._block(task, f"Unknown change type '{change_type}'")
            return

        description = result.description or task.description

        # The changelog entry must be valid before anything is snapshotted or applied
        try:
            entry = self.history.build(
                change_type=change_type,
                resource_keys=changes.keys(),
                description=f"{task.id}: {description}",
                agent_roles=result.agent_roles or self.config.agent_roles,
                task_id=task.id,
            )
        except (ValidationError, TypeError) as e:
            self._block(task, f"Invalid changelog entry for result: {e}")
            return

        # Every snapshot is written before any change is applied
        try:
            for key in sorted(changes):
                self.archive.snapshot(key, f"{task.id}: {description}")
        except SnapshotWriteFailure as e:
            self._block(task, f"{REASON_SNAPSHOT}: {e}")
            self._set_halt(f"{task.id}: {e}")
            logger.error(f"[LEGACY] Commit of {task.id} aborted, dispatch halted: {e}")
            raise

        try:
            for key, content in sorted(changes.items()):
                if content is None:
                    self.resources.delete(key)
                else:
                    self.resources.write(key, content)
        except OSError as e:
            # Snapshots above cover every key, so partial writes can be reverted
            self._block(task, f"{REASON_WRITE}: {e}")
            logger.error(f"[DISPATCH] Commit of {task.id} partially applied, revert from legacy snapshots: {e}")
            return

        self.history.record_built(entry)

        self.claims.release(task.id)
        transition(task, TaskState.IMPLEMENTED, reason=f"{len(changes)} resource(s) changed")
        task.assigned_worker = None
        task.scheduled = False
        self.store.save_task(task)

    def _block(self, task: Task, reason: str) -> None:
        """InProgress -> Blocked, releasing claims. No retry."""
        self.claims.release(task.id)
        transition(task, TaskState.BLOCKED, reason=reason)
        task.blocked_reason = reason
        task.assigned_worker = None
        task.scheduled = False
        self.store.save_task(task)
        logger.warning(f"[DISPATCH] {task.id} blocked: {reason}")

    def check_deadlines(self) -> list[str]:
        """Block tasks past their deadline. The worker is signalled, not killed."""
        now = self.clock()
        expired = [d for d in self._inflight.values() if d.deadline is not None and now >= d.deadline]
        for dispatch in expired:
            del self._inflight[dispatch.task_id]
            dispatch.token.cancel(REASON_TIMEOUT)
            self._block(self.store.get_task(dispatch.task_id), REASON_TIMEOUT)
        return [d.task_id for d in expired]

    def _load_halt(self) -> Optional[str]:
        if not self._halt_path.exists():
            return None
        try:
            return json.loads(self._halt_path.read_text())["reason"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            return f"unreadable halt record {self._halt_path}: {e}"

    def _set_halt(self, reason: str) -> None:
        """Halt dispatch. The halt is persisted so later processes honour it."""
        self.halted = reason
        self._halt_path.parent.mkdir(parents=True, exist_ok=True)
        self._halt_path.write_text(json.dumps({"reason": reason, "timestamp": utc_now()}, indent=2))

    def resume(self) -> None:
        """Clear an integrity halt once the operator has dealt with it."""
        if self.halted is not None:
            logger.info(f"[DISPATCH] Resuming after integrity failure: {self.halted}")
        self.halted = None
        self._halt_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # External signals
    # ------------------------------------------------------------------

    def validate(self, task_id: str, passed: bool, notes: str = "") -> Task:
        """Apply an external validation verdict.

        A pass moves Implemented -> Validated or Validated -> Done. A fail is
        recorded on the task and leaves its status alone.
        """
        task = self.store.get_task(task_id)
        if task.status not in (TaskState.IMPLEMENTED.value, TaskState.VALIDATED.value):
            raise InvalidTransition(task.status, TaskState.VALIDATED, task_id)

        if not passed:
            task.validation_notes.append(f"rejected: {notes}" if notes else "rejected")
            self.store.save_task(task)
            logger.warning(f"[STATE] {task_id}: validation rejected{': ' + notes if notes else ''}")
            return task

        if notes:
            task.validation_notes.append(notes)
        if task.status == TaskState.IMPLEMENTED.value:
            transition(task, TaskState.VALIDATED, reason="validation passed")
        else:
            transition(task, TaskState.DONE, reason="accepted")
        self.store.save_task(task)

        if task.status == TaskState.DONE.value:
            self._maybe_finish_feature(task.feature_id)
        return task

    def _maybe_finish_feature(self, feature_id: str) -> None:
        feature = self.store.get_feature(feature_id)
        tasks = self.store.list_tasks(feature_id)
        if feature.status != FeatureState.ACTIVE.value or not tasks:
            return
        if all(t.status == TaskState.DONE.value for t in tasks):
            transition_feature(feature, FeatureState.DONE, reason="all tasks done")
            self.store.save_feature(feature)

    def update_touch_set(self, task_id: str, keys: Iterable[str]) -> Optional[ConflictDetected]:
        """Change a task's touch set after creation.

        A running task whose new touch set overlaps another running task is
        pushed back through Blocked to Planned; a planned task that now
        overlaps a running task drops to Draft. The other task is untouched.
        Returns the conflict when one was found.
        """
        task = self.store.get_task(task_id)
        new_keys = normalize_keys(keys)
        if task.status in (TaskState.IMPLEMENTED.value, TaskState.VALIDATED.value, TaskState.DONE.value):
            raise InvalidTransition(task.status, TaskState.PLANNED, task_id)

        running_claims = {
            key: owner for key, owner in self.claims.as_dict().items() if owner != task_id
        }
        conflicts: dict[str, list[str]] = {}
        for key in new_keys:
            if key in running_claims:
                conflicts.setdefault(running_claims[key], []).append(key)
        conflict = ConflictDetected(task_id, conflicts) if conflicts else None

        if task.status == TaskState.IN_PROGRESS.value:
            if conflict is None:
                self.claims.release(task_id)
                self.claims.claim(task_id, new_keys)
                self.store.set_touch_set(task_id, new_keys)
                return None
            dispatch = self._inflight.pop(task_id, None)
            if dispatch is not None:
                dispatch.token.cancel(REASON_CONFLICT)
            task.touch_set = new_keys
            self._block(task, f"{REASON_CONFLICT}: {conflict}")
            self.store.save_plan(self._build_plan(task, None, str(conflict)))
            transition(task, TaskState.PLANNED, reason="replanning after conflict")
            task.blocked_reason = None
            self.store.save_task(task)
            return conflict

        self.store.set_touch_set(task_id, new_keys)
        if task.status == TaskState.PLANNED.value and conflict is not None:
            self.store.supersede_plan(task_id)
            transition(task, TaskState.DRAFT, reason="conflict found")
            task.blocked_reason = f"{REASON_CONFLICT}: {conflict}"
            task.scheduled = False
            self.store.save_task(task)
            return conflict
        return conflict

    def cancel_feature(self, feature_id: str) -> list[str]:
        """Block every non-terminal task of a feature and release its claims.

        Done tasks are left as they are.
        """
        self.store.get_feature(feature_id)
        cancelled = []
        for task in self.store.list_tasks(feature_id):
            if task.status in (TaskState.DONE.value, TaskState.BLOCKED.value):
                continue
            dispatch = self._inflight.pop(task.id, None)
            if dispatch is not None:
                dispatch.token.cancel(REASON_CANCELLED)
            self.claims.release(task.id)
            cancel(task, REASON_CANCELLED)
            task.blocked_reason = REASON_CANCELLED
            task.assigned_worker = None
            task.scheduled = False
            self.store.save_task(task)
            cancelled.append(task.id)
        logger.info(f"[STATE] {feature_id}: cancelled {len(cancelled)} task(s)")
        return cancelled

    def archive_feature(self, feature_id: str) -> Feature:
        feature = self.store.get_feature(feature_id)
        open_tasks = [
            t.id for t in self.store.list_tasks(feature_id)
            if t.status not in (TaskState.DONE.value, TaskState.BLOCKED.value)
        ]
        if open_tasks:
            raise ValidationError("feature", f"Feature {feature_id} has open tasks: {', '.join(open_tasks)}")
        return self.store.archive_feature(feature.id)

    def revert(self, handle: str, agent_roles: Iterable[str] = ()) -> ChangelogEntry:
        """Revert a resource to a legacy snapshot, recorded as a new changelog entry.

        Raises:
            ConflictDetected: a running task holds the resource
        """
        snap = self.archive.load(handle)
        owner = self.claims.owner_of(snap.resource_key)
        if owner is not None:
            raise ConflictDetected(f"revert:{handle}", {owner: [snap.resource_key]})
        return self.archive.revert_to(handle, agent_roles=agent_roles or self.config.agent_roles)
