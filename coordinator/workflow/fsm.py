"""Task and feature state machines using the transitions library.

Status only moves along explicit triggers. Tasks move forward along
draft -> prd_approved -> planned -> in_progress -> implemented -> validated -> done,
with three regression edges:

- planned -> draft          (conflict found while planned)
- in_progress -> blocked    (worker failure, timeout, mid-flight conflict)
- blocked -> planned        (replanning)

and a cancel trigger that blocks any non-terminal task.

Usage:
    from coordinator.workflow.fsm import TaskFSM

    fsm = TaskFSM(task)
    fsm.approve_prd()  # task.status is now "prd_approved"
"""

import logging
from typing import Callable

from transitions import Machine

from coordinator.pm.models import Feature, Task

logger = logging.getLogger(__name__)


TASK_STATES = [
    "draft",
    "prd_approved",
    "planned",
    "in_progress",
    "implemented",
    "validated",
    "done",
    "blocked",
]

# Order matters for TRIGGER_FOR: the first trigger for a (source, dest) pair wins
TASK_TRANSITIONS = [
    # Forward path
    {"trigger": "approve_prd", "source": "draft", "dest": "prd_approved"},
    {"trigger": "plan", "source": "prd_approved", "dest": "planned"},
    {"trigger": "start", "source": "planned", "dest": "in_progress"},
    {"trigger": "complete", "source": "in_progress", "dest": "implemented"},
    {"trigger": "validate", "source": "implemented", "dest": "validated"},
    {"trigger": "accept", "source": "validated", "dest": "done"},

    # Regressions
    {"trigger": "conflict_found", "source": "planned", "dest": "draft"},
    {"trigger": "block", "source": "in_progress", "dest": "blocked"},
    {"trigger": "replan", "source": "blocked", "dest": "planned"},
    {"trigger": "reopen", "source": "blocked", "dest": "draft"},

    # Feature cancellation blocks every non-terminal task
    {"trigger": "cancel", "source": "draft", "dest": "blocked"},
    {"trigger": "cancel", "source": "prd_approved", "dest": "blocked"},
    {"trigger": "cancel", "source": "planned", "dest": "blocked"},
    {"trigger": "cancel", "source": "in_progress", "dest": "blocked"},
    {"trigger": "cancel", "source": "implemented", "dest": "blocked"},
    {"trigger": "cancel", "source": "validated", "dest": "blocked"},
]

FEATURE_STATES = ["draft", "scoped", "active", "done"]

FEATURE_TRANSITIONS = [
    {"trigger": "scope", "source": "draft", "dest": "scoped"},
    {"trigger": "activate", "source": "scoped", "dest": "active"},
    {"trigger": "finish", "source": "active", "dest": "done"},
]

# Statuses a task can no longer leave on its own
TERMINAL_TASK_STATES = {"done"}


def _build_trigger_lookup(transitions: list[dict]) -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in transitions:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup(TASK_TRANSITIONS)
FEATURE_TRIGGER_FOR = _build_trigger_lookup(FEATURE_TRANSITIONS)


class _RecordFSM:
    """Wraps a record with a `status` field in a transitions Machine.

    The machine starts from record.status and writes every new state back
    to record.status. Persisting the record is the caller's job.
    """

    STATES: list[str] = []
    TRANSITIONS: list[dict] = []
    kind = "record"

    def __init__(self, record, on_transition: Callable[[str, str, str], None] | None = None):
        self.record = record
        self.on_transition = on_transition

        if record.status not in self.STATES:
            raise ValueError(f"Unknown {self.kind} status '{record.status}' for {record.id}")

        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial=record.status,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        self.record.status = to_state
        logger.debug(f"[FSM] {self.kind} {self.record.id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)


class TaskFSM(_RecordFSM):
    STATES = TASK_STATES
    TRANSITIONS = TASK_TRANSITIONS
    kind = "task"

    def __init__(self, task: Task, on_transition: Callable[[str, str, str], None] | None = None):
        super().__init__(task, on_transition)


class FeatureFSM(_RecordFSM):
    STATES = FEATURE_STATES
    TRANSITIONS = FEATURE_TRANSITIONS
    kind = "feature"

    def __init__(self, feature: Feature, on_transition: Callable[[str, str, str], None] | None = None):
        super().__init__(feature, on_transition)
