"""Task and feature status transitions with validation.

Thin wrapper around the machines in fsm.py. This module provides:
- TaskState / FeatureState enums for type safety
- transition() / transition_feature() that map a target state to a trigger
- Convenience functions for state queries

Usage:
    from coordinator.workflow.state_machine import transition, TaskState

    transition(task, TaskState.PLANNED, reason="plan accepted")

The caller persists the record afterwards.
"""

import logging
from enum import Enum

from transitions import MachineError

from coordinator.lib.errors import CoordinationError
from coordinator.pm.models import Feature, Task
from coordinator.workflow.fsm import (
    FEATURE_TRIGGER_FOR,
    TRIGGER_FOR,
    FeatureFSM,
    TaskFSM,
)

logger = logging.getLogger(__name__)


class TaskState(Enum):
    """All valid task states. Values match FSM state strings."""

    DRAFT = "draft"
    PRD_APPROVED = "prd_approved"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    IMPLEMENTED = "implemented"
    VALIDATED = "validated"
    DONE = "done"
    BLOCKED = "blocked"


class FeatureState(Enum):
    DRAFT = "draft"
    SCOPED = "scoped"
    ACTIVE = "active"
    DONE = "done"


class InvalidTransition(CoordinationError):
    """Raised when a requested status change is not reachable from the current state."""

    def __init__(self, from_state: str, to_state: Enum, record_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.record_id = record_id
        super().__init__(
            f"Invalid transition: {from_state} -> {to_state.value}"
            + (f" ({record_id})" if record_id else "")
        )


def parse_state(status_str: str | None) -> TaskState | None:
    """Parse a status string into TaskState.

    Returns None if status is unknown.
    """
    if status_str is None:
        return None
    for state in TaskState:
        if state.value == status_str:
            return state
    return None


def transition(task: Task, to_state: TaskState, reason: str = "") -> None:
    """Move a task to a new state.

    Self-transition is a no-op.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    current = task.status
    reason_str = f" ({reason})" if reason else ""

    if current == to_state.value:
        logger.debug(f"[STATE] {task.id}: already in {current}, no-op")
        return

    trigger = TRIGGER_FOR.get((current, to_state.value))
    if trigger is None:
        raise InvalidTransition(current, to_state, task.id)

    fsm = TaskFSM(task)
    try:
        logger.info(f"[STATE] {task.id}: {current} -> {to_state.value}{reason_str}")
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_state, task.id) from e


def cancel(task: Task, reason: str = "") -> None:
    """Block a non-terminal task through the cancel trigger."""
    fsm = TaskFSM(task)
    if not fsm.can("cancel"):
        raise InvalidTransition(task.status, TaskState.BLOCKED, task.id)
    logger.info(f"[STATE] {task.id}: {task.status} -> blocked (cancel{': ' + reason if reason else ''})")
    fsm.cancel()


def can_transition(task: Task, to_state: TaskState) -> bool:
    """Check if a transition to the given state is valid."""
    if task.status == to_state.value:
        return True
    return (task.status, to_state.value) in TRIGGER_FOR


def transition_feature(feature: Feature, to_state: FeatureState, reason: str = "") -> None:
    """Move a feature to a new state. Self-transition is a no-op."""
    current = feature.status
    if current == to_state.value:
        return

    trigger = FEATURE_TRIGGER_FOR.get((current, to_state.value))
    if trigger is None:
        raise InvalidTransition(current, to_state, feature.id)

    reason_str = f" ({reason})" if reason else ""
    logger.info(f"[STATE] {feature.id}: {current} -> {to_state.value}{reason_str}")
    try:
        getattr(FeatureFSM(feature), trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_state, feature.id) from e
