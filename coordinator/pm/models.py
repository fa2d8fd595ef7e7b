"""
Data models for features, tasks and plans.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Feature:
    """A user-facing unit of scope, decomposed into tasks.

    Features are never deleted. Finished or cancelled features are archived.
    """
    id: str                                    # FEAT-0001
    description: str
    status: str                                # draft, scoped, active, done
    created: str                               # ISO timestamp
    prd_ids: list[str] = field(default_factory=list)
    task_ids: list[str] = field(default_factory=list)
    archived: bool = False


@dataclass
class Task:
    """The smallest schedulable unit of work.

    touch_set lists the resource keys (relative file paths) the task will
    modify; overlapping touch sets never run at the same time.
    """
    id: str
    feature_id: str
    description: str
    status: str                                # see workflow.fsm.TASK_STATES
    created: str
    acceptance_criteria: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    touch_set: list[str] = field(default_factory=list)
    assigned_worker: Optional[str] = None
    blocked_reason: Optional[str] = None
    scheduled: bool = False                    # `code` requested
    deadline_seconds: Optional[float] = None
    validation_notes: list[str] = field(default_factory=list)


@dataclass
class Plan:
    """A task's declared impact prior to execution. One current plan per task."""
    task_id: str
    impact_matrix: dict[str, str]              # resource_key -> description of change
    created_at: str
    duplicate_risk_notes: str = ""
