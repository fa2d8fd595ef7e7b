"""Tests for coordinator.workflow.state_machine module.

Tests the wrapper functions around the FSM.
The FSM itself is tested in test_fsm.py.
"""

import pytest

from coordinator.lib.errors import CoordinationError
from coordinator.pm.models import Feature, Task
from coordinator.workflow.state_machine import (
    FeatureState,
    InvalidTransition,
    TaskState,
    can_transition,
    cancel,
    parse_state,
    transition,
    transition_feature,
)


@pytest.fixture
def task():
    return Task(id="T1", feature_id="FEAT-0001", description="x", status="draft", created="2024-01-01T00:00:00+00:00")


class TestParseState:
    """Tests for parse_state() function."""

    def test_parse_valid_state(self):
        assert parse_state("draft") == TaskState.DRAFT
        assert parse_state("in_progress") == TaskState.IN_PROGRESS
        assert parse_state("done") == TaskState.DONE

    def test_parse_none(self):
        assert parse_state(None) is None

    def test_parse_unknown(self):
        assert parse_state("bogus_state") is None
        assert parse_state("") is None


class TestTaskStateEnum:

    def test_values_match_fsm(self):
        from coordinator.workflow.fsm import TASK_STATES
        assert {s.value for s in TaskState} == set(TASK_STATES)


class TestTransition:
    """Tests for transition() function."""

    def test_valid_transition(self, task):
        transition(task, TaskState.PRD_APPROVED, reason="prd ok")
        assert task.status == "prd_approved"

    def test_self_transition_is_noop(self, task):
        transition(task, TaskState.DRAFT)
        assert task.status == "draft"

    def test_invalid_transition_raises(self, task):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(task, TaskState.DONE)
        assert exc_info.value.from_state == "draft"
        assert exc_info.value.to_state == TaskState.DONE
        assert "T1" in str(exc_info.value)
        assert task.status == "draft"

    def test_invalid_transition_is_coordination_error(self, task):
        with pytest.raises(CoordinationError):
            transition(task, TaskState.IN_PROGRESS)

    def test_logs_transition(self, task, caplog):
        import logging
        with caplog.at_level(logging.INFO):
            transition(task, TaskState.PRD_APPROVED, reason="prd ok")
        assert "[STATE] T1: draft -> prd_approved (prd ok)" in caplog.text


class TestCancel:

    def test_cancel_blocks(self, task):
        task.status = "planned"
        cancel(task, "Cancelled")
        assert task.status == "blocked"

    def test_cancel_done_raises(self, task):
        task.status = "done"
        with pytest.raises(InvalidTransition):
            cancel(task)


class TestCanTransition:

    def test_can_transition(self, task):
        assert can_transition(task, TaskState.PRD_APPROVED)
        assert can_transition(task, TaskState.DRAFT)
        assert can_transition(task, TaskState.BLOCKED)
        assert not can_transition(task, TaskState.DONE)


class TestTransitionFeature:

    def test_feature_transition(self):
        feature = Feature(id="FEAT-0001", description="x", status="draft", created="2024-01-01T00:00:00+00:00")
        transition_feature(feature, FeatureState.SCOPED)
        assert feature.status == "scoped"

    def test_invalid_feature_transition(self):
        feature = Feature(id="FEAT-0001", description="x", status="draft", created="2024-01-01T00:00:00+00:00")
        with pytest.raises(InvalidTransition):
            transition_feature(feature, FeatureState.DONE)
