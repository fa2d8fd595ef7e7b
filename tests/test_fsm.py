"""Tests for coordinator.workflow.fsm module."""

import pytest
from transitions import MachineError

from coordinator.pm.models import Feature, Task
from coordinator.workflow.fsm import (
    FEATURE_STATES,
    TASK_STATES,
    TASK_TRANSITIONS,
    TRIGGER_FOR,
    FeatureFSM,
    TaskFSM,
)


def make_task(status="draft"):
    return Task(id="T1", feature_id="FEAT-0001", description="x", status=status, created="2024-01-01T00:00:00+00:00")


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_all_task_states_defined(self):
        expected = [
            "draft", "prd_approved", "planned", "in_progress",
            "implemented", "validated", "done", "blocked",
        ]
        assert set(TASK_STATES) == set(expected)

    def test_all_feature_states_defined(self):
        assert FEATURE_STATES == ["draft", "scoped", "active", "done"]

    def test_every_transition_uses_known_states(self):
        for t in TASK_TRANSITIONS:
            assert t["source"] in TASK_STATES
            assert t["dest"] in TASK_STATES

    def test_done_has_no_outgoing_transitions(self):
        assert not [t for t in TASK_TRANSITIONS if t["source"] == "done"]

    def test_trigger_lookup(self):
        assert TRIGGER_FOR[("draft", "prd_approved")] == "approve_prd"
        assert TRIGGER_FOR[("planned", "draft")] == "conflict_found"
        assert TRIGGER_FOR[("blocked", "planned")] == "replan"
        assert ("draft", "done") not in TRIGGER_FOR


class TestTaskFSM:
    """Task machine writes status back to the record."""

    def test_initial_state_from_record(self):
        fsm = TaskFSM(make_task("planned"))
        assert fsm.state == "planned"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError, match="Unknown task status"):
            TaskFSM(make_task("bogus"))

    def test_full_happy_path(self):
        task = make_task()
        fsm = TaskFSM(task)
        for trigger in ["approve_prd", "plan", "start", "complete", "validate", "accept"]:
            getattr(fsm, trigger)()
        assert task.status == "done"

    def test_regression_edges(self):
        task = make_task("planned")
        fsm = TaskFSM(task)
        fsm.conflict_found()
        assert task.status == "draft"

        task = make_task("in_progress")
        fsm = TaskFSM(task)
        fsm.block()
        fsm.replan()
        assert task.status == "planned"

        task = make_task("blocked")
        TaskFSM(task).reopen()
        assert task.status == "draft"

    def test_invalid_trigger_raises(self):
        fsm = TaskFSM(make_task("draft"))
        with pytest.raises(MachineError):
            fsm.start()

    def test_cancel_from_any_non_terminal_state(self):
        for status in ["draft", "prd_approved", "planned", "in_progress", "implemented", "validated"]:
            task = make_task(status)
            TaskFSM(task).cancel()
            assert task.status == "blocked"

    def test_cannot_cancel_done(self):
        fsm = TaskFSM(make_task("done"))
        assert not fsm.can("cancel")

    def test_on_transition_callback(self):
        seen = []
        fsm = TaskFSM(make_task(), on_transition=lambda *args: seen.append(args))
        fsm.approve_prd()
        assert seen == [("draft", "prd_approved", "approve_prd")]

    def test_available_triggers(self):
        fsm = TaskFSM(make_task("in_progress"))
        assert set(fsm.get_available_triggers()) == {"complete", "block", "cancel"}


class TestFeatureFSM:

    def test_feature_path(self):
        feature = Feature(id="FEAT-0001", description="x", status="draft", created="2024-01-01T00:00:00+00:00")
        fsm = FeatureFSM(feature)
        fsm.scope()
        fsm.activate()
        fsm.finish()
        assert feature.status == "done"

    def test_feature_cannot_skip_scoping(self):
        feature = Feature(id="FEAT-0001", description="x", status="draft", created="2024-01-01T00:00:00+00:00")
        with pytest.raises(MachineError):
            FeatureFSM(feature).activate()
