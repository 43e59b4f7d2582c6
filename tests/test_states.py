"""Tests for trackdown.workflow.states module."""

import logging

import pytest

from trackdown.lib.errors import InvalidTransition
from trackdown.lib.types import ItemKind
from trackdown.store.models import Item, StateMetadata
from trackdown.workflow.states import (
    STATES,
    can_automate,
    get_allowed_transitions,
    get_effective_state,
    map_legacy_status,
    require_transition,
    transition_state,
    validate_state_metadata,
    validate_transition,
)


def make_task(status="active", state=None, metadata=None) -> Item:
    return Item(kind=ItemKind.TASK, id="TSK-0001", title="Task", status=status,
                state=state, state_metadata=metadata, issue_id="ISS-0001",
                tags=["a"], updated_date="2025-01-01T00:00:00+00:00")


class TestTransitionTable:
    """Test the legality of individual moves."""

    def test_planning_to_done_invalid(self):
        result = validate_transition("planning", "done")
        assert not result.valid
        assert result.errors == ["Invalid transition from planning to done"]

    def test_qa_to_deployment_valid(self):
        result = validate_transition("ready_for_qa", "ready_for_deployment")
        assert result.valid
        assert result.warnings == []

    def test_allowed_from_qa(self):
        assert set(get_allowed_transitions("ready_for_qa")) == {
            "ready_for_deployment", "active", "ready_for_engineering", "won_t_do",
        }

    def test_allowed_from_planning(self):
        assert set(get_allowed_transitions("planning")) == {"active", "ready_for_engineering", "won_t_do"}

    def test_every_state_has_an_exit(self):
        for state in STATES:
            assert get_allowed_transitions(state), state

    def test_same_state_invalid(self):
        assert not validate_transition("active", "active").valid

    def test_unknown_state(self):
        result = validate_transition("active", "shipped")
        assert not result.valid
        assert "Unknown state" in result.errors[0]

    def test_manual_move_warns(self):
        result = validate_transition("ready_for_qa", "ready_for_engineering")
        assert result.valid
        assert "requires human review" in result.warnings[0]


class TestEffectiveState:
    """Test legacy status mapping."""

    def test_explicit_state_wins(self):
        assert get_effective_state(make_task(status="planning", state="ready_for_qa",
                                             metadata=StateMetadata("2025-01-01", "x"))) == "ready_for_qa"

    def test_legacy_mapping(self):
        assert get_effective_state(make_task(status="completed")) == "done"
        assert map_legacy_status("todo") == "planning"
        assert map_legacy_status("merged") == "done"
        assert map_legacy_status("shipped") is None

    def test_unknown_status_falls_back_to_planning(self, caplog):
        caplog.set_level(logging.WARNING)
        assert get_effective_state(make_task(status="weird")) == "planning"
        assert "unknown legacy status 'weird'" in caplog.text


class TestTransitionState:
    """Test transition_state and its metadata."""

    def test_success_returns_new_item(self):
        task = make_task(status="active")
        result = transition_state(task, "ready_for_qa", "alice", reason="ready")

        assert result.success
        assert result.item.state == "ready_for_qa"
        meta = result.item.state_metadata
        assert meta.previous_state == "active"
        assert meta.transitioned_by == "alice"
        assert meta.transition_reason == "ready"
        assert meta.automation_eligible is True
        assert result.item.updated_date >= meta.transitioned_at

    def test_input_not_mutated(self):
        task = make_task(status="active")
        result = transition_state(task, "ready_for_qa", "alice")
        result.item.tags.append("b")
        assert task.state is None
        assert task.state_metadata is None
        assert task.tags == ["a"]

    def test_failure_returns_original(self):
        task = make_task(status="planning")
        result = transition_state(task, "done", "alice")
        assert not result.success
        assert result.item is task
        assert result.errors

    def test_manual_move_not_automation_eligible(self):
        task = make_task(status="active")
        result = transition_state(task, "won_t_do", "alice", reviewer="bob")
        assert result.success
        assert result.item.state_metadata.automation_eligible is False
        assert result.item.state_metadata.reviewer == "bob"
        assert result.warnings

    def test_transitioned_at_never_goes_backwards(self):
        future = "2999-01-01T00:00:00+00:00"
        task = make_task(state="active", metadata=StateMetadata(future, "clock-skew"))
        result = transition_state(task, "ready_for_qa", "alice")
        assert result.item.state_metadata.transitioned_at == future

    def test_logs_transition(self, caplog):
        caplog.set_level(logging.INFO, logger="trackdown.workflow.states")
        transition_state(make_task(status="active"), "done", "alice")
        assert "[STATE] TSK-0001: active -> done" in caplog.text

    def test_require_transition_raises(self):
        with pytest.raises(InvalidTransition) as exc:
            require_transition(make_task(status="planning"), "done", "alice")
        assert exc.value.from_state == "planning"
        assert set(exc.value.allowed) == {"active", "ready_for_engineering", "won_t_do"}


class TestHelpers:
    """Test metadata validation and automation checks."""

    def test_missing_metadata(self):
        assert validate_state_metadata(None) == ["Missing state metadata"]

    def test_incomplete_metadata(self):
        problems = validate_state_metadata(StateMetadata("", "", previous_state="bogus"))
        assert len(problems) == 3

    def test_can_automate(self):
        assert can_automate(make_task(status="active"), "ready_for_qa")
        assert not can_automate(make_task(status="active"), "won_t_do")
        assert not can_automate(make_task(status="planning"), "done")
