"""Tests for goal status transitions."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.escrow.errors import InvalidGoalState
from app.escrow.lifecycle import can_transition, complete_if_finished, ensure_active, transition
from app.escrow.models import GoalStatus
from tests.conftest import make_goal

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestTransitions:
    @pytest.mark.parametrize("target", [GoalStatus.completed, GoalStatus.failed, GoalStatus.abandoned])
    def test_active_moves_forward(self, target):
        assert can_transition(GoalStatus.active, target)

    @pytest.mark.parametrize("terminal", [GoalStatus.completed, GoalStatus.failed, GoalStatus.abandoned])
    def test_terminal_states_are_final(self, terminal):
        for target in GoalStatus:
            assert not can_transition(terminal, target)

    def test_abandon_stamps_finalized_at(self):
        goal = make_goal()
        transition(goal, GoalStatus.abandoned, NOW)
        assert goal.status == GoalStatus.abandoned
        assert goal.finalized_at == NOW
        assert goal.completed_at is None

    def test_no_reactivation(self):
        goal = make_goal()
        transition(goal, GoalStatus.failed, NOW)
        with pytest.raises(InvalidGoalState):
            transition(goal, GoalStatus.active, NOW)

    def test_cannot_complete_with_outstanding_milestones(self):
        goal = make_goal()
        with pytest.raises(InvalidGoalState):
            transition(goal, GoalStatus.completed, NOW)


class TestCompleteIfFinished:
    def test_not_finished(self):
        goal = make_goal()
        goal.milestones[0].is_completed = True
        assert complete_if_finished(goal, NOW) is False
        assert goal.status == GoalStatus.active

    def test_finished(self):
        goal = make_goal()
        for m in goal.milestones:
            m.is_completed = True
        assert complete_if_finished(goal, NOW) is True
        assert goal.status == GoalStatus.completed
        assert goal.completed_at == NOW


class TestEnsureActive:
    def test_active_ok(self):
        ensure_active(make_goal())

    @pytest.mark.parametrize("status", [GoalStatus.failed, GoalStatus.abandoned, GoalStatus.completed])
    def test_inactive_rejected(self, status):
        goal = make_goal()
        goal.status = status
        with pytest.raises(InvalidGoalState):
            ensure_active(goal)
