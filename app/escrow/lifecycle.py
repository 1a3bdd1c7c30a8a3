"""Goal lifecycle — forward-only status transitions.

active → completed is driven by settlement once every milestone is done;
active → failed / abandoned are administrative closes. Terminal states
are final.
"""

from __future__ import annotations

from datetime import datetime

from app.escrow.errors import InvalidGoalState
from app.escrow.models import Goal, GoalStatus

ALLOWED_TRANSITIONS: dict[GoalStatus, frozenset[GoalStatus]] = {
    GoalStatus.active: frozenset({GoalStatus.completed, GoalStatus.failed, GoalStatus.abandoned}),
    GoalStatus.completed: frozenset(),
    GoalStatus.failed: frozenset(),
    GoalStatus.abandoned: frozenset(),
}


def can_transition(current: GoalStatus, target: GoalStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_active(goal: Goal) -> None:
    if goal.status != GoalStatus.active:
        raise InvalidGoalState(f"Cannot complete milestones for a goal that is {goal.status.value}")


def all_milestones_completed(goal: Goal) -> bool:
    return bool(goal.milestones) and all(m.is_completed for m in goal.milestones)


def transition(goal: Goal, target: GoalStatus, at: datetime) -> None:
    """Move `goal` to `target` in place, stamping the matching timestamp."""
    if not can_transition(goal.status, target):
        raise InvalidGoalState(f"Goal cannot move from {goal.status.value} to {target.value}")
    if target == GoalStatus.completed:
        if not all_milestones_completed(goal):
            raise InvalidGoalState("Goal cannot complete while milestones are outstanding")
        goal.completed_at = at
    goal.status = target
    goal.finalized_at = at


def complete_if_finished(goal: Goal, at: datetime) -> bool:
    """Flip an active goal to completed when its last milestone is done."""
    if goal.status == GoalStatus.active and all_milestones_completed(goal):
        transition(goal, GoalStatus.completed, at)
        return True
    return False
