"""Tests for the Goal / Milestone / Assessment contracts."""

from decimal import Decimal

from app.escrow.models import (
    Assessment,
    AssessmentMethod,
    Goal,
    GoalStatus,
    VerificationStatus,
)
from tests.conftest import make_goal


class TestGoalDefaults:
    def test_new_goal_is_active(self):
        goal = make_goal()
        assert goal.status == GoalStatus.active
        assert goal.version == 0
        assert goal.completed_at is None
        assert goal.finalized_at is None
        assert goal.created_at.tzinfo is not None

    def test_milestone_ids_unique(self):
        goal = make_goal()
        assert len({m.id for m in goal.milestones}) == len(goal.milestones)

    def test_milestone_defaults(self):
        m = make_goal().milestones[0]
        assert m.is_completed is False
        assert m.released_amount == Decimal("0.00")
        assert m.verification_status == VerificationStatus.pending

    def test_milestone_lookup(self):
        goal = make_goal()
        target = goal.milestones[2]
        assert goal.milestone(target.id) is target
        assert goal.milestone("missing") is None


class TestDerivedFigures:
    def test_nothing_released(self):
        goal = make_goal()
        assert goal.completion_percentage == 0
        assert goal.total_released == Decimal("0.00")
        assert goal.remaining_deposit == Decimal("40.00")

    def test_partial_progress(self):
        goal = make_goal()
        goal.milestones[0].is_completed = True
        goal.milestones[0].released_amount = Decimal("10.00")
        assert goal.completion_percentage == 25
        assert goal.total_released == Decimal("10.00")
        assert goal.remaining_deposit == Decimal("30.00")

    def test_completion_rounds(self):
        goal = make_goal(percentages=(33.33, 33.33, 33.34))
        goal.milestones[0].is_completed = True
        assert goal.completion_percentage == 33

    def test_no_milestones(self):
        goal = Goal(user_id="u1", title="Empty goal", deposit_amount=Decimal("5"))
        assert goal.completion_percentage == 0

    def test_derived_figures_serialized(self):
        data = make_goal().model_dump(mode="json")
        assert data["completion_percentage"] == 0
        assert Decimal(data["remaining_deposit"]) == Decimal("40.00")

    def test_round_trip_ignores_derived_fields(self):
        goal = make_goal()
        goal.milestones[1].is_completed = True
        goal.milestones[1].released_amount = Decimal("10.00")
        restored = Goal.model_validate(goal.model_dump(mode="json"))
        assert restored.total_released == Decimal("10.00")
        assert restored.milestones[1].id == goal.milestones[1].id


class TestAssessmentSettles:
    def _outcome(self, **kw) -> Assessment:
        defaults = dict(
            verified=True,
            confidence=80,
            analysis="ok",
            method=AssessmentMethod.ai_verification,
            verification_status=VerificationStatus.ai_approved,
        )
        defaults.update(kw)
        return Assessment(**defaults)

    def test_high_confidence_settles(self):
        assert self._outcome().settles

    def test_threshold_is_inclusive(self):
        assert self._outcome(confidence=70).settles

    def test_below_threshold_does_not_settle(self):
        assert not self._outcome(confidence=69.9, verification_status=VerificationStatus.pending).settles

    def test_unverified_does_not_settle(self):
        assert not self._outcome(verified=False, confidence=95).settles

    def test_self_certification_settles(self):
        outcome = self._outcome(
            confidence=50,
            method=AssessmentMethod.self_certification,
            verification_status=VerificationStatus.self_certified,
        )
        assert outcome.settles
