"""Escrow ledger: moves money between a user's wallet and goal deposits.

Invariants held after every operation:
- wallet balances never go negative
- a goal's deposit equals the debit taken when it was created
- each milestone's released amount is written once, together with the
  wallet credit, and the released total never exceeds the deposit

Writes are optimistic: aggregates are re-read and the operation recomputed
when a conditional write loses a race, up to ``max_retries`` extra attempts.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from app.escrow import lifecycle, weights
from app.escrow.errors import (
    AlreadyCompleted,
    ConcurrencyConflict,
    InsufficientFunds,
    InvalidGoalState,
    NotFound,
    TransientConflict,
)
from app.escrow.models import (
    Assessment,
    AssessmentMethod,
    AssessmentRecord,
    Goal,
    Milestone,
    MilestonePlan,
    Proof,
    Settlement,
    User,
    utcnow,
)
from app.escrow.repository import EscrowRepository

logger = logging.getLogger(__name__)


def apply_proof(milestone: Milestone, proof: Proof, outcome: Assessment) -> None:
    """Record the submitted proof and its assessment on the milestone."""
    milestone.proof_url = proof.proof_url
    milestone.proof_description = proof.proof_description
    milestone.self_certified = proof.self_certify
    milestone.self_certification_reason = proof.reason if proof.self_certify else None
    milestone.verification_status = outcome.verification_status
    if outcome.method == AssessmentMethod.self_certification:
        milestone.assessment = AssessmentRecord(
            verified=False,
            confidence=0.0,
            analysis="User self-certified completion without external verification",
        )
    else:
        milestone.assessment = AssessmentRecord(
            verified=outcome.verified,
            confidence=outcome.confidence,
            analysis=outcome.analysis,
        )


def release_for(goal: Goal, milestone: Milestone) -> Decimal:
    """Amount released by settling `milestone`.

    round2(deposit × percentage / 100), capped at what is still escrowed.
    The settlement that closes the last outstanding milestone releases the
    exact remainder so the released total equals the deposit.
    """
    remaining = goal.deposit_amount - goal.total_released
    outstanding = [m for m in goal.milestones if not m.is_completed and m.id != milestone.id]
    if not outstanding:
        return remaining
    return min(weights.release_amount(goal.deposit_amount, milestone.percentage), remaining)


class EscrowLedger:
    def __init__(self, repository: EscrowRepository, max_retries: int = 3) -> None:
        self.repository = repository
        self.max_retries = max(0, max_retries)

    async def reserve(self, user_id: str, amount: Decimal, title: str, plan: MilestonePlan) -> tuple[Goal, Decimal]:
        """Debit `amount` from the wallet and create the goal escrowing it.

        Returns the new goal and the remaining wallet balance.
        """
        amount = weights.round2(amount)
        for attempt in range(self.max_retries + 1):
            user = await self._load_user(user_id)
            if user.wallet_balance < amount:
                raise InsufficientFunds(
                    f"Insufficient balance. You have ${user.wallet_balance:.2f} but need ${amount:.2f}"
                )
            goal = Goal(
                user_id=user.id,
                title=title,
                deposit_amount=amount,
                milestones=[Milestone(**m.model_dump()) for m in plan.milestones],
            )
            user.wallet_balance = user.wallet_balance - amount
            try:
                await self.repository.insert_goal_with_debit(goal, user)
            except ConcurrencyConflict as exc:
                logger.warning(f"Reserve conflict for user {user_id} (attempt {attempt + 1}): {exc}")
                continue
            logger.info(f"Goal {goal.id} created for user {user_id}: ${amount} escrowed")
            return goal, user.wallet_balance
        raise TransientConflict("Wallet is being updated concurrently. Please try again.")

    async def settle(
        self,
        goal_id: str,
        milestone_id: str,
        proof: Proof,
        outcome: Assessment,
    ) -> Settlement:
        """Mark the milestone completed and credit its share to the owner's wallet."""
        for attempt in range(self.max_retries + 1):
            goal, milestone = await self._load_milestone(goal_id, milestone_id)
            if milestone.is_completed:
                raise AlreadyCompleted("This milestone is already completed")
            lifecycle.ensure_active(goal)
            user = await self._load_user(goal.user_id)

            now = utcnow()
            released = release_for(goal, milestone)
            if released < 0:
                raise InvalidGoalState("Goal has no escrowed funds left to release")
            apply_proof(milestone, proof, outcome)
            milestone.is_completed = True
            milestone.completed_at = now
            milestone.released_amount = released
            completed = lifecycle.complete_if_finished(goal, now)
            user.wallet_balance = user.wallet_balance + released

            try:
                await self.repository.save_goal_with_credit(goal, user)
            except ConcurrencyConflict as exc:
                logger.warning(f"Settle conflict on goal {goal_id} (attempt {attempt + 1}): {exc}")
                continue

            logger.info(f"Milestone {milestone_id} settled: ${released} released to user {user.id}")
            if completed:
                logger.info(f"Goal {goal_id} completed")
            return Settlement(
                goal=goal,
                milestone=milestone,
                released_amount=released,
                wallet_balance=user.wallet_balance,
                goal_completed=completed,
            )

        goal, milestone = await self._load_milestone(goal_id, milestone_id)
        if milestone.is_completed:
            raise AlreadyCompleted("This milestone is already completed")
        raise TransientConflict("Goal is being updated concurrently. Please try again.")

    async def record_review(
        self,
        goal_id: str,
        milestone_id: str,
        proof: Proof,
        outcome: Assessment,
    ) -> Milestone:
        """Store a non-settling submission; no money moves."""
        for attempt in range(self.max_retries + 1):
            goal, milestone = await self._load_milestone(goal_id, milestone_id)
            if milestone.is_completed:
                raise AlreadyCompleted("This milestone is already completed")
            lifecycle.ensure_active(goal)
            apply_proof(milestone, proof, outcome)
            try:
                await self.repository.save_goal(goal)
            except ConcurrencyConflict as exc:
                logger.warning(f"Review conflict on goal {goal_id} (attempt {attempt + 1}): {exc}")
                continue
            return milestone
        raise TransientConflict("Goal is being updated concurrently. Please try again.")

    async def _load_user(self, user_id: str) -> User:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    async def _load_milestone(self, goal_id: str, milestone_id: str) -> tuple[Goal, Milestone]:
        goal = await self.repository.get_goal(goal_id)
        if goal is None:
            raise NotFound("Goal not found or access denied")
        milestone = goal.milestone(milestone_id)
        if milestone is None:
            raise NotFound("Milestone not found")
        return goal, milestone
