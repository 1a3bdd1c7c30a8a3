"""Escrow operations exposed to the HTTP layer, plus dependency wiring."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.db import get_session
from app.escrow import lifecycle
from app.escrow.errors import AlreadyCompleted, ConcurrencyConflict, NotFound, TransientConflict, ValidationError
from app.escrow.gemini import GeminiClient, GeminiMilestoneProposer, GeminiProofAssessor
from app.escrow.ledger import EscrowLedger
from app.escrow.models import (
    Goal,
    GoalList,
    GoalStatus,
    Proof,
    SubmitProofResult,
    User,
    WalletStats,
    WalletSummary,
    utcnow,
)
from app.escrow.planner import MilestonePlanner
from app.escrow.repository import EscrowRepository, InMemoryEscrowRepository, SqlEscrowRepository
from app.escrow.verification import VerificationPolicy, validate_proof

logger = logging.getLogger(__name__)

CLOSE_TARGETS = (GoalStatus.failed, GoalStatus.abandoned)


class EscrowService:
    def __init__(
        self,
        repository: EscrowRepository,
        planner: MilestonePlanner,
        verifier: VerificationPolicy,
        config: Settings = settings,
    ) -> None:
        self.repository = repository
        self.planner = planner
        self.verifier = verifier
        self.config = config
        self.ledger = EscrowLedger(repository, max_retries=config.settle_max_retries)

    # -- wallet ------------------------------------------------------------

    async def open_wallet(self, user_id: str, display_name: str = "") -> User:
        existing = await self.repository.get_user(user_id)
        if existing is not None:
            return existing
        user = User(
            id=user_id,
            display_name=display_name.strip(),
            wallet_balance=self.config.starting_wallet_balance,
        )
        logger.info(f"Opening wallet for user {user_id} with ${user.wallet_balance}")
        try:
            return await self.repository.insert_user(user)
        except ConcurrencyConflict:
            logger.info(f"Wallet for user {user_id} was opened concurrently")
            return await self._user(user_id)

    async def get_wallet(self, user_id: str) -> WalletSummary:
        user = await self._user(user_id)
        goals = await self.repository.list_goals(user_id)
        stats = WalletStats(
            total_deposited=sum((g.deposit_amount for g in goals), Decimal("0.00")),
            total_refunded=sum((g.total_released for g in goals), Decimal("0.00")),
            total_goals=len(goals),
            active_goals=_count(goals, GoalStatus.active),
            completed_goals=_count(goals, GoalStatus.completed),
            failed_goals=_count(goals, GoalStatus.failed),
            abandoned_goals=_count(goals, GoalStatus.abandoned),
        )
        return WalletSummary(
            user_id=user.id,
            display_name=user.display_name,
            balance=user.wallet_balance,
            stats=stats,
        )

    # -- goals -------------------------------------------------------------

    async def create_goal(self, user_id: str, title: str, deposit_amount: Decimal | float | str) -> tuple[Goal, Decimal]:
        title = self._validate_title(title)
        amount = self._validate_deposit(deposit_amount)
        await self._user(user_id)

        plan = await self.planner.plan(title)
        logger.info(f"Planned {len(plan.milestones)} milestones for {title!r} from {plan.source}")
        return await self.ledger.reserve(user_id, amount, title, plan)

    async def list_goals(self, user_id: str) -> GoalList:
        goals = await self.repository.list_goals(user_id)
        return GoalList(
            goals=goals,
            total_goals=len(goals),
            active_goals=_count(goals, GoalStatus.active),
            completed_goals=_count(goals, GoalStatus.completed),
        )

    async def get_goal(self, user_id: str, goal_id: str) -> Goal:
        goal = await self.repository.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFound("Goal not found or access denied")
        return goal

    async def close_goal(self, user_id: str, goal_id: str, status: GoalStatus) -> Goal:
        if status not in CLOSE_TARGETS:
            raise ValidationError("Goals can only be closed as failed or abandoned")
        goal = await self.get_goal(user_id, goal_id)
        lifecycle.transition(goal, status, utcnow())
        try:
            await self.repository.save_goal(goal)
        except ConcurrencyConflict:
            raise TransientConflict("Goal is being updated concurrently. Please try again.")
        logger.info(f"Goal {goal_id} closed as {status.value}")
        return goal

    async def submit_proof(self, user_id: str, goal_id: str, milestone_id: str, proof: Proof) -> SubmitProofResult:
        proof = validate_proof(proof)
        goal = await self.get_goal(user_id, goal_id)
        milestone = goal.milestone(milestone_id)
        if milestone is None:
            raise NotFound("Milestone not found")
        if milestone.is_completed:
            raise AlreadyCompleted("This milestone is already completed")
        lifecycle.ensure_active(goal)

        outcome = await self.verifier.assess(milestone, proof)

        if outcome.settles:
            settlement = await self.ledger.settle(goal_id, milestone_id, proof, outcome)
            return SubmitProofResult(
                message="Milestone verified and completed!",
                outcome=outcome,
                milestone=settlement.milestone,
                released_amount=settlement.released_amount,
                goal_completed=settlement.goal_completed,
                wallet_balance=settlement.wallet_balance,
            )

        reviewed = await self.ledger.record_review(goal_id, milestone_id, proof, outcome)
        user = await self._user(user_id)
        return SubmitProofResult(
            message="Proof submitted for review",
            outcome=outcome,
            milestone=reviewed,
            goal_completed=False,
            wallet_balance=user.wallet_balance,
            next_steps=outcome.suggestions
            or "Your proof is under review. You can also choose to self-certify.",
        )

    # -- helpers -----------------------------------------------------------

    async def _user(self, user_id: str) -> User:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _validate_title(self, title: str) -> str:
        title = (title or "").strip()
        if len(title) < self.config.min_title_length:
            raise ValidationError(f"Goal title must be at least {self.config.min_title_length} characters long")
        if len(title) > self.config.max_title_length:
            raise ValidationError(f"Goal title cannot exceed {self.config.max_title_length} characters")
        return title

    def _validate_deposit(self, value: Decimal | float | str) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError("Deposit amount must be a number")
        if not amount.is_finite():
            raise ValidationError("Deposit amount must be a number")
        low, high = self.config.min_deposit, self.config.max_deposit
        if amount < low or amount > high:
            raise ValidationError(f"Deposit amount must be between ${low:,} and ${high:,}")
        if amount != amount.quantize(Decimal("0.01")):
            raise ValidationError("Deposit amount must have at most two decimal places")
        return amount


def _count(goals: list[Goal], status: GoalStatus) -> int:
    return sum(1 for g in goals if g.status == status)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


@lru_cache
def _gemini_client() -> GeminiClient | None:
    if not settings.gemini_api_key:
        return None
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout_seconds=settings.gemini_timeout_seconds,
    )


@lru_cache
def _memory_repository() -> InMemoryEscrowRepository:
    return InMemoryEscrowRepository()


async def get_repository(session: AsyncSession = Depends(get_session)) -> EscrowRepository:
    if settings.escrow_backend == "memory":
        return _memory_repository()
    return SqlEscrowRepository(session)


def get_planner() -> MilestonePlanner:
    client = _gemini_client()
    proposer = GeminiMilestoneProposer(client) if client else None
    return MilestonePlanner(proposer, timeout_seconds=settings.gemini_timeout_seconds)


def get_verification_policy() -> VerificationPolicy:
    client = _gemini_client()
    assessor = GeminiProofAssessor(client) if client else None
    return VerificationPolicy(assessor, timeout_seconds=settings.gemini_timeout_seconds)


async def get_escrow_service(
    repository: EscrowRepository = Depends(get_repository),
    planner: MilestonePlanner = Depends(get_planner),
    verifier: VerificationPolicy = Depends(get_verification_policy),
) -> EscrowService:
    return EscrowService(repository, planner, verifier)
