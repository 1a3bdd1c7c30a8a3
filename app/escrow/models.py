"""Escrow domain models — Pydantic v2.

Goals own their milestones as an ordered embedded list; milestones are
looked up by id within the goal and never point back at it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, computed_field


# Confidence at or above which an external "verified" assessment releases funds.
APPROVAL_CONFIDENCE = 70.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GoalStatus(str, Enum):
    active = "active"
    completed = "completed"
    failed = "failed"
    abandoned = "abandoned"


class VerificationStatus(str, Enum):
    pending = "pending"
    ai_approved = "ai_approved"
    manual_review = "manual_review"
    self_certified = "self_certified"


class ProofType(str, Enum):
    image = "image"
    video = "video"
    document = "document"
    text = "text"
    any = "any"


class AssessmentMethod(str, Enum):
    self_certification = "self_certification"
    ai_verification = "ai_verification"
    fallback = "fallback"


# ---------------------------------------------------------------------------
# Wallet owner
# ---------------------------------------------------------------------------


class User(BaseModel):
    id: str
    display_name: str = ""
    wallet_balance: Decimal = Decimal("0.00")
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class PlannedMilestone(BaseModel):
    description: str
    verification_criteria: str
    required_proof_type: ProofType = ProofType.any
    percentage: float


class MilestonePlan(BaseModel):
    milestones: list[PlannedMilestone]
    source: str  # "proposal" | "fallback"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class Proof(BaseModel):
    self_certify: bool = False
    reason: str | None = None
    proof_url: str | None = None
    proof_description: str | None = None


class Assessment(BaseModel):
    """Outcome of running a proof through the verification policy."""

    verified: bool
    confidence: float
    analysis: str
    suggestions: str | None = None
    method: AssessmentMethod
    verification_status: VerificationStatus

    @property
    def settles(self) -> bool:
        if self.method == AssessmentMethod.self_certification:
            return True
        return self.verified and self.confidence >= APPROVAL_CONFIDENCE


class AssessmentRecord(BaseModel):
    verified: bool
    confidence: float
    analysis: str
    verified_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Goal aggregate
# ---------------------------------------------------------------------------


class Milestone(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str
    verification_criteria: str
    required_proof_type: ProofType = ProofType.any
    percentage: float
    is_completed: bool = False
    verification_status: VerificationStatus = VerificationStatus.pending
    released_amount: Decimal = Decimal("0.00")
    proof_url: str | None = None
    proof_description: str | None = None
    self_certified: bool = False
    self_certification_reason: str | None = None
    assessment: AssessmentRecord | None = None
    completed_at: datetime | None = None


class Goal(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str
    deposit_amount: Decimal
    status: GoalStatus = GoalStatus.active
    milestones: list[Milestone] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    finalized_at: datetime | None = None
    version: int = 0

    def milestone(self, milestone_id: str) -> Milestone | None:
        for m in self.milestones:
            if m.id == milestone_id:
                return m
        return None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def completion_percentage(self) -> int:
        if not self.milestones:
            return 0
        done = sum(1 for m in self.milestones if m.is_completed)
        return round(done / len(self.milestones) * 100)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_released(self) -> Decimal:
        return sum((m.released_amount for m in self.milestones), Decimal("0.00"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_deposit(self) -> Decimal:
        return self.deposit_amount - self.total_released


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class Settlement(BaseModel):
    goal: Goal
    milestone: Milestone
    released_amount: Decimal
    wallet_balance: Decimal
    goal_completed: bool


class SubmitProofResult(BaseModel):
    message: str
    outcome: Assessment
    milestone: Milestone
    released_amount: Decimal | None = None
    goal_completed: bool = False
    wallet_balance: Decimal
    next_steps: str | None = None


class GoalList(BaseModel):
    goals: list[Goal] = Field(default_factory=list)
    total_goals: int = 0
    active_goals: int = 0
    completed_goals: int = 0


class WalletStats(BaseModel):
    total_deposited: Decimal = Decimal("0.00")
    total_refunded: Decimal = Decimal("0.00")
    total_goals: int = 0
    active_goals: int = 0
    completed_goals: int = 0
    failed_goals: int = 0
    abandoned_goals: int = 0


class WalletSummary(BaseModel):
    user_id: str
    display_name: str = ""
    balance: Decimal
    stats: WalletStats = Field(default_factory=WalletStats)
