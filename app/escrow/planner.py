"""Milestone planner — goal title in, weighted milestone plan out.

Tries the external proposal service first and validates its answer against
a strict schema. Anything unusable (no service, timeout, malformed payload,
too few or too generic milestones, weights that cannot be normalized) falls
through to a deterministic template plan. plan() never raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictStr
from pydantic import ValidationError as SchemaError

from app.escrow import weights
from app.escrow.errors import ExternalServiceUnavailable
from app.escrow.fallback_plans import build_fallback
from app.escrow.models import MilestonePlan, PlannedMilestone, ProofType

logger = logging.getLogger(__name__)

MIN_MILESTONES = 3
MAX_MILESTONES = 8
PROPOSAL_MIN_ITEMS = 4
PROPOSAL_MAX_ITEMS = 6
MIN_PERCENTAGE = 5.0
MAX_PERCENTAGE = 50.0
RESCALE_TOLERANCE = 5.0  # rescale proposals whose weights miss 100 by more than this
SUM_TOLERANCE = 1.0  # final plans must land within this of 100
MIN_DESCRIPTION_LENGTH = 20
MAX_DESCRIPTION_LENGTH = 400
DEFAULT_CRITERIA = "Provide evidence showing completion of this milestone"

GENERIC_PHRASES = (
    "make progress",
    "work on it",
    "work on the goal",
    "get started",
    "keep going",
    "keep it up",
    "do your best",
    "stay motivated",
    "stay consistent",
    "achieve the goal",
    "complete the goal",
    "finish the goal",
    "finish the task",
    "milestone 1",
    "step 1",
)


class ProposalService(Protocol):
    async def propose(self, title: str, schema: dict[str, Any]) -> Any: ...


def proposal_schema() -> dict[str, Any]:
    """Response schema sent to the proposal service."""
    text_field = {"type": "STRING", "minLength": MIN_DESCRIPTION_LENGTH, "maxLength": MAX_DESCRIPTION_LENGTH}
    return {
        "type": "OBJECT",
        "properties": {
            "milestones": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "description": text_field,
                        "verificationCriteria": text_field,
                        "requiredProofType": {"type": "STRING", "enum": [p.value for p in ProofType]},
                        "percentage": {"type": "NUMBER", "minimum": MIN_PERCENTAGE, "maximum": MAX_PERCENTAGE},
                    },
                    "required": ["description", "verificationCriteria", "requiredProofType", "percentage"],
                },
                "minItems": PROPOSAL_MIN_ITEMS,
                "maxItems": PROPOSAL_MAX_ITEMS,
            }
        },
        "required": ["milestones"],
    }


class _ProposedMilestone(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: StrictStr
    verification_criteria: StrictStr | None = Field(default=None, alias="verificationCriteria")
    required_proof_type: ProofType = Field(default=ProofType.any, alias="requiredProofType")
    percentage: StrictFloat = Field(gt=0, allow_inf_nan=False)


class _Proposal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    milestones: list[_ProposedMilestone]


class RejectedProposal(ValueError):
    pass


def is_generic(description: str) -> bool:
    lowered = description.strip().lower()
    return any(phrase in lowered for phrase in GENERIC_PHRASES)


def validate_proposal(raw: Any) -> list[PlannedMilestone]:
    """Turn a raw proposal payload into a normalized plan or raise RejectedProposal."""
    try:
        proposal = _Proposal.model_validate(raw)
    except SchemaError as exc:
        raise RejectedProposal(f"malformed proposal: {exc.error_count()} schema errors") from exc

    items = proposal.milestones
    if len(items) < MIN_MILESTONES:
        raise RejectedProposal(f"only {len(items)} milestones proposed")
    if len(items) > MAX_MILESTONES:
        raise RejectedProposal(f"{len(items)} milestones proposed, at most {MAX_MILESTONES} allowed")

    for idx, item in enumerate(items, start=1):
        description = item.description.strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            raise RejectedProposal(f"milestone {idx} description is too short")
        if is_generic(description):
            raise RejectedProposal(f"milestone {idx} description is too generic")

    percentages = [item.percentage for item in items]
    if weights.deviates(percentages, RESCALE_TOLERANCE):
        logger.info(f"Normalizing proposal percentages from {weights.total_percentage(percentages)} to 100")
        percentages = weights.rescale(percentages)

    percentages = [weights.clamp(p, MIN_PERCENTAGE, MAX_PERCENTAGE) for p in percentages]
    if weights.deviates(percentages, SUM_TOLERANCE):
        raise RejectedProposal(f"percentages sum to {weights.total_percentage(percentages):.2f} after normalization")

    return [
        PlannedMilestone(
            description=item.description.strip(),
            verification_criteria=(item.verification_criteria or "").strip() or DEFAULT_CRITERIA,
            required_proof_type=item.required_proof_type,
            percentage=pct,
        )
        for item, pct in zip(items, percentages)
    ]


def finalize(milestones: list[PlannedMilestone]) -> list[PlannedMilestone]:
    return [
        m.model_copy(
            update={
                "description": weights.truncate(m.description, MAX_DESCRIPTION_LENGTH),
                "verification_criteria": weights.truncate(m.verification_criteria, MAX_DESCRIPTION_LENGTH),
            }
        )
        for m in milestones
    ]


class MilestonePlanner:
    def __init__(self, proposer: ProposalService | None = None, timeout_seconds: float = 30.0) -> None:
        self.proposer = proposer
        self.timeout_seconds = timeout_seconds

    async def plan(self, title: str) -> MilestonePlan:
        title = title.strip()
        if self.proposer is not None:
            try:
                milestones = await self._from_proposal(title)
                return MilestonePlan(milestones=finalize(milestones), source="proposal")
            except ExternalServiceUnavailable as exc:
                logger.warning(f"Milestone proposal unavailable, using fallback plan: {exc}")
            except RejectedProposal as exc:
                logger.warning(f"Milestone proposal rejected, using fallback plan: {exc}")
            except Exception:
                logger.exception("Milestone proposal failed unexpectedly, using fallback plan")
        return self.fallback(title)

    def fallback(self, title: str) -> MilestonePlan:
        return MilestonePlan(milestones=finalize(build_fallback(title)), source="fallback")

    async def _from_proposal(self, title: str) -> list[PlannedMilestone]:
        assert self.proposer is not None
        try:
            raw = await asyncio.wait_for(self.proposer.propose(title, proposal_schema()), self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ExternalServiceUnavailable(f"proposal timed out after {self.timeout_seconds}s") from exc
        return validate_proposal(raw)
