"""Classify a submitted proof into an assessment.

Self-certification always verifies at a fixed moderate confidence without
any external call. Everything else goes to the external assessment service
under a timeout; when that service is missing, slow, or answers outside
the expected schema the outcome degrades to "pending" instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictStr
from pydantic import ValidationError as SchemaError

from app.escrow.errors import ExternalServiceUnavailable, ValidationError
from app.escrow.models import (
    APPROVAL_CONFIDENCE,
    Assessment,
    AssessmentMethod,
    Milestone,
    Proof,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

MANUAL_REVIEW_BELOW = 50.0
SELF_CERTIFICATION_CONFIDENCE = 50.0
_URL_RE = re.compile(r"^https?://.+", re.IGNORECASE)


class AssessmentService(Protocol):
    async def assess(self, milestone: Milestone, proof: Proof) -> Any: ...


class _AssessmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    verified: StrictBool
    confidence: StrictFloat = Field(ge=0, le=100, allow_inf_nan=False)
    analysis: StrictStr
    suggestions: StrictStr | None = None


def validate_proof(proof: Proof) -> Proof:
    """Reject proofs that cannot be assessed. Returns a whitespace-trimmed copy."""
    reason = (proof.reason or "").strip() or None
    description = (proof.proof_description or "").strip() or None
    url = (proof.proof_url or "").strip() or None

    if url is not None and not _URL_RE.match(url):
        raise ValidationError("Proof URL must be a valid HTTP/HTTPS URL")
    if proof.self_certify:
        if reason is None:
            raise ValidationError("Please provide a reason for self-certification")
    elif description is None and url is None:
        raise ValidationError("Please provide a proof description or URL, or use self-certification")

    return proof.model_copy(update={"reason": reason, "proof_description": description, "proof_url": url})


def status_for(verified: bool, confidence: float) -> VerificationStatus:
    if verified and confidence >= APPROVAL_CONFIDENCE:
        return VerificationStatus.ai_approved
    if confidence < MANUAL_REVIEW_BELOW:
        return VerificationStatus.manual_review
    return VerificationStatus.pending


def self_certified() -> Assessment:
    return Assessment(
        verified=True,
        confidence=SELF_CERTIFICATION_CONFIDENCE,
        analysis="Self-certified by user; no external assessment was performed.",
        method=AssessmentMethod.self_certification,
        verification_status=VerificationStatus.self_certified,
    )


def unavailable() -> Assessment:
    return Assessment(
        verified=False,
        confidence=0.0,
        analysis="Verification service unavailable. Proof submitted for review.",
        suggestions="Try submitting again later or use the self-certification option.",
        method=AssessmentMethod.fallback,
        verification_status=VerificationStatus.pending,
    )


class VerificationPolicy:
    def __init__(self, assessor: AssessmentService | None = None, timeout_seconds: float = 30.0) -> None:
        self.assessor = assessor
        self.timeout_seconds = timeout_seconds

    async def assess(self, milestone: Milestone, proof: Proof) -> Assessment:
        proof = validate_proof(proof)
        if proof.self_certify:
            return self_certified()

        try:
            payload = await self._external(milestone, proof)
        except ExternalServiceUnavailable as exc:
            logger.warning(f"Proof assessment degraded to pending for milestone {milestone.id}: {exc}")
            return unavailable()
        except Exception:
            logger.exception(f"Proof assessment failed unexpectedly for milestone {milestone.id}")
            return unavailable()

        return Assessment(
            verified=payload.verified,
            confidence=payload.confidence,
            analysis=payload.analysis,
            suggestions=payload.suggestions,
            method=AssessmentMethod.ai_verification,
            verification_status=status_for(payload.verified, payload.confidence),
        )

    async def _external(self, milestone: Milestone, proof: Proof) -> _AssessmentPayload:
        if self.assessor is None:
            raise ExternalServiceUnavailable("no assessment service configured")
        try:
            raw = await asyncio.wait_for(self.assessor.assess(milestone, proof), self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ExternalServiceUnavailable(f"assessment timed out after {self.timeout_seconds}s") from exc
        try:
            return _AssessmentPayload.model_validate(raw)
        except SchemaError as exc:
            raise ExternalServiceUnavailable(f"assessment payload rejected: {exc.error_count()} schema errors") from exc
