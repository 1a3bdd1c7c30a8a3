"""Gemini-backed milestone proposals and proof assessment.

Both services speak to the generateContent endpoint with a JSON response
schema and hand back the parsed JSON object. Any failure (transport error,
timeout, non-2xx, empty or non-JSON content) surfaces as
ExternalServiceUnavailable; callers decide how to degrade.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from app.escrow.errors import ExternalServiceUnavailable
from app.escrow.models import Milestone, Proof

logger = logging.getLogger(__name__)


class GeminiClient:
    """Minimal async JSON-completion client for the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(1.0, timeout_seconds)
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        **generation: Any,
    ) -> dict[str, Any]:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                **generation,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self.url,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"User-Agent": "goal-escrow/1.0"},
                )
        except httpx.HTTPError as exc:
            raise ExternalServiceUnavailable(f"Gemini request failed: {exc!r}") from exc

        if resp.status_code >= 400:
            raise ExternalServiceUnavailable(f"Gemini HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            body = resp.json()
            text = body["candidates"][0]["content"]["parts"][0]["text"]
            parsed = json.loads(text)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceUnavailable(f"Gemini response was empty or malformed: {exc!r}") from exc

        if not isinstance(parsed, dict):
            raise ExternalServiceUnavailable("Gemini response must be a JSON object")
        return parsed


# ---------------------------------------------------------------------------
# Proposal service
# ---------------------------------------------------------------------------

PROPOSAL_PROMPT = """You are an expert goal-setting coach. Break this goal into milestones: "{title}"

Each milestone must be specific to this exact goal, measurable, and actionable.
For every milestone provide:
1. description: what needs to be accomplished
2. verificationCriteria: exactly what evidence would demonstrate completion
3. requiredProofType: one of image, video, document, text, any
4. percentage: weight of the milestone by difficulty and importance

The percentages must total 100. Respond with a JSON object holding a "milestones" array."""


class GeminiMilestoneProposer:
    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def propose(self, title: str, schema: dict[str, Any]) -> dict[str, Any]:
        logger.info(f"Requesting milestone proposal for goal: {title!r}")
        return await self.client.generate_json(
            PROPOSAL_PROMPT.format(title=title),
            schema,
            temperature=0.8,
            topP=0.9,
            topK=40,
        )


# ---------------------------------------------------------------------------
# Assessment service
# ---------------------------------------------------------------------------

ASSESSMENT_PROMPT = """You are a verification assistant for a goal achievement platform.

MILESTONE TO VERIFY:
"{description}"

VERIFICATION CRITERIA:
"{criteria}"

USER'S PROOF:
{proof}

Decide whether the proof demonstrates genuine completion of this milestone
according to the verification criteria. Be strict but fair: check that the
proof matches what was requested, shows clear evidence of completion, and
could not easily be faked.

Respond with a JSON object: verified (boolean), confidence (0-100),
analysis (2-3 sentences), suggestions (what additional proof would help)."""

ASSESSMENT_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "verified": {"type": "BOOLEAN"},
        "confidence": {"type": "NUMBER", "minimum": 0, "maximum": 100},
        "analysis": {"type": "STRING"},
        "suggestions": {"type": "STRING"},
    },
    "required": ["verified", "confidence", "analysis"],
}


def _proof_text(proof: Proof) -> str:
    parts = []
    if proof.proof_description:
        parts.append(proof.proof_description)
    if proof.proof_url:
        parts.append(f"Attached proof: {proof.proof_url}")
    return "\n".join(parts) or "User provided visual proof (see attachment)"


class GeminiProofAssessor:
    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def assess(self, milestone: Milestone, proof: Proof) -> dict[str, Any]:
        prompt = ASSESSMENT_PROMPT.format(
            description=milestone.description,
            criteria=milestone.verification_criteria,
            proof=_proof_text(proof),
        )
        return await self.client.generate_json(prompt, ASSESSMENT_SCHEMA, temperature=0.3)
