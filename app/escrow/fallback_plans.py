"""Hardcoded fallback milestone templates — configuration only.

Used when the external proposal service is unavailable or its answer is
rejected. A goal title is matched against each category's keywords in
order; the first hit wins and "generic" catches everything else. Every
template has four milestones whose weights sum to exactly 100.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.escrow.models import PlannedMilestone, ProofType


@dataclass(frozen=True, slots=True)
class MilestoneTemplate:
    description: str  # may contain "{title}"
    verification_criteria: str
    required_proof_type: ProofType
    percentage: float


@dataclass(frozen=True, slots=True)
class FallbackCategory:
    id: str
    keywords: tuple[str, ...]
    milestones: list[MilestoneTemplate] = field(default_factory=list)


CATEGORIES: list[FallbackCategory] = [
    FallbackCategory(
        id="sleep",
        keywords=("sleep", "wake", "get up", "morning", "bedtime"),
        milestones=[
            MilestoneTemplate(
                'Establish consistent bedtime routine and set optimal sleep schedule for "{title}"',
                "Share your written sleep schedule and bedtime routine plan with specific times",
                ProofType.text,
                25,
            ),
            MilestoneTemplate(
                "Successfully wake up at target time for 7 consecutive days without snoozing",
                "Provide 7 photos showing your alarm/phone display at wake-up time",
                ProofType.image,
                30,
            ),
            MilestoneTemplate(
                "Maintain consistent wake-up time for 3 weeks and optimize sleep environment",
                "Submit sleep log showing 21 days of consistent wake times",
                ProofType.text,
                25,
            ),
            MilestoneTemplate(
                "Achieve 30-day streak and establish sustainable habit",
                "Provide sleep tracking data showing 30-day consistency",
                ProofType.any,
                20,
            ),
        ],
    ),
    FallbackCategory(
        id="fitness",
        keywords=("weight", "kg", "lbs", "fitness", "workout", "gym", "marathon"),
        milestones=[
            MilestoneTemplate(
                'Create detailed workout schedule and nutrition plan for "{title}"',
                "Share weekly workout plan and meal plan document",
                ProofType.document,
                20,
            ),
            MilestoneTemplate(
                "Complete first month of consistent exercise and dietary changes",
                "Provide workout log showing 12+ workouts, plus progress photos",
                ProofType.image,
                25,
            ),
            MilestoneTemplate(
                "Reach 50% progress milestone and adjust plan based on results",
                "Share progress photos, measurements, and updated plan",
                ProofType.image,
                30,
            ),
            MilestoneTemplate(
                "Achieve final target and establish maintenance routine",
                "Provide final progress photos and weight measurements",
                ProofType.image,
                25,
            ),
        ],
    ),
    FallbackCategory(
        id="learning",
        keywords=("learn", "read", "book", "study", "course", "language", "exam"),
        milestones=[
            MilestoneTemplate(
                'Choose study materials and build a weekly study schedule for "{title}"',
                "Share the list of materials and the weekly schedule with fixed study slots",
                ProofType.text,
                20,
            ),
            MilestoneTemplate(
                "Complete the first quarter of the material and summarize key concepts",
                "Written summary of the key concepts covered so far (minimum 200 words)",
                ProofType.text,
                25,
            ),
            MilestoneTemplate(
                "Reach the halfway point and test yourself on what you have learned",
                "Screenshot or photo of a completed quiz, exercise set or practice test",
                ProofType.image,
                25,
            ),
            MilestoneTemplate(
                "Finish the remaining material and apply it in a practical project or test",
                "Final summary plus evidence of the project, certificate or test result",
                ProofType.document,
                30,
            ),
        ],
    ),
    FallbackCategory(
        id="career",
        keywords=("career", "job", "business", "startup", "client", "promotion", "launch"),
        milestones=[
            MilestoneTemplate(
                'Research the market and write a concrete action plan for "{title}"',
                "Share the written plan with target dates and the research it is based on",
                ProofType.document,
                20,
            ),
            MilestoneTemplate(
                "Build the core deliverables: portfolio, resume, product or offer",
                "Provide a link or document showing the finished deliverables",
                ProofType.document,
                30,
            ),
            MilestoneTemplate(
                "Reach out to at least 10 relevant contacts, employers or customers",
                "Screenshots or a log of the outreach messages and any replies received",
                ProofType.image,
                25,
            ),
            MilestoneTemplate(
                "Close the first concrete result: offer, signed client or launched product",
                "Provide the offer letter, contract, invoice or launch announcement",
                ProofType.document,
                25,
            ),
        ],
    ),
    FallbackCategory(
        id="generic",
        keywords=(),
        milestones=[
            MilestoneTemplate(
                'Define action plan and gather resources for "{title}"',
                "Share your detailed action plan",
                ProofType.text,
                20,
            ),
            MilestoneTemplate(
                "Execute first phase with consistent actions",
                "Provide evidence of actions taken",
                ProofType.any,
                30,
            ),
            MilestoneTemplate(
                "Evaluate progress and optimize approach",
                "Submit progress report with optimizations",
                ProofType.text,
                25,
            ),
            MilestoneTemplate(
                'Complete final phase and achieve "{title}"',
                "Provide proof of completion",
                ProofType.any,
                25,
            ),
        ],
    ),
]


def match_category(title: str) -> FallbackCategory:
    lowered = title.lower()
    for category in CATEGORIES:
        if any(keyword in lowered for keyword in category.keywords):
            return category
    return CATEGORIES[-1]


def build_fallback(title: str) -> list[PlannedMilestone]:
    category = match_category(title)
    return [
        PlannedMilestone(
            description=t.description.format(title=title),
            verification_criteria=t.verification_criteria,
            required_proof_type=t.required_proof_type,
            percentage=t.percentage,
        )
        for t in category.milestones
    ]
