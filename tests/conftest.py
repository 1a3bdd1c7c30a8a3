"""Shared fixtures for the test suite."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.escrow.models import Goal, Milestone, User
from app.escrow.planner import MilestonePlanner
from app.escrow.repository import InMemoryEscrowRepository
from app.escrow.service import EscrowService, get_escrow_service
from app.escrow.verification import VerificationPolicy
from app.main import app


# ---------------------------------------------------------------------------
# Fake external services (no network)
# ---------------------------------------------------------------------------

class FakeProposer:
    """Returns a canned payload, raises a canned error, or hangs."""

    def __init__(self, payload: Any = None, error: Exception | None = None, delay: float = 0.0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def propose(self, title, schema):
        self.calls.append(title)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class FakeAssessor:
    def __init__(self, payload: Any = None, error: Exception | None = None, delay: float = 0.0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = 0

    async def assess(self, milestone, proof):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class InterleavingRepository(InMemoryEscrowRepository):
    """Yields to the event loop after every read so concurrent callers race."""

    async def get_goal(self, goal_id):
        goal = await super().get_goal(goal_id)
        await asyncio.sleep(0)
        return goal

    async def get_user(self, user_id):
        user = await super().get_user(user_id)
        await asyncio.sleep(0)
        return user


def proposal(*percentages: float, description: str | None = None) -> dict[str, Any]:
    """Build a proposal payload in the external service's camelCase shape."""
    return {
        "milestones": [
            {
                "description": description or f"Complete concrete step number {i + 1} of the plan",
                "verificationCriteria": f"Photo or document showing step {i + 1} is finished",
                "requiredProofType": "image",
                "percentage": p,
            }
            for i, p in enumerate(percentages)
        ]
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def config() -> Settings:
    return Settings(_env_file=None, settle_max_retries=3)


@pytest.fixture()
def repo() -> InMemoryEscrowRepository:
    return InMemoryEscrowRepository()


@pytest.fixture()
def assessor() -> FakeAssessor:
    return FakeAssessor(payload={"verified": True, "confidence": 90, "analysis": "Looks complete."})


@pytest.fixture()
def service(repo, assessor, config) -> EscrowService:
    return EscrowService(
        repo,
        MilestonePlanner(None),
        VerificationPolicy(assessor, timeout_seconds=1.0),
        config,
    )


@pytest.fixture()
async def user(repo) -> User:
    return await repo.insert_user(User(id="u1", display_name="Ada", wallet_balance=Decimal("100.00")))


@pytest.fixture()
def override_service(service):
    """Override the FastAPI dependency so no real DB or network is needed."""
    async def _override():
        return service

    app.dependency_overrides[get_escrow_service] = _override
    yield service
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_service):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_goal(
    percentages: tuple[float, ...] = (25, 25, 25, 25),
    deposit: str = "40.00",
    user_id: str = "u1",
) -> Goal:
    """Helper to build an active goal with undecorated milestones."""
    return Goal(
        user_id=user_id,
        title="Run a half marathon",
        deposit_amount=Decimal(deposit),
        milestones=[
            Milestone(
                description=f"Milestone number {i + 1} description",
                verification_criteria="Show evidence",
                percentage=p,
            )
            for i, p in enumerate(percentages)
        ],
    )
