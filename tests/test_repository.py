"""Tests for the repositories' conditional writes."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from app.escrow.errors import ConcurrencyConflict
from app.escrow.models import GoalStatus, User
from app.escrow.repository import InMemoryEscrowRepository, SqlEscrowRepository
from tests.conftest import make_goal


class FakeResult:
    def __init__(self, rowcount: int = 1, rows: list[tuple] | None = None, keys: list[str] | None = None):
        self.rowcount = rowcount
        self._rows = rows or []
        self._keys = keys or []

    def keys(self):
        return self._keys

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows


class FakeSession:
    """Records statements; returns queued results in order (default rowcount 1)."""

    def __init__(self, *results: FakeResult):
        self.results = list(results)
        self.statements: list[tuple[str, dict]] = []
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, stmt, params=None):
        self.statements.append((str(stmt), params or {}))
        return self.results.pop(0) if self.results else FakeResult()

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


# ---------------------------------------------------------------------------
# SQL repository
# ---------------------------------------------------------------------------

class TestSqlRepository:
    @pytest.mark.asyncio
    async def test_debit_and_insert_commit_together(self):
        session = FakeSession()
        repo = SqlEscrowRepository(session)
        user = User(id="u1", wallet_balance=Decimal("60.00"), version=2)
        await repo.insert_goal_with_debit(make_goal(), user)

        assert len(session.statements) == 2
        update_sql, update_params = session.statements[0]
        assert "WHERE id = :id AND version = :version" in update_sql
        assert update_params["version"] == 2
        insert_sql, insert_params = session.statements[1]
        assert insert_sql.startswith("INSERT INTO escrow_goals")
        assert len(json.loads(insert_params["milestones"])) == 4
        assert session.commits == 1
        assert session.rollbacks == 0

    @pytest.mark.asyncio
    async def test_stale_wallet_rolls_back_without_insert(self):
        session = FakeSession(FakeResult(rowcount=0))
        repo = SqlEscrowRepository(session)
        with pytest.raises(ConcurrencyConflict):
            await repo.insert_goal_with_debit(make_goal(), User(id="u1", wallet_balance=Decimal("0")))
        assert len(session.statements) == 1
        assert session.rollbacks == 1
        assert session.commits == 0

    @pytest.mark.asyncio
    async def test_stale_goal_skips_credit(self):
        session = FakeSession(FakeResult(rowcount=0))
        repo = SqlEscrowRepository(session)
        with pytest.raises(ConcurrencyConflict):
            await repo.save_goal_with_credit(make_goal(), User(id="u1", wallet_balance=Decimal("70")))
        assert len(session.statements) == 1
        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_stale_wallet_rolls_back_goal_update(self):
        session = FakeSession(FakeResult(rowcount=1), FakeResult(rowcount=0))
        repo = SqlEscrowRepository(session)
        with pytest.raises(ConcurrencyConflict):
            await repo.save_goal_with_credit(make_goal(), User(id="u1", wallet_balance=Decimal("70")))
        assert len(session.statements) == 2
        assert session.rollbacks == 1
        assert session.commits == 0

    @pytest.mark.asyncio
    async def test_duplicate_user_conflicts(self):
        session = FakeSession(FakeResult(rowcount=0))
        with pytest.raises(ConcurrencyConflict):
            await SqlEscrowRepository(session).insert_user(User(id="u1", wallet_balance=Decimal("100")))

    @pytest.mark.asyncio
    async def test_goal_row_round_trip(self):
        goal = make_goal()
        goal.milestones[0].is_completed = True
        goal.milestones[0].released_amount = Decimal("10.00")
        columns = [
            "id", "user_id", "title", "deposit_amount", "status", "milestones",
            "created_at", "completed_at", "finalized_at", "version",
        ]
        row = (
            goal.id, goal.user_id, goal.title, goal.deposit_amount, "active",
            [m.model_dump(mode="json") for m in goal.milestones],
            goal.created_at, None, None, 3,
        )
        session = FakeSession(FakeResult(rows=[row], keys=columns))
        loaded = await SqlEscrowRepository(session).get_goal(goal.id)
        assert loaded.version == 3
        assert loaded.status == GoalStatus.active
        assert loaded.total_released == Decimal("10.00")
        assert loaded.milestones[0].id == goal.milestones[0].id

    @pytest.mark.asyncio
    async def test_missing_user_is_none(self):
        session = FakeSession(FakeResult(rows=[], keys=[]))
        assert await SqlEscrowRepository(session).get_user("ghost") is None


# ---------------------------------------------------------------------------
# In-memory repository
# ---------------------------------------------------------------------------

class TestInMemoryRepository:
    @pytest.mark.asyncio
    async def test_write_bumps_version(self):
        repo = InMemoryEscrowRepository()
        await repo.insert_user(User(id="u1", wallet_balance=Decimal("100")))
        user = await repo.get_user("u1")
        user.wallet_balance = Decimal("60")
        await repo.insert_goal_with_debit(make_goal(), user)
        assert (await repo.get_user("u1")).version == user.version + 1

    @pytest.mark.asyncio
    async def test_stale_write_leaves_state(self):
        repo = InMemoryEscrowRepository()
        await repo.insert_user(User(id="u1", wallet_balance=Decimal("100")))
        goal = make_goal()
        stale = await repo.get_user("u1")
        fresh = await repo.get_user("u1")
        fresh.wallet_balance = Decimal("60")
        await repo.insert_goal_with_debit(goal, fresh)

        stale.wallet_balance = Decimal("10")
        with pytest.raises(ConcurrencyConflict):
            await repo.save_goal_with_credit(await repo.get_goal(goal.id), stale)
        assert (await repo.get_user("u1")).wallet_balance == Decimal("60")

    @pytest.mark.asyncio
    async def test_reads_are_copies(self):
        repo = InMemoryEscrowRepository()
        await repo.insert_user(User(id="u1", wallet_balance=Decimal("100")))
        user = await repo.get_user("u1")
        user.wallet_balance = Decimal("0")
        assert (await repo.get_user("u1")).wallet_balance == Decimal("100")
