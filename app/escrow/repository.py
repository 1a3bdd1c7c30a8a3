"""Persistence for wallets and goals with conditional (versioned) writes.

Every aggregate carries the ``version`` it was read at. A write succeeds
only while the stored version still matches and bumps it by one; otherwise
ConcurrencyConflict is raised and nothing is written. Writes that touch a
goal and its owner's wallet succeed or fail together.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.escrow.errors import ConcurrencyConflict
from app.escrow.models import Goal, User


class EscrowRepository(Protocol):
    async def get_user(self, user_id: str) -> User | None: ...

    async def insert_user(self, user: User) -> User: ...

    async def get_goal(self, goal_id: str) -> Goal | None: ...

    async def list_goals(self, user_id: str) -> list[Goal]: ...

    async def insert_goal_with_debit(self, goal: Goal, user: User) -> None:
        """Insert `goal` and store `user`'s new balance in one atomic write."""

    async def save_goal_with_credit(self, goal: Goal, user: User) -> None:
        """Store `goal` and `user`'s new balance in one atomic write."""

    async def save_goal(self, goal: Goal) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryEscrowRepository:
    """Dict-backed repository. No awaits between version check and write."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.goals: dict[str, Goal] = {}

    async def get_user(self, user_id: str) -> User | None:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def insert_user(self, user: User) -> User:
        if user.id in self.users:
            raise ConcurrencyConflict(f"user {user.id} already exists")
        self.users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def get_goal(self, goal_id: str) -> Goal | None:
        goal = self.goals.get(goal_id)
        return goal.model_copy(deep=True) if goal else None

    async def list_goals(self, user_id: str) -> list[Goal]:
        owned = [g for g in self.goals.values() if g.user_id == user_id]
        owned.sort(key=lambda g: g.created_at, reverse=True)
        return [g.model_copy(deep=True) for g in owned]

    async def insert_goal_with_debit(self, goal: Goal, user: User) -> None:
        if goal.id in self.goals:
            raise ConcurrencyConflict(f"goal {goal.id} already exists")
        self._check_user(user)
        self.goals[goal.id] = goal.model_copy(deep=True)
        self._store_user(user)

    async def save_goal_with_credit(self, goal: Goal, user: User) -> None:
        self._check_goal(goal)
        self._check_user(user)
        self._store_goal(goal)
        self._store_user(user)

    async def save_goal(self, goal: Goal) -> None:
        self._check_goal(goal)
        self._store_goal(goal)

    def _check_user(self, user: User) -> None:
        stored = self.users.get(user.id)
        if stored is None or stored.version != user.version:
            raise ConcurrencyConflict(f"user {user.id} changed since version {user.version}")

    def _check_goal(self, goal: Goal) -> None:
        stored = self.goals.get(goal.id)
        if stored is None or stored.version != goal.version:
            raise ConcurrencyConflict(f"goal {goal.id} changed since version {goal.version}")

    def _store_user(self, user: User) -> None:
        self.users[user.id] = user.model_copy(update={"version": user.version + 1}, deep=True)

    def _store_goal(self, goal: Goal) -> None:
        self.goals[goal.id] = goal.model_copy(update={"version": goal.version + 1}, deep=True)


# ---------------------------------------------------------------------------
# SQL (PostgreSQL via SQLAlchemy async)
# ---------------------------------------------------------------------------

DDL = (
    "CREATE TABLE IF NOT EXISTS escrow_users ("
    " id TEXT PRIMARY KEY,"
    " display_name TEXT NOT NULL DEFAULT '',"
    " wallet_balance NUMERIC(12, 2) NOT NULL CHECK (wallet_balance >= 0),"
    " version INTEGER NOT NULL DEFAULT 0,"
    " created_at TIMESTAMPTZ NOT NULL)",
    "CREATE TABLE IF NOT EXISTS escrow_goals ("
    " id TEXT PRIMARY KEY,"
    " user_id TEXT NOT NULL REFERENCES escrow_users(id),"
    " title TEXT NOT NULL,"
    " deposit_amount NUMERIC(12, 2) NOT NULL CHECK (deposit_amount > 0),"
    " status TEXT NOT NULL,"
    " milestones JSONB NOT NULL,"
    " created_at TIMESTAMPTZ NOT NULL,"
    " completed_at TIMESTAMPTZ,"
    " finalized_at TIMESTAMPTZ,"
    " version INTEGER NOT NULL DEFAULT 0)",
    "CREATE INDEX IF NOT EXISTS ix_escrow_goals_user_created ON escrow_goals (user_id, created_at DESC)",
)

_GOAL_COLUMNS = (
    "id, user_id, title, deposit_amount, status, milestones, created_at, completed_at, finalized_at, version"
)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for stmt in DDL:
            await conn.execute(text(stmt))


def _goal_from_row(row: dict[str, Any]) -> Goal:
    milestones = row["milestones"]
    if isinstance(milestones, str):
        milestones = json.loads(milestones)
    return Goal.model_validate({**row, "milestones": milestones})


def _goal_params(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "user_id": goal.user_id,
        "title": goal.title,
        "deposit_amount": goal.deposit_amount,
        "status": goal.status.value,
        "milestones": json.dumps([m.model_dump(mode="json") for m in goal.milestones]),
        "created_at": goal.created_at,
        "completed_at": goal.completed_at,
        "finalized_at": goal.finalized_at,
        "version": goal.version,
    }


class SqlEscrowRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user(self, user_id: str) -> User | None:
        result = await self.session.execute(
            text("SELECT id, display_name, wallet_balance, version, created_at FROM escrow_users WHERE id = :id"),
            {"id": user_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return User.model_validate(dict(zip(result.keys(), row)))

    async def insert_user(self, user: User) -> User:
        result = await self.session.execute(
            text(
                "INSERT INTO escrow_users (id, display_name, wallet_balance, version, created_at) "
                "VALUES (:id, :display_name, :wallet_balance, :version, :created_at) "
                "ON CONFLICT (id) DO NOTHING"
            ),
            user.model_dump(),
        )
        await self._finish(result.rowcount, f"user {user.id} already exists")
        return user

    async def get_goal(self, goal_id: str) -> Goal | None:
        result = await self.session.execute(
            text(f"SELECT {_GOAL_COLUMNS} FROM escrow_goals WHERE id = :id"),
            {"id": goal_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return _goal_from_row(dict(zip(result.keys(), row)))

    async def list_goals(self, user_id: str) -> list[Goal]:
        result = await self.session.execute(
            text(f"SELECT {_GOAL_COLUMNS} FROM escrow_goals WHERE user_id = :user_id ORDER BY created_at DESC"),
            {"user_id": user_id},
        )
        columns = result.keys()
        return [_goal_from_row(dict(zip(columns, r))) for r in result.fetchall()]

    async def insert_goal_with_debit(self, goal: Goal, user: User) -> None:
        updated = await self._update_balance(user)
        if updated:
            await self.session.execute(
                text(
                    f"INSERT INTO escrow_goals ({_GOAL_COLUMNS}) VALUES "
                    "(:id, :user_id, :title, :deposit_amount, :status, CAST(:milestones AS JSONB), "
                    ":created_at, :completed_at, :finalized_at, :version)"
                ),
                _goal_params(goal),
            )
        await self._finish(updated, f"user {user.id} changed since version {user.version}")

    async def save_goal_with_credit(self, goal: Goal, user: User) -> None:
        updated = await self._update_goal(goal)
        if updated:
            updated = await self._update_balance(user)
        await self._finish(updated, f"goal {goal.id} or user {user.id} changed concurrently")

    async def save_goal(self, goal: Goal) -> None:
        updated = await self._update_goal(goal)
        await self._finish(updated, f"goal {goal.id} changed since version {goal.version}")

    async def _update_balance(self, user: User) -> int:
        result = await self.session.execute(
            text(
                "UPDATE escrow_users SET wallet_balance = :wallet_balance, version = version + 1 "
                "WHERE id = :id AND version = :version"
            ),
            {"id": user.id, "wallet_balance": user.wallet_balance, "version": user.version},
        )
        return result.rowcount

    async def _update_goal(self, goal: Goal) -> int:
        result = await self.session.execute(
            text(
                "UPDATE escrow_goals SET status = :status, milestones = CAST(:milestones AS JSONB), "
                "completed_at = :completed_at, finalized_at = :finalized_at, version = version + 1 "
                "WHERE id = :id AND version = :version"
            ),
            _goal_params(goal),
        )
        return result.rowcount

    async def _finish(self, rowcount: int, conflict_message: str) -> None:
        if not rowcount:
            await self.session.rollback()
            raise ConcurrencyConflict(conflict_message)
        await self.session.commit()
