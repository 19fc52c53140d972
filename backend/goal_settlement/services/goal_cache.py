"""
Local goal cache: a durable, non-authoritative read replica of savings goals.

Reads hand out copies and writes replace whole records, so no caller can
observe or produce a half-updated goal.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from ..models import SavingsGoal

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

GOAL_COLUMNS = (
    "id, target_amount, saved_amount, deadline, achieved, proof_id, created_at, "
    "achieved_at, user_address, tx_hash, verification_mode, ledger_sync_pending"
)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS savings_goals (
    id TEXT PRIMARY KEY,
    target_amount NUMERIC(39, 0) NOT NULL CHECK (target_amount > 0),
    saved_amount NUMERIC(39, 0) NOT NULL DEFAULT 0 CHECK (saved_amount >= 0),
    deadline TIMESTAMPTZ,
    achieved BOOLEAN NOT NULL DEFAULT FALSE,
    proof_id TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    achieved_at TIMESTAMPTZ,
    user_address TEXT,
    tx_hash TEXT,
    verification_mode TEXT,
    ledger_sync_pending BOOLEAN NOT NULL DEFAULT FALSE
)
"""


class GoalCache(Protocol):
    async def get(self, goal_id: str) -> SavingsGoal | None: ...

    async def put(self, goal: SavingsGoal) -> None: ...

    async def delete(self, goal_id: str) -> bool: ...

    async def list(self, user_address: str | None = None) -> list[SavingsGoal]: ...


class InMemoryGoalCache:
    """Process-local cache for tests and deployments without DATABASE_URL."""

    def __init__(self) -> None:
        self._goals: dict[str, SavingsGoal] = {}

    async def get(self, goal_id: str) -> SavingsGoal | None:
        goal = self._goals.get(goal_id)
        return goal.model_copy() if goal is not None else None

    async def put(self, goal: SavingsGoal) -> None:
        self._goals[goal.id] = goal.model_copy()

    async def delete(self, goal_id: str) -> bool:
        return self._goals.pop(goal_id, None) is not None

    async def list(self, user_address: str | None = None) -> list[SavingsGoal]:
        goals = [
            goal.model_copy()
            for goal in self._goals.values()
            if user_address is None or goal.user_address == user_address
        ]
        goals.sort(key=lambda goal: goal.created_at)
        return goals


def _goal_from_row(row: dict[str, Any]) -> SavingsGoal:
    data = dict(row)
    for key in ("target_amount", "saved_amount"):
        if isinstance(data[key], Decimal):
            data[key] = int(data[key])
    return SavingsGoal(**data)


class PostgresGoalCache:
    """Goal cache persisted in the `savings_goals` table; survives restarts."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(CREATE_TABLE_SQL)

    async def get(self, goal_id: str) -> SavingsGoal | None:
        async with self.pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    f"""
                    SELECT {GOAL_COLUMNS}
                    FROM savings_goals
                    WHERE id = %s
                    """,
                    (goal_id,),
                )
                row = await cursor.fetchone()

        return _goal_from_row(row) if row is not None else None

    async def put(self, goal: SavingsGoal) -> None:
        async with self.pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    f"""
                    INSERT INTO savings_goals ({GOAL_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET target_amount = EXCLUDED.target_amount,
                        saved_amount = EXCLUDED.saved_amount,
                        deadline = EXCLUDED.deadline,
                        achieved = EXCLUDED.achieved,
                        proof_id = EXCLUDED.proof_id,
                        created_at = EXCLUDED.created_at,
                        achieved_at = EXCLUDED.achieved_at,
                        user_address = EXCLUDED.user_address,
                        tx_hash = EXCLUDED.tx_hash,
                        verification_mode = EXCLUDED.verification_mode,
                        ledger_sync_pending = EXCLUDED.ledger_sync_pending
                    """,
                    (
                        goal.id,
                        goal.target_amount,
                        goal.saved_amount,
                        goal.deadline,
                        goal.achieved,
                        goal.proof_id,
                        goal.created_at,
                        goal.achieved_at,
                        goal.user_address,
                        goal.tx_hash,
                        goal.verification_mode,
                        goal.ledger_sync_pending,
                    ),
                )

    async def delete(self, goal_id: str) -> bool:
        async with self.pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    DELETE FROM savings_goals
                    WHERE id = %s
                    RETURNING id
                    """,
                    (goal_id,),
                )
                row = await cursor.fetchone()

        return row is not None

    async def list(self, user_address: str | None = None) -> list[SavingsGoal]:
        sql = f"""
        SELECT {GOAL_COLUMNS}
        FROM savings_goals
        """
        params: list[Any] = []

        if user_address is not None:
            sql += " WHERE user_address = %s"
            params.append(user_address)

        sql += " ORDER BY created_at ASC"

        async with self.pool.connection() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(sql, tuple(params))
                rows = await cursor.fetchall()

        return [_goal_from_row(row) for row in rows]
