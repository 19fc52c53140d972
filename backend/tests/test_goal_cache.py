from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from goal_settlement.models import SavingsGoal
from goal_settlement.services import goal_cache
from goal_settlement.services.goal_cache import InMemoryGoalCache, PostgresGoalCache


def _run(coro):
    return asyncio.run(coro)


def _goal(goal_id: str = "goal-1", **overrides) -> SavingsGoal:
    data = {
        "id": goal_id,
        "target_amount": 500,
        "created_at": datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return SavingsGoal(**data)


COLUMN_NAMES = [name.strip() for name in goal_cache.GOAL_COLUMNS.split(",")]


class FakeGoalsCursor:
    def __init__(self, connection):
        self.connection = connection
        self._rows = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query, params=None):
        params = params or ()
        normalized = " ".join(query.split())
        self._rows = []

        if normalized.startswith("CREATE TABLE IF NOT EXISTS savings_goals"):
            self.connection.schema_created = True
            return

        if normalized.startswith("INSERT INTO savings_goals"):
            row = dict(zip(COLUMN_NAMES, params))
            # NUMERIC columns come back as Decimal
            row["target_amount"] = Decimal(row["target_amount"])
            row["saved_amount"] = Decimal(row["saved_amount"])
            self.connection.rows[row["id"]] = row
            return

        if normalized.startswith("SELECT") and "WHERE id = %s" in normalized:
            row = self.connection.rows.get(params[0])
            if row is not None:
                self._rows = [dict(row)]
            return

        if normalized.startswith("SELECT"):
            user_address = params[0] if params else None
            rows = [
                dict(row)
                for row in self.connection.rows.values()
                if not params or row["user_address"] == user_address
            ]
            rows.sort(key=lambda row: row["created_at"])
            self._rows = rows
            return

        if normalized.startswith("DELETE FROM savings_goals"):
            row = self.connection.rows.pop(params[0], None)
            if row is not None:
                self._rows = [{"id": row["id"]}]
            return

        raise AssertionError(f"Unhandled query: {normalized}")

    async def fetchone(self):
        if not self._rows:
            return None
        return self._rows[0]

    async def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.schema_created = False

    def cursor(self):
        return FakeGoalsCursor(self)


class FakePool:
    def __init__(self):
        self.db = FakeConnection()

    def connection(self):
        pool = self

        class _Checkout:
            async def __aenter__(self):
                return pool.db

            async def __aexit__(self, exc_type, exc, tb):
                return False

        return _Checkout()


def test_in_memory_get_returns_copy() -> None:
    cache = InMemoryGoalCache()
    _run(cache.put(_goal()))

    first = _run(cache.get("goal-1"))
    first.saved_amount = 999

    assert _run(cache.get("goal-1")).saved_amount == 0


def test_in_memory_put_replaces_whole_record() -> None:
    cache = InMemoryGoalCache()
    _run(cache.put(_goal(saved_amount=100, tx_hash="tx-1")))
    _run(cache.put(_goal(saved_amount=300)))

    stored = _run(cache.get("goal-1"))

    assert stored.saved_amount == 300
    assert stored.tx_hash is None


def test_in_memory_list_and_delete() -> None:
    cache = InMemoryGoalCache()
    _run(cache.put(_goal("onchain-GA", user_address="GA")))
    _run(cache.put(_goal("goal-local")))

    assert [goal.id for goal in _run(cache.list("GA"))] == ["onchain-GA"]
    assert len(_run(cache.list())) == 2
    assert _run(cache.delete("goal-local")) is True
    assert _run(cache.delete("goal-local")) is False
    assert _run(cache.get("goal-local")) is None


def test_postgres_cache_round_trips_goal_rows() -> None:
    pool = FakePool()
    cache = PostgresGoalCache(pool)
    _run(cache.ensure_schema())

    _run(cache.put(_goal("onchain-GA", user_address="GA", saved_amount=250, tx_hash="tx-1")))
    stored = _run(cache.get("onchain-GA"))

    assert pool.db.schema_created is True
    assert stored.saved_amount == 250
    assert isinstance(stored.saved_amount, int)
    assert stored.user_address == "GA"
    assert stored.tx_hash == "tx-1"


def test_postgres_cache_upsert_overwrites_and_lists_by_wallet() -> None:
    cache = PostgresGoalCache(FakePool())
    _run(cache.put(_goal("onchain-GA", user_address="GA")))
    _run(cache.put(_goal("onchain-GA", user_address="GA", saved_amount=600)))
    _run(cache.put(_goal("goal-local")))

    listed = _run(cache.list("GA"))

    assert [(goal.id, goal.saved_amount) for goal in listed] == [("onchain-GA", 600)]
    assert len(_run(cache.list())) == 2


def test_postgres_cache_delete_reports_miss() -> None:
    cache = PostgresGoalCache(FakePool())
    _run(cache.put(_goal()))

    assert _run(cache.delete("goal-1")) is True
    assert _run(cache.delete("goal-1")) is False
    assert _run(cache.get("goal-1")) is None
