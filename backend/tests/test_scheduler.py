from __future__ import annotations

import asyncio
import gc

import pytest

from goal_settlement.services.scheduler import ReconcileScheduler


def _run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_run_exclusive_serializes_work_on_one_goal() -> None:
    scheduler = ReconcileScheduler(debounce_seconds=0)
    events = []

    async def step(name: str):
        events.append(f"{name}-start")
        await asyncio.sleep(0.01)
        events.append(f"{name}-end")
        return name

    async def scenario():
        return await asyncio.gather(
            scheduler.run_exclusive("goal-1", step("a")),
            scheduler.run_exclusive("goal-1", step("b")),
        )

    assert _run(scenario()) == ["a", "b"]
    assert events == ["a-start", "a-end", "b-start", "b-end"]


def test_abandoned_caller_does_not_cancel_the_write() -> None:
    scheduler = ReconcileScheduler(debounce_seconds=0)
    applied = []

    async def write():
        await asyncio.sleep(0.02)
        applied.append("written")

    async def scenario():
        caller = asyncio.ensure_future(scheduler.run_exclusive("goal-1", write()))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await scheduler.drain()

    _run(scenario())

    assert applied == ["written"]


def test_concurrent_reconciliations_share_one_run() -> None:
    scheduler = ReconcileScheduler(debounce_seconds=0)
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "fresh"

    async def scenario():
        return await asyncio.gather(
            scheduler.reconcile("goal-1", fetch),
            scheduler.reconcile("goal-1", fetch),
        )

    assert _run(scenario()) == ["fresh", "fresh"]
    assert len(calls) == 1


def test_reconcile_inside_debounce_window_is_skipped() -> None:
    clock = FakeClock()
    scheduler = ReconcileScheduler(debounce_seconds=10, clock=clock)
    calls = []

    async def fetch():
        calls.append(clock.now)
        return "fresh"

    assert _run(scheduler.reconcile("goal-1", fetch)) == "fresh"
    clock.now += 5
    assert _run(scheduler.reconcile("goal-1", fetch)) is None
    assert _run(scheduler.reconcile("goal-1", fetch, force=True)) == "fresh"
    clock.now += 11
    assert _run(scheduler.reconcile("goal-1", fetch)) == "fresh"

    assert len(calls) == 3


def test_forget_clears_debounce_window() -> None:
    clock = FakeClock()
    scheduler = ReconcileScheduler(debounce_seconds=10, clock=clock)
    calls = []

    async def fetch():
        calls.append(clock.now)
        return "fresh"

    _run(scheduler.reconcile("goal-1", fetch))
    scheduler.forget("goal-1")

    assert _run(scheduler.reconcile("goal-1", fetch)) == "fresh"
    assert len(calls) == 2


def test_idle_goal_locks_are_released() -> None:
    scheduler = ReconcileScheduler(debounce_seconds=0)

    async def write():
        return "done"

    assert _run(scheduler.run_exclusive("goal-1", write())) == "done"
    gc.collect()

    assert "goal-1" not in scheduler._locks
