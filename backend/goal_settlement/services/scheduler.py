"""
Per-goal scheduling for mutations and reconciliations.

- mutations on one goal run one at a time (per-goal lock)
- at most one reconciliation per goal is in flight; callers share it
- reconciliations inside the debounce window are skipped
- work runs as scheduler-owned tasks, so a caller that goes away does not
  cancel a vault or contract write halfway through
"""

from __future__ import annotations

import asyncio
import time
import weakref
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..config import settings
from ..logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ReconcileScheduler:
    def __init__(
        self,
        *,
        debounce_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.debounce_seconds = (
            settings.reconcile_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._clock = clock
        # Entries vanish once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._last_reconciled: dict[str, float] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def _lock(self, goal_id: str) -> asyncio.Lock:
        lock = self._locks.get(goal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[goal_id] = lock
        return lock

    def _spawn(self, coro: Awaitable[T]) -> asyncio.Task[T]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    def _log_orphan_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("abandoned_operation_failed", error=repr(exc))

    async def _await_shielded(self, goal_id: str, task: asyncio.Task[T]) -> T:
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Caller lost interest; the task keeps running and applies its result.
            logger.info("caller_abandoned_operation", goal_id=goal_id)
            task.add_done_callback(self._log_orphan_failure)
            raise

    async def run_exclusive(self, goal_id: str, coro: Awaitable[T]) -> T:
        """Run `coro` holding the goal's lock, shielded from caller cancellation."""

        async def _locked() -> T:
            async with self._lock(goal_id):
                return await coro

        return await self._await_shielded(goal_id, self._spawn(_locked()))

    def mark_reconciled(self, goal_id: str) -> None:
        """Record that an authoritative read just landed for this goal."""
        self._last_reconciled[goal_id] = self._clock()

    def forget(self, goal_id: str) -> None:
        """Drop per-goal bookkeeping for a goal that no longer exists."""
        self._last_reconciled.pop(goal_id, None)

    def is_debounced(self, goal_id: str) -> bool:
        last = self._last_reconciled.get(goal_id)
        return last is not None and self._clock() - last < self.debounce_seconds

    async def reconcile(
        self,
        goal_id: str,
        factory: Callable[[], Awaitable[T]],
        *,
        force: bool = False,
    ) -> T | None:
        """
        Run one reconciliation for `goal_id`.

        Joins an in-flight run if there is one; returns None without calling
        `factory` when the goal was reconciled within the debounce window.
        """
        existing = self._inflight.get(goal_id)
        if existing is not None and not existing.done():
            return await self._await_shielded(goal_id, existing)

        if not force and self.is_debounced(goal_id):
            logger.debug("reconcile_debounced", goal_id=goal_id)
            return None

        self.mark_reconciled(goal_id)

        async def _locked() -> T:
            try:
                async with self._lock(goal_id):
                    return await factory()
            finally:
                self._inflight.pop(goal_id, None)

        task = self._spawn(_locked())
        self._inflight[goal_id] = task
        return await self._await_shielded(goal_id, task)

    async def drain(self) -> None:
        """Wait for every background task, e.g. on shutdown."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
