"""
Savings-goal state machine: Uncreated -> Active -> Achieved (terminal).

Sequences vault deposits, contract writes, proof requests and cache
reconciliation. Failure policy:
- validation errors are raised before any I/O
- a vault failure aborts the operation (nothing has moved yet)
- a contract failure after a vault success is tolerated: the deposit is
  reported with `ledger_sync_pending=True` and a local running total
- a failed read-after-write degrades to local state instead of failing
- a read-after-write below the total the contract just returned keeps that
  total and stays `ledger_sync_pending`
- withdrawals are only allowed on goals that do not settle on-chain
- a failed or unverified proof submission is always raised
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..config import settings
from ..errors import (
    ContractError,
    GoalAlreadyAchieved,
    GoalNotFound,
    InvalidAmount,
    PreconditionFailed,
    SettlementError,
    VerificationFailed,
)
from ..logger import get_logger
from ..models import DepositResult, GoalProgress, ProofResult, SavingsGoal, utcnow
from .contract_gateway import ContractGateway, goal_id_for_address
from .goal_cache import GoalCache
from .prover_client import ProofGenerationClient
from .reconcile import merge_goals
from .scheduler import ReconcileScheduler
from .vault_gateway import VaultGateway

logger = get_logger(__name__)


def _now() -> datetime:
    """Wrapper for deterministic tests."""
    return utcnow()


def _validate_amount(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{field} must be an integer amount in the smallest currency unit")
    if value <= 0:
        raise InvalidAmount(f"{field} must be greater than 0")
    return value


def _ensure_mutable(goal: SavingsGoal) -> None:
    if goal.achieved:
        raise GoalAlreadyAchieved(f"Goal {goal.id} is already achieved and can no longer change")


def compute_progress(goal: SavingsGoal, now: datetime) -> GoalProgress:
    """Progress view over the goal's own saved amount, never a caller-supplied balance."""
    progress_pct = math.floor(goal.saved_amount * 100 / goal.target_amount)
    progress_pct = max(0, min(progress_pct, 100))

    days_remaining: int | None = None
    if goal.deadline is not None:
        deadline = goal.deadline
        if deadline.tzinfo is None and now.tzinfo is not None:
            deadline = deadline.replace(tzinfo=now.tzinfo)
        elif deadline.tzinfo is not None and now.tzinfo is None:
            now = now.replace(tzinfo=deadline.tzinfo)
        days = math.ceil((deadline - now).total_seconds() / 86400)
        days_remaining = days if days > 0 else None

    return GoalProgress(
        goal=goal,
        saved_amount=goal.saved_amount,
        progress_pct=progress_pct,
        can_generate_proof=goal.saved_amount >= goal.target_amount and not goal.achieved,
        days_remaining=days_remaining,
    )


class SavingsGoalOrchestrator:
    """Top-level coordinator over the cache, the vault, the contract and the prover."""

    def __init__(
        self,
        *,
        cache: GoalCache,
        vault: VaultGateway,
        prover: ProofGenerationClient,
        contract: ContractGateway | None = None,
        scheduler: ReconcileScheduler | None = None,
        read_timeout_seconds: float | None = None,
        allow_unverified_achievement: bool | None = None,
    ) -> None:
        self.cache = cache
        self.vault = vault
        self.prover = prover
        self.contract = contract
        self.scheduler = scheduler or ReconcileScheduler()
        self.read_timeout_seconds = read_timeout_seconds or settings.contract_read_timeout_seconds
        self.allow_unverified_achievement = (
            settings.allow_unverified_achievement
            if allow_unverified_achievement is None
            else allow_unverified_achievement
        )

    @property
    def contract_configured(self) -> bool:
        return self.contract is not None and self.contract.configured

    def _settles_onchain(self, goal: SavingsGoal) -> bool:
        return self.contract_configured and goal.is_onchain

    async def _require_goal(self, goal_id: str) -> SavingsGoal:
        goal = await self.cache.get(goal_id)
        if goal is None:
            raise GoalNotFound(f"Goal {goal_id} not found")
        return goal

    async def _fetch_canonical(self, user_address: str) -> SavingsGoal | None:
        """
        Bounded canonical read; any failure degrades to None instead of raising.

        Single attempt: the whole read must fit in `read_timeout_seconds`, so
        there is no room for the gateway's backoff retries here.
        """
        assert self.contract is not None
        try:
            remote = await asyncio.wait_for(
                self.contract.get_savings_goal(
                    user_address, timeout=self.read_timeout_seconds, retry=False
                ),
                timeout=self.read_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("canonical_read_timeout", user_address=user_address)
            return None
        except SettlementError as exc:
            logger.warning("canonical_read_failed", user_address=user_address, code=exc.code)
            return None

        if remote is not None:
            self.scheduler.mark_reconciled(remote.id)
        return remote

    # -- create ---------------------------------------------------------------

    async def create_goal(
        self,
        target_amount: int,
        deadline: datetime | None = None,
        user_address: str | None = None,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> SavingsGoal:
        """Create a goal, on-chain when a wallet and contract are available."""
        _validate_amount(target_amount, "target_amount")

        if user_address and self.contract_configured:
            goal_id = goal_id_for_address(user_address)
            return await self.scheduler.run_exclusive(
                goal_id,
                self._create_onchain(goal_id, target_amount, deadline, user_address, user_id, email),
            )

        return await self._create_local(target_amount, deadline)

    async def _create_local(self, target_amount: int, deadline: datetime | None) -> SavingsGoal:
        goal = SavingsGoal(
            id=f"goal-{uuid4().hex}",
            target_amount=target_amount,
            deadline=deadline,
            created_at=_now(),
        )
        await self.cache.put(goal)
        logger.info("goal_created", goal_id=goal.id, onchain=False)
        return goal

    async def _create_onchain(
        self,
        goal_id: str,
        target_amount: int,
        deadline: datetime | None,
        user_address: str,
        user_id: str | None,
        email: str | None,
    ) -> SavingsGoal:
        assert self.contract is not None
        existing = await self.cache.get(goal_id)
        if existing is not None:
            _ensure_mutable(existing)

        try:
            tx_hash = await self.contract.set_savings_goal(
                user_address, target_amount, deadline, user_id=user_id, email=email
            )
        except GoalAlreadyAchieved:
            raise
        except SettlementError as exc:
            logger.warning("contract_create_failed", goal_id=goal_id, code=exc.code)
            return await self._create_local(target_amount, deadline)

        # Minimal snapshot carrying the write's hash, used if the read-back fails.
        synthesized = SavingsGoal(
            id=goal_id,
            target_amount=target_amount,
            deadline=deadline,
            created_at=existing.created_at if existing is not None else _now(),
            user_address=user_address,
            tx_hash=tx_hash,
        )
        remote = await self._fetch_canonical(user_address)
        goal = merge_goals(synthesized, remote, now=_now())
        if tx_hash:
            goal = goal.model_copy(update={"tx_hash": tx_hash})

        await self.cache.put(goal)
        logger.info("goal_created", goal_id=goal.id, onchain=True, tx_hash=tx_hash, canonical=remote is not None)
        return goal

    # -- deposit / withdraw ---------------------------------------------------

    async def deposit_to_goal(
        self,
        goal_id: str,
        amount: int,
        user_address: str | None = None,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> DepositResult:
        """Move money into the vault, then record it on the ledger."""
        _validate_amount(amount, "amount")
        return await self.scheduler.run_exclusive(
            goal_id,
            self._deposit(goal_id, amount, user_address, user_id, email),
        )

    async def _deposit(
        self,
        goal_id: str,
        amount: int,
        user_address: str | None,
        user_id: str | None,
        email: str | None,
    ) -> DepositResult:
        goal = await self._require_goal(goal_id)
        _ensure_mutable(goal)

        wallet = goal.user_address or user_address
        if not wallet:
            raise PreconditionFailed("A wallet address is required to deposit into the vault")

        # Vault first: if it fails nothing has changed anywhere and the call is retryable.
        vault_receipt = await self.vault.deposit(amount, wallet, user_id, email)
        local_total = goal.saved_amount + amount

        if not self._settles_onchain(goal):
            updated = goal.model_copy(update={"saved_amount": local_total})
            await self.cache.put(updated)
            logger.info("goal_deposit", goal_id=goal_id, vault_tx_hash=vault_receipt.tx_hash, onchain=False)
            return DepositResult(goal=updated, vault_tx_hash=vault_receipt.tx_hash)

        assert self.contract is not None and goal.user_address is not None
        try:
            receipt = await self.contract.deposit_to_goal(
                goal.user_address, amount, user_id=user_id, email=email
            )
        except SettlementError as exc:
            # Money already sits in the vault; report it and let the ledger catch up.
            logger.warning(
                "contract_deposit_failed",
                goal_id=goal_id,
                code=exc.code,
                vault_tx_hash=vault_receipt.tx_hash,
            )
            updated = goal.model_copy(update={"saved_amount": local_total, "ledger_sync_pending": True})
            await self.cache.put(updated)
            return DepositResult(
                goal=updated,
                vault_tx_hash=vault_receipt.tx_hash,
                ledger_sync_pending=True,
                contract_error=exc.to_dict(),
            )

        remote = await self._fetch_canonical(goal.user_address)
        confirmed = receipt.saved_amount
        if remote is not None and (not confirmed or remote.saved_amount >= confirmed):
            updated = merge_goals(goal, remote, now=_now())
        elif confirmed:
            # A lagging read must not erase the total the write just confirmed.
            lagging = remote is not None
            if lagging:
                logger.warning(
                    "canonical_read_lagging",
                    goal_id=goal_id,
                    read_saved_amount=remote.saved_amount,
                    confirmed_saved_amount=confirmed,
                )
            updated = goal.model_copy(update={"saved_amount": confirmed, "ledger_sync_pending": lagging})
        else:
            updated = goal.model_copy(update={"saved_amount": local_total, "ledger_sync_pending": False})

        if receipt.tx_hash:
            updated = updated.model_copy(update={"tx_hash": receipt.tx_hash})

        await self.cache.put(updated)
        logger.info(
            "goal_deposit",
            goal_id=goal_id,
            vault_tx_hash=vault_receipt.tx_hash,
            contract_tx_hash=receipt.tx_hash,
            canonical=remote is not None,
        )
        return DepositResult(
            goal=updated,
            vault_tx_hash=vault_receipt.tx_hash,
            contract_tx_hash=receipt.tx_hash,
            ledger_sync_pending=updated.ledger_sync_pending,
        )

    async def withdraw_from_goal(
        self,
        goal_id: str,
        amount: int,
        user_address: str | None = None,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> DepositResult:
        """Take money back out of the vault; refused once the goal is achieved."""
        _validate_amount(amount, "amount")
        return await self.scheduler.run_exclusive(
            goal_id,
            self._withdraw(goal_id, amount, user_address, user_id, email),
        )

    async def _withdraw(
        self,
        goal_id: str,
        amount: int,
        user_address: str | None,
        user_id: str | None,
        email: str | None,
    ) -> DepositResult:
        goal = await self._require_goal(goal_id)
        _ensure_mutable(goal)
        if self._settles_onchain(goal):
            # No contract-side debit exists; reconciliation would restore the old total.
            raise PreconditionFailed("Withdrawals are not supported for goals settled on-chain")
        if amount > goal.saved_amount:
            raise InvalidAmount("amount must not exceed the saved amount")

        wallet = goal.user_address or user_address
        if not wallet:
            raise PreconditionFailed("A wallet address is required to withdraw from the vault")

        vault_receipt = await self.vault.withdraw(amount, wallet, user_id, email)

        updated = goal.model_copy(update={"saved_amount": goal.saved_amount - amount})
        await self.cache.put(updated)
        logger.info("goal_withdrawal", goal_id=goal_id, vault_tx_hash=vault_receipt.tx_hash)
        return DepositResult(goal=updated, vault_tx_hash=vault_receipt.tx_hash)

    # -- proof ----------------------------------------------------------------

    async def generate_proof_if_achieved(
        self,
        goal_id: str,
        user_address: str | None = None,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> ProofResult | None:
        """
        Prove and settle a goal whose saved amount has reached its target.

        Returns None when there is nothing to do (not reached, or already achieved).
        """
        return await self.scheduler.run_exclusive(
            goal_id,
            self._generate_proof(goal_id, user_address, user_id, email),
        )

    async def _generate_proof(
        self,
        goal_id: str,
        user_address: str | None,
        user_id: str | None,
        email: str | None,
    ) -> ProofResult | None:
        goal = await self._require_goal(goal_id)
        if goal.achieved or goal.saved_amount < goal.target_amount:
            return None

        if user_address and goal.user_address and user_address != goal.user_address:
            raise PreconditionFailed("wallet address does not own this goal")

        proof = await self.prover.generate_proof(goal.saved_amount, goal.target_amount)

        if self._settles_onchain(goal):
            assert self.contract is not None and goal.user_address is not None
            receipt = await self.contract.submit_proof(
                goal.user_address, proof.proof_blob, user_id=user_id, email=email
            )
            if not receipt.verified:
                logger.warning("proof_rejected", goal_id=goal_id, proof_id=proof.proof_id)
                raise VerificationFailed("proof was not verified by the contract")

            proof_id = receipt.proof_id or proof.proof_id
            achieved = goal.model_copy(
                update={
                    "achieved": True,
                    "proof_id": proof_id,
                    "achieved_at": _now(),
                    "verification_mode": "onchain",
                    "tx_hash": receipt.tx_hash or goal.tx_hash,
                    "ledger_sync_pending": False,
                }
            )
            await self.cache.put(achieved)
            logger.info("goal_achieved", goal_id=goal_id, proof_id=proof_id, tx_hash=receipt.tx_hash)
            return proof.model_copy(
                update={
                    "proof_id": proof_id,
                    "verified": True,
                    "verification_tx_hash": receipt.tx_hash,
                    "verification_mode": "onchain",
                }
            )

        if not self.allow_unverified_achievement:
            raise ContractError(
                "No savings-goals contract is available to verify this proof",
                "CONTRACT_NOT_CONFIGURED",
            )

        achieved = goal.model_copy(
            update={
                "achieved": True,
                "proof_id": proof.proof_id,
                "achieved_at": _now(),
                "verification_mode": "local_unverified",
            }
        )
        await self.cache.put(achieved)
        logger.warning("goal_achieved_unverified", goal_id=goal_id, proof_id=proof.proof_id)
        return proof.model_copy(update={"verified": False, "verification_mode": "local_unverified"})

    # -- update / delete ------------------------------------------------------

    async def update_goal(
        self,
        goal_id: str,
        *,
        target_amount: int | None = None,
        deadline: datetime | None = None,
        user_id: str | None = None,
        email: str | None = None,
    ) -> SavingsGoal:
        """Change target and/or deadline of a goal that is not yet achieved."""
        if target_amount is not None:
            _validate_amount(target_amount, "target_amount")
        return await self.scheduler.run_exclusive(
            goal_id,
            self._update(goal_id, target_amount, deadline, user_id, email),
        )

    async def _update(
        self,
        goal_id: str,
        target_amount: int | None,
        deadline: datetime | None,
        user_id: str | None,
        email: str | None,
    ) -> SavingsGoal:
        goal = await self._require_goal(goal_id)
        _ensure_mutable(goal)

        patch: dict[str, Any] = {}
        if target_amount is not None:
            patch["target_amount"] = target_amount
        if deadline is not None:
            patch["deadline"] = deadline
        updated = goal.model_copy(update=patch)

        if self._settles_onchain(updated):
            assert self.contract is not None and updated.user_address is not None
            try:
                tx_hash = await self.contract.set_savings_goal(
                    updated.user_address,
                    updated.target_amount,
                    updated.deadline,
                    user_id=user_id,
                    email=email,
                )
            except SettlementError as exc:
                logger.warning("contract_update_failed", goal_id=goal_id, code=exc.code)
                updated = updated.model_copy(update={"ledger_sync_pending": True})
            else:
                remote = await self._fetch_canonical(updated.user_address)
                updated = merge_goals(updated, remote, now=_now())
                if tx_hash:
                    updated = updated.model_copy(update={"tx_hash": tx_hash})

        await self.cache.put(updated)
        logger.info("goal_updated", goal_id=goal_id, fields=sorted(patch))
        return updated

    async def delete_goal(self, goal_id: str) -> None:
        """Drop an unachieved goal from the cache; the contract exposes no delete."""
        await self.scheduler.run_exclusive(goal_id, self._delete(goal_id))
        self.scheduler.forget(goal_id)

    async def _delete(self, goal_id: str) -> None:
        goal = await self._require_goal(goal_id)
        _ensure_mutable(goal)
        await self.cache.delete(goal_id)
        logger.info("goal_deleted", goal_id=goal_id)

    # -- reads ----------------------------------------------------------------

    async def _reconcile(self, goal_id: str, user_address: str | None = None) -> SavingsGoal:
        goal = await self.cache.get(goal_id)
        wallet = goal.user_address if goal is not None else user_address

        if goal is not None and not self._settles_onchain(goal):
            return goal
        if wallet is None or not self.contract_configured:
            raise GoalNotFound(f"Goal {goal_id} not found")

        remote = await self._fetch_canonical(wallet)
        if goal is None:
            # Cache lost the chain-linked goal; adopt the canonical copy.
            if remote is None:
                raise GoalNotFound(f"Goal {goal_id} not found")
            await self.cache.put(remote)
            return remote

        merged = merge_goals(goal, remote, now=_now())
        if remote is not None:
            await self.cache.put(merged)
        return merged

    async def refresh_goal(
        self,
        goal_id: str,
        *,
        user_address: str | None = None,
        force: bool = False,
    ) -> SavingsGoal:
        """Reconcile one goal with the chain, debounced per goal."""
        result = await self.scheduler.reconcile(
            goal_id,
            lambda: self._reconcile(goal_id, user_address),
            force=force,
        )
        if result is None:
            return await self._require_goal(goal_id)
        return result

    async def get_goal(self, goal_id: str, *, refresh: bool = True) -> SavingsGoal:
        goal = await self._require_goal(goal_id)
        if refresh and self._settles_onchain(goal):
            return await self.refresh_goal(goal_id)
        return goal

    async def list_goals(self, user_address: str | None = None) -> list[SavingsGoal]:
        """List cached goals; the wallet's chain-linked goal is reconciled first."""
        if user_address and self.contract_configured:
            try:
                await self.refresh_goal(goal_id_for_address(user_address), user_address=user_address)
            except GoalNotFound:
                pass
        return await self.cache.list(user_address)

    async def get_goal_progress(self, goal_id: str, now: datetime | None = None) -> GoalProgress:
        goal = await self._require_goal(goal_id)
        return compute_progress(goal, now or _now())

    async def get_vault_apy(self) -> float:
        return await self.vault.get_apy()
