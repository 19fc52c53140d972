"""Domain models for savings goals, proofs and deposit outcomes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

VerificationMode = Literal["onchain", "local_unverified"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SavingsGoal(BaseModel):
    """
    Last known snapshot of one savings goal.

    `achieved` is monotonic: once True, the goal is frozen. `proof_id` and
    `achieved_at` are set at the same transition and never again.
    """

    id: str
    target_amount: int = Field(gt=0)
    saved_amount: int = Field(default=0, ge=0)
    deadline: datetime | None = None
    achieved: bool = False
    proof_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    achieved_at: datetime | None = None
    user_address: str | None = None
    tx_hash: str | None = None
    verification_mode: VerificationMode | None = None
    ledger_sync_pending: bool = False

    @property
    def is_onchain(self) -> bool:
        return self.user_address is not None


class ProofResult(BaseModel):
    """Ephemeral prover output, annotated once settlement is attempted."""

    proof: str
    public_inputs: list[str]
    proof_id: str
    proof_blob: str
    verified: bool = False
    verification_tx_hash: str | None = None
    verification_mode: VerificationMode | None = None


class DepositResult(BaseModel):
    """Outcome of moving money into (or back out of) the vault for one goal."""

    goal: SavingsGoal
    vault_tx_hash: str | None = None
    contract_tx_hash: str | None = None
    # True when the vault moved money but the ledger has not confirmed it.
    ledger_sync_pending: bool = False
    contract_error: dict[str, Any] | None = None


class GoalProgress(BaseModel):
    goal: SavingsGoal
    saved_amount: int
    progress_pct: int
    can_generate_proof: bool
    days_remaining: int | None = None
