"""Pure merge of a cached goal with the canonical on-chain snapshot."""

from __future__ import annotations

from datetime import datetime

from ..models import SavingsGoal, utcnow


def merge_goals(
    local: SavingsGoal,
    remote: SavingsGoal | None,
    *,
    now: datetime | None = None,
) -> SavingsGoal:
    """
    Reconcile `local` toward `remote`.

    - remote None: local is returned as a copy, untouched
    - local achieved: local is frozen and returned as a copy
    - otherwise remote wins for target, saved, deadline and achievement;
      local keeps its id, created_at and wallet link
    """
    if remote is None or local.achieved:
        return local.model_copy()

    merged = local.model_copy(
        update={
            "target_amount": remote.target_amount,
            "saved_amount": remote.saved_amount,
            "deadline": remote.deadline,
            "user_address": local.user_address or remote.user_address,
            "tx_hash": remote.tx_hash or local.tx_hash,
            "ledger_sync_pending": False,
        }
    )

    if remote.achieved:
        merged = merged.model_copy(
            update={
                "achieved": True,
                "proof_id": remote.proof_id or local.proof_id,
                "achieved_at": remote.achieved_at or now or utcnow(),
                "verification_mode": "onchain",
            }
        )

    return merged
