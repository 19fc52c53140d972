"""Savings-goal routes: thin HTTP layer over the settlement orchestrator."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from .dependencies import get_orchestrator
from .errors import (
    ContractError,
    GoalAlreadyAchieved,
    GoalNotFound,
    InvalidAmount,
    NetworkTimeout,
    PreconditionFailed,
    ProofBlobError,
    ProverError,
    SettlementError,
    TransportError,
    VaultError,
    VerificationFailed,
)
from .models import DepositResult, GoalProgress, ProofResult, SavingsGoal
from .services.orchestrator import SavingsGoalOrchestrator

router = APIRouter(prefix="/goals", tags=["goals"])

# Most specific first: NetworkTimeout is a TransportError.
_ERROR_STATUS: list[tuple[type[SettlementError], int]] = [
    (InvalidAmount, 422),
    (PreconditionFailed, 422),
    (ProofBlobError, 422),
    (VerificationFailed, 422),
    (GoalNotFound, 404),
    (GoalAlreadyAchieved, 409),
    (VaultError, 502),
    (ContractError, 502),
    (ProverError, 502),
    (NetworkTimeout, 504),
    (TransportError, 503),
]


def _http_error(exc: SettlementError) -> HTTPException:
    status_code = next(
        (code for error_class, code in _ERROR_STATUS if isinstance(exc, error_class)),
        500,
    )
    return HTTPException(status_code=status_code, detail=exc.to_dict())


class WalletContext(BaseModel):
    user_address: str | None = Field(default=None, min_length=1, max_length=128)
    user_id: str | None = None
    email: str | None = Field(default=None, min_length=3, max_length=255)


class GoalCreateRequest(WalletContext):
    target_amount: int = Field(gt=0)
    deadline: datetime | None = None


class GoalUpdateRequest(BaseModel):
    target_amount: int | None = Field(default=None, gt=0)
    deadline: datetime | None = None
    user_id: str | None = None
    email: str | None = Field(default=None, min_length=3, max_length=255)


class AmountRequest(WalletContext):
    amount: int = Field(gt=0)


class VaultApyResponse(BaseModel):
    apy: float


@router.post("", response_model=SavingsGoal, status_code=status.HTTP_201_CREATED)
async def create_goal_endpoint(
    payload: GoalCreateRequest,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> SavingsGoal:
    """Create a savings goal; on-chain when a wallet address is supplied."""
    try:
        return await orchestrator.create_goal(
            payload.target_amount,
            payload.deadline,
            payload.user_address,
            user_id=payload.user_id,
            email=payload.email,
        )
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.get("", response_model=list[SavingsGoal])
async def list_goals_endpoint(
    user_address: str | None = Query(default=None),
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> list[SavingsGoal]:
    try:
        return await orchestrator.list_goals(user_address)
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.get("/vault/apy", response_model=VaultApyResponse)
async def vault_apy_endpoint(
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> VaultApyResponse:
    try:
        return VaultApyResponse(apy=await orchestrator.get_vault_apy())
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.get("/{goal_id}", response_model=SavingsGoal)
async def get_goal_endpoint(
    goal_id: str,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> SavingsGoal:
    try:
        return await orchestrator.get_goal(goal_id)
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.get("/{goal_id}/progress", response_model=GoalProgress)
async def goal_progress_endpoint(
    goal_id: str,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> GoalProgress:
    try:
        return await orchestrator.get_goal_progress(goal_id)
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.patch("/{goal_id}", response_model=SavingsGoal)
async def update_goal_endpoint(
    goal_id: str,
    payload: GoalUpdateRequest,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> SavingsGoal:
    """Change target and/or deadline; rejected with 409 once achieved."""
    if payload.target_amount is None and payload.deadline is None:
        raise HTTPException(status_code=422, detail="At least one field must be provided")

    try:
        return await orchestrator.update_goal(
            goal_id,
            target_amount=payload.target_amount,
            deadline=payload.deadline,
            user_id=payload.user_id,
            email=payload.email,
        )
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal_endpoint(
    goal_id: str,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
):
    try:
        await orchestrator.delete_goal(goal_id)
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.post("/{goal_id}/deposits", response_model=DepositResult)
async def deposit_endpoint(
    goal_id: str,
    payload: AmountRequest,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> DepositResult:
    """
    Deposit into the vault and record it on the ledger.

    A vault success with a failed ledger write is still a 200, flagged with
    `ledger_sync_pending`.
    """
    try:
        return await orchestrator.deposit_to_goal(
            goal_id,
            payload.amount,
            payload.user_address,
            user_id=payload.user_id,
            email=payload.email,
        )
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.post("/{goal_id}/withdrawals", response_model=DepositResult)
async def withdraw_endpoint(
    goal_id: str,
    payload: AmountRequest,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> DepositResult:
    try:
        return await orchestrator.withdraw_from_goal(
            goal_id,
            payload.amount,
            payload.user_address,
            user_id=payload.user_id,
            email=payload.email,
        )
    except SettlementError as exc:
        raise _http_error(exc) from exc


@router.post("/{goal_id}/proof", response_model=ProofResult)
async def generate_proof_endpoint(
    goal_id: str,
    payload: WalletContext | None = None,
    orchestrator: SavingsGoalOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Prove and settle a reached goal; 204 when there is nothing to prove yet."""
    context = payload or WalletContext()
    try:
        result = await orchestrator.generate_proof_if_achieved(
            goal_id,
            context.user_address,
            user_id=context.user_id,
            email=context.email,
        )
    except SettlementError as exc:
        raise _http_error(exc) from exc

    if result is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return result
