"""
RPC client for the savings-goals contract.

Every response is decoded exactly once into a tagged outcome
(`ContractSuccess | ContractNotFound | ContractFailure`). The typed methods
turn that outcome into domain values or typed exceptions, so nothing
downstream ever inspects raw JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Union

import httpx
from pydantic import ValidationError

from ..config import settings
from ..errors import GoalNotFound, TransportError, contract_error_from
from ..logger import get_logger
from ..models import SavingsGoal
from .http_client import JsonHttpClient, JsonResponse, extract_error

logger = get_logger(__name__)

INVOKE_CONTRACT_PATH = "/api/soroban/invoke-contract"

ContractFunction = Literal[
    "get_savings_goal",
    "set_savings_goal",
    "deposit_to_goal",
    "submit_proof",
]


@dataclass(frozen=True)
class ContractSuccess:
    payload: dict[str, Any]


@dataclass(frozen=True)
class ContractNotFound:
    message: str = "Goal not found"


@dataclass(frozen=True)
class ContractFailure:
    code: str
    message: str


ContractOutcome = Union[ContractSuccess, ContractNotFound, ContractFailure]


@dataclass(frozen=True)
class DepositReceipt:
    """Contract-side deposit result; `saved_amount` is the authoritative total."""

    saved_amount: int | None
    tx_hash: str | None


@dataclass(frozen=True)
class SubmitReceipt:
    proof_id: str | None
    verified: bool
    tx_hash: str | None


def decode_outcome(response: JsonResponse) -> ContractOutcome:
    data = response.payload
    if response.ok and data.get("success") is True:
        return ContractSuccess(data)

    code, message = extract_error(
        data,
        fallback_code="CONTRACT_ERROR" if response.payload else "TRANSPORT_ERROR",
        fallback_message=f"contract call failed with HTTP {response.status_code}",
    )
    if code == "GOAL_NOT_FOUND":
        return ContractNotFound(message)
    return ContractFailure(code, message)


def raise_for_outcome(outcome: ContractOutcome) -> dict[str, Any]:
    """Return the success payload or raise the matching typed exception."""
    if isinstance(outcome, ContractSuccess):
        return outcome.payload
    if isinstance(outcome, ContractNotFound):
        raise GoalNotFound(outcome.message)
    if outcome.code == "TRANSPORT_ERROR":
        raise TransportError(outcome.message)
    raise contract_error_from(outcome.code, outcome.message)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value))
    except ValueError as exc:
        raise TransportError(f"contract returned a non-integer amount: {value!r}") from exc


def _parse_deadline(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) or str(value).isdigit():
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise TransportError(f"contract returned an unreadable deadline: {value!r}") from exc


def _deadline_ts(deadline: datetime | None) -> int | None:
    if deadline is None:
        return None
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return int(deadline.timestamp())


def goal_id_for_address(user_address: str) -> str:
    """Chain-linked goals are keyed by wallet: one on-chain goal per user."""
    return f"onchain-{user_address}"


def goal_from_payload(user_address: str, payload: dict[str, Any]) -> SavingsGoal | None:
    """Map a `get_savings_goal` payload to a snapshot; None when the contract has no goal."""
    raw = payload.get("goal") if isinstance(payload.get("goal"), dict) else payload
    target_amount = _optional_int(raw.get("targetAmount"))
    if not target_amount:
        return None

    achieved = bool(raw.get("achieved"))
    try:
        return SavingsGoal(
            id=goal_id_for_address(user_address),
            target_amount=target_amount,
            saved_amount=_optional_int(raw.get("savedAmount")) or 0,
            deadline=_parse_deadline(raw.get("deadline")),
            achieved=achieved,
            proof_id=raw.get("proofId") or None,
            user_address=user_address,
            tx_hash=payload.get("txHash") or None,
            verification_mode="onchain" if achieved else None,
        )
    except ValidationError as exc:
        raise TransportError(f"contract returned an invalid goal for {user_address}") from exc


class ContractGateway:
    """Invokes the four savings-goal contract functions through the backend RPC."""

    def __init__(
        self,
        *,
        contract_address: str | None = None,
        network: str | None = None,
        base_url: str | None = None,
        write_timeout_seconds: float | None = None,
        read_timeout_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.contract_address = (
            settings.savings_goals_contract if contract_address is None else contract_address
        )
        self.network = network or settings.stellar_network
        self.read_timeout_seconds = read_timeout_seconds or settings.contract_read_timeout_seconds
        self.http = JsonHttpClient(
            base_url=base_url or settings.backend_url,
            timeout_seconds=write_timeout_seconds or settings.contract_write_timeout_seconds,
            max_retries=settings.read_max_retries if max_retries is None else max_retries,
            backoff_seconds=backoff_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.contract_address)

    async def invoke(
        self,
        function: ContractFunction,
        args: list[Any],
        *,
        timeout: float | None = None,
        retry: bool = False,
        user_id: str | None = None,
        email: str | None = None,
    ) -> ContractOutcome:
        body: dict[str, Any] = {
            "contractAddress": self.contract_address,
            "function": function,
            "args": args,
            "network": self.network,
        }
        if user_id:
            body["userId"] = user_id
        if email:
            body["email"] = email

        response = await self.http.request(
            "POST",
            INVOKE_CONTRACT_PATH,
            json=body,
            timeout=timeout,
            retry=retry,
        )
        outcome = decode_outcome(response)
        if isinstance(outcome, ContractFailure):
            logger.warning(
                "contract_call_failed",
                function=function,
                code=outcome.code,
                status=response.status_code,
            )
        else:
            logger.info("contract_call", function=function, outcome=type(outcome).__name__)
        return outcome

    async def get_savings_goal(
        self,
        user_address: str,
        *,
        timeout: float | None = None,
        retry: bool = True,
    ) -> SavingsGoal | None:
        """
        Read the canonical goal; None is the normal answer for a new user.

        Callers with their own deadline pass `retry=False`.
        """
        outcome = await self.invoke(
            "get_savings_goal",
            [user_address],
            timeout=timeout if timeout is not None else self.read_timeout_seconds,
            retry=retry,
        )
        if isinstance(outcome, ContractNotFound):
            return None
        return goal_from_payload(user_address, raise_for_outcome(outcome))

    async def set_savings_goal(
        self,
        user_address: str,
        target_amount: int,
        deadline: datetime | None = None,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> str | None:
        outcome = await self.invoke(
            "set_savings_goal",
            [user_address, str(target_amount), _deadline_ts(deadline)],
            user_id=user_id,
            email=email,
        )
        payload = raise_for_outcome(outcome)
        return payload.get("txHash") or None

    async def deposit_to_goal(
        self,
        user_address: str,
        amount: int,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> DepositReceipt:
        outcome = await self.invoke(
            "deposit_to_goal",
            [user_address, str(amount)],
            user_id=user_id,
            email=email,
        )
        payload = raise_for_outcome(outcome)
        return DepositReceipt(
            saved_amount=_optional_int(payload.get("savedAmount")),
            tx_hash=payload.get("txHash") or None,
        )

    async def submit_proof(
        self,
        user_address: str,
        proof_blob: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
    ) -> SubmitReceipt:
        outcome = await self.invoke(
            "submit_proof",
            [user_address, proof_blob],
            user_id=user_id,
            email=email,
        )
        payload = raise_for_outcome(outcome)
        return SubmitReceipt(
            proof_id=payload.get("proofId") or None,
            verified=payload.get("verified") is True,
            tx_hash=payload.get("txHash") or None,
        )
