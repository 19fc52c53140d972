"""Yield-vault client: moves principal in and out of the fixed savings vault."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from ..config import settings
from ..errors import TransportError, VaultError
from ..logger import get_logger
from .http_client import JsonHttpClient, JsonResponse, extract_error

logger = get_logger(__name__)

DEPOSIT_PATH = "/api/defindex/deposit"
WITHDRAW_PATH = "/api/defindex/withdraw"
BALANCE_PATH = "/api/defindex/balance"
APY_PATH = "/api/defindex/apy"


@dataclass(frozen=True)
class VaultReceipt:
    tx_hash: str | None


def _suggestions(payload: dict[str, Any]) -> list[str]:
    error = payload.get("error")
    raw = error.get("suggestions") if isinstance(error, dict) else None
    if raw is None:
        raw = payload.get("suggestions")
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw]


def _vault_error(response: JsonResponse, action: str) -> VaultError:
    code, message = extract_error(
        response.payload,
        fallback_code="VAULT_ERROR",
        fallback_message=f"vault {action} failed with HTTP {response.status_code}",
    )
    return VaultError(message, code, suggestions=_suggestions(response.payload))


class VaultGateway:
    """
    Client for the external yield vault.

    Independent of the contract: a vault deposit can succeed while the ledger
    write that follows fails. Sequencing is the orchestrator's job.
    """

    def __init__(
        self,
        *,
        vault_address: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.vault_address = vault_address or settings.vault_address
        self.http = JsonHttpClient(
            base_url=base_url or settings.backend_url,
            timeout_seconds=timeout_seconds or settings.vault_timeout_seconds,
            max_retries=settings.read_max_retries if max_retries is None else max_retries,
            backoff_seconds=backoff_seconds,
            transport=transport,
        )

    async def _move(
        self,
        path: str,
        action: str,
        amount: int,
        user_address: str,
        user_id: str | None,
        email: str | None,
    ) -> VaultReceipt:
        body: dict[str, Any] = {
            "amount": amount,
            "userAddress": user_address,
            "vaultAddress": self.vault_address,
        }
        if user_id:
            body["userId"] = user_id
        if email:
            body["email"] = email

        response = await self.http.request("POST", path, json=body)
        if not response.ok or response.payload.get("success") is not True:
            error = _vault_error(response, action)
            logger.warning(
                f"vault_{action}_failed",
                code=error.code,
                status=response.status_code,
                suggestions=error.suggestions,
            )
            raise error

        tx_hash = response.payload.get("txHash") or None
        logger.info(f"vault_{action}", tx_hash=tx_hash)
        return VaultReceipt(tx_hash=tx_hash)

    async def deposit(
        self,
        amount: int,
        user_address: str,
        user_id: str | None = None,
        email: str | None = None,
    ) -> VaultReceipt:
        return await self._move(DEPOSIT_PATH, "deposit", amount, user_address, user_id, email)

    async def withdraw(
        self,
        amount: int,
        user_address: str,
        user_id: str | None = None,
        email: str | None = None,
    ) -> VaultReceipt:
        return await self._move(WITHDRAW_PATH, "withdraw", amount, user_address, user_id, email)

    async def get_balance(self, user_address: str) -> int:
        """Underlying balance held for the user, in the smallest currency unit."""
        response = await self.http.request(
            "GET",
            BALANCE_PATH,
            params={"userAddress": user_address, "vaultAddress": self.vault_address},
            retry=True,
        )
        if not response.ok:
            raise _vault_error(response, "balance")
        try:
            return int(str(response.payload.get("balance") or "0"))
        except ValueError as exc:
            raise TransportError("vault returned a non-integer balance") from exc

    async def get_apy(self) -> float:
        response = await self.http.request(
            "GET",
            APY_PATH,
            params={"vaultAddress": self.vault_address},
            retry=True,
        )
        if not response.ok:
            raise _vault_error(response, "apy")
        try:
            return float(response.payload.get("apy") or 0)
        except (TypeError, ValueError) as exc:
            raise TransportError("vault returned a non-numeric apy") from exc
