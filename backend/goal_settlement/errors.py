"""Typed error taxonomy shared by the gateways, the orchestrator and the router."""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base exception for every settlement failure."""

    default_code = "SETTLEMENT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidAmount(SettlementError, ValueError):
    """Raised when an amount is not a positive integer (or exceeds what is saved)."""

    default_code = "INVALID_AMOUNT"


class PreconditionFailed(SettlementError, ValueError):
    """Raised when an operation is attempted before its preconditions hold."""

    default_code = "PRECONDITION_FAILED"


class GoalNotFound(SettlementError, LookupError):
    default_code = "GOAL_NOT_FOUND"


class GoalAlreadyAchieved(SettlementError):
    """Raised for any mutation of a goal in the terminal achieved state."""

    default_code = "ALREADY_ACHIEVED"


class ProofBlobError(SettlementError, ValueError):
    default_code = "INVALID_PROOF_BLOB"


class VaultError(SettlementError):
    """Raised when the yield vault rejects a deposit or withdrawal."""

    default_code = "VAULT_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        suggestions: list[str] | None = None,
    ):
        super().__init__(message, code)
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.suggestions:
            out["suggestions"] = list(self.suggestions)
        return out


class ContractError(SettlementError):
    """Structured contract failure that maps to no more specific class."""

    default_code = "CONTRACT_ERROR"


class VerificationFailed(SettlementError):
    """Raised when the verifier contract rejects a proof."""

    default_code = "VERIFICATION_FAILED"


class ProverError(SettlementError):
    default_code = "PROVER_ERROR"


class TransportError(SettlementError):
    """Raised when a remote endpoint cannot be reached or answers garbage."""

    default_code = "TRANSPORT_ERROR"


class NetworkTimeout(TransportError):
    default_code = "TIMEOUT"


# Contract error codes with a dedicated exception class.
CONTRACT_ERROR_CLASSES: dict[str, type[SettlementError]] = {
    "GOAL_NOT_FOUND": GoalNotFound,
    "ALREADY_ACHIEVED": GoalAlreadyAchieved,
    "VERIFICATION_FAILED": VerificationFailed,
}


def contract_error_from(code: str, message: str) -> SettlementError:
    """Build the most specific exception for a contract `{code, message}` pair."""
    error_class = CONTRACT_ERROR_CLASSES.get(code, ContractError)
    return error_class(message, code)
