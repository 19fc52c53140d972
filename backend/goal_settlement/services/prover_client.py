"""Client for the external ZK prover that attests saved >= target."""

from __future__ import annotations

import httpx

from ..config import settings
from ..errors import PreconditionFailed, ProverError, TransportError
from ..logger import get_logger
from ..models import ProofResult
from .http_client import JsonHttpClient, extract_error
from .proof_codec import encode_proof_blob, proof_id_for

logger = get_logger(__name__)

GENERATE_PROOF_PATH = "/api/zk/generate-proof"


class ProofGenerationClient:
    """Requests a proof for a private `(balance, target)` pair; mutates nothing."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.http = JsonHttpClient(
            base_url=base_url or settings.backend_url,
            timeout_seconds=timeout_seconds or settings.prover_timeout_seconds,
            max_retries=settings.read_max_retries if max_retries is None else max_retries,
            backoff_seconds=backoff_seconds,
            transport=transport,
        )

    async def generate_proof(self, balance: int, target_amount: int) -> ProofResult:
        # Refuse locally: the prover would reject it, and asking leaks timing.
        if balance < target_amount:
            raise PreconditionFailed("balance must be greater than or equal to target_amount")

        response = await self.http.request(
            "POST",
            GENERATE_PROOF_PATH,
            json={"balance": str(balance), "targetAmount": str(target_amount)},
            retry=True,
        )
        data = response.payload

        if not response.ok or data.get("success") is False:
            code, message = extract_error(
                data,
                fallback_code="PROVER_ERROR",
                fallback_message=f"proof generation failed with HTTP {response.status_code}",
            )
            logger.warning("proof_generation_failed", code=code, status=response.status_code)
            raise ProverError(message, code)

        proof = data.get("proof")
        public_inputs = data.get("publicInputs")
        if not isinstance(proof, str) or not proof or not isinstance(public_inputs, list):
            raise TransportError("prover response is missing proof or publicInputs")

        public_inputs = [str(item) for item in public_inputs]
        proof_blob = encode_proof_blob(public_inputs, proof)
        proof_id = str(data.get("proofId") or proof_id_for(proof_blob))

        logger.info("proof_generated", proof_id=proof_id, public_input_count=len(public_inputs))
        return ProofResult(
            proof=proof,
            public_inputs=public_inputs,
            proof_id=proof_id,
            proof_blob=proof_blob,
        )
