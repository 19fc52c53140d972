from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from goal_settlement.errors import PreconditionFailed, ProverError, TransportError
from goal_settlement.services import proof_codec
from goal_settlement.services.prover_client import ProofGenerationClient

PROOF_HEX = "0x" + "ab" * 64


def _run(coro):
    return asyncio.run(coro)


def _client(handler, **kwargs) -> ProofGenerationClient:
    return ProofGenerationClient(
        base_url="http://backend.test",
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_unmet_goal_never_reaches_the_prover() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(PreconditionFailed):
        _run(_client(handler).generate_proof(499, 500))

    assert calls == []


def test_generate_proof_builds_blob_from_public_inputs() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={"success": True, "proof": PROOF_HEX, "publicInputs": ["100"], "proofId": "0xfeed"},
        )

    result = _run(_client(handler).generate_proof(600, 500))

    assert seen == [{"balance": "600", "targetAmount": "500"}]
    assert result.proof_id == "0xfeed"
    assert result.public_inputs == ["100"]
    assert result.verified is False
    inputs, proof = proof_codec.decode_proof_blob(result.proof_blob)
    assert inputs == ["100"]
    assert proof == bytes.fromhex("ab" * 64)


def test_missing_proof_id_is_derived_from_blob() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "proof": PROOF_HEX, "publicInputs": ["0"]})

    result = _run(_client(handler).generate_proof(500, 500))

    assert result.proof_id == proof_codec.proof_id_for(result.proof_blob)


def test_structured_prover_error_is_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500,
            json={"success": False, "error": {"code": "NARGO_NOT_FOUND", "message": "nargo missing"}},
        )

    with pytest.raises(ProverError) as excinfo:
        _run(_client(handler, max_retries=0).generate_proof(600, 500))

    assert excinfo.value.code == "NARGO_NOT_FOUND"


def test_busy_prover_is_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, json={"success": False})
        return httpx.Response(200, json={"success": True, "proof": PROOF_HEX, "publicInputs": ["1"]})

    result = _run(_client(handler, max_retries=2).generate_proof(600, 500))

    assert len(calls) == 3
    assert result.public_inputs == ["1"]


def test_incomplete_response_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "proof": PROOF_HEX})

    with pytest.raises(TransportError):
        _run(_client(handler).generate_proof(600, 500))
