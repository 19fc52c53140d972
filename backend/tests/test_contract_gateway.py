from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from goal_settlement.errors import (
    ContractError,
    GoalAlreadyAchieved,
    NetworkTimeout,
    TransportError,
    VerificationFailed,
)
from goal_settlement.services.contract_gateway import ContractGateway

USER = "GUSERADDRESS"


def _run(coro):
    return asyncio.run(coro)


def _gateway(handler, **kwargs) -> ContractGateway:
    return ContractGateway(
        contract_address="CSAVINGS",
        network="testnet",
        base_url="http://backend.test",
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_get_savings_goal_maps_canonical_record() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "success": True,
                "targetAmount": "500",
                "savedAmount": "600",
                "achieved": False,
                "deadline": 1798761600,
            },
        )

    goal = _run(_gateway(handler).get_savings_goal(USER))

    assert seen == [
        {
            "contractAddress": "CSAVINGS",
            "function": "get_savings_goal",
            "args": [USER],
            "network": "testnet",
        }
    ]
    assert goal is not None
    assert goal.id == f"onchain-{USER}"
    assert goal.target_amount == 500
    assert goal.saved_amount == 600
    assert goal.achieved is False
    assert goal.deadline == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert goal.user_address == USER


def test_get_savings_goal_not_found_is_a_normal_outcome() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404,
            json={"success": False, "error": {"code": "GOAL_NOT_FOUND", "message": "no goal"}},
        )

    assert _run(_gateway(handler).get_savings_goal(USER)) is None


def test_get_savings_goal_empty_option_is_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "result": None})

    assert _run(_gateway(handler).get_savings_goal(USER)) is None


def test_set_savings_goal_sends_ordered_args_and_returns_tx_hash() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "txHash": "tx-set"})

    deadline = datetime(2027, 1, 1, tzinfo=timezone.utc)
    tx_hash = _run(
        _gateway(handler).set_savings_goal(USER, 500, deadline, user_id="u-1", email="a@b.co")
    )

    assert tx_hash == "tx-set"
    assert seen[0]["function"] == "set_savings_goal"
    assert seen[0]["args"] == [USER, "500", 1798761600]
    assert seen[0]["userId"] == "u-1"
    assert seen[0]["email"] == "a@b.co"


def test_deposit_to_goal_returns_authoritative_total() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "txHash": "tx-dep", "savedAmount": "750"})

    receipt = _run(_gateway(handler).deposit_to_goal(USER, 200))

    assert receipt.saved_amount == 750
    assert receipt.tx_hash == "tx-dep"


def test_deposit_to_goal_without_total_leaves_it_unset() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "txHash": "tx-dep", "savedAmount": None})

    receipt = _run(_gateway(handler).deposit_to_goal(USER, 200))

    assert receipt.saved_amount is None


def test_submit_proof_reports_verification_flag() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["args"] == [USER, "0xabcd"]
        return httpx.Response(200, json={"success": True, "verified": False, "proofId": "0x01"})

    receipt = _run(_gateway(handler).submit_proof(USER, "0xabcd"))

    assert receipt.verified is False
    assert receipt.proof_id == "0x01"


@pytest.mark.parametrize(
    ("code", "error_class"),
    [
        ("VERIFICATION_FAILED", VerificationFailed),
        ("ALREADY_ACHIEVED", GoalAlreadyAchieved),
        ("SIMULATION_ERROR", ContractError),
    ],
)
def test_structured_errors_map_to_typed_exceptions(code, error_class) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "error": {"code": code, "message": "boom"}})

    with pytest.raises(error_class) as excinfo:
        _run(_gateway(handler).submit_proof(USER, "0xabcd"))

    assert excinfo.value.code == code
    assert excinfo.value.message == "boom"


def test_error_in_200_body_is_still_decoded() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"success": False, "error": {"code": "CONTRACT_ERROR", "message": "trapped"}},
        )

    with pytest.raises(ContractError) as excinfo:
        _run(_gateway(handler).set_savings_goal(USER, 10))

    assert excinfo.value.message == "trapped"


def test_non_json_error_falls_back_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(TransportError):
        _run(_gateway(handler, max_retries=0).set_savings_goal(USER, 10))


def test_write_timeout_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(NetworkTimeout):
        _run(_gateway(handler, max_retries=3).deposit_to_goal(USER, 100))

    assert len(calls) == 1


def test_read_is_retried_after_transport_failure() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"success": True, "targetAmount": "10", "savedAmount": "0"})

    goal = _run(_gateway(handler, max_retries=2).get_savings_goal(USER))

    assert len(calls) == 2
    assert goal is not None and goal.target_amount == 10


def test_read_without_retry_makes_one_attempt() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="busy")

    with pytest.raises(TransportError):
        _run(_gateway(handler, max_retries=2).get_savings_goal(USER, retry=False))

    assert len(calls) == 1


def test_invalid_goal_payload_is_a_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "targetAmount": "500", "savedAmount": "-20"})

    with pytest.raises(TransportError):
        _run(_gateway(handler).get_savings_goal(USER))
