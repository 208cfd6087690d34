"""
Challenge-flow controller: stage gating, result accumulation and the
evidence-batch entrypoint, all against a routed fake oracle.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from urllib.parse import quote

import pytest
import structlog.testing

from mfssia_orchestrator.control_plane.controller import ChallengeFlowController
from mfssia_orchestrator.domain.ids import sanitize_set_code
from mfssia_orchestrator.domain.models import (
    AttestationFound,
    ChallengeSet,
    InstanceTerminal,
    NotFound,
    SubmissionMode,
    ValidationError,
)
from mfssia_orchestrator.lifecycle.catalog import CatalogMode, ChallengeSetResolver
from mfssia_orchestrator.lifecycle.evidence import ChallengeSelection, EvidencePolicy
from mfssia_orchestrator.observability.events import FlowEventType
from mfssia_orchestrator.observability.logging import setup_logging, shutdown_logging
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.errors import OracleTransportError
from mfssia_orchestrator.utils.concurrency import CancellationToken

_REGISTER = "/api/identities/register"
_CREATE = "/api/challenge-instances"
_INSTANCE = "/api/challenge-instances/inst-1"
_EVIDENCE = "/api/challenge-evidence"
_HEALTH = "/api/api/infrastructure/healthcheck"
_EXAMPLE_A = "mfssia:Example-A"


def _did_for(code: str) -> str:
    return f"did:web:mkmpol21:test-{sanitize_set_code(code)}"


def _attestations_path(code: str) -> str:
    return f"/api/attestations/did/{quote(_did_for(code), safe='')}"


def _controller(
    oracle: Any,
    sleep_recorder: Any,
    *,
    local_sets: dict[str, ChallengeSet] | None = None,
    **kwargs: Any,
) -> ChallengeFlowController:
    client = OracleClient(oracle)
    kwargs.setdefault(
        "resolver",
        ChallengeSetResolver(client, mode=CatalogMode.LOCAL, local_sets=local_sets),
    )
    return ChallengeFlowController(client, sleep=sleep_recorder, did_factory=_did_for, **kwargs)


def _script_happy_path(oracle: Any, *, state: str = "PENDING_CHALLENGE", code: str = _EXAMPLE_A) -> None:
    oracle.ok("POST", _REGISTER, {"did": _did_for(code)})
    oracle.ok("POST", _CREATE, {"id": "inst-1", "nonce": "0xnonce", "state": state})
    oracle.ok("GET", _INSTANCE, {"state": "IN_PROGRESS"})
    oracle.ok("POST", _EVIDENCE)
    oracle.ok("GET", _attestations_path(code), [{"id": "att-1"}])


async def test_happy_path_reaches_attestation(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    controller = _controller(oracle, sleep_recorder)

    result = await controller.run_challenge_flow(_EXAMPLE_A)

    assert result.succeeded
    assert result.to_dict() == {
        "challengeSet": _EXAMPLE_A,
        "did": _did_for(_EXAMPLE_A),
        "didRegistered": True,
        "instanceCreated": True,
        "instanceState": "PENDING_CHALLENGE",
        "evidenceSubmitted": True,
        "attestationFound": True,
        "instanceId": "inst-1",
        "submittedChallenges": [f"mfssia:C-A-{n}" for n in range(1, 7)],
    }
    [register] = oracle.calls_to("POST", _REGISTER)
    assert register.json_body == {"did": _did_for(_EXAMPLE_A), "requestedChallengeSet": _EXAMPLE_A}
    posts = oracle.calls_to("POST", _EVIDENCE)
    assert len(posts) == 6
    assert posts[0].json_body is not None
    assert posts[0].json_body["challengeInstanceId"] == "inst-1"
    # Only submissions after the first re-check the instance state.
    assert len(oracle.calls_to("GET", _INSTANCE)) == 5
    assert sleep_recorder.calls == [5.0]
    event_types = [event.event_type for event in controller.events.history()]
    assert event_types[:2] == [FlowEventType.DID_REGISTERED, FlowEventType.INSTANCE_CREATED]
    assert event_types[-1] is FlowEventType.ATTESTATION_SUCCESS


async def test_unknown_set_stops_before_registration(oracle: Any, sleep_recorder: Any) -> None:
    oracle.reply("GET", "/api/challenge-sets/mfssia%3ANope", 404)
    client = OracleClient(oracle)
    controller = ChallengeFlowController(
        client, resolver=ChallengeSetResolver(client), sleep=sleep_recorder
    )

    result = await controller.run_challenge_flow("mfssia:Nope")

    assert result.error == "challenge set 'mfssia:Nope' not found: HTTP 404"
    assert result.did is None
    assert not result.did_registered
    assert oracle.calls_to("POST", "/api") == []


async def test_registration_rejection_keeps_minted_did(oracle: Any, sleep_recorder: Any) -> None:
    oracle.reject("POST", _REGISTER, "DID already exists")

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.error == "DID registration rejected: DID already exists"
    assert result.did == _did_for(_EXAMPLE_A)
    assert not result.did_registered
    assert oracle.calls_to("POST", _CREATE) == []


async def test_instance_creation_failure(oracle: Any, sleep_recorder: Any) -> None:
    oracle.ok("POST", _REGISTER)
    oracle.reply("POST", _CREATE, 500, {"message": "boom"})

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.did_registered
    assert not result.instance_created
    assert result.error == "instance creation failed with HTTP 500: boom"


@pytest.mark.parametrize("state", ["VERIFIED", "COMPLETED"])
async def test_auto_verified_instance_skips_evidence(
    oracle: Any, sleep_recorder: Any, state: str
) -> None:
    _script_happy_path(oracle, state=state)

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.succeeded
    assert result.evidence_submitted
    assert result.instance_state == state
    assert result.submitted_challenges == ()
    assert oracle.calls_to("POST", _EVIDENCE) == []


@pytest.mark.parametrize("state", ["FAILED", "EXPIRED"])
async def test_terminal_instance_stops_without_polling(
    oracle: Any, sleep_recorder: Any, state: str
) -> None:
    _script_happy_path(oracle, state=state)

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.instance_created
    assert not result.evidence_submitted
    assert result.error is not None
    assert result.error.startswith(f"challenge instance is in terminal state {state}")
    assert oracle.calls_to("POST", _EVIDENCE) == []
    assert oracle.calls_to("GET", "/api/attestations") == []
    assert sleep_recorder.calls == []


@pytest.mark.parametrize(
    ("state", "action"),
    [
        ("PENDING_CHALLENGE", "submit_evidence"),
        ("COMPLETED", "await_attestation"),
        ("EXPIRED", "stop"),
    ],
)
async def test_instance_decision_is_logged(
    oracle: Any, sleep_recorder: Any, state: str, action: str
) -> None:
    _script_happy_path(oracle, state=state)

    with structlog.testing.capture_logs() as captured:
        await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    [decision] = [
        entry for entry in captured if entry["event"] == "control_plane_instance_decision"
    ]
    assert decision["action"] == action
    assert decision["instance_id"] == "inst-1"
    assert decision["challenge_set"] == _EXAMPLE_A
    assert decision["reported_state"] == state


async def test_partial_acceptance_is_not_an_error(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    oracle.routes.pop(("POST", _EVIDENCE))
    oracle.ok("POST", _EVIDENCE)
    oracle.reject("POST", _EVIDENCE, "challenge rejected")
    oracle.ok("POST", _EVIDENCE)

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.error is None
    assert result.evidence_submitted
    assert result.submitted_challenges == (
        "mfssia:C-A-1",
        "mfssia:C-A-3",
        "mfssia:C-A-4",
        "mfssia:C-A-5",
        "mfssia:C-A-6",
    )


async def test_no_accepted_evidence_stops_the_run(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    oracle.routes.pop(("POST", _EVIDENCE))
    oracle.reply("POST", _EVIDENCE, 400)

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert not result.evidence_submitted
    assert result.error == "evidence submission failed with HTTP 400"
    assert oracle.calls_to("GET", "/api/attestations") == []


async def test_instance_turning_terminal_mid_submission_updates_state(
    oracle: Any, sleep_recorder: Any
) -> None:
    _script_happy_path(oracle)
    oracle.routes.pop(("GET", _INSTANCE))
    oracle.ok("GET", _INSTANCE, {"state": "EXPIRED"})

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.submitted_challenges == ("mfssia:C-A-1",)
    assert result.instance_state == "EXPIRED"
    assert result.error is None


async def test_batch_mode_sends_one_request(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    policy = EvidencePolicy(submission_mode=SubmissionMode.BATCH)

    result = await _controller(oracle, sleep_recorder, evidence_policy=policy).run_challenge_flow(
        _EXAMPLE_A
    )

    assert result.succeeded
    [post] = oracle.calls_to("POST", _EVIDENCE)
    assert post.json_body is not None
    assert len(post.json_body["responses"]) == 6
    assert oracle.calls_to("GET", _INSTANCE) == []


async def test_first_n_selection(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    policy = EvidencePolicy(selection=ChallengeSelection.FIRST_N, first_n=2)

    result = await _controller(oracle, sleep_recorder, evidence_policy=policy).run_challenge_flow(
        _EXAMPLE_A
    )

    assert result.submitted_challenges == ("mfssia:C-A-1", "mfssia:C-A-2")
    assert len(oracle.calls_to("POST", _EVIDENCE)) == 2


async def test_set_without_challenges_submits_nothing_and_still_polls(
    oracle: Any, sleep_recorder: Any
) -> None:
    _script_happy_path(oracle, code="mfssia:Empty")
    empty = ChallengeSet(code="mfssia:Empty", name="Empty", mandatory_challenges=())

    result = await _controller(
        oracle, sleep_recorder, local_sets={"mfssia:Empty": empty}
    ).run_challenge_flow("mfssia:Empty")

    assert result.instance_created
    assert result.error is None
    assert not result.evidence_submitted
    assert result.submitted_challenges == ()
    assert result.attestation_found
    assert oracle.calls_to("POST", _EVIDENCE) == []
    assert len(oracle.calls_to("GET", _attestations_path("mfssia:Empty"))) == 1


async def test_remote_set_without_data_still_polls(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle, code="mfssia:Remote")
    oracle.ok("GET", "/api/challenge-sets/mfssia%3ARemote", None)
    client = OracleClient(oracle)

    result = await _controller(
        oracle, sleep_recorder, resolver=ChallengeSetResolver(client)
    ).run_challenge_flow("mfssia:Remote")

    assert result.error is None
    assert not result.evidence_submitted
    assert result.attestation_found
    assert oracle.calls_to("POST", _EVIDENCE) == []


async def test_attestation_not_found_is_not_an_error(oracle: Any, sleep_recorder: Any) -> None:
    _script_happy_path(oracle)
    oracle.routes.pop(("GET", _attestations_path(_EXAMPLE_A)))
    oracle.ok("GET", _attestations_path(_EXAMPLE_A), [])

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.error is None
    assert result.evidence_submitted
    assert not result.attestation_found
    assert not result.succeeded
    assert sleep_recorder.calls == [5.0, 5.0, 5.0]


async def test_service_disabled_makes_no_calls(oracle: Any, sleep_recorder: Any) -> None:
    result = await _controller(oracle, sleep_recorder, enabled=False).run_challenge_flow(
        _EXAMPLE_A
    )

    assert result.error == "MFSSIA service is not enabled"
    assert oracle.calls == []


async def test_unexpected_exception_is_folded_into_error(
    oracle: Any, sleep_recorder: Any, tmp_path: Path
) -> None:
    oracle.ok("POST", _REGISTER)
    oracle.ok("POST", _CREATE, ["not", "an", "object"])

    handle = setup_logging({"log_dir": str(tmp_path)}, run_id="run-crash")
    try:
        result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)
    finally:
        shutdown_logging(handle)

    assert result.did_registered
    assert result.error is not None
    assert result.error.startswith("unexpected error: OracleResponseError: ")
    [crash] = [
        json.loads(line)
        for line in handle.log_path.read_text(encoding="utf-8").splitlines()
        if json.loads(line)["message"] == "challenge flow crashed"
    ]
    assert crash["challenge_set"] == _EXAMPLE_A
    assert "OracleResponseError" in crash["exception"]


async def test_transport_failure_is_reported_per_stage(oracle: Any, sleep_recorder: Any) -> None:
    oracle.fail("POST", _REGISTER, OracleTransportError("refused", endpoint=f"POST {_REGISTER}"))

    result = await _controller(oracle, sleep_recorder).run_challenge_flow(_EXAMPLE_A)

    assert result.error is not None
    assert result.error.startswith("DID registration")
    assert "refused" in result.error


async def test_cancellation_propagates(oracle: Any, sleep_recorder: Any) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await _controller(oracle, sleep_recorder).run_challenge_flow(
            _EXAMPLE_A, cancel_token=token
        )
    assert oracle.calls == []


@pytest.mark.parametrize("max_concurrency", [1, 3])
async def test_run_many_isolates_failures_and_keeps_order(
    oracle: Any, sleep_recorder: Any, max_concurrency: int
) -> None:
    for code in (_EXAMPLE_A, "mfssia:Example-D"):
        _script_happy_path(oracle, code=code)

    results = await _controller(
        oracle, sleep_recorder, max_concurrency=max_concurrency
    ).run_many([_EXAMPLE_A, "mfssia:Nope", "mfssia:Example-D"])

    assert [result.challenge_set for result in results] == [
        _EXAMPLE_A,
        "mfssia:Nope",
        "mfssia:Example-D",
    ]
    assert [result.succeeded for result in results] == [True, False, True]
    assert results[1].error == "challenge set 'mfssia:Nope' not found: not in local catalog"
    assert results[2].submitted_challenges == tuple(
        f"mfssia:C-D-{n}" for n in (1, 2, 3, 5, 6, 8)
    )


def test_rejects_non_positive_concurrency(oracle: Any) -> None:
    with pytest.raises(ValueError, match="max_concurrency"):
        ChallengeFlowController(OracleClient(oracle), max_concurrency=0)


async def test_submit_evidence_batch_checks_state_first(oracle: Any, sleep_recorder: Any) -> None:
    oracle.ok("GET", _INSTANCE, {"state": "AWAITING_EVIDENCE"})
    oracle.ok("POST", _EVIDENCE, {"received": 2})

    result = await _controller(oracle, sleep_recorder).submit_evidence_batch(
        "inst-1",
        [
            {"challengeId": "mfssia:C-A-1", "evidence": {"source": "x"}},
            {"challengeId": "mfssia:C-A-2", "evidence": {"source": "y"}},
        ],
    )

    assert result.to_dict() == {
        "success": True,
        "challengeInstanceId": "inst-1",
        "submittedCount": 2,
        "submitted": ["mfssia:C-A-1", "mfssia:C-A-2"],
        "data": {"received": 2},
        "message": "All evidence submitted successfully",
    }
    assert [call.method for call in oracle.calls] == ["GET", "POST"]


async def test_submit_evidence_batch_refuses_terminal_instance(
    oracle: Any, sleep_recorder: Any
) -> None:
    oracle.ok("GET", _INSTANCE, {"state": "EXPIRED"})

    result = await _controller(oracle, sleep_recorder).submit_evidence_batch(
        "inst-1", [{"challengeId": "mfssia:C-A-1", "evidence": {}}]
    )

    assert isinstance(result.failure, InstanceTerminal)
    assert result.to_dict()["hint"] == "Create a new challenge instance to retry."
    assert oracle.calls_to("POST", _EVIDENCE) == []


async def test_submit_evidence_batch_goes_ahead_when_state_check_fails(
    oracle: Any, sleep_recorder: Any
) -> None:
    oracle.reply("GET", _INSTANCE, 500, {"message": "db down"})
    oracle.ok("POST", _EVIDENCE)

    result = await _controller(oracle, sleep_recorder).submit_evidence_batch(
        "inst-1", [{"challengeId": "mfssia:C-A-1", "evidence": {"source": "x"}}]
    )

    assert result.success
    assert result.submitted == ("mfssia:C-A-1",)
    assert [call.method for call in oracle.calls] == ["GET", "POST"]


async def test_submit_evidence_batch_names_the_incomplete_element(
    oracle: Any, sleep_recorder: Any
) -> None:
    result = await _controller(oracle, sleep_recorder).submit_evidence_batch(
        "inst-1",
        [
            {"challengeId": "mfssia:C-A-1", "evidence": {"source": "x"}},
            {"challengeId": "mfssia:C-A-2", "evidence": {"source": "y"}},
            {"challengeId": "mfssia:C-A-3"},
        ],
    )

    assert not result.success
    assert isinstance(result.failure, ValidationError)
    assert result.failure.index == 2
    assert result.submitted == ()
    assert oracle.calls == []


async def test_poll_attestation_entrypoint(oracle: Any, sleep_recorder: Any) -> None:
    oracle.ok("GET", _attestations_path(_EXAMPLE_A), [])
    oracle.ok("GET", _attestations_path(_EXAMPLE_A), [{"id": "att"}])
    controller = _controller(oracle, sleep_recorder)

    found = await controller.poll_attestation(_did_for(_EXAMPLE_A), interval_seconds=1)
    missing = await controller.poll_attestation("did:web:other:x", max_attempts=1)

    assert isinstance(found, AttestationFound)
    assert found.attempts == 2
    assert isinstance(missing, NotFound)


async def test_healthcheck_reports_status(oracle: Any, sleep_recorder: Any) -> None:
    oracle.ok("GET", _HEALTH, {"db": "up"})
    controller = _controller(oracle, sleep_recorder)

    healthy = await controller.healthcheck()
    oracle.routes.clear()
    oracle.reply("GET", _HEALTH, 503, {"message": "maintenance"})
    degraded = await controller.healthcheck()
    oracle.routes.clear()
    oracle.fail("GET", _HEALTH, OracleTransportError("refused", endpoint=f"GET {_HEALTH}"))
    down = await controller.healthcheck()

    assert healthy["status"] == "ok"
    assert healthy["data"] == {"db": "up"}
    assert str(healthy["timestamp"]).endswith("Z")
    assert degraded["status"] == "error"
    assert degraded["error"] == "HTTP 503: maintenance"
    assert down["status"] == "error"
    assert down["error"] == "refused"


async def test_list_challenge_sets_in_local_mode(oracle: Any, sleep_recorder: Any) -> None:
    sets = await _controller(oracle, sleep_recorder).list_challenge_sets()

    assert [item.code for item in sets] == [_EXAMPLE_A, "mfssia:Example-D"]
    assert oracle.calls == []
