"""Oracle client endpoint wrappers: paths, request bodies and decoding discipline."""

from __future__ import annotations

from typing import Any

from mfssia_orchestrator.domain.models import EvidenceItem
from mfssia_orchestrator.oracle.client import OracleClient, SingleWireFormat
from mfssia_orchestrator.oracle.envelope import Business, Ok


def _client(oracle: Any) -> OracleClient:
    return OracleClient(oracle)


def _item(challenge_id: str = "C-A-1") -> EvidenceItem:
    return EvidenceItem(challenge_id=challenge_id, evidence={"source": "mkmpol21.dao"})


async def test_register_identity_posts_only_did_and_set(oracle: Any) -> None:
    oracle.ok("POST", "/api/identities/register")

    envelope = await _client(oracle).register_identity(
        "did:web:mkmpol21:test-A-1", "mfssia:Example-A"
    )

    assert isinstance(envelope, Ok)
    [call] = oracle.calls
    assert call.json_body == {
        "did": "did:web:mkmpol21:test-A-1",
        "requestedChallengeSet": "mfssia:Example-A",
    }


async def test_register_identity_requires_explicit_success_flag(oracle: Any) -> None:
    oracle.reply("POST", "/api/identities/register", 201, {"data": {"did": "x"}})

    envelope = await _client(oracle).register_identity("did:web:x:y", "mfssia:Example-A")

    assert isinstance(envelope, Business)


async def test_create_instance_body(oracle: Any) -> None:
    oracle.ok("POST", "/api/challenge-instances", {"id": "inst-1"})

    await _client(oracle).create_instance("did:web:x:y", "mfssia:Example-D")

    assert oracle.calls[0].json_body == {"did": "did:web:x:y", "challengeSet": "mfssia:Example-D"}


async def test_get_paths_are_quoted(oracle: Any) -> None:
    client = _client(oracle)

    await client.get_challenge_set("mfssia:Example-A")
    await client.get_instance("inst/1")
    await client.get_attestations("did:web:x:y")
    await client.healthcheck()
    await client.list_challenge_sets()

    assert [call.path for call in oracle.calls] == [
        "/api/challenge-sets/mfssia%3AExample-A",
        "/api/challenge-instances/inst%2F1",
        "/api/attestations/did/did%3Aweb%3Ax%3Ay",
        "/api/api/infrastructure/healthcheck",
        "/api/challenge-sets",
    ]
    assert all(call.json_body is None for call in oracle.calls)


async def test_submit_evidence_flat_and_responses_formats(oracle: Any) -> None:
    oracle.ok("POST", "/api/challenge-evidence")
    client = _client(oracle)

    await client.submit_evidence("inst-1", _item())
    await client.submit_evidence("inst-1", _item(), wire_format=SingleWireFormat.RESPONSES)

    flat, wrapped = (call.json_body for call in oracle.calls)
    assert flat == {
        "challengeInstanceId": "inst-1",
        "challengeId": "C-A-1",
        "evidence": {"source": "mkmpol21.dao"},
    }
    assert wrapped == {
        "challengeInstanceId": "inst-1",
        "responses": [{"challengeId": "C-A-1", "evidence": {"source": "mkmpol21.dao"}}],
    }


async def test_submit_evidence_batch_sends_one_request(oracle: Any) -> None:
    oracle.ok("POST", "/api/challenge-evidence")

    await _client(oracle).submit_evidence_batch("inst-1", [_item("C-1"), _item("C-2")])

    [call] = oracle.calls
    assert call.json_body is not None
    assert [entry["challengeId"] for entry in call.json_body["responses"]] == ["C-1", "C-2"]
