"""
mfssia-orchestrator — unit tests for domain models

File: tests/unit/domain/test_models.py

Purpose
- Validate state classification, catalog parsing, wire serialization and the
  result shapes returned to callers.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from mfssia_orchestrator.domain.models import (
    BatchResult,
    BusinessRejection,
    ChallengeInstance,
    ChallengeSet,
    ChallengeSetStatus,
    EvidenceItem,
    EvidencePayload,
    InstanceState,
    InstanceTerminal,
    NotFound,
    ServiceDisabled,
    TestResult,
    TransportFailure,
    UpstreamFailure,
    ValidationError,
    failure_to_dict,
)

_NOW = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)


@pytest.mark.parametrize(
    ("reported", "expected"),
    [
        ("VERIFIED", InstanceState.VERIFIED),
        ("completed", InstanceState.COMPLETED),
        (" FAILED ", InstanceState.FAILED),
        ("EXPIRED", InstanceState.EXPIRED),
        ("PENDING_CHALLENGE", InstanceState.CREATED),
        ("IN_PROGRESS", InstanceState.CREATED),
        ("AWAITING_EVIDENCE", InstanceState.CREATED),
        ("VERIFICATION_IN_PROGRESS", InstanceState.CREATED),
        ("SOMETHING_NEW", InstanceState.CREATED),
        (None, InstanceState.CREATED),
        (3, InstanceState.CREATED),
    ],
)
def test_instance_state_classification(reported: object, expected: InstanceState) -> None:
    assert InstanceState.classify(reported) is expected


def test_terminal_states_never_accept_evidence() -> None:
    for state in InstanceState:
        assert state.accepts_evidence is (state is InstanceState.CREATED)
    assert InstanceState.VERIFIED.is_auto_verified
    assert InstanceState.COMPLETED.is_auto_verified
    assert not InstanceState.FAILED.is_auto_verified


def test_challenge_set_from_mapping_accepts_codes_and_objects() -> None:
    challenge_set = ChallengeSet.from_mapping(
        {
            "code": "mfssia:Example-X",
            "name": "Example X",
            "mandatoryChallenges": ["C-1", {"code": "C-2", "name": "Second", "factorClass": "SourceIntegrity"}],
            "optionalChallenges": [{"code": "C-3"}],
            "requiredConfidence": 0.9,
            "status": "active",
            "applicableRoles": ["admin"],
            "version": 2,
        }
    )

    assert challenge_set.mandatory_challenges == ("C-1", "C-2")
    assert challenge_set.optional_challenges == ("C-3",)
    assert challenge_set.status is ChallengeSetStatus.ACTIVE
    assert challenge_set.version == "2"
    assert challenge_set.supports_role("Admin")
    assert not challenge_set.supports_role("MEMBER")
    assert [item.mandatory for item in challenge_set.challenges] == [True, False]
    assert challenge_set.challenges[0].factor_class == "SourceIntegrity"


def test_challenge_set_from_mapping_uses_lookup_code_when_body_omits_it() -> None:
    challenge_set = ChallengeSet.from_mapping({"mandatoryChallenges": []}, code="mfssia:Y")

    assert challenge_set.code == "mfssia:Y"
    assert challenge_set.name == "mfssia:Y"
    assert challenge_set.supports_role("ANYONE")


@pytest.mark.parametrize(
    "payload",
    [
        {"code": "x", "requiredConfidence": 1.5},
        {"code": "x", "mandatoryChallenges": "C-1"},
        {"code": "x", "status": "RETIRED"},
        {"code": ""},
    ],
)
def test_challenge_set_rejects_malformed_payloads(payload: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        ChallengeSet.from_mapping(payload)


def test_challenge_instance_from_mapping_defaults() -> None:
    instance = ChallengeInstance.from_mapping(
        {"id": 42, "nonce": "n-1", "state": "PENDING_CHALLENGE"},
        did="did:web:x:y",
        challenge_set="mfssia:Example-A",
        observed_at=_NOW,
    )

    assert instance.id == "42"
    assert instance.state is InstanceState.CREATED
    assert instance.reported_state == "PENDING_CHALLENGE"
    assert instance.created_at == _NOW
    assert instance.expires_at is None


def test_challenge_instance_requires_id() -> None:
    with pytest.raises(ValueError, match="ChallengeInstance.id"):
        ChallengeInstance.from_mapping({"state": "CREATED"}, did="d", challenge_set="s")


def test_evidence_item_wire_shape_is_camel_case() -> None:
    payload = EvidencePayload(
        source="mkmpol21.dao",
        source_domain_hash="0x" + "1" * 64,
        content_hash="0x" + "2" * 64,
        semantic_fingerprint="0x" + "3" * 64,
        similarity_score=0.05,
        claimed_publish_date=_NOW,
        server_timestamp=_NOW,
        archive_earliest_capture_date=_NOW,
    )

    wire = EvidenceItem.from_payload("C-A-1", payload).to_wire()

    assert wire == {
        "challengeId": "C-A-1",
        "evidence": {
            "source": "mkmpol21.dao",
            "sourceDomainHash": "0x" + "1" * 64,
            "contentHash": "0x" + "2" * 64,
            "semanticFingerprint": "0x" + "3" * 64,
            "similarityScore": 0.05,
            "claimedPublishDate": "2026-01-02T03:04:05.678Z",
            "serverTimestamp": "2026-01-02T03:04:05.678Z",
            "archiveEarliestCaptureDate": "2026-01-02T03:04:05.678Z",
        },
    }


def test_outcome_descriptions() -> None:
    assert (
        NotFound(subject="challenge set", key="mfssia:Nope", message="HTTP 404").describe()
        == "challenge set 'mfssia:Nope' not found: HTTP 404"
    )
    assert (
        BusinessRejection(stage="DID registration", message="DID exists").describe()
        == "DID registration rejected: DID exists"
    )
    assert UpstreamFailure(stage="evidence submission", status=409, hint="h").describe() == (
        "evidence submission failed with HTTP 409"
    )
    assert "timeout: slow" in TransportFailure(stage="x", message="timeout: slow").describe()
    assert ServiceDisabled().describe() == "MFSSIA service is not enabled"
    assert ValidationError("bad", index=3).describe() == "bad"


def test_failure_to_dict_carries_diagnostics() -> None:
    terminal = InstanceTerminal(state=InstanceState.EXPIRED, hint="retry", reported_state="EXPIRED")

    assert failure_to_dict(terminal) == {
        "kind": "instance_terminal",
        "error": terminal.describe(),
        "hint": "retry",
        "state": "EXPIRED",
    }
    assert failure_to_dict(ValidationError("bad", index=0))["index"] == 0


def test_batch_result_to_dict() -> None:
    ok = BatchResult(instance_id="i-1", success=True, submitted=("C-1", "C-2"), message="done")
    failed = BatchResult.from_failure(
        "i-1", UpstreamFailure(stage="evidence submission", status=422, hint="fix")
    )

    assert ok.to_dict() == {
        "success": True,
        "challengeInstanceId": "i-1",
        "submittedCount": 2,
        "submitted": ["C-1", "C-2"],
        "message": "done",
    }
    assert failed.to_dict()["kind"] == "upstream_failure"
    assert failed.to_dict()["status"] == 422
    assert failed.to_dict()["hint"] == "fix"


def test_test_result_serializes_camel_case_and_omits_absent_error() -> None:
    result = TestResult(
        challenge_set="mfssia:Example-A",
        did="did:web:x:y",
        did_registered=True,
        instance_created=True,
        instance_state="CREATED",
        evidence_submitted=True,
        attestation_found=True,
    )

    assert result.succeeded
    assert result.to_dict() == {
        "challengeSet": "mfssia:Example-A",
        "did": "did:web:x:y",
        "didRegistered": True,
        "instanceCreated": True,
        "instanceState": "CREATED",
        "evidenceSubmitted": True,
        "attestationFound": True,
    }
    failed = TestResult(challenge_set="s", error="boom")
    assert failed.to_dict()["error"] == "boom"
    assert not failed.succeeded
