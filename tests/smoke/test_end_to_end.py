"""
mfssia-orchestrator — end-to-end smoke test

File: tests/smoke/test_end_to_end.py

Purpose
- Validate a full config-driven orchestration across several challenge sets:
  controller wiring from config, batch evidence, bounded concurrency, the
  event stream and the JSON log, against a routed fake oracle.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from mfssia_orchestrator.config.schema import assert_valid_config, default_config, merge_config
from mfssia_orchestrator.constants import (
    ATTESTATIONS_BY_DID_PATH,
    CHALLENGE_EVIDENCE_PATH,
    CHALLENGE_INSTANCES_PATH,
    IDENTITY_REGISTER_PATH,
)
from mfssia_orchestrator.control_plane import ChallengeFlowController
from mfssia_orchestrator.observability.events import EventLog, FlowEvent, FlowEventType
from mfssia_orchestrator.observability.logging import setup_logging, shutdown_logging

_SETS = ("mfssia:Example-A", "mfssia:Example-D")


def _config(tmp_path: Path) -> dict[str, Any]:
    return dict(
        assert_valid_config(
            merge_config(
                default_config(),
                {
                    "catalog": {"mode": "local"},
                    "evidence": {"submission_mode": "batch"},
                    "polling": {"max_attempts": 4, "interval_seconds": 2.0},
                    "runner": {"max_concurrency": 2, "did_prefix": "did:web:smoke"},
                    "observability": {"log_dir": tmp_path.as_posix()},
                },
            )
        )
    )


@pytest.mark.smoke
async def test_end_to_end_batch_flow_over_two_sets(
    tmp_path: Path, oracle: Any, sleep_recorder: Any
) -> None:
    config = _config(tmp_path)
    oracle.ok("POST", IDENTITY_REGISTER_PATH, {"registered": True})
    oracle.ok(
        "POST",
        CHALLENGE_INSTANCES_PATH,
        {"id": "inst-smoke", "nonce": "0x5eed", "state": "PENDING_CHALLENGE"},
    )
    oracle.ok("POST", CHALLENGE_EVIDENCE_PATH, {"accepted": True})
    oracle.ok("GET", ATTESTATIONS_BY_DID_PATH, [])
    oracle.ok("GET", ATTESTATIONS_BY_DID_PATH, [{"id": "att-1", "confidence": 0.9}])

    events = EventLog()
    seen: list[FlowEvent] = []
    events.subscribe(None, seen.append)

    handle = setup_logging(config["observability"], run_id="run-smoke")
    try:
        async with ChallengeFlowController.from_config(
            config, transport=oracle, events=events, sleep=sleep_recorder
        ) as controller:
            results = await controller.run_many(list(_SETS))
    finally:
        shutdown_logging(handle)

    assert [result.challenge_set for result in results] == list(_SETS)
    assert all(result.succeeded for result in results)
    for result in results:
        assert str(result.did).startswith("did:web:smoke:test-")
    assert results[0].did != results[1].did

    evidence_posts = oracle.calls_to("POST", CHALLENGE_EVIDENCE_PATH)
    assert len(evidence_posts) == 2
    submitted_ids = sorted(
        [item["challengeId"] for item in call.json_body["responses"]] for call in evidence_posts
    )
    assert submitted_ids == [
        ["mfssia:C-A-1", "mfssia:C-A-2", "mfssia:C-A-3", "mfssia:C-A-4", "mfssia:C-A-5", "mfssia:C-A-6"],
        ["mfssia:C-D-1", "mfssia:C-D-2", "mfssia:C-D-3", "mfssia:C-D-5", "mfssia:C-D-6", "mfssia:C-D-8"],
    ]
    assert all(call.json_body["challengeInstanceId"] == "inst-smoke" for call in evidence_posts)
    assert oracle.calls_to("GET", f"{CHALLENGE_INSTANCES_PATH}/") == []
    assert sleep_recorder.calls and set(sleep_recorder.calls) == {2.0}

    success_events = [e for e in seen if e.event_type is FlowEventType.ATTESTATION_SUCCESS]
    assert sorted(str(e.did) for e in success_events) == sorted(str(r.did) for r in results)

    records = [
        json.loads(line)
        for line in handle.log_path.read_text(encoding="utf-8").splitlines()
    ]
    started = [r for r in records if r["message"] == "challenge flow started"]
    assert sorted(r["challenge_set"] for r in started) == list(_SETS)
    assert all(r["run_id"] for r in records)


@pytest.mark.smoke
async def test_end_to_end_unknown_set_does_not_block_others(
    tmp_path: Path, oracle: Any, sleep_recorder: Any
) -> None:
    config = _config(tmp_path)
    oracle.ok("POST", IDENTITY_REGISTER_PATH)
    oracle.ok("POST", CHALLENGE_INSTANCES_PATH, {"id": "inst-smoke", "nonce": "0x1"})
    oracle.ok("POST", CHALLENGE_EVIDENCE_PATH)
    oracle.ok("GET", ATTESTATIONS_BY_DID_PATH, [{"id": "att-2"}])

    async with ChallengeFlowController.from_config(
        config, transport=oracle, sleep=sleep_recorder
    ) as controller:
        missing, present = await controller.run_many(["mfssia:Nope", "mfssia:Example-A"])

    assert missing.error is not None
    assert "mfssia:Nope" in missing.error
    assert not missing.did_registered
    assert present.succeeded
    assert len(oracle.calls_to("POST", IDENTITY_REGISTER_PATH)) == 1
