"""
mfssia-orchestrator — evidence builder and submitter

File: src/mfssia_orchestrator/lifecycle/evidence.py

Purpose
- Build evidence payloads whose fingerprints are derived from the DID and the
  instance nonce, so evidence cannot be replayed across instances.
- Choose which mandatory challenges to answer (``all`` or ``first-n``).
- Submit evidence one item per request, as one atomic batch, or item by item
  in sequence.

Every submission path, in order:
1. service gate: a disabled service fails with ``ServiceDisabled``;
2. local validation: an empty batch or an element missing ``challengeId`` or
   ``evidence`` fails with ``ValidationError`` naming the index;
3. fresh instance-state check: an observed terminal instance fails with
   ``InstanceTerminal`` and the evidence endpoint is never called;
4. exactly one POST per single item, or one POST for the whole batch.

Steps 1 and 2 never touch the network.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Final

from mfssia_orchestrator.constants import (
    DEFAULT_EVIDENCE_SOURCE,
    DEFAULT_SIMILARITY_SCORE,
    SMOKE_FIRST_N,
)
from mfssia_orchestrator.domain.models import (
    BatchResult,
    ChallengeSet,
    EvidenceItem,
    EvidencePayload,
    Failure,
    InstanceTerminal,
    JSONValue,
    ServiceDisabled,
    SubmissionMode,
    Submitted,
    ValidationError,
    utc_now,
)
from mfssia_orchestrator.lifecycle.instances import ChallengeInstanceManager
from mfssia_orchestrator.lifecycle.outcomes import rejection_outcome, transport_outcome
from mfssia_orchestrator.observability.events import EventLog, EventStatus, FlowEventType
from mfssia_orchestrator.oracle.client import OracleClient, SingleWireFormat
from mfssia_orchestrator.oracle.envelope import Ok
from mfssia_orchestrator.oracle.errors import OracleTransportError
from mfssia_orchestrator.oracle.fingerprint import FingerprintAlgorithm, get_encoder

logger = logging.getLogger(__name__)

STAGE: Final[str] = "evidence submission"
BATCH_SUCCESS_MESSAGE: Final[str] = "All evidence submitted successfully"
EMPTY_RESPONSES_MESSAGE: Final[str] = "responses must be a non-empty array"
MISSING_INSTANCE_MESSAGE: Final[str] = "challengeInstanceId is required"


class ChallengeSelection(StrEnum):
    ALL = "all"
    FIRST_N = "first-n"


@dataclass(frozen=True, slots=True)
class EvidencePolicy:
    """What to submit and how; built from the ``evidence`` config section."""

    selection: ChallengeSelection = ChallengeSelection.ALL
    first_n: int = SMOKE_FIRST_N
    source_label: str = DEFAULT_EVIDENCE_SOURCE
    similarity_score: float = DEFAULT_SIMILARITY_SCORE
    fingerprint_algorithm: FingerprintAlgorithm = FingerprintAlgorithm.HEX
    submission_mode: SubmissionMode = SubmissionMode.SINGLE
    single_wire_format: SingleWireFormat = SingleWireFormat.FLAT

    def __post_init__(self) -> None:
        if self.first_n < 1:
            raise ValueError("first_n must be >= 1")
        if not 0.0 <= self.similarity_score <= 1.0:
            raise ValueError("similarity_score must be within [0, 1]")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> EvidencePolicy:
        section = config["evidence"]
        return cls(
            selection=ChallengeSelection(section["challenges_to_submit"]),
            first_n=section["first_n"],
            source_label=section["source_label"],
            similarity_score=section["similarity_score"],
            fingerprint_algorithm=FingerprintAlgorithm(section["fingerprint_algorithm"]),
            submission_mode=SubmissionMode(section["submission_mode"]),
            single_wire_format=SingleWireFormat(section["single_wire_format"]),
        )


def select_challenges(challenge_set: ChallengeSet, policy: EvidencePolicy) -> tuple[str, ...]:
    """Mandatory challenge codes to answer, in catalog order."""
    mandatory = challenge_set.mandatory_challenges
    if policy.selection is ChallengeSelection.FIRST_N:
        return mandatory[: policy.first_n]
    return mandatory


def build_evidence(
    challenge_id: str,
    *,
    did: str,
    nonce: str,
    policy: EvidencePolicy,
    now: datetime,
) -> EvidenceItem:
    encoder = get_encoder(policy.fingerprint_algorithm)
    payload = EvidencePayload(
        source=policy.source_label,
        source_domain_hash=encoder(f"source:{did}"),
        content_hash=encoder(f"content:{nonce}"),
        semantic_fingerprint=encoder(f"fp:{did}"),
        similarity_score=policy.similarity_score,
        claimed_publish_date=now,
        server_timestamp=now,
        archive_earliest_capture_date=now,
    )
    return EvidenceItem.from_payload(challenge_id, payload)


def build_evidence_items(
    challenge_ids: Sequence[str],
    *,
    did: str,
    nonce: str,
    policy: EvidencePolicy,
    clock: Callable[[], datetime] = utc_now,
) -> tuple[EvidenceItem, ...]:
    now = clock()
    return tuple(
        build_evidence(challenge_id, did=did, nonce=nonce, policy=policy, now=now)
        for challenge_id in challenge_ids
    )


def validate_responses(responses: object) -> tuple[EvidenceItem, ...] | ValidationError:
    """
    Check a batch before anything is sent.

    Elements may be ``EvidenceItem`` values or ``{challengeId, evidence}``
    mappings as received from an API caller.
    """
    if (
        isinstance(responses, (str, bytes, Mapping))
        or not isinstance(responses, Sequence)
        or not responses
    ):
        return ValidationError(EMPTY_RESPONSES_MESSAGE)

    items: list[EvidenceItem] = []
    for index, element in enumerate(responses):
        item = _coerce_item(element)
        if item is None:
            return ValidationError(
                f"Response at index {index} is missing challengeId or evidence", index=index
            )
        items.append(item)
    return tuple(items)


def _coerce_item(element: object) -> EvidenceItem | None:
    if isinstance(element, EvidenceItem):
        challenge_id: object = element.challenge_id
        evidence: object = element.evidence
    elif isinstance(element, Mapping):
        challenge_id = element.get("challengeId")
        evidence = element.get("evidence")
    else:
        return None
    if not isinstance(challenge_id, str) or not challenge_id.strip():
        return None
    if not isinstance(evidence, Mapping):
        return None
    return EvidenceItem(challenge_id=challenge_id, evidence=evidence)


SingleOutcome = Submitted | Failure


class EvidenceSubmitter:
    def __init__(
        self,
        client: OracleClient,
        instances: ChallengeInstanceManager,
        *,
        enabled: bool = True,
        wire_format: SingleWireFormat = SingleWireFormat.FLAT,
        events: EventLog | None = None,
    ) -> None:
        self._client = client
        self._instances = instances
        self.enabled = enabled
        self.wire_format = wire_format
        self._events = events

    async def submit(
        self,
        instance_id: str,
        item: EvidenceItem,
        *,
        precheck: bool = True,
    ) -> SingleOutcome:
        """Submit one evidence item; ``precheck=False`` only right after creation."""
        refused = self._refuse_locally(instance_id)
        if refused is not None:
            return refused
        validated = validate_responses([item])
        if isinstance(validated, ValidationError):
            return validated

        if precheck:
            terminal = await self._instances.ensure_accepts_evidence(instance_id)
            if terminal is not None:
                return terminal

        ids = (item.challenge_id,)
        self._emit(FlowEventType.SUBMISSION_STARTED, instance_id, ids, EventStatus.PENDING)
        try:
            envelope = await self._client.submit_evidence(
                instance_id, validated[0], wire_format=self.wire_format
            )
        except OracleTransportError as exc:
            return self._failed(instance_id, ids, transport_outcome(STAGE, exc))
        if not isinstance(envelope, Ok):
            return self._failed(instance_id, ids, rejection_outcome(STAGE, envelope))

        self._emit(FlowEventType.SUBMISSION_SUCCESS, instance_id, ids, EventStatus.SUCCESS)
        logger.info(
            "evidence accepted",
            extra={"instance_id": instance_id, "challenge_id": item.challenge_id},
        )
        return Submitted(
            instance_id=instance_id,
            challenge_ids=ids,
            data=envelope.data,
            message=envelope.message,
        )

    async def submit_batch(
        self,
        instance_id: str,
        responses: Sequence[EvidenceItem | Mapping[str, JSONValue]],
        *,
        precheck: bool = True,
    ) -> BatchResult:
        """Validate, check state, then send every item in one atomic request."""
        refused = self._refuse_locally(instance_id)
        if refused is not None:
            return BatchResult.from_failure(instance_id, refused)
        validated = validate_responses(responses)
        if isinstance(validated, ValidationError):
            logger.warning(
                "batch rejected before submission",
                extra={"instance_id": instance_id, "index": validated.index},
            )
            return BatchResult.from_failure(instance_id, validated)

        if precheck:
            terminal = await self._instances.ensure_accepts_evidence(instance_id)
            if terminal is not None:
                return BatchResult.from_failure(instance_id, terminal)

        ids = tuple(item.challenge_id for item in validated)
        self._emit(FlowEventType.SUBMISSION_STARTED, instance_id, ids, EventStatus.PENDING)
        try:
            envelope = await self._client.submit_evidence_batch(instance_id, validated)
        except OracleTransportError as exc:
            failure = self._failed(instance_id, ids, transport_outcome(STAGE, exc))
            return BatchResult.from_failure(instance_id, failure)
        if not isinstance(envelope, Ok):
            failure = self._failed(instance_id, ids, rejection_outcome(STAGE, envelope))
            return BatchResult.from_failure(instance_id, failure)

        self._emit(FlowEventType.SUBMISSION_SUCCESS, instance_id, ids, EventStatus.SUCCESS)
        logger.info(
            "evidence batch accepted",
            extra={"instance_id": instance_id, "item_count": len(ids)},
        )
        return BatchResult(
            instance_id=instance_id,
            success=True,
            submitted=ids,
            data=envelope.data,
            message=BATCH_SUCCESS_MESSAGE,
        )

    async def submit_sequentially(
        self,
        instance_id: str,
        responses: Sequence[EvidenceItem | Mapping[str, JSONValue]],
        *,
        precheck_first: bool = True,
    ) -> BatchResult:
        """
        Submit items one request at a time.

        Every item after the first re-checks instance state. A rejected item
        does not stop the remaining ones; a terminal instance does. The result
        succeeds only when every item was accepted, and ``submitted`` lists the
        accepted codes either way.
        """
        refused = self._refuse_locally(instance_id)
        if refused is not None:
            return BatchResult.from_failure(instance_id, refused)
        validated = validate_responses(responses)
        if isinstance(validated, ValidationError):
            return BatchResult.from_failure(instance_id, validated)

        accepted: list[str] = []
        first_failure: Failure | None = None
        last_data: JSONValue = None
        for position, item in enumerate(validated):
            outcome = await self.submit(
                instance_id, item, precheck=precheck_first or position > 0
            )
            if isinstance(outcome, Submitted):
                accepted.append(item.challenge_id)
                last_data = outcome.data
                continue
            if first_failure is None:
                first_failure = outcome
            logger.warning(
                "evidence item not accepted",
                extra={
                    "instance_id": instance_id,
                    "challenge_id": item.challenge_id,
                    "outcome": outcome.kind,
                },
            )
            if isinstance(outcome, InstanceTerminal):
                break

        return BatchResult(
            instance_id=instance_id,
            success=first_failure is None,
            submitted=tuple(accepted),
            data=last_data,
            message=BATCH_SUCCESS_MESSAGE if first_failure is None else None,
            failure=first_failure,
        )

    def _refuse_locally(self, instance_id: str) -> Failure | None:
        if not self.enabled:
            return ServiceDisabled()
        if not isinstance(instance_id, str) or not instance_id.strip():
            return ValidationError(MISSING_INSTANCE_MESSAGE)
        return None

    def _failed(self, instance_id: str, ids: tuple[str, ...], failure: Failure) -> Failure:
        logger.warning(
            "evidence submission failed",
            extra={"instance_id": instance_id, "outcome": failure.kind},
        )
        self._emit(
            FlowEventType.SUBMISSION_FAILED,
            instance_id,
            ids,
            EventStatus.ERROR,
            error=failure.describe(),
        )
        return failure

    def _emit(
        self,
        event_type: FlowEventType,
        instance_id: str,
        ids: tuple[str, ...],
        status: EventStatus,
        *,
        error: str | None = None,
    ) -> None:
        if self._events is None:
            return
        data: dict[str, object] = {"challengeIds": list(ids)}
        if error is not None:
            data["error"] = error
        self._events.emit(event_type, status=status, instance_id=instance_id, data=data)


__all__ = [
    "BATCH_SUCCESS_MESSAGE",
    "ChallengeSelection",
    "EMPTY_RESPONSES_MESSAGE",
    "EvidencePolicy",
    "EvidenceSubmitter",
    "MISSING_INSTANCE_MESSAGE",
    "STAGE",
    "SingleOutcome",
    "build_evidence",
    "build_evidence_items",
    "select_challenges",
    "validate_responses",
]
