"""
mfssia-orchestrator — challenge-instance manager

File: src/mfssia_orchestrator/lifecycle/instances.py

Purpose
- Open a challenge instance for a registered DID.
- Classify the oracle-reported state into the client state machine and decide
  what the run does next:
  - VERIFIED / COMPLETED: auto-verified, skip evidence and poll;
  - FAILED / EXPIRED: stop, report a terminal failure, do not poll;
  - anything else: submit evidence.
- Re-read state from the oracle before any submission that is not the
  immediate post-creation step. Observed state is never cached for decisions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Final

from mfssia_orchestrator.constants import CHALLENGE_INSTANCES_PATH
from mfssia_orchestrator.domain.models import (
    BusinessRejection,
    ChallengeInstance,
    InstanceState,
    InstanceTerminal,
    TransportFailure,
    UpstreamFailure,
    utc_now,
)
from mfssia_orchestrator.lifecycle.outcomes import rejection_outcome, transport_outcome
from mfssia_orchestrator.observability.events import EventLog, EventStatus, FlowEventType
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.envelope import Ok, unwrap_state
from mfssia_orchestrator.oracle.errors import OracleResponseError, OracleTransportError

logger = logging.getLogger(__name__)

CREATE_STAGE: Final[str] = "instance creation"
STATE_STAGE: Final[str] = "instance state check"

AUTO_VERIFIED_HINT: Final[str] = (
    "Instance is already auto-verified; await the attestation via the notification channel."
)
FAILED_HINT: Final[str] = "Challenge instance failed verification."
EXPIRED_HINT: Final[str] = "Create a new challenge instance to retry."

TERMINAL_HINTS: Final[Mapping[InstanceState, str]] = {
    InstanceState.VERIFIED: AUTO_VERIFIED_HINT,
    InstanceState.COMPLETED: AUTO_VERIFIED_HINT,
    InstanceState.FAILED: FAILED_HINT,
    InstanceState.EXPIRED: EXPIRED_HINT,
}


class InstanceDecision(StrEnum):
    SUBMIT_EVIDENCE = "submit_evidence"
    AWAIT_ATTESTATION = "await_attestation"
    STOP = "stop"


def decide(state: InstanceState) -> InstanceDecision:
    """What a run does after observing ``state``."""
    if state.is_auto_verified:
        return InstanceDecision.AWAIT_ATTESTATION
    if state.is_terminal:
        return InstanceDecision.STOP
    return InstanceDecision.SUBMIT_EVIDENCE


def terminal_hint(state: InstanceState) -> str:
    return TERMINAL_HINTS.get(state, "")


def terminal_outcome(state: InstanceState, reported_state: str | None = None) -> InstanceTerminal:
    return InstanceTerminal(state=state, hint=terminal_hint(state), reported_state=reported_state)


@dataclass(frozen=True, slots=True)
class InstanceStatus:
    """One fresh observation of an instance's state."""

    instance_id: str
    state: InstanceState
    reported_state: str


CreateOutcome = ChallengeInstance | BusinessRejection | UpstreamFailure | TransportFailure
StateOutcome = InstanceStatus | BusinessRejection | UpstreamFailure | TransportFailure


class ChallengeInstanceManager:
    def __init__(
        self,
        client: OracleClient,
        *,
        clock: Callable[[], datetime] = utc_now,
        events: EventLog | None = None,
    ) -> None:
        self._client = client
        self._clock = clock
        self._events = events
        # Last reported state per open instance, used only to emit change events.
        self._last_reported: dict[str, str] = {}

    async def create(self, did: str, challenge_set: str) -> CreateOutcome:
        try:
            envelope = await self._client.create_instance(did, challenge_set)
        except OracleTransportError as exc:
            return self._creation_failed(did, challenge_set, transport_outcome(CREATE_STAGE, exc))

        if not isinstance(envelope, Ok):
            return self._creation_failed(
                did, challenge_set, rejection_outcome(CREATE_STAGE, envelope)
            )

        data = envelope.data
        if not isinstance(data, Mapping):
            raise OracleResponseError(
                f"instance creation returned {type(data).__name__} data, expected an object",
                endpoint=f"POST {CHALLENGE_INSTANCES_PATH}",
                http_status=200,
            )
        try:
            instance = ChallengeInstance.from_mapping(
                data, did=did, challenge_set=challenge_set, observed_at=self._clock()
            )
        except ValueError as exc:
            raise OracleResponseError(
                f"malformed challenge instance: {exc}",
                endpoint=f"POST {CHALLENGE_INSTANCES_PATH}",
                http_status=200,
            ) from exc

        if not instance.state.is_terminal:
            self._last_reported[instance.id] = instance.reported_state
        logger.info(
            "challenge instance created",
            extra={
                "did": did,
                "challenge_set": challenge_set,
                "instance_id": instance.id,
                "state": instance.reported_state,
            },
        )
        if self._events is not None:
            self._events.emit(
                FlowEventType.INSTANCE_CREATED,
                did=did,
                instance_id=instance.id,
                challenge_set=challenge_set,
                data={"state": instance.reported_state},
            )
        return instance

    async def fetch_state(self, instance_id: str) -> StateOutcome:
        """Read the current state from the oracle; the reply is never cached."""
        try:
            envelope = await self._client.get_instance(instance_id)
        except OracleTransportError as exc:
            return transport_outcome(STATE_STAGE, exc)
        if not isinstance(envelope, Ok):
            return rejection_outcome(STATE_STAGE, envelope)

        raw_state = unwrap_state(envelope.body or {})
        reported = (
            raw_state.strip()
            if isinstance(raw_state, str) and raw_state.strip()
            else InstanceState.CREATED.value
        )
        status = InstanceStatus(
            instance_id=instance_id,
            state=InstanceState.classify(reported),
            reported_state=reported,
        )
        self._record_observation(status)
        return status

    async def ensure_accepts_evidence(self, instance_id: str) -> InstanceTerminal | None:
        """
        Fresh state check ahead of a submission.

        Only an observed terminal state blocks: it comes back as
        ``InstanceTerminal`` so the caller can refuse without touching the
        evidence endpoint. ``None`` means go ahead, including when the check
        itself failed; the oracle then judges the submission on its own.
        """
        observed = await self.fetch_state(instance_id)
        if not isinstance(observed, InstanceStatus):
            logger.warning(
                "instance state check failed; submitting anyway",
                extra={"instance_id": instance_id, "outcome": observed.kind},
            )
            return None
        if observed.state.accepts_evidence:
            return None
        logger.info(
            "submission refused for terminal instance",
            extra={"instance_id": instance_id, "state": observed.reported_state},
        )
        return terminal_outcome(observed.state, observed.reported_state)

    def _record_observation(self, status: InstanceStatus) -> None:
        # Terminal instances are forgotten once observed.
        if status.state.is_terminal:
            previous = self._last_reported.pop(status.instance_id, None)
        else:
            previous = self._last_reported.get(status.instance_id)
            self._last_reported[status.instance_id] = status.reported_state
        if previous is None or previous == status.reported_state:
            return
        logger.info(
            "challenge instance state changed",
            extra={
                "instance_id": status.instance_id,
                "previous_state": previous,
                "state": status.reported_state,
            },
        )
        if self._events is not None:
            self._events.emit(
                FlowEventType.INSTANCE_STATE_CHANGED,
                instance_id=status.instance_id,
                data={"from": previous, "to": status.reported_state},
            )

    def _creation_failed(
        self,
        did: str,
        challenge_set: str,
        outcome: BusinessRejection | UpstreamFailure | TransportFailure,
    ) -> CreateOutcome:
        logger.warning(
            "challenge instance creation failed",
            extra={"did": did, "challenge_set": challenge_set, "outcome": outcome.kind},
        )
        if self._events is not None:
            self._events.emit(
                FlowEventType.INSTANCE_CREATED,
                status=EventStatus.ERROR,
                did=did,
                challenge_set=challenge_set,
                data={"error": outcome.describe()},
            )
        return outcome


__all__ = [
    "AUTO_VERIFIED_HINT",
    "CREATE_STAGE",
    "ChallengeInstanceManager",
    "CreateOutcome",
    "EXPIRED_HINT",
    "FAILED_HINT",
    "InstanceDecision",
    "InstanceStatus",
    "STATE_STAGE",
    "StateOutcome",
    "TERMINAL_HINTS",
    "decide",
    "terminal_hint",
    "terminal_outcome",
]
