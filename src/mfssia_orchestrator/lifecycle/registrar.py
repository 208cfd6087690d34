"""Identity registration: bind a fresh DID to a requested challenge set."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Final

from mfssia_orchestrator.domain.models import (
    BusinessRejection,
    Registered,
    TransportFailure,
    UpstreamFailure,
)
from mfssia_orchestrator.lifecycle.outcomes import rejection_outcome, transport_outcome
from mfssia_orchestrator.observability.events import EventLog, EventStatus, FlowEventType
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.envelope import Ok
from mfssia_orchestrator.oracle.errors import OracleTransportError

logger = logging.getLogger(__name__)

STAGE: Final[str] = "DID registration"

RegisterOutcome = Registered | BusinessRejection | UpstreamFailure | TransportFailure


class IdentityRegistrar:
    """
    Register identities with the oracle.

    Success is the explicit ``success`` flag in the reply, never the HTTP
    status alone. A rejection is returned verbatim and is never retried: the
    recovery path is a new DID.
    """

    def __init__(self, client: OracleClient, *, events: EventLog | None = None) -> None:
        self._client = client
        self._events = events

    async def register(self, did: str, challenge_set: str) -> RegisterOutcome:
        try:
            envelope = await self._client.register_identity(did, challenge_set)
        except OracleTransportError as exc:
            outcome: RegisterOutcome = transport_outcome(STAGE, exc)
        else:
            if isinstance(envelope, Ok):
                outcome = Registered(did=did, challenge_set=challenge_set, message=envelope.message)
            else:
                outcome = rejection_outcome(STAGE, envelope)

        if isinstance(outcome, Registered):
            logger.info("identity registered", extra={"did": did, "challenge_set": challenge_set})
            self._emit(did, challenge_set, EventStatus.SUCCESS, {})
        else:
            logger.warning(
                "identity registration failed",
                extra={"did": did, "challenge_set": challenge_set, "outcome": outcome.kind},
            )
            self._emit(did, challenge_set, EventStatus.ERROR, {"error": outcome.describe()})
        return outcome

    def _emit(
        self, did: str, challenge_set: str, status: EventStatus, data: Mapping[str, object]
    ) -> None:
        if self._events is None:
            return
        self._events.emit(
            FlowEventType.DID_REGISTERED,
            status=status,
            did=did,
            challenge_set=challenge_set,
            data=data,
        )


__all__ = ["IdentityRegistrar", "RegisterOutcome", "STAGE"]
