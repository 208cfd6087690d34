"""Typed endpoint wrappers over an ``OracleTransport``; each reply is decoded once."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from urllib.parse import quote

from mfssia_orchestrator.constants import (
    ATTESTATIONS_BY_DID_PATH,
    CHALLENGE_EVIDENCE_PATH,
    CHALLENGE_INSTANCES_PATH,
    CHALLENGE_SETS_PATH,
    HEALTHCHECK_PATH,
    IDENTITY_REGISTER_PATH,
)
from mfssia_orchestrator.domain.models import EvidenceItem, JSONValue
from mfssia_orchestrator.oracle.envelope import Envelope, decode
from mfssia_orchestrator.oracle.transport import OracleTransport


class SingleWireFormat(StrEnum):
    """Body layout for a single-item evidence submission."""

    FLAT = "flat"
    RESPONSES = "responses"


class OracleClient:
    """One method per consumed oracle endpoint."""

    def __init__(self, transport: OracleTransport) -> None:
        self._transport = transport

    async def healthcheck(self) -> Envelope:
        response = await self._transport.request("GET", HEALTHCHECK_PATH)
        return decode(response)

    async def list_challenge_sets(self) -> Envelope:
        response = await self._transport.request("GET", CHALLENGE_SETS_PATH)
        return decode(response)

    async def get_challenge_set(self, code: str) -> Envelope:
        response = await self._transport.request(
            "GET", f"{CHALLENGE_SETS_PATH}/{quote(code, safe='')}"
        )
        return decode(response)

    async def register_identity(self, did: str, challenge_set: str) -> Envelope:
        # The register endpoint rejects any field beyond these two.
        body: dict[str, JSONValue] = {"did": did, "requestedChallengeSet": challenge_set}
        response = await self._transport.request(
            "POST", IDENTITY_REGISTER_PATH, json_body=body
        )
        return decode(response, require_success_flag=True)

    async def create_instance(self, did: str, challenge_set: str) -> Envelope:
        response = await self._transport.request(
            "POST",
            CHALLENGE_INSTANCES_PATH,
            json_body={"did": did, "challengeSet": challenge_set},
        )
        return decode(response, require_success_flag=True)

    async def get_instance(self, instance_id: str) -> Envelope:
        response = await self._transport.request(
            "GET", f"{CHALLENGE_INSTANCES_PATH}/{quote(instance_id, safe='')}"
        )
        return decode(response)

    async def submit_evidence(
        self,
        instance_id: str,
        item: EvidenceItem,
        *,
        wire_format: SingleWireFormat = SingleWireFormat.FLAT,
    ) -> Envelope:
        body: dict[str, JSONValue]
        if wire_format is SingleWireFormat.RESPONSES:
            body = {"challengeInstanceId": instance_id, "responses": [item.to_wire()]}
        else:
            body = {"challengeInstanceId": instance_id, **item.to_wire()}
        response = await self._transport.request(
            "POST", CHALLENGE_EVIDENCE_PATH, json_body=body
        )
        return decode(response, require_success_flag=True)

    async def submit_evidence_batch(
        self, instance_id: str, items: Sequence[EvidenceItem]
    ) -> Envelope:
        body: dict[str, JSONValue] = {
            "challengeInstanceId": instance_id,
            "responses": [item.to_wire() for item in items],
        }
        response = await self._transport.request(
            "POST", CHALLENGE_EVIDENCE_PATH, json_body=body
        )
        return decode(response, require_success_flag=True)

    async def get_attestations(self, did: str) -> Envelope:
        response = await self._transport.request(
            "GET", f"{ATTESTATIONS_BY_DID_PATH}/{quote(did, safe='')}"
        )
        return decode(response)


__all__ = ["OracleClient", "SingleWireFormat"]
