"""
mfssia-orchestrator — attestation poller

File: src/mfssia_orchestrator/lifecycle/poller.py

Purpose
- Look for an attestation for a DID under a bounded budget: sleep the fixed
  interval, GET, stop at the first non-empty list. No backoff.
- Exhausting the budget is ``NotFound``, an ordinary outcome; callers may poll
  again later with a fresh budget.
- A caller may also bound the whole poll with ``timeout_seconds`` and abort it
  with a ``CancellationToken``; cancellation propagates as
  ``asyncio.CancelledError``.

Sleep and clock are injectable so tests simulate time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from mfssia_orchestrator.constants import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_POLL_MAX_ATTEMPTS
from mfssia_orchestrator.domain.models import AttestationFound, JSONValue, NotFound
from mfssia_orchestrator.observability.events import EventLog, EventStatus, FlowEventType
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.envelope import Envelope, Ok
from mfssia_orchestrator.oracle.errors import OracleTransportError, SleepFn
from mfssia_orchestrator.utils.concurrency import (
    CancellationToken,
    cancellable_sleep,
    run_with_timeout,
)

logger = logging.getLogger(__name__)

_SUBJECT: Final[str] = "attestation"

PollOutcome = AttestationFound | NotFound


@dataclass(frozen=True, slots=True)
class PollPolicy:
    max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PollPolicy:
        section = config["polling"]
        return cls(
            max_attempts=section["max_attempts"],
            interval_seconds=section["interval_seconds"],
            timeout_seconds=section.get("timeout_seconds"),
        )


class AttestationPoller:
    def __init__(
        self,
        client: OracleClient,
        *,
        policy: PollPolicy | None = None,
        sleep: SleepFn | None = None,
        clock: Callable[[], float] = time.monotonic,
        events: EventLog | None = None,
    ) -> None:
        self._client = client
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self._clock = clock
        self._events = events

    async def poll(
        self,
        did: str,
        *,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PollOutcome:
        policy = PollPolicy(
            max_attempts=self.policy.max_attempts if max_attempts is None else max_attempts,
            interval_seconds=(
                self.policy.interval_seconds if interval_seconds is None else interval_seconds
            ),
            timeout_seconds=self.policy.timeout_seconds if timeout_seconds is None else timeout_seconds,
        )
        sleep = self._resolve_sleep(cancel_token)
        deadline = (
            None if policy.timeout_seconds is None else self._clock() + policy.timeout_seconds
        )

        attempts = 0
        reason = f"no attestation after {policy.max_attempts} attempts"
        while attempts < policy.max_attempts:
            if deadline is not None and self._clock() + policy.interval_seconds > deadline:
                reason = f"deadline reached after {attempts} attempts"
                break

            await sleep(policy.interval_seconds)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            attempts += 1
            self._emit(FlowEventType.ATTESTATION_FETCHING, did, EventStatus.PENDING, attempt=attempts)
            attestations = await self._fetch(did, attempts, deadline, cancel_token)
            if attestations:
                logger.info(
                    "attestation found",
                    extra={"did": did, "attempts": attempts, "count": len(attestations)},
                )
                self._emit(
                    FlowEventType.ATTESTATION_SUCCESS, did, EventStatus.SUCCESS, attempt=attempts
                )
                return AttestationFound(did=did, attestations=attestations, attempts=attempts)

        logger.info("attestation not found", extra={"did": did, "attempts": attempts})
        self._emit(
            FlowEventType.ATTESTATION_FAILED,
            did,
            EventStatus.ERROR,
            attempt=attempts,
            reason=reason,
        )
        return NotFound(subject=_SUBJECT, key=did, message=reason, attempts=attempts)

    async def _fetch(
        self,
        did: str,
        attempt: int,
        deadline: float | None,
        cancel_token: CancellationToken | None,
    ) -> tuple[Mapping[str, JSONValue], ...]:
        try:
            if deadline is None:
                envelope = await self._client.get_attestations(did)
            else:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return ()
                envelope = await run_with_timeout(
                    self._client.get_attestations(did), remaining, cancel_token
                )
        except OracleTransportError as exc:
            logger.warning(
                "attestation fetch failed",
                extra={"did": did, "attempt": attempt, "error_code": exc.code},
            )
            return ()
        except TimeoutError:
            logger.warning("attestation fetch hit the poll deadline", extra={"did": did})
            return ()
        return _attestations_of(envelope)

    def _resolve_sleep(self, cancel_token: CancellationToken | None) -> SleepFn:
        if self._sleep is not None:
            return self._sleep
        if cancel_token is not None:
            return cancellable_sleep(cancel_token)
        return asyncio.sleep

    def _emit(
        self, event_type: FlowEventType, did: str, status: EventStatus, **data: object
    ) -> None:
        if self._events is not None:
            self._events.emit(event_type, status=status, did=did, data=data)


def _attestations_of(envelope: Envelope) -> tuple[Mapping[str, JSONValue], ...]:
    # 404 and other non-2xx replies mean "not yet".
    if not isinstance(envelope, Ok) or not isinstance(envelope.data, list):
        return ()
    return tuple(
        item if isinstance(item, Mapping) else {"value": item} for item in envelope.data
    )


__all__ = ["AttestationPoller", "PollOutcome", "PollPolicy"]
