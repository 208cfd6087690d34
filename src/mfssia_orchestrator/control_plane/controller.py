"""
mfssia-orchestrator — challenge-flow controller

File: src/mfssia_orchestrator/control_plane/controller.py

Purpose
- Drive one challenge set end to end: resolve -> mint DID -> register ->
  create instance -> (conditionally) submit evidence -> poll attestation.
- Each stage's outcome gates the next. The first failing stage writes
  ``error`` and the run stops; every earlier stage's progress stays in the
  returned ``TestResult``.
- Expose the second entrypoint, ``submit_evidence_batch``, for callers that
  already hold an instance id.
- Record the post-creation instance decision as a machine-parseable
  `structlog` event (`control_plane_instance_decision`).

Failure boundary
- Stage outcomes are values. Unexpected exceptions are caught once here and
  folded into ``error``. ``asyncio.CancelledError`` always propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from functools import partial
from typing import Any

import structlog

from mfssia_orchestrator.config.loader import resolve_api_key
from mfssia_orchestrator.domain.ids import generate_run_id, mint_did
from mfssia_orchestrator.domain.models import (
    AttestationFound,
    BatchResult,
    ChallengeInstance,
    ChallengeSet,
    InstanceTerminal,
    JSONValue,
    Registered,
    ServiceDisabled,
    SubmissionMode,
    TestResult,
    iso8601_millis,
    utc_now,
)
from mfssia_orchestrator.lifecycle.catalog import ChallengeSetResolver
from mfssia_orchestrator.lifecycle.evidence import (
    EvidencePolicy,
    EvidenceSubmitter,
    build_evidence_items,
    select_challenges,
)
from mfssia_orchestrator.lifecycle.instances import (
    ChallengeInstanceManager,
    InstanceDecision,
    decide,
    terminal_outcome,
)
from mfssia_orchestrator.lifecycle.poller import AttestationPoller, PollOutcome, PollPolicy
from mfssia_orchestrator.lifecycle.registrar import IdentityRegistrar
from mfssia_orchestrator.observability.events import EventLog
from mfssia_orchestrator.observability.logging import correlation_scope
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.envelope import Ok, Upstream
from mfssia_orchestrator.oracle.errors import OracleError, RetryPolicy, SleepFn
from mfssia_orchestrator.oracle.transport import HttpOracleTransport, OracleTransport
from mfssia_orchestrator.utils.concurrency import CancellationToken, WorkerPool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunTracker:
    """Mutable holder for the in-flight result so a crash still reports progress."""

    result: TestResult

    def update(self, **changes: Any) -> None:
        self.result = replace(self.result, **changes)

    def fail(self, error: str) -> TestResult:
        self.update(error=error)
        logger.warning(
            "challenge flow stopped",
            extra={"challenge_set": self.result.challenge_set, "error": error},
        )
        return self.result


class ChallengeFlowController:
    """Controller coordinating resolve -> register -> instance -> evidence -> attestation."""

    def __init__(
        self,
        client: OracleClient,
        *,
        resolver: ChallengeSetResolver | None = None,
        evidence_policy: EvidencePolicy | None = None,
        poll_policy: PollPolicy | None = None,
        enabled: bool = True,
        did_prefix: str | None = None,
        max_concurrency: int = 1,
        events: EventLog | None = None,
        sleep: SleepFn | None = None,
        clock: Callable[[], datetime] = utc_now,
        did_factory: Callable[[str], str] | None = None,
        transport: OracleTransport | None = None,
        decision_logger: Any | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.client = client
        self.events = events if events is not None else EventLog()
        self.enabled = enabled
        self.max_concurrency = max_concurrency
        self.evidence_policy = evidence_policy or EvidencePolicy()
        self._clock = clock
        self._transport = transport
        self._decision_logger = (
            decision_logger if decision_logger is not None else structlog.get_logger(__name__)
        )

        self.resolver = resolver or ChallengeSetResolver(client)
        self.registrar = IdentityRegistrar(client, events=self.events)
        self.instances = ChallengeInstanceManager(client, clock=clock, events=self.events)
        self.submitter = EvidenceSubmitter(
            client,
            self.instances,
            enabled=enabled,
            wire_format=self.evidence_policy.single_wire_format,
            events=self.events,
        )
        self.poller = AttestationPoller(
            client, policy=poll_policy, sleep=sleep, events=self.events
        )
        if did_factory is not None:
            self._mint_did = did_factory
        elif did_prefix is not None:
            self._mint_did = partial(mint_did, prefix=did_prefix)
        else:
            self._mint_did = mint_did

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        transport: OracleTransport | None = None,
        environ: Mapping[str, str] | None = None,
        events: EventLog | None = None,
        sleep: SleepFn | None = None,
    ) -> ChallengeFlowController:
        """Wire every stage from a validated config; builds an HTTP transport unless given one."""
        oracle_cfg = config["oracle"]
        if transport is None:
            transport = HttpOracleTransport(
                base_url=oracle_cfg["base_url"],
                timeout_seconds=oracle_cfg["request_timeout_seconds"],
                retry_policy=RetryPolicy(
                    max_retries=oracle_cfg["transport_max_retries"],
                    delay_seconds=oracle_cfg["transport_retry_delay_seconds"],
                ),
                api_key=resolve_api_key(config, environ),
            )
        client = OracleClient(transport)
        return cls(
            client,
            resolver=ChallengeSetResolver.from_config(config, client),
            evidence_policy=EvidencePolicy.from_config(config),
            poll_policy=PollPolicy.from_config(config),
            enabled=bool(oracle_cfg["enabled"]),
            did_prefix=config["runner"]["did_prefix"],
            max_concurrency=config["runner"]["max_concurrency"],
            events=events,
            sleep=sleep,
            transport=transport,
        )

    async def __aenter__(self) -> ChallengeFlowController:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        closer = getattr(self._transport, "aclose", None)
        if closer is not None:
            await closer()

    # ------------------------------------------------------------------
    # Exposed entrypoints
    # ------------------------------------------------------------------

    async def run_challenge_flow(
        self, challenge_set: str, *, cancel_token: CancellationToken | None = None
    ) -> TestResult:
        tracker = _RunTracker(TestResult(challenge_set=challenge_set))
        with correlation_scope(run_id=generate_run_id(), challenge_set=challenge_set):
            logger.info("challenge flow started", extra={"challenge_set": challenge_set})
            try:
                result = await self._run_stages(tracker, cancel_token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "challenge flow crashed", extra={"challenge_set": challenge_set}
                )
                detail = exc.detail if isinstance(exc, OracleError) else str(exc)
                result = tracker.fail(f"unexpected error: {type(exc).__name__}: {detail}")
            logger.info(
                "challenge flow finished",
                extra={
                    "challenge_set": challenge_set,
                    "attestation_found": result.attestation_found,
                    "error": result.error,
                },
            )
            return result

    async def run_many(
        self,
        challenge_sets: Sequence[str],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[TestResult]:
        """One ``TestResult`` per code, in input order; one set's failure never stops the others."""
        if self.max_concurrency == 1 or len(challenge_sets) <= 1:
            results: list[TestResult] = []
            for code in challenge_sets:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                results.append(await self.run_challenge_flow(code, cancel_token=cancel_token))
            return results

        pool: WorkerPool[TestResult] = WorkerPool(
            max_concurrency=self.max_concurrency, cancel_token=cancel_token
        )
        return await pool.run_ordered(
            [
                partial(self.run_challenge_flow, code, cancel_token=cancel_token)
                for code in challenge_sets
            ]
        )

    async def submit_evidence_batch(
        self,
        instance_id: str,
        responses: Sequence[Mapping[str, JSONValue]],
    ) -> BatchResult:
        """Validate, check instance state, then submit ``responses`` atomically."""
        scope_id = instance_id if isinstance(instance_id, str) and instance_id else None
        with correlation_scope(instance_id=scope_id):
            return await self.submitter.submit_batch(instance_id, responses)

    async def poll_attestation(
        self,
        did: str,
        *,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PollOutcome:
        with correlation_scope(did=did):
            return await self.poller.poll(
                did,
                max_attempts=max_attempts,
                interval_seconds=interval_seconds,
                timeout_seconds=timeout_seconds,
                cancel_token=cancel_token,
            )

    async def list_challenge_sets(self) -> tuple[ChallengeSet, ...]:
        return await self.resolver.list_sets()

    async def healthcheck(self) -> dict[str, JSONValue]:
        timestamp = iso8601_millis(self._clock())
        try:
            envelope = await self.client.healthcheck()
        except OracleError as exc:
            logger.warning("healthcheck failed", extra={"error_code": exc.code})
            return {"status": "error", "timestamp": timestamp, "error": exc.detail}
        if isinstance(envelope, Ok):
            return {"status": "ok", "timestamp": timestamp, "data": envelope.data}
        if isinstance(envelope, Upstream):
            error = f"HTTP {envelope.status}: {envelope.message or envelope.hint}"
        else:
            error = envelope.message
        return {"status": "error", "timestamp": timestamp, "error": error}

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_stages(
        self, tracker: _RunTracker, cancel_token: CancellationToken | None
    ) -> TestResult:
        code = tracker.result.challenge_set
        if not self.enabled:
            return tracker.fail(ServiceDisabled().describe())

        resolved = await self.resolver.resolve(code)
        if not isinstance(resolved, ChallengeSet):
            return tracker.fail(resolved.describe())
        _raise_if_cancelled(cancel_token)

        did = self._mint_did(code)
        tracker.update(did=did)
        with correlation_scope(did=did):
            registered = await self.registrar.register(did, code)
            if not isinstance(registered, Registered):
                return tracker.fail(registered.describe())
            tracker.update(did_registered=True)
            _raise_if_cancelled(cancel_token)

            instance = await self.instances.create(did, code)
            if not isinstance(instance, ChallengeInstance):
                return tracker.fail(instance.describe())
            tracker.update(
                instance_created=True,
                instance_id=instance.id,
                instance_state=instance.reported_state,
            )
            _raise_if_cancelled(cancel_token)

            with correlation_scope(instance_id=instance.id):
                return await self._after_creation(tracker, resolved, instance, cancel_token)

    async def _after_creation(
        self,
        tracker: _RunTracker,
        challenge_set: ChallengeSet,
        instance: ChallengeInstance,
        cancel_token: CancellationToken | None,
    ) -> TestResult:
        decision = decide(instance.state)
        self._decision_logger.info(
            "control_plane_instance_decision",
            action=decision.value,
            challenge_set=challenge_set.code,
            instance_id=instance.id,
            state=instance.state.value,
            reported_state=instance.reported_state,
        )
        if decision is InstanceDecision.STOP:
            return tracker.fail(terminal_outcome(instance.state, instance.reported_state).describe())

        if decision is InstanceDecision.AWAIT_ATTESTATION:
            logger.info(
                "instance auto-verified; skipping evidence",
                extra={"instance_id": instance.id, "state": instance.reported_state},
            )
            tracker.update(evidence_submitted=True)
        else:
            stopped = await self._submit_evidence(tracker, challenge_set, instance)
            if stopped is not None:
                return stopped
        _raise_if_cancelled(cancel_token)

        found = await self.poller.poll(instance.did, cancel_token=cancel_token)
        tracker.update(attestation_found=isinstance(found, AttestationFound))
        return tracker.result

    async def _submit_evidence(
        self,
        tracker: _RunTracker,
        challenge_set: ChallengeSet,
        instance: ChallengeInstance,
    ) -> TestResult | None:
        """Submit the selected challenges; a ``TestResult`` return means the run stops."""
        challenge_ids = select_challenges(challenge_set, self.evidence_policy)
        if not challenge_ids:
            logger.warning(
                "challenge set has no mandatory challenges; nothing submitted",
                extra={"challenge_set": challenge_set.code, "instance_id": instance.id},
            )
            return None

        items = build_evidence_items(
            challenge_ids,
            did=instance.did,
            nonce=instance.nonce,
            policy=self.evidence_policy,
            clock=self._clock,
        )
        # The instance was observed in this run's creation reply, so the first
        # submission goes without a state re-check.
        if self.evidence_policy.submission_mode is SubmissionMode.BATCH:
            batch = await self.submitter.submit_batch(instance.id, items, precheck=False)
        else:
            batch = await self.submitter.submit_sequentially(
                instance.id, items, precheck_first=False
            )

        if isinstance(batch.failure, InstanceTerminal) and batch.failure.reported_state:
            tracker.update(instance_state=batch.failure.reported_state)
        if not batch.submitted:
            reason = batch.failure.describe() if batch.failure is not None else "no evidence accepted"
            return tracker.fail(reason)

        tracker.update(evidence_submitted=True, submitted_challenges=batch.submitted)
        if batch.failure is not None:
            logger.warning(
                "evidence partially accepted",
                extra={
                    "instance_id": instance.id,
                    "submitted": list(batch.submitted),
                    "error": batch.failure.describe(),
                },
            )
        return None


def _raise_if_cancelled(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


__all__ = ["ChallengeFlowController"]
