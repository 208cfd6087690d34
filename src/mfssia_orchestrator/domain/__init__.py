"""
mfssia-orchestrator — domain layer

File: src/mfssia_orchestrator/domain/__init__.py

Purpose
- Domain types shared across packages: challenge sets, challenge instances,
  evidence, run results and the typed stage outcomes.
- Keep the domain layer free of IO side effects.
"""

from mfssia_orchestrator.domain.ids import generate_run_id, mint_did
from mfssia_orchestrator.domain.models import (
    BatchResult,
    BusinessRejection,
    ChallengeInstance,
    ChallengeSet,
    EvidenceItem,
    EvidencePayload,
    Failure,
    InstanceState,
    InstanceTerminal,
    NotFound,
    ServiceDisabled,
    TestResult,
    TransportFailure,
    UpstreamFailure,
    ValidationError,
)

__all__ = [
    "BatchResult",
    "BusinessRejection",
    "ChallengeInstance",
    "ChallengeSet",
    "EvidenceItem",
    "EvidencePayload",
    "Failure",
    "InstanceState",
    "InstanceTerminal",
    "NotFound",
    "ServiceDisabled",
    "TestResult",
    "TransportFailure",
    "UpstreamFailure",
    "ValidationError",
    "generate_run_id",
    "mint_did",
]
