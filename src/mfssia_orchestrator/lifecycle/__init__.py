"""
mfssia-orchestrator — lifecycle stages

File: src/mfssia_orchestrator/lifecycle/__init__.py

Purpose
- One module per stage of a challenge run: resolve the set, register the
  identity, open and observe the instance, submit evidence, poll for the
  attestation.
- Every stage returns typed outcome values; only protocol violations raise.
"""

from mfssia_orchestrator.lifecycle.catalog import (
    CatalogError,
    CatalogMode,
    ChallengeSetResolver,
    builtin_catalog,
    load_catalog_file,
)
from mfssia_orchestrator.lifecycle.evidence import (
    ChallengeSelection,
    EvidencePolicy,
    EvidenceSubmitter,
    build_evidence,
    build_evidence_items,
    select_challenges,
    validate_responses,
)
from mfssia_orchestrator.lifecycle.instances import (
    ChallengeInstanceManager,
    InstanceDecision,
    InstanceStatus,
    decide,
)
from mfssia_orchestrator.lifecycle.poller import AttestationPoller, PollPolicy
from mfssia_orchestrator.lifecycle.registrar import IdentityRegistrar

__all__ = [
    "AttestationPoller",
    "CatalogError",
    "CatalogMode",
    "ChallengeInstanceManager",
    "ChallengeSelection",
    "ChallengeSetResolver",
    "EvidencePolicy",
    "EvidenceSubmitter",
    "IdentityRegistrar",
    "InstanceDecision",
    "InstanceStatus",
    "PollPolicy",
    "build_evidence",
    "build_evidence_items",
    "builtin_catalog",
    "decide",
    "load_catalog_file",
    "select_challenges",
    "validate_responses",
]
