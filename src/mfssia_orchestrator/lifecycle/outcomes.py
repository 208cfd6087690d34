"""Shared mapping from decoded oracle replies and transport errors to stage outcomes."""

from __future__ import annotations

from mfssia_orchestrator.domain.models import BusinessRejection, TransportFailure, UpstreamFailure
from mfssia_orchestrator.oracle.envelope import Business, Upstream
from mfssia_orchestrator.oracle.errors import OracleTransportError


def rejection_outcome(stage: str, envelope: Business | Upstream) -> BusinessRejection | UpstreamFailure:
    """Turn a non-``Ok`` envelope into the outcome reported for ``stage``."""
    if isinstance(envelope, Business):
        return BusinessRejection(stage=stage, message=envelope.message)
    return UpstreamFailure(
        stage=stage,
        status=envelope.status,
        hint=envelope.hint,
        message=envelope.message,
    )


def transport_outcome(stage: str, error: OracleTransportError) -> TransportFailure:
    return TransportFailure(stage=stage, message=f"{error.code}: {error.detail}")


__all__ = ["rejection_outcome", "transport_outcome"]
