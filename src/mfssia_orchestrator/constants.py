"""Stable constants shared across the orchestrator packages."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Oracle defaults.
DEFAULT_ORACLE_BASE_URL: Final[str] = "https://api.dymaxion-ou.co"
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_TRANSPORT_MAX_RETRIES: Final[int] = 2
DEFAULT_TRANSPORT_RETRY_DELAY_SECONDS: Final[float] = 0.5
MAX_TRANSPORT_RETRIES: Final[int] = 5

# Attestation polling reference budget: 3 attempts, 5 seconds apart.
DEFAULT_POLL_MAX_ATTEMPTS: Final[int] = 3
DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 5.0

# Evidence defaults.
DEFAULT_EVIDENCE_SOURCE: Final[str] = "mkmpol21.dao"
DEFAULT_SIMILARITY_SCORE: Final[float] = 0.05
SMOKE_FIRST_N: Final[int] = 2

# Identity minting.
DEFAULT_DID_PREFIX: Final[str] = "did:web:mkmpol21"

# Config discovery.
DEFAULT_CONFIG_FILENAME: Final[str] = "mfssia.toml"
ENV_PREFIX: Final[str] = "MFSSIA_"

# Oracle endpoint paths.
CHALLENGE_SETS_PATH: Final[str] = "/api/challenge-sets"
IDENTITY_REGISTER_PATH: Final[str] = "/api/identities/register"
CHALLENGE_INSTANCES_PATH: Final[str] = "/api/challenge-instances"
CHALLENGE_EVIDENCE_PATH: Final[str] = "/api/challenge-evidence"
ATTESTATIONS_BY_DID_PATH: Final[str] = "/api/attestations/did"
HEALTHCHECK_PATH: Final[str] = "/api/api/infrastructure/healthcheck"

__all__ = [
    "ATTESTATIONS_BY_DID_PATH",
    "CHALLENGE_EVIDENCE_PATH",
    "CHALLENGE_INSTANCES_PATH",
    "CHALLENGE_SETS_PATH",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_DID_PREFIX",
    "DEFAULT_EVIDENCE_SOURCE",
    "DEFAULT_ORACLE_BASE_URL",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_POLL_MAX_ATTEMPTS",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
    "DEFAULT_SIMILARITY_SCORE",
    "DEFAULT_TRANSPORT_MAX_RETRIES",
    "DEFAULT_TRANSPORT_RETRY_DELAY_SECONDS",
    "ENV_PREFIX",
    "HEALTHCHECK_PATH",
    "IDENTITY_REGISTER_PATH",
    "MAX_TRANSPORT_RETRIES",
    "SMOKE_FIRST_N",
]
