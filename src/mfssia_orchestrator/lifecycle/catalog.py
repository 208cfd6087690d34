"""
mfssia-orchestrator — challenge-set resolver

File: src/mfssia_orchestrator/lifecycle/catalog.py

Purpose
- Resolve a challenge-set code to its requirements before any identity is
  registered against it.
- Sources, by ``catalog.mode``:
  - ``remote``: ``GET /api/challenge-sets/{code}`` only;
  - ``local``: the built-in catalog plus an optional YAML catalog file;
  - ``remote_then_local``: the oracle first, the local catalog when the oracle
    has no usable answer.

A code that no source knows resolves to ``NotFound``; callers must not
register an identity for it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import StrEnum
from functools import lru_cache
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

import yaml

from mfssia_orchestrator.constants import CHALLENGE_SETS_PATH
from mfssia_orchestrator.domain.models import (
    ChallengeSet,
    ChallengeSetStatus,
    NotFound,
    TransportFailure,
)
from mfssia_orchestrator.lifecycle.outcomes import transport_outcome
from mfssia_orchestrator.oracle.client import OracleClient
from mfssia_orchestrator.oracle.envelope import Business, Ok, Upstream
from mfssia_orchestrator.oracle.errors import OracleResponseError, OracleTransportError

logger = logging.getLogger(__name__)

BUILTIN_CATALOG_RESOURCE: Final[str] = "builtin_catalog.yaml"
_STAGE: Final[str] = "challenge set lookup"


class CatalogMode(StrEnum):
    REMOTE = "remote"
    LOCAL = "local"
    REMOTE_THEN_LOCAL = "remote_then_local"


class CatalogError(ValueError):
    """Raised when a catalog document cannot be read or parsed."""


ResolveOutcome = ChallengeSet | NotFound | TransportFailure


def parse_catalog(payload: object, *, source: str) -> dict[str, ChallengeSet]:
    """
    Parse a catalog document.

    Accepts either a bare list of challenge-set objects or a mapping with a
    ``challenge_sets`` list. Codes must be unique within one document.
    """
    records: Sequence[object]
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, Mapping):
        raw = payload.get("challenge_sets")
        if not isinstance(raw, list):
            raise CatalogError(f"{source} must be a list or contain a 'challenge_sets' list")
        records = raw
    else:
        raise CatalogError(f"{source} must be a list or contain a 'challenge_sets' list")

    catalog: dict[str, ChallengeSet] = {}
    for index, record in enumerate(records):
        entry_path = f"{source}[{index}]"
        if not isinstance(record, Mapping):
            raise CatalogError(f"{entry_path} must be an object")
        try:
            challenge_set = ChallengeSet.from_mapping(record)
        except ValueError as exc:
            raise CatalogError(f"{entry_path}: {exc}") from exc
        if challenge_set.code in catalog:
            raise CatalogError(f"{entry_path}: duplicate challenge set {challenge_set.code!r}")
        catalog[challenge_set.code] = challenge_set
    return catalog


def load_catalog_file(path: str | Path) -> dict[str, ChallengeSet]:
    """Load a YAML catalog file from disk."""
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise CatalogError(f"failed to read catalog file {file_path.as_posix()}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"invalid YAML in {file_path.as_posix()}: {exc}") from exc
    return parse_catalog(payload, source=file_path.as_posix())


@lru_cache(maxsize=1)
def builtin_catalog() -> Mapping[str, ChallengeSet]:
    """The published challenge sets shipped with the package."""
    text = resources.files(__package__).joinpath(BUILTIN_CATALOG_RESOURCE).read_text("utf-8")
    return MappingProxyType(parse_catalog(yaml.safe_load(text), source=BUILTIN_CATALOG_RESOURCE))


class ChallengeSetResolver:
    """Resolve codes against the oracle and/or a local catalog."""

    def __init__(
        self,
        client: OracleClient | None,
        *,
        mode: CatalogMode | str = CatalogMode.REMOTE,
        local_sets: Mapping[str, ChallengeSet] | None = None,
    ) -> None:
        self.mode = CatalogMode(mode)
        if client is None and self.mode is not CatalogMode.LOCAL:
            raise ValueError(f"catalog mode {self.mode.value!r} requires an oracle client")
        self._client = client
        local: dict[str, ChallengeSet] = dict(builtin_catalog())
        local.update(local_sets or {})
        self._local = MappingProxyType(local)

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], client: OracleClient | None
    ) -> ChallengeSetResolver:
        catalog_cfg = config["catalog"]
        path = catalog_cfg.get("path")
        local_sets = load_catalog_file(path) if path else None
        return cls(client, mode=catalog_cfg["mode"], local_sets=local_sets)

    @property
    def local_sets(self) -> Mapping[str, ChallengeSet]:
        return self._local

    async def resolve(self, code: str) -> ResolveOutcome:
        if self.mode is CatalogMode.LOCAL:
            return self._resolve_local(code)

        remote = await self._resolve_remote(code)
        if isinstance(remote, ChallengeSet) or self.mode is CatalogMode.REMOTE:
            return remote

        local = self._resolve_local(code)
        if isinstance(local, ChallengeSet):
            logger.info(
                "challenge set resolved from local catalog",
                extra={"challenge_set": code, "remote_outcome": remote.kind},
            )
            return local
        return remote

    async def list_sets(self) -> tuple[ChallengeSet, ...]:
        """Known challenge sets, sorted by code. Remote failures yield an empty remote list."""
        merged: dict[str, ChallengeSet] = {}
        if self.mode is not CatalogMode.REMOTE:
            merged.update(self._local)
        if self.mode is not CatalogMode.LOCAL:
            merged.update(await self._list_remote())
        return tuple(merged[code] for code in sorted(merged))

    def sets_for_role(self, role: str) -> tuple[ChallengeSet, ...]:
        """Active local challenge sets that list ``role`` as applicable."""
        return tuple(
            challenge_set
            for code, challenge_set in sorted(self._local.items())
            if challenge_set.status is ChallengeSetStatus.ACTIVE
            and challenge_set.supports_role(role)
        )

    def _resolve_local(self, code: str) -> ChallengeSet | NotFound:
        found = self._local.get(code)
        if found is None:
            return NotFound(subject="challenge set", key=code, message="not in local catalog")
        return found

    async def _resolve_remote(self, code: str) -> ResolveOutcome:
        assert self._client is not None
        try:
            envelope = await self._client.get_challenge_set(code)
        except OracleTransportError as exc:
            logger.warning(
                "challenge set lookup transport failure",
                extra={"challenge_set": code, "error_code": exc.code},
            )
            return transport_outcome(_STAGE, exc)

        if isinstance(envelope, Upstream):
            return NotFound(subject="challenge set", key=code, message=f"HTTP {envelope.status}")
        if isinstance(envelope, Business):
            return NotFound(subject="challenge set", key=code, message=envelope.message)

        data = envelope.data
        if data is None:
            # Oracle confirmed the code but returned no body to describe it.
            return ChallengeSet(code=code, name=code, mandatory_challenges=())
        if not isinstance(data, Mapping):
            raise OracleResponseError(
                f"challenge set {code!r}: expected object data, got {type(data).__name__}",
                endpoint=f"GET {CHALLENGE_SETS_PATH}/{code}",
                http_status=200,
            )
        try:
            return ChallengeSet.from_mapping(data, code=code)
        except ValueError as exc:
            raise OracleResponseError(
                f"challenge set {code!r}: {exc}",
                endpoint=f"GET {CHALLENGE_SETS_PATH}/{code}",
                http_status=200,
            ) from exc

    async def _list_remote(self) -> dict[str, ChallengeSet]:
        assert self._client is not None
        try:
            envelope = await self._client.list_challenge_sets()
        except OracleTransportError as exc:
            logger.warning("challenge set listing failed", extra={"error_code": exc.code})
            return {}
        if not isinstance(envelope, Ok) or not isinstance(envelope.data, list):
            logger.warning("challenge set listing returned no usable data")
            return {}

        listed: dict[str, ChallengeSet] = {}
        for index, record in enumerate(envelope.data):
            if not isinstance(record, Mapping):
                continue
            try:
                challenge_set = ChallengeSet.from_mapping(record)
            except ValueError as exc:
                logger.warning(
                    "skipping malformed remote challenge set",
                    extra={"index": index, "error": str(exc)},
                )
                continue
            listed[challenge_set.code] = challenge_set
        return listed


__all__ = [
    "BUILTIN_CATALOG_RESOURCE",
    "CatalogError",
    "CatalogMode",
    "ChallengeSetResolver",
    "ResolveOutcome",
    "builtin_catalog",
    "load_catalog_file",
    "parse_catalog",
]
