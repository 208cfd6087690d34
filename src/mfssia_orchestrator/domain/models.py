"""Dataclass domain models, lifecycle states and typed stage outcomes."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import Final, NoReturn, TypeVar, cast

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192


class InstanceState(StrEnum):
    """Client view of a challenge-instance lifecycle state."""

    CREATED = "CREATED"
    VERIFIED = "VERIFIED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_auto_verified(self) -> bool:
        return self in AUTO_VERIFIED_STATES

    @property
    def accepts_evidence(self) -> bool:
        return not self.is_terminal

    @classmethod
    def classify(cls, reported: object) -> InstanceState:
        """
        Collapse an oracle-reported state string into the client state machine.

        Terminal values match case-insensitively. Everything else, including
        ``PENDING_CHALLENGE``, ``IN_PROGRESS``, ``AWAITING_EVIDENCE``,
        ``VERIFICATION_IN_PROGRESS``, unknown strings and missing values, is
        ``CREATED`` (still needs evidence).
        """
        if isinstance(reported, str):
            normalized = reported.strip().upper()
            for member in cls:
                if member is not cls.CREATED and member.value == normalized:
                    return member
        return cls.CREATED


AUTO_VERIFIED_STATES: Final[frozenset[InstanceState]] = frozenset(
    {InstanceState.VERIFIED, InstanceState.COMPLETED}
)
TERMINAL_STATES: Final[frozenset[InstanceState]] = frozenset(
    {
        InstanceState.VERIFIED,
        InstanceState.COMPLETED,
        InstanceState.FAILED,
        InstanceState.EXPIRED,
    }
)


class ChallengeSetStatus(StrEnum):
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"


class SubmissionMode(StrEnum):
    SINGLE = "single"
    BATCH = "batch"


class CanonicalModel:
    """Mixin for canonical camelCase dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_float(
    value: object, path: str, *, minimum: float | None = None, maximum: float | None = None
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        _fail(path, f"must be <= {maximum}")
    return parsed


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_str_tuple(value: object, path: str, *, allow_empty: bool = True) -> tuple[str, ...]:
    if value is None:
        values: list[object] = []
    elif isinstance(value, (list, tuple)):
        values = list(value)
    else:
        _fail(path, f"expected array, got {type(value).__name__}")
    if not allow_empty and not values:
        _fail(path, "must not be empty")
    parsed = tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(values))
    if len(set(parsed)) != len(parsed):
        _fail(path, "contains duplicate values")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def iso8601_millis(value: datetime) -> str:
    """Render a UTC timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if isinstance(value, datetime):
        return iso8601_millis(value)
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[camel_case(dataclass_field.name)] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


# ---------------------------------------------------------------------------
# Catalog entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChallengeDefinition(CanonicalModel):
    code: str
    name: str
    factor_class: str | None = None
    mandatory: bool = True
    expected_evidence: tuple[str, ...] = ()
    oracle_endpoint: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        _as_str(self.code, "ChallengeDefinition.code")
        _as_str(self.name, "ChallengeDefinition.name")
        _as_bool(self.mandatory, "ChallengeDefinition.mandatory")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], path: str) -> ChallengeDefinition:
        code = _as_str(data.get("code"), f"{path}.code")
        return cls(
            code=code,
            name=_as_str(data.get("name", code), f"{path}.name"),
            factor_class=_as_optional_str(data.get("factorClass"), f"{path}.factorClass"),
            mandatory=_as_bool(data.get("mandatory", True), f"{path}.mandatory"),
            expected_evidence=_as_str_tuple(
                data.get("expectedEvidence"), f"{path}.expectedEvidence"
            ),
            oracle_endpoint=_as_optional_str(
                data.get("oracleEndpoint"), f"{path}.oracleEndpoint"
            ),
            description=_as_optional_str(data.get("description"), f"{path}.description"),
        )


@dataclass(frozen=True, slots=True)
class ChallengeSet(CanonicalModel):
    """Requirements of one named challenge set, immutable for a run."""

    code: str
    name: str
    mandatory_challenges: tuple[str, ...]
    required_confidence: float = 0.0
    description: str | None = None
    version: str | None = None
    status: ChallengeSetStatus = ChallengeSetStatus.ACTIVE
    optional_challenges: tuple[str, ...] = ()
    applicable_roles: tuple[str, ...] = ()
    challenges: tuple[ChallengeDefinition, ...] = ()

    def __post_init__(self) -> None:
        _as_str(self.code, "ChallengeSet.code")
        _as_str(self.name, "ChallengeSet.name")
        _as_float(
            self.required_confidence,
            "ChallengeSet.required_confidence",
            minimum=0.0,
            maximum=1.0,
        )
        if not isinstance(self.mandatory_challenges, tuple):
            _fail("ChallengeSet.mandatory_challenges", "expected tuple")

    def supports_role(self, role: str) -> bool:
        return not self.applicable_roles or role.upper() in self.applicable_roles

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], *, code: str | None = None) -> ChallengeSet:
        """
        Build from the oracle/catalog camelCase shape.

        ``mandatoryChallenges`` and ``optionalChallenges`` may list plain codes
        or full challenge objects; objects contribute ``ChallengeDefinition``
        entries as well as their code.
        """
        path = "ChallengeSet"
        resolved_code = _as_str(data.get("code", code), f"{path}.code")
        definitions: list[ChallengeDefinition] = []

        def _codes(raw: object, key: str, mandatory: bool) -> tuple[str, ...]:
            if raw is None:
                return ()
            if not isinstance(raw, (list, tuple)):
                _fail(f"{path}.{key}", f"expected array, got {type(raw).__name__}")
            codes: list[str] = []
            for index, item in enumerate(raw):
                item_path = f"{path}.{key}[{index}]"
                if isinstance(item, Mapping):
                    merged = {"mandatory": mandatory, **item}
                    definition = ChallengeDefinition.from_mapping(merged, item_path)
                    definitions.append(definition)
                    codes.append(definition.code)
                else:
                    codes.append(_as_str(item, item_path))
            return tuple(codes)

        mandatory = _codes(data.get("mandatoryChallenges"), "mandatoryChallenges", True)
        optional = _codes(data.get("optionalChallenges"), "optionalChallenges", False)
        raw_status = data.get("status", ChallengeSetStatus.ACTIVE.value)
        raw_version = data.get("version")
        return cls(
            code=resolved_code,
            name=_as_str(data.get("name", resolved_code), f"{path}.name"),
            mandatory_challenges=mandatory,
            required_confidence=_as_float(
                data.get("requiredConfidence", 0.0),
                f"{path}.requiredConfidence",
                minimum=0.0,
                maximum=1.0,
            ),
            description=_as_optional_str(data.get("description"), f"{path}.description"),
            version=None if raw_version is None else str(raw_version),
            status=_as_enum(
                ChallengeSetStatus,
                raw_status.upper() if isinstance(raw_status, str) else raw_status,
                f"{path}.status",
            ),
            optional_challenges=optional,
            applicable_roles=tuple(
                role.upper()
                for role in _as_str_tuple(data.get("applicableRoles"), f"{path}.applicableRoles")
            ),
            challenges=tuple(definitions),
        )


# ---------------------------------------------------------------------------
# Lifecycle entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChallengeInstance(CanonicalModel):
    """Server-tracked attempt; observed by the client, never mutated."""

    id: str
    did: str
    challenge_set: str
    nonce: str
    state: InstanceState
    reported_state: str
    created_at: datetime
    expires_at: datetime | None = None

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, object],
        *,
        did: str,
        challenge_set: str,
        observed_at: datetime | None = None,
    ) -> ChallengeInstance:
        path = "ChallengeInstance"
        raw_id = data.get("id")
        if isinstance(raw_id, int) and not isinstance(raw_id, bool):
            raw_id = str(raw_id)
        raw_state = data.get("state")
        reported = InstanceState.CREATED.value
        if isinstance(raw_state, str) and raw_state.strip():
            reported = raw_state.strip()
        raw_nonce = data.get("nonce")
        created_raw = data.get("createdAt")
        expires_raw = data.get("expiresAt")
        return cls(
            id=_as_str(raw_id, f"{path}.id"),
            did=did,
            challenge_set=challenge_set,
            nonce="" if raw_nonce is None else str(raw_nonce),
            state=InstanceState.classify(reported),
            reported_state=reported,
            created_at=(
                _as_datetime(created_raw, f"{path}.createdAt")
                if created_raw is not None
                else (observed_at or utc_now())
            ),
            expires_at=(
                None if expires_raw is None else _as_datetime(expires_raw, f"{path}.expiresAt")
            ),
        )


@dataclass(frozen=True, slots=True)
class EvidencePayload(CanonicalModel):
    """Evidence body for one challenge; serializes to the oracle's camelCase shape."""

    source: str
    source_domain_hash: str
    content_hash: str
    semantic_fingerprint: str
    similarity_score: float
    claimed_publish_date: datetime
    server_timestamp: datetime
    archive_earliest_capture_date: datetime

    def __post_init__(self) -> None:
        _as_str(self.source, "EvidencePayload.source")
        _as_float(self.similarity_score, "EvidencePayload.similarity_score", minimum=0.0)


@dataclass(frozen=True, slots=True)
class EvidenceItem:
    """One ``{challengeId, evidence}`` pair as carried on the wire."""

    challenge_id: str
    evidence: Mapping[str, JSONValue]

    def to_wire(self) -> dict[str, JSONValue]:
        return {"challengeId": self.challenge_id, "evidence": dict(self.evidence)}

    @classmethod
    def from_payload(cls, challenge_id: str, payload: EvidencePayload) -> EvidenceItem:
        return cls(challenge_id=challenge_id, evidence=payload.to_dict())


# ---------------------------------------------------------------------------
# Stage outcomes (values, not exceptions)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NotFound:
    """A challenge set, instance or attestation is absent; a normal negative result."""

    subject: str
    key: str
    message: str = "not found"
    attempts: int = 0

    kind = "not_found"

    def describe(self) -> str:
        return f"{self.subject} {self.key!r} not found: {self.message}"


@dataclass(frozen=True, slots=True)
class BusinessRejection:
    """The oracle answered 2xx with ``success: false``; never retried."""

    stage: str
    message: str

    kind = "business_rejection"

    def describe(self) -> str:
        return f"{self.stage} rejected: {self.message}"


@dataclass(frozen=True, slots=True)
class InstanceTerminal:
    """A submission was refused locally because the instance left the evidence window."""

    state: InstanceState
    hint: str
    reported_state: str | None = None

    kind = "instance_terminal"

    def describe(self) -> str:
        shown = self.reported_state or self.state.value
        return f"challenge instance is in terminal state {shown}: {self.hint}"


@dataclass(frozen=True, slots=True)
class ValidationError:
    """A malformed submission request, rejected before any network call."""

    message: str
    index: int | None = None

    kind = "validation_error"

    def describe(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class UpstreamFailure:
    """A non-2xx oracle answer, with an advisory hint chosen from the status."""

    stage: str
    status: int
    hint: str
    message: str = ""

    kind = "upstream_failure"

    def describe(self) -> str:
        detail = f": {self.message}" if self.message else ""
        return f"{self.stage} failed with HTTP {self.status}{detail}"


@dataclass(frozen=True, slots=True)
class TransportFailure:
    """No usable response was received after bounded transport retries."""

    stage: str
    message: str

    kind = "transport_failure"

    def describe(self) -> str:
        return f"{self.stage} transport failure: {self.message}"


SERVICE_DISABLED_MESSAGE: Final[str] = "MFSSIA service is not enabled"


@dataclass(frozen=True, slots=True)
class ServiceDisabled:
    message: str = SERVICE_DISABLED_MESSAGE

    kind = "service_disabled"

    def describe(self) -> str:
        return self.message


Failure = (
    NotFound
    | BusinessRejection
    | InstanceTerminal
    | ValidationError
    | UpstreamFailure
    | TransportFailure
    | ServiceDisabled
)


@dataclass(frozen=True, slots=True)
class Registered:
    did: str
    challenge_set: str
    message: str | None = None


@dataclass(frozen=True, slots=True)
class Submitted:
    instance_id: str
    challenge_ids: tuple[str, ...]
    data: JSONValue = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class AttestationFound:
    did: str
    attestations: tuple[Mapping[str, JSONValue], ...]
    attempts: int


def failure_to_dict(failure: Failure) -> dict[str, JSONValue]:
    """Serialize an outcome with its kind, message and any diagnostic fields."""
    out: dict[str, JSONValue] = {"kind": failure.kind, "error": failure.describe()}
    for key in ("hint", "index", "status"):
        value = getattr(failure, key, None)
        if value is not None:
            out[key] = value
    state = getattr(failure, "state", None)
    if isinstance(state, InstanceState):
        out["state"] = state.value
    return out


# ---------------------------------------------------------------------------
# Exposed result shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Result of one atomic batch (or sequential) evidence submission."""

    instance_id: str
    success: bool
    submitted: tuple[str, ...] = ()
    data: JSONValue = None
    message: str | None = None
    failure: Failure | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "success": self.success,
            "challengeInstanceId": self.instance_id,
            "submittedCount": len(self.submitted),
            "submitted": list(self.submitted),
        }
        if self.data is not None:
            out["data"] = self.data
        if self.message is not None:
            out["message"] = self.message
        if self.failure is not None:
            out.update(failure_to_dict(self.failure))
        return out

    @classmethod
    def from_failure(cls, instance_id: str, failure: Failure) -> BatchResult:
        return cls(instance_id=instance_id, success=False, failure=failure)


@dataclass(frozen=True, slots=True)
class TestResult:
    """Per-run accumulator; every stage's outcome survives a later failure."""

    __test__ = False

    challenge_set: str
    did: str | None = None
    did_registered: bool = False
    instance_created: bool = False
    instance_state: str | None = None
    evidence_submitted: bool = False
    attestation_found: bool = False
    error: str | None = None
    instance_id: str | None = None
    submitted_challenges: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.attestation_found

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "challengeSet": self.challenge_set,
            "did": self.did,
            "didRegistered": self.did_registered,
            "instanceCreated": self.instance_created,
            "instanceState": self.instance_state,
            "evidenceSubmitted": self.evidence_submitted,
            "attestationFound": self.attestation_found,
        }
        if self.instance_id is not None:
            out["instanceId"] = self.instance_id
        if self.submitted_challenges:
            out["submittedChallenges"] = list(self.submitted_challenges)
        if self.error is not None:
            out["error"] = self.error
        return out


__all__ = [
    "AUTO_VERIFIED_STATES",
    "AttestationFound",
    "BatchResult",
    "BusinessRejection",
    "CanonicalModel",
    "ChallengeDefinition",
    "ChallengeInstance",
    "ChallengeSet",
    "ChallengeSetStatus",
    "EvidenceItem",
    "EvidencePayload",
    "Failure",
    "InstanceState",
    "InstanceTerminal",
    "JSONScalar",
    "JSONValue",
    "NotFound",
    "Registered",
    "SERVICE_DISABLED_MESSAGE",
    "ServiceDisabled",
    "SubmissionMode",
    "Submitted",
    "TERMINAL_STATES",
    "TestResult",
    "TransportFailure",
    "UpstreamFailure",
    "ValidationError",
    "camel_case",
    "failure_to_dict",
    "iso8601_millis",
    "utc_now",
]
