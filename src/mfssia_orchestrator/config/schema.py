"""
mfssia-orchestrator — configuration schema and validation.

File: src/mfssia_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support the ``smoke`` and ``production`` profile overlays.

Non-functional requirements
- Keep rules deterministic and easy to audit.
- Secrets are referenced by env var name only; embedded secret values are rejected.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from mfssia_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DID_PREFIX,
    DEFAULT_EVIDENCE_SOURCE,
    DEFAULT_ORACLE_BASE_URL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SIMILARITY_SCORE,
    DEFAULT_TRANSPORT_MAX_RETRIES,
    DEFAULT_TRANSPORT_RETRY_DELAY_SECONDS,
    MAX_TRANSPORT_RETRIES,
    SMOKE_FIRST_N,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("smoke", "production")

CATALOG_MODES: Final[tuple[str, ...]] = ("remote", "local", "remote_then_local")
CHALLENGE_SELECTIONS: Final[tuple[str, ...]] = ("all", "first-n")
FINGERPRINT_ALGORITHMS: Final[tuple[str, ...]] = ("hex", "sha256")
SUBMISSION_MODES: Final[tuple[str, ...]] = ("single", "batch")
SINGLE_WIRE_FORMATS: Final[tuple[str, ...]] = ("flat", "responses")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_URL_PATTERN = re.compile(r"^https?://[^\s/]+(?::\d+)?(?:/\S*)?$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "key",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "bearer",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("catalog", "path"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class OracleConfig(TypedDict):
    base_url: str
    enabled: bool
    request_timeout_seconds: float
    transport_max_retries: int
    transport_retry_delay_seconds: float
    api_key_env: NotRequired[str | None]


class CatalogConfig(TypedDict):
    mode: Literal["remote", "local", "remote_then_local"]
    path: NotRequired[str | None]


class EvidenceConfig(TypedDict):
    challenges_to_submit: Literal["all", "first-n"]
    first_n: int
    source_label: str
    similarity_score: float
    fingerprint_algorithm: Literal["hex", "sha256"]
    submission_mode: Literal["single", "batch"]
    single_wire_format: Literal["flat", "responses"]


class PollingConfig(TypedDict):
    max_attempts: int
    interval_seconds: float
    timeout_seconds: NotRequired[float | None]


class RunnerConfig(TypedDict):
    max_concurrency: int
    did_prefix: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    oracle: dict[str, Any]
    catalog: dict[str, Any]
    evidence: dict[str, Any]
    polling: dict[str, Any]
    runner: dict[str, Any]
    observability: dict[str, Any]


class MfssiaConfig(TypedDict):
    meta: MetaConfig
    oracle: OracleConfig
    catalog: CatalogConfig
    evidence: EvidenceConfig
    polling: PollingConfig
    runner: RunnerConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[MfssiaConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "oracle": {
        "base_url": DEFAULT_ORACLE_BASE_URL,
        "enabled": True,
        "request_timeout_seconds": DEFAULT_REQUEST_TIMEOUT_SECONDS,
        "transport_max_retries": DEFAULT_TRANSPORT_MAX_RETRIES,
        "transport_retry_delay_seconds": DEFAULT_TRANSPORT_RETRY_DELAY_SECONDS,
        "api_key_env": None,
    },
    "catalog": {
        "mode": "remote",
        "path": None,
    },
    "evidence": {
        "challenges_to_submit": "all",
        "first_n": SMOKE_FIRST_N,
        "source_label": DEFAULT_EVIDENCE_SOURCE,
        "similarity_score": DEFAULT_SIMILARITY_SCORE,
        "fingerprint_algorithm": "hex",
        "submission_mode": "single",
        "single_wire_format": "flat",
    },
    "polling": {
        "max_attempts": DEFAULT_POLL_MAX_ATTEMPTS,
        "interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
        "timeout_seconds": None,
    },
    "runner": {
        "max_concurrency": 1,
        "did_prefix": DEFAULT_DID_PREFIX,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "smoke": {
            "evidence": {"challenges_to_submit": "first-n", "first_n": SMOKE_FIRST_N},
            "polling": {
                "max_attempts": DEFAULT_POLL_MAX_ATTEMPTS,
                "interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
            },
        },
        "production": {
            "evidence": {"challenges_to_submit": "all", "submission_mode": "batch"},
        },
    },
}

_SECTIONS: Final[tuple[str, ...]] = (
    "oracle",
    "catalog",
    "evidence",
    "polling",
    "runner",
    "observability",
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> MfssiaConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade mfssia.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the mfssia-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"meta", "profiles", *_SECTIONS}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, {"meta", *_SECTIONS}, "", issues)

    out: dict[str, Any] = {}
    _section(
        payload,
        key="meta",
        issues=issues,
        out=out,
        validator=lambda section, section_path: _validate_meta(section, section_path, issues),
    )
    for key in _SECTIONS:
        _section(
            payload,
            key=key,
            issues=issues,
            out=out,
            validator=_bind_section_validator(_SECTION_VALIDATORS[key], issues),
        )

    raw_profiles = payload.get("profiles")
    if raw_profiles is not None:
        profiles = _as_object(raw_profiles, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, "profiles", issues)
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_obj = _as_object(raw, key, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, key)


def _bind_section_validator(
    validator: _SectionValidator, issues: _IssueCollector
) -> Callable[[dict[str, object], str], dict[str, Any]]:
    def _bound(section: dict[str, object], section_path: str) -> dict[str, Any]:
        return validator(section, section_path, issues, partial=False)

    return _bound


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"schema_version"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_oracle(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "base_url",
        "enabled",
        "request_timeout_seconds",
        "transport_max_retries",
        "transport_retry_delay_seconds",
        "api_key_env",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed - {"api_key_env"}, path, issues)

    out: dict[str, Any] = {}

    if "base_url" in payload:
        parsed_url = _as_str(payload["base_url"], _join(path, "base_url"), issues)
        if parsed_url is not None:
            if _URL_PATTERN.fullmatch(parsed_url):
                out["base_url"] = parsed_url.rstrip("/")
            else:
                issues.add(_join(path, "base_url"), "must be an http(s) URL")

    if "enabled" in payload:
        parsed_enabled = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
        if parsed_enabled is not None:
            out["enabled"] = parsed_enabled

    if "request_timeout_seconds" in payload:
        parsed_timeout = _as_float(
            payload["request_timeout_seconds"],
            _join(path, "request_timeout_seconds"),
            issues,
            minimum=0.001,
        )
        if parsed_timeout is not None:
            out["request_timeout_seconds"] = parsed_timeout

    if "transport_max_retries" in payload:
        parsed_retries = _as_int(
            payload["transport_max_retries"],
            _join(path, "transport_max_retries"),
            issues,
            minimum=0,
            maximum=MAX_TRANSPORT_RETRIES,
        )
        if parsed_retries is not None:
            out["transport_max_retries"] = parsed_retries

    if "transport_retry_delay_seconds" in payload:
        parsed_delay = _as_float(
            payload["transport_retry_delay_seconds"],
            _join(path, "transport_retry_delay_seconds"),
            issues,
            minimum=0.0,
        )
        if parsed_delay is not None:
            out["transport_retry_delay_seconds"] = parsed_delay

    if "api_key_env" in payload:
        raw_env = payload["api_key_env"]
        if raw_env is None:
            out["api_key_env"] = None
        else:
            parsed_env = _as_env_name(raw_env, _join(path, "api_key_env"), issues)
            if parsed_env is not None:
                out["api_key_env"] = parsed_env

    return out


def _validate_catalog(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"mode", "path"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, {"mode"}, path, issues)

    out: dict[str, Any] = {}
    if "mode" in payload:
        parsed_mode = _as_enum(
            payload["mode"], _join(path, "mode"), issues, allowed_values=CATALOG_MODES
        )
        if parsed_mode is not None:
            out["mode"] = parsed_mode

    if "path" in payload:
        raw_path = payload["path"]
        if raw_path is None:
            out["path"] = None
        else:
            parsed_path = _as_path_text(raw_path, _join(path, "path"), issues)
            if parsed_path is not None:
                out["path"] = parsed_path
    return out


def _validate_evidence(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "challenges_to_submit",
        "first_n",
        "source_label",
        "similarity_score",
        "fingerprint_algorithm",
        "submission_mode",
        "single_wire_format",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    enum_fields: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("challenges_to_submit", CHALLENGE_SELECTIONS),
        ("fingerprint_algorithm", FINGERPRINT_ALGORITHMS),
        ("submission_mode", SUBMISSION_MODES),
        ("single_wire_format", SINGLE_WIRE_FORMATS),
    )
    for key, allowed_values in enum_fields:
        if key in payload:
            parsed = _as_enum(payload[key], _join(path, key), issues, allowed_values=allowed_values)
            if parsed is not None:
                out[key] = parsed

    if "first_n" in payload:
        parsed_first_n = _as_int(payload["first_n"], _join(path, "first_n"), issues, minimum=1)
        if parsed_first_n is not None:
            out["first_n"] = parsed_first_n

    if "source_label" in payload:
        parsed_source = _as_str(payload["source_label"], _join(path, "source_label"), issues)
        if parsed_source is not None:
            out["source_label"] = parsed_source

    if "similarity_score" in payload:
        parsed_score = _as_float(
            payload["similarity_score"],
            _join(path, "similarity_score"),
            issues,
            minimum=0.0,
            maximum=1.0,
        )
        if parsed_score is not None:
            out["similarity_score"] = parsed_score

    return out


def _validate_polling(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"max_attempts", "interval_seconds", "timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, {"max_attempts", "interval_seconds"}, path, issues)

    out: dict[str, Any] = {}
    if "max_attempts" in payload:
        parsed_attempts = _as_int(
            payload["max_attempts"], _join(path, "max_attempts"), issues, minimum=1
        )
        if parsed_attempts is not None:
            out["max_attempts"] = parsed_attempts

    if "interval_seconds" in payload:
        parsed_interval = _as_float(
            payload["interval_seconds"], _join(path, "interval_seconds"), issues, minimum=0.0
        )
        if parsed_interval is not None:
            out["interval_seconds"] = parsed_interval

    if "timeout_seconds" in payload:
        raw_timeout = payload["timeout_seconds"]
        if raw_timeout is None:
            out["timeout_seconds"] = None
        else:
            parsed_timeout = _as_float(
                raw_timeout, _join(path, "timeout_seconds"), issues, minimum=0.001
            )
            if parsed_timeout is not None:
                out["timeout_seconds"] = parsed_timeout
    return out


def _validate_runner(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"max_concurrency", "did_prefix"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_concurrency" in payload:
        parsed_concurrency = _as_int(
            payload["max_concurrency"], _join(path, "max_concurrency"), issues, minimum=1
        )
        if parsed_concurrency is not None:
            out["max_concurrency"] = parsed_concurrency

    if "did_prefix" in payload:
        parsed_prefix = _as_str(payload["did_prefix"], _join(path, "did_prefix"), issues)
        if parsed_prefix is not None:
            if parsed_prefix.startswith("did:") and parsed_prefix.count(":") >= 2:
                out["did_prefix"] = parsed_prefix.rstrip(":")
            else:
                issues.add(_join(path, "did_prefix"), "must look like did:<method>:<name>")
    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}

    if "log_level" in payload:
        parsed_log_level = _as_enum(
            payload["log_level"], _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level

    if "log_dir" in payload:
        parsed_log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_log_dir is not None:
            out["log_dir"] = parsed_log_dir

    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag

    return out


_SectionValidator = Callable[..., dict[str, Any]]

_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "oracle": _validate_oracle,
    "catalog": _validate_catalog,
    "evidence": _validate_evidence,
    "polling": _validate_polling,
    "runner": _validate_runner,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        out[profile_name] = _validate_profile_overlay(profile_obj, profile_path, issues)
    return out


def _validate_profile_overlay(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(_SECTIONS), path, issues)

    out: dict[str, Any] = {}
    for section in _SECTIONS:
        raw = payload.get(section)
        if raw is None:
            continue
        section_path = _join(path, section)
        section_obj = _as_object(raw, section_path, issues)
        if section_obj is None:
            continue
        out[section] = _SECTION_VALIDATORS[section](
            section_obj, section_path, issues, partial=True
        )
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: MFSSIA_API_KEY)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            if _key_is_sensitive_for_redaction(key) and value[key] is not None:
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(value[key], key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return True
    return _looks_sensitive_key(normalized)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "CATALOG_MODES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MfssiaConfig",
    "PATH_FIELDS",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
