"""Collision-resistant ID and DID minting for orchestration runs."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

from mfssia_orchestrator.constants import DEFAULT_DID_PREFIX

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

# Stable entity ID prefixes.
RUN_ID_PREFIX: Final[str] = "run"
EVENT_ID_PREFIX: Final[str] = "evt"

_DID_SET_CODE_STRIP_RE: Final[re.Pattern[str]] = re.compile(r"[^a-zA-Z0-9]")
_DID_RE: Final[re.Pattern[str]] = re.compile(r"^did:[a-z0-9]+:\S+$")

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes)
    ulid_value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    return _encode_crockford_base32(ulid_value, ULID_LENGTH)


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a stable prefixed ID in the form ``<prefix>-<ulid>``."""
    _validate_prefix(prefix)
    return f"{prefix}{_PREFIX_SEPARATOR}{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    return generate_prefixed_id(RUN_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_event_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(EVENT_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def sanitize_set_code(challenge_set_code: str) -> str:
    """Strip every non-alphanumeric character from a challenge-set code."""
    if not isinstance(challenge_set_code, str):
        raise ValueError(
            f"challenge set code must be a string, got {type(challenge_set_code).__name__}"
        )
    return _DID_SET_CODE_STRIP_RE.sub("", challenge_set_code)


def mint_did(
    challenge_set_code: str,
    *,
    prefix: str = DEFAULT_DID_PREFIX,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """
    Mint a fresh test DID for one orchestration run.

    Format: ``<prefix>:test-<sanitized set code>-<ULID>``. The ULID carries 80
    random bits, so two runs started in the same millisecond still receive
    distinct identifiers.
    """
    validate_did_prefix(prefix)
    sanitized = sanitize_set_code(challenge_set_code)
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    did = f"{prefix}:test-{sanitized}-{ulid}"
    validate_did(did)
    return did


def validate_did_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"did prefix must be a string, got {type(prefix).__name__}")
    if not prefix.startswith("did:") or prefix.endswith(":"):
        raise ValueError(f"did prefix must look like 'did:<method>[:...]', got {prefix!r}")
    if any(char.isspace() for char in prefix):
        raise ValueError("did prefix must not contain whitespace")


def validate_did(did: str) -> None:
    """Validate the coarse ``did:<method>:<id>`` shape."""
    if not isinstance(did, str):
        raise ValueError(f"did must be a string, got {type(did).__name__}")
    if not _DID_RE.fullmatch(did):
        raise ValueError(f"did must match 'did:<method>:<id>', got {did!r}")


def _resolve_timestamp_ms(timestamp_ms: int | None) -> int:
    resolved = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(resolved, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(resolved).__name__}")
    if not 0 <= resolved <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {resolved}"
        )
    return resolved


def _resolve_random_bytes(randbytes: _RandBytes | None) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return as_bytes


def _encode_crockford_base32(value: int, length: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")

    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_PREFIX_SEPARATOR}'")


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_event_id",
    "generate_prefixed_id",
    "generate_run_id",
    "generate_ulid",
    "mint_did",
    "sanitize_set_code",
    "validate_did",
    "validate_did_prefix",
]
