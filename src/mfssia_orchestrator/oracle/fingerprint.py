"""
Fixed-width ``0x``-prefixed hex fingerprints for evidence content identifiers.

Two encoders share one output contract (``0x`` followed by exactly 64 lowercase
hex digits, 66 characters in total):

- ``encode``: the oracle's placeholder digest. Each UTF-16 code unit of the
  input becomes at least two lowercase hex digits; the concatenation is cut to
  64 digits and left-padded with ``0``. Pure and total, but with no pre-image
  or collision resistance.
- ``encode_sha256``: SHA-256 over the UTF-8 bytes of the input.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from enum import StrEnum
from typing import Final

HEX_DIGITS: Final[int] = 64
FINGERPRINT_LENGTH: Final[int] = HEX_DIGITS + 2
FINGERPRINT_PREFIX: Final[str] = "0x"


class FingerprintAlgorithm(StrEnum):
    HEX = "hex"
    SHA256 = "sha256"


Encoder = Callable[[str], str]


def encode(text: str) -> str:
    """Encode ``text`` with the oracle's placeholder hex scheme."""
    if not isinstance(text, str):
        raise TypeError(f"fingerprint input must be a string, got {type(text).__name__}")

    # JavaScript strings index by UTF-16 code unit; astral characters count twice.
    raw = text.encode("utf-16-be", "surrogatepass")
    digits: list[str] = []
    produced = 0
    for offset in range(0, len(raw), 2):
        unit = format(int.from_bytes(raw[offset : offset + 2], "big"), "02x")
        digits.append(unit)
        produced += len(unit)
        if produced >= HEX_DIGITS:
            break
    hex_body = "".join(digits)[:HEX_DIGITS]
    return FINGERPRINT_PREFIX + hex_body.rjust(HEX_DIGITS, "0")


def encode_sha256(text: str) -> str:
    """Encode ``text`` as a SHA-256 digest under the same fixed-width contract."""
    if not isinstance(text, str):
        raise TypeError(f"fingerprint input must be a string, got {type(text).__name__}")
    return FINGERPRINT_PREFIX + hashlib.sha256(text.encode("utf-8")).hexdigest()


_ENCODERS: Final[dict[FingerprintAlgorithm, Encoder]] = {
    FingerprintAlgorithm.HEX: encode,
    FingerprintAlgorithm.SHA256: encode_sha256,
}


def get_encoder(algorithm: FingerprintAlgorithm | str) -> Encoder:
    try:
        return _ENCODERS[FingerprintAlgorithm(algorithm)]
    except ValueError as exc:
        allowed = ", ".join(item.value for item in FingerprintAlgorithm)
        raise ValueError(
            f"unknown fingerprint algorithm {algorithm!r}; expected one of: {allowed}"
        ) from exc


def is_fingerprint(value: object) -> bool:
    """Return True when ``value`` satisfies the fixed-width fingerprint contract."""
    if not isinstance(value, str) or len(value) != FINGERPRINT_LENGTH:
        return False
    if not value.startswith(FINGERPRINT_PREFIX):
        return False
    return all(char in "0123456789abcdef" for char in value[2:])


__all__ = [
    "FINGERPRINT_LENGTH",
    "FINGERPRINT_PREFIX",
    "FingerprintAlgorithm",
    "encode",
    "encode_sha256",
    "get_encoder",
    "is_fingerprint",
]
