"""
Tagged decoding of oracle replies.

Every reply is decoded exactly once into ``Ok | Business | Upstream`` so the
lifecycle stages never re-inspect raw response shapes:

- ``Upstream``: any non-2xx status. Carries an advisory hint picked from the
  status code; the hint never changes the outcome kind.
- ``Business``: a 2xx reply whose ``success`` flag is not ``true`` (when the
  endpoint mandates one) or is explicitly ``false``.
- ``Ok``: everything else; ``data`` is the reply's ``data`` member.

A 2xx reply whose body is not a JSON object raises ``OracleResponseError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from mfssia_orchestrator.domain.models import JSONValue
from mfssia_orchestrator.oracle.errors import OracleResponseError

STATUS_HINTS: Final[Mapping[int, str]] = {
    400: "Check that the evidence format matches the challenge requirements.",
    404: "Challenge instance or challenge definition not found.",
    409: "Instance may be in a state that does not accept evidence.",
    422: "Evidence format validation failed. Check required fields.",
    500: "MFSSIA API internal error. Try again later.",
}
_SERVER_ERROR_HINT: Final[str] = STATUS_HINTS[500]
_DEFAULT_HINT: Final[str] = "Unexpected response from the MFSSIA API."


def status_hint(status: int) -> str:
    """Advisory operator hint for an upstream HTTP status."""
    hint = STATUS_HINTS.get(status)
    if hint is not None:
        return hint
    if status >= 500:
        return _SERVER_ERROR_HINT
    return _DEFAULT_HINT


@dataclass(frozen=True, slots=True)
class OracleResponse:
    """Raw reply as observed by the transport."""

    status: int
    body: JSONValue
    endpoint: str

    @property
    def is_success_status(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True, slots=True)
class Ok:
    data: JSONValue
    message: str | None = None
    body: Mapping[str, JSONValue] | None = None


@dataclass(frozen=True, slots=True)
class Business:
    message: str
    body: Mapping[str, JSONValue] | None = None


@dataclass(frozen=True, slots=True)
class Upstream:
    status: int
    hint: str
    message: str = ""


Envelope = Ok | Business | Upstream


def _message_of(body: JSONValue) -> str | None:
    if not isinstance(body, Mapping):
        return None
    for key in ("message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def decode(response: OracleResponse, *, require_success_flag: bool = False) -> Envelope:
    """Decode one reply; see the module docstring for the tagging rules."""
    if not response.is_success_status:
        return Upstream(
            status=response.status,
            hint=status_hint(response.status),
            message=_message_of(response.body) or "",
        )

    body = response.body
    if not isinstance(body, Mapping):
        raise OracleResponseError(
            f"expected a JSON object, got {type(body).__name__}",
            endpoint=response.endpoint,
            http_status=response.status,
        )

    flag = body.get("success")
    if flag is False or (require_success_flag and flag is not True):
        return Business(message=_message_of(body) or "Unknown error", body=body)
    return Ok(data=body.get("data"), message=_message_of(body), body=body)


def unwrap_state(body: Mapping[str, JSONValue]) -> JSONValue:
    """
    Read an instance state from a GET reply.

    Canonical shape is ``{"data": {"state": ...}}``; a top-level ``{"state": ...}``
    is accepted as a fallback.
    """
    data = body.get("data")
    if isinstance(data, Mapping) and "state" in data:
        return data.get("state")
    return body.get("state")


__all__ = [
    "Business",
    "Envelope",
    "Ok",
    "OracleResponse",
    "STATUS_HINTS",
    "Upstream",
    "decode",
    "status_hint",
    "unwrap_state",
]
