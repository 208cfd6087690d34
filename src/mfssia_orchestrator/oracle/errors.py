"""
mfssia-orchestrator — oracle exception taxonomy and bounded retry helper

File: src/mfssia_orchestrator/oracle/errors.py

Purpose
- Exceptions for the conditions that are not ordinary stage outcomes: no
  response received, request timeout, or a body that was not the JSON the
  endpoint mandates.
- A retry loop that only ever re-issues a request when the error says it is
  safe to do so.

Expected conditions (not found, ``success: false``, terminal instance, non-2xx
status) are NOT exceptions; they are decoded into outcome values by
``oracle.envelope``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unknown error"
    return " ".join(text.split())


class OracleError(RuntimeError):
    """Base normalized oracle error with deterministic machine-readable fields."""

    def __init__(
        self,
        *,
        code: str,
        detail: str,
        retryable: bool,
        endpoint: str | None = None,
        http_status: int | None = None,
    ) -> None:
        self.code = code
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        self.endpoint = endpoint
        self.http_status = http_status

        parts = [f"code={self.code}", f"retryable={str(self.retryable).lower()}"]
        if self.endpoint is not None:
            parts.append(f"endpoint={self.endpoint}")
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))


class OracleTransportError(OracleError):
    """
    Network failure: no response was received.

    ``request_sent`` is False only when the connection never carried the
    request (connect refused, connect timeout), which is the one case where a
    non-idempotent call may be safely re-issued.
    """

    def __init__(
        self,
        detail: str,
        *,
        endpoint: str | None = None,
        code: str = "transport",
        request_sent: bool = True,
        retryable: bool = True,
    ) -> None:
        self.request_sent = request_sent
        super().__init__(code=code, detail=detail, retryable=retryable, endpoint=endpoint)


class OracleTimeoutError(OracleTransportError):
    """Request-level timeout elapsed without a response."""

    def __init__(
        self,
        detail: str,
        *,
        endpoint: str | None = None,
        request_sent: bool = True,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            detail,
            endpoint=endpoint,
            code="timeout",
            request_sent=request_sent,
            retryable=retryable,
        )


class OracleResponseError(OracleError):
    """The oracle answered, but not with the JSON object the endpoint mandates."""

    def __init__(
        self,
        detail: str,
        *,
        endpoint: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            code="response_invalid",
            detail=detail,
            retryable=False,
            endpoint=endpoint,
            http_status=http_status,
        )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Small fixed retry budget with a constant delay between attempts."""

    max_retries: int = 2
    delay_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


NO_RETRY = RetryPolicy(max_retries=0, delay_seconds=0.0)

_ResultT = TypeVar("_ResultT")
RetryCallback: TypeAlias = Callable[[int, OracleError, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    map_exception: Callable[[Exception], OracleError],
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
    on_retry: RetryCallback | None = None,
) -> _ResultT:
    """Run an async operation, retrying only errors that are marked retryable."""

    retry_count = 0
    while True:
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            mapped = exc if isinstance(exc, OracleError) else map_exception(exc)
            if not isinstance(mapped, OracleError):
                raise TypeError("map_exception must return OracleError") from exc

            if not mapped.retryable or retry_count >= policy.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            retry_count += 1
            if on_retry is not None:
                on_retry(retry_count, mapped, policy.delay_seconds)
            await sleep(policy.delay_seconds)


__all__ = [
    "NO_RETRY",
    "OracleError",
    "OracleResponseError",
    "OracleTimeoutError",
    "OracleTransportError",
    "RetryCallback",
    "RetryPolicy",
    "SleepFn",
    "run_with_retries",
]
