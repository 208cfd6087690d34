"""
mfssia-orchestrator — HTTP transport to the oracle

File: src/mfssia_orchestrator/oracle/transport.py

Purpose
- Issue one JSON request per call against the configured base URL and hand
  back the raw status and decoded body.
- Apply the request-level timeout on every call.
- Retry with a small fixed budget only where it is safe:
  - GET (idempotent) on any transport failure;
  - any other method only when the request never left the client.

Non-2xx statuses are returned, not raised; interpreting them belongs to
``oracle.envelope``. Business rejections are therefore never retried here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Final, Protocol, runtime_checkable

import httpx

from mfssia_orchestrator.constants import (
    DEFAULT_ORACLE_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)
from mfssia_orchestrator.domain.models import JSONValue
from mfssia_orchestrator.oracle.envelope import OracleResponse
from mfssia_orchestrator.oracle.errors import (
    NO_RETRY,
    OracleError,
    OracleTimeoutError,
    OracleTransportError,
    RetryPolicy,
    SleepFn,
    run_with_retries,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD", "OPTIONS"})


@runtime_checkable
class OracleTransport(Protocol):
    """Seam between the oracle client and the network."""

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, JSONValue] | None = None,
    ) -> OracleResponse: ...


def map_httpx_exception(
    exc: Exception, *, endpoint: str, idempotent: bool
) -> OracleError:
    """Normalize an httpx failure, deciding whether a retry is safe."""

    request_sent = not isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
    retryable = idempotent or not request_sent
    if isinstance(exc, httpx.TimeoutException):
        return OracleTimeoutError(
            f"{type(exc).__name__}: {exc}",
            endpoint=endpoint,
            request_sent=request_sent,
            retryable=retryable,
        )
    if isinstance(exc, httpx.TransportError):
        return OracleTransportError(
            f"{type(exc).__name__}: {exc}",
            endpoint=endpoint,
            request_sent=request_sent,
            retryable=retryable,
        )
    return OracleTransportError(
        f"unexpected client failure {type(exc).__name__}: {exc}",
        endpoint=endpoint,
        request_sent=True,
        retryable=False,
    )


def _decode_body(response: httpx.Response) -> JSONValue:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        # non-JSON body
        return None


class HttpOracleTransport:
    """``httpx.AsyncClient``-backed transport with bounded, safety-aware retries."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_ORACLE_BASE_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy = NO_RETRY,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy
        self._sleep = sleep
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(
            timeout=timeout_seconds,
            headers=headers,
        )
        if client is not None:
            self._client.headers.update(headers)

    async def __aenter__(self) -> HttpOracleTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, JSONValue] | None = None,
    ) -> OracleResponse:
        verb = method.upper()
        endpoint = f"{verb} {path}"
        idempotent = verb in IDEMPOTENT_METHODS

        async def _send() -> OracleResponse:
            response = await self._client.request(
                verb,
                self._url(path),
                json=dict(json_body) if json_body is not None else None,
                timeout=self.timeout_seconds,
            )
            return OracleResponse(
                status=response.status_code,
                body=_decode_body(response),
                endpoint=endpoint,
            )

        def _on_retry(retry_number: int, error: OracleError, delay: float) -> None:
            logger.warning(
                "retrying oracle request",
                extra={
                    "endpoint": endpoint,
                    "retry_number": retry_number,
                    "error_code": error.code,
                    "delay_seconds": delay,
                },
            )

        response = await run_with_retries(
            _send,
            map_exception=lambda exc: map_httpx_exception(
                exc, endpoint=endpoint, idempotent=idempotent
            ),
            policy=self.retry_policy,
            sleep=self._sleep,
            on_retry=_on_retry,
        )
        logger.debug(
            "oracle request completed",
            extra={"endpoint": endpoint, "http_status": response.status},
        )
        return response


__all__ = [
    "HttpOracleTransport",
    "IDEMPOTENT_METHODS",
    "OracleTransport",
    "map_httpx_exception",
]
