"""
Shared fixtures for mfssia-orchestrator tests.

- ``oracle``: a routed fake transport. Each ``(method, path)`` route holds a
  queue of scripted replies; the last reply repeats once the queue drains.
  Every request is recorded so tests can assert what was (not) sent.
- ``sleep_recorder``: async sleep stand-in that records requested delays and
  advances a simulated monotonic clock.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

import pytest

from mfssia_orchestrator.domain.models import JSONValue
from mfssia_orchestrator.observability.logging import shutdown_logging
from mfssia_orchestrator.oracle.envelope import OracleResponse


@dataclass(frozen=True, slots=True)
class RecordedCall:
    method: str
    path: str
    json_body: dict[str, JSONValue] | None


@dataclass(slots=True)
class RoutedTransport:
    routes: dict[tuple[str, str], deque[OracleResponse | Exception]] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def reply(
        self, method: str, path: str, status: int, body: JSONValue = None
    ) -> RoutedTransport:
        key = (method.upper(), path)
        self.routes.setdefault(key, deque()).append(
            OracleResponse(status=status, body=body, endpoint=f"{key[0]} {path}")
        )
        return self

    def ok(self, method: str, path: str, data: JSONValue = None, **extra: JSONValue) -> RoutedTransport:
        return self.reply(method, path, 200, {"success": True, "data": data, **extra})

    def reject(self, method: str, path: str, message: str) -> RoutedTransport:
        return self.reply(method, path, 200, {"success": False, "message": message})

    def fail(self, method: str, path: str, exc: Exception) -> RoutedTransport:
        self.routes.setdefault((method.upper(), path), deque()).append(exc)
        return self

    def calls_to(self, method: str, path_prefix: str) -> list[RecordedCall]:
        return [
            call
            for call in self.calls
            if call.method == method.upper() and call.path.startswith(path_prefix)
        ]

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, JSONValue] | None = None,
    ) -> OracleResponse:
        verb = method.upper()
        self.calls.append(
            RecordedCall(verb, path, dict(json_body) if json_body is not None else None)
        )
        queue = self._match(verb, path)
        if queue is None:
            return OracleResponse(
                status=404,
                body={"success": False, "message": f"no route for {verb} {path}"},
                endpoint=f"{verb} {path}",
            )
        outcome = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _match(self, verb: str, path: str) -> deque[OracleResponse | Exception] | None:
        exact = self.routes.get((verb, path))
        if exact is not None:
            return exact
        prefixed = [
            (route_path, queue)
            for (route_verb, route_path), queue in self.routes.items()
            if route_verb == verb and path.startswith(route_path.rstrip("/") + "/")
        ]
        if not prefixed:
            return None
        return max(prefixed, key=lambda item: len(item[0]))[1]


@dataclass(slots=True)
class SleepRecorder:
    calls: list[float] = field(default_factory=list)
    now: float = 0.0

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.now += seconds

    def clock(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def _shutdown_logging() -> Iterator[None]:
    yield
    shutdown_logging()


@pytest.fixture
def oracle() -> RoutedTransport:
    return RoutedTransport()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
