"""In-process lifecycle event log with bounded history and isolated listeners."""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from mfssia_orchestrator.domain.ids import generate_event_id
from mfssia_orchestrator.domain.models import JSONValue, iso8601_millis

logger = logging.getLogger(__name__)

_MAX_JSON_DEPTH: Final[int] = 16
_DEFAULT_ERROR_BUFFER: Final[int] = 1024


class FlowEventType(StrEnum):
    DID_REGISTERED = "did.registered"
    INSTANCE_CREATED = "instance.created"
    INSTANCE_STATE_CHANGED = "instance.state_changed"
    SUBMISSION_STARTED = "submission.started"
    SUBMISSION_SUCCESS = "submission.success"
    SUBMISSION_FAILED = "submission.failed"
    ATTESTATION_FETCHING = "attestation.fetching"
    ATTESTATION_SUCCESS = "attestation.success"
    ATTESTATION_FAILED = "attestation.failed"


class EventStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class FlowEvent:
    event_id: str
    event_type: FlowEventType
    timestamp: datetime
    status: EventStatus
    did: str | None = None
    instance_id: str | None = None
    challenge_set: str | None = None
    data: Mapping[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "eventId": self.event_id,
            "type": self.event_type.value,
            "timestamp": iso8601_millis(self.timestamp),
            "status": self.status.value,
            "data": dict(self.data),
        }
        if self.did is not None:
            out["did"] = self.did
        if self.instance_id is not None:
            out["instanceId"] = self.instance_id
        if self.challenge_set is not None:
            out["challengeSet"] = self.challenge_set
        return out


Listener = Callable[[FlowEvent], object]


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Listener failure captured without interrupting the publishing stage."""

    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: FlowEventType | None
    callback: Listener


class EventLog:
    """
    Bounded, thread-safe event log.

    Listeners run synchronously in publish order. A raising listener is
    recorded as a ``DispatchError`` and never propagates into the stage that
    emitted the event.
    """

    def __init__(self, *, buffer_size: int = 512) -> None:
        if not isinstance(buffer_size, int) or isinstance(buffer_size, bool):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer = deque[FlowEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, event_type: FlowEventType | str | None, callback: Listener) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""
        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else FlowEventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: FlowEvent) -> tuple[DispatchError, ...]:
        if not isinstance(event, FlowEvent):
            raise ValueError(f"event must be FlowEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if subscription.event_type is not None and subscription.event_type != event.event_type:
                continue
            try:
                subscription.callback(event)
            except Exception as exc:  # noqa: BLE001
                error = DispatchError(
                    event_id=event.event_id,
                    target=_callback_name(subscription.callback),
                    error_type=exc.__class__.__name__,
                    message=str(exc),
                )
                logger.warning(
                    "event listener failed",
                    extra={"event_type": event.event_type.value, "target": error.target},
                )
                errors.append(error)

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def emit(
        self,
        event_type: FlowEventType,
        *,
        status: EventStatus = EventStatus.SUCCESS,
        did: str | None = None,
        instance_id: str | None = None,
        challenge_set: str | None = None,
        data: Mapping[str, object] | None = None,
    ) -> FlowEvent:
        """Build and publish one event."""
        event = FlowEvent(
            event_id=generate_event_id(),
            event_type=FlowEventType(event_type),
            timestamp=datetime.now(tz=UTC),
            status=status,
            did=did,
            instance_id=instance_id,
            challenge_set=challenge_set,
            data=_as_json_object(data or {}, "data"),
        )
        self.publish(event)
        return event

    def history(
        self,
        *,
        event_type: FlowEventType | str | None = None,
        did: str | None = None,
        limit: int | None = None,
    ) -> tuple[FlowEvent, ...]:
        """Buffered events in publish order, optionally filtered."""
        type_filter = None if event_type is None else FlowEventType(event_type)
        with self._lock:
            events = tuple(self._buffer)
        filtered = [
            event
            for event in events
            if (type_filter is None or event.event_type == type_filter)
            and (did is None or event.did == did)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
            self._dispatch_errors.clear()


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _as_json_object(value: Mapping[str, object], path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


__all__ = [
    "DispatchError",
    "EventLog",
    "EventStatus",
    "FlowEvent",
    "FlowEventType",
    "Listener",
]
