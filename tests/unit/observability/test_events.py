"""
mfssia-orchestrator — unit tests for the lifecycle event log

File: tests/unit/observability/test_events.py

Purpose
- Validate listener fanout, failure isolation, bounded history and the
  camelCase event shape.
"""

from __future__ import annotations

import pytest

import mfssia_orchestrator.observability as observability_pkg
from mfssia_orchestrator.observability.events import (
    EventLog,
    EventStatus,
    FlowEvent,
    FlowEventType,
)


def test_listeners_receive_events_in_publish_order() -> None:
    log = EventLog(buffer_size=10)
    every: list[str] = []
    registered_only: list[str] = []

    log.subscribe(None, lambda event: every.append(event.event_type.value))
    log.subscribe("did.registered", lambda event: registered_only.append(event.did or ""))

    log.emit(FlowEventType.DID_REGISTERED, did="did:web:x:y")
    log.emit(FlowEventType.INSTANCE_CREATED, instance_id="inst-1")

    assert every == ["did.registered", "instance.created"]
    assert registered_only == ["did:web:x:y"]


def test_listener_failure_is_recorded_and_isolated() -> None:
    log = EventLog()
    received: list[FlowEvent] = []

    def broken(_event: FlowEvent) -> None:
        raise RuntimeError("listener down")

    log.subscribe(None, broken)
    log.subscribe(None, received.append)

    event = log.emit(FlowEventType.SUBMISSION_FAILED, status=EventStatus.ERROR)

    assert received == [event]
    [error] = log.dispatch_errors()
    assert error.event_id == event.event_id
    assert error.target == "broken"
    assert error.error_type == "RuntimeError"
    assert error.message == "listener down"


def test_unsubscribe_stops_delivery() -> None:
    log = EventLog()
    received: list[FlowEvent] = []
    token = log.subscribe(None, received.append)

    assert log.unsubscribe(token)
    assert not log.unsubscribe(token)
    log.emit(FlowEventType.ATTESTATION_FETCHING)

    assert received == []


def test_history_is_bounded_and_filterable() -> None:
    log = EventLog(buffer_size=3)
    for index in range(5):
        log.emit(
            FlowEventType.ATTESTATION_FETCHING,
            status=EventStatus.PENDING,
            did="did:web:a:b" if index % 2 else "did:web:c:d",
            data={"attempt": index},
        )

    assert [event.data["attempt"] for event in log.history()] == [2, 3, 4]
    assert [event.data["attempt"] for event in log.history(did="did:web:a:b")] == [3]
    assert [event.data["attempt"] for event in log.history(limit=1)] == [4]
    assert log.history(limit=0) == ()
    assert log.history(event_type=FlowEventType.DID_REGISTERED) == ()

    log.clear()
    assert log.history() == ()


def test_event_to_dict_uses_camel_case_and_omits_absent_ids() -> None:
    event = EventLog().emit(
        FlowEventType.INSTANCE_STATE_CHANGED,
        instance_id="inst-1",
        data={"from": "PENDING_CHALLENGE", "to": "VERIFIED", "ids": ("C-1",)},
    )

    payload = event.to_dict()

    assert payload["type"] == "instance.state_changed"
    assert payload["status"] == "success"
    assert payload["instanceId"] == "inst-1"
    assert payload["data"] == {"from": "PENDING_CHALLENGE", "to": "VERIFIED", "ids": ["C-1"]}
    assert str(payload["eventId"]).startswith("evt-")
    assert str(payload["timestamp"]).endswith("Z")
    assert "did" not in payload
    assert "challengeSet" not in payload


@pytest.mark.parametrize(
    "data",
    [{"value": float("nan")}, {"value": object()}, {1: "non-string key"}],
)
def test_non_json_event_data_is_rejected(data: dict[object, object]) -> None:
    with pytest.raises(ValueError):
        EventLog().emit(FlowEventType.SUBMISSION_STARTED, data=data)  # type: ignore[arg-type]


def test_invalid_construction_and_subscription() -> None:
    with pytest.raises(ValueError, match="buffer_size"):
        EventLog(buffer_size=0)
    with pytest.raises(ValueError, match="callable"):
        EventLog().subscribe(None, "not callable")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        EventLog().subscribe("no.such.event", print)


def test_observability_package_exports_event_log() -> None:
    assert observability_pkg.EventLog is EventLog
