from __future__ import annotations

import pytest
from pydantic import ValidationError

from admissions.events import ApplicationSubmitted, EventBus, EventType, emit_application_submitted


def _payload(app_id="APP-1"):
    return {"applicationId": app_id, "applicantName": "Ada Lovelace", "applicantEmail": "ada@example.com"}


def test_every_subscriber_receives_typed_payload():
    bus = EventBus()
    got_a, got_b = [], []
    bus.on(EventType.APPLICATION_SUBMITTED, got_a.append)
    bus.on(EventType.APPLICATION_SUBMITTED, got_b.append)
    bus.emit(EventType.APPLICATION_SUBMITTED, _payload())
    assert isinstance(got_a[0], ApplicationSubmitted)
    assert got_a == got_b


def test_no_replay_for_late_subscribers():
    bus = EventBus()
    bus.emit(EventType.APPLICATION_SUBMITTED, _payload())
    late = []
    bus.on(EventType.APPLICATION_SUBMITTED, late.append)
    assert late == []


def test_unsubscribe_and_off():
    bus = EventBus()
    seen = []
    unsubscribe = bus.on(EventType.APPLICATION_SUBMITTED, seen.append)
    unsubscribe()
    unsubscribe()
    bus.emit(EventType.APPLICATION_SUBMITTED, _payload())
    assert seen == []
    bus.on(EventType.APPLICATION_APPROVED, seen.append)
    bus.off(EventType.APPLICATION_APPROVED)
    assert bus.handler_count(EventType.APPLICATION_APPROVED) == 0


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.on(EventType.APPLICATION_SUBMITTED, broken)
    bus.on(EventType.APPLICATION_SUBMITTED, seen.append)
    emit_application_submitted(bus, "APP-2", "Ada Lovelace", "ada@example.com")
    assert seen[0].applicationId == "APP-2"


def test_payload_shape_is_checked():
    bus = EventBus()
    with pytest.raises(ValidationError):
        bus.emit(EventType.APPLICATION_SUBMITTED, {"applicationId": "APP-3"})


def test_event_types_accept_their_string_values():
    bus = EventBus()
    seen = []
    bus.on("application_submitted", seen.append)
    bus.emit(EventType.APPLICATION_SUBMITTED, _payload())
    assert len(seen) == 1
