"""Tests for the stream message classifier and notification builder."""

import orjson

from fieldsales_tracker.events import (
    MAX_RAW_PAYLOAD_BYTES,
    build_notification,
    classify,
    notification_title,
)
from fieldsales_tracker.models import ActivityLogEvent, ConnectedEvent, MalformedMessage


def _activity(**fields) -> str:
    data = {
        "action": "Status changed",
        "timestamp": "2025-03-01T09:15:00.000Z",
        "actor": {"id": "u-42", "username": "rana"},
        "leadId": {"id": "lead-9001"},
        "description": "Lead moved after site visit",
    }
    data.update(fields)
    return orjson.dumps({"type": "NEW_ACTIVITY_LOG", "data": data}).decode()


def test_connected_message() -> None:
    result = classify('{"type": "connected", "id": "c-123"}')
    assert result == ConnectedEvent(connection_id="c-123")


def test_unknown_type_is_ignored() -> None:
    assert classify('{"type": "LEAD_ASSIGNED", "data": {}}') is None


def test_invalid_json() -> None:
    result = classify("{not json")
    assert isinstance(result, MalformedMessage)
    assert result.code == "parse_error"


def test_non_object_json() -> None:
    result = classify("[1, 2, 3]")
    assert isinstance(result, MalformedMessage)
    assert result.code == "schema_mismatch"


def test_activity_without_action() -> None:
    result = classify(_activity(action=""))
    assert isinstance(result, MalformedMessage)
    assert result.code == "missing_fields"


def test_activity_fields() -> None:
    result = classify(_activity(previousValue="New", newValue="Qualified"))
    assert result == ActivityLogEvent(
        action="Status changed",
        timestamp="2025-03-01T09:15:00.000Z",
        actor_id="u-42",
        actor_username="rana",
        lead_id="lead-9001",
        previous_value="New",
        new_value="Qualified",
        description="Lead moved after site visit",
    )


def test_legacy_field_names() -> None:
    raw = orjson.dumps({
        "type": "NEW_ACTIVITY_LOG",
        "data": {
            "action": "Comment added",
            "Userid": {"_id": "64f0", "username": "omar"},
            "LeadId": {"_id": "65aa"},
            "description": "Called back",
        },
    })
    result = classify(raw)
    assert isinstance(result, ActivityLogEvent)
    assert result.actor_id == "64f0"
    assert result.actor_username == "omar"
    assert result.lead_id == "65aa"


def test_flat_activity_payload() -> None:
    raw = '{"type": "NEW_ACTIVITY_LOG", "action": "Reminder set", "description": "x"}'
    result = classify(raw)
    assert isinstance(result, ActivityLogEvent)
    assert result.action == "Reminder set"


class TestTitle:
    """Title composition: previous value always before new value."""

    def test_both_values(self) -> None:
        event = classify(_activity(previousValue="New", newValue="Qualified"))
        assert notification_title(event) == "Status changed by rana from New to Qualified"

    def test_neither_value(self) -> None:
        event = classify(_activity())
        assert notification_title(event) == "Status changed by rana"

    def test_only_previous(self) -> None:
        event = classify(_activity(previousValue="New"))
        assert notification_title(event) == "Status changed by rana from New"

    def test_only_new(self) -> None:
        event = classify(_activity(newValue="Qualified"))
        assert notification_title(event) == "Status changed by rana to Qualified"

    def test_unknown_user(self) -> None:
        event = classify(_activity(actor={"id": "u-1"}))
        assert notification_title(event) == "Status changed by Unknown User"

    def test_missing_actor(self) -> None:
        event = classify(_activity(actor=None))
        assert notification_title(event) == "Status changed by Unknown User"
        assert event.actor_id is None


def test_build_notification() -> None:
    event = classify(_activity(newValue="Won"))
    notification = build_notification(event)
    assert notification.title == "Status changed by rana to Won"
    assert notification.body == "Lead moved after site visit"
    assert notification.data == {
        "timestamp": "2025-03-01T09:15:00.000Z",
        "userId": "u-42",
        "leadId": "lead-9001",
    }
    assert notification.trigger is None


def test_raw_payload_truncation() -> None:
    raw = '{"type": "' + "x" * (MAX_RAW_PAYLOAD_BYTES + 500)
    result = classify(raw)
    assert isinstance(result, MalformedMessage)
    assert result.raw_payload_truncated is True
    assert len(result.raw_payload) <= MAX_RAW_PAYLOAD_BYTES
