"""Classify live stream messages and turn activity logs into notifications.

Classification pipeline::

    raw data string
      │
      ├─ JSON parse failure         → MalformedMessage(code="parse_error")
      ├─ not an object              → MalformedMessage(code="schema_mismatch")
      ├─ type == "connected"        → ConnectedEvent
      ├─ type == "NEW_ACTIVITY_LOG"
      │    ├─ no action             → MalformedMessage(code="missing_fields")
      │    └─ valid                 → ActivityLogEvent
      └─ any other type             → None  (ignored)
"""

from __future__ import annotations

from typing import Any, Optional, Union

import orjson

from fieldsales_tracker.models import (
    UNKNOWN_USER,
    ActivityLogEvent,
    ConnectedEvent,
    LocalNotification,
    MalformedMessage,
)

# Maximum bytes of raw payload kept on a malformed record.
MAX_RAW_PAYLOAD_BYTES = 4096

CONNECTED = "connected"
NEW_ACTIVITY_LOG = "NEW_ACTIVITY_LOG"

StreamMessage = Union[ConnectedEvent, ActivityLogEvent, MalformedMessage, None]


def classify(raw: str | bytes) -> StreamMessage:
    """Classify the ``data`` of one stream message.

    Returns
    -------
    ConnectedEvent
        For the server greeting.
    ActivityLogEvent
        For a usable ``NEW_ACTIVITY_LOG``.
    MalformedMessage
        When the data is not JSON or lacks required fields.
    None
        For every other ``type``.
    """
    try:
        msg = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        return _malformed("parse_error", str(exc), raw)

    if not isinstance(msg, dict):
        return _malformed("schema_mismatch", "Message is not a JSON object", raw)

    msg_type = msg.get("type")
    if msg_type == CONNECTED:
        conn_id = msg.get("id")
        return ConnectedEvent(connection_id=None if conn_id is None else str(conn_id))
    if msg_type != NEW_ACTIVITY_LOG:
        return None

    # The backend nests the activity under ``data``.
    payload = msg.get("data") if isinstance(msg.get("data"), dict) else msg
    action = payload.get("action")
    if not action:
        return _malformed("missing_fields", "Activity log missing required field: action", raw)

    actor = _first_dict(payload, "actor", "Userid")
    lead = _first_dict(payload, "leadId", "LeadId")

    return ActivityLogEvent(
        action=str(action),
        timestamp=payload.get("timestamp"),
        actor_id=_ref_id(actor),
        actor_username=actor.get("username") or None,
        lead_id=_ref_id(lead),
        previous_value=_text(payload.get("previousValue")),
        new_value=_text(payload.get("newValue")),
        description=str(payload.get("description") or ""),
    )


def notification_title(event: ActivityLogEvent) -> str:
    """``"<action> by <user>[ from <previous>][ to <new>]"``."""
    title = f"{event.action} by {event.actor_username or UNKNOWN_USER}"
    if event.previous_value:
        title += f" from {event.previous_value}"
    if event.new_value:
        title += f" to {event.new_value}"
    return title


def build_notification(event: ActivityLogEvent) -> LocalNotification:
    """Immediate notification for an activity log entry."""
    return LocalNotification(
        title=notification_title(event),
        body=event.description,
        data={
            "timestamp": event.timestamp,
            "userId": event.actor_id,
            "leadId": event.lead_id,
        },
        trigger=None,
    )


# ── helpers ─────────────────────────────────────────────────────────


def _first_dict(obj: dict, *keys: str) -> dict:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _ref_id(ref: dict) -> Optional[str]:
    value = ref.get("id", ref.get("_id"))
    return None if value is None else str(value)


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _malformed(code: str, message: str, raw: str | bytes) -> MalformedMessage:
    raw_str = raw if isinstance(raw, str) else raw.decode("utf-8", errors="replace")
    truncated = len(raw_str.encode("utf-8")) > MAX_RAW_PAYLOAD_BYTES
    if truncated:
        raw_str = raw_str[:MAX_RAW_PAYLOAD_BYTES]
    return MalformedMessage(
        code=code,
        message=message,
        raw_payload=raw_str,
        raw_payload_truncated=truncated,
    )
