"""Dataclass models shared by the reporter and the notifier.

Records that leave the process (upload bodies, notification records) are
serialized via ``dataclasses.asdict()`` followed by ``orjson.dumps()``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

UNKNOWN_CITY = "Unknown City"
UNKNOWN_STREET = "Unknown Street"
UNKNOWN_USER = "Unknown User"


@dataclass(frozen=True)
class Position:
    """A device position in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class ResolvedAddress:
    """Human-readable address for the last geocoded position."""

    city: str = UNKNOWN_CITY
    street: str = UNKNOWN_STREET


@dataclass(frozen=True)
class AgentIdentity:
    """The signed-in field agent a session reports for."""

    id: str
    username: Optional[str] = None


@dataclass(frozen=True)
class LocationSample:
    """One reading from a location source."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: Optional[float] = None

    @property
    def position(self) -> Position:
        return Position(self.latitude, self.longitude)


@dataclass
class LocationReport:
    """Body of ``POST {baseURL}/data``."""

    agent_id: str
    latitude: float
    longitude: float
    timestamp: str


@dataclass
class ActivityLogEvent:
    """Parsed payload of a ``NEW_ACTIVITY_LOG`` stream event."""

    action: str = ""
    timestamp: Optional[str] = None
    actor_id: Optional[str] = None
    actor_username: Optional[str] = None
    lead_id: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    description: str = ""


@dataclass
class ConnectedEvent:
    """The server's greeting on a fresh stream."""

    connection_id: Optional[str] = None


@dataclass
class MalformedMessage:
    """A stream message that could not be used.

    Logged and dropped; the stream stays open.
    """

    code: str = ""
    message: str = ""
    raw_payload: str = ""
    raw_payload_truncated: bool = False


@dataclass
class LocalNotification:
    """A notification handed to the local delivery layer.

    ``trigger`` of ``None`` means deliver immediately.
    """

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    trigger: Optional[float] = None
