"""Local notification delivery.

:class:`LocalNotifier` is what the live event notifier schedules into.  Each
delivered notification becomes one NDJSON record on a sink, which a desktop
notifier, a log shipper, or a test can pick up.

StdoutSink
    Writes records to ``sys.stdout.buffer``.
FileSink
    Appends records to a single NDJSON file, flushing after every record.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Protocol

import orjson

from fieldsales_tracker.models import LocalNotification
from fieldsales_tracker.uploader import iso_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresentationOptions:
    """How a notification is presented while the agent is active."""

    show_alert: bool = True
    play_sound: bool = True
    set_badge: bool = False


class NotificationSink(Protocol):
    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class StdoutSink:
    """Print each notification record as one NDJSON line on stdout.

    *stream* is any binary file object; by default the process's
    ``sys.stdout.buffer`` is looked up on every write.
    """

    def __init__(self, stream: Optional[BinaryIO] = None) -> None:
        self._stream = stream

    def write(self, data: bytes) -> None:
        out = self._stream if self._stream is not None else sys.stdout.buffer
        try:
            out.write(data)
            out.flush()
        except BrokenPipeError:
            logger.warning("Notification reader closed stdout")
            raise

    def close(self) -> None:
        """Leave stdout open; the process owns it."""


class FileSink:
    """Append NDJSON records to *path*, creating parent directories."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self._path, "ab")
        logger.info("Writing notifications to %s", self._path)

    def write(self, data: bytes) -> None:
        self._fh.write(data)
        self._fh.flush()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class LocalNotifier:
    """Deliver :class:`LocalNotification` values to a sink.

    Without notification permission, scheduling is accepted but nothing is
    delivered, matching how the device silently drops notifications the
    user has not allowed.
    """

    def __init__(
        self,
        sink: NotificationSink,
        presentation: Optional[PresentationOptions] = None,
    ) -> None:
        self._sink = sink
        self._presentation = presentation or PresentationOptions()
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self.permission_granted = True
        self.delivered = 0

    async def schedule(self, notification: LocalNotification) -> Optional[str]:
        """Deliver now (``trigger is None``) or after ``trigger`` seconds.

        Returns the notification id, or ``None`` when suppressed.
        """
        if not self.permission_granted:
            logger.debug("Notification suppressed, permission not granted: %s", notification.title)
            return None

        notification_id = str(uuid.uuid4())
        if notification.trigger is None:
            self._deliver(notification_id, notification)
        else:
            loop = asyncio.get_running_loop()
            self._pending[notification_id] = loop.call_later(
                notification.trigger, self._deliver, notification_id, notification
            )
        return notification_id

    def cancel_all(self) -> None:
        """Drop every notification still waiting for its trigger."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def close(self) -> None:
        self.cancel_all()
        self._sink.close()

    def _deliver(self, notification_id: str, notification: LocalNotification) -> None:
        self._pending.pop(notification_id, None)
        record = {
            "id": notification_id,
            "delivered_at": iso_now(),
            "content": {
                "title": notification.title,
                "body": notification.body,
                "data": notification.data,
            },
            "presentation": asdict(self._presentation),
        }
        self._sink.write(orjson.dumps(record, option=orjson.OPT_APPEND_NEWLINE))
        self.delivered += 1
        logger.info("Notification delivered: %s", notification.title)
