"""Live CRM events to local notifications, with a fixed-delay reconnect loop.

State machine::

    IDLE → CONNECTING → OPEN → (error) → RECONNECTING ─(delay)─► CONNECTING
                             → (stop)  → IDLE

Every attempt gets a brand-new :class:`EventStreamConnection` with fresh
listeners.  The delay is constant and retries never stop while the session
is active.  :meth:`LiveEventNotifier.stop` detaches the listeners from the
current connection, closes it, and interrupts a pending reconnect wait, so
no connection is created after teardown.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

import httpx

from fieldsales_tracker.events import build_notification, classify
from fieldsales_tracker.models import ActivityLogEvent, ConnectedEvent, MalformedMessage
from fieldsales_tracker.notifications import LocalNotifier
from fieldsales_tracker.permissions import PermissionProvider
from fieldsales_tracker.sse import EventStreamConnection, ServerSentEvent

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_MS = 5000


class NotifierState(enum.Enum):
    """States in the reconnect state machine."""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    RECONNECTING = "RECONNECTING"


class LiveEventNotifier:
    """Keep one event stream open and notify on activity logs.

    Parameters
    ----------
    client:
        ``httpx.AsyncClient`` shared by every connection attempt.
    url:
        Server-sent-events endpoint.
    delivery:
        Local notification layer.
    permissions:
        Asked once for notification permission on :meth:`start`.
    reconnect_delay_ms:
        Fixed wait between a failure and the next attempt.
    auth_token:
        Sent as the ``token`` cookie when set.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        delivery: LocalNotifier,
        permissions: PermissionProvider,
        reconnect_delay_ms: int = DEFAULT_RECONNECT_DELAY_MS,
        auth_token: Optional[str] = None,
    ) -> None:
        self._client = client
        self._url = url
        self._delivery = delivery
        self._permissions = permissions
        self._delay = reconnect_delay_ms / 1000.0
        self._headers = {"Cookie": f"token={auth_token}"} if auth_token else {}

        self._state = NotifierState.IDLE
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._connection: Optional[EventStreamConnection] = None
        self.connections_opened = 0
        self.reconnect_attempts = 0

    @property
    def state(self) -> NotifierState:
        return self._state

    @property
    def connection(self) -> Optional[EventStreamConnection]:
        return self._connection

    async def start(self) -> None:
        """Ask for notification permission, then begin connecting."""
        if self._task is not None:
            return
        status = await self._permissions.request_notifications()
        if not status.granted:
            logger.info("Notification permission not granted, notifications will be suppressed")
        self._delivery.permission_granted = status.granted

        self._shutdown.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Tear down the current connection and cancel any pending reconnect."""
        self._shutdown.set()

        conn = self._connection
        if conn is not None:
            self._detach(conn)
            conn.close()
            await conn.wait_closed()
            self._connection = None

        if self._task is not None:
            await self._task
            self._task = None

        self._set_state(NotifierState.IDLE)
        logger.info("Live event stream closed")

    # ── reconnect loop ──────────────────────────────────────────────

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            conn = self._connect()
            await conn.wait_closed()

            if self._shutdown.is_set():
                break

            self.reconnect_attempts += 1
            self._set_state(NotifierState.RECONNECTING)
            logger.info(
                "Reconnecting in %.1fs (attempt %d)", self._delay, self.reconnect_attempts
            )
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._delay)
            except asyncio.TimeoutError:
                pass  # delay elapsed normally

    def _connect(self) -> EventStreamConnection:
        self._set_state(NotifierState.CONNECTING)
        conn = EventStreamConnection(self._client, self._url, headers=self._headers)
        conn.add_event_listener("open", self._on_open)
        conn.add_event_listener("message", self._on_message)
        conn.add_event_listener("error", self._on_error)
        self._connection = conn
        self.connections_opened += 1
        conn.connect()
        return conn

    def _detach(self, conn: EventStreamConnection) -> None:
        conn.remove_event_listener("open", self._on_open)
        conn.remove_event_listener("message", self._on_message)
        conn.remove_event_listener("error", self._on_error)

    # ── listeners ───────────────────────────────────────────────────

    def _on_open(self, _payload: None) -> None:
        self._set_state(NotifierState.OPEN)
        logger.info("Live event stream opened: %s", self._url)

    def _on_error(self, exc: Exception) -> None:
        logger.error("Live event stream error: %s", exc)
        conn = self._connection
        if conn is not None:
            self._detach(conn)
            conn.close()

    async def _on_message(self, event: ServerSentEvent) -> None:
        result = classify(event.data)

        if isinstance(result, MalformedMessage):
            logger.error(
                "Dropping stream message (%s): %s; payload=%r",
                result.code,
                result.message,
                result.raw_payload,
            )
        elif isinstance(result, ConnectedEvent):
            logger.info("Live event stream connected, connection id %s", result.connection_id)
        elif isinstance(result, ActivityLogEvent):
            await self._delivery.schedule(build_notification(result))

    # ── helpers ─────────────────────────────────────────────────────

    def _set_state(self, new: NotifierState) -> None:
        old = self._state
        self._state = new
        if old is not new:
            logger.info("Notifier state: %s → %s", old.value, new.value)
