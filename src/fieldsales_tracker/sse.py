"""Server-sent-events transport over an httpx streaming response.

Connection lifecycle (one instance per attempt, never reused)::

    CONNECTING → (2xx, text/event-stream) → OPEN → (stream error / end) → CLOSED
               → (failure)                        ────────────────────► CLOSED

Listeners are registered per event type the way a browser ``EventSource``
takes them: ``open``, ``error``, and any SSE event name (``message`` by
default).  Handlers are awaited one at a time, in arrival order.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class StreamError(Exception):
    """The event stream failed or ended."""


@dataclass
class ServerSentEvent:
    """One dispatched SSE event."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental line decoder for the ``text/event-stream`` format.

    Feed lines without their terminators; a blank line dispatches the
    buffered event.  Events with no ``data`` field are discarded.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._last_id: Optional[str] = None
        self._retry: Optional[int] = None

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_id

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        # unknown field names are ignored
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = ""
            return None
        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        return event


class ConnectionState(enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class EventStreamConnection:
    """A single SSE connection to *url*.

    Parameters
    ----------
    client:
        ``httpx.AsyncClient`` used for the streaming GET; not closed here.
    url:
        Event-stream endpoint.
    headers:
        Extra request headers (e.g. the auth cookie).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._client = client
        self._url = url
        self._headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **(headers or {}),
        }
        self._listeners: dict[str, list[Handler]] = {}
        self._state = ConnectionState.CONNECTING
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def add_event_listener(self, event_type: str, handler: Handler) -> None:
        self._listeners.setdefault(event_type, []).append(handler)

    def remove_event_listener(self, event_type: str, handler: Handler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    def connect(self) -> None:
        """Start reading the stream in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def close(self) -> None:
        """Stop reading.  Safe to call from inside a listener."""
        self._closed = True
        self._state = ConnectionState.CLOSED
        if (
            self._task is not None
            and not self._task.done()
            and self._task is not asyncio.current_task()
        ):
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait until the reading task has finished."""
        if self._task is not None:
            await asyncio.wait([self._task])

    # ── internal ────────────────────────────────────────────────────

    async def _run(self) -> None:
        try:
            await self._read_stream()
            if not self._closed:
                raise StreamError("event stream ended")
        except (httpx.HTTPError, OSError, StreamError) as exc:
            if self._closed:
                return
            self._state = ConnectionState.CLOSED
            await self._dispatch("error", exc)
        finally:
            self._state = ConnectionState.CLOSED

    async def _read_stream(self) -> None:
        decoder = SSEDecoder()
        async with self._client.stream(
            "GET", self._url, headers=self._headers, timeout=httpx.Timeout(10.0, read=None)
        ) as response:
            if response.status_code != 200:
                raise StreamError(f"event stream returned HTTP {response.status_code}")
            content_type = response.headers.get("content-type", "")
            if not content_type.startswith("text/event-stream"):
                raise StreamError(f"unexpected content-type {content_type!r}")

            self._state = ConnectionState.OPEN
            await self._dispatch("open", None)

            async for line in response.aiter_lines():
                if self._closed:
                    return
                event = decoder.decode(line)
                if event is not None:
                    await self._dispatch(event.event, event)

    async def _dispatch(self, event_type: str, payload: Any) -> None:
        for handler in list(self._listeners.get(event_type, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("SSE %s listener failed", event_type)
