"""Continuous position reporting for a signed-in agent.

Per sample::

    publish position
      → moved > threshold since the previous sample?  → schedule reverse geocode
      → previous sample := this sample                  (always)
      → schedule upload                                 (always)

Geocode and upload run as background tasks; the sample handler never waits
for them, so a slow or failing backend cannot stall the watch.  A failed
lookup leaves the last resolved address in place and a failed upload is
logged and dropped.

The location watch awaits each handler call before delivering the next
sample.  A host whose location API calls back concurrently would need a
lock around the position, marker and address state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from fieldsales_tracker.geo import DEFAULT_GEOCODE_THRESHOLD_M, should_geocode
from fieldsales_tracker.geocoder import GeocodeError, NominatimGeocoder
from fieldsales_tracker.location import LocationSource, WatchOptions, WatchSubscription
from fieldsales_tracker.models import AgentIdentity, LocationSample, Position, ResolvedAddress
from fieldsales_tracker.permissions import PermissionProvider
from fieldsales_tracker.uploader import LocationUploader, UploadError

logger = logging.getLogger(__name__)

Listener = Callable[["PositionReporter"], None]


class PositionReporter:
    """Turn a location watch into address refreshes and position uploads.

    Parameters
    ----------
    source:
        Where positions come from.
    permissions:
        Answers the foreground/background location prompts.
    geocoder:
        Reverse-geocoding client.
    uploader:
        Ingestion client; every sample is posted through it.
    options:
        Watch gating (defaults: high accuracy, 1 m, 10 s).
    geocode_threshold_m:
        Movement, in meters, that must be exceeded before a new lookup.
    """

    def __init__(
        self,
        source: LocationSource,
        permissions: PermissionProvider,
        geocoder: NominatimGeocoder,
        uploader: LocationUploader,
        options: Optional[WatchOptions] = None,
        geocode_threshold_m: float = DEFAULT_GEOCODE_THRESHOLD_M,
    ) -> None:
        self._source = source
        self._permissions = permissions
        self._geocoder = geocoder
        self._uploader = uploader
        self._options = options or WatchOptions()
        self._threshold_m = geocode_threshold_m

        self._user: Optional[AgentIdentity] = None
        self._permission_denied = False
        self._permission_granted = False
        self._subscription: Optional[WatchSubscription] = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

        self._position: Optional[Position] = None
        self._previous: Optional[Position] = None
        self._address = ResolvedAddress()
        self._last_error: Optional[str] = None

    # ── observable state ────────────────────────────────────────────

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def address(self) -> ResolvedAddress:
        return self._address

    @property
    def permission_granted(self) -> bool:
        return self._permission_granted

    @property
    def is_tracking(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def add_listener(self, listener: Listener) -> None:
        """Call *listener* with this reporter whenever position or address changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── lifecycle ───────────────────────────────────────────────────

    async def start(self, user: Optional[AgentIdentity]) -> bool:
        """Begin tracking for *user*.  Returns whether a watch is running.

        Without a user nothing happens.  A denied foreground permission
        leaves the reporter idle for good; later calls do not prompt again.
        """
        if user is None:
            logger.debug("No agent signed in, location reporting idle")
            return False
        self._user = user

        if self._permission_denied:
            return False
        if self.is_tracking:
            return True

        if not self._permission_granted:
            status = await self._permissions.request_foreground_location()
            if not status.granted:
                logger.info("Foreground location permission denied, reporter stays idle")
                self._permission_denied = True
                return False
            self._permission_granted = True

            try:
                background = await self._permissions.request_background_location()
            except Exception as exc:
                logger.warning("Background location permission request failed: %s", exc)
            else:
                if not background.granted:
                    logger.warning(
                        "Background location access denied, tracking in foreground only"
                    )

        await self._start_watch()
        return True

    async def refresh(self) -> bool:
        """Restart the watch if permission was granted but the watch ended."""
        if not self._permission_granted or self._user is None:
            return False
        if not self.is_tracking:
            await self._start_watch()
        return True

    async def stop(self) -> None:
        """Stop the watch, cancel in-flight work, and forget all state."""
        if self._subscription is not None:
            self._subscription.remove()
            await self._subscription.wait()
            self._subscription = None

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self._position = None
        self._previous = None
        self._address = ResolvedAddress()
        self._last_error = None
        self._user = None
        logger.info("Location reporting stopped")

    async def drain(self) -> None:
        """Wait for every in-flight geocode and upload to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── per-sample algorithm ────────────────────────────────────────

    async def handle_sample(self, sample: LocationSample) -> None:
        """Process one position from the watch."""
        position = sample.position
        logger.debug("Location update: %.6f,%.6f", position.latitude, position.longitude)

        self._position = position
        self._notify()

        if should_geocode(self._previous, position, self._threshold_m):
            self._spawn(self._refresh_address(position))

        self._previous = position

        if self._user is not None:
            self._spawn(self._upload(self._user.id, position))

    async def _refresh_address(self, position: Position) -> None:
        try:
            address = await self._geocoder.reverse(position.latitude, position.longitude)
        except GeocodeError as exc:
            logger.warning("Keeping previous address: %s", exc)
            self._last_error = str(exc)
            return
        self._address = address
        self._notify()

    async def _upload(self, agent_id: str, position: Position) -> None:
        try:
            await self._uploader.send(agent_id, position)
        except UploadError as exc:
            logger.error("Failed to send location to server: %s", exc)
            self._last_error = str(exc)

    # ── helpers ─────────────────────────────────────────────────────

    async def _start_watch(self) -> None:
        self._subscription = await self._source.watch(self._options, self.handle_sample)
        self._subscription.add_done_callback(self._on_watch_ended)

    def _on_watch_ended(self) -> None:
        logger.info("Location watch ended")
        self._notify()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Position listener failed")
