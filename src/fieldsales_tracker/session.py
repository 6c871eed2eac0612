"""Per-session composition of the position reporter and the live notifier.

Both components are created when an agent session begins and disposed when
it ends; nothing lives at process scope.  They share no state, only the
session's HTTP client.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from fieldsales_tracker.config import AppConfig
from fieldsales_tracker.geocoder import NominatimGeocoder
from fieldsales_tracker.location import (
    GpsdLocationSource,
    LocationSource,
    ReplayLocationSource,
    WatchOptions,
)
from fieldsales_tracker.models import AgentIdentity
from fieldsales_tracker.notifications import (
    FileSink,
    LocalNotifier,
    NotificationSink,
    PresentationOptions,
    StdoutSink,
)
from fieldsales_tracker.notifier import LiveEventNotifier
from fieldsales_tracker.permissions import PermissionProvider, StaticPermissions
from fieldsales_tracker.reporter import PositionReporter
from fieldsales_tracker.uploader import LocationUploader

logger = logging.getLogger(__name__)


def build_location_source(cfg: AppConfig) -> LocationSource:
    """Pick the configured location source."""
    loc = cfg.location
    if loc.source == "replay":
        if not loc.replay_file:
            raise ValueError("location.replay_file is required when location.source is 'replay'")
        return ReplayLocationSource(loc.replay_file, interval_s=loc.time_interval_ms / 1000.0)
    return GpsdLocationSource(loc.gpsd_host, loc.gpsd_port)


def build_sink(cfg: AppConfig) -> NotificationSink:
    if cfg.notifications.output == "file":
        return FileSink(cfg.notifications.path)
    return StdoutSink()


class AgentSession:
    """One signed-in agent: a :class:`PositionReporter` and a :class:`LiveEventNotifier`.

    Use :meth:`from_config` to wire the production collaborators; pass them
    in directly to substitute any of them.
    """

    def __init__(
        self,
        reporter: PositionReporter,
        notifier: LiveEventNotifier,
        delivery: LocalNotifier,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.reporter = reporter
        self.notifier = notifier
        self.delivery = delivery
        self._client = client
        self._user: Optional[AgentIdentity] = None

    @property
    def user(self) -> Optional[AgentIdentity]:
        return self._user

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        client: Optional[httpx.AsyncClient] = None,
        source: Optional[LocationSource] = None,
        sink: Optional[NotificationSink] = None,
        permissions: Optional[PermissionProvider] = None,
    ) -> "AgentSession":
        """Build a session from configuration.

        A client created here is owned by the session and closed on
        :meth:`stop`; a client passed in is left open.
        """
        owned_client = None
        if client is None:
            client = owned_client = httpx.AsyncClient(timeout=cfg.api.timeout_seconds)
        permissions = permissions or StaticPermissions(cfg.permissions)

        reporter = PositionReporter(
            source=source or build_location_source(cfg),
            permissions=permissions,
            geocoder=NominatimGeocoder(client, cfg.geocoder),
            uploader=LocationUploader(
                client,
                cfg.api.ingestion_url,
                auth_token=cfg.api.auth_token or None,
                timeout=cfg.api.timeout_seconds,
            ),
            options=WatchOptions(
                accuracy=cfg.location.accuracy,
                distance_interval_m=cfg.location.distance_interval_m,
                time_interval_s=cfg.location.time_interval_ms / 1000.0,
            ),
            geocode_threshold_m=cfg.location.geocode_threshold_m,
        )

        n = cfg.notifications
        delivery = LocalNotifier(
            sink or build_sink(cfg),
            PresentationOptions(
                show_alert=n.show_alert,
                play_sound=n.play_sound,
                set_badge=n.set_badge,
            ),
        )
        notifier = LiveEventNotifier(
            client,
            cfg.events.url,
            delivery,
            permissions,
            reconnect_delay_ms=cfg.events.reconnect_delay_ms,
            auth_token=cfg.api.auth_token or None,
        )
        return cls(reporter, notifier, delivery, client=owned_client)

    async def start(self, user: AgentIdentity) -> None:
        """Start reporting and listening on behalf of *user*."""
        self._user = user
        logger.info("Starting session for agent %s", user.id)
        await self.reporter.start(user)
        await self.notifier.start()

    async def stop(self) -> None:
        """Stop both components and release the session's resources."""
        logger.info("Ending session for agent %s", self._user.id if self._user else None)
        await self.notifier.stop()
        await self.reporter.stop()
        self.delivery.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._user = None
