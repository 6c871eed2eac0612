"""Reverse geocoding against Nominatim (OpenStreetMap).

Nominatim's usage policy requires a descriptive ``User-Agent`` and limits
clients to about one request per second.  The reporter only looks up an
address after the agent has moved more than the geocode threshold, which
keeps traffic far below that limit.
"""

from __future__ import annotations

import logging

import httpx
import orjson

from fieldsales_tracker.config import GeocoderConfig
from fieldsales_tracker.models import UNKNOWN_CITY, UNKNOWN_STREET, ResolvedAddress

logger = logging.getLogger(__name__)


class GeocodeError(Exception):
    """The lookup failed; callers keep whatever address they had."""


class NominatimGeocoder:
    """Resolve coordinates to a city and street.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``; the geocoder does not close it.
    config:
        Endpoint, ``User-Agent`` and language settings.
    """

    def __init__(self, client: httpx.AsyncClient, config: GeocoderConfig) -> None:
        self._client = client
        self._config = config

    async def reverse(self, latitude: float, longitude: float) -> ResolvedAddress:
        """Look up *latitude*, *longitude*.

        Missing ``address.city`` / ``address.road`` fall back to the
        ``Unknown`` defaults; transport and decoding failures raise
        :class:`GeocodeError`.
        """
        params = {
            "format": "jsonv2",
            "lat": f"{latitude}",
            "lon": f"{longitude}",
        }
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept-Language": self._config.accept_language,
        }
        try:
            response = await self._client.get(
                self._config.url,
                params=params,
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
            response.raise_for_status()
            payload = orjson.loads(response.content)
        except httpx.HTTPError as exc:
            raise GeocodeError(f"reverse geocode request failed: {exc}") from exc
        except orjson.JSONDecodeError as exc:
            raise GeocodeError(f"reverse geocode returned invalid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise GeocodeError("reverse geocode returned a non-object body")
        if "error" in payload:
            raise GeocodeError(f"reverse geocode error: {payload['error']}")

        address = payload.get("address") or {}
        resolved = ResolvedAddress(
            city=address.get("city") or UNKNOWN_CITY,
            street=address.get("road") or UNKNOWN_STREET,
        )
        logger.debug(
            "Resolved %.6f,%.6f to %s, %s",
            latitude,
            longitude,
            resolved.street,
            resolved.city,
        )
        return resolved
