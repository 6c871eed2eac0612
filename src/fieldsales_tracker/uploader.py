"""Best-effort upload of positions to the CRM location ingestion endpoint."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

import httpx
import orjson

from fieldsales_tracker.models import LocationReport, Position

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """The ingestion endpoint could not be reached or rejected the report."""


def iso_now() -> str:
    """UTC now as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LocationUploader:
    """POST one :class:`LocationReport` per call; no retry, no queue."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._url = url
        self._timeout = timeout
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if auth_token:
            self._headers["Cookie"] = f"token={auth_token}"

    @property
    def url(self) -> str:
        return self._url

    async def send(self, agent_id: str, position: Position) -> LocationReport:
        """Upload *position* for *agent_id* stamped with the current time.

        Raises
        ------
        UploadError
            On any transport failure or non-2xx response.
        """
        report = LocationReport(
            agent_id=agent_id,
            latitude=position.latitude,
            longitude=position.longitude,
            timestamp=iso_now(),
        )
        try:
            response = await self._client.post(
                self._url,
                content=orjson.dumps(asdict(report)),
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"POST {self._url} failed: {exc}") from exc

        if response.is_error:
            raise UploadError(
                f"POST {self._url} returned {response.status_code}: {response.text}"
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                logger.info("Location sent: %s", orjson.loads(response.content))
            except orjson.JSONDecodeError:
                logger.info("Location sent (unparseable JSON): %s", response.text)
        else:
            logger.info("Location sent (text response): %s", response.text)
        return report
