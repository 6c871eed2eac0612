"""Fakes and helpers shared by the test modules."""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional

import orjson

from fieldsales_tracker.geo import EARTH_RADIUS_M
from fieldsales_tracker.location import LocationSource
from fieldsales_tracker.models import LocationSample

BASE_TIME = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

# Downtown Dubai
ORIGIN = (25.1972, 55.2744)


def north_of(lat: float, lon: float, meters: float) -> tuple[float, float]:
    """Point *meters* due north (negative for south) along the meridian."""
    return lat + math.degrees(meters / EARTH_RADIUS_M), lon


def make_sample(lat: float, lon: float, seconds: float = 0.0) -> LocationSample:
    return LocationSample(
        latitude=lat,
        longitude=lon,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or *timeout* seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class QueueSource(LocationSource):
    """Location source fed by the test; ``None`` ends the watch."""

    name = "queue"

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Optional[LocationSample]] = asyncio.Queue()

    async def samples(self) -> AsyncIterator[LocationSample]:
        while True:
            sample = await self.queue.get()
            if sample is None:
                return
            yield sample


class MemorySink:
    """Notification sink that keeps decoded records in memory."""

    def __init__(self) -> None:
        self.records: list[dict] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.records.append(orjson.loads(data))

    def close(self) -> None:
        self.closed = True
