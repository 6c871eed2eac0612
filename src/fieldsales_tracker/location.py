"""Location sources and the continuous position watch.

A source yields raw :class:`LocationSample` values; :meth:`LocationSource.watch`
wraps it in a background task that applies the watch options and hands each
qualifying sample to the callback::

    source ──► min interval + min distance gate ──► await callback

The callback is awaited before the next sample is read, so handlers are
never invoked concurrently with themselves.  When the source ends (gpsd
went away, replay file exhausted) the watch ends too; nothing restarts it.

Sources
-------
GpsdLocationSource
    gpsd JSON protocol over TCP: sends ``?WATCH=`` and consumes ``TPV``
    reports with a 2D or 3D fix.
ReplayLocationSource
    NDJSON file of ``{"latitude", "longitude", "timestamp"?}`` records.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

import orjson

from fieldsales_tracker.geo import haversine_distance
from fieldsales_tracker.models import LocationSample

logger = logging.getLogger(__name__)

SampleCallback = Callable[[LocationSample], Awaitable[None]]

GPSD_WATCH_COMMAND = b'?WATCH={"enable":true,"json":true};\n'


@dataclass(frozen=True)
class WatchOptions:
    """Gating applied to a position watch."""

    accuracy: str = "high"
    distance_interval_m: float = 1.0
    time_interval_s: float = 10.0


class WatchSubscription:
    """Handle for a running watch.  :meth:`remove` stops it."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def add_done_callback(self, fn: Callable[[], None]) -> None:
        """Call *fn* once the watch has ended for any reason."""
        self._task.add_done_callback(lambda _task: fn())

    def remove(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the watch ends (source exhausted or removed)."""
        await asyncio.wait([self._task])


class _SampleGate:
    """Drop samples closer than the watch's minimum time and distance."""

    def __init__(self, options: WatchOptions) -> None:
        self._options = options
        self._last: Optional[LocationSample] = None

    def accept(self, sample: LocationSample) -> bool:
        last = self._last
        if last is not None:
            elapsed = (sample.timestamp - last.timestamp).total_seconds()
            if elapsed < self._options.time_interval_s:
                return False
            moved = haversine_distance(
                last.latitude, last.longitude, sample.latitude, sample.longitude
            )
            if moved < self._options.distance_interval_m:
                return False
        self._last = sample
        return True


class LocationSource:
    """Base class: subclasses implement :meth:`samples`."""

    name = "source"

    def samples(self) -> AsyncIterator[LocationSample]:
        raise NotImplementedError

    async def watch(
        self, options: WatchOptions, callback: SampleCallback
    ) -> WatchSubscription:
        """Start delivering gated samples to *callback* in the background."""
        logger.info(
            "Starting %s watch (accuracy=%s, min_distance=%.1fm, min_interval=%.1fs)",
            self.name,
            options.accuracy,
            options.distance_interval_m,
            options.time_interval_s,
        )
        task = asyncio.create_task(self._run(options, callback))
        return WatchSubscription(task)

    async def _run(self, options: WatchOptions, callback: SampleCallback) -> None:
        gate = _SampleGate(options)
        delivered = 0
        try:
            async for sample in self.samples():
                if not gate.accept(sample):
                    continue
                delivered += 1
                try:
                    await callback(sample)
                except Exception:
                    logger.exception("Location callback failed for %s sample", self.name)
        except OSError as exc:
            logger.error("Location source %s failed: %s", self.name, exc)
        finally:
            logger.info("%s watch ended after %d samples", self.name, delivered)


class GpsdLocationSource(LocationSource):
    """Read fixes from a gpsd daemon."""

    name = "gpsd"

    def __init__(self, host: str = "127.0.0.1", port: int = 2947) -> None:
        self._host = host
        self._port = port

    async def samples(self) -> AsyncIterator[LocationSample]:
        reader, writer = await asyncio.open_connection(self._host, self._port)
        logger.info("Connected to gpsd at %s:%d", self._host, self._port)
        try:
            writer.write(GPSD_WATCH_COMMAND)
            await writer.drain()
            while True:
                line = await reader.readline()
                if not line:
                    logger.warning("gpsd closed the connection")
                    return
                sample = parse_gpsd_report(line)
                if sample is not None:
                    yield sample
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()


class ReplayLocationSource(LocationSource):
    """Replay recorded positions from an NDJSON file.

    A record without a ``timestamp`` is stamped *interval_s* after the
    previous record (the first one with the time it is read), so an
    untimed route still passes the watch's minimum-interval gate.
    """

    name = "replay"

    def __init__(self, path: str | Path, interval_s: float = 10.0) -> None:
        self._path = Path(path)
        self._interval = timedelta(seconds=interval_s)

    async def samples(self) -> AsyncIterator[LocationSample]:
        previous: Optional[datetime] = None
        with self._path.open("rb") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                default_time = previous + self._interval if previous is not None else None
                sample = parse_replay_record(line, default_time)
                if sample is None:
                    logger.warning("Skipping bad replay record at %s:%d", self._path, lineno)
                    continue
                previous = sample.timestamp
                yield sample
                await asyncio.sleep(0)


# ── parsing ─────────────────────────────────────────────────────────


def parse_gpsd_report(line: bytes | str) -> Optional[LocationSample]:
    """Turn one gpsd JSON line into a sample, or ``None`` for anything else.

    Only ``TPV`` reports with ``mode >= 2`` (2D or 3D fix) carry a usable
    position.  ``VERSION``, ``DEVICES``, ``SKY`` and similar are ignored.
    """
    try:
        report = orjson.loads(line)
    except orjson.JSONDecodeError:
        logger.debug("Ignoring non-JSON gpsd line: %r", line[:80])
        return None

    if not isinstance(report, dict) or report.get("class") != "TPV":
        return None
    if (report.get("mode") or 0) < 2:
        return None
    lat, lon = report.get("lat"), report.get("lon")
    if lat is None or lon is None:
        return None

    accuracy = report.get("eph")
    if accuracy is None and "epx" in report and "epy" in report:
        accuracy = max(report["epx"], report["epy"])

    try:
        return LocationSample(
            latitude=float(lat),
            longitude=float(lon),
            timestamp=_parse_time(report.get("time")),
            accuracy_m=accuracy,
        )
    except (TypeError, ValueError):
        logger.debug("Ignoring TPV report with bad fields: %r", line[:80])
        return None


def parse_replay_record(
    line: bytes | str, default_time: Optional[datetime] = None
) -> Optional[LocationSample]:
    """Parse one replay line; accepts ``latitude``/``longitude`` or ``lat``/``lon``.

    A missing ``timestamp`` becomes *default_time*, or now when that is ``None``.
    """
    try:
        record = orjson.loads(line)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    lat = record.get("latitude", record.get("lat"))
    lon = record.get("longitude", record.get("lon"))
    if lat is None or lon is None:
        return None

    try:
        return LocationSample(
            latitude=float(lat),
            longitude=float(lon),
            timestamp=_parse_time(record.get("timestamp"), default_time),
            accuracy_m=record.get("accuracy"),
        )
    except (TypeError, ValueError):
        return None


def _parse_time(value: Optional[str], default: Optional[datetime] = None) -> datetime:
    if not value:
        return default or datetime.now(timezone.utc)
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
