"""Click CLI for the field-sales tracker.

Entry point registered in ``pyproject.toml`` as ``fieldsales-tracker``.

Subcommands::

    fieldsales-tracker                               # run an agent session until SIGINT/SIGTERM
    fieldsales-tracker distance LAT1 LON1 LAT2 LON2  # haversine distance in meters
    fieldsales-tracker geocode LAT LON               # one reverse-geocode lookup
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import click
import httpx
import orjson

from fieldsales_tracker import __version__
from fieldsales_tracker.config import AppConfig, GeocoderConfig, LogFileConfig, load_config
from fieldsales_tracker.geo import haversine_distance
from fieldsales_tracker.geocoder import GeocodeError, NominatimGeocoder
from fieldsales_tracker.models import AgentIdentity
from fieldsales_tracker.redactor import SecretRedactingFilter, collect_secret_values
from fieldsales_tracker.session import AgentSession

logger = logging.getLogger("fieldsales_tracker")

DEFAULT_CONFIG = "/etc/fieldsales/config.json"


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(
    level: str,
    secret_values: list[str] | None = None,
    log_file_config: Optional[LogFileConfig] = None,
) -> None:
    """JSON logs on stderr, optionally a rotating file, secrets redacted on every handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    redactor = SecretRedactingFilter(secret_values)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file_config and log_file_config.enabled:
        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                filename=log_file_config.path,
                maxBytes=log_file_config.max_size_bytes,
                backupCount=log_file_config.backup_count,
            )
        )

    for handler in handlers:
        handler.setFormatter(_JsonFormatter())
        handler.addFilter(redactor)
        root.addHandler(handler)

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--agent-id", default=None, help="Override the agent id.")
@click.option("--source", type=click.Choice(["gpsd", "replay"]), default=None,
              help="Override the location source.")
@click.option("--replay-file", default=None, type=click.Path(dir_okay=False),
              help="NDJSON positions to replay (implies --source replay).")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    agent_id: Optional[str],
    source: Optional[str],
    replay_file: Optional[str],
    validate_only: bool,
) -> None:
    """Field-sales tracker: report agent positions and surface live CRM activity."""
    if ctx.invoked_subcommand is not None:
        return

    cfg_path = config_path or os.environ.get("FIELDSALES_CONFIG", DEFAULT_CONFIG)

    overrides: dict[str, str] = {}
    if agent_id:
        overrides["AGENT_ID"] = agent_id

    try:
        cfg = load_config(cfg_path, overrides=overrides)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    if agent_id:
        cfg.agent.id = agent_id
    if replay_file:
        cfg.location.source = "replay"
        cfg.location.replay_file = replay_file
    elif source:
        cfg.location.source = source

    effective_level = (
        log_level
        or os.environ.get("FIELDSALES_LOG_LEVEL")
        or cfg.logging.level
    )
    secret_values = collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    _setup_logging(effective_level, secret_values, cfg.logging.file)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting fieldsales-tracker %s (agent=%s, source=%s)",
        __version__,
        cfg.agent.id,
        cfg.location.source,
    )

    try:
        asyncio.run(_run_session(cfg))
    except ValueError as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc


# ── async session ───────────────────────────────────────────────────


async def _run_session(cfg: AppConfig) -> None:
    """Run one agent session until a shutdown signal arrives."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    session = AgentSession.from_config(cfg)
    user = AgentIdentity(id=cfg.agent.id, username=cfg.agent.username)
    try:
        await session.start(user)
        await stop.wait()
    finally:
        await session.stop()


# ── utility subcommands ─────────────────────────────────────────────


@main.command("distance")
@click.argument("lat1", type=float)
@click.argument("lon1", type=float)
@click.argument("lat2", type=float)
@click.argument("lon2", type=float)
def distance_cmd(lat1: float, lon1: float, lat2: float, lon2: float) -> None:
    """Print the haversine distance between two points, in meters."""
    click.echo(f"{haversine_distance(lat1, lon1, lat2, lon2):.3f}")


@main.command("geocode")
@click.argument("lat", type=float)
@click.argument("lon", type=float)
@click.option("--url", default=None, help="Override the reverse-geocoding endpoint.")
@click.option("--user-agent", default=None, help="User-Agent sent to Nominatim.")
def geocode_cmd(lat: float, lon: float, url: Optional[str], user_agent: Optional[str]) -> None:
    """Reverse-geocode one coordinate and print the address as JSON."""
    cfg = GeocoderConfig()
    if url:
        cfg.url = url
    if user_agent:
        cfg.user_agent = user_agent

    async def _lookup():
        async with httpx.AsyncClient() as client:
            return await NominatimGeocoder(client, cfg).reverse(lat, lon)

    try:
        address = asyncio.run(_lookup())
    except GeocodeError as exc:
        click.echo(f"Geocode error: {exc}", err=True)
        raise SystemExit(1) from exc
    click.echo(orjson.dumps(asdict(address)).decode())
