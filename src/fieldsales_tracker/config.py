"""Configuration loading, ``${VAR}`` interpolation, and schema validation.

Placeholders are resolved in this order:
    CLI overrides → environment variables → ``:-`` default.

``${VAR}`` without a default raises when neither source has a value.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import jsonschema
import orjson

from fieldsales_tracker.geo import DEFAULT_GEOCODE_THRESHOLD_M

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent / "config.schema.json"


@dataclass
class AgentConfig:
    """Identity the session reports positions for."""

    id: str = ""
    username: Optional[str] = None


@dataclass
class ApiConfig:
    """CRM backend endpoints."""

    base_url: str = ""
    location_service_url: str = ""
    auth_token: str = ""
    timeout_seconds: float = 10.0

    @property
    def ingestion_url(self) -> str:
        """``{location_service_url or base_url}/data`` without doubled slashes."""
        root = self.location_service_url or self.base_url
        return f"{root.rstrip('/')}/data"


@dataclass
class LocationConfig:
    """Location source and watch settings."""

    source: str = "gpsd"
    gpsd_host: str = "127.0.0.1"
    gpsd_port: int = 2947
    replay_file: Optional[str] = None
    accuracy: str = "high"
    distance_interval_m: float = 1.0
    time_interval_ms: int = 10000
    geocode_threshold_m: float = DEFAULT_GEOCODE_THRESHOLD_M


@dataclass
class GeocoderConfig:
    """Nominatim reverse-geocoding settings."""

    url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "fieldsales-tracker (reverse-geocode)"
    accept_language: str = "en"
    timeout_seconds: float = 10.0


@dataclass
class EventsConfig:
    """Server-sent-events endpoint."""

    url: str = ""
    reconnect_delay_ms: int = 5000


@dataclass
class NotificationsConfig:
    """Local notification delivery."""

    output: str = "stdout"
    path: str = "/var/lib/fieldsales/notifications.ndjson"
    show_alert: bool = True
    play_sound: bool = True
    set_badge: bool = False


@dataclass
class PermissionsConfig:
    """Statuses reported by the config-backed permission provider."""

    foreground_location: str = "granted"
    background_location: str = "granted"
    notifications: str = "granted"


@dataclass
class LogFileConfig:
    """Optional rotating log file, written in addition to stderr."""

    enabled: bool = False
    path: str = "/var/log/fieldsales-tracker/app.log"
    max_size_bytes: int = 10485760
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*key*", "*token*", "*secret*", "*password*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate every string in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _section(cls, raw: dict[str, Any]):
    """Build dataclass *cls* from the keys of *raw* it knows about."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert an interpolated dict into a typed :class:`AppConfig`."""
    logging_raw = dict(raw.get("logging", {}))
    log_file = _section(LogFileConfig, logging_raw.pop("file", {}))

    return AppConfig(
        agent=_section(AgentConfig, raw.get("agent", {})),
        api=_section(ApiConfig, raw.get("api", {})),
        location=_section(LocationConfig, raw.get("location", {})),
        geocoder=_section(GeocoderConfig, raw.get("geocoder", {})),
        events=_section(EventsConfig, raw.get("events", {})),
        notifications=_section(NotificationsConfig, raw.get("notifications", {})),
        permissions=_section(PermissionsConfig, raw.get("permissions", {})),
        logging=LoggingConfig(
            level=logging_raw.get("level", "info"),
            file=log_file,
            redact_patterns=logging_raw.get(
                "redact_patterns",
                ["*key*", "*token*", "*secret*", "*password*"],
            ),
        ),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config file.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to the schema shipped
        inside the package.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(interpolated)
