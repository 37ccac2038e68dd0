#!/usr/bin/env python3
"""Configuration for Sunset Light.

Configuration is merged from (later wins):

* options.json          - supervisor-managed add-on options
* sunset_light.json     - user configuration
* sunset_light.yaml     - same, in YAML

or from a single file named by SUNSET_LIGHT_CONFIG.  Connection settings
come from environment variables (HA_HOST, HA_PORT, HA_TOKEN, ...).

Everything is validated with voluptuous before the engine starts; any
problem is reported as ConfigurationError.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import aiofiles
import voluptuous as vol
import yaml

from .location import GeoLocation

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SUNSET_LIGHT_CONFIG"
CONFIG_FILENAMES = ["options.json", "sunset_light.json", "sunset_light.yaml"]

UINT16 = vol.All(vol.Coerce(int), vol.Range(min=1, max=65535))
UINT8 = vol.All(vol.Coerce(int), vol.Range(min=0, max=255))


class ConfigurationError(ValueError):
    """Configuration is missing or invalid; the engine must not start."""


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

SCHEDULE_SCHEMA = vol.Schema(
    {
        vol.Optional("name", default="Sunset"): str,
        vol.Required("device_ids"): vol.All(
            [vol.Coerce(str)], vol.Length(min=1, msg="at least one device id is required")
        ),
        vol.Required("day_color_temperature"): UINT16,
        vol.Required("sunset_color_temperature"): UINT16,
        vol.Required("brightness"): UINT8,
        vol.Optional("run_when_lights_appear", default=True): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)

LOCATION_SCHEMA = vol.Schema(
    {
        vol.Required("latitude"): vol.All(vol.Coerce(float), vol.Range(min=-90, max=90)),
        vol.Required("longitude"): vol.All(vol.Coerce(float), vol.Range(min=-180, max=180)),
        vol.Optional("name"): vol.Any(None, str),
    },
    extra=vol.REMOVE_EXTRA,
)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("schedule"): SCHEDULE_SCHEMA,
        vol.Optional("location"): vol.Any(None, LOCATION_SCHEMA),
        vol.Optional("timezone"): vol.Any(None, str),
    },
    extra=vol.ALLOW_EXTRA,
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleConfig:
    """Day/sunset color temperature schedule for a set of devices."""
    device_ids: FrozenSet[str]
    day_color_temperature: int  # Kelvin
    sunset_color_temperature: int  # Kelvin
    brightness: int  # 0-255
    name: str = "Sunset"
    run_when_lights_appear: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduleConfig":
        """Validate a raw mapping and build a ScheduleConfig."""
        try:
            clean = SCHEDULE_SCHEMA(dict(data))
        except vol.Invalid as e:
            raise ConfigurationError(f"Invalid schedule configuration: {_humanize(e, 'schedule')}") from e
        return cls(
            device_ids=frozenset(clean["device_ids"]),
            day_color_temperature=clean["day_color_temperature"],
            sunset_color_temperature=clean["sunset_color_temperature"],
            brightness=clean["brightness"],
            name=clean["name"],
            run_when_lights_appear=clean["run_when_lights_appear"],
        )

    def validate(self) -> None:
        """Re-check invariants for instances built directly in code."""
        if not self.device_ids:
            raise ConfigurationError("Schedule has no device ids")
        for field in ("day_color_temperature", "sunset_color_temperature"):
            value = getattr(self, field)
            if not isinstance(value, int) or not 1 <= value <= 65535:
                raise ConfigurationError(f"Schedule {field} must be an integer in 1..65535, got {value!r}")
        if not isinstance(self.brightness, int) or not 0 <= self.brightness <= 255:
            raise ConfigurationError(f"Schedule brightness must be an integer in 0..255, got {self.brightness!r}")


@dataclass(frozen=True)
class ConnectionConfig:
    """Home Assistant websocket connection settings."""
    host: str
    port: int
    access_token: str
    use_ssl: bool = False
    url: Optional[str] = None

    @property
    def websocket_url(self) -> str:
        if self.url:
            return self.url
        protocol = "wss" if self.use_ssl else "ws"
        return f"{protocol}://{self.host}:{self.port}/api/websocket"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ConnectionConfig":
        env = os.environ if environ is None else environ
        token = env.get("HA_TOKEN") or env.get("SUPERVISOR_TOKEN")
        if not token:
            raise ConfigurationError("HA_TOKEN environment variable is required")
        try:
            port = int(env.get("HA_PORT", "8123"))
        except ValueError as e:
            raise ConfigurationError(f"HA_PORT must be an integer: {e}") from e
        return cls(
            host=env.get("HA_HOST", "localhost"),
            port=port,
            access_token=token,
            use_ssl=env.get("HA_USE_SSL", "false").lower() == "true",
            url=env.get("HA_WEBSOCKET_URL") or None,
        )


@dataclass(frozen=True)
class AppConfig:
    schedule: ScheduleConfig
    location: Optional[GeoLocation] = None
    timezone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        try:
            clean = CONFIG_SCHEMA(dict(data))
        except vol.Invalid as e:
            raise ConfigurationError(f"Invalid configuration: {_humanize(e)}") from e

        location = None
        if clean.get("location"):
            loc = clean["location"]
            location = GeoLocation(loc["latitude"], loc["longitude"], name=loc.get("name"))

        return cls(
            schedule=ScheduleConfig.from_dict(clean["schedule"]),
            location=location,
            timezone=clean.get("timezone") or None,
        )


def _humanize(error: vol.Invalid, prefix: Optional[str] = None) -> str:
    path = [str(p) for p in error.path]
    if prefix:
        path.insert(0, prefix)
    where = ".".join(path) or "<root>"
    return f"{error.msg} @ {where}"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def get_data_directory() -> str:
    """Get the appropriate data directory based on environment."""
    if os.path.exists("/config"):
        data_dir = "/config/sunset-light"
        os.makedirs(data_dir, exist_ok=True)
        return data_dir
    elif os.path.exists("/data"):
        return "/data"
    else:
        # Running in development - use local .data directory
        data_dir = os.path.join(os.path.dirname(__file__), ".data")
        os.makedirs(data_dir, exist_ok=True)
        return data_dir


async def _read_config_file(path: str) -> Dict[str, Any]:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()

    try:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Malformed configuration file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def _candidate_paths(path: Optional[str]) -> List[str]:
    explicit = path or os.getenv(CONFIG_ENV_VAR)
    if explicit:
        if not os.path.exists(explicit):
            raise ConfigurationError(f"Configuration file not found: {explicit}")
        return [explicit]
    data_dir = get_data_directory()
    return [os.path.join(data_dir, name) for name in CONFIG_FILENAMES]


async def load_config(path: Optional[str] = None) -> AppConfig:
    """Load, merge and validate configuration.

    Args:
        path: Explicit config file; defaults to $SUNSET_LIGHT_CONFIG or the
            files in the data directory.

    Raises:
        ConfigurationError: when no file provides a valid schedule.
    """
    merged: Dict[str, Any] = {}
    loaded = []
    for candidate in _candidate_paths(path):
        if not os.path.exists(candidate):
            continue
        part = await _read_config_file(candidate)
        merged.update(part)
        loaded.append(candidate)

    if not loaded:
        raise ConfigurationError("No configuration file found")

    logger.info(f"Loaded configuration from {', '.join(loaded)}")
    return AppConfig.from_dict(merged)
