#!/usr/bin/env python3
"""Configuration loading - TOML file validated against a voluptuous schema."""

import logging
import os
import tomllib
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiofiles
import voluptuous as vol

from overdrive.const import (
    APP_NAME,
    CONF_ALTITUDE,
    CONF_CONTROL_PORT,
    CONF_LATITUDE,
    CONF_LONGITUDE,
    CONF_RESYNC_INTERVAL,
    CONF_RETRY_INTERVAL,
    CONF_TEMPERATURE,
    CONF_TIMEZONE,
    DEFAULT_ALTITUDE,
    DEFAULT_CONTROL_PORT,
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    DEFAULT_RESYNC_INTERVAL,
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_TEMPERATURE,
    ENV_CONFIG_PATH,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
)
from overdrive.models import (
    MAX_ALTITUDE,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_ALTITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    Location,
    OverdriveError,
)

logger = logging.getLogger(__name__)


class ConfigError(OverdriveError):
    """Configuration file is unreadable, malformed or out of range."""


def _timezone_name(value: Any) -> str:
    if not isinstance(value, str):
        raise vol.Invalid("timezone must be a string")
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # A directory such as "America" raises IsADirectoryError
        raise vol.Invalid(f"unknown timezone '{value}'")
    return value


def _number(value: Any) -> Any:
    # TOML booleans would otherwise coerce silently to 0/1
    if isinstance(value, bool):
        raise vol.Invalid("expected a number")
    return value


_positive_seconds = vol.All(_number, vol.Coerce(float), vol.Range(min=0, min_included=False))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_TEMPERATURE, default=DEFAULT_TEMPERATURE): vol.All(
            _number, vol.Coerce(int), vol.Range(min=MIN_TEMPERATURE, max=MAX_TEMPERATURE)
        ),
        vol.Optional(CONF_LATITUDE, default=DEFAULT_LATITUDE): vol.All(
            _number, vol.Coerce(float), vol.Range(min=MIN_LATITUDE, max=MAX_LATITUDE)
        ),
        vol.Optional(CONF_LONGITUDE, default=DEFAULT_LONGITUDE): vol.All(
            _number, vol.Coerce(float), vol.Range(min=MIN_LONGITUDE, max=MAX_LONGITUDE)
        ),
        vol.Optional(CONF_ALTITUDE, default=DEFAULT_ALTITUDE): vol.All(
            _number, vol.Coerce(float), vol.Range(min=MIN_ALTITUDE, max=MAX_ALTITUDE, max_included=False)
        ),
        vol.Optional(CONF_TIMEZONE): _timezone_name,
        vol.Optional(CONF_CONTROL_PORT, default=DEFAULT_CONTROL_PORT): vol.All(
            _number, vol.Coerce(int), vol.Range(min=0, max=65535)
        ),
        vol.Optional(CONF_RESYNC_INTERVAL, default=DEFAULT_RESYNC_INTERVAL): _positive_seconds,
        vol.Optional(CONF_RETRY_INTERVAL, default=DEFAULT_RETRY_INTERVAL): _positive_seconds,
    },
    extra=vol.PREVENT_EXTRA,
)


@dataclass(frozen=True)
class OverdriveConfig:
    """Validated runtime configuration."""

    temperature: int = DEFAULT_TEMPERATURE
    latitude: float = DEFAULT_LATITUDE
    longitude: float = DEFAULT_LONGITUDE
    altitude: float = DEFAULT_ALTITUDE
    timezone: Optional[str] = None  # IANA name; None means the system local zone
    control_port: int = DEFAULT_CONTROL_PORT
    resync_interval: float = DEFAULT_RESYNC_INTERVAL
    retry_interval: float = DEFAULT_RETRY_INTERVAL

    @property
    def location(self) -> Location:
        return Location(self.latitude, self.longitude, self.altitude)

    @property
    def tzinfo(self) -> Optional[tzinfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


def parse_config(raw: Dict[str, Any], source: str = "<config>") -> OverdriveConfig:
    """Validate a decoded config mapping.

    Raises:
        ConfigError: On unknown keys or out-of-range values.
    """
    try:
        data = CONFIG_SCHEMA(raw)
    except vol.MultipleInvalid as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.path) or 'config'}: {err.msg}" for err in e.errors
        )
        raise ConfigError(f"Invalid configuration in {source}: {problems}") from e
    return OverdriveConfig(**data)


def default_config_path(env: Optional[Dict[str, str]] = None) -> Path:
    """Config path from OVERDRIVE_CONFIG, else the XDG config directory."""
    env = os.environ if env is None else env
    explicit = env.get(ENV_CONFIG_PATH)
    if explicit:
        return Path(explicit)
    base = env.get("XDG_CONFIG_HOME") or os.path.join(env.get("HOME", "~"), ".config")
    return Path(os.path.expanduser(base)) / APP_NAME / "config.toml"


async def load_config(path: Optional[Path] = None) -> OverdriveConfig:
    """Load configuration, falling back to defaults when the file is absent.

    Raises:
        ConfigError: The file exists but cannot be read, parsed or validated.
    """
    path = Path(path) if path else default_config_path()

    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return OverdriveConfig()

    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        raw = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {path}: {e}") from e

    config = parse_config(raw, source=str(path))
    logger.info(f"Loaded configuration from {path}")
    return config
