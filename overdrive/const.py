"""Constants for hyprsunset-overdrive."""
from typing import Final

APP_NAME: Final = "hyprsunset-overdrive"

# Config keys
CONF_TEMPERATURE: Final = "temperature"
CONF_LATITUDE: Final = "latitude"
CONF_LONGITUDE: Final = "longitude"
CONF_ALTITUDE: Final = "altitude"
CONF_TIMEZONE: Final = "timezone"
CONF_CONTROL_PORT: Final = "control_port"
CONF_RESYNC_INTERVAL: Final = "resync_interval"
CONF_RETRY_INTERVAL: Final = "retry_interval"

# Defaults (Nairobi, Kenya)
DEFAULT_TEMPERATURE: Final = 3000
DEFAULT_LATITUDE: Final = -1.2921
DEFAULT_LONGITUDE: Final = 36.8219
DEFAULT_ALTITUDE: Final = 1795.0
DEFAULT_CONTROL_PORT: Final = 8099
DEFAULT_RESYNC_INTERVAL: Final = 60.0  # seconds
DEFAULT_RETRY_INTERVAL: Final = 30.0  # seconds

MIN_TEMPERATURE: Final = 1000
MAX_TEMPERATURE: Final = 20000

# Environment
ENV_CONFIG_PATH: Final = "OVERDRIVE_CONFIG"
ENV_LOG_LEVEL: Final = "LOG_LEVEL"

LOG_FILE_NAME: Final = f"{APP_NAME}.log"
LOCK_FILE_NAME: Final = f"{APP_NAME}.lock"

# Exit codes
EXIT_OK: Final = 0
EXIT_FATAL: Final = 1
EXIT_CONFIG: Final = 2
