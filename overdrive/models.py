"""Data model shared by the solar brain, the override controller and the scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

# Valid ranges for an observer location
MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0
MIN_ALTITUDE = -500.0
MAX_ALTITUDE = 9000.0  # exclusive


class OverdriveError(Exception):
    """Base class for every error raised by hyprsunset-overdrive."""


class FilterState(Enum):
    """Whether the blue-light filter should be applied."""
    ACTIVE = "active"
    INACTIVE = "inactive"

    def flipped(self) -> "FilterState":
        return FilterState.INACTIVE if self is FilterState.ACTIVE else FilterState.ACTIVE


class OverrideMode(Enum):
    """Manual override requested by the user."""
    NONE = "none"
    FORCED_ON = "forced_on"
    FORCED_OFF = "forced_off"


def next_local_midnight(moment: datetime) -> datetime:
    """Return the first local midnight strictly after *moment* (in moment's own tz)."""
    return datetime.combine(moment.date() + timedelta(days=1), time.min, tzinfo=moment.tzinfo)


@dataclass(frozen=True)
class Location:
    """Observer position. Immutable once loaded."""

    latitude: float  # degrees, -90..90
    longitude: float  # degrees, -180..180
    altitude: float = 0.0  # meters above sea level

    def problems(self) -> list[str]:
        """List every out-of-range field; empty when the location is usable."""
        found = []
        if not MIN_LATITUDE <= self.latitude <= MAX_LATITUDE:
            found.append(f"latitude {self.latitude} outside [{MIN_LATITUDE}, {MAX_LATITUDE}]")
        if not MIN_LONGITUDE <= self.longitude <= MAX_LONGITUDE:
            found.append(f"longitude {self.longitude} outside [{MIN_LONGITUDE}, {MAX_LONGITUDE}]")
        if not MIN_ALTITUDE <= self.altitude < MAX_ALTITUDE:
            found.append(f"altitude {self.altitude} outside [{MIN_ALTITUDE}, {MAX_ALTITUDE})")
        return found


@dataclass(frozen=True)
class SolarTimes:
    """Sunrise and sunset (UTC, whole seconds) for one local calendar date."""

    date: date
    sunrise: datetime
    sunset: datetime


@dataclass(frozen=True)
class Override:
    """Snapshot of the user override handed to the resolver each cycle."""

    mode: OverrideMode = OverrideMode.NONE
    set_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def none(cls) -> "Override":
        return cls()

    @classmethod
    def forced(cls, mode: OverrideMode, set_at: datetime) -> "Override":
        """Build an override that lapses at the local midnight following *set_at*."""
        if mode is OverrideMode.NONE:
            return cls.none()
        return cls(mode=mode, set_at=set_at, expires_at=next_local_midnight(set_at))

    def is_active(self, now: datetime) -> bool:
        if self.mode is OverrideMode.NONE:
            return False
        return self.expires_at is None or now < self.expires_at

    @property
    def forced_state(self) -> Optional[FilterState]:
        if self.mode is OverrideMode.FORCED_ON:
            return FilterState.ACTIVE
        if self.mode is OverrideMode.FORCED_OFF:
            return FilterState.INACTIVE
        return None


@dataclass(frozen=True)
class ScheduleDecision:
    """What the filter should be now and when to look again."""

    desired: FilterState
    next_wake: datetime
    reason: str = ""
