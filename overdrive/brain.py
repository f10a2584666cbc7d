#!/usr/bin/env python3
"""Brain module – decides whether the blue-light filter should be on right now.

Two layers live here:

* `compute_solar_times()` turns a local calendar date and a `Location` into
  sunrise/sunset instants using astral's NOAA solar-position formulas.  The
  observer altitude is handed to astral as the observer elevation, which dips
  the horizon by ``acos(R / (R + h))`` degrees (roughly proportional to the
  square root of the altitude), so higher places see the sun earlier and longer.
* `resolve()` combines those instants with the user override and returns a
  `ScheduleDecision`: the desired `FilterState` plus the next instant worth
  waking up for.

Daytime is the half-open interval ``[sunrise, sunset)``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from astral import Observer
from astral.sun import elevation as solar_elevation
from astral.sun import noon, sunrise, sunset

from overdrive.models import (
    FilterState,
    Location,
    OverdriveError,
    Override,
    ScheduleDecision,
    SolarTimes,
    next_local_midnight,
)

logger = logging.getLogger(__name__)

# Smallest step forward we ever schedule; keeps the control loop from spinning
MIN_WAKE_DELAY = timedelta(seconds=1)


class Transitionless(Enum):
    """Reason a date has no sunrise/sunset pair."""
    ALWAYS_DAY = "always_day"
    ALWAYS_NIGHT = "always_night"


class SolarError(OverdriveError):
    """Solar computation could not produce sunrise/sunset."""


class NoTransition(SolarError):
    """Sun never crosses the horizon on the requested date (polar day or night)."""

    def __init__(self, kind: Transitionless, day: date):
        super().__init__(f"No sunrise/sunset on {day.isoformat()}: {kind.value}")
        self.kind = kind
        self.day = day


class SolarInputError(SolarError):
    """Location or time outside the range the calculator accepts."""


# ---------------------------------------------------------------------------
# Solar calculator
# ---------------------------------------------------------------------------

def _observer(location: Location) -> Observer:
    problems = location.problems()
    if problems:
        raise SolarInputError("Invalid location: " + "; ".join(problems))
    # astral only applies the horizon dip when elevation is a float
    return Observer(
        latitude=float(location.latitude),
        longitude=float(location.longitude),
        elevation=float(location.altitude),
    )


def _transitionless_kind(observer: Observer, day: date, tz: tzinfo) -> Transitionless:
    """Classify a date without sunrise/sunset by where the sun sits at solar noon."""
    solar_noon = noon(observer, day, tzinfo=tz)
    if solar_elevation(observer, solar_noon) > 0:
        return Transitionless.ALWAYS_DAY
    return Transitionless.ALWAYS_NIGHT


def _utc_seconds(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(microsecond=0)


def compute_solar_times(day: date, location: Location, tz: tzinfo = timezone.utc) -> SolarTimes:
    """Compute sunrise and sunset for *day* as seen from *location*.

    Args:
        day: Local calendar date (interpreted in *tz*, not UTC)
        location: Observer latitude/longitude/altitude
        tz: Timezone that defines the local day boundary

    Returns:
        SolarTimes with UTC instants truncated to whole seconds

    Raises:
        NoTransition: The sun stays above or below the horizon all day.
        SolarInputError: The location is outside the valid ranges.
    """
    observer = _observer(location)

    try:
        rise = sunrise(observer, day, tzinfo=tz)
        fall = sunset(observer, day, tzinfo=tz)
    except ValueError as e:
        kind = _transitionless_kind(observer, day, tz)
        logger.debug(f"astral found no transition on {day}: {e}")
        raise NoTransition(kind, day) from e

    rise = _utc_seconds(rise)
    fall = _utc_seconds(fall)

    if rise >= fall:
        # Near the polar edge astral can hand back a pair from adjoining days
        raise NoTransition(_transitionless_kind(observer, day, tz), day)

    return SolarTimes(date=day, sunrise=rise, sunset=fall)


class SolarCache:
    """Solar times keyed by local date, recomputed lazily when the date moves on.

    Dates that turn out to have no transition are cached as well, so a polar
    winter does not hit astral on every loop iteration.
    """

    def __init__(self, location: Location):
        self.location = location
        self._entries: Dict[Tuple[date, str], Union[SolarTimes, NoTransition]] = {}

    def get(self, day: date, tz: tzinfo) -> SolarTimes:
        key = (day, str(tz))
        entry = self._entries.get(key)
        if entry is None:
            try:
                entry = compute_solar_times(day, self.location, tz)
                logger.info(
                    f"Solar times for {day}: sunrise {entry.sunrise.astimezone(tz).strftime('%H:%M:%S')}, "
                    f"sunset {entry.sunset.astimezone(tz).strftime('%H:%M:%S')}"
                )
            except NoTransition as e:
                logger.info(f"Solar times for {day}: {e.kind.value}")
                entry = e
            self._prune(day)
            self._entries[key] = entry
        if isinstance(entry, NoTransition):
            raise NoTransition(entry.kind, entry.day)
        return entry

    def _prune(self, day: date) -> None:
        stale = [key for key in self._entries if key[0] < day - timedelta(days=1)]
        for key in stale:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# State resolver
# ---------------------------------------------------------------------------

def _decision(now: datetime, desired: FilterState, next_wake: datetime, reason: str) -> ScheduleDecision:
    if next_wake <= now:
        logger.warning(f"Computed wake time {next_wake.isoformat()} is not in the future, clamping")
        next_wake = now + MIN_WAKE_DELAY
    return ScheduleDecision(desired=desired, next_wake=next_wake, reason=reason)


def resolve(
    now: datetime,
    location: Location,
    override: Optional[Override] = None,
    cache: Optional[SolarCache] = None,
) -> ScheduleDecision:
    """Decide the filter state for *now* and when the decision next changes.

    *now* must be timezone-aware; its tzinfo defines the local day.  An
    active override wins over the sun until it lapses at local midnight.
    """
    if now.tzinfo is None:
        raise SolarInputError("resolve() needs a timezone-aware datetime")

    tz = now.tzinfo

    if override is not None and override.is_active(now):
        return _decision(now, override.forced_state, override.expires_at, f"override {override.mode.value}")

    if cache is None:
        cache = SolarCache(location)
    elif cache.location != location:
        raise SolarInputError("SolarCache was built for a different location")

    today = now.date()
    midnight = next_local_midnight(now)

    try:
        times = cache.get(today, tz)
    except NoTransition as e:
        desired = FilterState.INACTIVE if e.kind is Transitionless.ALWAYS_DAY else FilterState.ACTIVE
        return _decision(now, desired, midnight, e.kind.value)

    if now < times.sunrise:
        return _decision(now, FilterState.ACTIVE, times.sunrise, "before sunrise")
    if now < times.sunset:
        return _decision(now, FilterState.INACTIVE, times.sunset, "daytime")

    try:
        tomorrow = cache.get(today + timedelta(days=1), tz)
        next_wake = tomorrow.sunrise
    except NoTransition:
        next_wake = midnight
    return _decision(now, FilterState.ACTIVE, next_wake, "after sunset")
