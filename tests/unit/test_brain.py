#!/usr/bin/env python3
"""Test suite for brain.py - solar times and the filter-state resolver."""

from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from overdrive.brain import (
    NoTransition,
    SolarCache,
    SolarInputError,
    Transitionless,
    compute_solar_times,
    resolve,
)
from overdrive.models import FilterState, Location, Override, OverrideMode, SolarTimes
from overdrive.primitives import OverrideController

NAIROBI_TZ = ZoneInfo("Africa/Nairobi")
NAIROBI = Location(latitude=-1.2921, longitude=36.8219, altitude=1795)
SOLSTICE = date(2024, 6, 21)


def nairobi(hour: int, minute: int = 0, day: date = SOLSTICE) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=NAIROBI_TZ)


class TestComputeSolarTimes:
    """Test cases for compute_solar_times."""

    def test_nairobi_solstice(self):
        """Altitude-corrected sunrise and sunset at 1795 m, within 2 minutes."""
        times = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        assert abs(times.sunrise - nairobi(6, 29)) <= timedelta(minutes=2)
        assert abs(times.sunset - nairobi(18, 40)) <= timedelta(minutes=2)
        assert times.date == SOLSTICE

    def test_equator_reference_values(self):
        """Sea-level equator on 1970-01-01 matches almanac values within 2 minutes."""
        times = compute_solar_times(date(1970, 1, 1), Location(0.0, 0.0, 0.0), timezone.utc)

        expected_rise = datetime(1970, 1, 1, 5, 59, 54, tzinfo=timezone.utc)
        expected_set = datetime(1970, 1, 1, 18, 7, 8, tzinfo=timezone.utc)
        assert abs(times.sunrise - expected_rise) <= timedelta(minutes=2)
        assert abs(times.sunset - expected_set) <= timedelta(minutes=2)

    def test_output_is_utc_whole_seconds(self):
        times = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        for moment in (times.sunrise, times.sunset):
            assert moment.microsecond == 0
            assert moment.utcoffset() == timedelta(0)

    def test_altitude_widens_the_day(self):
        """Higher observers see the sun rise earlier and set later."""
        sea_level = compute_solar_times(SOLSTICE, Location(-1.2921, 36.8219, 0.0), NAIROBI_TZ)
        highland = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        assert highland.sunrise < sea_level.sunrise
        assert highland.sunset > sea_level.sunset

    def test_altitude_shift_grows_with_square_root(self):
        """Quadrupling the altitude roughly doubles the sunrise shift."""
        def sunrise_at(altitude):
            return compute_solar_times(SOLSTICE, Location(-1.2921, 36.8219, altitude), NAIROBI_TZ).sunrise

        base = sunrise_at(0.0)
        shift = (base - sunrise_at(500.0)).total_seconds()
        shift_4x = (base - sunrise_at(2000.0)).total_seconds()

        assert shift > 0
        assert 1.8 <= shift_4x / shift <= 2.2

    def test_integer_altitude_is_honored(self):
        """Integer altitudes from a config file still dip the horizon."""
        as_float = compute_solar_times(SOLSTICE, Location(-1.2921, 36.8219, 1795.0), NAIROBI_TZ)
        as_int = compute_solar_times(SOLSTICE, Location(-1.2921, 36.8219, 1795), NAIROBI_TZ)

        assert as_int == as_float

    def test_polar_night(self):
        """80°N at the winter solstice never sees the sun."""
        with pytest.raises(NoTransition) as exc_info:
            compute_solar_times(date(2024, 12, 21), Location(80.0, 15.0, 0.0), timezone.utc)

        assert exc_info.value.kind is Transitionless.ALWAYS_NIGHT
        assert exc_info.value.day == date(2024, 12, 21)

    def test_polar_day(self):
        with pytest.raises(NoTransition) as exc_info:
            compute_solar_times(date(2024, 6, 21), Location(80.0, 15.0, 0.0), timezone.utc)

        assert exc_info.value.kind is Transitionless.ALWAYS_DAY

    @pytest.mark.parametrize("latitude", [-60.0, -35.0, 0.0, 35.0, 51.5, 60.0])
    @pytest.mark.parametrize("longitude", [-120.0, 0.0, 36.8, 150.0])
    def test_sunrise_before_sunset_within_local_day(self, latitude, longitude):
        """Outside the polar circles every date has an ordered pair near its own day."""
        tz = timezone(timedelta(hours=round(longitude / 15)))
        location = Location(latitude, longitude, 0.0)

        for month in range(1, 13):
            day = date(2023, month, 15)
            times = compute_solar_times(day, location, tz)
            start = datetime.combine(day, time.min, tzinfo=tz)

            assert times.sunrise < times.sunset
            assert start - timedelta(days=1) <= times.sunrise <= start + timedelta(days=2)
            assert start - timedelta(days=1) <= times.sunset <= start + timedelta(days=2)

    def test_deterministic(self):
        first = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)
        second = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        assert first == second

    @pytest.mark.parametrize(
        "location",
        [
            Location(91.0, 0.0, 0.0),
            Location(-90.5, 0.0, 0.0),
            Location(0.0, 180.5, 0.0),
            Location(0.0, 0.0, -600.0),
            Location(0.0, 0.0, 9000.0),
        ],
    )
    def test_invalid_location(self, location):
        with pytest.raises(SolarInputError):
            compute_solar_times(SOLSTICE, location, timezone.utc)


class TestSolarCache:
    """Test cases for SolarCache."""

    def test_reuses_same_date(self):
        cache = SolarCache(NAIROBI)

        with patch("overdrive.brain.compute_solar_times", wraps=compute_solar_times) as spy:
            first = cache.get(SOLSTICE, NAIROBI_TZ)
            second = cache.get(SOLSTICE, NAIROBI_TZ)

        assert first == second
        assert spy.call_count == 1

    def test_recomputes_when_date_advances(self):
        cache = SolarCache(NAIROBI)

        with patch("overdrive.brain.compute_solar_times", wraps=compute_solar_times) as spy:
            cache.get(SOLSTICE, NAIROBI_TZ)
            cache.get(SOLSTICE + timedelta(days=1), NAIROBI_TZ)

        assert spy.call_count == 2

    def test_prunes_old_dates(self):
        cache = SolarCache(NAIROBI)
        for offset in range(5):
            cache.get(SOLSTICE + timedelta(days=offset), NAIROBI_TZ)

        assert len(cache) <= 3

    def test_caches_polar_dates(self):
        cache = SolarCache(Location(80.0, 15.0, 0.0))

        with patch("overdrive.brain.compute_solar_times", wraps=compute_solar_times) as spy:
            for _ in range(3):
                with pytest.raises(NoTransition):
                    cache.get(date(2024, 12, 21), timezone.utc)

        assert spy.call_count == 1


class TestResolve:
    """Test cases for resolve."""

    def test_midday_is_inactive(self):
        now = nairobi(12)
        times = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        decision = resolve(now, NAIROBI)

        assert decision.desired is FilterState.INACTIVE
        assert decision.next_wake == times.sunset

    def test_early_morning_is_active(self):
        now = nairobi(2)
        times = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        decision = resolve(now, NAIROBI)

        assert decision.desired is FilterState.ACTIVE
        assert decision.next_wake == times.sunrise
        assert decision.reason == "before sunrise"

    def test_after_sunset_rolls_to_tomorrow_sunrise(self):
        now = nairobi(22)
        tomorrow = compute_solar_times(SOLSTICE + timedelta(days=1), NAIROBI, NAIROBI_TZ)

        decision = resolve(now, NAIROBI)

        assert decision.desired is FilterState.ACTIVE
        assert decision.next_wake == tomorrow.sunrise

    def test_daytime_is_half_open(self):
        """Exactly at sunrise the filter is off; exactly at sunset it is on."""
        times = compute_solar_times(SOLSTICE, NAIROBI, NAIROBI_TZ)

        at_sunrise = resolve(times.sunrise.astimezone(NAIROBI_TZ), NAIROBI)
        at_sunset = resolve(times.sunset.astimezone(NAIROBI_TZ), NAIROBI)

        assert at_sunrise.desired is FilterState.INACTIVE
        assert at_sunset.desired is FilterState.ACTIVE

    def test_idempotent(self):
        now = nairobi(17, 45)
        override = Override.forced(OverrideMode.FORCED_ON, nairobi(17))

        assert resolve(now, NAIROBI) == resolve(now, NAIROBI)
        assert resolve(now, NAIROBI, override) == resolve(now, NAIROBI, override)

    def test_next_wake_always_in_future(self):
        cache = SolarCache(NAIROBI)
        overrides = [
            None,
            Override.forced(OverrideMode.FORCED_ON, nairobi(0)),
            Override.forced(OverrideMode.FORCED_OFF, nairobi(0)),
        ]
        for override in overrides:
            now = nairobi(0)
            while now.date() == SOLSTICE:
                decision = resolve(now, NAIROBI, override, cache)
                assert decision.next_wake > now
                now += timedelta(minutes=20)

    @pytest.mark.parametrize("hour", [2, 12, 22])
    @pytest.mark.parametrize("mode,expected", [
        (OverrideMode.FORCED_ON, FilterState.ACTIVE),
        (OverrideMode.FORCED_OFF, FilterState.INACTIVE),
    ])
    def test_override_wins(self, hour, mode, expected):
        now = nairobi(hour)
        override = Override.forced(mode, nairobi(0, 30))

        decision = resolve(now, NAIROBI, override)

        assert decision.desired is expected
        assert decision.next_wake == nairobi(0, 0, SOLSTICE + timedelta(days=1))

    def test_forced_off_before_sunrise(self):
        """ForcedOff at 03:00 keeps the filter off at 04:00 even though it is dark."""
        override = Override.forced(OverrideMode.FORCED_OFF, nairobi(3))

        decision = resolve(nairobi(4), NAIROBI, override)

        assert decision.desired is FilterState.INACTIVE
        assert decision.reason == "override forced_off"

    def test_expired_override_is_ignored(self):
        override = Override.forced(OverrideMode.FORCED_OFF, nairobi(23, 0, SOLSTICE - timedelta(days=1)))

        decision = resolve(nairobi(2), NAIROBI, override)

        assert decision == resolve(nairobi(2), NAIROBI)

    def test_force_on_then_auto_restores_automatic_decision(self):
        now = nairobi(12)
        controller = OverrideController(clock=lambda: now)

        controller.force_on()
        assert resolve(now, NAIROBI, controller.snapshot()).desired is FilterState.ACTIVE
        controller.auto()

        assert resolve(now, NAIROBI, controller.snapshot()) == resolve(now, NAIROBI, None)

    def test_polar_night_is_active_until_midnight(self):
        arctic = Location(80.0, 15.0, 0.0)
        now = datetime(2024, 12, 21, 12, 0, tzinfo=timezone.utc)

        decision = resolve(now, arctic)

        assert decision.desired is FilterState.ACTIVE
        assert decision.next_wake == datetime(2024, 12, 22, 0, 0, tzinfo=timezone.utc)
        assert decision.reason == "always_night"

    def test_polar_day_is_inactive(self):
        arctic = Location(80.0, 15.0, 0.0)
        now = datetime(2024, 6, 21, 23, 0, tzinfo=timezone.utc)

        decision = resolve(now, arctic)

        assert decision.desired is FilterState.INACTIVE
        assert decision.next_wake == datetime(2024, 6, 22, 0, 0, tzinfo=timezone.utc)

    def test_non_future_wake_is_clamped(self):
        now = nairobi(12)
        degenerate = SolarTimes(date=SOLSTICE, sunrise=now, sunset=now)

        with patch("overdrive.brain.compute_solar_times", return_value=degenerate):
            decision = resolve(now, NAIROBI)

        assert decision.next_wake == now + timedelta(seconds=1)

    def test_naive_datetime_rejected(self):
        with pytest.raises(SolarInputError):
            resolve(datetime(2024, 6, 21, 12, 0), NAIROBI)

    def test_invalid_location_is_fatal(self):
        with pytest.raises(SolarInputError):
            resolve(nairobi(12), Location(123.0, 0.0, 0.0))

    def test_cache_for_other_location_rejected(self):
        with pytest.raises(SolarInputError):
            resolve(nairobi(12), NAIROBI, cache=SolarCache(Location(0.0, 0.0, 0.0)))
