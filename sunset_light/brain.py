#!/usr/bin/env python3
"""Brain module for sunset lighting: daily breakpoints and target curve.

Key pieces
----------
* DaySchedule: the four solar breakpoints of one local calendar day
  (sunrise, golden rise, golden set, sunset), computed together and never
  mutated afterwards.
* refresh_day_schedule(): returns the cached schedule while it is still
  today, otherwise a freshly computed one.
* TargetCurve: piecewise-linear color temperature over the breakpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from .location import GeoLocation
from .solar import Direction, ElevationAngle, time_at_solar_elevation

logger = logging.getLogger(__name__)

MIRED_SCALE = 1_000_000


def kelvin_to_mired(kelvin: int) -> int:
    """Convert Kelvin to mireds the way the bridge expects (integer division)."""
    if kelvin <= 0:
        raise ValueError(f"Color temperature must be positive, got {kelvin}")
    return MIRED_SCALE // kelvin


def mired_to_kelvin(mired: int) -> int:
    if mired <= 0:
        raise ValueError(f"Mired value must be positive, got {mired}")
    return MIRED_SCALE // mired


# ---------------------------------------------------------------------------
# Day schedule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DaySchedule:
    """Solar breakpoints for one local calendar day."""
    calendar_day: date
    golden_rise: datetime
    sunrise: datetime
    golden_set: datetime
    sunset: datetime

    def is_current(self, now: datetime) -> bool:
        return self.calendar_day == now.date()

    def describe(self) -> str:
        return (
            f"{self.calendar_day}: sunrise {self.sunrise:%H:%M:%S}, "
            f"golden rise {self.golden_rise:%H:%M:%S}, "
            f"golden set {self.golden_set:%H:%M:%S}, "
            f"sunset {self.sunset:%H:%M:%S}"
        )


def compute_day_schedule(day: date, location: GeoLocation, tz: Optional[tzinfo] = None) -> DaySchedule:
    """Compute all four breakpoints for ``day``.

    Raises:
        SolarDomainError: if any of the four crossings does not exist
            (polar day or night at this latitude).
    """
    lat, lon = location.latitude, location.longitude

    def crossing(angle: ElevationAngle, direction: Direction) -> datetime:
        return time_at_solar_elevation(day, lat, lon, angle, direction, tz)

    return DaySchedule(
        calendar_day=day,
        golden_rise=crossing(ElevationAngle.GOLDEN_HOUR, Direction.RISE),
        sunrise=crossing(ElevationAngle.HORIZON, Direction.RISE),
        golden_set=crossing(ElevationAngle.GOLDEN_HOUR, Direction.SET),
        sunset=crossing(ElevationAngle.HORIZON, Direction.SET),
    )


def refresh_day_schedule(
    cached: Optional[DaySchedule],
    now: datetime,
    location: GeoLocation,
) -> DaySchedule:
    """Return ``cached`` if it still covers ``now``'s date, else a new schedule.

    ``now`` must carry the local timezone; its date is the calendar day.
    """
    if cached is not None and cached.is_current(now):
        return cached

    schedule = compute_day_schedule(now.date(), location, now.tzinfo)
    logger.info(f"Set today's schedule – {schedule.describe()}")
    return schedule


# ---------------------------------------------------------------------------
# Target curve
# ---------------------------------------------------------------------------

def _fraction(elapsed: timedelta, span: timedelta) -> float:
    return elapsed / span


class TargetCurve:
    """Piecewise-linear color temperature over a DaySchedule.

    Regions (half-open, boundary belongs to the region starting there):

    * [golden_rise, golden_set)  → day CT
    * [sunrise, golden_rise)     → ramp sunset CT → day CT
    * [golden_set, sunset)       → ramp day CT → sunset CT
    * otherwise (night)          → sunset CT
    """

    @staticmethod
    def evaluate(now: datetime, schedule: DaySchedule, day_ct: int, sunset_ct: int) -> int:
        ct_delta = day_ct - sunset_ct

        if schedule.golden_rise <= now < schedule.golden_set:
            return day_ct

        if schedule.sunrise <= now < schedule.golden_rise:
            progress = _fraction(now - schedule.sunrise, schedule.golden_rise - schedule.sunrise)
            return sunset_ct + int(ct_delta * progress)

        if schedule.golden_set <= now < schedule.sunset:
            progress = _fraction(now - schedule.golden_set, schedule.sunset - schedule.golden_set)
            return day_ct - int(ct_delta * progress)

        return sunset_ct
