#!/usr/bin/env python3
"""Solar elevation crossing times: low-precision NOAA formulas.

Given a calendar day, a location and one of the predefined elevation angles,
compute the instant at which the sun crosses that angle while rising or
setting.  The math follows the classic NOAA solar calculator spreadsheet:

* Julian date → Julian centuries since J2000.0
* geometric mean longitude / anomaly, orbital eccentricity
* obliquity (with nutation correction), equation of time, declination
* hour angle at the requested elevation, refined by a second pass

Results are accurate to roughly a minute at mid latitudes, which is all a
lighting schedule needs.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import IntEnum
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEG_TO_RAD = math.pi / 180
RAD_TO_DEG = 180 / math.pi

J2000 = 2451545.0
DAYS_PER_CENTURY = 36525.0

# Atmospheric refraction at the horizon (degrees)
HORIZON_REFRACTION = 0.833


class ElevationAngle(IntEnum):
    """Supported solar elevation angles (degrees).

    Dawn and dusk share a value; the direction is passed separately.
    """
    ASTRONOMICAL = -18
    NAUTICAL = -12
    CIVIL = -6
    HORIZON = 0
    GOLDEN_HOUR = 6
    INDOOR_LIGHTS = 12


class Direction(IntEnum):
    """Whether the sun is rising or setting through the angle."""
    RISE = 1
    SET = -1


class SolarDomainError(ValueError):
    """The sun never crosses the requested elevation on that day."""

    def __init__(self, day: date, latitude: float, angle: ElevationAngle, direction: Direction):
        self.day = day
        self.latitude = latitude
        self.angle = angle
        self.direction = direction
        super().__init__(
            f"Sun does not {'rise' if direction is Direction.RISE else 'set'} through "
            f"{int(angle)}° at latitude {latitude} on {day.isoformat()}"
        )


@dataclass(frozen=True)
class Crossing:
    """Outcome of a crossing computation.

    ``instant`` is None when the sun stays above or below the angle all day
    (polar day/night for that angle).
    """
    day: date
    latitude: float
    angle: ElevationAngle
    direction: Direction
    instant: Optional[datetime] = None

    @property
    def exists(self) -> bool:
        return self.instant is not None

    def require(self) -> datetime:
        """Return the instant or raise SolarDomainError."""
        if self.instant is None:
            raise SolarDomainError(self.day, self.latitude, self.angle, self.direction)
        return self.instant


# ---------------------------------------------------------------------------
# Julian calendar helpers
# ---------------------------------------------------------------------------

def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def julian_date(moment: datetime) -> float:
    """Julian date of a wall-clock datetime, shifted by its UTC offset."""
    year, month, day = moment.year, moment.month, moment.day
    a = _trunc_div(month - 14, 12)
    jday = (
        (1461 * (year + 4800 + a)) // 4
        + (367 * (month - 2 - 12 * a)) // 12
        - (3 * ((year + 4900 + a) // 100)) // 4
        + day
        - 32075
    )

    jdatetime = (
        jday
        + (moment.hour - 12.0) / 24.0
        + moment.minute / 1440.0
        + moment.second / 86400.0
        + (moment.microsecond // 1000) / 86400000.0
    )

    offset = moment.utcoffset()
    offset_seconds = offset.total_seconds() if offset is not None else 0.0
    return jdatetime + offset_seconds / 86400


def julian_century(jd: float) -> float:
    return (jd - J2000) / DAYS_PER_CENTURY


def julian_date_from_century(t: float) -> float:
    return t * DAYS_PER_CENTURY + J2000


# ---------------------------------------------------------------------------
# Orbital terms (all in degrees unless noted)
# ---------------------------------------------------------------------------

def _normalize_degrees(lon: float) -> float:
    """Fold into [0, 360]; exactly 360 is left as is."""
    while lon > 360.0:
        lon -= 360.0
    while lon < 0.0:
        lon += 360.0
    return lon


def sun_geom_mean_longitude(t: float) -> float:
    return _normalize_degrees(280.46646 + t * (36000.76983 + 0.0003032 * t))


def mean_obliquity_of_ecliptic(t: float) -> float:
    seconds = 21.448 - t * (46.8150 + t * (0.00059 - t * 0.001813))
    return 23.0 + (26.0 + seconds / 60.0) / 60.0


def obliquity_correction(t: float) -> float:
    omega = 125.04 - 1934.136 * t
    return mean_obliquity_of_ecliptic(t) + 0.00256 * math.cos(omega * DEG_TO_RAD)


def eccentricity_earth_orbit(t: float) -> float:
    """Unitless."""
    return 0.016708634 - t * (0.000042037 + 0.0000001267 * t)


def sun_geom_mean_anomaly(t: float) -> float:
    return 357.52911 + t * (35999.05029 - 0.0001537 * t)


def equation_of_time(t: float) -> float:
    """Difference between true and mean solar time, in minutes."""
    epsilon = obliquity_correction(t)
    l0 = sun_geom_mean_longitude(t)
    e = eccentricity_earth_orbit(t)
    m = sun_geom_mean_anomaly(t)

    y = math.tan(DEG_TO_RAD * epsilon / 2.0)
    y *= y

    sin2l0 = math.sin(2.0 * DEG_TO_RAD * l0)
    sinm = math.sin(DEG_TO_RAD * m)
    cos2l0 = math.cos(2.0 * DEG_TO_RAD * l0)
    sin4l0 = math.sin(4.0 * DEG_TO_RAD * l0)
    sin2m = math.sin(2.0 * DEG_TO_RAD * m)

    etime = (
        y * sin2l0
        - 2.0 * e * sinm
        + 4.0 * e * y * sinm * cos2l0
        - 0.5 * y * y * sin4l0
        - 1.25 * e * e * sin2m
    )
    return RAD_TO_DEG * etime * 4.0


def sun_equation_of_center(t: float) -> float:
    m = DEG_TO_RAD * sun_geom_mean_anomaly(t)
    return (
        math.sin(m) * (1.914602 - t * (0.004817 + 0.000014 * t))
        + math.sin(m + m) * (0.019993 - 0.000101 * t)
        + math.sin(m + m + m) * 0.000289
    )


def sun_true_longitude(t: float) -> float:
    return sun_geom_mean_longitude(t) + sun_equation_of_center(t)


def sun_apparent_longitude(t: float) -> float:
    omega = 125.04 - 1934.136 * t
    return sun_true_longitude(t) - 0.00569 - 0.00478 * math.sin(DEG_TO_RAD * omega)


def sun_declination(t: float) -> float:
    e = obliquity_correction(t)
    lam = sun_apparent_longitude(t)
    sint = math.sin(DEG_TO_RAD * e) * math.sin(DEG_TO_RAD * lam)
    return RAD_TO_DEG * math.asin(sint)


# ---------------------------------------------------------------------------
# Noon and hour angle
# ---------------------------------------------------------------------------

def solar_noon_utc(t: float, west_longitude: float) -> float:
    """Solar noon in minutes after UTC midnight, refined once."""
    jd = julian_date_from_century(t)
    t_noon = julian_century(jd + west_longitude / 360.0)
    noon = 720 + west_longitude * 4 - equation_of_time(t_noon)

    refined = julian_century(jd - 0.5 + noon / 1440.0)
    return 720 + west_longitude * 4 - equation_of_time(refined)


def refraction_correction(angle: ElevationAngle) -> float:
    return HORIZON_REFRACTION if angle == ElevationAngle.HORIZON else -int(angle)


def hour_angle_at_elevation(latitude: float, declination: float, angle: ElevationAngle) -> Optional[float]:
    """Hour angle in radians, or None when the sun never reaches the angle."""
    lat_rad = DEG_TO_RAD * latitude
    decl_rad = DEG_TO_RAD * declination
    zenith = DEG_TO_RAD * (90 + refraction_correction(angle))

    arg = (
        math.cos(zenith) / (math.cos(lat_rad) * math.cos(decl_rad))
        - math.tan(lat_rad) * math.tan(decl_rad)
    )
    if not math.isfinite(arg) or arg < -1.0 or arg > 1.0:
        return None
    return math.acos(arg)


def _minutes_at_elevation(
    jd: float,
    latitude: float,
    longitude: float,
    angle: ElevationAngle,
    direction: Direction,
) -> Optional[float]:
    """UTC minutes after midnight when the sun crosses ``angle``."""
    west = -longitude
    t = julian_century(jd)

    noon_min = solar_noon_utc(t, west)
    t_noon = julian_century(jd + noon_min / 1440.0)

    eq_time = equation_of_time(t_noon)
    ha = hour_angle_at_elevation(latitude, sun_declination(t_noon), angle)
    if ha is None:
        return None
    time_utc = 720 + 4 * (west - RAD_TO_DEG * int(direction) * ha) - eq_time

    # Second pass at the first estimate corrects for the day-fraction shift
    t_refined = julian_century(julian_date_from_century(t) + time_utc / 1440.0)
    eq_time = equation_of_time(t_refined)
    ha = hour_angle_at_elevation(latitude, sun_declination(t_refined), angle)
    if ha is None:
        return None
    return 720 + 4 * (west - RAD_TO_DEG * int(direction) * ha) - eq_time


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _local_midnight(reference: Union[date, datetime], tz: Optional[tzinfo]) -> datetime:
    if isinstance(reference, datetime):
        if tz is None:
            tz = reference.tzinfo
        day = reference.date()
    else:
        day = reference
    if tz is None:
        # Naive input: system local zone
        return datetime.combine(day, time()).astimezone()
    return datetime.combine(day, time(), tzinfo=tz)


def solve_crossing(
    reference: Union[date, datetime],
    latitude: float,
    longitude: float,
    angle: ElevationAngle,
    direction: Direction,
    tz: Optional[tzinfo] = None,
) -> Crossing:
    """Compute when the sun crosses ``angle`` on the local calendar day of ``reference``.

    Args:
        reference: Local civil date (time of day is ignored)
        latitude: Degrees north
        longitude: Degrees east
        angle: One of the predefined elevation angles
        direction: Rise or set
        tz: Local timezone; defaults to ``reference.tzinfo`` or system local

    Returns:
        Crossing whose instant is in local time, truncated to whole seconds.
    """
    angle = ElevationAngle(angle)
    direction = Direction(direction)

    midnight = _local_midnight(reference, tz)
    day = midnight.date()
    minutes = _minutes_at_elevation(julian_date(midnight), latitude, longitude, angle, direction)

    if minutes is None:
        logger.debug(f"No {direction.name.lower()} crossing of {int(angle)}° at lat={latitude} on {day}")
        return Crossing(day, latitude, angle, direction)

    utc_midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    instant = utc_midnight + timedelta(seconds=math.floor(minutes * 60))
    return Crossing(day, latitude, angle, direction, instant.astimezone(midnight.tzinfo))


def time_at_solar_elevation(
    reference: Union[date, datetime],
    latitude: float,
    longitude: float,
    angle: ElevationAngle,
    direction: Direction,
    tz: Optional[tzinfo] = None,
) -> datetime:
    """Like solve_crossing() but raises SolarDomainError when there is no crossing."""
    return solve_crossing(reference, latitude, longitude, angle, direction, tz).require()


def dawn_time(reference, latitude: float, longitude: float, angle: ElevationAngle, tz=None) -> datetime:
    return time_at_solar_elevation(reference, latitude, longitude, angle, Direction.RISE, tz)


def dusk_time(reference, latitude: float, longitude: float, angle: ElevationAngle, tz=None) -> datetime:
    return time_at_solar_elevation(reference, latitude, longitude, angle, Direction.SET, tz)


def sunrise_time(reference, latitude: float, longitude: float, tz=None) -> datetime:
    return dawn_time(reference, latitude, longitude, ElevationAngle.HORIZON, tz)


def sunset_time(reference, latitude: float, longitude: float, tz=None) -> datetime:
    return dusk_time(reference, latitude, longitude, ElevationAngle.HORIZON, tz)
