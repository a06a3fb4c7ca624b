"""Named instants of the day derived from the sun's position.

`get_named_instants()` is the astronomical time provider consumed by the
engine: it maps labels such as ``"sunrise"`` to aware datetimes for a single
calendar date and location.  Events that do not happen on that date (polar
day or night, or astronomical twilight around midsummer at high latitudes)
are left out of the table rather than failing.

Key updates:
- Morning and evening golden/blue hours, nautical and astronomical twilight
- ``sunrise_end``/``sunset_start`` for the sun's upper limb at the horizon
- camelCase aliases (``solarNoon``, ``goldenHour``, ``nightEnd`` ...) so
  records written against the SunCalc naming keep resolving
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone, tzinfo
from functools import partial
from typing import Callable, Dict, Optional

from astral import Depression, LocationInfo, SunDirection
from astral.sun import (
    blue_hour,
    dawn,
    dusk,
    golden_hour,
    midnight,
    noon,
    sunrise,
    sunset,
    time_at_elevation,
)

logger = logging.getLogger(__name__)

NamedInstants = Dict[str, datetime]
NamedInstantProvider = Callable[[date, float, float], NamedInstants]

ASTRONOMICAL_DAWN = "astronomical_dawn"
NAUTICAL_DAWN = "nautical_dawn"
DAWN = "dawn"
SUNRISE = "sunrise"
SUNRISE_END = "sunrise_end"
NOON = "noon"
SUNSET_START = "sunset_start"
SUNSET = "sunset"
DUSK = "dusk"
NAUTICAL_DUSK = "nautical_dusk"
ASTRONOMICAL_DUSK = "astronomical_dusk"
MIDNIGHT = "midnight"
MORNING_BLUE_HOUR_START = "morning_blue_hour_start"
MORNING_BLUE_HOUR_END = "morning_blue_hour_end"
MORNING_GOLDEN_HOUR_START = "morning_golden_hour_start"
MORNING_GOLDEN_HOUR_END = "morning_golden_hour_end"
GOLDEN_HOUR_START = "golden_hour_start"
GOLDEN_HOUR_END = "golden_hour_end"
BLUE_HOUR_START = "blue_hour_start"
BLUE_HOUR_END = "blue_hour_end"

# Geometric elevation of the sun's centre when its upper limb touches the
# horizon, without refraction.
UPPER_LIMB_ELEVATION = -0.3

_SINGLE_EVENTS = {
    ASTRONOMICAL_DAWN: partial(dawn, depression=Depression.ASTRONOMICAL),
    NAUTICAL_DAWN: partial(dawn, depression=Depression.NAUTICAL),
    DAWN: dawn,
    SUNRISE: sunrise,
    SUNRISE_END: partial(
        time_at_elevation,
        elevation=UPPER_LIMB_ELEVATION,
        direction=SunDirection.RISING,
        with_refraction=False,
    ),
    NOON: noon,
    SUNSET_START: partial(
        time_at_elevation,
        elevation=UPPER_LIMB_ELEVATION,
        direction=SunDirection.SETTING,
        with_refraction=False,
    ),
    SUNSET: sunset,
    DUSK: dusk,
    NAUTICAL_DUSK: partial(dusk, depression=Depression.NAUTICAL),
    ASTRONOMICAL_DUSK: partial(dusk, depression=Depression.ASTRONOMICAL),
    MIDNIGHT: midnight,
}

_RANGES = {
    (MORNING_BLUE_HOUR_START, MORNING_BLUE_HOUR_END): partial(blue_hour, direction=SunDirection.RISING),
    (MORNING_GOLDEN_HOUR_START, MORNING_GOLDEN_HOUR_END): partial(golden_hour, direction=SunDirection.RISING),
    (GOLDEN_HOUR_START, GOLDEN_HOUR_END): partial(golden_hour, direction=SunDirection.SETTING),
    (BLUE_HOUR_START, BLUE_HOUR_END): partial(blue_hour, direction=SunDirection.SETTING),
}

SUNCALC_ALIASES = {
    "nightEnd": ASTRONOMICAL_DAWN,
    "nauticalDawn": NAUTICAL_DAWN,
    "sunriseEnd": SUNRISE_END,
    "goldenHourEnd": MORNING_GOLDEN_HOUR_END,
    "solarNoon": NOON,
    "goldenHour": GOLDEN_HOUR_START,
    "sunsetStart": SUNSET_START,
    "nauticalDusk": NAUTICAL_DUSK,
    "night": ASTRONOMICAL_DUSK,
    "nadir": MIDNIGHT,
}


def get_named_instants(
    on_date: date,
    latitude: float,
    longitude: float,
    tzinfo: Optional[tzinfo] = None,
) -> NamedInstants:
    """Compute the sun events for *on_date* at the given location.

    Args:
        on_date: Calendar date (local to *tzinfo*).
        latitude: Degrees north.
        longitude: Degrees east.
        tzinfo: Zone the returned datetimes are expressed in; UTC if omitted.

    Returns:
        Mapping of event name to aware datetime.  Single events come first
        in chronological order of a typical mid-latitude day, then the
        golden/blue hour edges, then the aliases of whatever was found.
    """
    tz = tzinfo or timezone.utc
    observer = LocationInfo(latitude=latitude, longitude=longitude).observer

    instants: NamedInstants = {}
    for name, event in _SINGLE_EVENTS.items():
        try:
            instants[name] = event(observer, date=on_date, tzinfo=tz)
        except ValueError as e:
            logger.debug(f"No {name} on {on_date} at ({latitude}, {longitude}): {e}")

    for (start_name, end_name), event in _RANGES.items():
        try:
            start, end = event(observer, date=on_date, tzinfo=tz)
        except ValueError as e:
            logger.debug(f"No {start_name} on {on_date} at ({latitude}, {longitude}): {e}")
            continue
        instants[start_name] = start
        instants[end_name] = end

    for alias, name in SUNCALC_ALIASES.items():
        if name in instants:
            instants[alias] = instants[name]

    return instants


def provider_for(tz: Optional[tzinfo]) -> NamedInstantProvider:
    """Bind :func:`get_named_instants` to a time zone."""
    def provider(on_date: date, latitude: float, longitude: float) -> NamedInstants:
        return get_named_instants(on_date, latitude, longitude, tzinfo=tz)
    return provider
