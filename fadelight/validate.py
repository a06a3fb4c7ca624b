"""Validation of untrusted input records.

Every function here is pure: it returns the validated value together with a
tuple of `Issue` warnings, or raises `FadeError` for fatal problems.  Invalid
attribute fields are dropped one by one; only a missing location, a missing
fades list or too few usable fades are fatal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

import voluptuous as vol

from .const import (
    ACTIVATE_SERVICES,
    ATTR_BRIGHTNESS,
    ATTR_BRIGHTNESS_PCT,
    ATTR_COLOR_TEMP,
    ATTR_HS_COLOR,
    ATTR_KELVIN,
    ATTR_OFFSET_MINS,
    ATTR_RGB_COLOR,
    ATTR_RGBW_COLOR,
    ATTR_RGBWW_COLOR,
    ATTR_TIME,
    ATTR_XY_COLOR,
    DEFAULT_TOPIC,
    KEY_ENABLED,
    KEY_FADES,
    KEY_LOCATION,
    KEY_NOW,
    KEY_PAYLOAD,
    KEY_SERVICE,
    KEY_TOPIC,
    LEVEL_ATTRIBUTES,
    MAX_BRIGHTNESS,
    MAX_BRIGHTNESS_PCT,
    MAX_HUE,
    MAX_KELVIN,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MAX_MIREDS,
    MAX_OFFSET_MINS,
    MAX_RGB,
    MAX_SAT,
    MAX_XY,
    MIN_FADES,
    MIN_KELVIN,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    MIN_MIREDS,
    MIN_OFFSET_MINS,
)
from .diagnostics import ErrorKind, FadeError, Issue
from .timewindow import is_resolvable, resolve_window

logger = logging.getLogger(__name__)

Issues = Tuple[Issue, ...]

# ---------------------------------------------------------------------------
# Validated types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Location:
    """Observer location in degrees."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Activation:
    """What an input record asks the scheduler to do.

    ``activate`` is True to start, False to stop and None to pass through.
    ``enabled`` is None when the record does not carry the enabled flag.
    """
    topic: str
    activate: Optional[bool] = None
    enabled: Optional[bool] = None


@dataclass(frozen=True)
class FadeAnchor:
    """One validated fade entry with its resolved window."""
    time: str
    offset_mins: int
    levels: Dict[str, Any]
    before_time: datetime
    after_time: datetime


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


class NotANumber(vol.Invalid):
    """Value could not be read as a number."""


def _number(value: Any) -> float:
    """Coerce to float; infinities pass through so range checks reject them."""
    if isinstance(value, bool):
        raise NotANumber("Must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise NotANumber("Must be a number.")
    if math.isnan(number):
        raise NotANumber("Must be a number.")
    return number


def _truncated_int(value: Any):
    """Coerce to int, truncating fractional input toward zero."""
    try:
        number = _number(value)
    except NotANumber:
        raise NotANumber("Must be an integer.")
    if math.isinf(number):
        return number
    return int(number)


def _as_list(value):
    return list(value)


def _root_cause(error: vol.Invalid) -> vol.Invalid:
    while isinstance(error, vol.MultipleInvalid) and error.errors:
        error = error.errors[0]
    return error


def _between(low, high) -> vol.Range:
    return vol.Range(min=low, max=high, msg=f"Must be between {low} and {high}.")


def _array(size: int):
    def validator(value: Any):
        if not isinstance(value, (list, tuple)) or len(value) != size:
            raise vol.Invalid(f"Must be an array of exactly {size} numbers.")
        return value
    return validator


def _channels(size: int):
    channel = vol.All(_truncated_int, vol.Range(min=0, max=MAX_RGB))
    return vol.All(
        _array(size),
        vol.ExactSequence([channel] * size, msg=f"Must be {size}x integers between 0 and {MAX_RGB}."),
        _as_list,
    )


LOCATION_SCHEMA = {
    "latitude": vol.All(_number, _between(MIN_LATITUDE, MAX_LATITUDE)),
    "longitude": vol.All(_number, _between(MIN_LONGITUDE, MAX_LONGITUDE)),
}

OFFSET_SCHEMA = vol.All(_truncated_int, _between(MIN_OFFSET_MINS, MAX_OFFSET_MINS))

FIELD_SCHEMAS = {
    ATTR_BRIGHTNESS: vol.All(_truncated_int, _between(0, MAX_BRIGHTNESS)),
    ATTR_BRIGHTNESS_PCT: vol.All(_truncated_int, _between(0, MAX_BRIGHTNESS_PCT)),
    ATTR_COLOR_TEMP: vol.All(_truncated_int, _between(MIN_MIREDS, MAX_MIREDS)),
    ATTR_KELVIN: vol.All(_truncated_int, _between(MIN_KELVIN, MAX_KELVIN)),
    ATTR_RGB_COLOR: _channels(3),
    ATTR_RGBW_COLOR: _channels(4),
    ATTR_RGBWW_COLOR: _channels(5),
    ATTR_HS_COLOR: vol.All(
        _array(2),
        vol.ExactSequence(
            [
                vol.All(_number, vol.Range(min=0.0, max=MAX_HUE)),
                vol.All(_number, vol.Range(min=0.0, max=MAX_SAT)),
            ],
            msg=f"Must be 2x numbers, first between 0 and {MAX_HUE} and second between 0 and {MAX_SAT}.",
        ),
        _as_list,
    ),
    ATTR_XY_COLOR: vol.All(
        _array(2),
        vol.ExactSequence(
            [vol.All(_number, vol.Range(min=0.0, max=MAX_XY))] * 2,
            msg=f"Must be 2x numbers between 0 and {MAX_XY}.",
        ),
        _as_list,
    ),
}


def validate_field(name: str, value: Any) -> Tuple[Any, Optional[str]]:
    """Validate one attribute field.

    Returns ``(value, None)`` on success or ``(None, reason)`` on failure.
    """
    try:
        return FIELD_SCHEMAS[name](value), None
    except vol.Invalid as e:
        return None, e.msg


def collect_levels(fade: Mapping[str, Any], index: int) -> Tuple[Dict[str, Any], Issues]:
    """Validate every attribute field in *fade*, keeping the ones that survive."""
    levels: Dict[str, Any] = {}
    issues: List[Issue] = []
    for name in LEVEL_ATTRIBUTES:
        if name not in fade:
            continue
        value, reason = validate_field(name, fade[name])
        if reason is not None:
            issues.append(Issue(
                f"Invalid fades[{index}].{name} {fade[name]!r}. {reason}",
                f"fades[{index}].{name} is invalid!",
            ))
            continue
        levels[name] = value
    return levels, tuple(issues)


# ---------------------------------------------------------------------------
# Record level validators
# ---------------------------------------------------------------------------


def parse_activation(record: Mapping[str, Any]) -> Activation:
    """Read topic, service and enabled flag from an input record."""
    topic = record.get(KEY_TOPIC)
    topic = DEFAULT_TOPIC if topic is None or topic == "" else str(topic)

    activate = None
    payload = record.get(KEY_PAYLOAD)
    if isinstance(payload, Mapping):
        service = payload.get(KEY_SERVICE)
        if service is True or (isinstance(service, str) and service in ACTIVATE_SERVICES):
            activate = True
        elif service is not None and service != "":
            activate = False

    enabled = None
    if KEY_ENABLED in record:
        value = record[KEY_ENABLED]
        enabled = bool(value) and value != "false"

    return Activation(topic=topic, activate=activate, enabled=enabled)


def parse_location(record: Mapping[str, Any]) -> Location:
    """Validate ``record['location']``.

    Raises:
        FadeError: MISSING_FIELD, NOT_A_NUMBER or OUT_OF_RANGE; latitude is
            checked before longitude and only the first problem is reported.
    """
    location = record.get(KEY_LOCATION)
    if not (
        isinstance(location, Mapping)
        and location.get("latitude") is not None
        and location.get("longitude") is not None
    ):
        raise FadeError(
            ErrorKind.MISSING_FIELD,
            "location.latitude and/or location.longitude not defined.",
            "location error!",
        )

    values = {}
    for name, schema in LOCATION_SCHEMA.items():
        try:
            values[name] = schema(location[name])
        except vol.Invalid as e:
            if isinstance(_root_cause(e), NotANumber):
                raise FadeError(
                    ErrorKind.NOT_A_NUMBER,
                    f"location.{name} {location[name]!r} is not a number.",
                    "location error!",
                )
            limit = MAX_LATITUDE if name == "latitude" else MAX_LONGITUDE
            raise FadeError(
                ErrorKind.OUT_OF_RANGE,
                f"location.{name} {location[name]!r} is not between {-limit:g} and {limit:g} degrees.",
                "location error!",
            )
    return Location(**values)


def _parse_timestamp(value: Any, now: datetime) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
            if parsed is None:
                return None
    else:
        return None

    if parsed.tzinfo is None and now.tzinfo is not None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    elif parsed.tzinfo is not None and now.tzinfo is None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def parse_now_offset(record: Mapping[str, Any], now: datetime) -> Tuple[timedelta, Issues]:
    """Offset between ``record['now']`` and the real *now*.

    An absent override gives a zero offset.  An unparseable one also gives a
    zero offset, plus a warning.
    """
    value = record.get(KEY_NOW)
    if value is None:
        return timedelta(0), ()

    target = _parse_timestamp(value, now)
    if target is None:
        return timedelta(0), (Issue(
            f"Invalid format provided for now {value!r}. "
            "Use ISO-8601 (yyyy-mm-ddThh:mm:ss+hh:mm) or RFC-2822.",
            "now invalid!",
        ),)

    offset = _as_utc(target) - _as_utc(now)
    logger.debug(f"Simulating now as {target.isoformat()} (offset {offset})")
    return offset, ()


def _validate_time(fade: Any, index: int, named_instants: Mapping[str, datetime]) -> Tuple[Optional[str], Issues]:
    if not isinstance(fade, Mapping) or fade.get(ATTR_TIME) is None:
        return None, (Issue(f"time not defined in fades[{index}].", f"fades[{index}] is invalid!"),)

    value = fade[ATTR_TIME]
    if not is_resolvable(value, named_instants):
        allowed = ", ".join(named_instants)
        return None, (Issue(
            f"Invalid time {value!r} provided within fades[{index}]. "
            f"Must be either {allowed} or in the form hh:mm",
            f"fades[{index}] is invalid!",
        ),)
    return value, ()


def _validate_offset(fade: Mapping[str, Any], index: int) -> Tuple[int, Issues]:
    value = fade.get(ATTR_OFFSET_MINS)
    if value is None:
        return 0, ()
    try:
        return OFFSET_SCHEMA(value), ()
    except vol.Invalid as e:
        return 0, (Issue(
            f"Invalid fades[{index}].offset_mins {value!r}. {e.msg}",
            f"fades[{index}].offset_mins is invalid!",
        ),)


def validate_fade(
    fade: Any,
    index: int,
    named_instants: Mapping[str, datetime],
    now: datetime,
) -> Tuple[Optional[FadeAnchor], Issues]:
    """Validate one raw fade entry.

    Returns the anchor (or None when the entry is dropped) and the warnings
    it produced.
    """
    time, issues = _validate_time(fade, index, named_instants)
    if time is None:
        return None, issues

    offset_mins, offset_issues = _validate_offset(fade, index)
    levels, level_issues = collect_levels(fade, index)
    issues = issues + offset_issues + level_issues

    if not levels:
        return None, issues + (Issue(
            f"No levels provided within fades[{index}]. Skipping.",
            f"fades[{index}] is invalid!",
        ),)

    before_time, after_time = resolve_window(time, offset_mins, named_instants, now)
    anchor = FadeAnchor(
        time=time,
        offset_mins=offset_mins,
        levels=levels,
        before_time=before_time,
        after_time=after_time,
    )
    return anchor, issues


def validate_fades(
    raw: Any,
    named_instants: Mapping[str, datetime],
    now: datetime,
) -> Tuple[List[FadeAnchor], Issues]:
    """Validate a list of raw fade entries.

    Args:
        raw: The untrusted ``fades`` value.
        named_instants: Named times of day for ``now``'s date.
        now: Reference instant every window is resolved around.

    Returns:
        The surviving anchors in input order and all warnings.

    Raises:
        FadeError: MISSING_OR_NOT_ARRAY when *raw* is not a list, or
            INSUFFICIENT_ENTRIES when fewer than two entries survive.
    """
    if raw is None:
        raise FadeError(ErrorKind.MISSING_OR_NOT_ARRAY, "fades not defined in record.", "fades error!")
    if not isinstance(raw, (list, tuple)):
        raise FadeError(ErrorKind.MISSING_OR_NOT_ARRAY, "fades is not an array.", "fades error!")

    anchors: List[FadeAnchor] = []
    issues: Tuple[Issue, ...] = ()
    for index, fade in enumerate(raw):
        anchor, fade_issues = validate_fade(fade, index, named_instants, now)
        issues += fade_issues
        if anchor is not None:
            anchors.append(anchor)

    if len(anchors) < MIN_FADES:
        raise FadeError(
            ErrorKind.INSUFFICIENT_ENTRIES,
            f"fades had fewer than {MIN_FADES} valid entries.",
            "fades length error!",
            issues,
        )
    return anchors, issues


def validate_record(
    record: Mapping[str, Any],
    named_instants: Mapping[str, datetime],
    now: datetime,
) -> Tuple[List[FadeAnchor], Issues]:
    """Shortcut for ``validate_fades(record['fades'], ...)``."""
    return validate_fades(record.get(KEY_FADES), named_instants, now)
