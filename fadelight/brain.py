"""Brain module for fades - interpolation between bracketing anchors.

Key ideas
---------
* Every supported light attribute has a *domain*: per-element bounds and
  whether the value is sent as an integer.  Scalars are one-element domains.
* `fade()` blends the attributes present in *both* anchors by the progress of
  ``now`` through the window ``[before.before_time, after.after_time]``.
* `select_bracket()` picks the anchors that define that window.
* `is_static_fade()` tells whether two value sets would drive the lights to
  the same state, which is how redundant output is suppressed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .const import (
    ATTR_BRIGHTNESS,
    ATTR_BRIGHTNESS_PCT,
    ATTR_COLOR_TEMP,
    ATTR_HS_COLOR,
    ATTR_KELVIN,
    ATTR_RGB_COLOR,
    ATTR_RGBW_COLOR,
    ATTR_RGBWW_COLOR,
    ATTR_XY_COLOR,
    LEVEL_ATTRIBUTES,
    MAX_BRIGHTNESS,
    MAX_BRIGHTNESS_PCT,
    MAX_HUE,
    MAX_KELVIN,
    MAX_MIREDS,
    MAX_RGB,
    MAX_SAT,
    MAX_XY,
    MIN_KELVIN,
    MIN_MIREDS,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Attribute domains
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Domain:
    """Valid range and representation of one light attribute."""

    bounds: Tuple[Tuple[float, float], ...]
    integer: bool
    vector: bool

    @property
    def size(self) -> int:
        return len(self.bounds)


def _scalar(low: float, high: float, integer: bool = True) -> Domain:
    return Domain(bounds=((low, high),), integer=integer, vector=False)


def _vector(bounds: Sequence[Tuple[float, float]], integer: bool) -> Domain:
    return Domain(bounds=tuple(bounds), integer=integer, vector=True)


DOMAINS: Dict[str, Domain] = {
    ATTR_BRIGHTNESS: _scalar(0, MAX_BRIGHTNESS),
    ATTR_BRIGHTNESS_PCT: _scalar(0, MAX_BRIGHTNESS_PCT),
    ATTR_COLOR_TEMP: _scalar(MIN_MIREDS, MAX_MIREDS),
    ATTR_KELVIN: _scalar(MIN_KELVIN, MAX_KELVIN),
    ATTR_RGB_COLOR: _vector([(0, MAX_RGB)] * 3, integer=True),
    ATTR_RGBW_COLOR: _vector([(0, MAX_RGB)] * 4, integer=True),
    ATTR_RGBWW_COLOR: _vector([(0, MAX_RGB)] * 5, integer=True),
    ATTR_HS_COLOR: _vector([(0.0, MAX_HUE), (0.0, MAX_SAT)], integer=False),
    ATTR_XY_COLOR: _vector([(0.0, MAX_XY)] * 2, integer=False),
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +infinity."""
    return int(math.floor(value + 0.5))


def _blend(start: float, end: float, progress: float, low: float, high: float, integer: bool):
    value = end if progress >= 1.0 else progress * (end - start) + start
    if integer:
        value = round_half_up(value)
    return max(low, min(high, value))


def interpolate_value(name: str, start: Any, end: Any, progress: float) -> Any:
    """Interpolate one attribute and clamp it to its domain.

    Vectors are interpolated and clamped element by element.
    """
    domain = DOMAINS[name]
    if not domain.vector:
        low, high = domain.bounds[0]
        return _blend(start, end, progress, low, high, domain.integer)
    return [
        _blend(start[i], end[i], progress, low, high, domain.integer)
        for i, (low, high) in enumerate(domain.bounds)
    ]


# ---------------------------------------------------------------------------
# Fade maths
# ---------------------------------------------------------------------------


def calculate_progress(start: datetime, end: datetime, now: datetime) -> float:
    """Fraction of the window ``[start, end]`` elapsed at *now*, clamped to 0..1.

    A zero-length window (anchor exactly at *now*) has progress 0.
    """
    span = (end - start).total_seconds()
    if span <= 0:
        return 0.0
    elapsed = (now - start).total_seconds()
    return max(0.0, min(1.0, elapsed / span))


def fade(before, after, now: datetime) -> Optional[Dict[str, Any]]:
    """Calculate the value set between two anchors at *now*.

    Args:
        before: Anchor whose ``before_time`` starts the window.
        after: Anchor whose ``after_time`` ends the window.
        now: Current time; it is constrained to the window.

    Returns:
        Mapping of attribute name to interpolated value, holding only the
        attributes present in both anchors, or None when the window is
        invalid (``before.before_time > after.after_time``).
    """
    if before.before_time > after.after_time:
        logger.debug(
            f"Invalid fade window: {before.before_time.isoformat()} > {after.after_time.isoformat()}"
        )
        return None

    progress = calculate_progress(before.before_time, after.after_time, now)

    result: Dict[str, Any] = {}
    for name in LEVEL_ATTRIBUTES:
        if name in before.levels and name in after.levels:
            result[name] = interpolate_value(name, before.levels[name], after.levels[name], progress)

    logger.debug(f"Fade progress {progress:.3f}: {result}")
    return result


def select_bracket(anchors: Sequence) -> Tuple[Any, Any]:
    """Pick the anchors bracketing now.

    Returns ``(closest_before, closest_after)``: the anchor with the latest
    ``before_time`` (later entries win ties) and the anchor with the earliest
    ``after_time`` (earlier entries win ties).

    Raises:
        ValueError: if *anchors* is empty.
    """
    if not anchors:
        raise ValueError("Cannot select a fade window from an empty list")

    closest_before = None
    closest_after = None
    for anchor in anchors:
        if closest_before is None or closest_before.before_time <= anchor.before_time:
            closest_before = anchor
        if closest_after is None or closest_after.after_time > anchor.after_time:
            closest_after = anchor
    return closest_before, closest_after


def in_window(closest_before, closest_after, now: datetime) -> bool:
    """True while *now* still lies inside the selected window."""
    if closest_before is None or closest_after is None:
        return False
    return closest_before.before_time <= now <= closest_after.after_time


def is_static_fade(before: Mapping[str, Any], after: Mapping[str, Any]) -> bool:
    """True if every attribute present in both value sets is equal.

    Scalars compare by equality; vectors element-wise, and vectors of
    different length are never equal.
    """
    for name in LEVEL_ATTRIBUTES:
        if name not in before or name not in after:
            continue
        first, second = before[name], after[name]
        if isinstance(first, (list, tuple)) and isinstance(second, (list, tuple)):
            if len(first) != len(second):
                return False
            if any(a != b for a, b in zip(first, second)):
                return False
        elif first != second:
            return False
    return True


def values_changed(previous: Optional[Mapping[str, Any]], current: Mapping[str, Any]) -> bool:
    """Decide whether *current* needs to be emitted after *previous*."""
    if previous is None:
        return True
    if set(previous) != set(current):
        return True
    return not is_static_fade(previous, current)


def describe(values: Mapping[str, Any]) -> List[str]:
    """Short human readable rendering of a value set, for logs."""
    parts = []
    for name in LEVEL_ATTRIBUTES:
        if name not in values:
            continue
        value = values[name]
        if isinstance(value, (list, tuple)):
            rendered = ",".join(f"{v:.4g}" if isinstance(v, float) else str(v) for v in value)
            parts.append(f"{name}=({rendered})")
        else:
            parts.append(f"{name}={value}")
    return parts
