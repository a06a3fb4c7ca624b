"""Day-wrap normalisation of recurring daily anchor times.

An anchor such as ``"06:00"`` or ``"sunset"`` recurs every day.  Given a
reference instant ``now`` we want the occurrence immediately before it and
the one immediately after it.  The anchor is first resolved on ``now``'s
calendar date, the minute offset is applied, and the result is then shifted
by whole days:

    diff = (anchor - now) / 1 day
    before = anchor - ceil(diff) days
    after = anchor - floor(diff) days

Day shifts are wall-clock shifts in ``now``'s time zone, so an anchor keeps
its local time of day across DST changes.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

HHMM_PATTERN = re.compile(r"^(2[0-3]|[01]?[0-9]):([0-5][0-9])$")

SECONDS_PER_DAY = 24 * 60 * 60


def parse_clock_time(value: str) -> Optional[Tuple[int, int]]:
    """Return ``(hour, minute)`` for a 24-hour ``HH:MM`` string, else None."""
    match = HHMM_PATTERN.match(value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_resolvable(value, named_instants: Mapping[str, datetime]) -> bool:
    """True if *value* is a named instant key or a 24-hour clock time."""
    if not isinstance(value, str):
        return False
    return value in named_instants or parse_clock_time(value) is not None


def resolve_anchor(value: str, named_instants: Mapping[str, datetime], now: datetime) -> datetime:
    """Resolve an anchor to an absolute instant on ``now``'s calendar date.

    Named instants are converted into ``now``'s time zone (naive ones are
    assumed to already be in it); clock times are placed on ``now``'s date at
    zero seconds.

    Raises:
        ValueError: if *value* is neither a named instant nor ``HH:MM``.
    """
    if value in named_instants:
        instant = named_instants[value]
        if instant.tzinfo is None:
            return instant.replace(tzinfo=now.tzinfo)
        if now.tzinfo is None:
            # Naive now is taken as system local time.
            return instant.astimezone().replace(tzinfo=None)
        return instant.astimezone(now.tzinfo)

    clock = parse_clock_time(value)
    if clock is None:
        raise ValueError(f"Unresolvable anchor time '{value}'")
    hour, minute = clock
    return now.replace(hour=hour, minute=minute, second=0, microsecond=0)


def normalise_window(anchor: datetime, now: datetime) -> Tuple[datetime, datetime]:
    """Shift *anchor* by whole days so that the pair brackets *now*.

    Returns ``(before, after)`` with ``before <= now <= after``.  When the
    anchor lies a whole number of days from *now* both values are equal.
    """
    diff_in_days = (anchor - now).total_seconds() / SECONDS_PER_DAY
    before = anchor - timedelta(days=math.ceil(diff_in_days))
    after = anchor - timedelta(days=math.floor(diff_in_days))
    return before, after


def resolve_window(
    value: str,
    offset_mins: int,
    named_instants: Mapping[str, datetime],
    now: datetime,
) -> Tuple[datetime, datetime]:
    """Resolve an anchor plus minute offset into its ``(before, after)`` window."""
    anchor = resolve_anchor(value, named_instants, now) + timedelta(minutes=offset_mins)
    before, after = normalise_window(anchor, now)
    logger.debug(f"Anchor '{value}'{offset_mins:+d}m -> {before.isoformat()} / {after.isoformat()}")
    return before, after
