"""Evaluation engine - turns an input record into fade output.

The functions here are pure over their arguments: they take an
`EvaluationContext` and the wall clock, and hand back a new context plus the
record to emit (if any).  The scheduler owns the contexts and applies the
updates.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .brain import describe, fade, in_window, select_bracket, values_changed
from .const import ATTR_TRANSITION, KEY_DATA, KEY_ENABLED, KEY_PAYLOAD
from .diagnostics import ErrorKind, FadeError, Report
from .suntimes import NamedInstantProvider
from .validate import FadeAnchor, Location, parse_location, parse_now_offset, validate_record

logger = logging.getLogger(__name__)


def shift_clock(clock_now: datetime, offset: timedelta) -> datetime:
    """Move *clock_now* by an elapsed-time *offset*, kept in its own zone.

    Aware values are shifted in UTC so the result stays exact across DST
    changes.
    """
    if clock_now.tzinfo is None:
        return clock_now + offset
    return (clock_now.astimezone(timezone.utc) + offset).astimezone(clock_now.tzinfo)


@dataclass(frozen=True)
class EvaluationContext:
    """Everything one channel needs between ticks."""

    topic: str
    record: Mapping[str, Any]
    location: Location
    now_offset: timedelta = timedelta(0)
    enabled: bool = True
    fades: Tuple[FadeAnchor, ...] = ()
    closest_before: Optional[FadeAnchor] = None
    closest_after: Optional[FadeAnchor] = None
    last_data: Optional[Dict[str, Any]] = None

    def now(self, clock_now: datetime) -> datetime:
        """The simulated now for a wall clock reading."""
        return shift_clock(clock_now, self.now_offset)


@dataclass(frozen=True)
class Evaluation:
    """Result of one evaluation step."""

    context: Optional[EvaluationContext]
    output: Optional[Dict[str, Any]] = None
    report: Report = field(default_factory=Report)


def build_output(
    record: Mapping[str, Any],
    data: Mapping[str, Any],
    transition: Optional[float] = None,
) -> Dict[str, Any]:
    """Copy *record* and merge the fade values into ``payload.data``."""
    output = copy.deepcopy(dict(record))
    payload = output.get(KEY_PAYLOAD)
    if not isinstance(payload, dict):
        payload = {}
        output[KEY_PAYLOAD] = payload
    target = payload.get(KEY_DATA)
    if not isinstance(target, dict):
        target = {}
        payload[KEY_DATA] = target

    target.update(copy.deepcopy(dict(data)))
    if transition is not None:
        target[ATTR_TRANSITION] = transition
    output[KEY_ENABLED] = True
    return output


def resolve_fades(
    record: Mapping[str, Any],
    location: Location,
    now: datetime,
    provider: NamedInstantProvider,
):
    """Validate the record's fades around *now* and pick the active window.

    Returns ``(anchors, closest_before, closest_after, warnings)``.

    Raises:
        FadeError: when the fades cannot be validated.
    """
    named_instants = provider(now.date(), location.latitude, location.longitude)
    anchors, issues = validate_record(record, named_instants, now)
    closest_before, closest_after = select_bracket(anchors)
    logger.debug(
        f"Fade window {closest_before.time} ({closest_before.before_time.isoformat()}) -> "
        f"{closest_after.time} ({closest_after.after_time.isoformat()})"
    )
    return tuple(anchors), closest_before, closest_after, issues


def setup(
    record: Mapping[str, Any],
    topic: str,
    clock_now: datetime,
    provider: NamedInstantProvider,
    enabled: bool = True,
) -> Tuple[Optional[EvaluationContext], Report]:
    """Validate a record and build the channel context for it.

    The context is None when validation failed; the report then carries the
    fatal error.
    """
    report = Report()
    now_offset, issues = parse_now_offset(record, clock_now)
    report = report.extend(issues)
    now = shift_clock(clock_now, now_offset)

    try:
        location = parse_location(record)
        anchors, closest_before, closest_after, issues = resolve_fades(record, location, now, provider)
    except FadeError as e:
        return None, report.fail(e)

    context = EvaluationContext(
        topic=topic,
        record=copy.deepcopy(dict(record)),
        location=location,
        now_offset=now_offset,
        enabled=enabled,
        fades=anchors,
        closest_before=closest_before,
        closest_after=closest_after,
    )
    return context, report.extend(issues)


def _interpolate(context: EvaluationContext, now: datetime) -> Optional[Dict[str, Any]]:
    return fade(context.closest_before, context.closest_after, now)


def _invalid_window(context: EvaluationContext) -> FadeError:
    return FadeError(
        ErrorKind.INVALID_WINDOW,
        f"Fade window for '{context.topic}' starts after it ends.",
        "fade window error!",
    )


def start(context: EvaluationContext, clock_now: datetime) -> Evaluation:
    """First evaluation after activation.

    A disabled channel passes the record through untouched; an enabled one
    always emits, without a transition time.
    """
    if not context.enabled:
        return Evaluation(context, copy.deepcopy(dict(context.record)))

    data = _interpolate(context, context.now(clock_now))
    if data is None:
        return Evaluation(context, None, Report().fail(_invalid_window(context)))

    logger.info(f"[{context.topic}] Starting fade: {' '.join(describe(data))}")
    context = replace(context, last_data=data)
    return Evaluation(context, build_output(context.record, data))


def evaluate(
    context: EvaluationContext,
    clock_now: datetime,
    provider: NamedInstantProvider,
    transition: Optional[float] = None,
) -> Evaluation:
    """One recurring tick.

    Re-resolves the fades when now has left the active window, then emits
    only if the interpolated values differ from the last emitted ones.
    """
    now = context.now(clock_now)

    if not in_window(context.closest_before, context.closest_after, now):
        try:
            anchors, closest_before, closest_after, _ = resolve_fades(
                context.record, context.location, now, provider
            )
        except FadeError as e:
            return Evaluation(context, None, Report().fail(e))
        context = replace(
            context,
            fades=anchors,
            closest_before=closest_before,
            closest_after=closest_after,
        )

    if not context.enabled:
        return Evaluation(context)

    data = _interpolate(context, now)
    if data is None:
        return Evaluation(context, None, Report().fail(_invalid_window(context)))

    if not values_changed(context.last_data, data):
        logger.debug(f"[{context.topic}] No change since last tick")
        return Evaluation(context)

    logger.debug(f"[{context.topic}] Fade step: {' '.join(describe(data))}")
    context = replace(context, last_data=data)
    return Evaluation(context, build_output(context.record, data, transition))


def preview(
    record: Mapping[str, Any],
    clock_now: datetime,
    provider: NamedInstantProvider,
) -> Tuple[Optional[Dict[str, Any]], Report]:
    """Validate and interpolate a record once, without any channel state."""
    context, report = setup(record, "preview", clock_now, provider)
    if context is None:
        return None, report
    data = _interpolate(context, context.now(clock_now))
    if data is None:
        return None, report.fail(_invalid_window(context))
    return data, report
