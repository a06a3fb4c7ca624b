"""Tests for the evaluation engine."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from fadelight.diagnostics import ErrorKind, Severity
from fadelight.engine import build_output, evaluate, preview, resolve_fades, setup, start
from fadelight.suntimes import provider_for
from fadelight.validate import Location
from helpers import at, fake_named_instants, kitchen_record


class TestSetupAndStart:
    """Activation of a channel."""

    def setup_method(self):
        self.record = kitchen_record()

    def test_setup_selects_window(self):
        context, report = setup(self.record, "kitchen", at(7), fake_named_instants)
        assert report.ok
        assert report.status.text is None
        assert context.closest_before.time == "06:00"
        assert context.closest_after.time == "08:00"
        assert context.location == Location(51.5, -0.1)

    def test_start_emits_without_transition(self):
        context, _ = setup(self.record, "kitchen", at(7), fake_named_instants)
        evaluation = start(context, at(7))
        assert evaluation.output["payload"]["data"] == {"entity_id": "light.kitchen", "brightness": 100}
        assert evaluation.output["fade_enabled"] is True
        assert evaluation.context.last_data == {"brightness": 100}
        # the input record is never mutated
        assert self.record["payload"]["data"] == {"entity_id": "light.kitchen"}

    def test_start_disabled_passes_record_through(self):
        context, _ = setup(self.record, "kitchen", at(7), fake_named_instants, enabled=False)
        evaluation = start(context, at(7))
        assert evaluation.output == self.record
        assert evaluation.output is not self.record
        assert evaluation.context.last_data is None

    def test_now_override(self):
        record = kitchen_record(now="2024-06-15T07:30:00+01:00")
        context, report = setup(record, "kitchen", at(12), fake_named_instants)
        assert report.ok
        assert context.now_offset == timedelta(hours=-4, minutes=-30)
        assert start(context, at(12)).output["payload"]["data"]["brightness"] == 150

    @pytest.mark.parametrize("override", ["2024-01-15T12:00:00Z", "2024-01-15T12:00:00"])
    def test_now_override_across_dst(self, override):
        clock = datetime(2024, 6, 15, 12, 0, tzinfo=ZoneInfo("Europe/London"))
        context, report = setup(kitchen_record(now=override), "kitchen", clock, fake_named_instants)
        assert report.ok
        simulated = context.now(clock)
        assert simulated == datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert simulated.utcoffset() == timedelta(0)
        later = clock + timedelta(minutes=5)
        assert context.now(later) - simulated == timedelta(minutes=5)

    def test_missing_location_is_fatal(self):
        record = kitchen_record()
        del record["location"]
        context, report = setup(record, "kitchen", at(7), fake_named_instants)
        assert context is None
        assert report.error.kind is ErrorKind.MISSING_FIELD
        assert report.status.severity is Severity.ERROR
        assert report.status.text == "location error!"

    def test_insufficient_entries_keeps_warnings(self):
        record = kitchen_record(fades=[{"time": "06:00", "brightness": 300}])
        context, report = setup(record, "kitchen", at(7), fake_named_instants)
        assert context is None
        assert report.error.kind is ErrorKind.INSUFFICIENT_ENTRIES
        assert len(report.warnings) == 2
        assert report.status.text == "fades length error!"

    def test_warning_sets_status(self):
        record = kitchen_record(fades=[
            {"time": "06:00", "brightness": 0, "rgb_color": [1, 2]},
            {"time": "08:00", "brightness": 200},
        ])
        context, report = setup(record, "kitchen", at(7), fake_named_instants)
        assert context is not None
        assert report.status.severity is Severity.WARNING
        assert report.status.text == "fades[0].rgb_color is invalid!"

    def test_invalid_window(self):
        context, _ = setup(self.record, "kitchen", at(7), fake_named_instants)
        late_start = replace(context.closest_before, before_time=at(9))
        broken = replace(context, closest_before=late_start)
        evaluation = start(broken, at(7))
        assert evaluation.output is None
        assert evaluation.report.error.kind is ErrorKind.INVALID_WINDOW


class TestEvaluate:
    """Recurring ticks."""

    def setup_method(self):
        context, _ = setup(kitchen_record(), "kitchen", at(7), fake_named_instants)
        self.context = start(context, at(7)).context

    def test_unchanged_values_suppressed(self):
        evaluation = evaluate(self.context, at(7), fake_named_instants, 5.0)
        assert evaluation.output is None
        assert evaluation.context.last_data == {"brightness": 100}

    def test_changed_values_emitted_with_transition(self):
        evaluation = evaluate(self.context, at(7, 30), fake_named_instants, 5.0)
        assert evaluation.output["payload"]["data"] == {
            "entity_id": "light.kitchen",
            "brightness": 150,
            "transition": 5.0,
        }
        assert evaluation.context.last_data == {"brightness": 150}

    def test_window_expiry_reselects(self):
        evaluation = evaluate(self.context, at(9), fake_named_instants, 5.0)
        assert evaluation.context.closest_before.time == "08:00"
        assert evaluation.context.closest_after.time == "06:00"
        assert evaluation.context.closest_after.after_time == at(6, day=16)
        # one hour into a 22 hour fade from 200 down to 0
        assert evaluation.context.last_data == {"brightness": 191}

    def test_disabled_emits_nothing(self):
        context = replace(self.context, enabled=False)
        evaluation = evaluate(context, at(7, 30), fake_named_instants, 5.0)
        assert evaluation.output is None
        assert evaluation.context.last_data == {"brightness": 100}

    def test_reresolve_failure_keeps_context(self):
        def broken_provider(on_date, latitude, longitude):
            return {}

        record = kitchen_record(fades=[{"time": "sunrise", "brightness": 0}, {"time": "sunset", "brightness": 200}])
        context, _ = setup(record, "kitchen", at(7), fake_named_instants)
        evaluation = evaluate(context, at(22), broken_provider, 5.0)
        assert evaluation.output is None
        assert evaluation.context is context
        assert evaluation.report.error.kind is ErrorKind.INSUFFICIENT_ENTRIES


class TestHelpers:
    """Output building, fade resolution and preview."""

    def test_build_output_creates_payload(self):
        output = build_output({"topic": "x"}, {"brightness": 5}, 2.5)
        assert output == {
            "topic": "x",
            "payload": {"data": {"brightness": 5, "transition": 2.5}},
            "fade_enabled": True,
        }

    def test_resolve_fades_is_idempotent(self):
        location = Location(51.5, -0.1)
        first = resolve_fades(kitchen_record(), location, at(7), fake_named_instants)
        second = resolve_fades(kitchen_record(), location, at(7), fake_named_instants)
        assert first == second

    def test_preview(self):
        data, report = preview(kitchen_record(), at(7, 30), fake_named_instants)
        assert data == {"brightness": 150}
        assert report.ok

    def test_preview_fatal(self):
        data, report = preview(kitchen_record(fades="nope"), at(7), fake_named_instants)
        assert data is None
        assert report.error.kind is ErrorKind.MISSING_OR_NOT_ARRAY


class TestSunriseToSunset:
    """Real sun times for London."""

    @pytest.mark.parametrize("tz", [timezone.utc, timezone(timedelta(hours=1))])
    def test_monotonic_between_sunrise_and_sunset(self, tz):
        provider = provider_for(tz)
        record = kitchen_record(fades=[
            {"time": "sunrise", "brightness": 100},
            {"time": "sunset", "brightness": 200},
        ])
        previous = 100
        for hour in range(6, 20):
            data, report = preview(record, datetime(2024, 6, 21, hour, tzinfo=tz), provider)
            assert report.ok
            assert 100 <= data["brightness"] <= 200
            assert data["brightness"] >= previous
            previous = data["brightness"]
        assert previous > 100
