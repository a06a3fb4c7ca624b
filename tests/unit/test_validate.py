"""Tests for input record validation."""

from datetime import timedelta

import pytest

from fadelight.brain import fade, select_bracket
from fadelight.diagnostics import ErrorKind, FadeError
from fadelight.validate import (
    Location,
    collect_levels,
    parse_activation,
    parse_location,
    parse_now_offset,
    validate_fade,
    validate_fades,
    validate_field,
    validate_record,
)
from helpers import at, fake_named_instants, kitchen_record


class TestValidateField:
    """Single attribute schemas."""

    def test_brightness_truncates(self):
        assert validate_field("brightness", 120.7) == (120, None)
        assert validate_field("brightness", "42") == (42, None)

    def test_brightness_out_of_range(self):
        value, reason = validate_field("brightness", 300)
        assert value is None
        assert reason == "Must be between 0 and 255."

    def test_brightness_rejects_bool(self):
        assert validate_field("brightness", True) == (None, "Must be an integer.")

    @pytest.mark.parametrize("name, raw, expected", [
        ("brightness_pct", "55.5", 55),
        ("brightness_pct", 40.4, 40),
        ("color_temp", 370.9, 370),
        ("kelvin", 2700.5, 2700),
    ])
    def test_scalar_fields_truncate(self, name, raw, expected):
        value, reason = validate_field(name, raw)
        assert reason is None
        assert value == expected
        assert isinstance(value, int)

    @pytest.mark.parametrize("name, raw", [
        ("brightness", float("inf")),
        ("brightness", float("-inf")),
        ("brightness", float("nan")),
        ("brightness_pct", "Infinity"),
        ("color_temp", "nan"),
        ("kelvin", float("inf")),
        ("rgb_color", [float("inf"), 0, 0]),
        ("rgbww_color", [0, 0, 0, 0, float("nan")]),
        ("hs_color", [float("inf"), 50]),
        ("hs_color", [180, float("nan")]),
        ("xy_color", [float("nan"), 0.1]),
        ("xy_color", [0.1, "-Infinity"]),
    ])
    def test_non_finite_rejected(self, name, raw):
        value, reason = validate_field(name, raw)
        assert value is None
        assert reason

    def test_kelvin_range(self):
        assert validate_field("kelvin", 2700) == (2700, None)
        assert validate_field("kelvin", 1000)[1] == "Must be between 2000 and 6500."

    def test_rgb_wrong_length(self):
        assert validate_field("rgb_color", [1, 2]) == (None, "Must be an array of exactly 3 numbers.")

    def test_rgb_channel_out_of_range(self):
        value, reason = validate_field("rgbw_color", [0, 0, 0, 256])
        assert value is None
        assert reason == "Must be 4x integers between 0 and 255."

    def test_rgb_tuple_becomes_list(self):
        assert validate_field("rgb_color", (1, 2.9, "3")) == ([1, 2, 3], None)

    def test_hs_color(self):
        assert validate_field("hs_color", [180, 50.5]) == ([180.0, 50.5], None)
        value, reason = validate_field("hs_color", [400, 50])
        assert value is None
        assert reason.startswith("Must be 2x numbers")

    def test_xy_color(self):
        assert validate_field("xy_color", [0.3, 0.4]) == ([0.3, 0.4], None)
        assert validate_field("xy_color", [0.3, 1.4])[0] is None

    def test_not_an_array(self):
        assert validate_field("xy_color", "0.3,0.4")[0] is None


class TestCollectLevels:
    """Invalid fields are dropped one at a time."""

    def test_bad_rgb_drops_only_rgb(self):
        levels, issues = collect_levels({"time": "06:00", "brightness": 100, "rgb_color": [1, 2]}, 0)
        assert levels == {"brightness": 100}
        assert len(issues) == 1
        assert issues[0].message == "Invalid fades[0].rgb_color [1, 2]. Must be an array of exactly 3 numbers."
        assert issues[0].status == "fades[0].rgb_color is invalid!"

    def test_null_field_warns(self):
        levels, issues = collect_levels({"brightness": None, "kelvin": 3000}, 2)
        assert levels == {"kelvin": 3000}
        assert len(issues) == 1
        assert issues[0].message == "Invalid fades[2].brightness None. Must be an integer."
        assert issues[0].status == "fades[2].brightness is invalid!"

    def test_absent_fields_skipped(self):
        levels, issues = collect_levels({"time": "06:00", "kelvin": 3000}, 0)
        assert levels == {"kelvin": 3000}
        assert issues == ()


class TestValidateFades:
    """Whole fade list validation."""

    def setup_method(self):
        self.now = at(12)
        self.named = fake_named_instants(self.now.date(), 51.5, -0.1)

    def test_valid_list(self):
        anchors, issues = validate_fades(
            [{"time": "sunrise", "brightness": 100}, {"time": "sunset", "brightness": 200}],
            self.named,
            self.now,
        )
        assert issues == ()
        assert [a.time for a in anchors] == ["sunrise", "sunset"]
        assert anchors[0].before_time == at(5)
        assert anchors[0].after_time == at(5, day=16)
        assert anchors[1].before_time == at(21, day=14)
        assert anchors[1].after_time == at(21)

    def test_single_bad_entry_is_insufficient(self):
        with pytest.raises(FadeError) as exc_info:
            validate_fades([{"time": "06:00", "brightness": 300}], self.named, self.now)
        error = exc_info.value
        assert error.kind is ErrorKind.INSUFFICIENT_ENTRIES
        assert error.status == "fades length error!"
        assert [issue.status for issue in error.warnings] == [
            "fades[0].brightness is invalid!",
            "fades[0] is invalid!",
        ]

    def test_bad_rgb_single_warning(self):
        anchors, issues = validate_fades(
            [{"time": "06:00", "brightness": 100, "rgb_color": [1, 2]}, {"time": "18:00", "brightness": 200}],
            self.named,
            self.now,
        )
        assert len(anchors) == 2
        assert anchors[0].levels == {"brightness": 100}
        assert len(issues) == 1

    def test_missing(self):
        with pytest.raises(FadeError) as exc_info:
            validate_fades(None, self.named, self.now)
        assert exc_info.value.kind is ErrorKind.MISSING_OR_NOT_ARRAY
        assert exc_info.value.message == "fades not defined in record."

    def test_not_a_list(self):
        with pytest.raises(FadeError) as exc_info:
            validate_fades({"time": "06:00"}, self.named, self.now)
        assert exc_info.value.kind is ErrorKind.MISSING_OR_NOT_ARRAY
        assert exc_info.value.message == "fades is not an array."

    def test_missing_time(self):
        anchor, issues = validate_fade({"brightness": 10}, 3, self.named, self.now)
        assert anchor is None
        assert issues[0].message == "time not defined in fades[3]."

    def test_unknown_time_lists_named_instants(self):
        anchor, issues = validate_fade({"time": "25:00", "brightness": 10}, 0, self.named, self.now)
        assert anchor is None
        assert "sunrise, sunset" in issues[0].message
        assert issues[0].status == "fades[0] is invalid!"

    def test_non_mapping_entry(self):
        anchor, issues = validate_fade("06:00", 1, self.named, self.now)
        assert anchor is None
        assert issues[0].status == "fades[1] is invalid!"

    @pytest.mark.parametrize("offset", ["abc", 800, -721])
    def test_invalid_offset_forced_to_zero(self, offset):
        anchor, issues = validate_fade({"time": "06:00", "offset_mins": offset, "brightness": 1}, 0, self.named, self.now)
        assert anchor.offset_mins == 0
        assert anchor.before_time == at(6)
        assert issues[0].status == "fades[0].offset_mins is invalid!"

    def test_offset_truncated(self):
        anchor, issues = validate_fade({"time": "06:00", "offset_mins": 30.9, "brightness": 1}, 0, self.named, self.now)
        assert issues == ()
        assert anchor.offset_mins == 30
        assert anchor.before_time == at(6, 30)

    def test_fractional_levels_exact_at_window_edges(self):
        anchors, _ = validate_fades(
            [
                {"time": "06:00", "kelvin": 2700.5, "brightness_pct": 40.4},
                {"time": "18:00", "kelvin": 3000, "brightness_pct": 60},
            ],
            self.named,
            self.now,
        )
        before, after = select_bracket(anchors)
        assert fade(before, after, before.before_time) == {"brightness_pct": 40, "kelvin": 2700}
        assert fade(before, after, after.after_time) == {"brightness_pct": 60, "kelvin": 3000}

    def test_revalidation_is_idempotent(self):
        record = kitchen_record()
        first = validate_record(record, self.named, self.now)
        second = validate_record(record, self.named, self.now)
        assert first == second


class TestParseLocation:
    """Location validation order and error kinds."""

    def test_valid(self):
        assert parse_location({"location": {"latitude": "51.5", "longitude": -0.1}}) == Location(51.5, -0.1)

    @pytest.mark.parametrize("record", [{}, {"location": {"latitude": 1}}, {"location": "here"}])
    def test_missing(self, record):
        with pytest.raises(FadeError) as exc_info:
            parse_location(record)
        assert exc_info.value.kind is ErrorKind.MISSING_FIELD
        assert exc_info.value.status == "location error!"

    def test_not_a_number(self):
        with pytest.raises(FadeError) as exc_info:
            parse_location({"location": {"latitude": "north", "longitude": 0}})
        assert exc_info.value.kind is ErrorKind.NOT_A_NUMBER
        assert "latitude" in exc_info.value.message

    def test_out_of_range(self):
        with pytest.raises(FadeError) as exc_info:
            parse_location({"location": {"latitude": 10, "longitude": 200}})
        assert exc_info.value.kind is ErrorKind.OUT_OF_RANGE
        assert exc_info.value.message == "location.longitude 200 is not between -180 and 180 degrees."

    def test_latitude_checked_first(self):
        with pytest.raises(FadeError) as exc_info:
            parse_location({"location": {"latitude": 91, "longitude": "west"}})
        assert exc_info.value.kind is ErrorKind.OUT_OF_RANGE
        assert "latitude" in exc_info.value.message


class TestParseActivation:
    """Topic, service and enabled flag."""

    def test_defaults(self):
        activation = parse_activation({})
        assert activation.topic == "_none"
        assert activation.activate is None
        assert activation.enabled is None

    @pytest.mark.parametrize("service, expected", [
        ("turn_on", True),
        ("on", True),
        (True, True),
        ("turn_off", False),
        ("toggle", False),
        ("", None),
    ])
    def test_service(self, service, expected):
        assert parse_activation({"payload": {"service": service}}).activate is expected

    @pytest.mark.parametrize("value, expected", [
        (True, True),
        ("yes", True),
        (False, False),
        (0, False),
        ("false", False),
        ("", False),
    ])
    def test_enabled(self, value, expected):
        assert parse_activation({"fade_enabled": value}).enabled is expected

    def test_topic_stringified(self):
        assert parse_activation({"topic": 5}).topic == "5"
        assert parse_activation({"topic": ""}).topic == "_none"


class TestParseNowOffset:
    """Simulated now overrides."""

    def test_absent(self):
        assert parse_now_offset({}, at(12)) == (timedelta(0), ())

    def test_iso(self):
        offset, issues = parse_now_offset({"now": "2024-06-15T13:00:00+01:00"}, at(12))
        assert offset == timedelta(hours=1)
        assert issues == ()

    def test_iso_zulu(self):
        offset, _ = parse_now_offset({"now": "2024-06-15T12:00:00Z"}, at(12))
        assert offset == timedelta(hours=1)

    def test_naive_iso_takes_local_zone(self):
        offset, _ = parse_now_offset({"now": "2024-06-15T14:00:00"}, at(12))
        assert offset == timedelta(hours=2)

    def test_rfc2822(self):
        offset, _ = parse_now_offset({"now": "Sat, 15 Jun 2024 12:00:00 +0000"}, at(12))
        assert offset == timedelta(hours=1)

    def test_invalid(self):
        offset, issues = parse_now_offset({"now": "teatime"}, at(12))
        assert offset == timedelta(0)
        assert issues[0].status == "now invalid!"
