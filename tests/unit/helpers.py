"""Deterministic clocks, sun tables and records for FadeLight tests."""

from datetime import date, datetime, time, timedelta, timezone

# Fixed offset keeps every test independent of the host time zone database.
TZ = timezone(timedelta(hours=1))

LONDON = {"latitude": 51.5, "longitude": -0.1}


def at(hour: int, minute: int = 0, day: int = 15) -> datetime:
    """An aware instant on June <day> 2024 in the test zone."""
    return datetime(2024, 6, day, hour, minute, tzinfo=TZ)


def fake_named_instants(on_date: date, latitude: float, longitude: float):
    """Sunrise at 05:00 and sunset at 21:00 every day, wherever you are."""
    return {
        "sunrise": datetime.combine(on_date, time(5, 0), TZ),
        "sunset": datetime.combine(on_date, time(21, 0), TZ),
    }


def kitchen_record(**overrides):
    record = {
        "topic": "kitchen",
        "location": dict(LONDON),
        "payload": {"service": "turn_on", "data": {"entity_id": "light.kitchen"}},
        "fades": [
            {"time": "06:00", "brightness": 0},
            {"time": "08:00", "brightness": 200},
        ],
    }
    record.update(overrides)
    return record
