"""Constants for FadeLight."""

from typing import Final

# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

MIN_LATITUDE: Final = -90.0
MAX_LATITUDE: Final = 90.0
MIN_LONGITUDE: Final = -180.0
MAX_LONGITUDE: Final = 180.0

# ---------------------------------------------------------------------------
# Fade anchors
# ---------------------------------------------------------------------------

MIN_OFFSET_MINS: Final = -720
MAX_OFFSET_MINS: Final = 720

MAX_BRIGHTNESS: Final = 255
MAX_BRIGHTNESS_PCT: Final = 100
MIN_MIREDS: Final = 150
MAX_MIREDS: Final = 500
MIN_KELVIN: Final = 2000
MAX_KELVIN: Final = 6500
MAX_RGB: Final = 255
MAX_HUE: Final = 360.0
MAX_SAT: Final = 100.0
MAX_XY: Final = 1.0

MIN_FADES: Final = 2

ATTR_TIME: Final = "time"
ATTR_OFFSET_MINS: Final = "offset_mins"
ATTR_BRIGHTNESS: Final = "brightness"
ATTR_BRIGHTNESS_PCT: Final = "brightness_pct"
ATTR_COLOR_TEMP: Final = "color_temp"
ATTR_KELVIN: Final = "kelvin"
ATTR_RGB_COLOR: Final = "rgb_color"
ATTR_RGBW_COLOR: Final = "rgbw_color"
ATTR_RGBWW_COLOR: Final = "rgbww_color"
ATTR_HS_COLOR: Final = "hs_color"
ATTR_XY_COLOR: Final = "xy_color"
ATTR_TRANSITION: Final = "transition"

# Order matters: validation warnings and output keys follow it.
LEVEL_ATTRIBUTES: Final = (
    ATTR_BRIGHTNESS,
    ATTR_BRIGHTNESS_PCT,
    ATTR_COLOR_TEMP,
    ATTR_KELVIN,
    ATTR_RGB_COLOR,
    ATTR_RGBW_COLOR,
    ATTR_RGBWW_COLOR,
    ATTR_HS_COLOR,
    ATTR_XY_COLOR,
)

# ---------------------------------------------------------------------------
# Input / output records
# ---------------------------------------------------------------------------

KEY_TOPIC: Final = "topic"
KEY_PAYLOAD: Final = "payload"
KEY_SERVICE: Final = "service"
KEY_DATA: Final = "data"
KEY_LOCATION: Final = "location"
KEY_NOW: Final = "now"
KEY_FADES: Final = "fades"
KEY_ENABLED: Final = "fade_enabled"

DEFAULT_TOPIC: Final = "_none"
ACTIVATE_SERVICES: Final = ("turn_on", "on")

# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

DEFAULT_STEP_INTERVAL_MS: Final = 5000
DEFAULT_STEP_TRANSITION_MS: Final = 5000
DEFAULT_EVENT_TYPE: Final = "fadelight"
DEFAULT_WEB_PORT: Final = 8099
DEFAULT_LOG_LEVEL: Final = "info"

# Status messages are shown on small UI badges.
STATUS_MAX_LENGTH: Final = 32
