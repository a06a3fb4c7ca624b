"""FadeLight - time-of-day light fades for Home Assistant."""

__version__ = "0.1.0"
