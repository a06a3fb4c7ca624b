"""Add-on options - defaults, options.json, designer overrides and env vars.

Order of precedence (later wins):
  defaults -> options.json -> designer_config.json -> environment
"""

from __future__ import annotations

import json
import logging
import os
from datetime import tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiofiles

from .const import (
    DEFAULT_EVENT_TYPE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_STEP_INTERVAL_MS,
    DEFAULT_STEP_TRANSITION_MS,
    DEFAULT_WEB_PORT,
)

logger = logging.getLogger(__name__)

OPTIONS_FILENAME = "options.json"
DESIGNER_FILENAME = "designer_config.json"

DEFAULT_OPTIONS: Dict[str, Any] = {
    "step_interval_ms": DEFAULT_STEP_INTERVAL_MS,
    "step_transition_ms": DEFAULT_STEP_TRANSITION_MS,
    "per_topic": True,
    "event_type": DEFAULT_EVENT_TYPE,
    "time_zone": None,
    "log_level": DEFAULT_LOG_LEVEL,
    "web_port": DEFAULT_WEB_PORT,
}

# option -> (env var, type)
ENV_OVERRIDES = {
    "step_interval_ms": ("STEP_INTERVAL_MS", int),
    "step_transition_ms": ("STEP_TRANSITION_MS", int),
    "per_topic": ("PER_TOPIC", bool),
    "event_type": ("FADE_EVENT_TYPE", str),
    "log_level": ("LOG_LEVEL", str),
    "web_port": ("INGRESS_PORT", int),
}

LOG_LEVELS = ("debug", "info", "warning", "error")


def get_data_dir() -> str:
    """Return /data inside Home Assistant, a local .data directory otherwise."""
    if os.path.exists("/data"):
        return "/data"
    data_dir = os.path.join(os.path.dirname(__file__), ".data")
    if not os.path.exists(data_dir):
        os.makedirs(data_dir, exist_ok=True)
        logger.info(f"Development mode: using {data_dir} for configuration")
    return data_dir


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _sanitise(config: Dict[str, Any]) -> Dict[str, Any]:
    """Replace invalid option values with their defaults."""
    for key in ("step_interval_ms", "step_transition_ms", "web_port"):
        try:
            value = int(config[key])
            if value <= 0:
                raise ValueError(value)
            config[key] = value
        except (TypeError, ValueError):
            logger.warning(f"Invalid {key} '{config[key]}', using {DEFAULT_OPTIONS[key]}")
            config[key] = DEFAULT_OPTIONS[key]

    config["per_topic"] = _parse_bool(config["per_topic"])

    level = str(config["log_level"]).lower()
    if level not in LOG_LEVELS:
        logger.warning(f"Invalid log_level '{config['log_level']}', using {DEFAULT_LOG_LEVEL}")
        level = DEFAULT_LOG_LEVEL
    config["log_level"] = level

    if not config["event_type"]:
        config["event_type"] = DEFAULT_EVENT_TYPE
    return config


async def _read_json(path: str) -> Optional[Dict[str, Any]]:
    if not os.path.exists(path):
        return None
    try:
        async with aiofiles.open(path, "r") as f:
            content = await f.read()
        data = json.loads(content)
    except (OSError, ValueError) as e:
        logger.warning(f"Error loading {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a JSON object")
        return None
    return data


def apply_env(config: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Overlay environment variables onto *config*."""
    environ = os.environ if environ is None else environ
    for key, (env_name, kind) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if kind is bool:
            config[key] = _parse_bool(raw)
        elif kind is int:
            try:
                config[key] = int(raw)
            except ValueError:
                logger.warning(f"Invalid {env_name} '{raw}', ignoring")
        else:
            config[key] = raw

    time_zone = environ.get("HASS_TIME_ZONE") or environ.get("TZ")
    if time_zone and not config.get("time_zone"):
        config["time_zone"] = time_zone
    return config


async def load_options(data_dir: Optional[str] = None, environ=None) -> Dict[str, Any]:
    """Load the merged add-on options."""
    data_dir = data_dir or get_data_dir()
    config = dict(DEFAULT_OPTIONS)

    for filename in (OPTIONS_FILENAME, DESIGNER_FILENAME):
        part = await _read_json(os.path.join(data_dir, filename))
        if part:
            config.update({k: v for k, v in part.items() if k in DEFAULT_OPTIONS})

    return _sanitise(apply_env(config, environ))


async def save_designer_options(config: Dict[str, Any], data_dir: Optional[str] = None) -> str:
    """Persist UI overrides to designer_config.json, separate from options.json."""
    data_dir = data_dir or get_data_dir()
    path = os.path.join(data_dir, DESIGNER_FILENAME)
    overrides = {k: v for k, v in config.items() if k in DEFAULT_OPTIONS}
    async with aiofiles.open(path, "w") as f:
        await f.write(json.dumps(overrides, indent=2))
    logger.info(f"Configuration saved to {path}")
    return path


def get_tzinfo(name: Optional[str]) -> Optional[tzinfo]:
    """Resolve a time zone name, falling back to system local (None)."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}' - falling back to system local")
        return None
