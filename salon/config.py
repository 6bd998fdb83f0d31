"""Process settings for the booking core.

Values come from the environment (optionally a ``.env`` file) once at import.
Booking rules read them through the getters below so tests can patch
``SETTINGS`` without reloading modules.
"""

from __future__ import annotations
import logging
import os
from typing import Any, Dict
from dotenv import load_dotenv
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_TIMEZONE = "Europe/Kyiv"

SETTINGS: Dict[str, Any] = {
    # Salon-local business time; slot grids and "today" are computed in it
    "timezone": os.getenv("TIMEZONE", DEFAULT_TIMEZONE),
    # How far ahead a client may book, in days
    "booking_window_days": os.getenv("BOOKING_WINDOW_DAYS", "30"),
    # Minimum notice for a same-day booking (0 = only hide slots already started)
    "same_day_lead_minutes": os.getenv("SAME_DAY_LEAD_MINUTES", "0"),
    "notify_check_seconds": os.getenv("NOTIFY_CHECK_SECONDS", "30"),
}


def _load_tz(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown TIMEZONE=%r, falling back to %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


LOCAL_TZ: ZoneInfo = _load_tz(str(SETTINGS["timezone"]))


def _int_setting(key: str, default: int, minimum: int) -> int:
    raw = SETTINGS.get(key, default)
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r, using %s", key, raw, default)
        return default


def get_booking_window_days() -> int:
    """Last bookable day, counted from today."""
    return _int_setting("booking_window_days", 30, 1)


def get_same_day_lead_minutes() -> int:
    return _int_setting("same_day_lead_minutes", 0, 0)


def get_notify_check_seconds(default: int = 30) -> int:
    return _int_setting("notify_check_seconds", default, 1)


__all__ = [
    "SETTINGS",
    "LOCAL_TZ",
    "get_booking_window_days",
    "get_same_day_lead_minutes",
    "get_notify_check_seconds",
]
