from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_positive_int(name: str, default: int) -> int:
    val = _env_int(name, default)
    return val if val > 0 else default


def _env_choice(name: str, choices: set[str], default: str) -> str:
    raw = os.getenv(name, "").strip().lower()
    return raw if raw in choices else default


def _env_int_choice(name: str, choices: tuple[int, ...], default: int) -> int:
    val = _env_int(name, default)
    if val not in choices:
        logger.warning("%s=%r must be one of %s, using %s", name, os.getenv(name), choices, default)
        return default
    return val


# Scheduling grid (single source for the slot width)
SLOT_STEP_CHOICES: tuple[int, ...] = (15, 30, 60)
SLOT_STEP_MINUTES: int = _env_int_choice("SLOT_STEP_MINUTES", SLOT_STEP_CHOICES, 30)

# Service duration fallback (minutes) for rows without duration_minutes
DEFAULT_SERVICE_FALLBACK_DURATION: int = _env_positive_int("SERVICE_FALLBACK_DURATION_MIN", 30)

# Contact validation
MIN_PHONE_DIGITS: int = _env_positive_int("MIN_PHONE_DIGITS", 9)

# Booking defaults
DEFAULT_BOOKING_STATUS: str = _env_choice("DEFAULT_BOOKING_STATUS", {"pending", "confirmed"}, "pending")
WORKING_HOURS_SCAN_DAYS: int = 7

# Notifications outbox
NOTIFY_CHECK_SECONDS_RAW: str = os.getenv("NOTIFY_CHECK_SECONDS", "30")
try:
    NOTIFY_CHECK_SECONDS: int = int(NOTIFY_CHECK_SECONDS_RAW)
    NOTIFY_CHECK_SECONDS_INVALID: bool = False
except ValueError:
    NOTIFY_CHECK_SECONDS = 30
    NOTIFY_CHECK_SECONDS_INVALID = True
NOTIFY_MAX_ATTEMPTS: int = _env_positive_int("NOTIFY_MAX_ATTEMPTS", 5)
NOTIFY_BATCH_SIZE: int = _env_positive_int("NOTIFY_BATCH_SIZE", 50)

# Feature flags / logging
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_FILE: str = os.getenv("LOG_FILE", "salon.log")
REQUIRE_ADVISORY_LOCK: bool = _env_bool("REQUIRE_ADVISORY_LOCK", False)

# Tokens
BOT_TOKEN: str = os.getenv("BOT_TOKEN", "")

__all__ = [
    "SLOT_STEP_CHOICES",
    "SLOT_STEP_MINUTES",
    "DEFAULT_SERVICE_FALLBACK_DURATION",
    "MIN_PHONE_DIGITS",
    "DEFAULT_BOOKING_STATUS",
    "WORKING_HOURS_SCAN_DAYS",
    "NOTIFY_CHECK_SECONDS_RAW",
    "NOTIFY_CHECK_SECONDS",
    "NOTIFY_CHECK_SECONDS_INVALID",
    "NOTIFY_MAX_ATTEMPTS",
    "NOTIFY_BATCH_SIZE",
    "LOG_LEVEL_NAME",
    "LOG_FILE",
    "REQUIRE_ADVISORY_LOCK",
    "BOT_TOKEN",
]
