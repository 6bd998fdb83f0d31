from __future__ import annotations
import logging
import os
import re
from datetime import UTC, date, datetime, time as dtime
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

import salon.config as cfg

logger = logging.getLogger(__name__)

_HM_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")

UK_WEEKDAYS = ["понеділок", "вівторок", "середа", "четвер", "п'ятниця", "субота", "неділя"]
UK_MONTHS_GENITIVE = [
    "січня", "лютого", "березня", "квітня", "травня", "червня",
    "липня", "серпня", "вересня", "жовтня", "листопада", "грудня",
]


# ---------------- Time utilities (shared) ---------------- #
def parse_hm(value: str | dtime | None) -> int | None:
    """Parse 'HH:MM' (or a ``time``) into minutes since midnight.

    Returns None for anything that is not a valid 24-hour clock value;
    '24:00' is accepted as end-of-day.
    """
    if value is None:
        return None
    if isinstance(value, dtime):
        return value.hour * 60 + value.minute
    m = _HM_RE.match(str(value))
    if not m:
        return None
    h, mins = int(m.group(1)), int(m.group(2))
    if mins > 59 or h > 24 or (h == 24 and mins != 0):
        return None
    return h * 60 + mins


def _minutes_to_hm(minutes: int) -> str:
    minutes = max(0, min(24 * 60, int(minutes)))
    h = minutes // 60
    m = minutes % 60
    return f"{h:02d}:{m:02d}"


def to_hm(value: str | dtime) -> str:
    """Normalize a ``time`` or loose 'H:MM' string into zero-padded 'HH:MM'."""
    minutes = parse_hm(value)
    if minutes is None:
        raise ValueError(f"invalid time value: {value!r}")
    return _minutes_to_hm(minutes)


def hm_to_time(value: str) -> dtime:
    """Convert 'HH:MM' to ``datetime.time``; '24:00' maps to 23:59:59."""
    minutes = parse_hm(value)
    if minutes is None:
        raise ValueError(f"invalid time value: {value!r}")
    if minutes >= 24 * 60:
        return dtime(23, 59, 59)
    return dtime(minutes // 60, minutes % 60)


def add_minutes_hm(value: str, minutes: int) -> str:
    start = parse_hm(value)
    if start is None:
        raise ValueError(f"invalid time value: {value!r}")
    return _minutes_to_hm(start + int(minutes))


def get_local_tz() -> ZoneInfo:
    """Return dynamic local timezone for rendering (fallback to cached or UTC)."""
    tz_name = os.getenv("LOCAL_TIMEZONE")
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (KeyError, ValueError):
            logger.warning("Unknown LOCAL_TIMEZONE=%r, using %s", tz_name, cfg.LOCAL_TZ)
    return cfg.LOCAL_TZ or ZoneInfo("UTC")


def utc_now() -> datetime:
    """Return current time as an aware UTC datetime."""
    return datetime.now(UTC)


def local_now() -> datetime:
    """Return current time in the configured local timezone (aware)."""
    return datetime.now(get_local_tz())


def format_date_uk(value: date) -> str:
    """'середа, 15 січня' style date used in owner notifications."""
    return f"{UK_WEEKDAYS[value.weekday()]}, {value.day} {UK_MONTHS_GENITIVE[value.month - 1]}"


def format_duration_uk(minutes: int) -> str:
    if minutes >= 60:
        hours, mins = divmod(int(minutes), 60)
        return f"{hours} год {mins} хв" if mins else f"{hours} год"
    return f"{int(minutes)} хв"


def format_price(value: Decimal | float | int | None, currency: str = "₴") -> str:
    amount = Decimal(str(value or 0))
    if amount == amount.to_integral_value():
        return f"{int(amount)} {currency}"
    return f"{amount:.2f} {currency}"


def count_digits(value: str | None) -> int:
    return sum(ch.isdigit() for ch in (value or ""))


async def _safe_send(bot: Bot, chat_id: int | str, text: str, **kwargs: Any) -> bool:
    """Best-effort send wrapper for bot.send_message.

    - Logs Telegram API errors and returns False on failure.
    - Returns True on success.
    - Other exceptions indicate bugs and are re-raised after logging.
    """
    try:
        await bot.send_message(chat_id=chat_id, text=text, **kwargs)
        return True
    except TelegramAPIError as e:
        logger.warning("_safe_send TelegramAPIError for %s: %s", chat_id, e)
        return False
    except Exception as e:
        logger.exception("_safe_send unexpected error for %s: %s", chat_id, e)
        raise


__all__ = [
    "UK_WEEKDAYS",
    "parse_hm",
    "to_hm",
    "hm_to_time",
    "add_minutes_hm",
    "get_local_tz",
    "utc_now",
    "local_now",
    "format_date_uk",
    "format_duration_uk",
    "format_price",
    "count_digits",
    "_safe_send",
]
