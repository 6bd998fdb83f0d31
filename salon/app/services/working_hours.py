"""Weekly working-hours template -> open/closed status for a calendar date.

Salon rows store ``working_hours`` the way the owner dashboard saves them::

    [{"day": "Понеділок", "hours": "10:00 - 20:00"},
     {"day": "Неділя", "hours": "Зачинено"}, ...]

Day names may be Ukrainian or English. Malformed ranges fail closed: the day
is treated as closed and a data-quality warning is logged, so one bad row
never breaks the whole storefront.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

from salon.app.core.constants import WORKING_HOURS_SCAN_DAYS
from salon.app.services.shared_services import _minutes_to_hm, parse_hm

logger = logging.getLogger(__name__)

# Monday=0 .. Sunday=6, matching date.weekday()
WEEKDAY_NAMES: dict[str, tuple[str, ...]] = {
    "uk": ("Понеділок", "Вівторок", "Середа", "Четвер", "П'ятниця", "Субота", "Неділя"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}
CLOSED_MARKERS = frozenset({"зачинено", "closed", "вихідний"})
_RANGE_SEPARATORS = ("–", "—", "-")


def _normalize_day(name: str) -> str:
    return str(name).strip().lower().replace("’", "'").replace("ʼ", "'")


_DAY_INDEX: dict[str, int] = {
    _normalize_day(name): idx
    for names in WEEKDAY_NAMES.values()
    for idx, name in enumerate(names)
}


@dataclass(frozen=True)
class NextOpen:
    day: str
    time: str
    date: date


@dataclass(frozen=True)
class DayStatus:
    is_open: bool
    open_time: str | None = None
    close_time: str | None = None
    next_open: NextOpen | None = None


def weekday_index(day_name: str) -> int | None:
    return _DAY_INDEX.get(_normalize_day(day_name))


def parse_hours_range(text: str | None) -> tuple[str, str] | None:
    """Split '10:00 - 20:00' into ('10:00', '20:00').

    Returns None when the range is malformed (no separator, bad clock value
    or start not before end). Callers decide how to report it.
    """
    if not text:
        return None
    raw = str(text).strip()
    for sep in _RANGE_SEPARATORS:
        if sep in raw:
            left, _, right = raw.partition(sep)
            break
    else:
        return None
    start, end = parse_hm(left), parse_hm(right)
    if start is None or end is None or start >= end:
        return None
    return _minutes_to_hm(start), _minutes_to_hm(end)


def _hours_by_weekday(working_hours: Iterable[Mapping[str, Any]] | None) -> dict[int, str]:
    result: dict[int, str] = {}
    for entry in working_hours or []:
        try:
            idx = weekday_index(entry.get("day", ""))
        except AttributeError:
            logger.warning("Working hours entry is not a mapping: %r", entry)
            continue
        if idx is None:
            logger.warning("Working hours entry with unknown day name: %r", entry)
            continue
        if idx in result:
            logger.warning("Duplicate working hours entry for %r; keeping the first one", entry.get("day"))
            continue
        result[idx] = str(entry.get("hours") or "")
    return result


def _open_interval(hours: str | None, day_label: str) -> tuple[str, str] | None:
    if hours is None:
        return None
    if _normalize_day(hours) in CLOSED_MARKERS or not hours.strip():
        return None
    interval = parse_hours_range(hours)
    if interval is None:
        logger.warning("Malformed working hours for %s: %r; treating the day as closed", day_label, hours)
    return interval


def day_interval(working_hours: Iterable[Mapping[str, Any]] | None, target_date: date) -> tuple[str, str] | None:
    """Open interval for ``target_date`` or None when the salon is closed."""
    by_day = _hours_by_weekday(working_hours)
    weekday = target_date.weekday()
    return _open_interval(by_day.get(weekday), WEEKDAY_NAMES["uk"][weekday])


def _find_next_open(by_day: dict[int, str], start: date, lang: str) -> NextOpen | None:
    for offset in range(WORKING_HOURS_SCAN_DAYS):
        candidate = start + timedelta(days=offset)
        weekday = candidate.weekday()
        interval = _open_interval(by_day.get(weekday), WEEKDAY_NAMES["uk"][weekday])
        if interval:
            return NextOpen(day=WEEKDAY_NAMES[lang][weekday], time=interval[0], date=candidate)
    return None


def resolve_working_hours(
    working_hours: Iterable[Mapping[str, Any]] | None,
    target_date: date,
    now: datetime | None = None,
    *,
    lang: str = "uk",
) -> DayStatus:
    """Resolve open/closed status of ``target_date``.

    With ``now`` on the same calendar day the result is the live status:
    open iff open_time <= now < close_time (zero-padded HH:MM compare
    lexically in chronological order).
    """
    lang = lang if lang in WEEKDAY_NAMES else "uk"
    by_day = _hours_by_weekday(working_hours)
    weekday = target_date.weekday()
    interval = _open_interval(by_day.get(weekday), WEEKDAY_NAMES["uk"][weekday])

    if interval is None:
        return DayStatus(is_open=False, next_open=_find_next_open(by_day, target_date + timedelta(days=1), lang))

    open_time, close_time = interval
    if now is None or now.date() != target_date:
        return DayStatus(is_open=True, open_time=open_time, close_time=close_time)

    now_hm = f"{now:%H:%M}"
    if open_time <= now_hm < close_time:
        return DayStatus(is_open=True, open_time=open_time, close_time=close_time)
    if now_hm < open_time:
        next_open = NextOpen(day=WEEKDAY_NAMES[lang][weekday], time=open_time, date=target_date)
    else:
        next_open = _find_next_open(by_day, target_date + timedelta(days=1), lang)
    return DayStatus(is_open=False, open_time=open_time, close_time=close_time, next_open=next_open)


def validate_working_hours(entries: Iterable[Mapping[str, Any]]) -> list[dict[str, str]]:
    """Validate a weekly template before it is saved.

    Raises ValueError on unknown or duplicate day names and on ranges that
    are neither a closed marker nor a valid 'HH:MM - HH:MM' range.
    """
    seen: set[int] = set()
    cleaned: list[dict[str, str]] = []
    for entry in entries:
        day = str(entry.get("day", "")).strip()
        hours = str(entry.get("hours", "")).strip()
        idx = weekday_index(day)
        if idx is None:
            raise ValueError(f"unknown weekday name: {day!r}")
        if idx in seen:
            raise ValueError(f"duplicate weekday entry: {day!r}")
        seen.add(idx)
        if _normalize_day(hours) not in CLOSED_MARKERS and parse_hours_range(hours) is None:
            raise ValueError(f"invalid hours for {day}: {hours!r}")
        cleaned.append({"day": day, "hours": hours})
    return sorted(cleaned, key=lambda e: weekday_index(e["day"]) or 0)


__all__ = [
    "WEEKDAY_NAMES",
    "CLOSED_MARKERS",
    "NextOpen",
    "DayStatus",
    "weekday_index",
    "parse_hours_range",
    "day_interval",
    "resolve_working_hours",
    "validate_working_hours",
]
