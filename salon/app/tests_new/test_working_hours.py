import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from salon.app.services import working_hours as wh

KYIV = ZoneInfo("Europe/Kyiv")
WEEK_HOURS = [
    {"day": "Понеділок", "hours": "10:00 - 20:00"},
    {"day": "Вівторок", "hours": "10:00 - 20:00"},
    {"day": "Середа", "hours": "10:00 - 20:00"},
    {"day": "Четвер", "hours": "10:00 - 20:00"},
    {"day": "П'ятниця", "hours": "10:00 - 20:00"},
    {"day": "Субота", "hours": "11:00 - 16:00"},
    {"day": "Неділя", "hours": "Зачинено"},
]

MONDAY = date(2030, 1, 14)
SATURDAY = date(2030, 1, 19)
SUNDAY = date(2030, 1, 20)


def test_parse_hours_range_accepts_dash_variants():
    assert wh.parse_hours_range("10:00 - 20:00") == ("10:00", "20:00")
    assert wh.parse_hours_range("9:00–18:30") == ("09:00", "18:30")
    assert wh.parse_hours_range("08:00 — 24:00") == ("08:00", "24:00")


@pytest.mark.parametrize("raw", [None, "", "10:00", "10:00 - 25:00", "20:00 - 10:00", "10:00 - 10:00", "ab - cd"])
def test_parse_hours_range_rejects_malformed(raw):
    assert wh.parse_hours_range(raw) is None


def test_day_interval_open_and_closed():
    assert wh.day_interval(WEEK_HOURS, MONDAY) == ("10:00", "20:00")
    assert wh.day_interval(WEEK_HOURS, SATURDAY) == ("11:00", "16:00")
    assert wh.day_interval(WEEK_HOURS, SUNDAY) is None


def test_missing_day_is_closed():
    hours = [{"day": "Monday", "hours": "09:00 - 17:00"}]
    assert wh.day_interval(hours, MONDAY) == ("09:00", "17:00")
    assert wh.day_interval(hours, MONDAY.replace(day=15)) is None


def test_malformed_entry_fails_closed_and_logs(caplog):
    hours = [
        {"day": "Понеділок", "hours": "10:00 till late"},
        {"day": "Вівторок", "hours": "10:00 - 20:00"},
    ]
    with caplog.at_level(logging.WARNING, logger=wh.__name__):
        assert wh.day_interval(hours, MONDAY) is None
    assert "Malformed working hours" in caplog.text
    # Other days keep rendering
    assert wh.day_interval(hours, date(2030, 1, 15)) == ("10:00", "20:00")


def test_unknown_day_name_is_ignored(caplog):
    hours = [{"day": "Funday", "hours": "10:00 - 20:00"}, {"day": "Понеділок", "hours": "10:00 - 12:00"}]
    with caplog.at_level(logging.WARNING, logger=wh.__name__):
        assert wh.day_interval(hours, MONDAY) == ("10:00", "12:00")
    assert "unknown day name" in caplog.text


def test_resolve_without_now_reports_open_interval():
    status = wh.resolve_working_hours(WEEK_HOURS, MONDAY)
    assert status.is_open is True
    assert (status.open_time, status.close_time) == ("10:00", "20:00")
    assert status.next_open is None


def test_resolve_live_status_during_hours():
    status = wh.resolve_working_hours(WEEK_HOURS, MONDAY, datetime(2030, 1, 14, 12, 15, tzinfo=KYIV))
    assert status.is_open is True


def test_resolve_before_opening_points_to_today():
    status = wh.resolve_working_hours(WEEK_HOURS, MONDAY, datetime(2030, 1, 14, 8, 0, tzinfo=KYIV))
    assert status.is_open is False
    assert status.next_open == wh.NextOpen(day="Понеділок", time="10:00", date=MONDAY)


def test_resolve_close_boundary_is_exclusive():
    status = wh.resolve_working_hours(WEEK_HOURS, MONDAY, datetime(2030, 1, 14, 20, 0, tzinfo=KYIV))
    assert status.is_open is False
    assert status.next_open.day == "Вівторок"
    assert status.next_open.date == date(2030, 1, 15)


def test_resolve_closed_day_skips_to_next_open_day():
    status = wh.resolve_working_hours(WEEK_HOURS, SUNDAY, datetime(2030, 1, 20, 12, 0, tzinfo=KYIV), lang="en")
    assert status.is_open is False
    assert status.next_open == wh.NextOpen(day="Monday", time="10:00", date=date(2030, 1, 21))


def test_resolve_all_closed_has_no_next_open():
    hours = [{"day": name, "hours": "Зачинено"} for name in wh.WEEKDAY_NAMES["uk"]]
    status = wh.resolve_working_hours(hours, MONDAY, datetime(2030, 1, 14, 12, 0, tzinfo=KYIV))
    assert status.is_open is False
    assert status.next_open is None


def test_validate_working_hours_sorts_and_rejects_bad_rows():
    cleaned = wh.validate_working_hours([
        {"day": "Неділя", "hours": "Зачинено"},
        {"day": "Понеділок", "hours": "10:00 - 20:00"},
    ])
    assert [e["day"] for e in cleaned] == ["Понеділок", "Неділя"]

    with pytest.raises(ValueError):
        wh.validate_working_hours([{"day": "Понеділок", "hours": "late"}])
    with pytest.raises(ValueError):
        wh.validate_working_hours([{"day": "Понеділок", "hours": "Зачинено"}, {"day": "Monday", "hours": "Closed"}])
    with pytest.raises(ValueError):
        wh.validate_working_hours([{"day": "Someday", "hours": "Зачинено"}])
