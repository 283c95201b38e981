"""Tests for cron parsing, weekday translation and interval schedules."""

from datetime import datetime, timedelta, timezone

import pytest

from taskscheduler.errors import InvalidScheduleError
from taskscheduler.models import IntervalSchedule, IntervalUnit
from taskscheduler.triggers import (
    build_interval_trigger,
    normalize_day_of_week,
    parse_cron_expression,
    split_cron_expression,
)


@pytest.mark.parametrize("field, expected", [
    ("0", "sun"),
    ("7", "sun"),
    ("1-5", "mon,tue,wed,thu,fri"),
    ("*/3", "sun,wed,sat"),
    ("0,6", "sun,sat"),
    ("*", "*"),
    ("mon-fri", "mon-fri"),
])
def test_normalize_day_of_week(field, expected):
    assert normalize_day_of_week(field) == expected


def test_normalize_day_of_week_rejects_out_of_range():
    with pytest.raises(InvalidScheduleError):
        normalize_day_of_week("8")


def test_five_field_expression_fires_on_second_zero():
    fields = split_cron_expression("30 2 * * *")
    assert fields == {
        'second': '0',
        'minute': '30',
        'hour': '2',
        'day': '*',
        'month': '*',
        'day_of_week': '*',
    }


def test_six_field_expression_has_leading_seconds():
    trigger = parse_cron_expression("*/10 * * * * *", timezone=timezone.utc)
    now = datetime.now(timezone.utc)

    next_fire = trigger.get_next_fire_time(None, now)
    assert next_fire.second % 10 == 0
    assert next_fire - now <= timedelta(seconds=10)


def test_numeric_weekdays_use_crontab_numbering():
    monday = parse_cron_expression("0 9 * * 1", timezone=timezone.utc)
    sunday = parse_cron_expression("0 9 * * 0", timezone=timezone.utc)
    now = datetime.now(timezone.utc)

    assert monday.get_next_fire_time(None, now).weekday() == 0
    assert sunday.get_next_fire_time(None, now).weekday() == 6


@pytest.mark.parametrize("expression", [
    None,
    "",
    "* * *",
    "* * * * * * *",
    "61 * * * *",
    "a b c d e",
])
def test_invalid_cron_expressions(expression):
    with pytest.raises(InvalidScheduleError):
        parse_cron_expression(expression)


def test_interval_schedule_accepts_unit_strings():
    schedule = IntervalSchedule("minute", 5, run_immediately=False)

    assert schedule.unit is IntervalUnit.MINUTE
    assert schedule.to_timedelta() == timedelta(minutes=5)
    assert str(schedule) == "every 5 minutes"


@pytest.mark.parametrize("unit, value", [
    ("week", 1),
    ("second", 0),
    ("hour", -2),
    ("day", 1.5),
    ("day", True),
    ("day", 10**9),
])
def test_invalid_interval_schedules(unit, value):
    with pytest.raises(InvalidScheduleError):
        IntervalSchedule(unit, value)


def test_long_interval_trigger_uses_full_period():
    schedule = IntervalSchedule(IntervalUnit.DAY, 90, run_immediately=False)
    trigger = build_interval_trigger(schedule, timezone=timezone.utc)
    now = datetime.now(timezone.utc)

    first = trigger.get_next_fire_time(None, now)
    second = trigger.get_next_fire_time(first, first)
    assert second - first == timedelta(days=90)
    assert first - now <= timedelta(days=90)


def test_interval_trigger_requires_schedule():
    with pytest.raises(InvalidScheduleError):
        build_interval_trigger({'unit': 'second', 'value': 1})


def test_interval_past_the_datetime_range_is_invalid():
    schedule = IntervalSchedule("day", 3_000_000, run_immediately=False)

    with pytest.raises(InvalidScheduleError):
        build_interval_trigger(schedule, timezone=timezone.utc)
