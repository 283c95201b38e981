"""
Trigger construction for cron and interval tasks.

Cron expressions use standard crontab syntax: five fields
(minute hour day month weekday) or six with a leading seconds field.
"""

import re
from datetime import tzinfo
from typing import Dict, Optional

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskscheduler.errors import InvalidScheduleError
from taskscheduler.models import IntervalSchedule

CRON_FIELDS = ('minute', 'hour', 'day', 'month', 'day_of_week')

# crontab numbering: 0 and 7 are both Sunday
WEEKDAY_NAMES = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')

_NUMERIC_WEEKDAY = re.compile(r'^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$')


def normalize_day_of_week(field: str) -> str:
    """
    Translate crontab weekday numbers into day names.

    APScheduler numbers weekdays from Monday, crontab from Sunday, so numeric
    values, ranges and steps are expanded into explicit name lists. Names and
    other expressions pass through unchanged.

    Examples:
        "0" -> "sun", "1-5" -> "mon,tue,wed,thu,fri", "*/3" -> "sun,wed,sat"
    """
    parts = []
    for token in field.split(','):
        match = _NUMERIC_WEEKDAY.match(token)
        if not match or (match.group(1) == '*' and not match.group(3)):
            parts.append(token)
            continue

        start, end, step = match.groups()
        if start == '*':
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (7 if step else first)
        step_value = int(step) if step else 1

        if first > 7 or last > 7 or first > last or step_value == 0:
            raise InvalidScheduleError(f"Invalid day-of-week field: '{field}'")

        for day in range(first, last + 1, step_value):
            name = WEEKDAY_NAMES[day]
            if name not in parts:
                parts.append(name)

    return ','.join(parts)


def split_cron_expression(expression: Optional[str]) -> Dict[str, str]:
    """
    Split a cron expression into APScheduler CronTrigger fields.

    Raises:
        InvalidScheduleError: If the expression is empty or has the wrong number of fields
    """
    parts = (expression or '').split()
    if len(parts) == 6:
        fields = {'second': parts[0]}
        parts = parts[1:]
    elif len(parts) == 5:
        fields = {'second': '0'}
    else:
        raise InvalidScheduleError(
            f"Invalid cron expression '{expression}': expected 5 or 6 fields, got {len(parts)}"
        )

    fields.update(zip(CRON_FIELDS, parts))
    fields['day_of_week'] = normalize_day_of_week(fields['day_of_week'])
    return fields


def parse_cron_expression(expression: Optional[str], timezone: Optional[tzinfo] = None) -> CronTrigger:
    """
    Build a CronTrigger from a cron expression.

    Args:
        expression: Cron expression, e.g. "0 2 * * *" or "*/10 * * * * *"
        timezone: Timezone for the trigger (None = scheduler default)

    Raises:
        InvalidScheduleError: If the expression cannot be parsed
    """
    fields = split_cron_expression(expression)
    try:
        return CronTrigger(timezone=timezone, **fields)
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid cron expression '{expression}': {e}") from e


def build_interval_trigger(schedule: IntervalSchedule, timezone: Optional[tzinfo] = None) -> IntervalTrigger:
    """
    Build an IntervalTrigger firing every schedule period.

    The trigger derives each fire time from its start date plus whole
    periods, so long periods (days) need no special handling. The first fire
    time is one period after creation; immediate runs are requested through
    the job's first run time instead.
    """
    if not isinstance(schedule, IntervalSchedule):
        raise InvalidScheduleError(f"Expected an IntervalSchedule, got {type(schedule).__name__}")
    try:
        return IntervalTrigger(timezone=timezone, **schedule.trigger_kwargs())
    except OverflowError as e:
        # The first fire time falls outside the datetime range
        raise InvalidScheduleError(f"Interval {schedule} is too long: {e}") from e
