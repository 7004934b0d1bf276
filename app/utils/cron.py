"""
Cron expression helpers built on APScheduler's CronTrigger.

Expressions use classic crontab semantics: in the day-of-week field 0 and 7
are Sunday and 1 is Monday. APScheduler numbers weekdays from Monday, so
numeric day-of-week entries are rewritten to weekday names before parsing.
"""

from datetime import datetime
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger

from app.core.exceptions import ConfigurationError

DAILY_AT_MIDNIGHT = ("0", "0", "*", "*", "*")

WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _weekday_number(value: str, schedule: str) -> int:
    if not value.isdigit() or int(value) > 7:
        raise ConfigurationError(f"Invalid day-of-week value {value!r} in cron expression {schedule!r}")
    return int(value)


def _expand_weekday_entry(entry: str, schedule: str) -> List[int]:
    base, _, step_text = entry.partition("/")
    step = 1
    if step_text:
        if not step_text.isdigit() or int(step_text) == 0:
            raise ConfigurationError(f"Invalid day-of-week step {step_text!r} in cron expression {schedule!r}")
        step = int(step_text)

    if base == "*":
        first, last = 0, 6
    elif "-" in base:
        first_text, last_text = base.split("-", 1)
        first, last = _weekday_number(first_text, schedule), _weekday_number(last_text, schedule)
        if first > last:
            raise ConfigurationError(f"Invalid day-of-week range {base!r} in cron expression {schedule!r}")
    else:
        first = _weekday_number(base, schedule)
        last = 6 if step_text else first

    return list(range(first, last + 1, step))


def translate_day_of_week(field: str, schedule: str = "") -> str:
    """
    Rewrite a crontab day-of-week field into APScheduler weekday names.

    Single values, ranges, lists and steps are expanded to an explicit list of
    names, e.g. ``1-5`` becomes ``mon,tue,wed,thu,fri`` and ``0`` or ``7``
    becomes ``sun``. Fields that are ``*`` or already use names pass through.

    Raises:
        ConfigurationError: If a numeric entry is out of range or malformed
    """
    if field == "*" or any(c.isalpha() for c in field):
        return field

    days = set()
    for entry in field.split(","):
        days.update(n % 7 for n in _expand_weekday_entry(entry, schedule or field))
    return ",".join(WEEKDAY_NAMES[n] for n in sorted(days))


def build_trigger(schedule: str, timezone: str) -> CronTrigger:
    """
    Parse a five-field cron expression into a trigger evaluated in ``timezone``.

    Raises:
        ConfigurationError: If the expression is malformed or out of range
    """
    if not isinstance(schedule, str) or len(schedule.split()) != 5:
        raise ConfigurationError(f"Cron expression must have five fields: {schedule!r}")

    minute, hour, day, month, day_of_week = schedule.split()
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=translate_day_of_week(day_of_week, schedule),
            timezone=timezone,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression {schedule!r}: {e}")


def next_fire_time(schedule: str, timezone: str, now: datetime) -> Optional[datetime]:
    """Next time ``schedule`` fires after ``now``, or None if it is invalid or exhausted."""
    try:
        trigger = build_trigger(schedule, timezone)
    except ConfigurationError:
        return None
    return trigger.get_next_fire_time(None, now)


def is_daily_at_midnight(schedule: str) -> bool:
    """Whether the expression denotes "every day at 00:00"."""
    return tuple((schedule or "").split()) == DAILY_AT_MIDNIGHT
