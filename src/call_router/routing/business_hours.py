"""
Business hours evaluation
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from ..models.routing import BusinessHours, DayOfWeek, TimeRange


def local_time(schedule: BusinessHours, now: datetime) -> datetime:
    """Express an instant in the schedule's own timezone (naive input is UTC)"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(schedule.timezone))


def ranges_for(schedule: BusinessHours, now: datetime) -> list[TimeRange]:
    """
    Ranges that apply on the local day of `now`.

    A dated exception replaces the weekly ranges for that day entirely, so an
    exception without ranges closes the day.
    """
    local = local_time(schedule, now)
    exception = schedule.exception_for(local.date())
    if exception is not None:
        return exception.ranges
    return schedule.weekly.get(DayOfWeek.from_date(local.date()), [])


def is_open(schedule: BusinessHours, now: datetime) -> bool:
    local = local_time(schedule, now).time()
    return any(time_range.contains(local) for time_range in ranges_for(schedule, now))
