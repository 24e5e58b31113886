"""
Relative time phrase resolution.

Turns phrases like "last week" or "last 14 days" into absolute date ranges.
Phrases are checked in a fixed order and the first match wins.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from tessie_assistant.schemas.queries import TimeFrame

LAST_N_DAYS_PATTERN = re.compile(r"last (\d+) days?")
DEFAULT_DAYS_BACK = 30


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999000)


def _days_ago(now: datetime, days: int) -> TimeFrame:
    return TimeFrame(start=_start_of_day(now - timedelta(days=days)), end=now)


def extract_time_frame(text: str, now: Optional[datetime] = None) -> TimeFrame:
    """
    Resolve the time range a query refers to.

    Args:
        text: Free-text query
        now: Reference instant, defaults to the current UTC time

    Returns:
        TimeFrame; the last 30 days when no phrase matches
    """
    now = now or datetime.now(timezone.utc)
    lowered = text.lower()

    if "last month" in lowered or "previous month" in lowered:
        end_of_last_month = _end_of_day(now.replace(day=1) - timedelta(days=1))
        start_of_last_month = _start_of_day(end_of_last_month.replace(day=1))
        return TimeFrame(start=start_of_last_month, end=end_of_last_month)

    if "this month" in lowered or "current month" in lowered:
        return TimeFrame(start=_start_of_day(now.replace(day=1)), end=now)

    if "last week" in lowered or "previous week" in lowered:
        return _days_ago(now, 7)

    if "this week" in lowered:
        # weekday() is 0 for Monday, so Sunday goes back 6 days
        return _days_ago(now, now.weekday())

    match = LAST_N_DAYS_PATTERN.search(lowered)
    if match:
        return _days_ago(now, int(match.group(1)))

    if "today" in lowered:
        return TimeFrame(start=_start_of_day(now), end=now)

    if "yesterday" in lowered:
        yesterday = now - timedelta(days=1)
        return TimeFrame(start=_start_of_day(yesterday), end=_end_of_day(yesterday))

    return _days_ago(now, DEFAULT_DAYS_BACK)
