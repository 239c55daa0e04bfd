"""
Streak tracking: pure functions, no storage access.
"""
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional


def to_calendar_day(moment: datetime, tz: tzinfo) -> date:
    """Truncate a timestamp to its calendar day in ``tz``.

    Naive timestamps are taken to already be in ``tz``.
    """
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz).date()


def next_streak(last_date: Optional[date], current_streak: int, today: date) -> int:
    """
    Returns the streak value after a qualifying activity on ``today``.

    Same day leaves the streak alone, the day after extends it, anything
    else (first activity or a gap of two days or more) restarts at 1.
    """
    if last_date is None:
        return 1
    if last_date == today:
        return current_streak
    if last_date == today - timedelta(days=1):
        return current_streak + 1
    return 1


def advance_streak(
    last_date: Optional[date],
    current_streak: int,
    longest_streak: int,
    today: date,
) -> tuple[int, int]:
    """Returns (new_streak, new_longest_streak)."""
    streak = next_streak(last_date, current_streak, today)
    return streak, max(longest_streak, streak)
