"""
Business Calendar Module

All business dates are local calendar dates in the configured timezone.
Installment anchors, period arithmetic and savings cycle bounds live here.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import get_config


def local_today(tz_name: Optional[str] = None) -> date:
    """Today's date in the business timezone"""
    return datetime.now(ZoneInfo(tz_name or get_config().timezone)).date()


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def clamp_day(year: int, month: int, day: int) -> date:
    """``day`` of the given month, clamped to the month's length"""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def next_weekday(today: date, iso_weekday: int) -> date:
    """First date on or after ``today`` falling on ISO weekday 1 (Mon) .. 7 (Sun)"""
    return today + timedelta(days=(iso_weekday - today.isoweekday()) % 7)


def next_month_day(today: date, due_day: int) -> date:
    """First date on or after ``today`` whose day-of-month is ``due_day`` (clamped)"""
    candidate = clamp_day(today.year, today.month, due_day)
    if candidate < today:
        nxt = add_months(date(today.year, today.month, 1), 1)
        candidate = clamp_day(nxt.year, nxt.month, due_day)
    return candidate


def week_bounds(day: date) -> Tuple[date, date]:
    """ISO week (Monday through Sunday) containing ``day``"""
    start = day - timedelta(days=day.isoweekday() - 1)
    return start, start + timedelta(days=6)


def month_bounds(day: date) -> Tuple[date, date]:
    """Calendar month containing ``day``"""
    last = calendar.monthrange(day.year, day.month)[1]
    return date(day.year, day.month, 1), date(day.year, day.month, last)
