# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Date ranges for warms and rankings.

A range is a pair of inclusive naive local-time instants plus a canonical
key: the literal ``yyyy`` / ``yyyy-mm`` / ``yyyy-mm-dd`` input, or
``start..end`` for rolling windows.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterator, Optional

from .cache_manager import BucketKey

DATE_OPTION_RE = re.compile(r"^(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?$")


class InvalidDateError(ValueError):
    """User-supplied date could not be parsed."""


class Granularity(Enum):
    """Resolution of a date range."""
    DAY = "day"
    MONTH = "month"
    YEAR = "year"
    WINDOW = "window"  # Several consecutive days


@dataclass(frozen=True)
class DateRange:
    """Inclusive local-time range."""
    start: datetime
    end: datetime
    key: str
    granularity: Granularity

    @property
    def day_count(self) -> int:
        return (self.end.date() - self.start.date()).days + 1

    def iter_days(self) -> Iterator[date]:
        """Calendar days from start to end."""
        current = self.start.date()
        last = self.end.date()
        while current <= last:
            yield current
            current += timedelta(days=1)

    def iter_buckets(self) -> Iterator[BucketKey]:
        """Every hour bucket overlapping the range, in chronological order."""
        for day in self.iter_days():
            for hour in range(24):
                hour_start = datetime.combine(day, time(hour))
                if hour_start > self.end:
                    return
                if hour_start + timedelta(hours=1) <= self.start:
                    continue
                yield BucketKey(day.year, day.month, day.day, hour)

    def day_ranges(self) -> Iterator["DateRange"]:
        """Split into single-day ranges."""
        for day in self.iter_days():
            yield day_range(day)


def _span(first: date, last: date, key: str, granularity: Granularity) -> DateRange:
    return DateRange(
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, time.max),
        key=key,
        granularity=granularity,
    )


def day_range(day: date) -> DateRange:
    return _span(day, day, day.isoformat(), Granularity.DAY)


def parse_date_option(text: str) -> DateRange:
    """
    Parse a ``--date`` value.

    Args:
        text: ``yyyy``, ``yyyy-mm`` or ``yyyy-mm-dd``.

    Raises:
        InvalidDateError: If the format, month or day is invalid.
    """
    match = DATE_OPTION_RE.match((text or "").strip())
    if not match:
        raise InvalidDateError("--date must be yyyy, yyyy-mm, or yyyy-mm-dd")

    year = int(match.group(1))
    if year < 1:
        raise InvalidDateError("--date year is invalid")

    if match.group(2) is None:
        return _span(date(year, 1, 1), date(year, 12, 31), match.group(0), Granularity.YEAR)

    month = int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidDateError("--date month is invalid")
    last_day = calendar.monthrange(year, month)[1]

    if match.group(3) is None:
        return _span(date(year, month, 1), date(year, month, last_day), match.group(0), Granularity.MONTH)

    day = int(match.group(3))
    if not 1 <= day <= last_day:
        raise InvalidDateError("--date day is invalid")
    return _span(date(year, month, day), date(year, month, day), match.group(0), Granularity.DAY)


def days_ending(last: date, days: int) -> DateRange:
    """Window of ``days`` calendar days ending on ``last`` (inclusive)."""
    if days < 1:
        raise InvalidDateError("--days must be a positive integer")
    if days == 1:
        return day_range(last)
    first = last - timedelta(days=days - 1)
    return _span(first, last, f"{first.isoformat()}..{last.isoformat()}", Granularity.WINDOW)


def rolling_window(days: int = 7, today: Optional[date] = None) -> DateRange:
    """
    Default window: from ``days + 1`` days ago through yesterday.

    Today is always excluded because its buckets are still filling up.
    """
    if days < 1:
        raise InvalidDateError("--days must be a positive integer")
    today = today or date.today()
    first = today - timedelta(days=days + 1)
    last = today - timedelta(days=1)
    return _span(first, last, f"{first.isoformat()}..{last.isoformat()}", Granularity.WINDOW)


def today_range(today: Optional[date] = None) -> DateRange:
    return day_range(today or date.today())
