"""Reading period helpers.

This module handles:
- The reading periods the Glowmarkt API can aggregate readings into
- Aligning timestamps to the start of a period
- Splitting long date ranges into chunks the API will accept
"""

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Tuple


class ReadingPeriod(str, Enum):
    """The time window covered by each reading."""

    HALF_HOUR = "half-hour"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @property
    def api_value(self) -> str:
        """ISO 8601 duration passed as the `period` query argument."""
        return _API_VALUES[self]

    @property
    def max_days(self) -> int:
        """Longest range (in days) the API returns for this period."""
        return _MAX_DAYS[self]


_API_VALUES = {
    ReadingPeriod.HALF_HOUR: "PT30M",
    ReadingPeriod.HOUR: "PT1H",
    ReadingPeriod.DAY: "P1D",
    ReadingPeriod.WEEK: "P1W",
    ReadingPeriod.MONTH: "P1M",
    ReadingPeriod.YEAR: "P1Y",
}

_MAX_DAYS = {
    ReadingPeriod.HALF_HOUR: 10,
    ReadingPeriod.HOUR: 31,
    ReadingPeriod.DAY: 31,
    ReadingPeriod.WEEK: 6 * 7,
    ReadingPeriod.MONTH: 366,
    ReadingPeriod.YEAR: 366,
}


def to_utc(date: datetime) -> datetime:
    """Convert to UTC, treating naive datetimes as already being UTC."""
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


def iso(date: datetime) -> str:
    """Format a datetime the way the readings endpoint expects it.

    Example:
        >>> iso(datetime(2024, 3, 1, 9, 5, 7, tzinfo=timezone.utc))
        '2024-03-01T09:05:07'
    """
    return to_utc(date).strftime("%Y-%m-%dT%H:%M:%S")


def align_to_period(date: datetime, period: ReadingPeriod) -> datetime:
    """Align the given date to the start of a reading period.

    Only half-hour and hour periods can be aligned.

    Raises:
        ValueError: For any other period
    """
    cleared = date.replace(second=0, microsecond=0)

    if period is ReadingPeriod.HALF_HOUR:
        return cleared.replace(minute=30 if date.minute >= 30 else 0)
    if period is ReadingPeriod.HOUR:
        return cleared.replace(minute=0)

    raise ValueError(f"Aligning to {period.value} periods is not supported")


def _add_months(date: datetime, months: int) -> datetime:
    month_index = date.month - 1 + months
    year = date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(date.day, calendar.monthrange(year, month)[1])
    return date.replace(year=year, month=month, day=day)


def increase_by_period(date: datetime, period: ReadingPeriod) -> datetime:
    """Step a date forward by one reading period."""
    if period is ReadingPeriod.MONTH:
        return _add_months(date, 1)
    if period is ReadingPeriod.YEAR:
        return _add_months(date, 12)

    step = {
        ReadingPeriod.HALF_HOUR: timedelta(minutes=30),
        ReadingPeriod.HOUR: timedelta(hours=1),
        ReadingPeriod.DAY: timedelta(days=1),
        ReadingPeriod.WEEK: timedelta(days=7),
    }[period]
    return date + step


def split_periods(
    start: datetime,
    end: datetime,
    period: ReadingPeriod,
) -> List[Tuple[datetime, datetime]]:
    """Split a range of readings into a set of ranges the API will accept.

    Both ends are converted to UTC. Each chunk spans at most
    `period.max_days`; the next chunk begins one period after the end of
    the previous one so no reading is requested twice.

    Args:
        start: Start of the range
        end: End of the range
        period: Reading period the range will be queried with

    Returns:
        List of (start, end) tuples in UTC, never empty
    """
    span = timedelta(days=period.max_days)
    current = to_utc(start)
    final_end = to_utc(end)

    ranges = []
    while True:
        next_end = current + span
        if next_end >= final_end:
            ranges.append((current, final_end))
            break
        ranges.append((current, next_end))
        current = increase_by_period(next_end, period)
        if current > final_end:
            break

    return ranges
