"""
Calendar Date Helpers

All dates in the system are plain calendar dates written as YYYY-MM-DD.
There are no times and no timezones anywhere.

Month arithmetic uses dateutil's relativedelta, which clamps to the last
day of shorter months: Jan 31 + 1 month is Feb 29 in a leap year and
Feb 28 otherwise, never Mar 2. Recurring series chain these steps from
the previous date, so a clamped day carries forward.
"""

import calendar
import re
from datetime import date, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_TOKEN_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


class InvalidDateError(ValueError):
    """A date or month token could not be parsed."""
    pass


def parse_calendar_date(value: Union[str, date]) -> date:
    """
    Parse a YYYY-MM-DD string into a date.

    Only the exact YYYY-MM-DD form is accepted. Other ISO variants
    (week dates, ordinal dates, timestamps) are rejected.
    """
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
        raise InvalidDateError(f"Invalid date {value!r}. Use YYYY-MM-DD.")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise InvalidDateError(f"Invalid date {value!r}. Use YYYY-MM-DD.")


def parse_month_token(token: str) -> tuple[int, int]:
    """Parse a YYYY-MM token into (year, month)."""
    match = MONTH_TOKEN_PATTERN.match(token.strip()) if isinstance(token, str) else None
    if not match:
        raise InvalidDateError(f"Invalid month {token!r}. Use YYYY-MM.")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1:
        raise InvalidDateError(f"Invalid month {token!r}. Use YYYY-MM.")
    return year, month


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def add_weeks(value: date, weeks: int) -> date:
    return value + timedelta(weeks=weeks)


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def add_years(value: date, years: int) -> date:
    """Add calendar years. Feb 29 lands on Feb 28 in non-leap years."""
    return value + relativedelta(years=years)


def months_between(start: date, end: date) -> int:
    """
    Whole calendar months from start's month to end's month.

    Days are ignored: 2024-01-31 -> 2024-02-01 is 1.
    Negative when end's month is earlier than start's.
    """
    return (end.year - start.year) * 12 + (end.month - start.month)
