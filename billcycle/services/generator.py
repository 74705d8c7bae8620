"""
Occurrence Generator

Pure expansion of a series into dated candidate occurrences. No storage
access, no duplicate checks - the materialization service owns both.

Each date is one interval after the previous one, so clamping carries
forward: a monthly series anchored on the 31st gives Jan 31, Feb 29,
Mar 29, ... and a Feb 29 yearly series stays on the 28th afterwards.
"""

from datetime import date
from typing import Callable

import structlog

from billcycle.dates import (
    InvalidDateError,
    add_months,
    add_weeks,
    add_years,
    parse_calendar_date,
)
from billcycle.models.bill import Occurrence, Recurrence, Series


logger = structlog.get_logger(__name__)


STEPPERS: dict[Recurrence, Callable[[date, int], date]] = {
    Recurrence.WEEKLY: add_weeks,
    Recurrence.MONTHLY: add_months,
    Recurrence.YEARLY: add_years,
}


def next_due_date(previous: date, recurrence: Recurrence) -> date:
    """Due date one recurrence interval after `previous`."""
    if recurrence == Recurrence.NONE:
        raise ValueError("A non-recurring series has no next due date")
    return STEPPERS[recurrence](previous, 1)


def generate_occurrences(series: Series, horizon_months: int) -> list[Occurrence]:
    """
    Expand a series into candidate occurrences.

    Walks from the anchor date in recurrence steps and stops at the first
    date that is past anchor + horizon_months, or on/after the series'
    deleted_from boundary. A date exactly on the horizon is included.
    A non-recurring series yields its anchor date only.

    An unparseable anchor yields an empty list and a warning; it never
    raises, so one bad row cannot fail a whole window.

    Args:
        series: The series to expand
        horizon_months: Months ahead of the anchor to cover

    Returns:
        Unpersisted occurrences in due date order
    """
    if horizon_months < 0:
        raise ValueError(f"horizon_months must be >= 0, got {horizon_months}")

    try:
        anchor = parse_calendar_date(series.anchor_date)
    except InvalidDateError:
        logger.warning(
            "generation_skipped_invalid_anchor",
            series_id=str(series.id),
            anchor_date=series.anchor_date,
        )
        return []

    horizon_end = add_months(anchor, horizon_months)
    occurrences: list[Occurrence] = []
    cursor = anchor

    while cursor <= horizon_end:
        if series.deleted_from is not None and cursor >= series.deleted_from:
            break

        occurrences.append(Occurrence.from_series(series, cursor))

        if series.recurrence == Recurrence.NONE:
            break
        cursor = next_due_date(cursor, series.recurrence)

    return occurrences
