"""
Materialization Service

Occurrences are stored lazily: a month is only expanded into rows when
somebody asks for it. This service decides which series are missing
rows for the requested month, asks the generator for candidates and
persists the delta.

DESIGN DECISION: The storage layer's (series_id, due_date) uniqueness
constraint is the only guard against two requests materializing the same
month at once. A DuplicateError on insert therefore means "someone else
got there first" and is counted, not raised. Any other storage failure
aborts the pass; re-running it is safe because materialization is
idempotent.

Soft-deleted rows act as tombstones. A candidate whose (series, date)
matches a deleted row is never re-inserted, so deleting a single
occurrence stays deleted.
"""

from typing import Optional
from uuid import UUID

import structlog

from billcycle.audit import AuditLogger, create_correlation_id
from billcycle.dates import InvalidDateError, months_between, parse_calendar_date
from billcycle.models.bill import MonthWindow, Occurrence, WindowResult
from billcycle.services.generator import generate_occurrences
from billcycle.services.storage import (
    DuplicateError,
    OccurrenceStorageInterface,
    SeriesStorageInterface,
)


logger = structlog.get_logger(__name__)


class MaterializationService:
    """
    Ensures every active series has its occurrences for a month persisted.

    Usage:
        service = MaterializationService(series_storage, occurrence_storage)
        result = await service.ensure_window("2024-03")
    """

    def __init__(
        self,
        series_storage: SeriesStorageInterface,
        occurrence_storage: OccurrenceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._series_storage = series_storage
        self._occurrence_storage = occurrence_storage
        self._audit_logger = audit_logger

    async def ensure_window(
        self,
        month_token: str,
        correlation_id: Optional[UUID] = None,
    ) -> WindowResult:
        """
        Materialize the calendar month named by a YYYY-MM token.

        Steps:
        1. Read what is already stored for the month (deleted rows included)
        2. Skip series that already have an active row in the month
        3. Generate candidates for the rest, far enough ahead to reach
           the month, and keep those that fall inside it
        4. Insert candidates, counting duplicates
        5. Re-read the month so the result reflects all writers

        Raises:
            InvalidDateError: If the token is not a valid YYYY-MM month
            StorageError: On any storage failure other than a duplicate
        """
        correlation_id = correlation_id or create_correlation_id()
        window = MonthWindow.from_token(month_token)

        stored = await self._occurrence_storage.find_by_window(
            window.first_day, window.last_day, include_deleted=True
        )
        covered = {occ.series_id for occ in stored if not occ.deleted}
        tombstones = {occ.key for occ in stored if occ.deleted}

        active_series = await self._series_storage.find_active_series(window.last_day)

        candidates: list[Occurrence] = []
        series_skipped: list[UUID] = []

        for series in active_series:
            if series.id in covered:
                continue

            try:
                anchor = parse_calendar_date(series.anchor_date)
            except InvalidDateError:
                logger.warning(
                    "series_skipped_invalid_anchor",
                    series_id=str(series.id),
                    anchor_date=series.anchor_date,
                    month=window.token,
                )
                series_skipped.append(series.id)
                if self._audit_logger:
                    await self._audit_logger.log_generation_skipped(
                        series_id=series.id,
                        anchor_date=series.anchor_date,
                        correlation_id=correlation_id,
                    )
                continue

            months_ahead = months_between(anchor, window.first_day)
            if months_ahead < 0:
                # Series starts after this month
                continue

            for occ in generate_occurrences(series, months_ahead + 1):
                if window.contains(occ.due_date) and occ.key not in tombstones:
                    candidates.append(occ)

        inserted, duplicates = await self.persist_candidates(candidates)
        inserted_count = len(inserted)

        occurrences = await self._occurrence_storage.find_by_window(
            window.first_day, window.last_day
        )

        logger.info(
            "window_materialized",
            month=window.token,
            inserted=inserted_count,
            duplicates_skipped=duplicates,
            total=len(occurrences),
        )
        if self._audit_logger:
            await self._audit_logger.log_window_materialized(
                month=window.token,
                inserted=inserted_count,
                duplicates_skipped=duplicates,
                total=len(occurrences),
                correlation_id=correlation_id,
            )

        return WindowResult(
            window=window,
            occurrences=occurrences,
            inserted_count=inserted_count,
            duplicates_skipped=duplicates,
            series_skipped=series_skipped,
        )

    async def persist_candidates(self, candidates: list[Occurrence]) -> tuple[list[Occurrence], int]:
        """
        Insert candidates one by one.

        A DuplicateError is logged and counted; the remaining candidates
        are still attempted. Any other error propagates immediately.

        Returns:
            (inserted occurrences, duplicates skipped)
        """
        inserted: list[Occurrence] = []
        duplicates = 0

        for occ in candidates:
            try:
                await self._occurrence_storage.insert_occurrence(occ)
                inserted.append(occ)
            except DuplicateError:
                duplicates += 1
                logger.info(
                    "duplicate_occurrence_skipped",
                    series_id=str(occ.series_id),
                    due_date=occ.due_date.isoformat(),
                )

        return inserted, duplicates

