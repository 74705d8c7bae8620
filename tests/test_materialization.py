"""Tests for lazy month materialization."""

from datetime import date

import pytest

from billcycle.models.audit import AuditEventType
from billcycle.models.bill import Occurrence, Recurrence
from billcycle.services.materialization import MaterializationService
from billcycle.services.storage import (
    InMemoryOccurrenceStorage,
    StorageError,
)


@pytest.fixture
def service(series_storage, occurrence_storage, audit_logger):
    return MaterializationService(series_storage, occurrence_storage, audit_logger)


class RacingOccurrenceStorage(InMemoryOccurrenceStorage):
    """Another writer inserts the same (series, date) just before us."""

    def __init__(self, clash_dates=None):
        super().__init__()
        self.clash_dates = clash_dates

    async def insert_occurrence(self, occurrence):
        if self.clash_dates is not None and occurrence.due_date not in self.clash_dates:
            return await super().insert_occurrence(occurrence)
        rival = Occurrence(
            series_id=occurrence.series_id,
            name=occurrence.name,
            due_date=occurrence.due_date,
            amount=occurrence.amount,
        )
        if not self._find_active(*rival.key):
            await super().insert_occurrence(rival)
        return await super().insert_occurrence(occurrence)


class BrokenOccurrenceStorage(InMemoryOccurrenceStorage):

    async def insert_occurrence(self, occurrence):
        raise StorageError("disk full")


class TestEnsureWindow:
    """Tests for materializing one calendar month."""

    async def test_weekly_series_only_fills_requested_month(
        self, service, series_storage, occurrence_storage, make_series
    ):
        """Test walking from January inserts only the March dates."""
        series = make_series(anchor_date="2024-01-01", recurrence=Recurrence.WEEKLY)
        await series_storage.insert_series(series)

        result = await service.ensure_window("2024-03")

        assert [occ.due_date for occ in result.occurrences] == [
            date(2024, 3, 4),
            date(2024, 3, 11),
            date(2024, 3, 18),
            date(2024, 3, 25),
        ]
        assert all(occ.due_date.month == 3 for occ in result.occurrences)
        assert result.inserted_count == 4
        assert await occurrence_storage.find_by_window(
            date(2024, 1, 1), date(2024, 2, 29), include_deleted=True
        ) == []

    async def test_second_call_is_idempotent(self, service, series_storage, make_series):
        """Test a repeat call inserts nothing and returns the same rows."""
        await series_storage.insert_series(make_series(recurrence=Recurrence.WEEKLY))

        first = await service.ensure_window("2024-03")
        second = await service.ensure_window("2024-03")

        assert second.inserted_count == 0
        assert len(second.occurrences) == len(first.occurrences)
        assert {o.id for o in second.occurrences} == {o.id for o in first.occurrences}

    async def test_monthly_clamped_date_in_window(self, service, series_storage, make_series):
        """Test a Jan 31 anchor clamps in February and keeps the clamped day after."""
        await series_storage.insert_series(make_series(anchor_date="2024-01-31"))

        february = await service.ensure_window("2024-02")
        april = await service.ensure_window("2024-04")

        assert [o.due_date for o in february.occurrences] == [date(2024, 2, 29)]
        assert [o.due_date for o in april.occurrences] == [date(2024, 4, 29)]

    async def test_series_starting_later_is_skipped(self, service, series_storage, make_series):
        """Test a month before the anchor gets nothing."""
        await series_storage.insert_series(make_series(anchor_date="2024-05-10"))

        result = await service.ensure_window("2024-03")

        assert result.occurrences == []
        assert result.inserted_count == 0

    async def test_yearly_only_in_anniversary_month(self, service, series_storage, make_series):
        """Test a yearly series appears only in its month."""
        await series_storage.insert_series(
            make_series(anchor_date="2023-06-10", recurrence=Recurrence.YEARLY)
        )

        june = await service.ensure_window("2024-06")
        july = await service.ensure_window("2024-07")

        assert [o.due_date for o in june.occurrences] == [date(2024, 6, 10)]
        assert july.occurrences == []

    async def test_non_recurring_only_in_its_month(self, service, series_storage, make_series):
        """Test a one-off bill is materialized once."""
        await series_storage.insert_series(
            make_series(anchor_date="2024-03-05", recurrence=Recurrence.NONE)
        )

        assert len((await service.ensure_window("2024-03")).occurrences) == 1
        assert (await service.ensure_window("2024-04")).occurrences == []

    async def test_multiple_series_in_one_window(self, service, series_storage, make_series):
        """Test every active series contributes to the month."""
        await series_storage.insert_series(make_series(name="Rent", anchor_date="2024-01-01"))
        await series_storage.insert_series(make_series(name="Gym", anchor_date="2024-02-20"))

        result = await service.ensure_window("2024-03")

        assert [(o.name, o.due_date) for o in result.occurrences] == [
            ("Rent", date(2024, 3, 1)),
            ("Gym", date(2024, 3, 20)),
        ]


class TestWindowSkipsAndTombstones:
    """Tests for series that must not be (re)generated."""

    async def test_covered_series_is_not_regenerated(
        self, service, series_storage, occurrence_storage, make_series
    ):
        """Test a moved occurrence in the month stops generation for that series."""
        series = make_series(anchor_date="2024-01-15")
        await series_storage.insert_series(series)
        await occurrence_storage.insert_occurrence(
            Occurrence.from_series(series, date(2024, 3, 20))
        )

        result = await service.ensure_window("2024-03")

        assert result.inserted_count == 0
        assert [o.due_date for o in result.occurrences] == [date(2024, 3, 20)]

    async def test_soft_deleted_occurrence_is_not_resurrected(
        self, service, series_storage, occurrence_storage, make_series
    ):
        """Test a single deleted occurrence stays deleted."""
        await series_storage.insert_series(make_series(anchor_date="2024-01-15"))
        first = await service.ensure_window("2024-03")
        await occurrence_storage.soft_delete_occurrence(first.occurrences[0].id)

        second = await service.ensure_window("2024-03")

        assert second.occurrences == []
        assert second.inserted_count == 0

    async def test_series_closed_within_month_is_not_generated(
        self, service, series_storage, make_series
    ):
        """Test a boundary on or before the last day excludes the series."""
        await series_storage.insert_series(
            make_series(anchor_date="2024-01-05", deleted_from=date(2024, 3, 16))
        )

        result = await service.ensure_window("2024-03")

        assert result.occurrences == []

    async def test_series_closed_after_month_is_generated(
        self, service, series_storage, make_series
    ):
        """Test a boundary after the last day keeps the series active."""
        await series_storage.insert_series(
            make_series(anchor_date="2024-01-05", deleted_from=date(2024, 4, 1))
        )

        result = await service.ensure_window("2024-03")

        assert [o.due_date for o in result.occurrences] == [date(2024, 3, 5)]

    async def test_invalid_anchor_is_skipped_and_audited(
        self, service, series_storage, audit_storage, make_series
    ):
        """Test one bad series does not block the others."""
        bad = make_series(name="Broken", anchor_date="not-a-date")
        good = make_series(name="Rent", anchor_date="2024-01-01")
        await series_storage.insert_series(bad)
        await series_storage.insert_series(good)

        result = await service.ensure_window("2024-03")

        assert result.series_skipped == [bad.id]
        assert [o.name for o in result.occurrences] == ["Rent"]

        events = await audit_storage.get_events_by_entity("series", bad.id)
        assert [e.event_type for e in events] == [AuditEventType.GENERATION_SKIPPED]


class TestConcurrentInserts:
    """Tests for duplicate handling and failures during insert."""

    async def test_duplicate_from_other_writer_is_counted(
        self, series_storage, audit_logger, make_series
    ):
        """Test a lost insert race is swallowed and the winner's row returned."""
        occurrence_storage = RacingOccurrenceStorage()
        service = MaterializationService(series_storage, occurrence_storage, audit_logger)
        await series_storage.insert_series(make_series(anchor_date="2024-01-15"))

        result = await service.ensure_window("2024-03")

        assert result.inserted_count == 0
        assert result.duplicates_skipped == 1
        assert [o.due_date for o in result.occurrences] == [date(2024, 3, 15)]

    async def test_duplicate_mid_batch_does_not_stop_the_rest(
        self, series_storage, make_series
    ):
        """Test a lost race on one date still inserts the later dates."""
        occurrence_storage = RacingOccurrenceStorage(clash_dates={date(2024, 3, 11)})
        service = MaterializationService(series_storage, occurrence_storage)
        await series_storage.insert_series(
            make_series(anchor_date="2024-01-01", recurrence=Recurrence.WEEKLY)
        )

        result = await service.ensure_window("2024-03")

        assert result.duplicates_skipped == 1
        assert result.inserted_count == 3
        assert [o.due_date for o in result.occurrences] == [
            date(2024, 3, 4),
            date(2024, 3, 11),
            date(2024, 3, 18),
            date(2024, 3, 25),
        ]

    async def test_unexpected_storage_error_aborts(self, series_storage, make_series):
        """Test a non-duplicate insert failure propagates."""
        service = MaterializationService(series_storage, BrokenOccurrenceStorage())
        await series_storage.insert_series(make_series())

        with pytest.raises(StorageError, match="disk full"):
            await service.ensure_window("2024-03")

    async def test_window_audit_event_carries_counts(
        self, service, series_storage, audit_storage, make_series
    ):
        """Test the materialization audit event records what happened."""
        await series_storage.insert_series(make_series(recurrence=Recurrence.WEEKLY, anchor_date="2024-01-01"))

        await service.ensure_window("2024-03")

        events = await audit_storage.get_recent_events(limit=10)
        materialized = [e for e in events if e.event_type == AuditEventType.OCCURRENCES_MATERIALIZED]
        assert len(materialized) == 1
        assert materialized[0].details == {
            "month": "2024-03",
            "inserted": 4,
            "duplicates_skipped": 0,
            "total": 4,
        }
