"""Tests for the SQLite storage backend."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billcycle.models.audit import AuditEventBuilder
from billcycle.models.bill import Occurrence, OccurrencePatch, OccurrenceStatus, Recurrence
from billcycle.services.materialization import MaterializationService
from billcycle.services.storage import (
    DuplicateError,
    OccurrenceNotFoundError,
    SeriesNotFoundError,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteOccurrenceStorage,
    SQLiteSeriesStorage,
)


@pytest.fixture
def sqlite_client(tmp_path):
    client = SQLiteClient(str(tmp_path / "billcycle-test.sqlite3"))
    yield client
    client.close()


@pytest.fixture
def sqlite_series(sqlite_client):
    return SQLiteSeriesStorage(sqlite_client)


@pytest.fixture
def sqlite_occurrences(sqlite_client):
    return SQLiteOccurrenceStorage(sqlite_client)


@pytest.fixture
async def stored_series(sqlite_series, make_series):
    series = make_series(anchor_date="2024-01-15")
    await sqlite_series.insert_series(series)
    return series


class TestSQLiteSeriesStorage:
    """Tests for series rows."""

    async def test_insert_and_get(self, sqlite_series, stored_series):
        """Test a series reads back with its fields intact."""
        loaded = await sqlite_series.get_series_by_id(stored_series.id)
        assert loaded.name == stored_series.name
        assert loaded.amount == Decimal("100.00")
        assert loaded.anchor_date == "2024-01-15"
        assert loaded.recurrence == Recurrence.MONTHLY
        assert loaded.deleted_from is None

    async def test_get_unknown_returns_none(self, sqlite_series):
        """Test a missing series is None, not an error."""
        assert await sqlite_series.get_series_by_id(uuid4()) is None

    async def test_duplicate_id_rejected(self, sqlite_series, stored_series):
        """Test the primary key is enforced."""
        with pytest.raises(DuplicateError):
            await sqlite_series.insert_series(stored_series)

    async def test_find_active_respects_boundary(self, sqlite_series, stored_series):
        """Test a boundary after the date keeps the series active, on it does not."""
        await sqlite_series.set_deleted_from(stored_series.id, date(2024, 3, 16))

        assert [s.id for s in await sqlite_series.find_active_series(date(2024, 3, 15))] == [stored_series.id]
        assert await sqlite_series.find_active_series(date(2024, 3, 16)) == []

    async def test_set_deleted_from_unknown(self, sqlite_series):
        """Test closing an unknown series is not found."""
        with pytest.raises(SeriesNotFoundError):
            await sqlite_series.set_deleted_from(uuid4(), date(2024, 1, 1))


class TestSQLiteOccurrenceStorage:
    """Tests for occurrence rows and the partial unique index."""

    async def test_insert_and_read_window(self, sqlite_occurrences, stored_series):
        """Test rows come back ordered and typed."""
        for day in (20, 5):
            await sqlite_occurrences.insert_occurrence(
                Occurrence.from_series(stored_series, date(2024, 3, day))
            )

        rows = await sqlite_occurrences.find_by_window(date(2024, 3, 1), date(2024, 3, 31))

        assert [r.due_date for r in rows] == [date(2024, 3, 5), date(2024, 3, 20)]
        assert rows[0].amount == Decimal("100.00")
        assert rows[0].is_paid is False
        assert rows[0].status == OccurrenceStatus.UPCOMING

    async def test_same_series_and_date_is_duplicate(self, sqlite_occurrences, stored_series):
        """Test the database rejects a second active row for the same date."""
        await sqlite_occurrences.insert_occurrence(
            Occurrence.from_series(stored_series, date(2024, 3, 15))
        )
        with pytest.raises(DuplicateError):
            await sqlite_occurrences.insert_occurrence(
                Occurrence.from_series(stored_series, date(2024, 3, 15))
            )

    async def test_reinsert_after_soft_delete(self, sqlite_occurrences, stored_series):
        """Test the uniqueness constraint only covers non-deleted rows."""
        first = Occurrence.from_series(stored_series, date(2024, 3, 15))
        await sqlite_occurrences.insert_occurrence(first)
        await sqlite_occurrences.soft_delete_occurrence(first.id)

        await sqlite_occurrences.insert_occurrence(
            Occurrence.from_series(stored_series, date(2024, 3, 15))
        )

        rows = await sqlite_occurrences.find_by_window(
            date(2024, 3, 1), date(2024, 3, 31), include_deleted=True
        )
        assert sorted(r.deleted for r in rows) == [False, True]

    async def test_update_one_returns_merged_row(self, sqlite_occurrences, stored_series):
        """Test an update writes only supplied fields."""
        occ = Occurrence.from_series(stored_series, date(2024, 3, 15))
        await sqlite_occurrences.insert_occurrence(occ)

        updated = await sqlite_occurrences.update_occurrence(
            occ.id,
            OccurrencePatch(is_paid=True, paid_date=date(2024, 3, 10), status=OccurrenceStatus.COMPLETED),
        )

        assert updated.is_paid is True
        assert updated.paid_date == date(2024, 3, 10)
        assert updated.status == OccurrenceStatus.COMPLETED
        assert updated.name == occ.name

    async def test_update_onto_taken_date_is_duplicate(self, sqlite_occurrences, stored_series):
        """Test moving a row onto an active sibling's date fails."""
        a = Occurrence.from_series(stored_series, date(2024, 3, 15))
        b = Occurrence.from_series(stored_series, date(2024, 4, 15))
        await sqlite_occurrences.insert_occurrence(a)
        await sqlite_occurrences.insert_occurrence(b)

        with pytest.raises(DuplicateError):
            await sqlite_occurrences.update_occurrence(b.id, OccurrencePatch(due_date=date(2024, 3, 15)))

    async def test_update_unknown(self, sqlite_occurrences):
        """Test updating a missing row is not found."""
        with pytest.raises(OccurrenceNotFoundError):
            await sqlite_occurrences.update_occurrence(uuid4(), OccurrencePatch(name="x"))

    async def test_ranged_update_and_delete(self, sqlite_occurrences, stored_series):
        """Test ranged writes touch active rows on or after the date only."""
        rows = [
            Occurrence.from_series(stored_series, date(2024, month, 15))
            for month in (1, 2, 3, 4)
        ]
        for occ in rows:
            await sqlite_occurrences.insert_occurrence(occ)
        await sqlite_occurrences.soft_delete_occurrence(rows[3].id)

        updated = await sqlite_occurrences.update_occurrences_from_date(
            stored_series.id, date(2024, 2, 15), OccurrencePatch(amount=Decimal("7"))
        )
        deleted = await sqlite_occurrences.soft_delete_from_date(stored_series.id, date(2024, 3, 1))

        assert updated == 2
        assert deleted == 1
        active = await sqlite_occurrences.find_by_window(date(2024, 1, 1), date(2024, 12, 31))
        assert [(r.due_date.month, r.amount) for r in active] == [
            (1, Decimal("100.00")),
            (2, Decimal("7")),
        ]

    async def test_ranged_update_with_empty_patch(self, sqlite_occurrences, stored_series):
        """Test an empty ranged update is a no-op."""
        await sqlite_occurrences.insert_occurrence(
            Occurrence.from_series(stored_series, date(2024, 3, 15))
        )
        assert await sqlite_occurrences.update_occurrences_from_date(
            stored_series.id, date(2024, 1, 1), OccurrencePatch()
        ) == 0


class TestSQLiteAuditStorage:
    """Tests for the audit table."""

    async def test_append_and_query(self, sqlite_client):
        """Test events are retrievable by correlation id and entity."""
        storage = SQLiteAuditStorage(sqlite_client)
        correlation_id = uuid4()
        series_id = uuid4()
        event = AuditEventBuilder.series_created(
            series_id=series_id,
            name="Rent",
            recurrence="monthly",
            anchor_date="2024-01-15",
            correlation_id=correlation_id,
        )

        await storage.append_event(event)

        by_correlation = await storage.get_events_by_correlation_id(correlation_id)
        by_entity = await storage.get_events_by_entity("series", series_id)
        recent = await storage.get_recent_events(limit=5)
        assert [e.event_id for e in by_correlation] == [event.event_id]
        assert [e.event_id for e in by_entity] == [event.event_id]
        assert recent[0].details["anchor_date"] == "2024-01-15"


class TestSQLiteMaterialization:
    """End-to-end materialization against a real database file."""

    async def test_window_is_idempotent(self, sqlite_series, sqlite_occurrences, make_series):
        """Test two passes over the same month leave one row per date."""
        await sqlite_series.insert_series(
            make_series(anchor_date="2024-01-01", recurrence=Recurrence.WEEKLY)
        )
        service = MaterializationService(sqlite_series, sqlite_occurrences)

        first = await service.ensure_window("2024-03")
        second = await service.ensure_window("2024-03")

        assert first.inserted_count == 4
        assert second.inserted_count == 0
        assert [o.id for o in second.occurrences] == [o.id for o in first.occurrences]
