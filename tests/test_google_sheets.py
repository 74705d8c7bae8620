"""
Tests for the Google Sheets storage backend.

No network: the spreadsheet is replaced by an in-process fake that
implements the handful of gspread worksheet calls the storage uses.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import gspread
import pytest

from billcycle.config import GoogleSheetsSettings
from billcycle.models.audit import AuditEventBuilder
from billcycle.models.bill import Occurrence, OccurrencePatch, Recurrence
from billcycle.services.materialization import MaterializationService
from billcycle.services.storage import google_sheets
from billcycle.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsOccurrenceStorage,
    GoogleSheetsSeriesStorage,
    OccurrenceNotFoundError,
)


class FakeWorksheet:
    def __init__(self, title: str):
        self.title = title
        self.rows: list[list[str]] = []

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update_cell(self, row, col, value):
        cells = self.rows[row - 1]
        while len(cells) < col:
            cells.append("")
        cells[col - 1] = str(value)

    def batch_update(self, data, value_input_option=None):
        for item in data:
            row = int(item["range"].lstrip("A"))
            self.rows[row - 1] = [str(v) for v in item["values"][0]]


class FakeSpreadsheet:
    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title):
        if title not in self.sheets:
            raise gspread.WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title, rows, cols):
        self.sheets[title] = FakeWorksheet(title)
        return self.sheets[title]


@pytest.fixture
def sheets_client(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")
    client = GoogleSheetsClient(
        GoogleSheetsSettings(credentials_path=str(credentials), spreadsheet_id="test-sheet")
    )
    client._spreadsheet = FakeSpreadsheet()
    return client


@pytest.fixture
def sheets_series(sheets_client):
    return GoogleSheetsSeriesStorage(sheets_client)


@pytest.fixture
def sheets_occurrences(sheets_client):
    return GoogleSheetsOccurrenceStorage(sheets_client)


class TestSheetsLayout:
    """Tests for worksheet creation."""

    def test_creates_sheets_with_headers(self, sheets_client):
        """Test missing worksheets are created with a header row."""
        sheet = sheets_client.get_occurrences_sheet()
        assert sheet.title == "Occurrences"
        assert sheet.get_all_values()[0][:4] == ["id", "series_id", "name", "due_date"]

    def test_reuses_existing_sheet(self, sheets_client):
        """Test the same worksheet is returned on later calls."""
        assert sheets_client.get_series_sheet() is sheets_client.get_series_sheet()


class TestSheetsConnection:
    """Tests for connection setup failures."""

    async def test_missing_credentials_not_retried(self, tmp_path, monkeypatch, make_series):
        """Test a missing credentials file fails on the first attempt."""
        calls = []

        def from_service_account_file(path, scopes=None):
            calls.append(path)
            raise FileNotFoundError(path)

        monkeypatch.setattr(
            google_sheets.Credentials, "from_service_account_file", from_service_account_file
        )
        with pytest.warns(UserWarning):
            settings = GoogleSheetsSettings(
                credentials_path=str(tmp_path / "missing.json"), spreadsheet_id="test-sheet"
            )
        storage = GoogleSheetsSeriesStorage(GoogleSheetsClient(settings))

        with pytest.raises(ConnectionError, match="credentials file not found"):
            await storage.insert_series(make_series())

        assert len(calls) == 1


class TestSheetsSeriesStorage:
    """Tests for series rows in a worksheet."""

    async def test_round_trip(self, sheets_series, make_series):
        """Test a series reads back from its row."""
        series = make_series(anchor_date="2024-01-31", recurrence=Recurrence.YEARLY)
        await sheets_series.insert_series(series)

        loaded = await sheets_series.get_series_by_id(series.id)

        assert loaded.anchor_date == "2024-01-31"
        assert loaded.amount == Decimal("100.00")
        assert loaded.recurrence == Recurrence.YEARLY

    async def test_set_deleted_from(self, sheets_series, make_series):
        """Test closing a series writes the boundary cell."""
        series = make_series()
        await sheets_series.insert_series(series)

        await sheets_series.set_deleted_from(series.id, date(2024, 2, 16))

        assert (await sheets_series.get_series_by_id(series.id)).deleted_from == date(2024, 2, 16)
        assert await sheets_series.find_active_series(date(2024, 2, 16)) == []

    async def test_duplicate_series(self, sheets_series, make_series):
        """Test the same id cannot be appended twice."""
        series = make_series()
        await sheets_series.insert_series(series)
        with pytest.raises(DuplicateError):
            await sheets_series.insert_series(series)


class TestSheetsOccurrenceStorage:
    """Tests for occurrence rows in a worksheet."""

    async def test_duplicate_active_row(self, sheets_occurrences, make_series):
        """Test a second active row for the same date is refused."""
        series = make_series()
        await sheets_occurrences.insert_occurrence(Occurrence.from_series(series, date(2024, 3, 15)))

        with pytest.raises(DuplicateError):
            await sheets_occurrences.insert_occurrence(Occurrence.from_series(series, date(2024, 3, 15)))

    async def test_reinsert_after_soft_delete(self, sheets_occurrences, make_series):
        """Test deleted rows do not block a new row on the same date."""
        series = make_series()
        first = Occurrence.from_series(series, date(2024, 3, 15))
        await sheets_occurrences.insert_occurrence(first)
        await sheets_occurrences.soft_delete_occurrence(first.id)

        await sheets_occurrences.insert_occurrence(Occurrence.from_series(series, date(2024, 3, 15)))

        active = await sheets_occurrences.find_by_window(date(2024, 3, 1), date(2024, 3, 31))
        everything = await sheets_occurrences.find_by_window(
            date(2024, 3, 1), date(2024, 3, 31), include_deleted=True
        )
        assert len(active) == 1
        assert len(everything) == 2

    async def test_update_writes_row(self, sheets_occurrences, make_series):
        """Test an update is persisted to the sheet."""
        occ = Occurrence.from_series(make_series(), date(2024, 3, 15))
        await sheets_occurrences.insert_occurrence(occ)

        await sheets_occurrences.update_occurrence(
            occ.id, OccurrencePatch(is_paid=True, paid_date=date(2024, 3, 1))
        )

        stored = await sheets_occurrences.get_occurrence_by_id(occ.id)
        assert stored.is_paid is True
        assert stored.paid_date == date(2024, 3, 1)

    async def test_update_unknown(self, sheets_occurrences):
        """Test updating a missing row is not found."""
        with pytest.raises(OccurrenceNotFoundError):
            await sheets_occurrences.update_occurrence(uuid4(), OccurrencePatch(name="x"))

    async def test_ranged_writes(self, sheets_occurrences, make_series):
        """Test ranged update and delete count only matching active rows."""
        series = make_series()
        for month in (1, 2, 3):
            await sheets_occurrences.insert_occurrence(
                Occurrence.from_series(series, date(2024, month, 15))
            )

        updated = await sheets_occurrences.update_occurrences_from_date(
            series.id, date(2024, 2, 1), OccurrencePatch(name="Rent v2")
        )
        deleted = await sheets_occurrences.soft_delete_from_date(series.id, date(2024, 3, 15))

        assert updated == 2
        assert deleted == 1
        active = await sheets_occurrences.find_by_window(date(2024, 1, 1), date(2024, 12, 31))
        assert [(o.due_date.month, o.name) for o in active] == [(1, "Rent"), (2, "Rent v2")]


class TestSheetsAuditAndMaterialization:
    """Tests for the audit sheet and a full window pass."""

    async def test_audit_round_trip(self, sheets_client):
        """Test events appended to the sheet can be queried back."""
        storage = GoogleSheetsAuditStorage(sheets_client)
        correlation_id = uuid4()
        event = AuditEventBuilder.occurrence_deleted(
            occurrence_id=uuid4(),
            scope="future",
            affected=3,
            correlation_id=correlation_id,
        )

        await storage.append_event(event)

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_id for e in events] == [event.event_id]
        assert events[0].details == {"scope": "future", "affected": 3}

    async def test_materialize_window(self, sheets_series, sheets_occurrences, make_series):
        """Test a weekly series fills only the requested month."""
        await sheets_series.insert_series(
            make_series(anchor_date="2024-01-01", recurrence=Recurrence.WEEKLY)
        )
        service = MaterializationService(sheets_series, sheets_occurrences)

        result = await service.ensure_window("2024-03")
        again = await service.ensure_window("2024-03")

        assert result.inserted_count == 4
        assert again.inserted_count == 0
        assert all(o.due_date.month == 3 for o in again.occurrences)
