"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a backend because:
1. Users can view their bills directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions and no unique indexes: the (series_id, due_date)
  constraint is checked in Python immediately before each append, so
  two processes racing on the same sheet can still double-insert.
  Use the SQLite backend where concurrent writers are expected.
- Limited query capabilities (we filter in Python)
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billcycle.config import GoogleSheetsSettings
from billcycle.models.audit import AuditEvent
from billcycle.models.bill import (
    Occurrence,
    OccurrencePatch,
    OccurrenceStatus,
    Recurrence,
    Series,
)
from billcycle.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    OccurrenceNotFoundError,
    OccurrenceStorageInterface,
    SeriesNotFoundError,
    SeriesStorageInterface,
    StorageError,
)


# Column mappings for Series sheet
SERIES_COLUMNS = [
    "id",
    "name",
    "amount",
    "anchor_date",
    "recurrence",
    "deleted_from",
    "created_at",
]

# Column mappings for Occurrences sheet
OCCURRENCE_COLUMNS = [
    "id",
    "series_id",
    "name",
    "due_date",
    "amount",
    "is_paid",
    "paid_date",
    "status",
    "deleted",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Domain errors and connection setup failures are final, not transient
sheets_retry = retry(
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError, ConnectionError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: GoogleSheetsSettings):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings

    @sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_series_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.series_sheet_name, SERIES_COLUMNS, 1000
        )

    def get_occurrences_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.occurrences_sheet_name, OCCURRENCE_COLUMNS, 5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000
        )


class GoogleSheetsSeriesStorage(SeriesStorageInterface):
    """
    Google Sheets implementation of series storage.

    Series are stored as rows in a worksheet with one series per row.
    """

    def __init__(self, client: GoogleSheetsClient):
        self._client = client

    def _series_to_row(self, series: Series) -> list:
        return [
            str(series.id),
            series.name,
            str(series.amount),
            series.anchor_date,
            series.recurrence.value,
            series.deleted_from.isoformat() if series.deleted_from else "",
            series.created_at.isoformat(),
        ]

    def _row_to_series(self, row: list) -> Series:
        return Series(
            id=UUID(_safe_get(row, 0)),
            name=_safe_get(row, 1),
            amount=Decimal(_safe_get(row, 2)),
            anchor_date=_safe_get(row, 3),
            recurrence=Recurrence(_safe_get(row, 4)),
            deleted_from=date.fromisoformat(_safe_get(row, 5)) if _safe_get(row, 5) else None,
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
        )

    def _load(self) -> tuple[gspread.Worksheet, list[list]]:
        sheet = self._client.get_series_sheet()
        return sheet, sheet.get_all_values()

    @sheets_retry
    async def insert_series(self, series: Series) -> bool:
        try:
            sheet, all_rows = self._load()
            if any(row and row[0] == str(series.id) for row in all_rows[1:]):
                raise DuplicateError(f"Series already exists: {series.id}")
            sheet.append_row(self._series_to_row(series), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save series: {e}")

    async def get_series_by_id(self, series_id: UUID) -> Optional[Series]:
        try:
            _, all_rows = self._load()
            for row in all_rows[1:]:
                if row and row[0] == str(series_id):
                    return self._row_to_series(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get series: {e}")

    async def find_active_series(self, as_of: date) -> list[Series]:
        try:
            _, all_rows = self._load()
            series_list = []
            for row in all_rows[1:]:
                if not row or not row[0]:  # Skip empty rows
                    continue
                series = self._row_to_series(row)
                if series.is_active_after(as_of):
                    series_list.append(series)
            return series_list
        except Exception as e:
            raise StorageError(f"Failed to list series: {e}")

    @sheets_retry
    async def set_deleted_from(self, series_id: UUID, deleted_from: date) -> bool:
        try:
            sheet, all_rows = self._load()
            column = SERIES_COLUMNS.index("deleted_from") + 1
            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(series_id):
                    sheet.update_cell(idx, column, deleted_from.isoformat())
                    return True
            raise SeriesNotFoundError(f"Series not found: {series_id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update series: {e}")


class GoogleSheetsOccurrenceStorage(OccurrenceStorageInterface):
    """
    Google Sheets implementation of occurrence storage.

    Ranged updates are written back with a single batch_update call.
    """

    def __init__(self, client: GoogleSheetsClient):
        self._client = client

    def _occurrence_to_row(self, occurrence: Occurrence) -> list:
        return [
            str(occurrence.id),
            str(occurrence.series_id),
            occurrence.name,
            occurrence.due_date.isoformat(),
            str(occurrence.amount),
            str(occurrence.is_paid),
            occurrence.paid_date.isoformat() if occurrence.paid_date else "",
            occurrence.status.value,
            str(occurrence.deleted),
        ]

    def _row_to_occurrence(self, row: list) -> Occurrence:
        return Occurrence(
            id=UUID(_safe_get(row, 0)),
            series_id=UUID(_safe_get(row, 1)),
            name=_safe_get(row, 2),
            due_date=date.fromisoformat(_safe_get(row, 3)),
            amount=Decimal(_safe_get(row, 4)),
            is_paid=_safe_get(row, 5).lower() == "true",
            paid_date=date.fromisoformat(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            status=OccurrenceStatus(_safe_get(row, 7)),
            deleted=_safe_get(row, 8).lower() == "true",
        )

    def _load(self) -> tuple[gspread.Worksheet, list[tuple[int, Occurrence]]]:
        """Return the sheet and (sheet row number, occurrence) pairs."""
        sheet = self._client.get_occurrences_sheet()
        indexed = []
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0]:
                indexed.append((idx, self._row_to_occurrence(row)))
        return sheet, indexed

    def _write_rows(self, sheet: gspread.Worksheet, updates: list[tuple[int, Occurrence]]) -> None:
        if not updates:
            return
        sheet.batch_update(
            [
                {"range": f"A{idx}", "values": [self._occurrence_to_row(occurrence)]}
                for idx, occurrence in updates
            ],
            value_input_option="RAW",
        )

    @staticmethod
    def _has_active(indexed: list[tuple[int, Occurrence]], key: tuple, exclude: Optional[UUID] = None) -> bool:
        return any(
            not occurrence.deleted
            and occurrence.key == key
            and occurrence.id != exclude
            for _, occurrence in indexed
        )

    @sheets_retry
    async def insert_occurrence(self, occurrence: Occurrence) -> bool:
        try:
            sheet, indexed = self._load()
            if not occurrence.deleted and self._has_active(indexed, occurrence.key):
                raise DuplicateError(
                    f"Occurrence for series {occurrence.series_id} "
                    f"on {occurrence.due_date} already exists"
                )
            sheet.append_row(self._occurrence_to_row(occurrence), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save occurrence: {e}")

    async def get_occurrence_by_id(self, occurrence_id: UUID) -> Optional[Occurrence]:
        try:
            _, indexed = self._load()
            for _, occurrence in indexed:
                if occurrence.id == occurrence_id:
                    return occurrence
            return None
        except Exception as e:
            raise StorageError(f"Failed to get occurrence: {e}")

    async def find_by_window(
        self,
        start: date,
        end: date,
        include_deleted: bool = False,
    ) -> list[Occurrence]:
        try:
            _, indexed = self._load()
            matches = [
                occurrence
                for _, occurrence in indexed
                if start <= occurrence.due_date <= end
                and (include_deleted or not occurrence.deleted)
            ]
            matches.sort(key=lambda o: (o.due_date, o.name))
            return matches
        except Exception as e:
            raise StorageError(f"Failed to list occurrences: {e}")

    @sheets_retry
    async def update_occurrence(
        self,
        occurrence_id: UUID,
        patch: OccurrencePatch,
    ) -> Occurrence:
        try:
            sheet, indexed = self._load()
            for idx, occurrence in indexed:
                if occurrence.id != occurrence_id:
                    continue
                updated = occurrence.apply(patch)
                if (
                    not updated.deleted
                    and updated.due_date != occurrence.due_date
                    and self._has_active(indexed, updated.key, exclude=occurrence_id)
                ):
                    raise DuplicateError(
                        f"Occurrence for series {updated.series_id} "
                        f"on {updated.due_date} already exists"
                    )
                self._write_rows(sheet, [(idx, updated)])
                return updated
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update occurrence: {e}")

    @sheets_retry
    async def update_occurrences_from_date(
        self,
        series_id: UUID,
        from_date: date,
        patch: OccurrencePatch,
    ) -> int:
        patch = patch.without_due_date()
        if patch.is_empty:
            return 0
        try:
            sheet, indexed = self._load()
            updates = [
                (idx, occurrence.apply(patch))
                for idx, occurrence in indexed
                if occurrence.series_id == series_id
                and occurrence.due_date >= from_date
                and not occurrence.deleted
            ]
            self._write_rows(sheet, updates)
            return len(updates)
        except Exception as e:
            raise StorageError(f"Failed to update occurrences: {e}")

    @sheets_retry
    async def soft_delete_occurrence(self, occurrence_id: UUID) -> bool:
        try:
            sheet, indexed = self._load()
            for idx, occurrence in indexed:
                if occurrence.id == occurrence_id:
                    self._write_rows(sheet, [(idx, occurrence.model_copy(update={"deleted": True}))])
                    return True
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete occurrence: {e}")

    @sheets_retry
    async def soft_delete_from_date(self, series_id: UUID, from_date: date) -> int:
        try:
            sheet, indexed = self._load()
            updates = [
                (idx, occurrence.model_copy(update={"deleted": True}))
                for idx, occurrence in indexed
                if occurrence.series_id == series_id
                and occurrence.due_date >= from_date
                and not occurrence.deleted
            ]
            self._write_rows(sheet, updates)
            return len(updates)
        except Exception as e:
            raise StorageError(f"Failed to delete occurrences: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: GoogleSheetsClient):
        self._client = client

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if row and row[0]:
                events.append(AuditEvent.from_row(row))
        return events

    @sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._read_events()
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
