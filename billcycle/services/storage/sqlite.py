"""
SQLite Storage Implementation

The default durable backend. The schema mirrors the two tables the
system needs - one row per series, one row per occurrence - and lets the
database enforce the occurrence uniqueness constraint with a partial
unique index over non-deleted rows.

Amounts are stored as TEXT so Decimal values survive the round trip.
Dates are stored as YYYY-MM-DD TEXT, which sorts and compares correctly.
"""

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

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
    OccurrenceNotFoundError,
    OccurrenceStorageInterface,
    SeriesNotFoundError,
    SeriesStorageInterface,
    StorageError,
)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS series (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    amount TEXT NOT NULL,
    anchor_date TEXT NOT NULL,
    recurrence TEXT NOT NULL CHECK (recurrence IN ('none', 'weekly', 'monthly', 'yearly')),
    deleted_from TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS occurrences (
    id TEXT PRIMARY KEY NOT NULL,
    series_id TEXT NOT NULL REFERENCES series(id),
    name TEXT NOT NULL,
    due_date TEXT NOT NULL,
    amount TEXT NOT NULL,
    is_paid INTEGER NOT NULL DEFAULT 0 CHECK (is_paid IN (0, 1)),
    paid_date TEXT,
    status TEXT NOT NULL CHECK (status IN ('upcoming', 'completed', 'missed', 'skipped')),
    deleted INTEGER NOT NULL DEFAULT 0 CHECK (deleted IN (0, 1))
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_occurrences_series_due
    ON occurrences (series_id, due_date) WHERE deleted = 0;

CREATE INDEX IF NOT EXISTS ix_occurrences_due_date
    ON occurrences (due_date);

CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY NOT NULL,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_message TEXT,
    is_user_action TEXT NOT NULL
);
"""

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


class SQLiteClient:
    """
    Owns the SQLite connection and the schema.

    One client is shared by the series, occurrence and audit stores so
    they see the same database.
    """

    def __init__(self, database_path: str):
        self._database_path = database_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = sqlite3.connect(self._database_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.executescript(SCHEMA_SQL)
                conn.commit()
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open SQLite database: {e}")
            self._conn = conn
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back and translate errors on failure."""
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateError(str(e))
            raise StorageError(f"Integrity error: {e}")
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"SQLite error: {e}")
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def _row_to_series(row: sqlite3.Row) -> Series:
    return Series(
        id=UUID(row["id"]),
        name=row["name"],
        amount=Decimal(row["amount"]),
        anchor_date=row["anchor_date"],
        recurrence=Recurrence(row["recurrence"]),
        deleted_from=date.fromisoformat(row["deleted_from"]) if row["deleted_from"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_occurrence(row: sqlite3.Row) -> Occurrence:
    return Occurrence(
        id=UUID(row["id"]),
        series_id=UUID(row["series_id"]),
        name=row["name"],
        due_date=date.fromisoformat(row["due_date"]),
        amount=Decimal(row["amount"]),
        is_paid=bool(row["is_paid"]),
        paid_date=date.fromisoformat(row["paid_date"]) if row["paid_date"] else None,
        status=OccurrenceStatus(row["status"]),
        deleted=bool(row["deleted"]),
    )


def _to_column(field_name: str, value):
    """Convert one patch value to its column representation."""
    if value is None:
        return None
    if field_name in ("due_date", "paid_date"):
        return value.isoformat()
    if field_name == "amount":
        return str(value)
    if field_name == "is_paid":
        return 1 if value else 0
    if field_name == "status":
        return OccurrenceStatus(value).value
    return value


def _set_clause(patch: OccurrencePatch) -> tuple[str, list]:
    changes = patch.changes()
    # Column names come from the model fields, never from user input
    names = sorted(name for name in changes if name in OCCURRENCE_COLUMNS)
    clause = ", ".join(f"{name} = ?" for name in names)
    params = [_to_column(name, changes[name]) for name in names]
    return clause, params


class SQLiteSeriesStorage(SeriesStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def insert_series(self, series: Series) -> bool:
        with self._client.transaction() as conn:
            conn.execute(
                """
                INSERT INTO series (id, name, amount, anchor_date, recurrence, deleted_from, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(series.id),
                    series.name,
                    str(series.amount),
                    series.anchor_date,
                    series.recurrence.value,
                    series.deleted_from.isoformat() if series.deleted_from else None,
                    series.created_at.isoformat(),
                ),
            )
        return True

    async def get_series_by_id(self, series_id: UUID) -> Optional[Series]:
        with self._client.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM series WHERE id = ?", (str(series_id),)
            ).fetchone()
        return _row_to_series(row) if row else None

    async def find_active_series(self, as_of: date) -> list[Series]:
        with self._client.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM series WHERE deleted_from IS NULL OR deleted_from > ?",
                (as_of.isoformat(),),
            ).fetchall()
        return [_row_to_series(row) for row in rows]

    async def set_deleted_from(self, series_id: UUID, deleted_from: date) -> bool:
        with self._client.transaction() as conn:
            cursor = conn.execute(
                "UPDATE series SET deleted_from = ? WHERE id = ?",
                (deleted_from.isoformat(), str(series_id)),
            )
            if cursor.rowcount == 0:
                raise SeriesNotFoundError(f"Series not found: {series_id}")
        return True


class SQLiteOccurrenceStorage(OccurrenceStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def insert_occurrence(self, occurrence: Occurrence) -> bool:
        with self._client.transaction() as conn:
            conn.execute(
                """
                INSERT INTO occurrences (id, series_id, name, due_date, amount, is_paid, paid_date, status, deleted)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(occurrence.id),
                    str(occurrence.series_id),
                    occurrence.name,
                    occurrence.due_date.isoformat(),
                    str(occurrence.amount),
                    1 if occurrence.is_paid else 0,
                    occurrence.paid_date.isoformat() if occurrence.paid_date else None,
                    occurrence.status.value,
                    1 if occurrence.deleted else 0,
                ),
            )
        return True

    async def get_occurrence_by_id(self, occurrence_id: UUID) -> Optional[Occurrence]:
        with self._client.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM occurrences WHERE id = ?", (str(occurrence_id),)
            ).fetchone()
        return _row_to_occurrence(row) if row else None

    async def find_by_window(
        self,
        start: date,
        end: date,
        include_deleted: bool = False,
    ) -> list[Occurrence]:
        sql = "SELECT * FROM occurrences WHERE due_date BETWEEN ? AND ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        sql += " ORDER BY due_date, name"
        with self._client.transaction() as conn:
            rows = conn.execute(sql, (start.isoformat(), end.isoformat())).fetchall()
        return [_row_to_occurrence(row) for row in rows]

    async def update_occurrence(
        self,
        occurrence_id: UUID,
        patch: OccurrencePatch,
    ) -> Occurrence:
        clause, params = _set_clause(patch)
        with self._client.transaction() as conn:
            if clause:
                cursor = conn.execute(
                    f"UPDATE occurrences SET {clause} WHERE id = ?",
                    (*params, str(occurrence_id)),
                )
                if cursor.rowcount == 0:
                    raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
            row = conn.execute(
                "SELECT * FROM occurrences WHERE id = ?", (str(occurrence_id),)
            ).fetchone()
        if row is None:
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        return _row_to_occurrence(row)

    async def update_occurrences_from_date(
        self,
        series_id: UUID,
        from_date: date,
        patch: OccurrencePatch,
    ) -> int:
        clause, params = _set_clause(patch.without_due_date())
        if not clause:
            return 0
        with self._client.transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE occurrences SET {clause}
                WHERE series_id = ? AND due_date >= ? AND deleted = 0
                """,
                (*params, str(series_id), from_date.isoformat()),
            )
        return cursor.rowcount

    async def soft_delete_occurrence(self, occurrence_id: UUID) -> bool:
        with self._client.transaction() as conn:
            cursor = conn.execute(
                "UPDATE occurrences SET deleted = 1 WHERE id = ?",
                (str(occurrence_id),),
            )
            if cursor.rowcount == 0:
                raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        return True

    async def soft_delete_from_date(self, series_id: UUID, from_date: date) -> int:
        with self._client.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE occurrences SET deleted = 1
                WHERE series_id = ? AND due_date >= ? AND deleted = 0
                """,
                (str(series_id), from_date.isoformat()),
            )
        return cursor.rowcount


class SQLiteAuditStorage(AuditStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def append_event(self, event: AuditEvent) -> bool:
        with self._client.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_log VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                event.to_row(),
            )
        return True

    def _select(self, where: str, params: tuple, order: str, limit: Optional[int] = None) -> list[AuditEvent]:
        sql = f"SELECT * FROM audit_log {where} ORDER BY timestamp {order}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        with self._client.transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [AuditEvent.from_row([value or "" for value in tuple(row)]) for row in rows]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._select("WHERE correlation_id = ?", (str(correlation_id),), "ASC")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._select(
            "WHERE entity_type = ? AND entity_id = ?",
            (entity_type, str(entity_id)),
            "ASC",
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._select("", (), "DESC", limit=limit)
