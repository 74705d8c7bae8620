"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLite is the default backend; in-memory and Google Sheets backends follow
the same interfaces and are swappable.
"""

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
from billcycle.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsOccurrenceStorage,
    GoogleSheetsSeriesStorage,
)
from billcycle.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryOccurrenceStorage,
    InMemorySeriesStorage,
)
from billcycle.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteOccurrenceStorage,
    SQLiteSeriesStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "OccurrenceStorageInterface",
    "SeriesStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "OccurrenceNotFoundError",
    "SeriesNotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsOccurrenceStorage",
    "GoogleSheetsSeriesStorage",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryOccurrenceStorage",
    "InMemorySeriesStorage",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteOccurrenceStorage",
    "SQLiteSeriesStorage",
]
