"""Services package."""

from billcycle.services.generator import generate_occurrences, next_due_date
from billcycle.services.storage import (
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

__all__ = [
    # Generation
    "generate_occurrences",
    "next_due_date",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "OccurrenceNotFoundError",
    "OccurrenceStorageInterface",
    "SeriesNotFoundError",
    "SeriesStorageInterface",
    "StorageError",
]
