"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Swap SQLite for Google Sheets (or anything else) without touching logic
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations materialization and split edits need.

CONCURRENCY: the (series_id, due_date) uniqueness constraint among
non-deleted occurrences is the only guard against two requests
materializing the same occurrence. Every implementation MUST enforce it
in insert_occurrence and update_occurrence by raising DuplicateError.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from billcycle.models.audit import AuditEvent
from billcycle.models.bill import Occurrence, OccurrencePatch, Series


class SeriesStorageInterface(ABC):
    """
    Abstract interface for series storage.

    Series are never physically deleted. The deleted_from boundary is the
    only field changed after insert.
    """

    @abstractmethod
    async def insert_series(self, series: Series) -> bool:
        """
        Save a new series.

        Raises:
            DuplicateError: If a series with this ID exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_series_by_id(self, series_id: UUID) -> Optional[Series]:
        """Retrieve a series by ID, None if missing."""
        pass

    @abstractmethod
    async def find_active_series(self, as_of: date) -> list[Series]:
        """
        List series still producing occurrences after a date.

        Args:
            as_of: Series whose deleted_from is None or strictly after
                   this date are returned

        Returns:
            Matching series
        """
        pass

    @abstractmethod
    async def set_deleted_from(self, series_id: UUID, deleted_from: date) -> bool:
        """
        Set the series boundary.

        Raises:
            SeriesNotFoundError: If the series doesn't exist
        """
        pass


class OccurrenceStorageInterface(ABC):
    """
    Abstract interface for occurrence storage.

    Occurrences are soft deleted only. Ranged operations never touch rows
    that are already deleted.
    """

    @abstractmethod
    async def insert_occurrence(self, occurrence: Occurrence) -> bool:
        """
        Save a new occurrence.

        Raises:
            DuplicateError: If a non-deleted occurrence with the same
                            (series_id, due_date) already exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_occurrence_by_id(self, occurrence_id: UUID) -> Optional[Occurrence]:
        """Retrieve an occurrence by ID (deleted or not), None if missing."""
        pass

    @abstractmethod
    async def find_by_window(
        self,
        start: date,
        end: date,
        include_deleted: bool = False,
    ) -> list[Occurrence]:
        """
        List occurrences with start <= due_date <= end.

        Args:
            start: First day, inclusive
            end: Last day, inclusive
            include_deleted: Also return soft-deleted rows

        Returns:
            Occurrences ordered by due date
        """
        pass

    @abstractmethod
    async def update_occurrence(
        self,
        occurrence_id: UUID,
        patch: OccurrencePatch,
    ) -> Occurrence:
        """
        Apply a patch to one occurrence.

        Returns:
            The occurrence after the update

        Raises:
            OccurrenceNotFoundError: If the occurrence doesn't exist
            DuplicateError: If a due date change collides with another
                            non-deleted occurrence of the same series
        """
        pass

    @abstractmethod
    async def update_occurrences_from_date(
        self,
        series_id: UUID,
        from_date: date,
        patch: OccurrencePatch,
    ) -> int:
        """
        Apply a patch to every non-deleted occurrence of a series due on or
        after from_date. The patch must not carry a due date.

        Returns:
            Number of occurrences updated
        """
        pass

    @abstractmethod
    async def soft_delete_occurrence(self, occurrence_id: UUID) -> bool:
        """
        Mark one occurrence deleted.

        Raises:
            OccurrenceNotFoundError: If the occurrence doesn't exist
        """
        pass

    @abstractmethod
    async def soft_delete_from_date(self, series_id: UUID, from_date: date) -> int:
        """
        Mark every non-deleted occurrence of a series due on or after
        from_date as deleted.

        Returns:
            Number of occurrences deleted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for one request, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class SeriesNotFoundError(NotFoundError):
    """No series with the given ID."""
    pass


class OccurrenceNotFoundError(NotFoundError):
    """No occurrence with the given ID."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
