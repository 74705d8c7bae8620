"""
In-Memory Storage Implementation

Dict-backed stores for tests and throwaway sessions. They follow the same
contract as the durable backends, including the (series_id, due_date)
uniqueness constraint among non-deleted occurrences.

Records are copied on the way in and out so callers can never mutate
stored state by accident.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from billcycle.models.audit import AuditEvent
from billcycle.models.bill import Occurrence, OccurrencePatch, Series
from billcycle.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    OccurrenceNotFoundError,
    OccurrenceStorageInterface,
    SeriesNotFoundError,
    SeriesStorageInterface,
)


class InMemorySeriesStorage(SeriesStorageInterface):

    def __init__(self):
        self._rows: dict[UUID, Series] = {}

    async def insert_series(self, series: Series) -> bool:
        if series.id in self._rows:
            raise DuplicateError(f"Series already exists: {series.id}")
        self._rows[series.id] = series.model_copy()
        return True

    async def get_series_by_id(self, series_id: UUID) -> Optional[Series]:
        series = self._rows.get(series_id)
        return series.model_copy() if series else None

    async def find_active_series(self, as_of: date) -> list[Series]:
        return [
            series.model_copy()
            for series in self._rows.values()
            if series.is_active_after(as_of)
        ]

    async def set_deleted_from(self, series_id: UUID, deleted_from: date) -> bool:
        series = self._rows.get(series_id)
        if series is None:
            raise SeriesNotFoundError(f"Series not found: {series_id}")
        self._rows[series_id] = series.model_copy(update={"deleted_from": deleted_from})
        return True


class InMemoryOccurrenceStorage(OccurrenceStorageInterface):

    def __init__(self):
        self._rows: dict[UUID, Occurrence] = {}

    def _find_active(self, series_id: UUID, due_date: date) -> Optional[Occurrence]:
        for occurrence in self._rows.values():
            if (
                not occurrence.deleted
                and occurrence.series_id == series_id
                and occurrence.due_date == due_date
            ):
                return occurrence
        return None

    def _forward(self, series_id: UUID, from_date: date) -> list[Occurrence]:
        return [
            occurrence
            for occurrence in self._rows.values()
            if occurrence.series_id == series_id
            and occurrence.due_date >= from_date
            and not occurrence.deleted
        ]

    async def insert_occurrence(self, occurrence: Occurrence) -> bool:
        if occurrence.id in self._rows:
            raise DuplicateError(f"Occurrence already exists: {occurrence.id}")
        if not occurrence.deleted and self._find_active(*occurrence.key):
            raise DuplicateError(
                f"Occurrence for series {occurrence.series_id} "
                f"on {occurrence.due_date} already exists"
            )
        self._rows[occurrence.id] = occurrence.model_copy()
        return True

    async def get_occurrence_by_id(self, occurrence_id: UUID) -> Optional[Occurrence]:
        occurrence = self._rows.get(occurrence_id)
        return occurrence.model_copy() if occurrence else None

    async def find_by_window(
        self,
        start: date,
        end: date,
        include_deleted: bool = False,
    ) -> list[Occurrence]:
        matches = [
            occurrence.model_copy()
            for occurrence in self._rows.values()
            if start <= occurrence.due_date <= end
            and (include_deleted or not occurrence.deleted)
        ]
        matches.sort(key=lambda o: (o.due_date, o.name))
        return matches

    async def update_occurrence(
        self,
        occurrence_id: UUID,
        patch: OccurrencePatch,
    ) -> Occurrence:
        current = self._rows.get(occurrence_id)
        if current is None:
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")

        updated = current.apply(patch)
        if not updated.deleted and updated.due_date != current.due_date:
            clash = self._find_active(*updated.key)
            if clash is not None and clash.id != occurrence_id:
                raise DuplicateError(
                    f"Occurrence for series {updated.series_id} "
                    f"on {updated.due_date} already exists"
                )

        self._rows[occurrence_id] = updated
        return updated.model_copy()

    async def update_occurrences_from_date(
        self,
        series_id: UUID,
        from_date: date,
        patch: OccurrencePatch,
    ) -> int:
        if patch.is_empty:
            return 0
        targets = self._forward(series_id, from_date)
        for occurrence in targets:
            self._rows[occurrence.id] = occurrence.apply(patch)
        return len(targets)

    async def soft_delete_occurrence(self, occurrence_id: UUID) -> bool:
        current = self._rows.get(occurrence_id)
        if current is None:
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        self._rows[occurrence_id] = current.model_copy(update={"deleted": True})
        return True

    async def soft_delete_from_date(self, series_id: UUID, from_date: date) -> int:
        targets = self._forward(series_id, from_date)
        for occurrence in targets:
            self._rows[occurrence.id] = occurrence.model_copy(update={"deleted": True})
        return len(targets)


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
