"""
Split-Edit Controller

Edits are keyed by one occurrence and a scope:

THIS   - only the target occurrence changes.
FUTURE - the target and every later active occurrence of the same series
         change, and the series is closed just after the target so the
         generator never produces rows from the stale definition again.

History is never rewritten: occurrences before the target are left
alone, and deletes are soft (the row stays with deleted=True).

IMPORTANT: Every check runs before the first write. A FUTURE-scope
update that moves the due date is rejected outright; shifting a whole
suffix would need every date re-derived and could collide with the
(series_id, due_date) uniqueness constraint.

Split edits are not retried automatically. A retry after a partial
failure could run against a boundary that has since moved.
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID

import structlog

from billcycle.audit import AuditLogger, create_correlation_id
from billcycle.dates import add_days
from billcycle.models.bill import (
    EditScope,
    Occurrence,
    OccurrencePatch,
    SplitEditResult,
)
from billcycle.services.storage import (
    OccurrenceNotFoundError,
    OccurrenceStorageInterface,
    SeriesStorageInterface,
)
from billcycle.validation import RequestValidator


logger = structlog.get_logger(__name__)


class SplitEditController:
    """
    Applies THIS / FUTURE scoped updates and deletes.

    Usage:
        controller = SplitEditController(series_storage, occurrence_storage)
        result = await controller.update(occurrence_id, patch, EditScope.FUTURE)
    """

    def __init__(
        self,
        series_storage: SeriesStorageInterface,
        occurrence_storage: OccurrenceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self._series_storage = series_storage
        self._occurrence_storage = occurrence_storage
        self._audit_logger = audit_logger
        self._validator = validator or RequestValidator()

    async def _load_target(self, occurrence_id: UUID) -> Occurrence:
        """Fetch the occurrence being edited. Deleted rows count as missing."""
        target = await self._occurrence_storage.get_occurrence_by_id(occurrence_id)
        if target is None or target.deleted:
            raise OccurrenceNotFoundError(f"Occurrence not found: {occurrence_id}")
        return target

    async def _close_series(
        self,
        target: Occurrence,
        reason: str,
        correlation_id: UUID,
    ) -> date:
        """Set the series boundary to the day after the target's due date."""
        boundary = add_days(target.due_date, 1)
        await self._series_storage.set_deleted_from(target.series_id, boundary)

        logger.info(
            "series_boundary_set",
            series_id=str(target.series_id),
            deleted_from=boundary.isoformat(),
            reason=reason,
        )
        if self._audit_logger:
            await self._audit_logger.log_boundary_set(
                series_id=target.series_id,
                deleted_from=boundary,
                reason=reason,
                correlation_id=correlation_id,
            )
        return boundary

    async def update(
        self,
        occurrence_id: UUID,
        patch: OccurrencePatch,
        scope: Union[str, EditScope],
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """
        Update an occurrence, or it and all later ones in its series.

        Only supplied patch fields are written. For FUTURE scope the patch
        is applied to every active occurrence of the series due on or
        after the target, and the series boundary becomes target + 1 day.

        Raises:
            BillValidationError: Invalid scope, or a FUTURE-scope patch
                that changes the due date
            OccurrenceNotFoundError: Unknown or deleted occurrence
            DuplicateError: A THIS-scope due date move collides with
                another active occurrence of the series
        """
        correlation_id = correlation_id or create_correlation_id()
        scope = self._validator.validate_scope(scope)
        target = await self._load_target(occurrence_id)

        if scope == EditScope.THIS:
            updated = await self._occurrence_storage.update_occurrence(occurrence_id, patch)
            affected = 1
            boundary = None
        else:
            if patch.changes_due_date(target.due_date):
                raise self._validator.forbid_future_due_date_change()

            affected = await self._occurrence_storage.update_occurrences_from_date(
                target.series_id,
                target.due_date,
                patch.without_due_date(),
            )
            boundary = await self._close_series(target, "future_update", correlation_id)
            updated = await self._occurrence_storage.get_occurrence_by_id(occurrence_id)

        logger.info(
            "occurrence_updated",
            occurrence_id=str(occurrence_id),
            scope=scope.value,
            fields=sorted(patch.changes()),
            affected=affected,
        )
        if self._audit_logger:
            await self._audit_logger.log_occurrence_updated(
                occurrence_id=occurrence_id,
                scope=scope.value,
                fields=list(patch.changes()),
                affected=affected,
                correlation_id=correlation_id,
            )

        return SplitEditResult(
            scope=scope,
            occurrence=updated,
            affected_count=affected,
            deleted_from=boundary,
        )

    async def delete(
        self,
        occurrence_id: UUID,
        scope: Union[str, EditScope],
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """
        Soft-delete an occurrence, or it and all later ones in its series.

        FUTURE scope also closes the series at target + 1 day, which
        stops any further generation for it.

        Raises:
            BillValidationError: Invalid scope
            OccurrenceNotFoundError: Unknown or already deleted occurrence
        """
        correlation_id = correlation_id or create_correlation_id()
        scope = self._validator.validate_scope(scope)
        target = await self._load_target(occurrence_id)

        if scope == EditScope.THIS:
            await self._occurrence_storage.soft_delete_occurrence(occurrence_id)
            affected = 1
            boundary = None
        else:
            affected = await self._occurrence_storage.soft_delete_from_date(
                target.series_id,
                target.due_date,
            )
            boundary = await self._close_series(target, "future_delete", correlation_id)

        logger.info(
            "occurrence_deleted",
            occurrence_id=str(occurrence_id),
            scope=scope.value,
            affected=affected,
        )
        if self._audit_logger:
            await self._audit_logger.log_occurrence_deleted(
                occurrence_id=occurrence_id,
                scope=scope.value,
                affected=affected,
                correlation_id=correlation_id,
            )

        return SplitEditResult(
            scope=scope,
            occurrence=target.model_copy(update={"deleted": True}),
            affected_count=affected,
            deleted_from=boundary,
        )
