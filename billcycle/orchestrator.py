"""
Main Orchestrator for Bill Cycle

This module ties together all the components and defines the
request-level flows:
1. Create series (validate → insert series → materialize first months)
2. Get window (validate month → materialize → return active occurrences)
3. Update / delete occurrence (validate → split edit)
4. Mark paid / skip (THIS-scope updates with a fixed patch)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written until the whole request has been validated
- Storage is passed in explicitly; there is no module-level state
- Every step is audited

This is the "glue" that translates component errors into the three
outcomes a caller sees: rejected (BillValidationError), missing
(NotFoundError) and conflicting (ConflictError).
"""

from datetime import date
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from billcycle.audit import AuditLogger, configure_logging, create_correlation_id
from billcycle.config import Settings, get_settings
from billcycle.models.bill import (
    EditScope,
    Occurrence,
    OccurrencePatch,
    OccurrenceStatus,
    Series,
    SplitEditResult,
    WindowResult,
)
from billcycle.services.generator import generate_occurrences
from billcycle.services.materialization import MaterializationService
from billcycle.services.split_edit import SplitEditController
from billcycle.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsOccurrenceStorage,
    GoogleSheetsSeriesStorage,
    InMemoryAuditStorage,
    InMemoryOccurrenceStorage,
    InMemorySeriesStorage,
    NotFoundError,
    OccurrenceStorageInterface,
    SeriesStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteOccurrenceStorage,
    SQLiteSeriesStorage,
    StorageError,
)
from billcycle.validation import BillValidationError, RequestValidator


logger = structlog.get_logger(__name__)


class ConflictError(Exception):
    """A write would break the one-active-occurrence-per-date rule."""
    pass


class BillCycleFlow:
    """
    Request-level entry point for series and occurrences.

    Each method is one request: it gets its own correlation id (unless
    the caller passes one), validates the whole input first, then calls
    into the materializer or split-edit controller.
    """

    def __init__(
        self,
        series_storage: SeriesStorageInterface,
        occurrence_storage: OccurrenceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
        initial_horizon_months: int = 12,
    ):
        self._series_storage = series_storage
        self._occurrence_storage = occurrence_storage
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or RequestValidator()
        self._initial_horizon_months = initial_horizon_months

        self._materializer = MaterializationService(
            series_storage,
            occurrence_storage,
            audit_logger=self._audit_logger,
        )
        self._split_edit = SplitEditController(
            series_storage,
            occurrence_storage,
            audit_logger=self._audit_logger,
            validator=self._validator,
        )

    async def _rejected(
        self,
        operation: str,
        error: BillValidationError,
        correlation_id: UUID,
    ) -> None:
        await self._audit_logger.log_validation_failed(
            operation=operation,
            issues=[issue.model_dump() for issue in error.issues],
            correlation_id=correlation_id,
        )

    async def _storage_failed(
        self,
        operation: str,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        # Not-found and duplicates are outcomes, not failures
        if isinstance(error, (NotFoundError, DuplicateError)):
            return
        await self._audit_logger.log_storage_error(
            operation=operation,
            error_message=str(error),
            correlation_id=correlation_id,
        )

    async def create_series(
        self,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Series, list[Occurrence]]:
        """
        Create a series and materialize its first months.

        Returns:
            (series, occurrences inserted for the initial horizon)

        Raises:
            BillValidationError: Missing or malformed fields
            ConflictError: The series or one of its rows already exists
            StorageError: Any other storage failure
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            request = self._validator.validate_create_series(data)
        except BillValidationError as e:
            await self._rejected("create_series", e, correlation_id)
            raise

        series = request.to_series()

        try:
            await self._series_storage.insert_series(series)
        except DuplicateError as e:
            raise ConflictError(f"Series already exists: {series.id}") from e
        except StorageError as e:
            await self._storage_failed("create_series", e, correlation_id)
            raise

        await self._audit_logger.log_series_created(
            series_id=series.id,
            name=series.name,
            recurrence=series.recurrence.value,
            anchor_date=series.anchor_date,
            correlation_id=correlation_id,
        )

        candidates = generate_occurrences(series, self._initial_horizon_months)
        try:
            inserted, duplicates = await self._materializer.persist_candidates(candidates)
        except StorageError as e:
            await self._storage_failed("create_series", e, correlation_id)
            raise

        logger.info(
            "series_created",
            series_id=str(series.id),
            recurrence=series.recurrence.value,
            inserted=len(inserted),
            duplicates_skipped=duplicates,
        )
        return series, inserted

    async def materialize_window(
        self,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> WindowResult:
        """
        Materialize a YYYY-MM month and return the full outcome.

        Raises:
            BillValidationError: Missing or malformed month token
            StorageError: Any storage failure other than a duplicate
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            window = self._validator.validate_month(month)
        except BillValidationError as e:
            await self._rejected("get_window", e, correlation_id)
            raise

        try:
            return await self._materializer.ensure_window(window.token, correlation_id)
        except StorageError as e:
            await self._storage_failed("get_window", e, correlation_id)
            raise

    async def get_window(
        self,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Occurrence]:
        """Active occurrences due in a YYYY-MM month, materializing as needed."""
        result = await self.materialize_window(month, correlation_id)
        return result.occurrences

    async def update_occurrence(
        self,
        occurrence_id: Union[str, UUID],
        fields: Union[dict[str, Any], OccurrencePatch],
        scope: Union[str, EditScope],
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """
        Update one occurrence (scope 'this') or it and all later ones
        in its series (scope 'future').

        Raises:
            BillValidationError: Bad id, fields or scope, or a due date
                change with scope 'future'
            OccurrenceNotFoundError: Unknown or deleted occurrence
            ConflictError: A 'this' due date move hits an existing date
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            occurrence_id = self._validator.validate_id(occurrence_id, "occurrence_id")
            self._validator.validate_scope(scope)
            patch = self._validator.validate_patch(fields)
            return await self._split_edit.update(occurrence_id, patch, scope, correlation_id)
        except BillValidationError as e:
            await self._rejected("update_occurrence", e, correlation_id)
            raise
        except DuplicateError as e:
            raise ConflictError(
                "Updating this occurrence would create duplicate due dates"
            ) from e
        except StorageError as e:
            await self._storage_failed("update_occurrence", e, correlation_id)
            raise

    async def delete_occurrence(
        self,
        occurrence_id: Union[str, UUID],
        scope: Union[str, EditScope],
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """
        Soft-delete one occurrence (scope 'this') or it and all later
        ones in its series (scope 'future').

        Raises:
            BillValidationError: Bad id or scope
            OccurrenceNotFoundError: Unknown or already deleted occurrence
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            occurrence_id = self._validator.validate_id(occurrence_id, "occurrence_id")
            return await self._split_edit.delete(occurrence_id, scope, correlation_id)
        except BillValidationError as e:
            await self._rejected("delete_occurrence", e, correlation_id)
            raise
        except StorageError as e:
            await self._storage_failed("delete_occurrence", e, correlation_id)
            raise

    async def mark_paid(
        self,
        occurrence_id: Union[str, UUID],
        paid_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """Mark a single occurrence paid (defaults to today)."""
        patch = OccurrencePatch(
            is_paid=True,
            paid_date=paid_date or date.today(),
            status=OccurrenceStatus.COMPLETED,
        )
        return await self.update_occurrence(
            occurrence_id, patch, EditScope.THIS, correlation_id
        )

    async def skip_occurrence(
        self,
        occurrence_id: Union[str, UUID],
        correlation_id: Optional[UUID] = None,
    ) -> SplitEditResult:
        """Mark a single occurrence skipped. It stays visible in its month."""
        patch = OccurrencePatch(status=OccurrenceStatus.SKIPPED)
        return await self.update_occurrence(
            occurrence_id, patch, EditScope.THIS, correlation_id
        )


def create_storage(
    settings: Settings,
) -> tuple[SeriesStorageInterface, OccurrenceStorageInterface, AuditStorageInterface]:
    """Build the three stores for the configured backend."""
    backend = settings.app.storage_backend

    if backend == "memory":
        return (
            InMemorySeriesStorage(),
            InMemoryOccurrenceStorage(),
            InMemoryAuditStorage(),
        )

    if backend == "google_sheets":
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        return (
            GoogleSheetsSeriesStorage(sheets_client),
            GoogleSheetsOccurrenceStorage(sheets_client),
            GoogleSheetsAuditStorage(sheets_client),
        )

    sqlite_client = SQLiteClient(settings.sqlite.database_path)
    return (
        SQLiteSeriesStorage(sqlite_client),
        SQLiteOccurrenceStorage(sqlite_client),
        SQLiteAuditStorage(sqlite_client),
    )


def create_app_components(
    settings: Optional[Settings] = None,
) -> BillCycleFlow:
    """
    Factory function to create the application flow.

    Args:
        settings: Settings to build from. Defaults to get_settings().

    Returns:
        A BillCycleFlow wired to the configured storage backend
    """
    settings = settings or get_settings()
    app_settings = settings.app

    configure_logging(app_settings.log_level)

    series_storage, occurrence_storage, audit_storage = create_storage(settings)
    audit_logger = AuditLogger(audit_storage)

    logger.info(
        "components_created",
        storage_backend=app_settings.storage_backend,
        environment=app_settings.app_environment,
    )

    return BillCycleFlow(
        series_storage=series_storage,
        occurrence_storage=occurrence_storage,
        audit_logger=audit_logger,
        initial_horizon_months=app_settings.initial_horizon_months,
    )
