"""
Audit Logger

DESIGN DECISION: Every mutation of series and occurrences is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A record of which edits closed which series

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the request if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from billcycle.models.audit import AuditEvent, AuditEventBuilder
from billcycle.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger().setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("billcycle.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_series_created(
        self,
        series_id: UUID,
        name: str,
        recurrence: str,
        anchor_date: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.series_created(
            series_id=series_id,
            name=name,
            recurrence=recurrence,
            anchor_date=anchor_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_boundary_set(
        self,
        series_id: UUID,
        deleted_from: date,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.series_boundary_set(
            series_id=series_id,
            deleted_from=deleted_from,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_window_materialized(
        self,
        month: str,
        inserted: int,
        duplicates_skipped: int,
        total: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.occurrences_materialized(
            month=month,
            inserted=inserted,
            duplicates_skipped=duplicates_skipped,
            total=total,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_generation_skipped(
        self,
        series_id: UUID,
        anchor_date: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.generation_skipped(
            series_id=series_id,
            anchor_date=anchor_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_occurrence_updated(
        self,
        occurrence_id: UUID,
        scope: str,
        fields: list[str],
        affected: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.occurrence_updated(
            occurrence_id=occurrence_id,
            scope=scope,
            fields=fields,
            affected=affected,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_occurrence_deleted(
        self,
        occurrence_id: UUID,
        scope: str,
        affected: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.occurrence_deleted(
            occurrence_id=occurrence_id,
            scope=scope,
            affected=affected,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.validation_failed(
            operation=operation,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it through all
    subsequent operations.
    """
    return uuid4()
