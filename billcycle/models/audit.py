"""
Audit Models for Bill Cycle

Every mutation of series and occurrences is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when things go wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Series lifecycle
    SERIES_CREATED = "series_created"
    SERIES_BOUNDARY_SET = "series_boundary_set"

    # Materialization
    OCCURRENCES_MATERIALIZED = "occurrences_materialized"
    GENERATION_SKIPPED = "generation_skipped"

    # Split edits
    OCCURRENCE_UPDATED = "occurrence_updated"
    OCCURRENCE_DELETED = "occurrence_deleted"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # System events
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'series', 'occurrence', 'window')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one request)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> list:
        """
        Convert to a flat row for tabular storage (sheets, SQLite).

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]

    @classmethod
    def from_row(cls, row: list) -> "AuditEvent":
        """Inverse of to_row. Missing trailing cells read as empty."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return cls(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.series_created(series_id, name, ...)
        event = AuditEventBuilder.occurrence_deleted(occurrence_id, "future", ...)
    """

    @staticmethod
    def series_created(
        series_id: UUID,
        name: str,
        recurrence: str,
        anchor_date: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERIES_CREATED,
            entity_type="series",
            entity_id=series_id,
            correlation_id=correlation_id,
            description=f"Series created: {name} ({recurrence}) from {anchor_date}",
            details={
                "name": name,
                "recurrence": recurrence,
                "anchor_date": anchor_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def series_boundary_set(
        series_id: UUID,
        deleted_from: date,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERIES_BOUNDARY_SET,
            entity_type="series",
            entity_id=series_id,
            correlation_id=correlation_id,
            description=f"Series closed from {deleted_from.isoformat()} ({reason})",
            details={
                "deleted_from": deleted_from.isoformat(),
                "reason": reason,
            },
        )

    @staticmethod
    def occurrences_materialized(
        month: str,
        inserted: int,
        duplicates_skipped: int,
        total: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCES_MATERIALIZED,
            entity_type="window",
            correlation_id=correlation_id,
            description=f"Window {month}: {inserted} new, {total} total",
            details={
                "month": month,
                "inserted": inserted,
                "duplicates_skipped": duplicates_skipped,
                "total": total,
            },
        )

    @staticmethod
    def generation_skipped(
        series_id: UUID,
        anchor_date: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="series",
            entity_id=series_id,
            correlation_id=correlation_id,
            description="Generation skipped: anchor date could not be parsed",
            details={
                "anchor_date": anchor_date,
            },
        )

    @staticmethod
    def occurrence_updated(
        occurrence_id: UUID,
        scope: str,
        fields: list[str],
        affected: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_UPDATED,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Occurrence updated ({scope}): {affected} row(s)",
            details={
                "scope": scope,
                "fields": sorted(fields),
                "affected": affected,
            },
            is_user_action=True,
        )

    @staticmethod
    def occurrence_deleted(
        occurrence_id: UUID,
        scope: str,
        affected: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_DELETED,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Occurrence deleted ({scope}): {affected} row(s)",
            details={
                "scope": scope,
                "affected": affected,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issue(s)",
            details={
                "operation": operation,
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage failure during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )
