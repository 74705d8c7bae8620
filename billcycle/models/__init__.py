"""
Data Models Package

This package contains all Pydantic models used in the Bill Cycle system.
All data flowing through the system must conform to these schemas.
"""

from billcycle.models.bill import (
    CreateSeriesRequest,
    EditScope,
    MonthWindow,
    Occurrence,
    OccurrencePatch,
    OccurrenceStatus,
    Recurrence,
    Series,
    SplitEditResult,
    ValidationIssue,
    WindowResult,
)
from billcycle.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Bill models
    "CreateSeriesRequest",
    "EditScope",
    "MonthWindow",
    "Occurrence",
    "OccurrencePatch",
    "OccurrenceStatus",
    "Recurrence",
    "Series",
    "SplitEditResult",
    "ValidationIssue",
    "WindowResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
