"""
Core Data Models for Bill Cycle

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: A Series is the recurring definition, an Occurrence is one
dated, independently payable instance of it. Occurrences copy the series
name and amount when generated and are edited individually afterwards.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from billcycle.dates import (
    month_bounds,
    parse_calendar_date,
    parse_month_token,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Recurrence(str, Enum):
    """How often a series repeats."""
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class OccurrenceStatus(str, Enum):
    """
    Status of a single occurrence.

    Status is only ever set explicitly by the user. Nothing in the system
    moves an unpaid, past-due occurrence to MISSED on its own.
    """
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    MISSED = "missed"
    SKIPPED = "skipped"


class EditScope(str, Enum):
    """
    Reach of an update or delete.

    THIS touches one occurrence. FUTURE touches the occurrence and every
    later non-deleted occurrence of the same series, and closes the series
    for further generation.
    """
    THIS = "this"
    FUTURE = "future"


# =============================================================================
# CORE MODELS
# =============================================================================

class Series(BaseModel):
    """
    A recurring bill definition.

    `anchor_date` is kept exactly as stored (YYYY-MM-DD text). Requests are
    validated before a series is created, but rows loaded from storage are
    not re-validated, so the generator must cope with a bad anchor.

    `deleted_from` is the only field mutated after creation: occurrences on
    or after it are never generated.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique series ID"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name copied to each occurrence"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Base amount copied to each occurrence"
    )
    anchor_date: str = Field(
        ...,
        description="Due date of the first occurrence (YYYY-MM-DD)"
    )
    recurrence: Recurrence = Field(
        ...,
        description="Recurrence rule"
    )
    deleted_from: Optional[date] = Field(
        default=None,
        description="Occurrences on or after this date are closed"
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        description="When the series was created"
    )

    def is_active_after(self, day: date) -> bool:
        """True if the series can still produce occurrences after `day`."""
        return self.deleted_from is None or self.deleted_from > day


class Occurrence(BaseModel):
    """
    One concrete, dated instance of a series.

    Uniqueness: at most one non-deleted occurrence per (series_id, due_date).
    Storage enforces it; the materializer relies on it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique occurrence ID"
    )
    series_id: UUID = Field(
        ...,
        description="Series this occurrence belongs to"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    due_date: date
    amount: Decimal = Field(..., ge=0)
    is_paid: bool = False
    paid_date: Optional[date] = None
    status: OccurrenceStatus = OccurrenceStatus.UPCOMING
    deleted: bool = False

    @classmethod
    def from_series(cls, series: Series, due_date: date) -> "Occurrence":
        """Build a fresh, unpaid candidate for `series` due on `due_date`."""
        return cls(
            series_id=series.id,
            name=series.name,
            due_date=due_date,
            amount=series.amount,
        )

    @property
    def key(self) -> tuple[UUID, date]:
        """The (series_id, due_date) pair storage keeps unique."""
        return (self.series_id, self.due_date)

    def apply(self, patch: "OccurrencePatch") -> "Occurrence":
        """Return a copy with every supplied patch field applied."""
        return self.model_copy(update=patch.changes())


# =============================================================================
# EDIT MODELS
# =============================================================================

class OccurrencePatch(BaseModel):
    """
    Partial update for one or more occurrences.

    Merge rule: a field is applied if and only if it was supplied. Omitted
    fields keep the stored value. `paid_date` is the one field that may be
    supplied as None, which clears it; supplying None for any other field
    is rejected.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    is_paid: Optional[bool] = None
    paid_date: Optional[date] = None
    status: Optional[OccurrenceStatus] = None

    @model_validator(mode='after')
    def reject_cleared_required_fields(self) -> 'OccurrencePatch':
        for field_name in self.model_fields_set:
            if field_name != "paid_date" and getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be cleared")
        return self

    def changes(self) -> dict[str, Any]:
        """Supplied fields only, ready to merge into a stored record."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
        }

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set

    def changes_due_date(self, current: date) -> bool:
        return "due_date" in self.model_fields_set and self.due_date != current

    def without_due_date(self) -> "OccurrencePatch":
        """Copy of this patch with `due_date` dropped (for ranged updates)."""
        data = self.changes()
        data.pop("due_date", None)
        return OccurrencePatch(**data)


class CreateSeriesRequest(BaseModel):
    """Input for creating a new recurring bill."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    anchor_date: str = Field(
        ...,
        description="First due date (YYYY-MM-DD)"
    )
    recurrence: Recurrence

    @field_validator('anchor_date')
    @classmethod
    def validate_anchor_date(cls, v: str) -> str:
        return parse_calendar_date(v).isoformat()

    def to_series(self) -> Series:
        return Series(
            name=self.name,
            amount=self.amount,
            anchor_date=self.anchor_date,
            recurrence=self.recurrence,
        )


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in a request."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'forbidden')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


# =============================================================================
# RESULT MODELS
# =============================================================================

class MonthWindow(BaseModel):
    """A calendar month, the unit of querying and materialization."""
    model_config = ConfigDict(frozen=True)

    token: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    first_day: date
    last_day: date

    @classmethod
    def from_token(cls, token: str) -> "MonthWindow":
        """Parse a YYYY-MM token. Raises InvalidDateError on bad input."""
        year, month = parse_month_token(token)
        first_day, last_day = month_bounds(year, month)
        return cls(token=f"{year:04d}-{month:02d}", first_day=first_day, last_day=last_day)

    def contains(self, day: date) -> bool:
        return self.first_day <= day <= self.last_day


class WindowResult(BaseModel):
    """
    Outcome of materializing one month.

    `occurrences` is always re-read after inserts, so it holds both rows
    that already existed and rows inserted by this call.
    """
    window: MonthWindow
    occurrences: list[Occurrence] = Field(default_factory=list)
    inserted_count: int = Field(default=0, ge=0)
    duplicates_skipped: int = Field(default=0, ge=0)
    series_skipped: list[UUID] = Field(
        default_factory=list,
        description="Series whose anchor date could not be parsed"
    )


class SplitEditResult(BaseModel):
    """Outcome of a split-point update or delete."""
    scope: EditScope
    occurrence: Occurrence = Field(
        ...,
        description="The target occurrence as it stands after the edit"
    )
    affected_count: int = Field(
        ...,
        ge=0,
        description="How many occurrences were written"
    )
    deleted_from: Optional[date] = Field(
        default=None,
        description="New series boundary, set only for FUTURE scope"
    )
