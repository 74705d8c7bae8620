"""
Request Validation

DESIGN DECISION: Every request is validated in full before anything is
written. A rejected request leaves storage untouched.

Validation happens in two layers:

LAYER 1 - SHAPE:
- Required field presence
- Types and formats (YYYY-MM-DD dates, YYYY-MM months)
- Allowed values (recurrence, status, scope)
Handled by the pydantic request models; their errors are translated
into ValidationIssue objects here.

LAYER 2 - RULES THAT NEED THE STORED RECORD:
- A FUTURE-scope update may not move the due date
These run in the split-edit controller once the target is loaded, but
raise the same BillValidationError.

IMPORTANT: Validation NEVER silently fixes issues. It reports them.
"""

from typing import Any, Union
from uuid import UUID

from pydantic import ValidationError

from billcycle.dates import InvalidDateError
from billcycle.models.bill import (
    CreateSeriesRequest,
    EditScope,
    MonthWindow,
    OccurrencePatch,
    ValidationIssue,
)


class BillValidationError(Exception):
    """
    A request was rejected before any write.

    Carries every issue found, not just the first.
    """

    def __init__(self, message: str, issues: list[ValidationIssue]):
        super().__init__(message)
        self.message = message
        self.issues = issues

    @classmethod
    def single(cls, field: str, issue_type: str, message: str) -> "BillValidationError":
        return cls(message, [ValidationIssue(field=field, issue_type=issue_type, message=message)])

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "issues": [issue.model_dump() for issue in self.issues],
        }


def _issues_from_pydantic(error: ValidationError) -> list[ValidationIssue]:
    issues = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"]) or "request"
        if err["type"] == "missing":
            message = f"Missing required field: {field}"
        else:
            # Custom ValueErrors are prefixed by pydantic, strip it
            message = str(err["msg"]).removeprefix("Value error, ")
        issues.append(ValidationIssue(
            field=field,
            issue_type=err["type"],
            message=message,
        ))
    return issues


def _summarize(operation: str, issues: list[ValidationIssue]) -> str:
    if len(issues) == 1:
        return issues[0].message
    return f"Invalid {operation} request: " + "; ".join(i.message for i in issues)


class RequestValidator:
    """
    Validates incoming requests and turns them into typed models.

    Stateless; one instance can be shared freely.
    """

    def validate_create_series(
        self,
        data: Union[dict[str, Any], CreateSeriesRequest],
    ) -> CreateSeriesRequest:
        """
        Validate a create-series request.

        Checks name, non-negative amount, YYYY-MM-DD anchor date and a
        recurrence in {none, weekly, monthly, yearly}.
        """
        if isinstance(data, CreateSeriesRequest):
            return data
        try:
            return CreateSeriesRequest.model_validate(data)
        except ValidationError as e:
            issues = _issues_from_pydantic(e)
            raise BillValidationError(_summarize("create series", issues), issues)

    def validate_month(self, token: str) -> MonthWindow:
        """Validate a YYYY-MM month token and return its window."""
        if not token:
            raise BillValidationError.single(
                "month",
                "missing",
                "Month parameter is required (format: YYYY-MM)",
            )
        try:
            return MonthWindow.from_token(token)
        except InvalidDateError as e:
            raise BillValidationError.single("month", "invalid_format", str(e))

    def validate_scope(self, scope: Union[str, EditScope, None]) -> EditScope:
        """Validate an edit scope ('this' or 'future')."""
        try:
            return EditScope(scope)
        except ValueError:
            raise BillValidationError.single(
                "scope",
                "invalid_value",
                f"Invalid scope {scope!r}. Choose 'this' or 'future'.",
            )

    def validate_patch(
        self,
        data: Union[dict[str, Any], OccurrencePatch],
    ) -> OccurrencePatch:
        """Validate the fields of an occurrence update."""
        if isinstance(data, OccurrencePatch):
            return data
        try:
            return OccurrencePatch.model_validate(data)
        except ValidationError as e:
            issues = _issues_from_pydantic(e)
            raise BillValidationError(_summarize("update", issues), issues)

    def validate_id(self, value: Union[str, UUID], field: str = "id") -> UUID:
        """Validate an entity id."""
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise BillValidationError.single(
                field,
                "invalid_format",
                f"Invalid {field} {value!r}",
            )

    @staticmethod
    def forbid_future_due_date_change() -> BillValidationError:
        """The error for a FUTURE-scope update that moves the due date."""
        return BillValidationError.single(
            "due_date",
            "forbidden",
            "Updating the due date of future occurrences is not allowed; "
            "use scope 'this' to move a single occurrence.",
        )
