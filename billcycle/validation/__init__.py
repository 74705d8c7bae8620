"""Request validation package."""

from billcycle.validation.validator import BillValidationError, RequestValidator

__all__ = ["BillValidationError", "RequestValidator"]
