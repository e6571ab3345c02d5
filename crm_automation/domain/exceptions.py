"""
Exception hierarchy for the automation domain.

Validation errors are raised synchronously by aggregate constructors and
mutators so callers can reject bad input before anything is persisted.
"""

from typing import Optional


class AutomationError(Exception):
    """Base exception for all automation domain errors."""

    pass


class AutomationValidationError(AutomationError):
    """
    Raised when an automation rule (or its input) violates an invariant.

    Attributes:
        field: Name of the offending field, when known
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ScheduleValidationError(AutomationValidationError):
    """Raised when a recurrence schedule configuration is invalid."""

    pass


class ActionValidationError(AutomationValidationError):
    """Raised when an action's params or required context ids are invalid."""

    pass
