"""Exceptions for the metasynth statistics engine.

Every error carries enough context (study, field, counts) to be relayed to a
caller verbatim through ``to_dict()``.
"""

from typing import Any, Optional


class MetaSynthError(Exception):
    """Base error for all engine failures."""

    error_type = "metasynth_error"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "context": self.context,
        }


class InvalidInputError(MetaSynthError):
    """Raised when a study record is malformed or holds out-of-range values."""

    error_type = "invalid_input"

    def __init__(
        self,
        message: str,
        study_id: Optional[str] = None,
        field: Optional[str] = None,
        value: Any = None,
    ):
        self.study_id = study_id
        self.field = field
        self.value = value
        context: dict[str, Any] = {}
        if study_id is not None:
            context["study_id"] = study_id
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = value
        prefix = f"Study {study_id}: " if study_id else ""
        super().__init__(f"{prefix}{message}", context)


class InsufficientDataError(MetaSynthError):
    """Raised when fewer studies are supplied than a statistic requires."""

    error_type = "insufficient_data"

    def __init__(self, statistic: str, required: int, actual: int, unit: str = "studies"):
        self.statistic = statistic
        self.required = required
        self.actual = actual
        super().__init__(
            f"{statistic} requires at least {required} {unit}, got {actual}",
            {"statistic": statistic, "required": required, "actual": actual, "unit": unit},
        )


class DegenerateResultError(MetaSynthError):
    """Raised when a requested statistic is strictly undefined for the input."""

    error_type = "degenerate_result"

    def __init__(self, message: str, study_id: Optional[str] = None):
        self.study_id = study_id
        super().__init__(message, {"study_id": study_id} if study_id else {})


class UnknownOperationError(MetaSynthError):
    """Raised when the dispatch layer is asked for an unregistered operation."""

    error_type = "unknown_operation"

    def __init__(self, operation: str, available: list[str]):
        self.operation = operation
        super().__init__(
            f"Unknown operation '{operation}'. Available: {', '.join(sorted(available))}",
            {"operation": operation},
        )


class DisconnectedNetworkWarning(UserWarning):
    """Issued when a treatment network splits into separate components.

    Never fatal: each component is analysed and ranked on its own.
    """
