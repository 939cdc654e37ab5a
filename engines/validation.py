"""Validation utilities for attempt submissions and related error types."""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

MAX_ELAPSED_SECONDS = 3600


class ValidationError(Exception):
    """Base class for validation errors.

    Every instance carries a stable ``code`` that the HTTP surface returns
    to clients alongside the human readable message.
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AttemptValidationError(ValidationError):
    """Raised when attempt data fails validation."""
    pass


class NotFoundError(Exception):
    """Raised when a referenced student or exercise does not exist."""

    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class Attempt:
    success: bool
    elapsed_seconds: int
    hints_used: int = 0
    answer: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "elapsed_seconds": self.elapsed_seconds,
            "hints_used": self.hints_used,
            "answer": self.answer,
        }


def _as_int(value: Any) -> Optional[int]:
    """Return ``value`` as an int when it is integral (``30`` or ``30.0``), else None."""
    # bool is a subclass of int
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_attempt(data: Any) -> Attempt:
    """Validate a raw attempt payload and return a typed :class:`Attempt`.

    Raises AttemptValidationError if validation fails. Nothing is mutated
    before this returns.
    """
    if not isinstance(data, Mapping):
        raise AttemptValidationError("Attempt data must be an object", "INVALID_ATTEMPT_DATA")

    success = data.get("success")
    if not isinstance(success, bool):
        raise AttemptValidationError(
            "Attempt success status is required and must be a boolean",
            "MISSING_SUCCESS_STATUS",
        )

    elapsed = _as_int(data.get("elapsed_seconds"))
    if elapsed is None or not (1 <= elapsed <= MAX_ELAPSED_SECONDS):
        raise AttemptValidationError(
            f"Elapsed time must be an integer between 1 and {MAX_ELAPSED_SECONDS} seconds",
            "INVALID_TIME",
        )

    hints = data.get("hints_used", 0)
    if hints is None:
        hints = 0
    hints = _as_int(hints)
    if hints is None or hints < 0:
        raise AttemptValidationError(
            "Hints used must be a non-negative integer", "INVALID_HINTS"
        )

    return Attempt(
        success=success,
        elapsed_seconds=elapsed,
        hints_used=hints,
        answer=data.get("answer"),
    )
