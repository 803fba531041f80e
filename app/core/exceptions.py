"""
Base exception classes for application-wide error handling.

Every domain error carries a human-readable message, a machine-readable
error code and a details dict, so callers (Celery tasks, service results,
log lines) can report failures uniformly.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    └── ConflictError - State conflicts (duplicates, lock contention)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("Amount must be positive", error_code="INVALID_AMOUNT")

    raise NotFoundError(
        "No pending charge for wamid.HBg",
        error_code="PENDING_CHARGE_NOT_FOUND",
        details={"correlation_ids": ["wamid.HBg"]},
    )

    try:
        ...
    except BaseApplicationError as e:
        logger.warning("Wallet operation failed", extra=e.to_dict())

Retryable errors:
    Subclasses set ``retryable = True`` when the same call may succeed if
    repeated later (lock contention, transient database conflicts).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context
        retryable: Whether repeating the operation later may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a plain dict.

        Returns:
            Dict with error, error_code, and (when present) details keys

        Example:
            {
                "error": "Insufficient wallet balance",
                "error_code": "INSUFFICIENT_BALANCE",
                "details": {"required": 2500, "available": 1000}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Non-positive or non-integer amounts
    - Unknown message categories
    - Malformed provider payloads

    Example:
        raise ValidationError(
            "Unknown message category 'promo'",
            error_code="INVALID_CATEGORY",
            details={"category": "promo"},
        )
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        charge = PendingCharge.objects.filter(correlation_key=key).first()
        if not charge:
            raise NotFoundError(
                f"No pending charge for {key}",
                error_code="PENDING_CHARGE_NOT_FOUND",
            )
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate keys owned by another resource
    - Lock acquisition timeouts
    - Invalid state transitions

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
