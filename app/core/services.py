"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Pattern Comparison:
    - ServiceResult: Use for expected failures (insufficient balance,
      unknown pending charge) that the caller branches on
    - Exceptions: Use for unexpected failures and for the ledger primitives,
      whose errors form a typed taxonomy

Usage:
    from core.services import BaseService, ServiceResult

    class ChargeService(BaseService):
        @classmethod
        def hold_for_message(cls, user_id: int, ...) -> ServiceResult:
            try:
                debit = wallet.debit_to_suspense(...)
            except InsufficientBalance as e:
                return ServiceResult.from_exception(e)

            cls.get_logger().info("Charge held", extra={"user_id": user_id})
            return ServiceResult.success(debit)

    result = ChargeService.hold_for_message(user_id, ...)
    if not result:
        abort_dispatch(result.error_code)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code
        errors: Field-level errors for validation failures
        details: Structured context copied from the originating exception

    Usage:
        return ServiceResult.success(debit)
        return ServiceResult.failure("Insufficient balance", "INSUFFICIENT_BALANCE")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors (for validation failures)
            details: Structured context for logging or API responses

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message, error code and details;
        anything else falls back to the exception class name.

        Args:
            exc: The caught exception
            error_code: Optional error code override

        Returns:
            ServiceResult with error details from exception
        """
        # Imported lazily to keep core.exceptions free of service imports
        from core.exceptions import BaseApplicationError

        if isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                details=exc.details or None,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to a plain dict (for task results and logs).

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides a logger named after each service class.

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
