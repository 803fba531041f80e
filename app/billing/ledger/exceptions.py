"""
Wallet ledger exceptions.

This module provides the error taxonomy of the wallet ledger, inheriting from
the core exception base classes so every error carries a code and details.

Exception Hierarchy:
    LedgerError (base)
    ├── InsufficientBalance - Available balance below the requested amount
    ├── PendingChargeNotFound - No charge matches a settlement request
    ├── InvalidAmount - Non-positive or non-integer amount
    ├── AccountLockTimeout - Account row lock not acquired in time (retryable)
    ├── CorrelationKeyConflict - Correlation key already used by another wallet
    ├── CurrencyMismatch - Amount priced in a currency the wallet does not hold
    └── ImmutableTransactionError - Attempt to modify a recorded transaction

A repeated settlement of an already-resolved charge is not an error: it
returns an ALREADY_RESOLVED SettlementResult.

Usage:
    from billing.ledger.exceptions import InsufficientBalance

    try:
        wallet.debit_to_suspense(user_id=7, amount=2500, ...)
    except InsufficientBalance as e:
        print(f"Need {e.required}, have {e.available}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


class LedgerError(BaseApplicationError):
    """
    Base exception for all wallet ledger operations.

    Example:
        try:
            wallet.settle_pending_charge("wamid.1", delivered=True)
        except LedgerError as e:
            logger.error("Settlement failed", extra=e.to_dict())
    """

    default_error_code: str = "LEDGER_ERROR"


class InsufficientBalance(LedgerError):
    """
    Raised when a wallet's available balance cannot cover an amount.

    Attributes:
        user_id: Owner of the wallet
        required: Amount (smallest currency unit) that was required
        available: Available balance at the time of the check
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        user_id: int,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.user_id = user_id
        self.required = required
        self.available = available

        message = (
            f"Wallet of user {user_id} has insufficient balance: "
            f"required {required}, available {available}"
        )

        full_details = {
            "user_id": user_id,
            "required": required,
            "available": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=message,
            error_code=error_code,
            details=full_details,
        )


class PendingChargeNotFound(LedgerError, NotFoundError):
    """
    Raised when no pending charge matches a settlement request.

    Attributes:
        correlation_ids: Identifiers that were tried
        reason: Why matching failed ("no_match", "ambiguous_recipient_match",
            "claimed_by_other_event")
    """

    default_error_code: str = "PENDING_CHARGE_NOT_FOUND"

    def __init__(
        self,
        correlation_ids: Iterable[str],
        reason: str = "no_match",
        details: dict[str, Any] | None = None,
    ):
        self.correlation_ids = [cid for cid in correlation_ids if cid]
        self.reason = reason

        full_details: dict[str, Any] = {
            "correlation_ids": self.correlation_ids,
            "reason": reason,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=f"No pending charge for {', '.join(self.correlation_ids) or '<none>'}",
            details=full_details,
        )


class InvalidAmount(LedgerError, ValidationError):
    """Raised when an amount is not a positive integer (or a non-zero delta)."""

    default_error_code: str = "INVALID_AMOUNT"


class AccountLockTimeout(LedgerError, ConflictError):
    """
    Raised when the wallet row lock could not be acquired in time.

    The surrounding transaction has been rolled back with no partial effect,
    so the whole operation may be retried.
    """

    default_error_code: str = "ACCOUNT_LOCK_TIMEOUT"
    retryable: bool = True


class CorrelationKeyConflict(LedgerError, ConflictError):
    """Raised when a correlation key is already held by another wallet's charge."""

    default_error_code: str = "CORRELATION_KEY_CONFLICT"


class CurrencyMismatch(LedgerError, ValidationError):
    """
    Raised when an amount is in a different currency from the wallet.

    Amounts are never converted; the caller must price in the wallet's
    currency.

    Attributes:
        user_id: Owner of the wallet
        expected: Wallet currency
        received: Currency of the amount
    """

    default_error_code: str = "CURRENCY_MISMATCH"

    def __init__(
        self,
        user_id: int,
        expected: str,
        received: str,
        details: dict[str, Any] | None = None,
    ):
        self.user_id = user_id
        self.expected = expected
        self.received = received

        full_details: dict[str, Any] = {
            "user_id": user_id,
            "expected": expected,
            "received": received,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Wallet of user {user_id} holds {expected}, "
                f"amount is in {received}"
            ),
            details=full_details,
        )


class ImmutableTransactionError(LedgerError):
    """Raised on any attempt to update or delete a recorded wallet transaction."""

    default_error_code: str = "IMMUTABLE_TRANSACTION"
