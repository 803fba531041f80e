"""
Tests for the application exception hierarchy.
"""

import pytest

from billing.ledger.exceptions import (
    AccountLockTimeout,
    InsufficientBalance,
    LedgerError,
    PendingChargeNotFound,
)
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)


class TestBaseApplicationError:
    """Tests for BaseApplicationError."""

    def test_defaults(self):
        """Should fall back to the class error code and empty details."""
        exc = BaseApplicationError("Something broke")

        assert exc.message == "Something broke"
        assert exc.error_code == "APPLICATION_ERROR"
        assert exc.details == {}
        assert not exc.retryable
        assert str(exc) == "[APPLICATION_ERROR] Something broke"

    def test_to_dict(self):
        """Should expose message, code and details."""
        exc = ValidationError("Bad amount", error_code="INVALID_AMOUNT", details={"amount": -1})

        assert exc.to_dict() == {
            "error": "Bad amount",
            "error_code": "INVALID_AMOUNT",
            "details": {"amount": -1},
        }

    @pytest.mark.parametrize(
        "cls,code",
        [
            (ValidationError, "VALIDATION_ERROR"),
            (NotFoundError, "NOT_FOUND"),
            (ConflictError, "CONFLICT"),
        ],
    )
    def test_subclass_codes(self, cls, code):
        """Should use each subclass's default code."""
        assert cls("x").error_code == code


class TestLedgerErrors:
    """Tests for ledger errors built on the core hierarchy."""

    def test_insufficient_balance_details(self):
        """Should carry required and available amounts."""
        exc = InsufficientBalance(user_id=7, required=2500, available=100)

        assert isinstance(exc, LedgerError)
        assert exc.error_code == "INSUFFICIENT_BALANCE"
        assert exc.details == {"user_id": 7, "required": 2500, "available": 100}

    def test_pending_charge_not_found_is_not_found(self):
        """Should be catchable as NotFoundError and drop blank ids."""
        exc = PendingChargeNotFound(["wamid.1", ""], reason="ambiguous_recipient_match")

        assert isinstance(exc, NotFoundError)
        assert exc.correlation_ids == ["wamid.1"]
        assert exc.details["reason"] == "ambiguous_recipient_match"
        assert "wamid.1" in exc.message

    def test_lock_timeout_is_retryable_conflict(self):
        """Should be a retryable ConflictError."""
        exc = AccountLockTimeout("Could not lock wallet")

        assert isinstance(exc, ConflictError)
        assert exc.retryable
        assert exc.error_code == "ACCOUNT_LOCK_TIMEOUT"
