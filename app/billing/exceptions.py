"""
Billing exceptions outside the wallet ledger.

Exception Hierarchy:
    ValidationError (core)
    ├── InvalidCategory - Unknown message category for pricing
    └── InvalidWebhookPayload - Provider payload that cannot be decoded

Ledger errors (InsufficientBalance, PendingChargeNotFound, ...) live in
billing.ledger.exceptions.
"""

from __future__ import annotations

from core.exceptions import ValidationError


class InvalidCategory(ValidationError):
    """
    Raised when a message category is not one of the priced categories.

    Example:
        raise InvalidCategory(
            "Unknown message category 'promo'",
            details={"category": "promo"},
        )
    """

    default_error_code: str = "INVALID_CATEGORY"


class InvalidWebhookPayload(ValidationError):
    """Raised when a provider webhook body is not a WhatsApp Business payload."""

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"
