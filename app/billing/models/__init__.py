"""
Billing domain models.

This module exposes all billing models so Django registers them with the
app:
- WalletAccount: Per-user wallet with available and suspense balances
- WalletTransaction: Append-only log of wallet movements
- PendingCharge: Message charge held in suspense until delivery is known
- PricePlan, UserPricePlan, PricePlanOverride: Message pricing
- SenderNumber: Business phone numbers and their owners
- WebhookEvent: Delivery-status events for idempotent processing
"""

from billing.ledger.models import (
    PendingCharge,
    TransactionKind,
    WalletAccount,
    WalletTransaction,
)
from billing.models.sender_number import SenderNumber
from billing.models.webhook_event import WebhookEvent
from billing.pricing.models import PricePlan, PricePlanOverride, UserPricePlan

__all__ = [
    "PendingCharge",
    "PricePlan",
    "PricePlanOverride",
    "SenderNumber",
    "TransactionKind",
    "UserPricePlan",
    "WalletAccount",
    "WalletTransaction",
    "WebhookEvent",
]
