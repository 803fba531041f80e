"""
State enums for billing models.
"""

from billing.state_machines.states import (
    DeliveryStatus,
    MessageCategory,
    PendingChargeState,
    WebhookEventStatus,
)

__all__ = [
    "DeliveryStatus",
    "MessageCategory",
    "PendingChargeState",
    "WebhookEventStatus",
]
