"""
State enums for billing models.

These are Django TextChoices for database storage.

State Machines Overview:

PendingCharge States:
    open → settled   (provider reported delivered/read)
    open → refunded  (provider reported failed, or dispatch failed)

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class PendingChargeState(models.TextChoices):
    """
    Lifecycle of a message charge held in suspense.

    Terminal states: SETTLED, REFUNDED. A charge leaves OPEN exactly once.
    """

    OPEN = "open", "Open"
    SETTLED = "settled", "Settled"
    REFUNDED = "refunded", "Refunded"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class MessageCategory(models.TextChoices):
    """WhatsApp conversation categories, each priced separately."""

    AUTHENTICATION = "authentication", "Authentication"
    MARKETING = "marketing", "Marketing"
    UTILITY = "utility", "Utility"
    SERVICE = "service", "Service"


class DeliveryStatus(models.TextChoices):
    """
    Message statuses reported by the WhatsApp Cloud API.

    Only DELIVERED, READ and FAILED are terminal for billing purposes.
    """

    SENT = "sent", "Sent"
    DELIVERED = "delivered", "Delivered"
    READ = "read", "Read"
    FAILED = "failed", "Failed"
