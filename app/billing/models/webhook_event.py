"""
WebhookEvent model for delivery-status tracking.

Every delivery status decoded from a WhatsApp Business webhook is stored
once, keyed by message id and status, so that duplicate deliveries of the
same webhook are detected and failed processing can be retried.

Usage:
    from billing.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_key="wamid.HBgM:delivered",
        defaults={
            "event_type": "message_status.delivered",
            "payload": delivery_event.to_payload(),
        },
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks provider webhook events for idempotent processing.

    Processing Flow:
        1. Webhook body is decoded into typed delivery events
        2. Insert/get WebhookEvent by event_key
        3. If it exists and is PROCESSED -> duplicate, nothing to do
        4. Task marks it PROCESSING and dispatches it by event_type
        5. Task marks it PROCESSED or FAILED
        6. FAILED events are re-queued by the retry task

    Fields:
        event_key: Unique "<message id>:<status>" key
        event_type: Handler routing key (e.g. "message_status.failed")
        payload: Decoded event as JSON
        status: Processing status
        processed_at: When the event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique '<message id>:<status>' key for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Event type used to route to a handler",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Decoded delivery event (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
        ]

    def __str__(self) -> str:
        """Return string representation with event key and type."""
        return f"WebhookEvent({self.event_key}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        """Check if event has been successfully processed."""
        return self.status == WebhookEventStatus.PROCESSED

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
