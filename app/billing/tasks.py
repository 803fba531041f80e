"""
Celery tasks for delivery-status processing.

This module provides async tasks for:
- Processing stored delivery events (settle or refund pending charges)
- Retrying failed delivery events
- Periodic reset of events stuck in processing

Usage:
    from billing.tasks import process_webhook_event

    # Queue a stored event for async processing
    process_webhook_event.delay(str(webhook_event.id))

    # Requeue failed events (typically via celery-beat)
    from billing.tasks import retry_failed_webhook_events
    retry_failed_webhook_events.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.ledger.exceptions import AccountLockTimeout
from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(AccountLockTimeout,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": settings.WEBHOOK_MAX_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored delivery event asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler for its event type
    5. Marks as processed or failed

    Wallet lock timeouts are retried by Celery with backoff; other errors
    leave the event FAILED for retry_failed_webhook_events.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status
    """
    # Import here to avoid circular imports
    from billing.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
            },
        )
        return {
            "status": "already_processed",
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()

        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
                "error": error_msg,
            },
        )
        raise

    if not result.success:
        error_msg = result.error or "Handler returned failure"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {error_msg}",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
                "error_code": result.error_code,
            },
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event_id),
            "error": error_msg,
        }

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info(
        "Webhook processed successfully",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
        },
    )
    return {
        "status": "processed",
        "webhook_event_id": str(webhook_event_id),
        "event_key": webhook_event.event_key,
        "result": result.data,
    }


@shared_task
def retry_failed_webhook_events() -> dict:
    """
    Periodic task to retry failed delivery events.

    Requeues failed events that haven't exceeded WEBHOOK_MAX_RETRIES.
    Scheduled via celery-beat (see migration 0002).

    Returns:
        Dict with count of events queued for retry
    """
    failed_events = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook_event in failed_events:
        process_webhook_event.delay(str(webhook_event.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook_event.id),
                "event_key": webhook_event.event_key,
                "retry_count": webhook_event.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhook_events() -> dict:
    """
    Periodic task to reset stuck delivery events.

    Events left in PROCESSING (worker crashed mid-task) are reset to FAILED
    so retry_failed_webhook_events picks them up.

    Returns:
        Dict with count of events reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_events = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook_event in stuck_events:
        webhook_event.mark_failed("Processing timed out - reset for retry")
        webhook_event.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook event",
            extra={
                "webhook_event_id": str(webhook_event.id),
                "event_key": webhook_event.event_key,
            },
        )

    return {"reset_count": reset_count}
