"""
Webhook event handlers for WhatsApp delivery statuses.

This module provides a handler registry and the handlers that turn stored
delivery events into wallet settlements.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types
- Centralized error handling

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("message_status.deleted")
    def handle_deleted(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult

from billing.ledger.exceptions import PendingChargeNotFound
from billing.ledger.services import wallet
from billing.models import SenderNumber, WebhookEvent
from billing.state_machines import DeliveryStatus

from .events import DeliveryEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("message_status.delivered", "message_status.read")
        def handle_delivered(webhook_event: WebhookEvent) -> ServiceResult:
            ...

    Args:
        event_types: Event types routed to the decorated handler

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    If no handler is registered, logs and returns success (to avoid failing
    on unknown events).

    Args:
        webhook_event: The WebhookEvent to process

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_key": webhook_event.event_key},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_key": webhook_event.event_key},
    )

    return handler(webhook_event)


# =============================================================================
# Delivery Status Handlers
# =============================================================================


@register_handler(
    f"message_status.{DeliveryStatus.SENT.value}",
    f"message_status.{DeliveryStatus.DELIVERED.value}",
    f"message_status.{DeliveryStatus.READ.value}",
    f"message_status.{DeliveryStatus.FAILED.value}",
)
def handle_delivery_event(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Settle or refund the pending charge a delivery status refers to.

    The sending number's owner (if registered) scopes the recipient
    fallback. A status that matches no charge is dropped: it is logged and
    reported as a successful "dropped" result so it is not retried.

    Args:
        webhook_event: Stored delivery event

    Returns:
        ServiceResult with the settlement summary or the drop reason

    Raises:
        AccountLockTimeout: Wallet lock not acquired (the task retries)
    """
    event = DeliveryEvent.from_payload(webhook_event.payload)
    user_id = SenderNumber.user_for(event.phone_number_id)

    try:
        settlement = wallet.settle_pending_charge(
            event.correlation_id,
            delivered=event.is_delivered,
            recipient=event.recipient,
            user_id=user_id,
            alternate_keys=event.correlation_ids[1:],
            occurred_at=event.occurred_at,
            reason=event.status,
        )
    except PendingChargeNotFound as e:
        logger.warning(
            "Delivery status matched no pending charge, dropping",
            extra={
                "event_key": webhook_event.event_key,
                "user_id": user_id,
                "reason": e.reason,
                "correlation_ids": e.correlation_ids,
            },
        )
        return ServiceResult.success(
            {
                "status": "dropped",
                "reason": e.reason,
                "correlation_ids": e.correlation_ids,
            }
        )

    return ServiceResult.success({"status": settlement.outcome.value, **settlement.as_dict()})
