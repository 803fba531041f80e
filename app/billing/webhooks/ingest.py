"""
Intake of WhatsApp Business webhook bodies.

The HTTP layer hands the parsed body to ingest_webhook_payload(), which:
1. Decodes it into typed changes (invalid bodies raise InvalidWebhookPayload)
2. Stores one WebhookEvent per delivery event (idempotent via event_key)
3. Queues process_webhook_event for each event not yet processed, after
   the surrounding transaction commits

Inbound messages and unsupported changes are not billed and are only logged.
"""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction

from billing.models import WebhookEvent

from .events import DeliveryEvent, decode_webhook_payload


logger = logging.getLogger(__name__)


def _queue(webhook_event: WebhookEvent) -> None:
    from billing.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))


def ingest_webhook_payload(payload: Any) -> list[WebhookEvent]:
    """
    Store and queue the delivery events of a webhook body.

    Args:
        payload: Parsed JSON body

    Returns:
        WebhookEvents for the delivery events in the body (new and existing)

    Raises:
        InvalidWebhookPayload: If the body cannot be decoded
    """
    changes = decode_webhook_payload(payload)
    stored: list[WebhookEvent] = []

    with transaction.atomic():
        for change in changes:
            if not isinstance(change, DeliveryEvent):
                logger.debug(
                    "Skipping non-billable webhook change",
                    extra={"kind": change.kind, "change": repr(change)},
                )
                continue

            webhook_event, created = WebhookEvent.objects.get_or_create(
                event_key=change.event_key,
                defaults={
                    "event_type": change.event_type,
                    "payload": change.to_payload(),
                },
            )
            stored.append(webhook_event)

            if webhook_event.is_processed:
                logger.info(
                    "Duplicate delivery status ignored",
                    extra={"event_key": webhook_event.event_key},
                )
                continue

            logger.info(
                "Delivery status stored" if created else "Delivery status requeued",
                extra={
                    "event_key": webhook_event.event_key,
                    "webhook_event_id": str(webhook_event.id),
                },
            )
            transaction.on_commit(lambda event=webhook_event: _queue(event))

    return stored
