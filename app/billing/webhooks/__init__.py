"""
Webhook handling for WhatsApp Business delivery statuses.

Bodies are decoded into typed events, stored idempotently, and processed
asynchronously via Celery tasks that settle or refund pending charges.

Usage:
    from billing.webhooks import ingest_webhook_payload

    events = ingest_webhook_payload(request_json)
"""

from billing.webhooks.events import (
    DeliveryEvent,
    DeliveryOutcome,
    InboundMessage,
    UnsupportedChange,
    decode_webhook_payload,
)
from billing.webhooks.handlers import dispatch_webhook, register_handler
from billing.webhooks.ingest import ingest_webhook_payload

__all__ = [
    "DeliveryEvent",
    "DeliveryOutcome",
    "InboundMessage",
    "UnsupportedChange",
    "decode_webhook_payload",
    "dispatch_webhook",
    "ingest_webhook_payload",
    "register_handler",
]
