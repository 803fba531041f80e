"""
Typed events decoded from WhatsApp Business webhooks.

The provider posts ``whatsapp_business_account`` bodies whose changes carry
message statuses, inbound messages, or other notifications. This module turns
such a body into a list of tagged variants before anything else sees it:

    DeliveryEvent      - a terminal status of a message we sent
    InboundMessage     - a message a customer sent us (not billed)
    UnsupportedChange  - anything else, with the reason it was skipped

The wallet only ever receives DeliveryEvent fields; raw provider JSON stops
here.

Payload shape (abridged):
    {
      "object": "whatsapp_business_account",
      "entry": [{
        "id": "<WABA id>",
        "changes": [{
          "field": "messages",
          "value": {
            "metadata": {"phone_number_id": "1061..."},
            "statuses": [{
              "id": "wamid.HBgM...",
              "status": "delivered",
              "timestamp": "1700000000",
              "recipient_id": "919373355199",
              "conversation": {"id": "a1b2..."},
              "errors": [{"code": 131026, "title": "Message undeliverable"}]
            }]
          }
        }]
      }]
    }

Usage:
    from billing.webhooks.events import DeliveryEvent, decode_webhook_payload

    for change in decode_webhook_payload(request_json):
        if isinstance(change, DeliveryEvent):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from typing import Any, ClassVar, Union

from django.conf import settings
from django.utils.dateparse import parse_datetime

from core.helpers import normalize_phone_number

from billing.exceptions import InvalidWebhookPayload
from billing.state_machines import DeliveryStatus


WHATSAPP_OBJECT = "whatsapp_business_account"


class DeliveryOutcome(str, Enum):
    """Whether a status means the message reached the recipient."""

    DELIVERED = "delivered"
    FAILED = "failed"


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True)
class DeliveryEvent:
    """
    Terminal delivery status of an outgoing message.

    Attributes:
        correlation_id: Provider message id (wamid)
        conversation_id: Provider conversation id, if reported
        recipient: Recipient phone number, digits only
        outcome: DELIVERED or FAILED
        status: Raw provider status ("delivered", "read", "failed", ...)
        occurred_at: When the provider observed the status
        phone_number_id: Sending business number
        waba_id: WhatsApp Business Account id
        errors: Provider error objects (failed statuses)
    """

    kind: ClassVar[str] = "delivery"

    correlation_id: str
    recipient: str
    outcome: DeliveryOutcome
    status: str
    conversation_id: str = ""
    occurred_at: datetime | None = None
    phone_number_id: str = ""
    waba_id: str = ""
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_delivered(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    @property
    def event_key(self) -> str:
        """Idempotency key: one stored event per message and status."""
        return f"{self.correlation_id}:{self.status}"

    @property
    def event_type(self) -> str:
        """Handler routing key."""
        return f"message_status.{self.status}"

    @property
    def correlation_ids(self) -> list[str]:
        """Ids to match a pending charge on, message id first."""
        return [cid for cid in (self.correlation_id, self.conversation_id) if cid]

    def to_payload(self) -> dict[str, Any]:
        """JSON-serializable form stored on WebhookEvent.payload."""
        return {
            "kind": self.kind,
            "correlation_id": self.correlation_id,
            "conversation_id": self.conversation_id,
            "recipient": self.recipient,
            "outcome": self.outcome.value,
            "status": self.status,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "phone_number_id": self.phone_number_id,
            "waba_id": self.waba_id,
            "errors": self.errors,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DeliveryEvent:
        """
        Rebuild an event stored with to_payload().

        Raises:
            InvalidWebhookPayload: If the stored payload is not a delivery event
        """
        if payload.get("kind") != cls.kind or not payload.get("correlation_id"):
            raise InvalidWebhookPayload(
                "Stored payload is not a delivery event",
                details={"kind": payload.get("kind")},
            )
        try:
            outcome = DeliveryOutcome(payload["outcome"])
        except (KeyError, ValueError) as exc:
            raise InvalidWebhookPayload(
                "Stored delivery event has no valid outcome",
                details={"outcome": payload.get("outcome")},
            ) from exc

        occurred_at = payload.get("occurred_at")
        return cls(
            correlation_id=payload["correlation_id"],
            conversation_id=payload.get("conversation_id") or "",
            recipient=payload.get("recipient") or "",
            outcome=outcome,
            status=payload.get("status") or outcome.value,
            occurred_at=parse_datetime(occurred_at) if occurred_at else None,
            phone_number_id=payload.get("phone_number_id") or "",
            waba_id=payload.get("waba_id") or "",
            errors=list(payload.get("errors") or []),
        )


@dataclass(frozen=True)
class InboundMessage:
    """A message sent to the business by a customer."""

    kind: ClassVar[str] = "inbound_message"

    message_id: str
    sender: str
    message_type: str
    occurred_at: datetime | None = None
    phone_number_id: str = ""


@dataclass(frozen=True)
class UnsupportedChange:
    """A change that carries nothing billable, with the reason it was skipped."""

    kind: ClassVar[str] = "unsupported"

    field: str
    reason: str
    reference: str = ""


WebhookChange = Union[DeliveryEvent, InboundMessage, UnsupportedChange]


# =============================================================================
# Decoding
# =============================================================================


def _outcome_for(status: str) -> DeliveryOutcome | None:
    """Map a provider status to an outcome; None if it resolves nothing."""
    if status in (DeliveryStatus.DELIVERED, DeliveryStatus.READ):
        return DeliveryOutcome.DELIVERED
    if status == DeliveryStatus.FAILED:
        return DeliveryOutcome.FAILED
    if status == DeliveryStatus.SENT and settings.WEBHOOK_SETTLE_ON_SENT:
        return DeliveryOutcome.DELIVERED
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    """Provider timestamps are unix seconds, sent as strings."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidWebhookPayload(
            f"Invalid status timestamp {value!r}",
            details={"timestamp": repr(value)},
        ) from exc


def _decode_status(
    status: dict[str, Any],
    phone_number_id: str,
    waba_id: str,
) -> WebhookChange:
    if not isinstance(status, dict):
        raise InvalidWebhookPayload("Status entry is not an object")

    message_id = status.get("id")
    status_name = str(status.get("status") or "").lower()
    if not message_id or not status_name:
        raise InvalidWebhookPayload(
            "Status entry without message id or status",
            details={"status": status_name, "id": message_id},
        )

    outcome = _outcome_for(status_name)
    if outcome is None:
        return UnsupportedChange(
            field="messages",
            reason=f"non_terminal_status:{status_name}",
            reference=message_id,
        )

    conversation = status.get("conversation") or {}
    return DeliveryEvent(
        correlation_id=message_id,
        conversation_id=str(conversation.get("id") or ""),
        recipient=normalize_phone_number(status.get("recipient_id")),
        outcome=outcome,
        status=status_name,
        occurred_at=_parse_timestamp(status.get("timestamp")),
        phone_number_id=phone_number_id,
        waba_id=waba_id,
        errors=list(status.get("errors") or []),
    )


def _decode_message(message: dict[str, Any], phone_number_id: str) -> WebhookChange:
    if not isinstance(message, dict) or not message.get("id"):
        raise InvalidWebhookPayload("Message entry without id")
    return InboundMessage(
        message_id=message["id"],
        sender=normalize_phone_number(message.get("from")),
        message_type=message.get("type") or "unknown",
        occurred_at=_parse_timestamp(message.get("timestamp")),
        phone_number_id=phone_number_id,
    )


def decode_webhook_payload(payload: Any) -> list[WebhookChange]:
    """
    Decode a WhatsApp Business webhook body into typed changes.

    Args:
        payload: Parsed JSON body

    Returns:
        Decoded changes in payload order (possibly empty)

    Raises:
        InvalidWebhookPayload: If the body is not a WhatsApp Business
            payload or its structure is malformed
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookPayload("Webhook body is not an object")
    if payload.get("object") != WHATSAPP_OBJECT:
        raise InvalidWebhookPayload(
            "Webhook body is not a WhatsApp Business payload",
            details={"object": payload.get("object")},
        )

    entries = payload.get("entry")
    if not isinstance(entries, list):
        raise InvalidWebhookPayload("Webhook body has no entry list")

    changes: list[WebhookChange] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("changes", []), list):
            raise InvalidWebhookPayload("Malformed webhook entry")
        waba_id = str(entry.get("id") or "")

        for change in entry.get("changes", []):
            if not isinstance(change, dict):
                raise InvalidWebhookPayload("Malformed webhook change")
            field_name = change.get("field") or ""
            value = change.get("value") or {}
            if not isinstance(value, dict):
                raise InvalidWebhookPayload("Malformed webhook change value")

            if field_name != "messages":
                changes.append(UnsupportedChange(field=field_name, reason="unsupported_field"))
                continue

            phone_number_id = str((value.get("metadata") or {}).get("phone_number_id") or "")
            for status in value.get("statuses") or []:
                changes.append(_decode_status(status, phone_number_id, waba_id))
            for message in value.get("messages") or []:
                changes.append(_decode_message(message, phone_number_id))

    return changes
