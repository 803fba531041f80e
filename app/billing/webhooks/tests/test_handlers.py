"""
Tests for webhook handler dispatch and delivery settlement.
"""

import pytest

from billing.ledger.models import PendingCharge, WalletAccount
from billing.ledger.services import wallet
from billing.state_machines import PendingChargeState
from billing.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    dispatch_webhook,
    handle_delivery_event,
    register_handler,
)
from billing.webhooks.tests.factories import (
    SenderNumberFactory,
    WebhookEventFactory,
    delivery_payload,
)


def _balances(user_id):
    account = WalletAccount.objects.get(user_id=user_id)
    return account.available_balance, account.suspense_balance


class TestRegistry:
    """Tests for register_handler() and dispatch_webhook()."""

    @pytest.mark.parametrize("status", ["sent", "delivered", "read", "failed"])
    def test_delivery_statuses_registered(self, status):
        """Should route every delivery status to the settlement handler."""
        assert WEBHOOK_HANDLERS[f"message_status.{status}"] is handle_delivery_event

    def test_unknown_event_type_succeeds(self, db):
        """Should return success without a handler."""
        event = WebhookEventFactory(event_type="account_update.banned")

        result = dispatch_webhook(event)

        assert result.success
        assert result.data is None

    def test_registered_handler_called(self, db, monkeypatch):
        """Should call the handler registered for the event type."""
        monkeypatch.setattr(
            "billing.webhooks.handlers.WEBHOOK_HANDLERS", dict(WEBHOOK_HANDLERS)
        )
        calls = []

        @register_handler("test.custom")
        def handler(webhook_event):
            calls.append(webhook_event)
            return "handled"

        event = WebhookEventFactory(event_type="test.custom")

        assert dispatch_webhook(event) == "handled"
        assert calls == [event]


class TestHandleDeliveryEvent:
    """Tests for handle_delivery_event()."""

    def test_delivered_settles(self, held_charge):
        """Should settle the charge and keep the funds in suspense."""
        event = WebhookEventFactory(correlation_id="msg-1", delivery_status="delivered")

        result = handle_delivery_event(event)

        assert result.success
        assert result.data["status"] == "settled"
        assert result.data["matched_by"] == "exact"
        assert _balances(held_charge.user_id) == (7500, 2500)
        charge = PendingCharge.objects.get(correlation_key="msg-1")
        assert charge.state == PendingChargeState.SETTLED
        assert charge.resolution_reason == "delivered"

    def test_failed_refunds(self, held_charge):
        """Should refund the charge to the available balance."""
        event = WebhookEventFactory(correlation_id="msg-1", delivery_status="failed")

        result = handle_delivery_event(event)

        assert result.data["status"] == "refunded"
        assert _balances(held_charge.user_id) == (10000, 0)

    def test_repeated_status_is_duplicate(self, held_charge):
        """Should report already_resolved for a second status."""
        handle_delivery_event(WebhookEventFactory(correlation_id="msg-1", delivery_status="read"))

        result = handle_delivery_event(
            WebhookEventFactory(correlation_id="msg-1", delivery_status="failed")
        )

        assert result.success
        assert result.data["status"] == "already_resolved"
        assert _balances(held_charge.user_id) == (7500, 2500)

    def test_sent_settles(self, held_charge):
        """Should settle on "sent"; a later "failed" changes nothing."""
        result = handle_delivery_event(
            WebhookEventFactory(correlation_id="msg-1", delivery_status="sent")
        )

        assert result.data["status"] == "settled"
        assert _balances(held_charge.user_id) == (7500, 2500)

        later = handle_delivery_event(
            WebhookEventFactory(correlation_id="msg-1", delivery_status="failed")
        )

        assert later.data["status"] == "already_resolved"
        assert _balances(held_charge.user_id) == (7500, 2500)

    def test_unmatched_status_dropped(self, funded_wallet):
        """Should succeed with a dropped result when no charge matches."""
        event = WebhookEventFactory(correlation_id="wamid.UNKNOWN", delivery_status="failed")

        result = handle_delivery_event(event)

        assert result.success
        assert result.data["status"] == "dropped"
        assert result.data["reason"] == "no_match"
        assert _balances(funded_wallet) == (10000, 0)

    def test_conversation_id_matches(self, funded_wallet):
        """Should match on the conversation id when the message id is unknown."""
        wallet.debit_to_suspense(
            user_id=funded_wallet,
            amount=1000,
            category="utility",
            correlation_key="conv-77",
        )
        event = WebhookEventFactory(
            correlation_id="wamid.NEW",
            delivery_status="failed",
            payload=delivery_payload("wamid.NEW", "failed", conversation_id="conv-77"),
        )

        result = handle_delivery_event(event)

        assert result.data["status"] == "refunded"
        assert _balances(funded_wallet) == (10000, 0)

    def test_recipient_fallback_scoped_by_sender_number(self, held_charge):
        """Should settle by recipient for the sending number's owner."""
        sender = SenderNumberFactory(user_id=held_charge.user_id)
        event = WebhookEventFactory(
            correlation_id="wamid.REKEY",
            delivery_status="delivered",
            payload=delivery_payload(
                "wamid.REKEY", "delivered", phone_number_id=sender.phone_number_id
            ),
        )

        result = handle_delivery_event(event)

        assert result.data["status"] == "settled"
        assert result.data["matched_by"] == "recipient_fallback"
        charge = PendingCharge.objects.get(original_correlation_key="msg-1")
        assert charge.correlation_key == "wamid.REKEY"

    def test_no_fallback_for_unregistered_number(self, held_charge):
        """Should drop the status when the sending number has no owner."""
        event = WebhookEventFactory(
            correlation_id="wamid.STRANGER",
            delivery_status="delivered",
            payload=delivery_payload("wamid.STRANGER", "delivered", phone_number_id="999"),
        )

        result = handle_delivery_event(event)

        assert result.data["status"] == "dropped"
        assert PendingCharge.objects.get(correlation_key="msg-1").is_open

    def test_ambiguous_fallback_dropped(self, funded_wallet):
        """Should leave both charges open when the recipient is ambiguous."""
        for key in ("msg-a", "msg-b"):
            wallet.debit_to_suspense(
                user_id=funded_wallet,
                amount=100,
                category="marketing",
                correlation_key=key,
                recipient="919373355199",
            )
        sender = SenderNumberFactory(user_id=funded_wallet)
        event = WebhookEventFactory(
            correlation_id="wamid.WHICH",
            delivery_status="failed",
            payload=delivery_payload(
                "wamid.WHICH", "failed", phone_number_id=sender.phone_number_id
            ),
        )

        result = handle_delivery_event(event)

        assert result.data == {
            "status": "dropped",
            "reason": "ambiguous_recipient_match",
            "correlation_ids": ["wamid.WHICH"],
        }
        assert PendingCharge.objects.filter(user_id=funded_wallet, state="open").count() == 2
