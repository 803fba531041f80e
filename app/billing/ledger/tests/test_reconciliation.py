"""
Tests for PendingChargeResolver and the settlement paths that depend on it.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from billing.ledger.exceptions import PendingChargeNotFound
from billing.ledger.models import PendingCharge, WalletTransaction
from billing.ledger.reconciliation import ChargeMatch, PendingChargeResolver
from billing.ledger.services import wallet
from billing.ledger.types import MatchStrategy


def _debit(user_id, key, recipient="919373355199", amount=100):
    return wallet.debit_to_suspense(
        user_id=user_id,
        amount=amount,
        category="marketing",
        correlation_key=key,
        recipient=recipient,
    )


class TestFindExact:
    """Tests for PendingChargeResolver.find_exact()."""

    def test_first_id_wins(self, funded_wallet):
        """Should prefer ids in the order given."""
        _debit(funded_wallet, "k-1")
        _debit(funded_wallet, "k-2")

        charge = PendingChargeResolver.find_exact(["k-2", "k-1"])

        assert charge.correlation_key == "k-2"

    def test_current_key_before_original(self, funded_wallet):
        """Should prefer a current key over another charge's original key."""
        first = _debit(funded_wallet, "k-1").pending_charge
        PendingChargeResolver.rekey(first, "k-moved")
        _debit(funded_wallet, "k-other")

        charge = PendingChargeResolver.find_exact(["k-1", "k-other"])

        assert charge.correlation_key == "k-other"

    def test_blank_ids_ignored(self, db):
        """Should return None for no usable ids."""
        assert PendingChargeResolver.find_exact(["", None]) is None


class TestFindByRecipient:
    """Tests for PendingChargeResolver.find_by_recipient()."""

    STATUS_AT = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_charge_later_in_same_second_matches(self, funded_wallet):
        """Should match a charge created after the truncated status second."""
        with freeze_time("2023-11-14 22:13:20.600000"):
            _debit(funded_wallet, "k-same-second")

        charges = PendingChargeResolver.find_by_recipient(
            funded_wallet, "919373355199", occurred_at=self.STATUS_AT
        )

        assert [c.correlation_key for c in charges] == ["k-same-second"]

    def test_charge_in_next_second_excluded(self, funded_wallet):
        """Should skip a charge created after the status second."""
        with freeze_time("2023-11-14 22:13:21"):
            _debit(funded_wallet, "k-next-second")

        charges = PendingChargeResolver.find_by_recipient(
            funded_wallet, "919373355199", occurred_at=self.STATUS_AT
        )

        assert charges == []

    def test_charge_outside_window_excluded(self, funded_wallet, settings):
        """Should skip charges older than the fallback window."""
        settings.WALLET_RECIPIENT_FALLBACK_WINDOW_HOURS = 1
        with freeze_time(self.STATUS_AT - timedelta(hours=2)):
            _debit(funded_wallet, "k-old")

        charges = PendingChargeResolver.find_by_recipient(
            funded_wallet, "919373355199", occurred_at=self.STATUS_AT
        )

        assert charges == []

    def test_same_second_status_resolves_by_fallback(self, funded_wallet):
        """Should settle through the fallback when ids differ."""
        with freeze_time("2023-11-14 22:13:20.600000"):
            _debit(funded_wallet, "k-sent")

        match = PendingChargeResolver.resolve(
            ["wamid.other"],
            recipient="+91 93733 55199",
            user_id=funded_wallet,
            occurred_at=self.STATUS_AT,
        )

        assert match.strategy == MatchStrategy.RECIPIENT_FALLBACK
        assert match.charge.correlation_key == "k-sent"


class TestResolve:
    """Tests for PendingChargeResolver.resolve()."""

    def test_exact(self, held_charge):
        """Should report the exact strategy."""
        match = PendingChargeResolver.resolve(["msg-1"])

        assert match.strategy == MatchStrategy.EXACT
        assert match.charge.pk == held_charge.pending_charge_id

    def test_fallback_needs_user(self, held_charge):
        """Should not search by recipient without a user."""
        with pytest.raises(PendingChargeNotFound) as exc_info:
            PendingChargeResolver.resolve(["wamid.X"], recipient="919373355199")

        assert exc_info.value.reason == "no_match"

    def test_fallback_disabled(self, held_charge, settings):
        """Should not search by recipient when disabled."""
        settings.WALLET_RECIPIENT_FALLBACK_ENABLED = False

        with pytest.raises(PendingChargeNotFound):
            PendingChargeResolver.resolve(
                ["wamid.X"], recipient="919373355199", user_id=held_charge.user_id
            )

    def test_fallback_scoped_to_user(self, held_charge, other_user_id):
        """Should not match another user's charge for the same recipient."""
        with pytest.raises(PendingChargeNotFound):
            PendingChargeResolver.resolve(
                ["wamid.X"], recipient="919373355199", user_id=other_user_id
            )

    def test_fallback_ignores_resolved_charges(self, held_charge):
        """Should only consider open charges."""
        wallet.settle_pending_charge("msg-1", delivered=True)

        with pytest.raises(PendingChargeNotFound):
            PendingChargeResolver.resolve(
                ["wamid.X"], recipient="919373355199", user_id=held_charge.user_id
            )

    def test_ambiguous_fallback(self, funded_wallet, caplog):
        """Should refuse to guess between several open charges."""
        _debit(funded_wallet, "k-1")
        _debit(funded_wallet, "k-2")

        with pytest.raises(PendingChargeNotFound) as exc_info:
            PendingChargeResolver.resolve(
                ["wamid.X"], recipient="+91 93733 55199", user_id=funded_wallet
            )

        assert exc_info.value.reason == "ambiguous_recipient_match"
        assert exc_info.value.details["candidate_count"] == 2
        assert "Ambiguous recipient fallback" in caplog.text


class TestRekey:
    """Tests for PendingChargeResolver.rekey()."""

    def test_keeps_original_key(self, held_charge):
        """Should change the current key only."""
        charge = PendingChargeResolver.rekey(held_charge.pending_charge, "wamid.NEW")

        charge.refresh_from_db()
        assert charge.correlation_key == "wamid.NEW"
        assert charge.original_correlation_key == "msg-1"

    def test_same_or_blank_key_is_noop(self, held_charge):
        """Should leave the charge untouched."""
        charge = held_charge.pending_charge

        PendingChargeResolver.rekey(charge, "msg-1")
        PendingChargeResolver.rekey(charge, "")

        assert PendingCharge.objects.get(pk=charge.pk).correlation_key == "msg-1"


class TestRaceWithOtherStatus:
    """A fallback candidate resolved by another status before the lock."""

    def test_claimed_charge_is_not_found(self, held_charge):
        """Should refuse to treat the claimed charge as this status's charge."""
        charge = held_charge.pending_charge
        wallet.settle_pending_charge("msg-1", delivered=True)
        stale = ChargeMatch(charge=charge, strategy=MatchStrategy.RECIPIENT_FALLBACK)
        before = WalletTransaction.objects.count()

        with patch.object(PendingChargeResolver, "resolve", return_value=stale):
            with pytest.raises(PendingChargeNotFound) as exc_info:
                wallet.settle_pending_charge(
                    "wamid.LATE",
                    delivered=False,
                    recipient="919373355199",
                    user_id=held_charge.user_id,
                )

        assert exc_info.value.reason == "claimed_by_other_event"
        assert WalletTransaction.objects.count() == before
