"""
End-to-end settlement journeys on one wallet.

Each test starts from a wallet holding 10000 and walks a message charge
through debit and settlement, checking balances, the transaction log, and
replayability after every step.
"""

import pytest

from billing.ledger.exceptions import PendingChargeNotFound
from billing.ledger.models import TransactionKind, WalletAccount, WalletTransaction
from billing.ledger.services import wallet
from billing.ledger.types import SettlementOutcome


def _balances(user_id: int) -> tuple[int, int]:
    account = WalletAccount.objects.get(user_id=user_id)
    return account.available_balance, account.suspense_balance


class TestFailedDeliveryJourney:
    """Debit then failed delivery restores the original balances."""

    def test_refund_restores_balances(self, funded_wallet):
        """Should end at 10000/0 with a SUSPENSE_REFUND of 2500."""
        wallet.debit_to_suspense(
            user_id=funded_wallet,
            amount=2500,
            category="marketing",
            correlation_key="msg-1",
        )
        assert _balances(funded_wallet) == (7500, 2500)

        result = wallet.settle_pending_charge("msg-1", delivered=False)

        assert result.outcome == SettlementOutcome.REFUNDED
        assert _balances(funded_wallet) == (10000, 0)
        refund = WalletTransaction.objects.get(
            user_id=funded_wallet, kind=TransactionKind.SUSPENSE_REFUND
        )
        assert refund.amount == 2500
        assert refund.reference == "msg-1"
        assert wallet.verify_account(funded_wallet).is_consistent


class TestDeliveredJourney:
    """Debit then delivery keeps the charge in suspense, exactly once."""

    def test_settle_then_repeat(self, funded_wallet):
        """Should stay at 7500/2500 and ignore further settlements."""
        wallet.debit_to_suspense(
            user_id=funded_wallet,
            amount=2500,
            category="utility",
            correlation_key="msg-2",
        )

        first = wallet.settle_pending_charge("msg-2", delivered=True)

        assert first.outcome == SettlementOutcome.SETTLED
        assert _balances(funded_wallet) == (7500, 2500)
        assert WalletTransaction.objects.filter(
            user_id=funded_wallet, kind=TransactionKind.SUSPENSE_SETTLE
        ).count() == 1

        for delivered in (True, False):
            again = wallet.settle_pending_charge("msg-2", delivered=delivered)
            assert again.outcome == SettlementOutcome.ALREADY_RESOLVED
            assert _balances(funded_wallet) == (7500, 2500)

        assert WalletTransaction.objects.filter(user_id=funded_wallet).count() == 3
        assert wallet.verify_account(funded_wallet).is_consistent


class TestUnknownCorrelationKey:
    """Settlement for a key nobody debited."""

    def test_not_found_and_no_transaction(self, funded_wallet):
        """Should raise PendingChargeNotFound and leave the log untouched."""
        before = WalletTransaction.objects.count()

        with pytest.raises(PendingChargeNotFound):
            wallet.settle_pending_charge(
                "msg-404",
                delivered=True,
                recipient="15550001111",
                user_id=funded_wallet,
            )

        assert WalletTransaction.objects.count() == before
        assert _balances(funded_wallet) == (10000, 0)


class TestMixedSequence:
    """Many charges with mixed outcomes keep the available invariant."""

    def test_available_equals_recharges_minus_unrefunded_debits(self, funded_wallet):
        """Should match initial + refunds - debits after any sequence."""
        outcomes = {"m1": True, "m2": False, "m3": True, "m4": False, "m5": None}
        for index, key in enumerate(outcomes, start=1):
            wallet.debit_to_suspense(
                user_id=funded_wallet,
                amount=500 * index,
                category="marketing",
                correlation_key=key,
            )
        for key, delivered in outcomes.items():
            if delivered is not None:
                wallet.settle_pending_charge(key, delivered=delivered)

        debited = sum(500 * i for i in range(1, 6))
        refunded = 500 * 2 + 500 * 4
        available, suspense = _balances(funded_wallet)

        assert available == 10000 - debited + refunded
        assert suspense == debited - refunded
        balance = wallet.get_balance(funded_wallet)
        assert balance.open_suspense == 500 * 5
        assert wallet.verify_account(funded_wallet).is_consistent
