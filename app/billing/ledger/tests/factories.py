"""
Factory Boy factories for ledger test data.

Accounts are the only ledger rows created directly; transactions and
pending charges are created through WalletService so the balances and the
log stay consistent.

Usage:
    from billing.ledger.tests.factories import WalletAccountFactory

    account = WalletAccountFactory()
    empty = WalletAccountFactory(available_balance=0)
"""

import factory

from billing.ledger.models import WalletAccount


class WalletAccountFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WalletAccount instances.

    Creates an empty wallet with a unique user_id. Balances set here are not
    backed by transactions; use wallet.recharge() when the log matters.
    """

    class Meta:
        model = WalletAccount
        skip_postgeneration_save = True

    user_id = factory.Sequence(lambda n: 1000 + n)
    available_balance = 0
    suspense_balance = 0
    currency = "INR"
