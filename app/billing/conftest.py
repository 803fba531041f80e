"""
Pytest fixtures shared by billing tests.

Sections:
    - Identity Fixtures: User ids
    - Wallet Fixtures: Wallets in useful starting states
"""

import itertools

import pytest

from billing.ledger.services import wallet

_user_ids = itertools.count(5000)


# ==========================================================================
# Identity Fixtures
# ==========================================================================


@pytest.fixture
def user_id():
    """A user id not used by any other test."""
    return next(_user_ids)


@pytest.fixture
def other_user_id():
    """A second, distinct user id."""
    return next(_user_ids)


# ==========================================================================
# Wallet Fixtures
# ==========================================================================


@pytest.fixture
def funded_wallet(db, user_id):
    """
    Wallet recharged with 10000 (available=10000, suspense=0).

    Returns the user id.
    """
    wallet.recharge(user_id, 10000, reference="pay_test")
    return user_id


@pytest.fixture
def held_charge(funded_wallet):
    """
    Charge of 2500 held in suspense under "msg-1".

    Returns the SUSPENSE_DEBIT transaction.
    """
    return wallet.debit_to_suspense(
        user_id=funded_wallet,
        amount=2500,
        category="marketing",
        correlation_key="msg-1",
        recipient="+91 93733 55199",
    )
