"""
Ledger - Prepaid messaging wallet with a suspense account.

Each user has one wallet with two balances. Sending a chargeable message
moves its price from the available balance into suspense; the delivery
status later either settles the charge (funds stay in suspense) or refunds
it (funds return to available). Every movement is appended to an immutable
transaction log whose signed deltas always sum to the balances.

Public API:
    Models (billing.ledger.models):
        WalletAccount - Per-user balances
        WalletTransaction - Immutable movement log
        PendingCharge - Charge awaiting its delivery status
        TransactionKind - Enum of movement kinds

    Service (billing.ledger.services):
        wallet - Singleton instance of WalletService
        WalletService - Class with all wallet operations

    Types:
        WalletBalance, SettlementResult, SettlementOutcome,
        MatchStrategy, LedgerAudit

    Exceptions:
        LedgerError, InsufficientBalance, PendingChargeNotFound,
        InvalidAmount, AccountLockTimeout, CorrelationKeyConflict,
        CurrencyMismatch, ImmutableTransactionError

Usage:
    from billing.ledger.services import wallet
    from billing.ledger import InsufficientBalance

    wallet.recharge(user_id=7, amount=10000)

    try:
        wallet.debit_to_suspense(
            user_id=7,
            amount=2500,
            category="marketing",
            correlation_key="wamid.HBgM",
            recipient="+91 93733 55199",
        )
    except InsufficientBalance as e:
        print(f"Need {e.required}, have {e.available}")

    # Later, from the delivery-status webhook
    result = wallet.settle_pending_charge("wamid.HBgM", delivered=False)
    result.outcome  # SettlementOutcome.REFUNDED

Note:
    Models and services are not imported here to keep this package importable
    while Django is still loading the billing models.
"""

from .exceptions import (
    AccountLockTimeout,
    CorrelationKeyConflict,
    CurrencyMismatch,
    ImmutableTransactionError,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    PendingChargeNotFound,
)
from .types import (
    LedgerAudit,
    MatchStrategy,
    SettlementOutcome,
    SettlementResult,
    WalletBalance,
)

__all__ = [
    # Types
    "LedgerAudit",
    "MatchStrategy",
    "SettlementOutcome",
    "SettlementResult",
    "WalletBalance",
    # Exceptions
    "AccountLockTimeout",
    "CorrelationKeyConflict",
    "CurrencyMismatch",
    "ImmutableTransactionError",
    "InsufficientBalance",
    "InvalidAmount",
    "LedgerError",
    "PendingChargeNotFound",
]
