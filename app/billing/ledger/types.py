"""
Data types for wallet ledger operations.

Types:
    WalletBalance: Snapshot of a wallet's balances
    SettlementOutcome: What a settlement call did
    MatchStrategy: How a delivery status was matched to its charge
    SettlementResult: Result of settling or refunding a pending charge
    LedgerAudit: Result of replaying a wallet's transaction log

Usage:
    from billing.ledger.types import SettlementOutcome

    result = wallet.settle_pending_charge("wamid.HBgM", delivered=True)
    result.outcome == SettlementOutcome.SETTLED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import PendingCharge, WalletTransaction


@dataclass(frozen=True)
class WalletBalance:
    """
    Balances of one wallet.

    Attributes:
        available: Spendable balance
        suspense: Suspense balance (open and settled charges)
        open_suspense: Part of suspense still awaiting a delivery status
        currency: ISO 4217 currency code
    """

    user_id: int
    available: int
    suspense: int
    open_suspense: int
    currency: str

    @property
    def settled_suspense(self) -> int:
        """Part of suspense whose delivery has been confirmed."""
        return self.suspense - self.open_suspense


class SettlementOutcome(str, Enum):
    """What a settlement call did."""

    SETTLED = "settled"
    REFUNDED = "refunded"
    ALREADY_RESOLVED = "already_resolved"


class MatchStrategy(str, Enum):
    """How a delivery status was matched to its pending charge."""

    EXACT = "exact"
    RECIPIENT_FALLBACK = "recipient_fallback"


@dataclass
class SettlementResult:
    """
    Result of settling or refunding a pending charge.

    Attributes:
        charge: The pending charge (in its final state)
        outcome: SETTLED, REFUNDED, or ALREADY_RESOLVED for a repeated call
        transaction: Terminal transaction appended by this call (or the
            existing one when ALREADY_RESOLVED)
        matched_by: Strategy that located the charge
    """

    charge: PendingCharge
    outcome: SettlementOutcome
    transaction: WalletTransaction | None
    matched_by: MatchStrategy

    @property
    def is_duplicate(self) -> bool:
        """True when the charge had already been resolved earlier."""
        return self.outcome == SettlementOutcome.ALREADY_RESOLVED

    def as_dict(self) -> dict:
        """Plain representation for task results and logs."""
        return {
            "charge_id": str(self.charge.id),
            "correlation_key": self.charge.correlation_key,
            "outcome": self.outcome.value,
            "matched_by": self.matched_by.value,
            "transaction_id": self.transaction.transaction_id if self.transaction else None,
        }


@dataclass(frozen=True)
class LedgerAudit:
    """
    Result of replaying a wallet's transaction log.

    Attributes:
        available_balance / suspense_balance: Balances stored on the account
        replayed_available / replayed_suspense: Balances implied by the log
        transaction_count: Number of transactions replayed
    """

    user_id: int
    available_balance: int
    suspense_balance: int
    replayed_available: int
    replayed_suspense: int
    transaction_count: int

    @property
    def is_consistent(self) -> bool:
        """True when the stored balances equal the replayed ones."""
        return (
            self.available_balance == self.replayed_available
            and self.suspense_balance == self.replayed_suspense
        )
