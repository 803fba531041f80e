"""
Wallet ledger models.

This module defines the persistent state of the messaging wallet:
- WalletAccount: One per user, holding the available and suspense balances
- WalletTransaction: Immutable, append-only log of every balance movement
- PendingCharge: A message charge held in suspense until its delivery
  status arrives

The account row is the lock that serializes every mutation of a wallet.
Balances on the account always equal the sum of the signed deltas recorded
in its transaction log.

Usage:
    from billing.ledger.models import WalletAccount, TransactionKind

    account = WalletAccount.objects.get(user_id=7)
    account.available_balance  # 7500 (paise)
    account.transactions.filter(kind=TransactionKind.SUSPENSE_DEBIT)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import MessageCategory, PendingChargeState

from .exceptions import ImmutableTransactionError


def default_currency() -> str:
    """Currency for newly created wallets and charges."""
    return settings.WALLET_DEFAULT_CURRENCY


class TransactionKind(models.TextChoices):
    """
    Kinds of wallet transactions.

    Values:
        RECHARGE: Money added to the available balance
        ADJUSTMENT: Manual signed correction of the available balance
        SUSPENSE_DEBIT: Message price moved from available into suspense
        SUSPENSE_SETTLE: Delivery confirmed, funds stay in suspense
        SUSPENSE_REFUND: Delivery failed, funds return to available
    """

    RECHARGE = "recharge", "Recharge"
    ADJUSTMENT = "adjustment", "Adjustment"
    SUSPENSE_DEBIT = "suspense_debit", "Suspense Debit"
    SUSPENSE_SETTLE = "suspense_settle", "Suspense Settle"
    SUSPENSE_REFUND = "suspense_refund", "Suspense Refund"


TERMINAL_KINDS = (TransactionKind.SUSPENSE_SETTLE, TransactionKind.SUSPENSE_REFUND)


class WalletAccount(BaseModel):
    """
    A user's messaging wallet.

    Created lazily on first use and never deleted. Mutated only through
    WalletService while holding this row's lock.

    Fields:
        user_id: Opaque owner key (one wallet per user)
        available_balance: Spendable funds, smallest currency unit
        suspense_balance: Funds held for sent messages
        currency: ISO 4217 currency code

    Constraints:
        - available_balance >= 0
        - suspense_balance >= 0
    """

    user_id = models.PositiveBigIntegerField(
        unique=True,
        help_text="Identifier of the user that owns this wallet",
    )
    available_balance = models.BigIntegerField(
        default=0,
        help_text="Spendable balance in the smallest currency unit",
    )
    suspense_balance = models.BigIntegerField(
        default=0,
        help_text="Balance held for sent messages, smallest currency unit",
    )
    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code",
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(available_balance__gte=0),
                name="wallet_available_balance_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(suspense_balance__gte=0),
                name="wallet_suspense_balance_non_negative",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return (
            f"Wallet(user={self.user_id}, available={self.available_balance}, "
            f"suspense={self.suspense_balance} {self.currency})"
        )

    def replay_balances(self) -> tuple[int, int]:
        """
        Recompute both balances from the transaction log.

        Returns:
            Tuple of (available, suspense) implied by the recorded deltas
        """
        totals = self.transactions.aggregate(
            available=Coalesce(
                Sum("available_delta"), Value(0), output_field=models.BigIntegerField()
            ),
            suspense=Coalesce(
                Sum("suspense_delta"), Value(0), output_field=models.BigIntegerField()
            ),
        )
        return totals["available"], totals["suspense"]


class PendingCharge(UUIDPrimaryKeyMixin, BaseModel):
    """
    A message charge held in suspense until its delivery status arrives.

    The charge is the mutable companion of its SUSPENSE_DEBIT transaction: the
    transaction log stays append-only while the charge records which key
    identifies the message and whether it has been resolved.

    State Flow:
        OPEN -> SETTLED   (delivered)
        OPEN -> REFUNDED  (delivery or dispatch failed)

    Fields:
        correlation_key: Current key the provider's status is matched on
            (message id). Changed only when a recipient fallback re-keys it.
        original_correlation_key: Key the charge was created with
        recipient: Recipient phone number, digits only
        category: Message category the price was resolved for
        amount: Charged amount, smallest currency unit
        state: OPEN until settled or refunded (managed by FSM)
    """

    user_id = models.PositiveBigIntegerField(
        db_index=True,
        help_text="Identifier of the user that was charged",
    )
    account = models.ForeignKey(
        WalletAccount,
        on_delete=models.PROTECT,
        related_name="pending_charges",
        help_text="Wallet the amount was moved into suspense on",
    )
    correlation_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Current message identifier used to match delivery statuses",
    )
    original_correlation_key = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Message identifier the charge was created with",
    )
    recipient = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Recipient phone number, digits only",
    )
    category = models.CharField(
        max_length=20,
        choices=MessageCategory.choices,
        help_text="Message category the price was resolved for",
    )
    amount = models.PositiveBigIntegerField(
        help_text="Charged amount in the smallest currency unit",
    )
    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code",
    )
    price_plan = models.ForeignKey(
        "billing.PricePlan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="pending_charges",
        help_text="Price plan the amount was taken from",
    )
    country_code = models.CharField(
        max_length=8,
        blank=True,
        default="",
        help_text="Recipient country code used for price overrides",
    )

    state = FSMField(
        default=PendingChargeState.OPEN,
        choices=PendingChargeState.choices,
        db_index=True,
        help_text="Current state of the charge (managed by FSM)",
    )
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge was settled or refunded",
    )
    resolution_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Why the charge was resolved (delivery status, dispatch failure)",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["user_id", "recipient", "state", "created_at"],
                name="pending_charge_fallback_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="pending_charge_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with key, state, and amount."""
        return f"PendingCharge({self.correlation_key}, {self.state}, {self.amount})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=PendingChargeState.OPEN,
        target=PendingChargeState.SETTLED,
    )
    def settle(self, reason: str = "delivered"):
        """
        Confirm the message was delivered.

        Transition: OPEN -> SETTLED
        """
        self.resolved_at = timezone.now()
        self.resolution_reason = reason

    @transition(
        field=state,
        source=PendingChargeState.OPEN,
        target=PendingChargeState.REFUNDED,
    )
    def refund(self, reason: str = "failed"):
        """
        Return the held amount to the wallet.

        Transition: OPEN -> REFUNDED
        """
        self.resolved_at = timezone.now()
        self.resolution_reason = reason

    @property
    def is_open(self) -> bool:
        """Check if the charge still awaits its delivery status."""
        return self.state == PendingChargeState.OPEN


class WalletTransaction(models.Model):
    """
    One immutable movement on a wallet.

    Each row records the signed effect on both balances together with the
    balances right after it was applied, so the log can be replayed and
    audited. Rows are never updated or deleted; corrections are new
    ADJUSTMENT rows.

    Fields:
        transaction_id: Unique, externally visible identifier
        kind: What kind of movement this is
        amount: Absolute amount (always positive)
        available_delta: Signed change to the available balance
        suspense_delta: Signed change to the suspense balance
        balance_after: Available balance after this movement
        suspense_balance_after: Suspense balance after this movement
        reference: Correlation key or free-text reference
        pending_charge: Charge this movement belongs to (suspense kinds only)

    Constraints:
        - amount must be positive
        - at most one SUSPENSE_DEBIT per pending charge
        - at most one SUSPENSE_SETTLE/SUSPENSE_REFUND per pending charge
    """

    account = models.ForeignKey(
        WalletAccount,
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Wallet this movement applies to",
    )
    user_id = models.PositiveBigIntegerField(
        db_index=True,
        help_text="Identifier of the wallet owner",
    )
    transaction_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Externally visible transaction identifier",
    )
    kind = models.CharField(
        max_length=20,
        choices=TransactionKind.choices,
        help_text="Kind of movement",
    )
    amount = models.PositiveBigIntegerField(
        help_text="Absolute amount in the smallest currency unit",
    )
    available_delta = models.BigIntegerField(
        help_text="Signed change applied to the available balance",
    )
    suspense_delta = models.BigIntegerField(
        help_text="Signed change applied to the suspense balance",
    )
    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code",
    )
    reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Correlation key or external reference",
    )
    recipient = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Recipient phone number, digits only (suspense debits)",
    )
    details = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable description",
    )
    from_label = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Where the money came from (e.g. 'Wallet')",
    )
    to_label = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Where the money went (e.g. 'Suspense Account')",
    )
    balance_after = models.BigIntegerField(
        help_text="Available balance right after this movement",
    )
    suspense_balance_after = models.BigIntegerField(
        help_text="Suspense balance right after this movement",
    )
    pending_charge = models.ForeignKey(
        PendingCharge,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text="Pending charge this movement belongs to",
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this movement was recorded",
    )

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["user_id", "kind"], name="wallet_tx_user_kind_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="wallet_transaction_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["pending_charge"],
                condition=Q(kind=TransactionKind.SUSPENSE_DEBIT),
                name="single_debit_per_pending_charge",
            ),
            models.UniqueConstraint(
                fields=["pending_charge"],
                condition=Q(kind__in=TERMINAL_KINDS),
                name="single_resolution_per_pending_charge",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return f"{self.get_kind_display()}: {self.amount} {self.currency}"

    def save(self, *args, **kwargs):
        """Insert only; recorded transactions cannot be changed."""
        if not self._state.adding:
            raise ImmutableTransactionError(
                f"Wallet transaction {self.transaction_id} cannot be modified",
                details={"transaction_id": self.transaction_id},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Recorded transactions cannot be deleted."""
        raise ImmutableTransactionError(
            f"Wallet transaction {self.transaction_id} cannot be deleted",
            details={"transaction_id": self.transaction_id},
        )
