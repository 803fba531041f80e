"""
Wallet service layer.

This module provides the WalletService class which encapsulates every
balance-changing operation on a messaging wallet. All wallet writes go
through this service so that each one runs in a single transaction under the
wallet row lock and leaves an immutable transaction behind.

Operations:
    - recharge / adjust: Money in, manual corrections
    - transfer: Move available funds between two wallets
    - debit_to_suspense: Hold a message's price in suspense
    - settle_pending_charge: Resolve a held charge from its delivery status
    - refund_pending_charge: Compensating refund when dispatch failed
    - get_balance / get_transactions / verify_account: Read side

Usage:
    from billing.ledger.services import wallet

    wallet.recharge(user_id=7, amount=10000)
    debit = wallet.debit_to_suspense(
        user_id=7, amount=2500, category="marketing", correlation_key="msg-1",
    )
    result = wallet.settle_pending_charge("msg-1", delivered=True)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Sum

from core.exceptions import ValidationError
from core.helpers import generate_reference, normalize_phone_number

from billing.exceptions import InvalidCategory
from billing.locks import locked_wallet
from billing.state_machines import MessageCategory, PendingChargeState

from .exceptions import (
    CorrelationKeyConflict,
    CurrencyMismatch,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    PendingChargeNotFound,
)
from .models import (
    TERMINAL_KINDS,
    PendingCharge,
    TransactionKind,
    WalletAccount,
    WalletTransaction,
    default_currency,
)
from .reconciliation import ChargeMatch, PendingChargeResolver
from .types import (
    LedgerAudit,
    MatchStrategy,
    SettlementOutcome,
    SettlementResult,
    WalletBalance,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from billing.pricing.models import PricePlan


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TRANSACTION_PREFIXES = {
    TransactionKind.RECHARGE: "RC",
    TransactionKind.ADJUSTMENT: "ADJ",
    TransactionKind.SUSPENSE_DEBIT: "SD",
    TransactionKind.SUSPENSE_SETTLE: "SS",
    TransactionKind.SUSPENSE_REFUND: "SR",
}

WALLET_LABEL = "Wallet"
SUSPENSE_LABEL = "Suspense Account"
RECHARGE_SOURCE_LABEL = "Payment Gateway"
ADJUSTMENT_LABEL = "Admin Adjustment"
TRANSFER_LABEL = "Wallet Transfer"
DELIVERED_LABEL = "Delivered"


def _validate_amount(amount: int, field: str = "amount") -> None:
    """Reject anything that is not a positive integer."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(
            f"{field} must be a positive integer, got {amount!r}",
            details={field: repr(amount)},
        )


class WalletService:
    """
    Service class for wallet operations.

    Key features:
    - One transaction and one wallet row lock per operation
    - Balances and transaction log always change together
    - Debit is idempotent per correlation key
    - Settlement is idempotent per pending charge

    All methods are static - no instance state is maintained.
    """

    # ==========================================================================
    # Internal helpers
    # ==========================================================================

    @staticmethod
    def _record(
        account: WalletAccount,
        kind: TransactionKind,
        amount: int,
        available_delta: int = 0,
        suspense_delta: int = 0,
        **fields,
    ) -> WalletTransaction:
        """
        Apply deltas to a locked account and append the matching transaction.

        Caller must hold the wallet lock and have validated the deltas.
        """
        if available_delta or suspense_delta:
            account.available_balance += available_delta
            account.suspense_balance += suspense_delta
            account.save(
                update_fields=["available_balance", "suspense_balance", "updated_at"]
            )

        return WalletTransaction.objects.create(
            account=account,
            user_id=account.user_id,
            transaction_id=generate_reference(TRANSACTION_PREFIXES[kind]),
            kind=kind,
            amount=amount,
            available_delta=available_delta,
            suspense_delta=suspense_delta,
            currency=account.currency,
            balance_after=account.available_balance,
            suspense_balance_after=account.suspense_balance,
            **fields,
        )

    # ==========================================================================
    # Money in
    # ==========================================================================

    @staticmethod
    def recharge(
        user_id: int,
        amount: int,
        reference: str = "",
        details: str = "",
    ) -> WalletTransaction:
        """
        Add funds to the available balance.

        Args:
            user_id: Owner of the wallet
            amount: Positive amount in the smallest currency unit
            reference: External payment reference
            details: Human-readable description

        Returns:
            The RECHARGE transaction

        Raises:
            InvalidAmount: If amount is not a positive integer
        """
        _validate_amount(amount)

        with locked_wallet(user_id) as account:
            tx = WalletService._record(
                account,
                TransactionKind.RECHARGE,
                amount,
                available_delta=amount,
                reference=reference,
                details=details or "Wallet recharge",
                from_label=RECHARGE_SOURCE_LABEL,
                to_label=WALLET_LABEL,
            )

        logger.info(
            "Wallet recharged",
            extra={
                "user_id": user_id,
                "amount": amount,
                "transaction_id": tx.transaction_id,
                "balance_after": tx.balance_after,
            },
        )
        return tx

    @staticmethod
    def adjust(user_id: int, amount_delta: int, details: str = "") -> WalletTransaction:
        """
        Apply a signed manual correction to the available balance.

        Args:
            user_id: Owner of the wallet
            amount_delta: Non-zero signed amount (negative removes funds)
            details: Reason for the adjustment

        Returns:
            The ADJUSTMENT transaction

        Raises:
            InvalidAmount: If amount_delta is zero or not an integer
            InsufficientBalance: If a negative delta would overdraw the wallet
        """
        if isinstance(amount_delta, bool) or not isinstance(amount_delta, int) or amount_delta == 0:
            raise InvalidAmount(
                f"amount_delta must be a non-zero integer, got {amount_delta!r}",
                details={"amount_delta": repr(amount_delta)},
            )

        with locked_wallet(user_id) as account:
            if account.available_balance + amount_delta < 0:
                raise InsufficientBalance(
                    user_id=user_id,
                    required=-amount_delta,
                    available=account.available_balance,
                )

            credit = amount_delta > 0
            tx = WalletService._record(
                account,
                TransactionKind.ADJUSTMENT,
                abs(amount_delta),
                available_delta=amount_delta,
                details=details or "Balance adjustment",
                from_label=ADJUSTMENT_LABEL if credit else WALLET_LABEL,
                to_label=WALLET_LABEL if credit else ADJUSTMENT_LABEL,
            )

        logger.info(
            "Wallet adjusted",
            extra={
                "user_id": user_id,
                "amount_delta": amount_delta,
                "transaction_id": tx.transaction_id,
                "balance_after": tx.balance_after,
            },
        )
        return tx

    @staticmethod
    def transfer(
        from_user_id: int,
        to_user_id: int,
        amount: int,
        details: str = "",
    ) -> tuple[WalletTransaction, WalletTransaction]:
        """
        Move available funds from one wallet to another.

        Used by aggregators topping up the businesses they manage. Both
        wallet rows are locked in ascending user_id order so two opposite
        transfers between the same wallets cannot deadlock. Each side gets
        an ADJUSTMENT entry sharing one reference.

        Args:
            from_user_id: Wallet the funds leave
            to_user_id: Wallet the funds enter
            amount: Positive amount in the smallest currency unit
            details: Human-readable description

        Returns:
            (debit, credit) ADJUSTMENT transactions

        Raises:
            InvalidAmount: If amount is not a positive integer
            ValidationError: If both sides are the same wallet
            InsufficientBalance: If the source cannot cover the amount
            CurrencyMismatch: If the wallets hold different currencies
            AccountLockTimeout: If either lock was not acquired in time
        """
        _validate_amount(amount)
        if from_user_id == to_user_id:
            raise ValidationError(
                "Cannot transfer to the same wallet",
                error_code="SAME_WALLET_TRANSFER",
                details={"user_id": from_user_id},
            )

        reference = generate_reference("TRF")
        first_id, second_id = sorted((from_user_id, to_user_id))

        with locked_wallet(first_id) as first, locked_wallet(second_id) as second:
            accounts = {first.user_id: first, second.user_id: second}
            source, target = accounts[from_user_id], accounts[to_user_id]

            if source.available_balance < amount:
                raise InsufficientBalance(
                    user_id=from_user_id,
                    required=amount,
                    available=source.available_balance,
                    details={"to_user_id": to_user_id},
                )
            if source.currency != target.currency:
                raise CurrencyMismatch(
                    user_id=to_user_id,
                    expected=target.currency,
                    received=source.currency,
                )

            description = details or "Wallet transfer"
            debit = WalletService._record(
                source,
                TransactionKind.ADJUSTMENT,
                amount,
                available_delta=-amount,
                reference=reference,
                details=description,
                from_label=WALLET_LABEL,
                to_label=f"{TRANSFER_LABEL} to user {to_user_id}",
            )
            credit = WalletService._record(
                target,
                TransactionKind.ADJUSTMENT,
                amount,
                available_delta=amount,
                reference=reference,
                details=description,
                from_label=f"{TRANSFER_LABEL} from user {from_user_id}",
                to_label=WALLET_LABEL,
            )

        logger.info(
            "Wallet transfer completed",
            extra={
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "amount": amount,
                "reference": reference,
                "from_balance_after": debit.balance_after,
                "to_balance_after": credit.balance_after,
            },
        )
        return debit, credit

    # ==========================================================================
    # Suspense protocol
    # ==========================================================================

    @staticmethod
    def debit_to_suspense(
        user_id: int,
        amount: int,
        category: MessageCategory | str,
        correlation_key: str,
        recipient: str = "",
        price_plan: PricePlan | None = None,
        country_code: str = "",
        currency: str | None = None,
    ) -> WalletTransaction:
        """
        Move a message's price from the available balance into suspense.

        Idempotent per correlation key: if a charge with this key already
        exists for the same wallet, its original SUSPENSE_DEBIT is returned and
        nothing changes.

        Args:
            user_id: Owner of the wallet
            amount: Positive price in the smallest currency unit
            category: Message category the price was resolved for
            correlation_key: Provider message id the delivery status will carry
            recipient: Recipient phone number (stored digits only)
            price_plan: Plan the price came from
            country_code: Recipient country used for pricing
            currency: Currency the amount is in (None = the wallet's)

        Returns:
            The SUSPENSE_DEBIT transaction

        Raises:
            InvalidAmount: If amount is not a positive integer
            CurrencyMismatch: If currency differs from the wallet's
            InsufficientBalance: If available balance < amount (nothing changes)
            CorrelationKeyConflict: If another wallet already holds the key
            AccountLockTimeout: If the wallet lock was not acquired in time
        """
        _validate_amount(amount)
        if not correlation_key:
            raise ValidationError(
                "correlation_key is required",
                error_code="CORRELATION_KEY_REQUIRED",
            )
        try:
            category = MessageCategory(category)
        except ValueError as exc:
            raise InvalidCategory(
                f"Unknown message category '{category}'",
                details={"category": str(category)},
            ) from exc
        digits = normalize_phone_number(recipient)

        with locked_wallet(user_id) as account:
            if currency and currency.upper() != account.currency:
                raise CurrencyMismatch(
                    user_id=user_id,
                    expected=account.currency,
                    received=currency.upper(),
                    details={"correlation_key": correlation_key},
                )

            existing = PendingCharge.objects.filter(correlation_key=correlation_key).first()
            if existing is not None:
                if existing.user_id != user_id:
                    raise CorrelationKeyConflict(
                        f"Correlation key {correlation_key} belongs to another wallet",
                        details={"correlation_key": correlation_key},
                    )
                logger.info(
                    "Duplicate suspense debit ignored",
                    extra={"user_id": user_id, "correlation_key": correlation_key},
                )
                return existing.transactions.get(kind=TransactionKind.SUSPENSE_DEBIT)

            if account.available_balance < amount:
                logger.info(
                    "Suspense debit rejected: insufficient balance",
                    extra={
                        "user_id": user_id,
                        "correlation_key": correlation_key,
                        "amount": amount,
                        "available": account.available_balance,
                    },
                )
                raise InsufficientBalance(
                    user_id=user_id,
                    required=amount,
                    available=account.available_balance,
                    details={"correlation_key": correlation_key},
                )

            try:
                with transaction.atomic():
                    charge = PendingCharge.objects.create(
                        user_id=user_id,
                        account=account,
                        correlation_key=correlation_key,
                        original_correlation_key=correlation_key,
                        recipient=digits,
                        category=category,
                        amount=amount,
                        currency=account.currency,
                        price_plan=price_plan,
                        country_code=(country_code or "").upper(),
                    )
            except IntegrityError as exc:
                # Another wallet inserted the same key after our lookup
                raise CorrelationKeyConflict(
                    f"Correlation key {correlation_key} belongs to another wallet",
                    details={"correlation_key": correlation_key},
                ) from exc

            tx = WalletService._record(
                account,
                TransactionKind.SUSPENSE_DEBIT,
                amount,
                available_delta=-amount,
                suspense_delta=amount,
                reference=correlation_key,
                recipient=digits,
                details=f"{category.label} message - {correlation_key}",
                from_label=WALLET_LABEL,
                to_label=SUSPENSE_LABEL,
                pending_charge=charge,
            )

        logger.info(
            "Moved message charge to suspense",
            extra={
                "user_id": user_id,
                "correlation_key": correlation_key,
                "category": category.value,
                "amount": amount,
                "transaction_id": tx.transaction_id,
                "balance_after": tx.balance_after,
                "suspense_balance_after": tx.suspense_balance_after,
            },
        )
        return tx

    @staticmethod
    def _resolve_charge(
        match: ChargeMatch,
        correlation_key: str,
        delivered: bool,
        reason: str,
    ) -> SettlementResult:
        """
        Settle or refund a located charge under the wallet lock.

        The charge is re-read with a row lock; its state at that point, not at
        lookup time, decides the outcome.
        """
        with locked_wallet(match.charge.user_id) as account:
            charge = PendingCharge.objects.select_for_update().get(pk=match.charge.pk)

            if not charge.is_open:
                if (
                    match.strategy == MatchStrategy.RECIPIENT_FALLBACK
                    and charge.correlation_key != correlation_key
                    and charge.original_correlation_key != correlation_key
                ):
                    # Another status claimed this charge after our lookup
                    raise PendingChargeNotFound(
                        [correlation_key],
                        reason="claimed_by_other_event",
                        details={"charge_id": str(charge.id)},
                    )

                logger.info(
                    "Duplicate settlement ignored",
                    extra={
                        "user_id": charge.user_id,
                        "correlation_key": charge.correlation_key,
                        "state": charge.state,
                    },
                )
                return SettlementResult(
                    charge=charge,
                    outcome=SettlementOutcome.ALREADY_RESOLVED,
                    transaction=charge.transactions.filter(kind__in=TERMINAL_KINDS).first(),
                    matched_by=match.strategy,
                )

            if match.strategy == MatchStrategy.RECIPIENT_FALLBACK:
                PendingChargeResolver.rekey(charge, correlation_key)

            if delivered:
                tx = WalletService._record(
                    account,
                    TransactionKind.SUSPENSE_SETTLE,
                    charge.amount,
                    reference=charge.correlation_key,
                    recipient=charge.recipient,
                    details=f"Delivery confirmed - {charge.correlation_key}",
                    from_label=SUSPENSE_LABEL,
                    to_label=DELIVERED_LABEL,
                    pending_charge=charge,
                )
                charge.settle(reason=reason)
                outcome = SettlementOutcome.SETTLED
            else:
                if account.suspense_balance < charge.amount:
                    raise LedgerError(
                        f"Suspense balance of user {charge.user_id} is below an open charge",
                        error_code="SUSPENSE_UNDERFLOW",
                        details={
                            "user_id": charge.user_id,
                            "suspense_balance": account.suspense_balance,
                            "charge_amount": charge.amount,
                        },
                    )
                tx = WalletService._record(
                    account,
                    TransactionKind.SUSPENSE_REFUND,
                    charge.amount,
                    available_delta=charge.amount,
                    suspense_delta=-charge.amount,
                    reference=charge.correlation_key,
                    recipient=charge.recipient,
                    details=f"Refund for failed delivery - {charge.correlation_key}",
                    from_label=SUSPENSE_LABEL,
                    to_label=WALLET_LABEL,
                    pending_charge=charge,
                )
                charge.refund(reason=reason)
                outcome = SettlementOutcome.REFUNDED

            charge.save()

        logger.info(
            "Pending charge resolved",
            extra={
                "user_id": charge.user_id,
                "correlation_key": charge.correlation_key,
                "outcome": outcome.value,
                "matched_by": match.strategy.value,
                "amount": charge.amount,
                "transaction_id": tx.transaction_id,
                "balance_after": tx.balance_after,
                "suspense_balance_after": tx.suspense_balance_after,
            },
        )
        return SettlementResult(
            charge=charge,
            outcome=outcome,
            transaction=tx,
            matched_by=match.strategy,
        )

    @staticmethod
    def settle_pending_charge(
        correlation_key: str,
        delivered: bool,
        recipient: str | None = None,
        user_id: int | None = None,
        alternate_keys: Sequence[str] = (),
        occurred_at: datetime | None = None,
        reason: str | None = None,
    ) -> SettlementResult:
        """
        Resolve a pending charge from its delivery status.

        Delivered: a SUSPENSE_SETTLE is appended and both balances stay as
        they are. Not delivered: the amount moves from suspense back to
        available and a SUSPENSE_REFUND is appended. A charge is resolved at
        most once; repeated calls return ALREADY_RESOLVED without changes.

        Args:
            correlation_key: Message id carried by the delivery status
            delivered: Whether the provider reports the message delivered
            recipient: Recipient reported with the status (enables fallback)
            user_id: Owner of the sending number (enables fallback)
            alternate_keys: Further ids to try (e.g. conversation id)
            occurred_at: Status timestamp, bounds the fallback window
            reason: Resolution reason stored on the charge

        Returns:
            SettlementResult

        Raises:
            PendingChargeNotFound: If no charge matches (nothing changes)
            AccountLockTimeout: If the wallet lock was not acquired in time
        """
        match = PendingChargeResolver.resolve(
            [correlation_key, *alternate_keys],
            recipient=recipient,
            user_id=user_id,
            occurred_at=occurred_at,
        )
        return WalletService._resolve_charge(
            match,
            correlation_key,
            delivered,
            reason or ("delivered" if delivered else "delivery_failed"),
        )

    @staticmethod
    def refund_pending_charge(
        correlation_key: str,
        user_id: int | None = None,
        reason: str = "dispatch_failed",
    ) -> SettlementResult:
        """
        Refund a held charge whose message was never dispatched.

        Exact match only: the caller holds the key it debited with.

        Args:
            correlation_key: Key the charge was debited with
            user_id: If given, the charge must belong to this user
            reason: Resolution reason stored on the charge

        Raises:
            PendingChargeNotFound: If no charge of this user has this key
        """
        match = PendingChargeResolver.resolve([correlation_key], allow_fallback=False)
        if user_id is not None and match.charge.user_id != user_id:
            raise PendingChargeNotFound(
                [correlation_key],
                details={"user_id": user_id},
            )
        return WalletService._resolve_charge(match, correlation_key, False, reason)

    # ==========================================================================
    # Read side
    # ==========================================================================

    @staticmethod
    def get_balance(user_id: int) -> WalletBalance:
        """
        Current balances of a wallet (zeros if it does not exist yet).

        open_suspense is the part of suspense still awaiting a delivery status.
        """
        account = WalletAccount.objects.filter(user_id=user_id).first()
        if account is None:
            return WalletBalance(
                user_id=user_id,
                available=0,
                suspense=0,
                open_suspense=0,
                currency=default_currency(),
            )

        open_suspense = (
            account.pending_charges.filter(state=PendingChargeState.OPEN).aggregate(
                total=Sum("amount")
            )["total"]
            or 0
        )
        return WalletBalance(
            user_id=user_id,
            available=account.available_balance,
            suspense=account.suspense_balance,
            open_suspense=open_suspense,
            currency=account.currency,
        )

    @staticmethod
    def get_transactions(
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        kind: TransactionKind | str | None = None,
    ) -> list[WalletTransaction]:
        """
        Transactions of a wallet, newest first.

        Args:
            user_id: Owner of the wallet
            limit: Maximum number of transactions to return (default: 50)
            offset: Number of transactions to skip (default: 0)
            kind: Only return transactions of this kind
        """
        queryset = WalletTransaction.objects.filter(user_id=user_id)
        if kind:
            queryset = queryset.filter(kind=kind)
        return list(queryset.order_by("-id")[offset : offset + limit])

    @staticmethod
    def verify_account(user_id: int) -> LedgerAudit:
        """
        Replay a wallet's transaction log against its stored balances.

        Returns:
            LedgerAudit; is_consistent is False if the balances drifted

        Raises:
            WalletAccount.DoesNotExist: If the user has no wallet
        """
        account = WalletAccount.objects.get(user_id=user_id)
        replayed_available, replayed_suspense = account.replay_balances()
        audit = LedgerAudit(
            user_id=user_id,
            available_balance=account.available_balance,
            suspense_balance=account.suspense_balance,
            replayed_available=replayed_available,
            replayed_suspense=replayed_suspense,
            transaction_count=account.transactions.count(),
        )
        if not audit.is_consistent:
            logger.error(
                "Wallet balances do not match transaction log",
                extra={
                    "user_id": user_id,
                    "available_balance": audit.available_balance,
                    "replayed_available": audit.replayed_available,
                    "suspense_balance": audit.suspense_balance,
                    "replayed_suspense": audit.replayed_suspense,
                },
            )
        return audit


# Singleton instance for convenience
# Usage: from billing.ledger.services import wallet
wallet = WalletService()
