"""
Charge orchestration for outgoing messages.

This module provides the ChargeService class which the message-send path
calls around each dispatch:

1. preflight: Can the user pay for this action at all? (no mutation)
2. hold_for_message: After the provider accepted a message, move its price
   into suspense under the provider's message id
3. release_for_failed_dispatch: The send failed after the hold; refund it

Delivery statuses then settle or refund the hold asynchronously (see
billing.webhooks).

Usage:
    from billing.services import ChargeService

    check = ChargeService.preflight(user_id=7, category="marketing", recipients=120)
    if not check:
        return deny(check.error_code)  # INSUFFICIENT_BALANCE

    response = provider.send(...)
    result = ChargeService.hold_for_message(
        user_id=7,
        correlation_key=response.message_id,
        category="marketing",
        recipient="+91 93733 55199",
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from billing.exceptions import InvalidCategory
from billing.ledger.exceptions import (
    CorrelationKeyConflict,
    CurrencyMismatch,
    InsufficientBalance,
    PendingChargeNotFound,
)
from billing.ledger.services import WalletService
from billing.pricing.services import PricingResolver, Quote

if TYPE_CHECKING:
    from billing.ledger.models import WalletTransaction
    from billing.ledger.types import SettlementResult
    from billing.state_machines import MessageCategory


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PreflightCheck:
    """
    Result of a successful pre-flight check.

    Attributes:
        quote: Price of one message
        recipients: Number of messages the action will send
        required: Total amount the action needs
        available: Available balance at check time
    """

    quote: Quote
    recipients: int
    required: int
    available: int


@dataclass
class ChargeHold:
    """
    Result of holding a message's price in suspense.

    Attributes:
        quote: Price the message was charged at
        transaction: SUSPENSE_DEBIT transaction (None if not billable)
    """

    quote: Quote
    transaction: WalletTransaction | None = None

    @property
    def charged(self) -> bool:
        return self.transaction is not None


# =============================================================================
# Charge Service
# =============================================================================


class ChargeService(BaseService):
    """
    Service for charging wallets around message dispatch.

    Dependencies are injectable class attributes so tests and alternative
    processes can substitute the wallet or the price source.

    Failure Codes:
        - INSUFFICIENT_BALANCE: Wallet cannot cover the action
        - INVALID_CATEGORY: Unknown message category
        - CORRELATION_KEY_CONFLICT: Message id already charged to another wallet
        - CURRENCY_MISMATCH: Price is not in the wallet's currency
        - PENDING_CHARGE_NOT_FOUND: Nothing to release for this message id

    AccountLockTimeout is not converted to a failure result; it propagates so
    the caller retries the whole operation.
    """

    # Wallet and pricing - can be injected for testing
    _wallet: type | None = None
    _pricing: type | None = None

    @classmethod
    def get_wallet(cls) -> type:
        """Get the wallet service class."""
        return cls._wallet or WalletService

    @classmethod
    def set_wallet(cls, wallet: type | None) -> None:
        """Set the wallet service class (for testing)."""
        cls._wallet = wallet

    @classmethod
    def get_pricing(cls) -> type:
        """Get the pricing resolver class."""
        return cls._pricing or PricingResolver

    @classmethod
    def set_pricing(cls, pricing: type | None) -> None:
        """Set the pricing resolver class (for testing)."""
        cls._pricing = pricing

    # ==========================================================================
    # Operations
    # ==========================================================================

    @classmethod
    def preflight(
        cls,
        user_id: int,
        category: MessageCategory | str,
        recipients: int = 1,
        country_code: str | None = None,
    ) -> ServiceResult[PreflightCheck]:
        """
        Check that a user can pay for an action before attempting it.

        Reads only; the balance may still change before the hold.

        Args:
            user_id: Sender
            category: Message category
            recipients: Number of messages the action sends
            country_code: Recipient country for price overrides

        Returns:
            ServiceResult with PreflightCheck, or failure INSUFFICIENT_BALANCE
            or CURRENCY_MISMATCH
        """
        try:
            quote = cls.get_pricing().quote(user_id, category, country_code)
        except InvalidCategory as e:
            return ServiceResult.from_exception(e)

        required = quote.amount * max(recipients, 0)
        balance = cls.get_wallet().get_balance(user_id)
        available = balance.available

        if quote.is_billable and quote.currency != balance.currency:
            cls.get_logger().warning(
                "Preflight rejected: currency mismatch",
                extra={
                    "user_id": user_id,
                    "quote_currency": quote.currency,
                    "wallet_currency": balance.currency,
                },
            )
            return ServiceResult.from_exception(
                CurrencyMismatch(
                    user_id=user_id,
                    expected=balance.currency,
                    received=quote.currency,
                )
            )

        if available < required:
            cls.get_logger().info(
                "Preflight rejected: insufficient balance",
                extra={
                    "user_id": user_id,
                    "category": quote.category.value,
                    "recipients": recipients,
                    "required": required,
                    "available": available,
                },
            )
            return ServiceResult.from_exception(
                InsufficientBalance(user_id=user_id, required=required, available=available)
            )

        return ServiceResult.success(
            PreflightCheck(
                quote=quote,
                recipients=recipients,
                required=required,
                available=available,
            )
        )

    @classmethod
    def hold_for_message(
        cls,
        user_id: int,
        correlation_key: str,
        category: MessageCategory | str,
        recipient: str = "",
        country_code: str | None = None,
    ) -> ServiceResult[ChargeHold]:
        """
        Move the price of a dispatched message into suspense.

        Messages priced at 0 succeed without touching the wallet.

        Args:
            user_id: Sender
            correlation_key: Provider message id
            category: Message category
            recipient: Recipient phone number
            country_code: Recipient country for price overrides

        Returns:
            ServiceResult with ChargeHold

        Raises:
            AccountLockTimeout: Wallet lock not acquired; retry the call
        """
        try:
            quote = cls.get_pricing().quote(user_id, category, country_code)
        except InvalidCategory as e:
            return ServiceResult.from_exception(e)

        if not quote.is_billable:
            cls.get_logger().debug(
                "Message not billable",
                extra={"user_id": user_id, "correlation_key": correlation_key},
            )
            return ServiceResult.success(ChargeHold(quote=quote))

        try:
            debit = cls.get_wallet().debit_to_suspense(
                user_id=user_id,
                amount=quote.amount,
                category=quote.category,
                correlation_key=correlation_key,
                recipient=recipient,
                price_plan=quote.plan,
                country_code=country_code or "",
                currency=quote.currency,
            )
        except (InsufficientBalance, CorrelationKeyConflict, CurrencyMismatch) as e:
            cls.get_logger().warning(
                "Could not hold message charge",
                extra={"user_id": user_id, "correlation_key": correlation_key, **e.to_dict()},
            )
            return ServiceResult.from_exception(e)

        return ServiceResult.success(ChargeHold(quote=quote, transaction=debit))

    @classmethod
    def release_for_failed_dispatch(
        cls,
        user_id: int,
        correlation_key: str,
        reason: str = "dispatch_failed",
    ) -> ServiceResult[SettlementResult]:
        """
        Refund a hold whose message never reached the provider.

        Args:
            user_id: Sender
            correlation_key: Key the hold was made with
            reason: Resolution reason stored on the charge

        Returns:
            ServiceResult with SettlementResult, or failure
            PENDING_CHARGE_NOT_FOUND
        """
        try:
            settlement = cls.get_wallet().refund_pending_charge(
                correlation_key,
                user_id=user_id,
                reason=reason,
            )
        except PendingChargeNotFound as e:
            cls.get_logger().warning(
                "Nothing to release for failed dispatch",
                extra={"user_id": user_id, "correlation_key": correlation_key},
            )
            return ServiceResult.from_exception(e)

        return ServiceResult.success(settlement)
