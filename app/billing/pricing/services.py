"""
Price resolution for chargeable messages.

A message's price depends on the sender's price plan, the message category,
and optionally the recipient's country:

    1. Plan: latest UserPricePlan already in effect, else the default plan
    2. Override: PricePlanOverride for (plan, country, category), if any
    3. Base: the plan's per-category amount

A price of 0 means the message is not billed. Users without any plan (and no
default plan configured) are not billed either.

Usage:
    from billing.pricing.services import PricingResolver

    quote = PricingResolver.quote(user_id=7, category="marketing", country_code="IN")
    quote.amount  # 88
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.utils import timezone

from billing.exceptions import InvalidCategory
from billing.ledger.models import default_currency
from billing.state_machines import MessageCategory

from .models import PricePlan, UserPricePlan

if TYPE_CHECKING:
    from datetime import datetime


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """
    Price of one message.

    Attributes:
        amount: Price in the smallest currency unit (0 = not billed)
        currency: ISO 4217 currency code
        category: Category the price was resolved for
        plan: Plan the price came from (None if the user has no plan)
    """

    amount: int
    currency: str
    category: MessageCategory
    plan: PricePlan | None = None

    @property
    def is_billable(self) -> bool:
        return self.amount > 0


class PricingResolver:
    """
    Maps (plan, category, country) to a message price.

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def normalize_category(category: MessageCategory | str) -> MessageCategory:
        """
        Parse a category name case-insensitively.

        Raises:
            InvalidCategory: If the name is not a priced category
        """
        try:
            return MessageCategory(str(category).strip().lower())
        except ValueError as exc:
            raise InvalidCategory(
                f"Unknown message category '{category}'",
                details={
                    "category": str(category),
                    "allowed": list(MessageCategory.values),
                },
            ) from exc

    @staticmethod
    def classify_template_category(template_name: str | None) -> MessageCategory:
        """
        Guess a category from a template name when the provider gives none.

        Names mentioning marketing or promotions are marketing, auth/OTP
        names are authentication, service names are service. Everything else
        is billed as utility.
        """
        name = (template_name or "").lower()
        if "market" in name or "promo" in name:
            return MessageCategory.MARKETING
        if "auth" in name or "otp" in name:
            return MessageCategory.AUTHENTICATION
        if "service" in name:
            return MessageCategory.SERVICE
        return MessageCategory.UTILITY

    @staticmethod
    def price_for_category(
        plan: PricePlan | None,
        category: MessageCategory | str,
        country_code: str | None = None,
    ) -> int:
        """
        Price of one message of a category under a plan.

        Pure with respect to its inputs: overrides are read from the plan's
        (possibly prefetched) ``overrides`` relation.

        Args:
            plan: Price plan, or None for "no plan"
            category: Message category
            country_code: Recipient country (enables overrides)

        Returns:
            Price in the smallest currency unit

        Raises:
            InvalidCategory: If category is not a priced category
        """
        category = PricingResolver.normalize_category(category)
        if plan is None:
            return 0

        if country_code:
            country = country_code.upper()
            for override in plan.overrides.all():
                if override.country_code == country and override.category == category:
                    return override.amount

        return plan.amount_for(category)

    @staticmethod
    def resolve_plan_for_user(user_id: int, at: datetime | None = None) -> PricePlan | None:
        """
        Plan in effect for a user.

        Args:
            user_id: User to price for
            at: Point in time (defaults to now)

        Returns:
            The assigned plan, the default plan, or None
        """
        at = at or timezone.now()
        assignment = (
            UserPricePlan.objects.select_related("price_plan")
            .filter(user_id=user_id, effective_from__lte=at)
            .order_by("-effective_from")
            .first()
        )
        if assignment is not None:
            return assignment.price_plan

        return PricePlan.objects.filter(is_default=True).first()

    @staticmethod
    def quote(
        user_id: int,
        category: MessageCategory | str,
        country_code: str | None = None,
    ) -> Quote:
        """
        Price of one message for a user.

        Raises:
            InvalidCategory: If category is not a priced category
        """
        category = PricingResolver.normalize_category(category)
        plan = PricingResolver.resolve_plan_for_user(user_id)
        amount = PricingResolver.price_for_category(plan, category, country_code)

        currency = plan.currency if plan else default_currency()
        if plan is not None and country_code:
            override = plan.overrides.filter(
                country_code=country_code.upper(), category=category
            ).first()
            if override is not None:
                currency = override.currency

        logger.debug(
            "Quoted message price",
            extra={
                "user_id": user_id,
                "category": category.value,
                "country_code": country_code,
                "plan_id": plan.pk if plan else None,
                "amount": amount,
            },
        )
        return Quote(amount=amount, currency=currency, category=category, plan=plan)
