"""
Pricing models for message charges.

- PricePlan: Per-category prices (authentication, marketing, utility, service)
- UserPricePlan: Assignment of a plan to a user from a point in time
- PricePlanOverride: Country-specific price for one category of a plan

Amounts are integers in the smallest currency unit (paise). A price of 0
means the category is not billed under that plan.

Usage:
    from billing.pricing.models import PricePlan

    plan = PricePlan.objects.create(name="Standard", marketing_amount=88)
    plan.amount_for("marketing")  # 88
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.models import BaseModel

from billing.ledger.models import default_currency
from billing.state_machines import MessageCategory


class PricePlan(BaseModel):
    """
    A named set of per-category message prices.

    At most one plan is the default; users without an assignment are billed
    on it.

    Fields:
        name: Unique plan name
        currency: ISO 4217 currency code of all amounts in the plan
        authentication_amount / marketing_amount / utility_amount /
        service_amount: Price per message of each category
        is_default: Whether this plan applies to unassigned users
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Plan name shown to administrators",
    )
    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code",
    )
    authentication_amount = models.PositiveIntegerField(
        default=0,
        help_text="Price of an authentication message, smallest currency unit",
    )
    marketing_amount = models.PositiveIntegerField(
        default=0,
        help_text="Price of a marketing message, smallest currency unit",
    )
    utility_amount = models.PositiveIntegerField(
        default=0,
        help_text="Price of a utility message, smallest currency unit",
    )
    service_amount = models.PositiveIntegerField(
        default=0,
        help_text="Price of a service message, smallest currency unit",
    )
    is_default = models.BooleanField(
        default=False,
        help_text="Whether this plan applies to users without an assignment",
    )

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["is_default"],
                condition=Q(is_default=True),
                name="single_default_price_plan",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return f"PricePlan({self.name})"

    def amount_for(self, category: MessageCategory | str) -> int:
        """Base price of one message of the given category."""
        return getattr(self, f"{MessageCategory(category).value}_amount")


class UserPricePlan(BaseModel):
    """
    Assigns a price plan to a user from effective_from onwards.

    The most recent assignment already in effect wins.
    """

    user_id = models.PositiveBigIntegerField(
        help_text="Identifier of the user the plan applies to",
    )
    price_plan = models.ForeignKey(
        PricePlan,
        on_delete=models.CASCADE,
        related_name="assignments",
        help_text="Assigned plan",
    )
    effective_from = models.DateTimeField(
        default=timezone.now,
        help_text="When the assignment takes effect",
    )

    class Meta:
        ordering = ["-effective_from"]
        indexes = [
            models.Index(
                fields=["user_id", "effective_from"],
                name="user_price_plan_effective_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return f"UserPricePlan(user={self.user_id}, plan={self.price_plan_id})"


class PricePlanOverride(BaseModel):
    """Country-specific price for one category of a plan."""

    price_plan = models.ForeignKey(
        PricePlan,
        on_delete=models.CASCADE,
        related_name="overrides",
        help_text="Plan this override belongs to",
    )
    country_code = models.CharField(
        max_length=8,
        help_text="Recipient country code (ISO 3166 alpha-2, upper case)",
    )
    category = models.CharField(
        max_length=20,
        choices=MessageCategory.choices,
        help_text="Category the override applies to",
    )
    amount = models.PositiveIntegerField(
        help_text="Price per message, smallest currency unit",
    )
    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code",
    )

    class Meta:
        ordering = ["price_plan", "country_code", "category"]
        constraints = [
            models.UniqueConstraint(
                fields=["price_plan", "country_code", "category"],
                name="unique_price_plan_override",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation."""
        return f"PricePlanOverride({self.country_code}, {self.category}, {self.amount})"

    def save(self, *args, **kwargs):
        """Store country codes upper case so lookups are case-insensitive."""
        self.country_code = (self.country_code or "").upper()
        super().save(*args, **kwargs)
