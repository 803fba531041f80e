"""
Billing app configuration.

This app provides the messaging wallet:
- Wallet ledger with suspense-account settlement
- Message pricing plans
- Delivery-status webhook processing
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"
