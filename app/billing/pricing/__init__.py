"""
Pricing - Per-category message prices.

Models live in billing.pricing.models; the resolver in
billing.pricing.services.

Usage:
    from billing.pricing.services import PricingResolver

    PricingResolver.quote(user_id=7, category="utility").amount
"""
