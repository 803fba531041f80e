"""
Billing services.

Orchestration on top of the wallet ledger and the pricing resolver, used by
the message-send path.

Usage:
    from billing.services import ChargeService
"""

from .charge_service import ChargeHold, ChargeService, PreflightCheck

__all__ = [
    "ChargeHold",
    "ChargeService",
    "PreflightCheck",
]
