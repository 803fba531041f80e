"""
Matching delivery statuses to the pending charges they settle.

The provider reports delivery asynchronously, keyed by the message id it
returned at send time. Most statuses therefore match a pending charge
exactly. Some do not: the send handler may have recorded a different id
(conversation id, a retried send), or the status may carry an id the
backend never saw. For those, a recipient fallback looks for the single
open charge of the same user for the same recipient.

Matching Strategy:
    1. Exact: any supplied id equals a charge's current correlation key,
       then its original key (ids are tried in the order given)
    2. Recipient fallback (WALLET_RECIPIENT_FALLBACK_ENABLED, user known):
       open charges of the user whose digits-only recipient equals the
       status recipient, created within WALLET_RECIPIENT_FALLBACK_WINDOW_HOURS
       before the status timestamp

Ambiguity:
    When the fallback finds more than one open candidate it does not guess.
    The status is reported as unmatched (reason "ambiguous_recipient_match")
    and the candidates stay open until their own statuses arrive.

Usage:
    from billing.ledger.reconciliation import PendingChargeResolver

    match = PendingChargeResolver.resolve(
        ["wamid.HBgM", "conv-91"],
        recipient="919373355199",
        user_id=7,
    )
    match.charge, match.strategy
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.helpers import normalize_phone_number

from billing.state_machines import PendingChargeState

from .exceptions import PendingChargeNotFound
from .models import PendingCharge
from .types import MatchStrategy

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


logger = logging.getLogger(__name__)

# Provider status timestamps are truncated to whole seconds
STATUS_TIMESTAMP_RESOLUTION = timedelta(seconds=1)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class ChargeMatch:
    """A pending charge located for a delivery status, and how it was found."""

    charge: PendingCharge
    strategy: MatchStrategy


# =============================================================================
# Resolver
# =============================================================================


class PendingChargeResolver:
    """
    Locates the pending charge a delivery status refers to.

    Reads are unlocked; the settlement operation re-reads the chosen charge
    under the wallet lock before acting on it.
    """

    @staticmethod
    def find_exact(correlation_ids: Sequence[str]) -> PendingCharge | None:
        """
        Find a charge by current or original correlation key.

        Args:
            correlation_ids: Candidate ids in order of preference

        Returns:
            The first matching charge, or None
        """
        ids = [cid for cid in correlation_ids if cid]
        if not ids:
            return None

        candidates = list(
            PendingCharge.objects.filter(
                Q(correlation_key__in=ids) | Q(original_correlation_key__in=ids)
            )
        )
        for cid in ids:
            for charge in candidates:
                if charge.correlation_key == cid:
                    return charge
        for cid in ids:
            for charge in candidates:
                if charge.original_correlation_key == cid:
                    return charge
        return None

    @staticmethod
    def find_by_recipient(
        user_id: int,
        recipient: str,
        occurred_at: datetime | None = None,
    ) -> list[PendingCharge]:
        """
        Open charges of a user for a recipient, newest first.

        Only charges created within the fallback window before the status
        timestamp are considered; charges created after it cannot be the
        message the status is about. The timestamp has whole-second
        resolution, so a charge created later in the same second still
        qualifies.

        Args:
            user_id: Owner of the charges
            recipient: Recipient phone number in any format
            occurred_at: Status timestamp (defaults to now)

        Returns:
            Candidate charges (possibly empty)
        """
        digits = normalize_phone_number(recipient)
        if not digits:
            return []

        until = occurred_at or timezone.now()
        window = timedelta(hours=settings.WALLET_RECIPIENT_FALLBACK_WINDOW_HOURS)

        return list(
            PendingCharge.objects.filter(
                user_id=user_id,
                recipient=digits,
                state=PendingChargeState.OPEN,
                created_at__gte=until - window,
                created_at__lt=until + STATUS_TIMESTAMP_RESOLUTION,
            ).order_by("-created_at")
        )

    @classmethod
    def resolve(
        cls,
        correlation_ids: Sequence[str],
        recipient: str | None = None,
        user_id: int | None = None,
        occurred_at: datetime | None = None,
        allow_fallback: bool = True,
    ) -> ChargeMatch:
        """
        Locate the pending charge for a delivery status.

        Args:
            correlation_ids: Ids carried by the status (message id first)
            recipient: Recipient phone number reported with the status
            user_id: Owner of the sending number, if known
            occurred_at: Status timestamp
            allow_fallback: Whether the recipient fallback may be used

        Returns:
            ChargeMatch with the charge and the strategy that found it

        Raises:
            PendingChargeNotFound: If no charge matches, or the fallback is
                ambiguous
        """
        charge = cls.find_exact(correlation_ids)
        if charge is not None:
            return ChargeMatch(charge=charge, strategy=MatchStrategy.EXACT)

        fallback_enabled = allow_fallback and settings.WALLET_RECIPIENT_FALLBACK_ENABLED
        if not fallback_enabled or user_id is None or not recipient:
            raise PendingChargeNotFound(correlation_ids)

        candidates = cls.find_by_recipient(user_id, recipient, occurred_at)
        if not candidates:
            raise PendingChargeNotFound(
                correlation_ids,
                details={"user_id": user_id, "recipient": normalize_phone_number(recipient)},
            )

        if len(candidates) > 1:
            logger.warning(
                "Ambiguous recipient fallback, leaving charges open",
                extra={
                    "user_id": user_id,
                    "recipient": normalize_phone_number(recipient),
                    "candidate_count": len(candidates),
                    "correlation_ids": list(correlation_ids),
                },
            )
            raise PendingChargeNotFound(
                correlation_ids,
                reason="ambiguous_recipient_match",
                details={"user_id": user_id, "candidate_count": len(candidates)},
            )

        logger.info(
            "Matched pending charge by recipient",
            extra={
                "user_id": user_id,
                "charge_id": str(candidates[0].id),
                "correlation_key": candidates[0].correlation_key,
            },
        )
        return ChargeMatch(charge=candidates[0], strategy=MatchStrategy.RECIPIENT_FALLBACK)

    @staticmethod
    def rekey(charge: PendingCharge, correlation_key: str) -> PendingCharge:
        """
        Point a charge at the id its delivery status actually carries.

        The previous key stays available as original_correlation_key, so
        late statuses carrying either id still match. Caller must hold the
        wallet lock and the charge row lock.

        Args:
            charge: Locked charge to re-key
            correlation_key: Newly observed id

        Returns:
            The updated charge (not saved if the key is unchanged)
        """
        if not correlation_key or charge.correlation_key == correlation_key:
            return charge

        previous = charge.correlation_key
        charge.correlation_key = correlation_key
        charge.save(update_fields=["correlation_key", "updated_at"])

        logger.info(
            "Re-keyed pending charge",
            extra={
                "charge_id": str(charge.id),
                "previous_key": previous,
                "correlation_key": correlation_key,
            },
        )
        return charge
