"""
Concurrency control for wallet mutations.

Every balance change runs inside one database transaction holding the
wallet's row lock (SELECT ... FOR UPDATE). Operations on the same wallet are
serialized by the database; operations on different wallets never contend.
No in-process or distributed locks are involved, so any number of web or
worker processes can mutate wallets safely.

On PostgreSQL the wait for the row lock is bounded by ``lock_timeout``
(WALLET_LOCK_TIMEOUT_MS). A lock timeout, deadlock or serialization failure
rolls the whole transaction back and surfaces as AccountLockTimeout, which is
safe to retry.

Usage:
    from billing.locks import locked_wallet

    with locked_wallet(user_id) as account:
        account.available_balance += 500
        account.save(update_fields=["available_balance", "updated_at"])

Lock order:
    Wallet row first, then any PendingCharge row of that wallet. Every code
    path follows this order, which rules out deadlocks between settlement
    and debit of the same wallet.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, OperationalError, connection, transaction

from billing.ledger.exceptions import AccountLockTimeout
from billing.ledger.models import WalletAccount

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# SQLSTATEs that mean "could not get the lock, try again later":
# lock_not_available, deadlock_detected, serialization_failure
LOCK_FAILURE_SQLSTATES = frozenset({"55P03", "40P01", "40001"})


# =============================================================================
# Helpers
# =============================================================================


def is_lock_failure(exc: OperationalError) -> bool:
    """
    Check whether a database error was caused by lock contention.

    Args:
        exc: OperationalError raised by the database backend

    Returns:
        True for lock timeouts, deadlocks and serialization failures
    """
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate in LOCK_FAILURE_SQLSTATES:
        return True
    # SQLite has no SQLSTATE; it reports contention as "database is locked"
    return connection.vendor == "sqlite" and "locked" in str(exc).lower()


def _apply_lock_timeout() -> None:
    """Bound lock waits for the current transaction (PostgreSQL only)."""
    if connection.vendor != "postgresql":
        return
    timeout_ms = int(settings.WALLET_LOCK_TIMEOUT_MS)
    with connection.cursor() as cursor:
        cursor.execute(f"SET LOCAL lock_timeout = {timeout_ms}")


def lock_wallet_account(user_id: int) -> WalletAccount:
    """
    Lock a user's wallet row, creating the wallet on first use.

    Must be called inside transaction.atomic(); the lock is held until that
    transaction ends.

    Args:
        user_id: Owner of the wallet

    Returns:
        The locked WalletAccount
    """
    _apply_lock_timeout()

    account = WalletAccount.objects.select_for_update().filter(user_id=user_id).first()
    if account is not None:
        return account

    # Two first-time writers may race to create the wallet; the loser's
    # savepoint rolls back and it locks the winner's row instead.
    try:
        with transaction.atomic():
            WalletAccount.objects.create(user_id=user_id)
            logger.info("Created wallet account", extra={"user_id": user_id})
    except IntegrityError:
        logger.debug("Wallet created concurrently", extra={"user_id": user_id})

    return WalletAccount.objects.select_for_update().get(user_id=user_id)


@contextmanager
def locked_wallet(user_id: int) -> Generator[WalletAccount, None, None]:
    """
    Run a block atomically while holding the wallet row lock.

    Args:
        user_id: Owner of the wallet

    Yields:
        The locked WalletAccount

    Raises:
        AccountLockTimeout: If the lock could not be acquired in time, or the
            transaction lost a deadlock/serialization conflict. Nothing was
            written.
    """
    try:
        with transaction.atomic():
            yield lock_wallet_account(user_id)
    except OperationalError as exc:
        if not is_lock_failure(exc):
            raise
        logger.warning(
            "Wallet lock not acquired",
            extra={"user_id": user_id, "error": str(exc)},
        )
        raise AccountLockTimeout(
            f"Could not lock wallet of user {user_id}",
            details={
                "user_id": user_id,
                "lock_timeout_ms": settings.WALLET_LOCK_TIMEOUT_MS,
            },
        ) from exc
