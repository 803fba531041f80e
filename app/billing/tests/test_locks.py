"""
Tests for wallet row locking helpers.
"""

from types import SimpleNamespace

import pytest
from django.db import OperationalError

from billing.ledger.exceptions import AccountLockTimeout
from billing.ledger.models import WalletAccount
from billing.locks import is_lock_failure, locked_wallet


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _operational_error(message="error", sqlstate=None):
    exc = OperationalError(message)
    if sqlstate:
        exc.__cause__ = _PgError(sqlstate)
    return exc


class TestIsLockFailure:
    """Tests for is_lock_failure()."""

    @pytest.mark.parametrize("sqlstate", ["55P03", "40P01", "40001"])
    def test_lock_sqlstates(self, sqlstate):
        """Should recognise lock timeouts, deadlocks and serialization failures."""
        assert is_lock_failure(_operational_error(sqlstate=sqlstate))

    def test_sqlite_locked(self, monkeypatch):
        """Should recognise SQLite's "database is locked"."""
        monkeypatch.setattr("billing.locks.connection", SimpleNamespace(vendor="sqlite"))

        assert is_lock_failure(_operational_error("database is locked"))

    def test_locked_message_ignored_on_postgresql(self, monkeypatch):
        """Should go by SQLSTATE alone on PostgreSQL."""
        monkeypatch.setattr("billing.locks.connection", SimpleNamespace(vendor="postgresql"))

        assert not is_lock_failure(
            _operational_error('relation "locked_items" does not exist', "42P01")
        )
        assert not is_lock_failure(_operational_error("database is locked"))

    def test_other_errors(self):
        """Should not treat connection errors as lock failures."""
        assert not is_lock_failure(_operational_error("server closed the connection", "08006"))


class TestLockedWallet:
    """Tests for locked_wallet()."""

    def test_creates_wallet_on_first_use(self, db):
        """Should create and yield an empty wallet."""
        with locked_wallet(4242) as account:
            assert account.user_id == 4242
            assert account.available_balance == 0

        assert WalletAccount.objects.filter(user_id=4242).count() == 1

    def test_reuses_existing_wallet(self, funded_wallet):
        """Should yield the existing wallet."""
        with locked_wallet(funded_wallet) as account:
            assert account.available_balance == 10000

    def test_changes_commit_with_block(self, db):
        """Should persist changes made inside the block."""
        with locked_wallet(4243) as account:
            account.available_balance = 5
            account.save(update_fields=["available_balance", "updated_at"])

        assert WalletAccount.objects.get(user_id=4243).available_balance == 5

    def test_lock_failure_becomes_account_lock_timeout(self, db):
        """Should convert lock failures and roll the block back."""
        with pytest.raises(AccountLockTimeout) as exc_info:
            with locked_wallet(4244) as account:
                account.available_balance = 99
                account.save(update_fields=["available_balance", "updated_at"])
                raise _operational_error("canceling statement due to lock timeout", "55P03")

        assert exc_info.value.retryable
        assert exc_info.value.details["user_id"] == 4244
        assert not WalletAccount.objects.filter(user_id=4244).exists()

    def test_other_operational_errors_propagate(self, db):
        """Should not hide unrelated database errors."""
        with pytest.raises(OperationalError):
            with locked_wallet(4245):
                raise _operational_error("no such table", "42P01")
