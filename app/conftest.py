"""
Project-wide pytest configuration.

Auto-marks tests by filename and provides fixtures shared by all billing
test packages.
"""

import pytest
from django.db import connection


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py, test_concurrency.py → e2e (full settlement journeys)
    - test_services.py, test_tasks.py, test_handlers.py, etc. → integration
    - test_models.py, test_events.py, test_types.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py", "test_concurrency.py"]

    integration_patterns = [
        "test_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_ingest.py",
        "test_reconciliation.py",
        "test_charge_service.py",
        "test_locks.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_events.py",
        "test_types.py",
        "test_exceptions.py",
        "test_helpers.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def requires_postgres():
    """Skip row-locking tests when the suite was pointed at SQLite."""
    if connection.vendor != "postgresql":
        pytest.skip("Row locking requires PostgreSQL")


def _patch_postgresql_flush_for_cascade():
    """
    Patch PostgreSQL flush to always use CASCADE.

    TransactionTestCase flushes with TRUNCATE, which fails on tables
    referenced by foreign keys unless CASCADE is used.
    """
    from django.db.backends.postgresql import operations

    original_sql_flush = operations.DatabaseOperations.sql_flush

    def sql_flush_with_cascade(
        self, style, tables, *, reset_sequences=False, allow_cascade=False
    ):
        return original_sql_flush(
            self, style, tables, reset_sequences=reset_sequences, allow_cascade=True
        )

    operations.DatabaseOperations.sql_flush = sql_flush_with_cascade


_patch_postgresql_flush_for_cascade()
