"""
Shared fixtures for Bill Cycle tests.

Everything runs against in-memory storage unless a test module sets up
its own backend. No network, no real spreadsheets.
"""

from datetime import date
from decimal import Decimal

import pytest

from billcycle.audit import AuditLogger
from billcycle.models.bill import Recurrence, Series
from billcycle.services.generator import generate_occurrences
from billcycle.services.storage import (
    InMemoryAuditStorage,
    InMemoryOccurrenceStorage,
    InMemorySeriesStorage,
)


@pytest.fixture
def series_storage():
    return InMemorySeriesStorage()


@pytest.fixture
def occurrence_storage():
    return InMemoryOccurrenceStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def make_series():
    """Factory for Series with sensible defaults."""
    def _make(
        anchor_date: str = "2024-01-15",
        recurrence: Recurrence = Recurrence.MONTHLY,
        name: str = "Rent",
        amount: str = "100.00",
        deleted_from: date = None,
    ) -> Series:
        return Series(
            name=name,
            amount=Decimal(amount),
            anchor_date=anchor_date,
            recurrence=recurrence,
            deleted_from=deleted_from,
        )
    return _make


@pytest.fixture
def seed_series(series_storage, occurrence_storage):
    """Insert a series and its first `horizon_months` of occurrences."""
    async def _seed(series: Series, horizon_months: int = 3):
        await series_storage.insert_series(series)
        occurrences = generate_occurrences(series, horizon_months)
        for occ in occurrences:
            await occurrence_storage.insert_occurrence(occ)
        return occurrences
    return _seed
