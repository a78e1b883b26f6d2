"""
Tests for RefundAllocationEngine (most-recent-first allocation).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engines.allocation import RefundAllocationEngine, RefundSource, lifo_order

T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _source(amount, minutes=0, sequence=0, allocated="0", gateway=None):
    return RefundSource(
        source_id=uuid4(),
        amount=Decimal(amount),
        payment_date=T0 + timedelta(minutes=minutes),
        sequence=sequence,
        already_allocated=Decimal(allocated),
        gateway_code=gateway,
    )


@pytest.fixture
def engine():
    return RefundAllocationEngine()


class TestLifoOrder:

    def test_latest_payment_first(self):
        older, newer = _source("30", minutes=0), _source("40", minutes=5)
        assert lifo_order([older, newer]) == [newer, older]

    def test_sequence_breaks_date_ties(self):
        first, second = _source("30", sequence=1), _source("40", sequence=2)
        assert lifo_order([first, second]) == [second, first]


class TestAllocate:

    def test_most_recent_payment_refunded_first(self, engine):
        older = _source("30", minutes=0, gateway="payu")
        newer = _source("40", minutes=5, gateway="stripe")

        result = engine.allocate(amount=Decimal("50"), sources=[older, newer])

        assert [(l.source_id, l.allocated) for l in result.lines] == [
            (newer.source_id, Decimal("40")),
            (older.source_id, Decimal("10")),
        ]
        assert result.lines[0].gateway_code == "stripe"
        assert result.is_fully_allocated

    def test_prior_allocations_reduce_capacity(self, engine):
        source = _source("40", allocated="35")
        other = _source("30", minutes=-10)

        result = engine.allocate(amount=Decimal("10"), sources=[source, other])

        assert [l.allocated for l in result.lines] == [Decimal("5"), Decimal("5")]

    def test_shortfall_reported_as_unallocated(self, engine):
        result = engine.allocate(amount=Decimal("100"), sources=[_source("30")])

        assert result.total_allocated == Decimal("30")
        assert result.unallocated == Decimal("70")
        assert not result.is_fully_allocated
        assert result.total_allocated + result.unallocated == result.requested

    def test_exhausted_sources_skipped(self, engine):
        spent = _source("20", minutes=10, allocated="20")
        fresh = _source("20")

        result = engine.allocate(amount=Decimal("5"), sources=[spent, fresh])

        assert result.allocation_count == 1
        assert result.lines[0].source_id == fresh.source_id

    def test_non_positive_amount_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.allocate(amount=Decimal("0"), sources=[_source("10")])

    def test_over_allocated_source_rejected(self):
        with pytest.raises(ValueError):
            _source("10", allocated="11")
