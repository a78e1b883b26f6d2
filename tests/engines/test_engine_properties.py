"""
Property-based tests for the pure engines.

Properties:
- Refund allocation never exceeds a source's remaining capacity and
  always accounts for the full requested amount
- Payment status is a function of (amount_paid, final_total) alone
- The signed ledger sum ignores entries that are not processing/completed
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_engines.allocation import RefundAllocationEngine, RefundSource
from ledger_engines.payment_status import (
    COUNTED_STATUSES,
    LedgerAmount,
    LedgerEntryStatus,
    LedgerPaymentType,
    derive_payment_status,
    sum_signed,
)
from ledger_kernel.domain.payment import PaymentStatus

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)

money = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("100000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def refund_sources(draw):
    count = draw(st.integers(min_value=0, max_value=6))
    sources = []
    for index in range(count):
        amount = draw(money)
        already = draw(st.decimals(
            min_value=Decimal("0"), max_value=amount, places=2,
            allow_nan=False, allow_infinity=False,
        ))
        sources.append(RefundSource(
            source_id=uuid4(),
            amount=amount,
            payment_date=T0 + timedelta(minutes=draw(st.integers(0, 120))),
            sequence=index,
            already_allocated=already,
        ))
    return sources


@given(amount=money, sources=refund_sources())
@settings(max_examples=200, deadline=None)
def test_allocation_respects_capacity(amount, sources):
    result = RefundAllocationEngine().allocate(amount=amount, sources=sources)

    by_id = {s.source_id: s for s in sources}
    for line in result.lines:
        assert Decimal("0") < line.allocated <= by_id[line.source_id].remaining_capacity

    assert result.total_allocated + result.unallocated == amount
    assert sum((line.allocated for line in result.lines), Decimal("0")) == result.total_allocated
    capacity = sum((s.remaining_capacity for s in sources), Decimal("0"))
    assert result.total_allocated == min(amount, capacity)


@given(paid=st.decimals(min_value=Decimal("-1000"), max_value=Decimal("1000"), places=2,
                        allow_nan=False, allow_infinity=False),
       total=money)
@settings(max_examples=200, deadline=None)
def test_status_rule(paid, total):
    position = derive_payment_status(amount_paid=paid, final_total=total)

    if paid <= 0:
        assert position.payment_status == PaymentStatus.UNPAID
    elif paid < total:
        assert position.payment_status == PaymentStatus.PARTIAL
    elif paid == total:
        assert position.payment_status == PaymentStatus.PAID
    else:
        assert position.payment_status == PaymentStatus.OVERPAID
        assert position.overpayment_amount == paid - total
    if position.payment_status != PaymentStatus.OVERPAID:
        assert position.overpayment_amount == Decimal("0")


ledger_amounts = st.builds(
    LedgerAmount,
    payment_type=st.sampled_from([t.value for t in LedgerPaymentType]),
    amount=money,
    status=st.sampled_from([s.value for s in LedgerEntryStatus]),
)


@given(entries=st.lists(ledger_amounts, max_size=12))
@settings(max_examples=200, deadline=None)
def test_uncounted_entries_never_move_the_balance(entries):
    counted = [e for e in entries if e.status in COUNTED_STATUSES]
    assert sum_signed(entries) == sum_signed(counted)
