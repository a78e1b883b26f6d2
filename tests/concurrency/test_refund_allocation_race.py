"""
Concurrent refund requests against one order.

Two requests race for the same payments.  The order row is locked
before refund capacity is read, so the second request only sees what the
first left behind and no payment is ever refunded beyond its amount.

Expected Behavior:
- Both requests complete (the second may be short-allocated)
- Per source payment, live allocations never exceed the payment amount
- Total live allocations never exceed the order's net paid amount
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import UUID

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.models.quote import Quote
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_modules.payments.models import PaymentType
from ledger_modules.payments.orm import PaymentLedgerEntryModel
from ledger_modules.payments.service import PaymentLedgerService
from ledger_modules.refunds.models import RELEASED_ITEM_STATUSES, RefundOutcome
from ledger_modules.refunds.orm import RefundItemModel
from ledger_modules.refunds.service import RefundService

pytestmark = pytest.mark.postgres

ACTOR_ID = UUID("00000000-0000-4000-a000-000000000001")


def _paid_order(session, config) -> tuple[UUID, dict[UUID, Decimal]]:
    """An order of 100.00 paid as 60.00 then 40.00; committed."""
    clock = DeterministicClock()
    ChartOfAccounts(session, config).seed(ACTOR_ID)
    quote = Quote(
        final_total=Decimal("100.00"),
        currency="USD",
        origin_country="US",
        destination_country="IN",
        created_by_id=ACTOR_ID,
    )
    session.add(quote)
    session.commit()

    payments = PaymentLedgerService(session, config, clock)
    sources = {}
    for amount, gateway in (("60.00", "stripe"), ("40.00", "payu")):
        result = payments.record_payment(
            quote_id=quote.id,
            amount=Decimal(amount),
            currency="USD",
            payment_method=gateway,
            payment_type=PaymentType.CUSTOMER_PAYMENT,
            actor_id=ACTOR_ID,
            gateway_code=gateway,
        )
        sources[result.ledger_entry_id] = Decimal(amount)
        clock.advance(60)
    return quote.id, sources


class TestConcurrentRefundRequests:

    @pytest.mark.parametrize("amount", ["70.00", "100.00"])
    def test_allocations_never_exceed_source(self, pg_session_factory, config, amount):
        with pg_session_factory() as setup_session:
            quote_id, sources = _paid_order(setup_session, config)

        threads = 2
        barrier = Barrier(threads)

        def request_refund(_):
            session = pg_session_factory()
            refunds = RefundService(session, config)
            barrier.wait()
            return refunds.create_refund_request(
                quote_id=quote_id,
                amount=Decimal(amount),
                currency="USD",
                reason_code="CUSTOMER_REQUEST",
                actor_id=ACTOR_ID,
            )

        with ThreadPoolExecutor(max_workers=threads) as pool:
            results = list(pool.map(request_refund, range(threads)))

        assert all(r.status == RefundOutcome.CREATED for r in results)
        assert sum(r.allocated_amount for r in results) == Decimal("100.00")

        with pg_session_factory() as check_session:
            allocated = dict(check_session.execute(
                select(RefundItemModel.payment_ledger_id, func.sum(RefundItemModel.allocated_amount))
                .join(PaymentLedgerEntryModel, PaymentLedgerEntryModel.id == RefundItemModel.payment_ledger_id)
                .where(
                    PaymentLedgerEntryModel.quote_id == quote_id,
                    RefundItemModel.status.not_in(RELEASED_ITEM_STATUSES),
                )
                .group_by(RefundItemModel.payment_ledger_id)
            ).all())

        for source_id, total in allocated.items():
            assert total <= sources[source_id]
        assert sum(allocated.values(), Decimal("0")) == Decimal("100.00")
