"""
Tests for PaymentWebhookProcessor.

Validates:
- A successful callback writes the charge, one ledger entry and the
  derived payment fields in one commit
- Replays update in place and never duplicate ledger entries
- Pending-to-success transitions, payload validation and unknown orders
- Guest checkout session transitions and order creation
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.exceptions import QuoteNotFoundError, WebhookPayloadError
from ledger_modules.payments.models import LedgerEntryStatus, PaymentStatus, PaymentTransactionStatus
from ledger_modules.payments.orm import PaymentLedgerEntryModel, PaymentTransactionModel
from ledger_modules.webhooks.models import GuestSessionStatus
from ledger_modules.webhooks.orm import GuestCheckoutSessionModel, OrderRecordModel
from ledger_modules.webhooks.service import WEBHOOK_ACTOR_ID, PaymentWebhookProcessor


@pytest.fixture
def processor(session, config, deterministic_clock):
    return PaymentWebhookProcessor(session, config, deterministic_clock)


def _payload(**overrides):
    payload = {
        "transaction_id": "txn_1001",
        "gateway_transaction_id": "pi_1001",
        "amount": "100.00",
        "currency": "usd",
        "payment_method": "stripe",
        "customer_email": "buyer@example.com",
        "customer_name": "Asha Buyer",
        "gateway_response": {"id": "pi_1001", "object": "payment_intent"},
    }
    payload.update(overrides)
    return payload


def _entries(session, quote_id) -> list[PaymentLedgerEntryModel]:
    return list(session.scalars(
        select(PaymentLedgerEntryModel).where(PaymentLedgerEntryModel.quote_id == quote_id)
    ).all())


def _charge_count(session) -> int:
    return session.scalar(select(func.count()).select_from(PaymentTransactionModel))


@pytest.fixture
def guest_session(session, make_quote, deterministic_clock):
    quote = make_quote(customer_id=None)
    guest = GuestCheckoutSessionModel(
        session_token="guest_tok_1",
        quote_id=quote.id,
        guest_name="Guest Shopper",
        guest_email="guest@example.com",
        shipping_address={"city": "Kathmandu", "country": "NP"},
        payment_currency="USD",
        payment_method="stripe",
        payment_amount=Decimal("100.00"),
        expires_at=deterministic_clock.now() + timedelta(hours=1),
        created_by_id=WEBHOOK_ACTOR_ID,
    )
    session.add(guest)
    session.commit()
    return quote, guest


# =============================================================================
# Successful payments
# =============================================================================


class TestSuccess:

    def test_writes_charge_entry_and_status(self, processor, make_quote, session, deterministic_clock):
        quote = make_quote(final_total=Decimal("100.00"))

        result = processor.process_webhook([quote.id], "success", _payload())

        assert result.success
        assert result.quotes_updated
        charge = session.get(PaymentTransactionModel, result.payment_transaction_id)
        assert charge.status == PaymentTransactionStatus.COMPLETED.value
        assert charge.currency == "USD"
        assert charge.paid_at == deterministic_clock.now()

        (entry,) = _entries(session, quote.id)
        assert entry.id == result.ledger_entry_id
        assert entry.status == LedgerEntryStatus.COMPLETED.value
        assert entry.payment_transaction_id == charge.id
        assert entry.financial_transaction_id is not None
        assert entry.gateway_response["webhook_processing"] is True
        assert entry.gateway_response["object"] == "payment_intent"

        assert quote.status == "paid"
        assert quote.amount_paid == Decimal("100.00")
        assert quote.payment_status == PaymentStatus.PAID.value
        assert quote.payment_details["transaction_id"] == "txn_1001"

    def test_replay_writes_nothing_new(self, processor, make_quote, session, deterministic_clock):
        quote = make_quote()
        first = processor.process_webhook([quote.id], "success", _payload())
        deterministic_clock.advance(30)

        replay = processor.process_webhook([quote.id], "success", _payload())

        assert replay.success
        assert replay.payment_transaction_id == first.payment_transaction_id
        assert replay.ledger_entry_id == first.ledger_entry_id
        assert len(_entries(session, quote.id)) == 1
        assert _charge_count(session) == 1
        assert quote.amount_paid == Decimal("100.00")

    def test_pending_then_success(self, processor, make_quote, session):
        quote = make_quote()
        pending = processor.process_webhook([quote.id], "processing", _payload())

        assert quote.status == "pending"
        assert quote.amount_paid == Decimal("0")
        entry = session.get(PaymentLedgerEntryModel, pending.ledger_entry_id)
        assert entry.status == LedgerEntryStatus.PENDING.value

        processor.process_webhook([quote.id], "success", _payload(gateway_transaction_id=None))

        assert entry.status == LedgerEntryStatus.COMPLETED.value
        assert entry.financial_transaction_id is not None
        assert quote.amount_paid == Decimal("100.00")

    def test_entry_only_on_first_order(self, processor, make_quote, session):
        first, second = make_quote(), make_quote()

        processor.process_webhook([first.id, second.id], "success", _payload())

        assert len(_entries(session, first.id)) == 1
        assert _entries(session, second.id) == []
        assert second.status == "paid"
        assert second.amount_paid == Decimal("0")

    def test_customer_recorded_as_actor(self, processor, make_quote, session):
        quote = make_quote()

        result = processor.process_webhook([quote.id], "success", _payload())

        charge = session.get(PaymentTransactionModel, result.payment_transaction_id)
        assert charge.user_id == quote.customer_id
        assert charge.created_by_id == quote.customer_id


# =============================================================================
# Rejections
# =============================================================================


class TestRejections:

    @pytest.mark.parametrize("field", ["transaction_id", "amount", "currency"])
    def test_missing_required_field(self, processor, make_quote, session, field):
        quote = make_quote()
        payload = _payload()
        del payload[field]

        result = processor.process_webhook([quote.id], "success", payload)

        assert not result.success
        assert result.error_code == WebhookPayloadError.code
        assert result.error_message == "Missing required payment data fields"
        assert _charge_count(session) == 0

    def test_unparseable_amount(self, processor, make_quote, session):
        quote = make_quote()

        result = processor.process_webhook([quote.id], "success", _payload(amount="a lot"))

        assert result.error_code == WebhookPayloadError.code
        assert _entries(session, quote.id) == []

    def test_unknown_order_writes_nothing(self, processor, chart, session):
        result = processor.process_webhook([uuid4()], "success", _payload())

        assert not result.success
        assert result.error_code == QuoteNotFoundError.code
        assert _charge_count(session) == 0

    def test_failed_payment(self, processor, make_quote, session):
        quote = make_quote()

        result = processor.process_webhook([quote.id], "failed", _payload())

        assert result.success
        charge = session.get(PaymentTransactionModel, result.payment_transaction_id)
        assert charge.status == PaymentTransactionStatus.FAILED.value
        assert charge.paid_at is None
        assert quote.status == "failed"
        assert quote.payment_status == PaymentStatus.UNPAID.value


# =============================================================================
# Guest checkout and orders
# =============================================================================


class TestGuestCheckout:

    def test_success_completes_session_and_applies_guest_details(self, processor, guest_session):
        quote, guest = guest_session

        result = processor.process_webhook(
            [quote.id],
            "success",
            _payload(),
            guest_session_token="guest_tok_1",
            guest_session_data={
                "guest_name": guest.guest_name,
                "guest_email": guest.guest_email,
                "shipping_address": guest.shipping_address,
            },
        )

        assert result.guest_session_updated
        assert guest.status == GuestSessionStatus.COMPLETED.value
        assert quote.customer_name == "Guest Shopper"
        assert quote.customer_email == "guest@example.com"
        assert quote.is_anonymous
        assert quote.customer_id is None
        assert quote.status == "paid"

    def test_failure_expires_session_and_leaves_order(self, processor, guest_session):
        quote, guest = guest_session

        result = processor.process_webhook(
            [quote.id], "failed", _payload(), guest_session_token="guest_tok_1",
        )

        assert result.success
        assert result.guest_session_updated
        assert not result.quotes_updated
        assert guest.status == GuestSessionStatus.EXPIRED.value
        assert quote.status == "pending"
        assert quote.payment_details is None
        assert quote.customer_name is None

    def test_inactive_session_not_updated(self, processor, guest_session, session):
        quote, guest = guest_session
        guest.status = GuestSessionStatus.COMPLETED.value
        session.commit()

        result = processor.process_webhook(
            [quote.id], "success", _payload(), guest_session_token="guest_tok_1",
        )

        assert result.success
        assert not result.guest_session_updated

    def test_guest_payment_recorded_by_webhook_actor(self, processor, guest_session, session):
        quote, _ = guest_session

        result = processor.process_webhook(
            [quote.id], "success", _payload(), guest_session_token="guest_tok_1",
        )

        entry = session.get(PaymentLedgerEntryModel, result.ledger_entry_id)
        assert entry.created_by_id == WEBHOOK_ACTOR_ID


class TestOrderCreation:

    def test_order_created_on_success(self, processor, make_quote, session):
        first, second = make_quote(), make_quote()

        result = processor.process_webhook(
            [first.id, second.id], "success", _payload(), create_order=True,
        )

        order = session.get(OrderRecordModel, result.order_id)
        assert order.order_number.startswith("ORD-1704110400-")
        assert order.quote_ids == [str(first.id), str(second.id)]
        assert order.total_amount == Decimal("100.00")
        assert order.payment_transaction_id == result.payment_transaction_id
        assert order.user_id == first.customer_id

    def test_no_order_for_failed_payment(self, processor, make_quote):
        quote = make_quote()

        result = processor.process_webhook([quote.id], "failed", _payload(), create_order=True)

        assert result.order_id is None
