"""
Tests for PaymentLedgerService.

Validates:
- Balance sync: amount_paid equals the signed ledger sum after every mutation
- The four-way payment status as payments and refunds arrive
- Idempotency of gateway transaction ids inside the window
- Journal posting for completed entries and reversal on failure/delete
- Declines for bad amounts, unknown orders and unknown currencies
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_engines.payment_status import signed_amount
from ledger_kernel.exceptions import (
    ExchangeRateNotFoundError,
    InvalidPaymentAmountError,
    QuoteNotFoundError,
)
from ledger_kernel.models.financial_transaction import FinancialTransaction, TransactionStatus
from ledger_modules.payments.models import (
    LedgerEntryStatus,
    LedgerMutationStatus,
    PaymentRecordStatus,
    PaymentStatus,
    PaymentType,
)
from ledger_modules.payments.orm import PaymentLedgerEntryModel
from ledger_modules.payments.service import PaymentLedgerService


@pytest.fixture
def payments(session, config, deterministic_clock):
    return PaymentLedgerService(session, config, deterministic_clock)


def _pay(payments, quote, amount, actor_id, payment_type=PaymentType.CUSTOMER_PAYMENT, **kwargs):
    kwargs.setdefault("payment_method", "stripe")
    kwargs.setdefault("gateway_code", "stripe")
    return payments.record_payment(
        quote_id=quote.id,
        amount=Decimal(amount),
        currency=kwargs.pop("currency", quote.currency),
        payment_type=payment_type,
        actor_id=actor_id,
        **kwargs,
    )


def _ledger_sum(session, quote_id) -> Decimal:
    entries = session.scalars(
        select(PaymentLedgerEntryModel).where(PaymentLedgerEntryModel.quote_id == quote_id)
    ).all()
    return sum(
        (signed_amount(e.payment_type, e.amount, e.status) for e in entries),
        Decimal("0"),
    )


# =============================================================================
# Balance sync
# =============================================================================


class TestBalanceSync:

    def test_partial_paid_then_refund(self, payments, make_quote, session, test_actor_id, deterministic_clock):
        quote = make_quote(final_total=Decimal("100.00"))

        first = _pay(payments, quote, "60.00", test_actor_id, gateway_transaction_id="ch_1")
        assert first.status == PaymentRecordStatus.RECORDED
        assert first.payment_status == PaymentStatus.PARTIAL
        assert first.amount_paid == Decimal("60.00")

        deterministic_clock.advance(60)
        second = _pay(payments, quote, "40.00", test_actor_id, gateway_transaction_id="ch_2")
        assert second.payment_status == PaymentStatus.PAID

        deterministic_clock.advance(60)
        refund = _pay(payments, quote, "20.00", test_actor_id, payment_type=PaymentType.REFUND)
        assert refund.payment_status == PaymentStatus.PARTIAL
        assert refund.amount_paid == Decimal("80.00")

        session.refresh(quote)
        assert quote.amount_paid == _ledger_sum(session, quote.id) == Decimal("80.00")

    def test_overpayment_recorded(self, payments, make_quote, test_actor_id):
        quote = make_quote(final_total=Decimal("50.00"))

        result = _pay(payments, quote, "65.00", test_actor_id)

        assert result.payment_status == PaymentStatus.OVERPAID
        assert quote.overpayment_amount == Decimal("15.00")
        assert quote.outstanding_balance == Decimal("0")

    def test_pending_entry_does_not_count(self, payments, make_quote, test_actor_id):
        quote = make_quote()

        result = _pay(payments, quote, "30.00", test_actor_id, status=LedgerEntryStatus.PENDING)

        assert result.status == PaymentRecordStatus.RECORDED
        assert result.payment_status == PaymentStatus.UNPAID
        assert result.financial_transaction_id is None

    def test_balance_before_and_after(self, payments, make_quote, session, test_actor_id, deterministic_clock):
        quote = make_quote()
        _pay(payments, quote, "25.00", test_actor_id)
        deterministic_clock.advance(30)
        second = _pay(payments, quote, "25.00", test_actor_id)

        entry = session.get(PaymentLedgerEntryModel, second.ledger_entry_id)
        assert entry.balance_before == Decimal("25.00")
        assert entry.balance_after == Decimal("50.00")

    def test_foreign_currency_base_amount(self, payments, make_quote, session, test_actor_id):
        quote = make_quote(final_total=Decimal("8300.00"), currency="INR")

        result = _pay(payments, quote, "8300.00", test_actor_id, gateway_code="payu", payment_method="payu")

        entry = session.get(PaymentLedgerEntryModel, result.ledger_entry_id)
        assert entry.exchange_rate == Decimal("83.00")
        assert entry.base_amount == Decimal("100.0000")
        assert result.payment_status == PaymentStatus.PAID


# =============================================================================
# Idempotency
# =============================================================================


class TestIdempotency:

    def test_same_gateway_transaction_inside_window_is_duplicate(
        self, payments, make_quote, test_actor_id, deterministic_clock,
    ):
        quote = make_quote()
        first = _pay(payments, quote, "60.00", test_actor_id, gateway_transaction_id="ch_dup")
        deterministic_clock.advance(5)

        again = _pay(payments, quote, "60.00", test_actor_id, gateway_transaction_id="ch_dup")

        assert again.status == PaymentRecordStatus.DUPLICATE
        assert again.is_success
        assert again.ledger_entry_id == first.ledger_entry_id
        assert again.amount_paid == Decimal("60.00")

    def test_same_gateway_transaction_after_window_is_new(
        self, payments, make_quote, test_actor_id, deterministic_clock,
    ):
        quote = make_quote()
        first = _pay(payments, quote, "60.00", test_actor_id, gateway_transaction_id="ch_late")
        deterministic_clock.advance(11)

        again = _pay(payments, quote, "60.00", test_actor_id, gateway_transaction_id="ch_late")

        assert again.status == PaymentRecordStatus.RECORDED
        assert again.ledger_entry_id != first.ledger_entry_id
        assert again.payment_status == PaymentStatus.OVERPAID

    def test_duplicate_is_logged(self, payments, make_quote, test_actor_id, captured_logs):
        quote = make_quote()
        _pay(payments, quote, "10.00", test_actor_id, gateway_transaction_id="ch_log")
        _pay(payments, quote, "10.00", test_actor_id, gateway_transaction_id="ch_log")

        assert any(r["message"] == "payment_duplicate_ignored" for r in captured_logs())


# =============================================================================
# Journal posting
# =============================================================================


class TestJournalPosting:

    def test_completed_payment_posts_transaction(self, payments, make_quote, session, test_actor_id):
        quote = make_quote()

        result = _pay(payments, quote, "60.00", test_actor_id)

        txn = session.get(FinancialTransaction, result.financial_transaction_id)
        assert txn.status == TransactionStatus.POSTED.value
        assert (txn.debit_account_code, txn.credit_account_code) == ("1112", "1120")
        assert txn.reference_id == str(quote.id)
        assert txn.amount == Decimal("60.00")

    def test_completing_pending_entry_posts(self, payments, make_quote, session, test_actor_id):
        quote = make_quote()
        pending = _pay(payments, quote, "30.00", test_actor_id, status=LedgerEntryStatus.PENDING)

        result = payments.update_entry_status(pending.ledger_entry_id, LedgerEntryStatus.COMPLETED, test_actor_id)

        assert result.status == LedgerMutationStatus.UPDATED
        assert result.amount_paid == Decimal("30.00")
        entry = session.get(PaymentLedgerEntryModel, pending.ledger_entry_id)
        assert entry.financial_transaction_id is not None

    def test_failing_completed_entry_reverses(self, payments, make_quote, session, test_actor_id):
        quote = make_quote()
        paid = _pay(payments, quote, "30.00", test_actor_id)

        result = payments.update_entry_status(paid.ledger_entry_id, LedgerEntryStatus.FAILED, test_actor_id)

        assert result.payment_status == PaymentStatus.UNPAID
        txn = session.get(FinancialTransaction, paid.financial_transaction_id)
        assert txn.status == TransactionStatus.REVERSED.value
        assert txn.reversed_by_id is not None

    def test_delete_entry_reverses_and_resyncs(self, payments, make_quote, session, test_actor_id):
        quote = make_quote()
        paid = _pay(payments, quote, "30.00", test_actor_id)

        result = payments.delete_entry(paid.ledger_entry_id, test_actor_id)

        assert result.status == LedgerMutationStatus.DELETED
        assert result.amount_paid == Decimal("0")
        assert session.get(PaymentLedgerEntryModel, paid.ledger_entry_id) is None
        txn = session.get(FinancialTransaction, paid.financial_transaction_id)
        assert txn.status == TransactionStatus.REVERSED.value

    def test_unknown_entry_declined(self, payments, test_actor_id):
        result = payments.update_entry_status(uuid4(), LedgerEntryStatus.FAILED, test_actor_id)
        assert result.status == LedgerMutationStatus.DECLINED
        assert not result.is_success


# =============================================================================
# Declines
# =============================================================================


class TestDeclines:

    def test_zero_amount(self, payments, make_quote, session, test_actor_id):
        quote = make_quote()
        result = _pay(payments, quote, "0", test_actor_id)

        assert result.status == PaymentRecordStatus.DECLINED
        assert result.error_code == InvalidPaymentAmountError.code
        assert _ledger_sum(session, quote.id) == Decimal("0")

    def test_unknown_quote(self, payments, chart, test_actor_id):
        result = payments.record_payment(
            quote_id=uuid4(),
            amount=Decimal("10.00"),
            currency="USD",
            payment_method="stripe",
            payment_type=PaymentType.CUSTOMER_PAYMENT,
            actor_id=test_actor_id,
        )
        assert result.status == PaymentRecordStatus.DECLINED
        assert result.error_code == QuoteNotFoundError.code

    def test_unknown_currency(self, payments, make_quote, test_actor_id):
        quote = make_quote()
        result = _pay(payments, quote, "10.00", test_actor_id, currency="XYZ")
        assert result.error_code == ExchangeRateNotFoundError.code

    def test_float_amount_rejected(self, payments, make_quote, test_actor_id):
        quote = make_quote()
        with pytest.raises(AssertionError):
            payments.record_payment(
                quote_id=quote.id,
                amount=10.0,
                currency="USD",
                payment_method="stripe",
                payment_type=PaymentType.CUSTOMER_PAYMENT,
                actor_id=test_actor_id,
            )


# =============================================================================
# Queries
# =============================================================================


class TestQueries:

    def test_history_running_balance(self, payments, make_quote, test_actor_id, deterministic_clock):
        quote = make_quote()
        _pay(payments, quote, "60.00", test_actor_id)
        deterministic_clock.advance(60)
        _pay(payments, quote, "40.00", test_actor_id, gateway_code="payu")
        deterministic_clock.advance(60)
        _pay(payments, quote, "20.00", test_actor_id, payment_type=PaymentType.REFUND)

        history = payments.get_payment_history(quote.id)

        assert [line.running_balance for line in history] == [
            Decimal("60.00"), Decimal("100.00"), Decimal("80.00"),
        ]
        assert [line.gateway_display_name for line in history] == ["Stripe", "PayU", "Stripe"]
        assert history[2].signed_amount == Decimal("-20.00")

    def test_summary(self, payments, make_quote, test_actor_id, deterministic_clock):
        quote = make_quote()
        paid_at = deterministic_clock.now()
        _pay(payments, quote, "60.00", test_actor_id)
        deterministic_clock.advance(60)
        _pay(payments, quote, "15.00", test_actor_id, payment_type=PaymentType.REFUND)

        summary = payments.get_payment_summary(quote.id)

        assert summary.total_payments == Decimal("60.00")
        assert summary.total_refunds == Decimal("15.00")
        assert summary.amount_paid == Decimal("45.00")
        assert summary.remaining_balance == Decimal("55.00")
        assert summary.payment_status == PaymentStatus.PARTIAL
        assert summary.entry_count == 2
        assert summary.last_payment_date == paid_at

    def test_history_for_unknown_quote(self, payments, chart):
        with pytest.raises(QuoteNotFoundError):
            payments.get_payment_history(uuid4())
