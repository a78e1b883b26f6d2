"""
Tests for the payment-status engine.

Validates:
- Signed contribution of each entry type and status
- The four-way status rule and overpayment amount
- Engine invocations are traced
"""

from decimal import Decimal

import pytest

from ledger_engines.payment_status import (
    LedgerAmount,
    LedgerEntryStatus,
    LedgerPaymentType,
    derive_payment_status,
    signed_amount,
    sum_signed,
)
from ledger_kernel.domain.payment import PaymentStatus


class TestSignedAmount:

    @pytest.mark.parametrize(
        "payment_type, expected",
        [
            (LedgerPaymentType.CUSTOMER_PAYMENT, Decimal("25")),
            (LedgerPaymentType.CREDIT_APPLIED, Decimal("25")),
            (LedgerPaymentType.REFUND, Decimal("-25")),
            (LedgerPaymentType.PARTIAL_REFUND, Decimal("-25")),
            (LedgerPaymentType.UNDERPAYMENT_ADJUSTMENT, Decimal("-25")),
            (LedgerPaymentType.CHARGEBACK, Decimal("-25")),
            (LedgerPaymentType.OVERPAYMENT, Decimal("0")),
            (LedgerPaymentType.WRITE_OFF, Decimal("0")),
        ],
    )
    def test_direction_by_type(self, payment_type, expected):
        assert signed_amount(payment_type.value, Decimal("25"), "completed") == expected

    @pytest.mark.parametrize("status", ["pending", "failed", "reversed", "cancelled"])
    def test_uncounted_statuses_contribute_nothing(self, status):
        assert signed_amount("customer_payment", Decimal("25"), status) == Decimal("0")

    def test_processing_counts(self):
        assert signed_amount("refund", Decimal("10"), LedgerEntryStatus.PROCESSING.value) == Decimal("-10")

    def test_negative_magnitude_is_normalised(self):
        assert signed_amount("refund", Decimal("-10"), "completed") == Decimal("-10")

    def test_sum_signed(self):
        entries = [
            LedgerAmount("customer_payment", Decimal("60"), "completed"),
            LedgerAmount("customer_payment", Decimal("40"), "completed"),
            LedgerAmount("refund", Decimal("20"), "processing"),
            LedgerAmount("customer_payment", Decimal("99"), "failed"),
        ]
        assert sum_signed(entries) == Decimal("80")


class TestDerivePaymentStatus:

    @pytest.mark.parametrize(
        "paid, status",
        [
            ("0", PaymentStatus.UNPAID),
            ("-5", PaymentStatus.UNPAID),
            ("60", PaymentStatus.PARTIAL),
            ("100", PaymentStatus.PAID),
            ("120", PaymentStatus.OVERPAID),
        ],
    )
    def test_four_way_rule(self, paid, status):
        position = derive_payment_status(amount_paid=Decimal(paid), final_total=Decimal("100"))
        assert position.payment_status == status

    def test_overpayment_amount(self):
        position = derive_payment_status(amount_paid=Decimal("120"), final_total=Decimal("100"))
        assert position.overpayment_amount == Decimal("20")

    def test_no_overpayment_when_partial(self):
        position = derive_payment_status(amount_paid=Decimal("60"), final_total=Decimal("100"))
        assert position.overpayment_amount == Decimal("0")

    def test_float_rejected(self):
        with pytest.raises(AssertionError):
            derive_payment_status(amount_paid=60.0, final_total=Decimal("100"))

    def test_invocation_is_traced(self, captured_logs):
        derive_payment_status(amount_paid=Decimal("1"), final_total=Decimal("2"))
        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "payment_status"
        assert len(traces[-1]["input_fingerprint"]) == 16
