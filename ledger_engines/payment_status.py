"""
ledger_engines.payment_status -- signed ledger amounts and payment status.

Responsibility:
    The pure half of balance sync: how much each ledger entry contributes
    to an order's amount paid, and which of unpaid / partial / paid /
    overpaid follows from the total.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - customer_payment and credit_applied add; refund, partial_refund,
      underpayment_adjustment and chargeback subtract; overpayment and
      write_off contribute nothing.
    - Only processing and completed entries count.
    - Status is a function of (amount_paid, final_total) alone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.payment import PaymentStatus


class LedgerPaymentType(str, Enum):
    """Kinds of payment ledger entries."""

    CUSTOMER_PAYMENT = "customer_payment"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    CREDIT_APPLIED = "credit_applied"
    OVERPAYMENT = "overpayment"
    UNDERPAYMENT_ADJUSTMENT = "underpayment_adjustment"
    WRITE_OFF = "write_off"
    CHARGEBACK = "chargeback"


class LedgerEntryStatus(str, Enum):
    """Lifecycle of a payment ledger entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"
    CANCELLED = "cancelled"


POSITIVE_TYPES = frozenset({
    LedgerPaymentType.CUSTOMER_PAYMENT.value,
    LedgerPaymentType.CREDIT_APPLIED.value,
})
NEGATIVE_TYPES = frozenset({
    LedgerPaymentType.REFUND.value,
    LedgerPaymentType.PARTIAL_REFUND.value,
    LedgerPaymentType.UNDERPAYMENT_ADJUSTMENT.value,
    LedgerPaymentType.CHARGEBACK.value,
})
REFUND_TYPES = frozenset({
    LedgerPaymentType.REFUND.value,
    LedgerPaymentType.PARTIAL_REFUND.value,
})
COUNTED_STATUSES = frozenset({
    LedgerEntryStatus.PROCESSING.value,
    LedgerEntryStatus.COMPLETED.value,
})


@dataclass(frozen=True)
class PaymentPosition:
    """amount_paid, status and overpayment derived for one order."""

    amount_paid: Decimal
    payment_status: PaymentStatus
    overpayment_amount: Decimal


@dataclass(frozen=True)
class LedgerAmount:
    """The three fields of a ledger entry that matter for balance sync."""

    payment_type: str
    amount: Decimal
    status: str


def signed_amount(payment_type: str, amount: Decimal, status: str) -> Decimal:
    """Contribution of one entry to amount_paid."""
    if status not in COUNTED_STATUSES:
        return Decimal("0")
    magnitude = abs(amount)
    if payment_type in POSITIVE_TYPES:
        return magnitude
    if payment_type in NEGATIVE_TYPES:
        return -magnitude
    return Decimal("0")


def sum_signed(entries: Iterable[LedgerAmount]) -> Decimal:
    total = Decimal("0")
    for entry in entries:
        total += signed_amount(entry.payment_type, entry.amount, entry.status)
    return total


@traced_engine(
    "payment_status", "1.0", fingerprint_fields=("amount_paid", "final_total")
)
def derive_payment_status(*, amount_paid: Decimal, final_total: Decimal) -> PaymentPosition:
    """
    Four-way payment status rule.

    amount_paid <= 0            unpaid
    amount_paid <  final_total  partial
    amount_paid == final_total  paid
    amount_paid >  final_total  overpaid, overpayment = paid - total
    """
    assert isinstance(amount_paid, Decimal), "amount_paid must be Decimal, not float"

    if amount_paid <= Decimal("0"):
        status = PaymentStatus.UNPAID
    elif amount_paid < final_total:
        status = PaymentStatus.PARTIAL
    elif amount_paid == final_total:
        status = PaymentStatus.PAID
    else:
        status = PaymentStatus.OVERPAID

    overpayment = (
        amount_paid - final_total
        if status == PaymentStatus.OVERPAID
        else Decimal("0")
    )
    return PaymentPosition(
        amount_paid=amount_paid,
        payment_status=status,
        overpayment_amount=overpayment,
    )
