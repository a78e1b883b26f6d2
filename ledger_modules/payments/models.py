"""
ledger_modules.payments.models
==============================

Responsibility:
    Frozen value objects and enums for the payment ledger: entry views,
    payment history lines, summaries and the result types returned by
    PaymentLedgerService.

Architecture:
    Module layer.  In-memory DTOs, NOT ORM models.  The entry type and
    status vocabularies are owned by ``ledger_engines.payment_status``,
    which computes balances from them; they are re-exported here under the
    module's names.

Invariants enforced:
    - Monetary fields are ``Decimal``.  Ledger amounts are positive
      magnitudes; direction comes from the payment type.
    - All DTOs are frozen.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_engines.payment_status import LedgerEntryStatus, LedgerPaymentType
from ledger_kernel.domain.payment import PaymentStatus

PaymentType = LedgerPaymentType

__all__ = [
    "PaymentType",
    "LedgerEntryStatus",
    "PaymentStatus",
    "PaymentTransactionStatus",
    "PaymentRecordStatus",
    "PaymentRecordResult",
    "LedgerMutationStatus",
    "LedgerMutationResult",
    "PaymentLedgerEntry",
    "PaymentHistoryLine",
    "PaymentSummary",
]


class PaymentTransactionStatus(str, Enum):
    """Gateway-side charge status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRecordStatus(str, Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    DECLINED = "declined"


@dataclass(frozen=True)
class PaymentRecordResult:
    """
    Outcome of ``PaymentLedgerService.record_payment``.

    Contract:
        RECORDED and DUPLICATE are successes; DUPLICATE carries the id of
        the entry that already exists and nothing was written.
    """

    status: PaymentRecordStatus
    message: str
    ledger_entry_id: UUID | None = None
    financial_transaction_id: UUID | None = None
    amount_paid: Decimal | None = None
    payment_status: PaymentStatus | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (PaymentRecordStatus.RECORDED, PaymentRecordStatus.DUPLICATE)


class LedgerMutationStatus(str, Enum):
    UPDATED = "updated"
    DELETED = "deleted"
    DECLINED = "declined"


@dataclass(frozen=True)
class LedgerMutationResult:
    status: LedgerMutationStatus
    message: str
    ledger_entry_id: UUID | None = None
    amount_paid: Decimal | None = None
    payment_status: PaymentStatus | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status != LedgerMutationStatus.DECLINED


@dataclass(frozen=True)
class PaymentLedgerEntry:
    """Read-only view of one payment ledger row."""

    id: UUID
    quote_id: UUID
    payment_type: PaymentType
    amount: Decimal
    currency: str
    status: LedgerEntryStatus
    payment_date: datetime
    base_amount: Decimal | None = None
    exchange_rate: Decimal = Decimal("1")
    payment_method: str | None = None
    gateway_code: str | None = None
    gateway_transaction_id: str | None = None
    reference_number: str | None = None
    financial_transaction_id: UUID | None = None
    payment_transaction_id: UUID | None = None
    balance_before: Decimal | None = None
    balance_after: Decimal | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentHistoryLine:
    """A ledger entry as shown in an order's payment history."""

    entry: PaymentLedgerEntry
    gateway_display_name: str
    signed_amount: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class PaymentSummary:
    quote_id: UUID
    final_total: Decimal
    currency: str
    total_payments: Decimal
    total_refunds: Decimal
    total_credits_applied: Decimal
    amount_paid: Decimal
    remaining_balance: Decimal
    overpayment_amount: Decimal
    payment_status: PaymentStatus
    entry_count: int
    last_payment_date: datetime | None = None
