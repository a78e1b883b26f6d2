"""
ledger_modules.refunds.models
=============================

Responsibility:
    Enums and frozen result types for refund requests, their per-payment
    items, atomic gateway refunds and refund eligibility checks.

Architecture:
    Module layer.  In-memory DTOs only; persistence lives in ``orm.py``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class RefundType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    CREDIT_NOTE = "credit_note"
    CHARGEBACK = "chargeback"
    OVERPAYMENT = "overpayment"


class RefundRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_ITEM_STATUSES = frozenset({
    RefundItemStatus.COMPLETED.value,
    RefundItemStatus.FAILED.value,
    RefundItemStatus.CANCELLED.value,
})

# Items in these statuses no longer hold capacity on their source payment.
RELEASED_ITEM_STATUSES = frozenset({
    RefundItemStatus.FAILED.value,
    RefundItemStatus.CANCELLED.value,
})


class GatewayRefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundOutcome(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass(frozen=True)
class RefundRequestResult:
    status: RefundOutcome
    message: str
    refund_request_id: UUID | None = None
    allocated_amount: Decimal = Decimal("0")
    unallocated_amount: Decimal = Decimal("0")
    item_count: int = 0
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == RefundOutcome.CREATED


@dataclass(frozen=True)
class RefundReviewResult:
    status: RefundOutcome
    message: str
    refund_request_id: UUID | None = None
    approved_amount: Decimal | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (RefundOutcome.APPROVED, RefundOutcome.REJECTED)


@dataclass(frozen=True)
class RefundItemResult:
    status: RefundOutcome
    message: str
    refund_item_id: UUID | None = None
    item_status: RefundItemStatus | None = None
    request_status: RefundRequestStatus | None = None
    ledger_entry_id: UUID | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == RefundOutcome.PROCESSED


@dataclass(frozen=True)
class AtomicRefundResult:
    """
    Outcome of ``RefundService.process_refund_atomic``.

    Contract:
        ``success`` is False for declines and for unexpected errors; in
        both cases nothing was written and ``error_message`` says why.
        ``duplicate`` is True for a replayed gateway refund id; the
        earlier refund is returned and nothing new is written.
    """

    success: bool
    refund_id: UUID | None = None
    ledger_entry_id: UUID | None = None
    payment_transaction_updated: bool = False
    quote_updated: bool = False
    total_refunded: Decimal | None = None
    is_fully_refunded: bool = False
    duplicate: bool = False
    error_message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.success


@dataclass(frozen=True)
class RefundEligibility:
    payment_transaction_id: UUID
    eligible: bool
    refundable_amount: Decimal
    reason: str
    days_since_payment: int | None = None
