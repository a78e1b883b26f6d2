"""
ledger_modules.credit_notes.models
==================================

Responsibility:
    Enums, frozen result types and read-side DTOs for store-credit notes,
    their applications to orders and their history trail.

Architecture:
    Module layer.  In-memory DTOs only; persistence lives in ``orm.py``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CreditNoteStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PARTIALLY_USED = "partially_used"
    FULLY_USED = "fully_used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


# Statuses in which the remaining balance can still be spent.
APPLICABLE_STATUSES = frozenset({
    CreditNoteStatus.ACTIVE.value,
    CreditNoteStatus.PARTIALLY_USED.value,
})


class CreditApplicationStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REVERSED = "reversed"
    EXPIRED = "expired"


class CreditNoteAction(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    APPLIED = "applied"
    APPLICATION_REVERSED = "application_reversed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CreditNoteOutcome(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    APPLIED = "applied"
    REVERSED = "reversed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


@dataclass(frozen=True)
class CreditNoteResult:
    status: CreditNoteOutcome
    message: str
    credit_note_id: UUID | None = None
    note_number: str | None = None
    note_status: CreditNoteStatus | None = None
    financial_transaction_id: UUID | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status != CreditNoteOutcome.DECLINED


@dataclass(frozen=True)
class CreditApplicationResult:
    """
    Outcome of applying (or un-applying) store credit to an order.

    ``amount_available`` and ``note_status`` describe the note after the
    change; both are None on a decline.
    """

    status: CreditNoteOutcome
    message: str
    application_id: UUID | None = None
    applied_amount: Decimal = Decimal("0")
    amount_available: Decimal | None = None
    note_status: CreditNoteStatus | None = None
    ledger_entry_id: UUID | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in (CreditNoteOutcome.APPLIED, CreditNoteOutcome.REVERSED)


@dataclass(frozen=True)
class AvailableCreditNote:
    credit_note_id: UUID
    note_number: str
    amount: Decimal
    currency: str
    amount_available: Decimal
    reason: str
    valid_until: date | None
    minimum_order_value: Decimal | None


@dataclass(frozen=True)
class CreditNoteHistoryLine:
    action: CreditNoteAction
    previous_status: str | None
    new_status: str | None
    amount_change: Decimal | None
    description: str | None
    performed_by_id: UUID
    performed_at: datetime
