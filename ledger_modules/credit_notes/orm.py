"""
Credit Note ORM Models (``ledger_modules.credit_notes.orm``).

Responsibility
--------------
SQLAlchemy persistence for store-credit notes, their applications to
orders and the per-note history trail.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
References ``quotes``, ``refund_requests``, ``payment_ledger`` and
``financial_transactions`` by foreign key.

Invariants
----------
* ``amount_used`` never exceeds ``amount``; ``amount_available`` is derived
  and never stored.
* ``note_number`` is unique (``CN-{YEAR}-{000001}``).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_modules.credit_notes.models import CreditNoteAction, CreditNoteHistoryLine


# ---------------------------------------------------------------------------
# CreditNoteModel
# ---------------------------------------------------------------------------

class CreditNoteModel(TrackedBase):
    """
    ORM model for a store-credit note issued to a customer.

    Table: ``credit_notes``
    """

    __tablename__ = "credit_notes"

    note_number: Mapped[str] = mapped_column(String(30))
    customer_id: Mapped[UUID] = mapped_column(UUIDString())

    amount: Mapped[Decimal]
    amount_used: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3))
    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    base_amount: Mapped[Decimal]

    reason: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    quote_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("quotes.id"), nullable=True,
    )
    refund_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("refund_requests.id"), nullable=True,
    )

    valid_from: Mapped[date]
    valid_until: Mapped[date | None]
    minimum_order_value: Mapped[Decimal | None]

    status: Mapped[str] = mapped_column(String(20))
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None]
    cancelled_at: Mapped[datetime | None]
    financial_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("financial_transactions.id"), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("note_number", name="uq_credit_notes_number"),
        Index("idx_credit_notes_customer_status", "customer_id", "status"),
        Index("idx_credit_notes_valid_until", "valid_until"),
    )

    @property
    def amount_available(self) -> Decimal:
        available = self.amount - (self.amount_used or Decimal("0"))
        return available if available > Decimal("0") else Decimal("0")

    def is_valid_on(self, day: date) -> bool:
        if day < self.valid_from:
            return False
        return self.valid_until is None or day <= self.valid_until

    def __repr__(self) -> str:
        return (
            f"<CreditNoteModel({self.note_number!r}, amount={self.amount}, "
            f"used={self.amount_used}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# CreditNoteApplicationModel
# ---------------------------------------------------------------------------

class CreditNoteApplicationModel(TrackedBase):
    """
    ORM model for one application of a credit note to an order.

    Table: ``credit_note_applications``
    """

    __tablename__ = "credit_note_applications"

    credit_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("credit_notes.id"),
    )
    quote_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("quotes.id"))

    applied_amount: Mapped[Decimal]
    base_amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3))
    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"))

    status: Mapped[str] = mapped_column(String(20))
    applied_by_id: Mapped[UUID] = mapped_column(UUIDString())
    applied_at: Mapped[datetime]
    payment_ledger_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_ledger.id"), nullable=True,
    )
    financial_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("financial_transactions.id"), nullable=True,
    )

    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversed_at: Mapped[datetime | None]
    reversal_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        Index("idx_credit_applications_note", "credit_note_id"),
        Index("idx_credit_applications_quote", "quote_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditNoteApplicationModel(id={self.id!r}, note={self.credit_note_id!r}, "
            f"quote={self.quote_id!r}, amount={self.applied_amount}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# CreditNoteHistoryModel
# ---------------------------------------------------------------------------

class CreditNoteHistoryModel(TrackedBase):
    """
    ORM model for one state change or money movement on a credit note.

    Table: ``credit_note_history``

    Append-only: rows are inserted by ``CreditNoteService`` and never
    updated.
    """

    __tablename__ = "credit_note_history"

    credit_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("credit_notes.id"),
    )
    action: Mapped[str] = mapped_column(String(30))
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount_change: Mapped[Decimal | None]
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    performed_by_id: Mapped[UUID] = mapped_column(UUIDString())
    performed_at: Mapped[datetime]
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_credit_note_history_note", "credit_note_id", "performed_at"),
    )

    def to_dto(self) -> CreditNoteHistoryLine:
        return CreditNoteHistoryLine(
            action=CreditNoteAction(self.action),
            previous_status=self.previous_status,
            new_status=self.new_status,
            amount_change=self.amount_change,
            description=self.description,
            performed_by_id=self.performed_by_id,
            performed_at=self.performed_at,
        )
