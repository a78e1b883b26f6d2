"""
Payment Ledger ORM Models (``ledger_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence for gateway payment transactions and the
append-only payment ledger that drives every order's amount paid.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``ledger_kernel``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


# ---------------------------------------------------------------------------
# PaymentTransactionModel
# ---------------------------------------------------------------------------

class PaymentTransactionModel(TrackedBase):
    """
    ORM model for a gateway charge -- one customer payment attempt as the
    gateway reported it, plus the running refund totals against it.

    Table: ``payment_transactions``
    """

    __tablename__ = "payment_transactions"

    transaction_id: Mapped[str] = mapped_column(String(100))
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quote_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("quotes.id"), nullable=True,
    )
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String(20))
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    total_refunded: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    refund_count: Mapped[int] = mapped_column(Integer, default=0)
    is_fully_refunded: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[datetime | None]
    last_refund_at: Mapped[datetime | None]

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_payment_transactions_transaction_id"),
        Index("idx_payment_transactions_gateway_txn", "gateway_transaction_id"),
        Index("idx_payment_transactions_quote", "quote_id"),
    )

    @property
    def refundable_amount(self) -> Decimal:
        remaining = self.amount - (self.total_refunded or Decimal("0"))
        return remaining if remaining > Decimal("0") else Decimal("0")

    def __repr__(self) -> str:
        return (
            f"<PaymentTransactionModel(id={self.id!r}, transaction_id={self.transaction_id!r}, "
            f"amount={self.amount}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# PaymentLedgerEntryModel
# ---------------------------------------------------------------------------

class PaymentLedgerEntryModel(TrackedBase):
    """
    ORM model for ``PaymentLedgerEntry`` -- one money movement against an
    order.  ``amount`` is a positive magnitude; ``payment_type`` gives the
    direction.

    Table: ``payment_ledger``
    """

    __tablename__ = "payment_ledger"

    quote_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("quotes.id"))
    payment_type: Mapped[str] = mapped_column(String(30))
    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3))
    base_amount: Mapped[Decimal | None]
    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"))

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gateway_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20))
    payment_date: Mapped[datetime]
    # Insertion order; breaks ties between entries sharing a payment_date.
    ledger_seq: Mapped[int]

    financial_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("financial_transactions.id"), nullable=True,
    )
    payment_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_transactions.id"), nullable=True,
    )

    balance_before: Mapped[Decimal | None]
    balance_after: Mapped[Decimal | None]
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        UniqueConstraint("ledger_seq", name="uq_payment_ledger_seq"),
        Index("idx_payment_ledger_quote", "quote_id", "status"),
        Index("idx_payment_ledger_gateway_txn", "quote_id", "gateway_transaction_id"),
        Index("idx_payment_ledger_payment_txn", "payment_transaction_id"),
        Index("idx_payment_ledger_method_date", "payment_method", "payment_date"),
    )

    def to_dto(self):
        from ledger_modules.payments.models import (
            LedgerEntryStatus,
            PaymentLedgerEntry,
            PaymentType,
        )
        return PaymentLedgerEntry(
            id=self.id,
            quote_id=self.quote_id,
            payment_type=PaymentType(self.payment_type),
            amount=self.amount,
            currency=self.currency,
            status=LedgerEntryStatus(self.status),
            payment_date=self.payment_date,
            base_amount=self.base_amount,
            exchange_rate=self.exchange_rate,
            payment_method=self.payment_method,
            gateway_code=self.gateway_code,
            gateway_transaction_id=self.gateway_transaction_id,
            reference_number=self.reference_number,
            financial_transaction_id=self.financial_transaction_id,
            payment_transaction_id=self.payment_transaction_id,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentLedgerEntryModel(id={self.id!r}, quote_id={self.quote_id!r}, "
            f"type={self.payment_type!r}, amount={self.amount}, status={self.status!r})>"
        )
