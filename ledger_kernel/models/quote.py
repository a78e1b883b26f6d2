"""
Module: ledger_kernel.models.quote
Responsibility: ORM persistence for the order aggregate ("quote") as seen by
    the ledger: total, currency, route, payment state and tax-method
    preferences.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.

Invariants enforced:
    - amount_paid, payment_status and overpayment_amount are DERIVED from
      the payment ledger by the balance-sync step.  No service accepts them
      as inputs.
    - payment_status is one of unpaid, partial, paid, overpaid.

Failure modes:
    - QuoteNotFoundError raised by callers when a lookup misses.

Audit relevance:
    Order management reads amount_paid/payment_status to release orders for
    purchasing.  Because they are recomputed from the ledger inside the
    same transaction as every ledger mutation, they cannot drift from the
    underlying money movements.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.payment import PaymentStatus


class Quote(TrackedBase):
    """
    Order aggregate consumed by the ledger.

    Contract:
        The ledger reads id/final_total/currency/destination/status for
        validation and writes only the derived payment fields, the
        webhook-driven status/payment detail fields and the tax-method
        preference columns.

    Non-goals:
        - Line items, shipping quotes and customs computation live outside
          the ledger.
    """

    __tablename__ = "quotes"

    __table_args__ = (
        Index("idx_quote_customer", "customer_id"),
        Index("idx_quote_route", "origin_country", "destination_country"),
        Index("idx_quote_payment_status", "payment_status"),
    )

    display_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    final_total: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    origin_country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    destination_country: Mapped[str | None] = mapped_column(String(2), nullable=True)

    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)

    # Derived from the payment ledger
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.UNPAID.value,
        nullable=False,
    )
    overpayment_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[datetime | None]
    payment_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Tax method preferences ("auto" defers to the resolver chain).
    # active_history keeps the prior value for the audit flush hook even
    # when the row was expired.
    calculation_method_preference: Mapped[str] = mapped_column(
        String(30), default="auto", nullable=False, active_history=True
    )
    valuation_method_preference: Mapped[str] = mapped_column(
        String(30), default="auto", nullable=False, active_history=True
    )

    @property
    def outstanding_balance(self) -> Decimal:
        """final_total - amount_paid, floored at zero."""
        balance = self.final_total - (self.amount_paid or Decimal("0"))
        return balance if balance > Decimal("0") else Decimal("0")

    def __repr__(self) -> str:
        return (
            f"<Quote {self.id}: total={self.final_total} {self.currency} "
            f"paid={self.amount_paid} [{self.payment_status}]>"
        )
