"""
Refund ORM Models (``ledger_modules.refunds.orm``).

Responsibility
--------------
SQLAlchemy persistence for refund requests, the per-payment refund items
they are allocated into, and gateway-level refund records.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
References ``payment_ledger`` and ``payment_transactions`` by foreign key.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


# ---------------------------------------------------------------------------
# RefundRequestModel
# ---------------------------------------------------------------------------

class RefundRequestModel(TrackedBase):
    """
    ORM model for a refund request against one order.

    Table: ``refund_requests``
    """

    __tablename__ = "refund_requests"

    quote_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("quotes.id"))
    refund_type: Mapped[str] = mapped_column(String(30))
    requested_amount: Mapped[Decimal]
    approved_amount: Mapped[Decimal | None]
    currency: Mapped[str] = mapped_column(String(3))

    reason_code: Mapped[str] = mapped_column(String(50))
    reason_description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    customer_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    refund_method: Mapped[str] = mapped_column(String(50))

    status: Mapped[str] = mapped_column(String(30))
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString())
    requested_at: Mapped[datetime]
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None]
    processed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    processed_at: Mapped[datetime | None]
    completed_at: Mapped[datetime | None]

    items: Mapped[list["RefundItemModel"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RefundItemModel.line_number",
    )

    __table_args__ = (
        Index("idx_refund_requests_quote", "quote_id"),
        Index("idx_refund_requests_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RefundRequestModel(id={self.id!r}, quote_id={self.quote_id!r}, "
            f"requested={self.requested_amount}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# RefundItemModel
# ---------------------------------------------------------------------------

class RefundItemModel(TrackedBase):
    """
    ORM model for one slice of a refund request, funded by one source
    payment ledger entry.

    Table: ``refund_items``
    """

    __tablename__ = "refund_items"

    refund_request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("refund_requests.id"),
    )
    payment_ledger_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_ledger.id"),
    )
    line_number: Mapped[int]

    allocated_amount: Mapped[Decimal]
    base_amount: Mapped[Decimal | None]
    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    currency: Mapped[str] = mapped_column(String(3))

    gateway_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    gateway_refund_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20))
    refund_ledger_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_ledger.id"), nullable=True,
    )
    processed_at: Mapped[datetime | None]

    request: Mapped["RefundRequestModel"] = relationship(back_populates="items")

    __table_args__ = (
        Index("idx_refund_items_request", "refund_request_id"),
        Index("idx_refund_items_source", "payment_ledger_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RefundItemModel(id={self.id!r}, source={self.payment_ledger_id!r}, "
            f"allocated={self.allocated_amount}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# GatewayRefundModel
# ---------------------------------------------------------------------------

class GatewayRefundModel(TrackedBase):
    """
    ORM model for a refund pushed to a payment gateway against one charge.

    Table: ``gateway_refunds``
    """

    __tablename__ = "gateway_refunds"

    gateway_refund_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_transactions.id"),
    )
    quote_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("quotes.id"))

    refund_amount: Mapped[Decimal]
    original_amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3))
    refund_type: Mapped[str] = mapped_column(String(30))
    reason_code: Mapped[str] = mapped_column(String(50))
    reason_description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    customer_note: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    status: Mapped[str] = mapped_column(String(20))
    gateway_status: Mapped[str] = mapped_column(String(30))
    gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    refund_date: Mapped[datetime]
    processed_by_id: Mapped[UUID] = mapped_column(UUIDString())

    __table_args__ = (
        UniqueConstraint("gateway_refund_id", name="uq_gateway_refunds_gateway_refund_id"),
        Index("idx_gateway_refunds_payment_txn", "payment_transaction_id"),
        Index("idx_gateway_refunds_quote", "quote_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GatewayRefundModel(id={self.id!r}, gateway={self.gateway_code!r}, "
            f"amount={self.refund_amount}, status={self.status!r})>"
        )
