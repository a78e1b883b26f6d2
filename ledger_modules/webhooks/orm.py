"""
Webhook ORM Models (``ledger_modules.webhooks.orm``).

Responsibility
--------------
SQLAlchemy persistence for guest checkout sessions and the order records
created once a checkout is paid.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_modules.webhooks.models import GuestSessionStatus, OrderStatus


# ---------------------------------------------------------------------------
# GuestCheckoutSessionModel
# ---------------------------------------------------------------------------

class GuestCheckoutSessionModel(TrackedBase):
    """
    ORM model for guest checkout data held until payment confirms it.

    Table: ``guest_checkout_sessions``

    The guest's contact and address stay here, not on the order, so an
    abandoned or failed checkout never alters a shared order.
    """

    __tablename__ = "guest_checkout_sessions"

    session_token: Mapped[str] = mapped_column(String(100))
    quote_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("quotes.id"))
    guest_name: Mapped[str] = mapped_column(String(255))
    guest_email: Mapped[str] = mapped_column(String(255))
    guest_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON)
    payment_currency: Mapped[str] = mapped_column(String(3))
    payment_method: Mapped[str] = mapped_column(String(50))
    payment_amount: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default=GuestSessionStatus.ACTIVE.value)
    expires_at: Mapped[datetime]

    __table_args__ = (
        UniqueConstraint("session_token", name="uq_guest_checkout_sessions_token"),
        Index("idx_guest_checkout_sessions_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<GuestCheckoutSessionModel(token={self.session_token!r}, "
            f"quote_id={self.quote_id!r}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# OrderRecordModel
# ---------------------------------------------------------------------------

class OrderRecordModel(TrackedBase):
    """
    ORM model for a confirmed order grouping one or more paid quotes.

    Table: ``orders``
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(50))
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    quote_ids: Mapped[list[str]] = mapped_column(JSON)
    total_amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.CONFIRMED.value)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_transactions.id"), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_orders_order_number"),
        Index("idx_orders_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderRecordModel({self.order_number!r}, total={self.total_amount} "
            f"{self.currency}, status={self.status!r})>"
        )
