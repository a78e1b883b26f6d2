"""
Reconciliation ORM Models (``ledger_modules.reconciliation.orm``).

Responsibility
--------------
SQLAlchemy persistence for reconciliation sessions and their items.  A
system-side item points at a payment ledger entry; a statement-side item
has no ledger link.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_engines.matching import MatchType
from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_modules.reconciliation.models import (
    ReconciliationItemStatus,
    ReconciliationItemView,
)


def _difference(statement: Decimal | None, system: Decimal | None) -> Decimal | None:
    if statement is None or system is None:
        return None
    return statement - system


# ---------------------------------------------------------------------------
# ReconciliationSessionModel
# ---------------------------------------------------------------------------

class ReconciliationSessionModel(TrackedBase):
    """
    ORM model for one reconciliation run of a payment method over a
    statement period.

    Table: ``reconciliation_sessions``
    """

    __tablename__ = "reconciliation_sessions"

    payment_method: Mapped[str] = mapped_column(String(50))
    gateway_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    statement_date: Mapped[date]
    period_start: Mapped[date | None]
    period_end: Mapped[date | None]

    statement_opening_balance: Mapped[Decimal | None]
    statement_closing_balance: Mapped[Decimal | None]
    statement_total_credits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    statement_total_debits: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    system_opening_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    system_closing_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    system_total_credits: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    system_total_debits: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    matched_count: Mapped[int] = mapped_column(default=0)
    unmatched_system_count: Mapped[int] = mapped_column(default=0)
    unmatched_statement_count: Mapped[int] = mapped_column(default=0)
    total_matched_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    status: Mapped[str] = mapped_column(String(30))
    reconciled_by_id: Mapped[UUID] = mapped_column(UUIDString())
    started_at: Mapped[datetime]
    completed_at: Mapped[datetime | None]
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    items: Mapped[list["ReconciliationItemModel"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ReconciliationItemModel.line_number",
    )

    __table_args__ = (
        Index("idx_reconciliation_sessions_method", "payment_method", "statement_date"),
        Index("idx_reconciliation_sessions_status", "status"),
    )

    @property
    def opening_difference(self) -> Decimal | None:
        return _difference(self.statement_opening_balance, self.system_opening_balance)

    @property
    def closing_difference(self) -> Decimal | None:
        return _difference(self.statement_closing_balance, self.system_closing_balance)

    def __repr__(self) -> str:
        return (
            f"<ReconciliationSessionModel(id={self.id!r}, method={self.payment_method!r}, "
            f"date={self.statement_date}, status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# ReconciliationItemModel
# ---------------------------------------------------------------------------

class ReconciliationItemModel(TrackedBase):
    """
    ORM model for one system or statement line within a session.

    Table: ``reconciliation_items``

    When two items are matched each one carries the other's amount, date
    and reference, so ``discrepancy_amount`` on either row describes the
    pair.
    """

    __tablename__ = "reconciliation_items"

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("reconciliation_sessions.id"),
    )
    line_number: Mapped[int]
    payment_ledger_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payment_ledger.id"), nullable=True,
    )

    system_date: Mapped[date | None]
    system_amount: Mapped[Decimal | None]
    system_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    system_description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    statement_date: Mapped[date | None]
    statement_amount: Mapped[Decimal | None]
    statement_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    statement_description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    statement_is_debit: Mapped[bool] = mapped_column(default=False)

    matched: Mapped[bool] = mapped_column(default=False)
    matched_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    match_type: Mapped[str] = mapped_column(String(20), default=MatchType.UNMATCHED.value)
    match_confidence: Mapped[Decimal | None]
    matched_at: Mapped[datetime | None]
    matched_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    discrepancy_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    resolution_action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None]

    status: Mapped[str] = mapped_column(String(20), default=ReconciliationItemStatus.PENDING.value)

    session: Mapped["ReconciliationSessionModel"] = relationship(back_populates="items")

    __table_args__ = (
        Index("idx_reconciliation_items_session", "session_id", "matched"),
    )

    @property
    def is_system(self) -> bool:
        return self.payment_ledger_id is not None

    @property
    def discrepancy_amount(self) -> Decimal:
        """statement - system, missing sides counting as zero."""
        return (self.statement_amount or Decimal("0")) - (self.system_amount or Decimal("0"))

    def to_view(self) -> ReconciliationItemView:
        return ReconciliationItemView(
            item_id=self.id,
            is_system=self.is_system,
            matched=self.matched,
            match_type=MatchType(self.match_type),
            system_amount=self.system_amount,
            statement_amount=self.statement_amount,
            discrepancy_amount=self.discrepancy_amount,
            status=ReconciliationItemStatus(self.status),
        )

    def __repr__(self) -> str:
        side = "system" if self.is_system else "statement"
        return (
            f"<ReconciliationItemModel(#{self.line_number} {side}, "
            f"matched={self.matched}, status={self.status!r})>"
        )
