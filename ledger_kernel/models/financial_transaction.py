"""
Module: ledger_kernel.models.financial_transaction
Responsibility: ORM persistence for the double-entry transaction journal.
    Each row debits one account and credits another for the same amount.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - debit_account_code != credit_account_code (checked by JournalService
      and by a CHECK constraint).
    - amount > 0 (CHECK constraint).
    - A transaction is reversed at most once: the reversing row carries
      reversal_of_id (unique) and the original carries reversed_by_id.

Failure modes:
    - IntegrityError on a second reversal of the same transaction.
    - IntegrityError when an account code does not exist (FK).

Audit relevance:
    Posted rows are the authoritative money movements behind every payment
    ledger entry and credit note.  They are never edited; corrections are
    reversals that swap the accounts and link back to the original.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class TransactionStatus(str, Enum):
    """Lifecycle status of a financial transaction."""

    PENDING = "pending"
    POSTED = "posted"
    VOID = "void"
    REVERSED = "reversed"


class TransactionType(str, Enum):
    """Business classification of a financial transaction."""

    PAYMENT = "payment"
    REFUND = "refund"
    CREDIT_NOTE = "credit_note"
    CREDIT_APPLIED = "credit_applied"
    ADJUSTMENT = "adjustment"
    WRITE_OFF = "write_off"
    REVERSAL = "reversal"


class FinancialTransaction(TrackedBase):
    """
    A single double-entry journal record.

    Contract:
        Exactly one debit account, one credit account, one positive amount.
        Status moves pending -> posted | void, and posted -> reversed.

    Guarantees:
        - Reversals are separate posted rows with swapped accounts.
        - reference_type/reference_id point at the business document
          (quote, credit_note, refund_request ...) that caused the posting.

    Non-goals:
        - Does not carry payment-gateway detail; that lives on the payment
          ledger entry that links here.
    """

    __tablename__ = "financial_transactions"

    __table_args__ = (
        UniqueConstraint("reversal_of_id", name="uq_financial_transaction_reversal_of"),
        CheckConstraint("amount > 0", name="ck_financial_transaction_amount_positive"),
        CheckConstraint(
            "debit_account_code <> credit_account_code",
            name="ck_financial_transaction_distinct_accounts",
        ),
        Index("idx_financial_transaction_reference", "reference_type", "reference_id"),
        Index("idx_financial_transaction_status", "status"),
        Index("idx_financial_transaction_date", "transaction_date"),
    )

    transaction_date: Mapped[date]

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Business document behind the posting
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    debit_account_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("chart_of_accounts.code"),
        nullable=False,
    )
    credit_account_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("chart_of_accounts.code"),
        nullable=False,
    )

    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    base_amount: Mapped[Decimal | None]

    status: Mapped[str] = mapped_column(
        String(10),
        default=TransactionStatus.PENDING.value,
        nullable=False,
    )

    posted_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None]

    # Reversal linkage
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("financial_transactions.id"),
        nullable=True,
    )
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    @property
    def is_posted(self) -> bool:
        return self.status == TransactionStatus.POSTED.value

    def __repr__(self) -> str:
        return (
            f"<FinancialTransaction {self.id}: Dr {self.debit_account_code} "
            f"Cr {self.credit_account_code} {self.amount} {self.currency} [{self.status}]>"
        )
