"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the Chart of Accounts -- the debit and
    credit targets of every financial transaction.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account.code is unique (uq_account_code).
    - account_type is one of asset, liability, equity, revenue, expense and
      determines the normal balance side.
    - Hierarchy is expressed by parent_code; parents are seeded before
      children so every parent_code resolves.

Failure modes:
    - AccountNotFoundError when a posting references an unknown code.
    - AccountInactiveError when a posting targets an inactive account.

Audit relevance:
    The chart is static taxonomy.  Changing an account's type after it
    has been posted to would silently change the meaning of historical
    transactions, so the chart is seeded from configuration and only
    activated/deactivated afterwards.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


def normal_balance_for(account_type: AccountType) -> NormalBalance:
    """Assets and expenses are debit-normal; everything else credit-normal."""
    if account_type in (AccountType.ASSET, AccountType.EXPENSE):
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


class Account(TrackedBase):
    """
    Chart of Accounts entry -- a single node in the ledger structure.

    Contract:
        Account.code is globally unique.  Codes are the references used by
        financial transactions, so the code never changes once seeded.

    Guarantees:
        - code is unique and non-null.
        - normal_balance is consistent with account_type.

    Non-goals:
        - Does not enforce hierarchy depth or parent existence at the ORM
          level; ChartOfAccounts.seed orders parents first.
    """

    __tablename__ = "chart_of_accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent", "parent_code"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)

    # Hierarchical chart: parent referenced by code
    parent_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT.value
