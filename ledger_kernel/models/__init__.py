"""Kernel ORM models: chart of accounts, journal, order aggregate."""

from ledger_kernel.models.account import (
    Account,
    AccountType,
    NormalBalance,
    normal_balance_for,
)
from ledger_kernel.models.financial_transaction import (
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.models.quote import PaymentStatus, Quote

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "normal_balance_for",
    "FinancialTransaction",
    "TransactionStatus",
    "TransactionType",
    "Quote",
    "PaymentStatus",
]
