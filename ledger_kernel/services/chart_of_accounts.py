"""
ChartOfAccounts -- account lookup, seeding and posting-pair resolution.

Responsibility:
    Seeds the configured chart, answers lookups by code, walks the
    hierarchy, and maps a payment type plus gateway onto the debit/credit
    account pair the journal posts to.

Architecture position:
    Kernel > Services.  Reads ``ledger_config`` for the chart definition
    and the gateway/posting account codes.

Invariants enforced:
    - Postings only target existing, active accounts (``require_postable``).
    - Seeding is idempotent: existing codes are left untouched.

Failure modes:
    - AccountNotFoundError for an unknown code.
    - AccountInactiveError for a deactivated account.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import AccountDef, LedgerConfig
from ledger_kernel.exceptions import AccountInactiveError, AccountNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    Account,
    AccountType,
    normal_balance_for,
)

logger = get_logger("services.chart_of_accounts")

# Payment types that move money back to the customer.
REFUND_PAYMENT_TYPES = frozenset({"refund", "partial_refund"})
CREDIT_APPLIED_PAYMENT_TYPE = "credit_applied"
CUSTOMER_PAYMENT_TYPE = "customer_payment"


class ChartOfAccounts:
    """
    Chart-of-accounts facade over the ``chart_of_accounts`` table.

    Contract:
        Lookups never create accounts; only ``seed`` writes.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, config: LedgerConfig):
        self._session = session
        self._config = config

    def seed(self, actor_id: UUID, accounts: tuple[AccountDef, ...] | None = None) -> int:
        """
        Insert every configured account that does not exist yet.

        Parents are inserted before children (config order is respected,
        then a parent-first pass handles out-of-order definitions).

        Returns:
            Number of accounts inserted.
        """
        defs = accounts if accounts is not None else self._config.accounts
        existing = set(self._session.scalars(select(Account.code)).all())
        pending = [d for d in defs if d.code not in existing]
        inserted = 0

        while pending:
            progressed = False
            for account_def in list(pending):
                if account_def.parent_code and account_def.parent_code not in existing:
                    continue
                account_type = AccountType(account_def.account_type)
                self._session.add(
                    Account(
                        code=account_def.code,
                        name=account_def.name,
                        account_type=account_type.value,
                        normal_balance=normal_balance_for(account_type).value,
                        parent_code=account_def.parent_code,
                        description=account_def.description,
                        is_active=account_def.is_active,
                        created_by_id=actor_id,
                    )
                )
                existing.add(account_def.code)
                pending.remove(account_def)
                inserted += 1
                progressed = True
            if not progressed:
                missing = sorted({d.parent_code for d in pending if d.parent_code})
                raise AccountNotFoundError(", ".join(missing))

        self._session.flush()
        logger.info("chart_of_accounts_seeded", extra={"inserted": inserted})
        return inserted

    def get(self, code: str) -> Account:
        account = self._session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def require_postable(self, code: str) -> Account:
        """Return the account if it exists and is active."""
        account = self.get(code)
        if not account.is_active:
            raise AccountInactiveError(code)
        return account

    def children(self, code: str) -> list[Account]:
        """Direct children of ``code`` ordered by code."""
        self.get(code)
        return list(
            self._session.scalars(
                select(Account).where(Account.parent_code == code).order_by(Account.code)
            ).all()
        )

    def resolve_payment_accounts(
        self,
        payment_type: str,
        gateway_code: str | None,
    ) -> tuple[str, str]:
        """
        Map a payment type and gateway onto (debit, credit) account codes.

        customer_payment  Dr gateway asset          Cr accounts receivable
        refund types      Dr refunds and returns    Cr gateway asset
        credit_applied    Dr customer deposits      Cr accounts receivable
        anything else     Dr accounts receivable    Cr sales revenue
        """
        posting = self._config.posting_accounts
        gateway_account = self._config.gateways.account_for(gateway_code)

        if payment_type == CUSTOMER_PAYMENT_TYPE:
            return gateway_account, posting.accounts_receivable
        if payment_type in REFUND_PAYMENT_TYPES:
            return posting.refunds_and_returns, gateway_account
        if payment_type == CREDIT_APPLIED_PAYMENT_TYPE:
            return posting.customer_deposits, posting.accounts_receivable
        return posting.accounts_receivable, posting.sales_revenue
