"""
JournalService -- the only writer of FinancialTransaction rows.

Responsibility:
    Validates and records double-entry transactions, moves them through
    pending -> posted | void, reverses posted rows, and reports account
    balances.

Architecture position:
    Kernel > Services -- imperative shell.  Consumed by every ledger module
    (payments, credit notes, refunds) that needs to post money movements.

Invariants enforced:
    - Double entry: one debit account, one different credit account, one
      strictly positive amount.  Both accounts exist and are active.
    - Posted rows are never edited.  A reversal is a new posted row with
      swapped accounts; the original is marked ``reversed`` and the two
      are linked (``reversal_of_id`` / ``reversed_by_id``).
    - A transaction is reversed at most once.

Failure modes:
    - AccountNotFoundError / AccountInactiveError / AccountMappingError.
    - InvalidTransactionAmountError for amount <= 0.
    - TransactionNotFoundError, TransactionNotPendingError,
      TransactionNotPostedError, TransactionAlreadyReversedError.

Audit relevance:
    Every posting, void and reversal is logged with the transaction id,
    accounts and amount.  Approval columns record who posted a pending row.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    AccountMappingError,
    InvalidTransactionAmountError,
    TransactionAlreadyReversedError,
    TransactionNotFoundError,
    TransactionNotPendingError,
    TransactionNotPostedError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.financial_transaction import (
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts

logger = get_logger("services.journal")

# Statuses whose amounts still sit on the accounts.  A reversed original
# stays on the books; its reversal row offsets it.
_BALANCE_STATUSES = (TransactionStatus.POSTED.value, TransactionStatus.REVERSED.value)


class JournalService:
    """
    Double-entry journal writer.

    Contract:
        ``post`` and ``create_pending`` validate before inserting anything.
        State transitions load the row, check its status and flush.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the calling service owns the
          unit of work.
        - Does NOT know about payment gateways; callers resolve accounts.
    """

    def __init__(
        self,
        session: Session,
        chart: ChartOfAccounts,
        clock: Clock | None = None,
    ):
        self._session = session
        self._chart = chart
        self._clock = clock or SystemClock()

    # =========================================================================
    # Recording
    # =========================================================================

    def post(
        self,
        *,
        transaction_type: TransactionType,
        reference_type: str,
        reference_id: str,
        debit_account_code: str,
        credit_account_code: str,
        amount: Decimal,
        currency: str,
        actor_id: UUID,
        exchange_rate: Decimal = Decimal("1"),
        base_amount: Decimal | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        transaction_date: date | None = None,
    ) -> FinancialTransaction:
        """
        Record a transaction directly in ``posted`` status.

        Preconditions:
            - amount is a positive Decimal.
            - debit_account_code != credit_account_code, both postable.

        Postconditions:
            - A posted FinancialTransaction is flushed and returned with
              approved_by_id = actor_id.
        """
        txn = self._build(
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
            debit_account_code=debit_account_code,
            credit_account_code=credit_account_code,
            amount=amount,
            currency=currency,
            actor_id=actor_id,
            exchange_rate=exchange_rate,
            base_amount=base_amount,
            description=description,
            metadata=metadata,
            transaction_date=transaction_date,
        )
        now = self._clock.now()
        txn.status = TransactionStatus.POSTED.value
        txn.posted_at = now
        txn.approved_by_id = actor_id
        txn.approved_at = now
        self._session.add(txn)
        self._session.flush()

        logger.info(
            "financial_transaction_posted",
            extra={
                "transaction_id": str(txn.id),
                "transaction_type": txn.transaction_type,
                "debit_account": debit_account_code,
                "credit_account": credit_account_code,
                "amount": str(amount),
                "currency": currency,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        return txn

    def create_pending(self, **kwargs: Any) -> FinancialTransaction:
        """Record a transaction in ``pending`` status awaiting approval.

        Accepts the same keyword arguments as ``post``.
        """
        txn = self._build(**kwargs)
        self._session.add(txn)
        self._session.flush()
        logger.info(
            "financial_transaction_pending",
            extra={
                "transaction_id": str(txn.id),
                "transaction_type": txn.transaction_type,
                "amount": str(txn.amount),
            },
        )
        return txn

    def _build(
        self,
        *,
        transaction_type: TransactionType,
        reference_type: str,
        reference_id: str,
        debit_account_code: str,
        credit_account_code: str,
        amount: Decimal,
        currency: str,
        actor_id: UUID,
        exchange_rate: Decimal = Decimal("1"),
        base_amount: Decimal | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        transaction_date: date | None = None,
    ) -> FinancialTransaction:
        assert isinstance(amount, Decimal), "amount must be Decimal, not float"

        if amount <= Decimal("0"):
            raise InvalidTransactionAmountError(amount)
        if debit_account_code == credit_account_code:
            raise AccountMappingError(debit_account_code, credit_account_code)
        self._chart.require_postable(debit_account_code)
        self._chart.require_postable(credit_account_code)

        return FinancialTransaction(
            transaction_date=transaction_date or self._clock.today(),
            transaction_type=TransactionType(transaction_type).value,
            reference_type=reference_type,
            reference_id=str(reference_id),
            description=description,
            debit_account_code=debit_account_code,
            credit_account_code=credit_account_code,
            amount=amount,
            currency=currency.upper(),
            exchange_rate=exchange_rate,
            base_amount=base_amount,
            status=TransactionStatus.PENDING.value,
            metadata_=metadata,
            created_by_id=actor_id,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def get(self, transaction_id: UUID) -> FinancialTransaction:
        txn = self._session.get(FinancialTransaction, transaction_id)
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn

    def post_pending(self, transaction_id: UUID, actor_id: UUID) -> FinancialTransaction:
        """pending -> posted, recording the approver."""
        txn = self.get(transaction_id)
        if txn.status != TransactionStatus.PENDING.value:
            raise TransactionNotPendingError(str(transaction_id), txn.status)

        now = self._clock.now()
        txn.status = TransactionStatus.POSTED.value
        txn.posted_at = now
        txn.approved_by_id = actor_id
        txn.approved_at = now
        txn.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "financial_transaction_approved",
            extra={"transaction_id": str(txn.id), "approved_by": str(actor_id)},
        )
        return txn

    def void(self, transaction_id: UUID, actor_id: UUID, reason: str) -> FinancialTransaction:
        """pending -> void.  Posted rows must be reversed instead."""
        txn = self.get(transaction_id)
        if txn.status != TransactionStatus.PENDING.value:
            raise TransactionNotPendingError(str(transaction_id), txn.status)

        txn.status = TransactionStatus.VOID.value
        txn.reversal_reason = reason
        txn.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "financial_transaction_voided",
            extra={"transaction_id": str(txn.id), "reason": reason},
        )
        return txn

    def reverse(
        self,
        transaction_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> FinancialTransaction:
        """
        Reverse a posted transaction.

        Preconditions:
            - The transaction is ``posted`` and has no reversal yet.

        Postconditions:
            - A new posted ``reversal`` row exists with debit and credit
              swapped, the same amount/currency, and reversal_of_id set.
            - The original is ``reversed`` with reversed_by_id set.

        Raises:
            TransactionAlreadyReversedError: a reversal already exists.
            TransactionNotPostedError: the original is pending or void.
        """
        original = self.get(transaction_id)
        if original.reversed_by_id is not None:
            raise TransactionAlreadyReversedError(
                str(transaction_id), str(original.reversed_by_id)
            )
        if original.status != TransactionStatus.POSTED.value:
            raise TransactionNotPostedError(str(transaction_id), original.status)

        reversal = self.post(
            transaction_type=TransactionType.REVERSAL,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            debit_account_code=original.credit_account_code,
            credit_account_code=original.debit_account_code,
            amount=original.amount,
            currency=original.currency,
            actor_id=actor_id,
            exchange_rate=original.exchange_rate,
            base_amount=original.base_amount,
            description=f"Reversal of {original.id}: {reason}",
        )
        reversal.reversal_of_id = original.id
        reversal.reversal_reason = reason

        original.status = TransactionStatus.REVERSED.value
        original.reversed_by_id = reversal.id
        original.reversal_reason = reason
        original.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "financial_transaction_reversed",
            extra={
                "original_id": str(original.id),
                "reversal_id": str(reversal.id),
                "reason": reason,
            },
        )
        return reversal

    # =========================================================================
    # Queries
    # =========================================================================

    def account_balance(self, account_code: str) -> Decimal:
        """
        Net balance of an account over posted (and reversed) transactions,
        signed by the account's normal balance, in base currency.
        """
        account = self._chart.get(account_code)
        value = func.coalesce(FinancialTransaction.base_amount, FinancialTransaction.amount)

        debits = self._session.execute(
            select(func.coalesce(func.sum(value), 0)).where(
                FinancialTransaction.debit_account_code == account_code,
                FinancialTransaction.status.in_(_BALANCE_STATUSES),
            )
        ).scalar_one()
        credits = self._session.execute(
            select(func.coalesce(func.sum(value), 0)).where(
                FinancialTransaction.credit_account_code == account_code,
                FinancialTransaction.status.in_(_BALANCE_STATUSES),
            )
        ).scalar_one()

        debits = Decimal(str(debits))
        credits = Decimal(str(credits))
        if account.is_debit_normal:
            return debits - credits
        return credits - debits

    def for_reference(self, reference_type: str, reference_id: str) -> list[FinancialTransaction]:
        """Transactions posted for one business document, oldest first."""
        return list(
            self._session.scalars(
                select(FinancialTransaction)
                .where(
                    FinancialTransaction.reference_type == reference_type,
                    FinancialTransaction.reference_id == str(reference_id),
                )
                .order_by(FinancialTransaction.created_at, FinancialTransaction.id)
            ).all()
        )
