"""
ledger_modules.payments.service
===============================

Responsibility:
    Records money movements against an order in the payment ledger, posts
    the matching double-entry transaction, and keeps the order's derived
    payment fields (amount_paid, payment_status, overpayment_amount) in
    step with the ledger.

Architecture:
    Module layer.  Composes kernel services (ChartOfAccounts,
    JournalService, SequenceService) with the pure payment-status engine.
    Other modules (refunds, credit notes, webhooks) reuse the
    non-committing ``append_entry`` / ``set_entry_status`` path so their
    ledger writes share their unit of work.

Invariants enforced:
    - Balance sync: after every insert, status change and delete, the
      order row is locked and amount_paid is recomputed from the signed
      sum of its entries inside the same transaction.
    - Idempotency: a gateway transaction id seen for the same order and
      payment type within the idempotency window is a duplicate; a
      customer payment already linked to a PaymentTransaction is never
      recorded twice.
    - A FinancialTransaction is posted only for completed entries; when a
      completed entry later fails or is reversed, its transaction is
      reversed.

Failure modes:
    - QuoteNotFoundError, InvalidPaymentAmountError,
      ExchangeRateNotFoundError, AccountNotFoundError -> DECLINED result.
    - Unexpected exception -> session rolled back, exception re-raised.

Audit relevance:
    Every entry records balance_before/balance_after, the actor, and links
    to both the gateway charge and the journal transaction, so an order's
    payment position can be rebuilt from the ledger alone.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_engines.payment_status import (
    NEGATIVE_TYPES,
    REFUND_TYPES,
    LedgerAmount,
    PaymentPosition,
    derive_payment_status,
    signed_amount,
    sum_signed,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.money import to_base
from ledger_kernel.exceptions import (
    InvalidPaymentAmountError,
    LedgerEntryNotFoundError,
    LedgerError,
    QuoteNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.financial_transaction import TransactionType
from ledger_kernel.models.quote import Quote
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.sequence_service import SequenceService
from ledger_modules.payments.models import (
    LedgerEntryStatus,
    LedgerMutationResult,
    LedgerMutationStatus,
    PaymentHistoryLine,
    PaymentRecordResult,
    PaymentRecordStatus,
    PaymentStatus,
    PaymentSummary,
    PaymentType,
)
from ledger_modules.payments.orm import PaymentLedgerEntryModel

logger = get_logger("modules.payments.service")

_UNWOUND_STATUSES = frozenset({
    LedgerEntryStatus.FAILED.value,
    LedgerEntryStatus.CANCELLED.value,
    LedgerEntryStatus.REVERSED.value,
})


def lock_quote(session: Session, quote_id: UUID) -> Quote:
    """SELECT ... FOR UPDATE on the order row.

    Raises:
        QuoteNotFoundError: no such order.
    """
    quote = session.execute(
        select(Quote)
        .where(Quote.id == quote_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if quote is None:
        raise QuoteNotFoundError(str(quote_id))
    return quote


class PaymentLedgerService:
    """
    Payment ledger and balance sync.

    Contract:
        Public mutating methods (``record_payment``, ``update_entry_status``,
        ``delete_entry``) validate before writing and, with
        ``auto_commit=True``, commit on success and roll back on decline.
        ``append_entry``, ``set_entry_status`` and ``sync_quote_balance``
        never commit and raise typed exceptions; they are the building
        blocks other modules call inside their own unit of work.

    Guarantees:
        - amount_paid == signed sum of the order's processing/completed
          entries after every mutation.
        - Clock is injected; ``datetime.now()`` is never called directly.

    Non-goals:
        - Does NOT talk to payment gateways.
        - Does NOT accept amount_paid or payment_status as inputs.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._chart = ChartOfAccounts(session, config)
        self._journal = JournalService(session, self._chart, self._clock)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Recording
    # =========================================================================

    def record_payment(
        self,
        quote_id: UUID,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        payment_type: PaymentType,
        actor_id: UUID,
        gateway_code: str | None = None,
        gateway_transaction_id: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
        payment_transaction_id: UUID | None = None,
        status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED,
        gateway_response: dict[str, Any] | None = None,
    ) -> PaymentRecordResult:
        """
        Record a money movement against an order.

        Preconditions:
            - ``amount`` is a positive ``Decimal``.
            - The order exists and ``currency`` has a configured rate.
        Postconditions:
            - RECORDED: one ledger entry (and, when completed, one posted
              FinancialTransaction) exists, the order's derived payment
              fields are recomputed, and the session is committed.
            - DUPLICATE: nothing written; the existing entry id is returned.
            - DECLINED: nothing written; the session is rolled back.
        Raises:
            Exception -- any unexpected error; session is rolled back first.
        """
        assert isinstance(amount, Decimal), "amount must be Decimal, not float"
        try:
            with LogContext.bind(quote_id=str(quote_id), actor_id=str(actor_id)):
                logger.info("payment_record_started", extra={
                    "amount": str(amount),
                    "currency": currency,
                    "payment_type": PaymentType(payment_type).value,
                    "gateway_code": gateway_code,
                })
                try:
                    entry, created = self.append_entry(
                        quote_id=quote_id,
                        amount=amount,
                        currency=currency,
                        payment_method=payment_method,
                        payment_type=payment_type,
                        actor_id=actor_id,
                        gateway_code=gateway_code,
                        gateway_transaction_id=gateway_transaction_id,
                        reference=reference,
                        notes=notes,
                        payment_transaction_id=payment_transaction_id,
                        status=status,
                        gateway_response=gateway_response,
                    )
                except LedgerError as exc:
                    logger.warning("payment_record_declined", extra={
                        "error_code": exc.code,
                        "reason": str(exc),
                    })
                    return self._finish(PaymentRecordResult(
                        status=PaymentRecordStatus.DECLINED,
                        message=str(exc),
                        error_code=exc.code,
                    ))

                quote = self._session.get(Quote, quote_id)
                result = PaymentRecordResult(
                    status=PaymentRecordStatus.RECORDED if created else PaymentRecordStatus.DUPLICATE,
                    message="Payment recorded" if created else "Duplicate payment ignored",
                    ledger_entry_id=entry.id,
                    financial_transaction_id=entry.financial_transaction_id,
                    amount_paid=quote.amount_paid,
                    payment_status=PaymentStatus(quote.payment_status),
                )
                return self._finish(result)

        except Exception:
            self._session.rollback()
            raise

    def append_entry(
        self,
        *,
        quote_id: UUID,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        payment_type: PaymentType,
        actor_id: UUID,
        gateway_code: str | None = None,
        gateway_transaction_id: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
        payment_transaction_id: UUID | None = None,
        status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED,
        gateway_response: dict[str, Any] | None = None,
        balance_before: Decimal | None = None,
        balance_after: Decimal | None = None,
    ) -> tuple[PaymentLedgerEntryModel, bool]:
        """
        Insert a ledger entry and resync the order.  Does not commit.

        ``balance_before``/``balance_after`` override the order-level
        balances when the caller tracks a different running balance (the
        refunded total of a gateway charge, for instance).

        Returns:
            (entry, created).  ``created`` is False when an existing entry
            satisfied the idempotency rules; its status is brought in line
            with ``status`` and nothing new is inserted.
        """
        payment_type = PaymentType(payment_type)
        status = LedgerEntryStatus(status)

        if amount <= Decimal("0"):
            raise InvalidPaymentAmountError(amount)

        quote = lock_quote(self._session, quote_id)

        existing = self._find_existing(
            quote_id, payment_type, gateway_transaction_id, payment_transaction_id,
        )
        if existing is not None:
            if existing.status != status.value:
                self.set_entry_status(existing, status, actor_id)
            logger.info("payment_duplicate_ignored", extra={
                "ledger_entry_id": str(existing.id),
                "gateway_transaction_id": gateway_transaction_id,
            })
            return existing, False

        rate = self._config.rate_for(currency)
        base_amount = to_base(amount, rate)
        now = self._clock.now()

        before = quote.amount_paid if balance_before is None else balance_before
        entry = PaymentLedgerEntryModel(
            quote_id=quote_id,
            payment_type=payment_type.value,
            amount=amount,
            currency=currency.upper(),
            base_amount=base_amount,
            exchange_rate=rate,
            payment_method=payment_method,
            gateway_code=gateway_code,
            gateway_transaction_id=gateway_transaction_id,
            reference_number=reference,
            gateway_response=gateway_response,
            status=status.value,
            payment_date=now,
            ledger_seq=self._sequences.next_value(SequenceService.PAYMENT_LEDGER),
            payment_transaction_id=payment_transaction_id,
            balance_before=before,
            notes=notes,
            created_by_id=actor_id,
        )
        self._session.add(entry)
        self._session.flush()

        if status == LedgerEntryStatus.COMPLETED:
            self._post_transaction(entry, actor_id)

        position = self.sync_quote_balance(quote_id)
        entry.balance_after = position.amount_paid if balance_after is None else balance_after
        self._session.flush()

        logger.info("payment_recorded", extra={
            "ledger_entry_id": str(entry.id),
            "payment_type": payment_type.value,
            "amount": str(amount),
            "status": status.value,
            "amount_paid": str(position.amount_paid),
            "payment_status": position.payment_status.value,
        })
        return entry, True

    def _find_existing(
        self,
        quote_id: UUID,
        payment_type: PaymentType,
        gateway_transaction_id: str | None,
        payment_transaction_id: UUID | None,
    ) -> PaymentLedgerEntryModel | None:
        if payment_transaction_id is not None and payment_type == PaymentType.CUSTOMER_PAYMENT:
            linked = self._session.execute(
                select(PaymentLedgerEntryModel).where(
                    PaymentLedgerEntryModel.payment_transaction_id == payment_transaction_id,
                    PaymentLedgerEntryModel.payment_type == payment_type.value,
                )
            ).scalars().first()
            if linked is not None:
                return linked

        if gateway_transaction_id:
            window_start = self._clock.now() - timedelta(
                seconds=self._config.payments.idempotency_window_seconds
            )
            return self._session.execute(
                select(PaymentLedgerEntryModel)
                .where(
                    PaymentLedgerEntryModel.quote_id == quote_id,
                    PaymentLedgerEntryModel.payment_type == payment_type.value,
                    PaymentLedgerEntryModel.gateway_transaction_id == gateway_transaction_id,
                    PaymentLedgerEntryModel.payment_date >= window_start,
                )
                .order_by(PaymentLedgerEntryModel.ledger_seq.desc())
            ).scalars().first()
        return None

    def _post_transaction(self, entry: PaymentLedgerEntryModel, actor_id: UUID) -> None:
        debit, credit = self._chart.resolve_payment_accounts(
            entry.payment_type, entry.gateway_code,
        )
        if entry.payment_type in REFUND_TYPES:
            transaction_type = TransactionType.REFUND
        elif entry.payment_type == PaymentType.CREDIT_APPLIED.value:
            transaction_type = TransactionType.CREDIT_APPLIED
        else:
            transaction_type = TransactionType.PAYMENT

        txn = self._journal.post(
            transaction_type=transaction_type,
            reference_type="quote",
            reference_id=str(entry.quote_id),
            debit_account_code=debit,
            credit_account_code=credit,
            amount=entry.amount,
            currency=entry.currency,
            actor_id=actor_id,
            exchange_rate=entry.exchange_rate,
            base_amount=entry.base_amount,
            description=f"{entry.payment_type} via {entry.payment_method or 'manual'}",
            metadata={
                "payment_ledger_id": str(entry.id),
                "gateway_code": entry.gateway_code,
                "reference_number": entry.reference_number,
            },
            transaction_date=entry.payment_date.date(),
        )
        entry.financial_transaction_id = txn.id

    # =========================================================================
    # Balance sync
    # =========================================================================

    def sync_quote_balance(self, quote_id: UUID) -> PaymentPosition:
        """
        Recompute an order's derived payment fields from its ledger.

        Locks the order row, sums the signed amounts of every entry and
        applies the four-way status rule.  Does not commit.

        Raises:
            QuoteNotFoundError: no such order.
        """
        quote = lock_quote(self._session, quote_id)
        self._session.flush()

        rows = self._session.execute(
            select(
                PaymentLedgerEntryModel.payment_type,
                PaymentLedgerEntryModel.amount,
                PaymentLedgerEntryModel.status,
            ).where(PaymentLedgerEntryModel.quote_id == quote_id)
        ).all()
        amount_paid = sum_signed(
            LedgerAmount(payment_type=t, amount=a, status=s) for t, a, s in rows
        )

        position = derive_payment_status(
            amount_paid=amount_paid, final_total=quote.final_total,
        )
        quote.amount_paid = position.amount_paid
        quote.payment_status = position.payment_status.value
        quote.overpayment_amount = position.overpayment_amount
        self._session.flush()

        logger.debug("quote_balance_synced", extra={
            "quote_id": str(quote_id),
            "amount_paid": str(position.amount_paid),
            "payment_status": position.payment_status.value,
        })
        return position

    # =========================================================================
    # Updates and deletes
    # =========================================================================

    def update_entry_status(
        self,
        entry_id: UUID,
        status: LedgerEntryStatus,
        actor_id: UUID,
    ) -> LedgerMutationResult:
        """Change an entry's status and resync the order."""
        try:
            entry = self._session.get(PaymentLedgerEntryModel, entry_id)
            if entry is None:
                return self._finish(self._declined(LedgerEntryNotFoundError(str(entry_id))))

            position = self.set_entry_status(entry, LedgerEntryStatus(status), actor_id)
            return self._finish(LedgerMutationResult(
                status=LedgerMutationStatus.UPDATED,
                message=f"Ledger entry marked {entry.status}",
                ledger_entry_id=entry.id,
                amount_paid=position.amount_paid,
                payment_status=position.payment_status,
            ))
        except Exception:
            self._session.rollback()
            raise

    def set_entry_status(
        self,
        entry: PaymentLedgerEntryModel,
        status: LedgerEntryStatus,
        actor_id: UUID,
    ) -> PaymentPosition:
        """Status change without commit.

        Completing an entry posts its FinancialTransaction; failing,
        cancelling or reversing a completed entry reverses it.
        """
        previous = entry.status
        entry.status = LedgerEntryStatus(status).value
        entry.updated_by_id = actor_id

        if entry.status == LedgerEntryStatus.COMPLETED.value and entry.financial_transaction_id is None:
            self._post_transaction(entry, actor_id)
        elif entry.status in _UNWOUND_STATUSES and entry.financial_transaction_id is not None:
            self._reverse_transaction(entry, actor_id, f"Ledger entry {entry.status}")

        self._session.flush()
        logger.info("ledger_entry_status_changed", extra={
            "ledger_entry_id": str(entry.id),
            "from_status": previous,
            "to_status": entry.status,
        })
        return self.sync_quote_balance(entry.quote_id)

    def delete_entry(self, entry_id: UUID, actor_id: UUID) -> LedgerMutationResult:
        """Remove an entry (reversing its journal transaction) and resync."""
        try:
            entry = self._session.get(PaymentLedgerEntryModel, entry_id)
            if entry is None:
                return self._finish(self._declined(LedgerEntryNotFoundError(str(entry_id))))

            quote_id = entry.quote_id
            if entry.financial_transaction_id is not None:
                self._reverse_transaction(entry, actor_id, "Ledger entry deleted")
            self._session.delete(entry)
            self._session.flush()
            position = self.sync_quote_balance(quote_id)

            logger.info("ledger_entry_deleted", extra={
                "ledger_entry_id": str(entry_id),
                "quote_id": str(quote_id),
            })
            return self._finish(LedgerMutationResult(
                status=LedgerMutationStatus.DELETED,
                message="Ledger entry deleted",
                ledger_entry_id=entry_id,
                amount_paid=position.amount_paid,
                payment_status=position.payment_status,
            ))
        except Exception:
            self._session.rollback()
            raise

    def _reverse_transaction(
        self, entry: PaymentLedgerEntryModel, actor_id: UUID, reason: str,
    ) -> None:
        txn = self._journal.get(entry.financial_transaction_id)
        if txn.reversed_by_id is None and txn.is_posted:
            self._journal.reverse(txn.id, actor_id, reason)

    # =========================================================================
    # Queries
    # =========================================================================

    def entries_for_quote(self, quote_id: UUID) -> list[PaymentLedgerEntryModel]:
        """Entries in ledger order (payment_date, then insertion)."""
        return list(self._session.scalars(
            select(PaymentLedgerEntryModel)
            .where(PaymentLedgerEntryModel.quote_id == quote_id)
            .order_by(PaymentLedgerEntryModel.payment_date, PaymentLedgerEntryModel.ledger_seq)
        ).all())

    def get_payment_history(self, quote_id: UUID) -> list[PaymentHistoryLine]:
        """Ledger entries with gateway display names and a running balance."""
        if self._session.get(Quote, quote_id) is None:
            raise QuoteNotFoundError(str(quote_id))

        running = Decimal("0")
        lines: list[PaymentHistoryLine] = []
        for entry in self.entries_for_quote(quote_id):
            signed = signed_amount(entry.payment_type, entry.amount, entry.status)
            running += signed
            lines.append(PaymentHistoryLine(
                entry=entry.to_dto(),
                gateway_display_name=self._config.gateways.display_name(entry.gateway_code),
                signed_amount=signed,
                running_balance=running,
            ))
        return lines

    def get_payment_summary(self, quote_id: UUID) -> PaymentSummary:
        quote = self._session.get(Quote, quote_id)
        if quote is None:
            raise QuoteNotFoundError(str(quote_id))

        payments = refunds = credits = Decimal("0")
        last_payment: datetime | None = None
        entries = self.entries_for_quote(quote_id)
        for entry in entries:
            signed = signed_amount(entry.payment_type, entry.amount, entry.status)
            if signed == Decimal("0"):
                continue
            if entry.payment_type == PaymentType.CUSTOMER_PAYMENT.value:
                payments += signed
                last_payment = entry.payment_date
            elif entry.payment_type == PaymentType.CREDIT_APPLIED.value:
                credits += signed
            elif entry.payment_type in NEGATIVE_TYPES:
                refunds += -signed

        remaining = quote.final_total - quote.amount_paid
        return PaymentSummary(
            quote_id=quote.id,
            final_total=quote.final_total,
            currency=quote.currency,
            total_payments=payments,
            total_refunds=refunds,
            total_credits_applied=credits,
            amount_paid=quote.amount_paid,
            remaining_balance=remaining if remaining > Decimal("0") else Decimal("0"),
            overpayment_amount=quote.overpayment_amount,
            payment_status=PaymentStatus(quote.payment_status),
            entry_count=len(entries),
            last_payment_date=last_payment,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _declined(exc: LedgerError) -> LedgerMutationResult:
        logger.warning("ledger_mutation_declined", extra={
            "error_code": exc.code,
            "reason": str(exc),
        })
        return LedgerMutationResult(
            status=LedgerMutationStatus.DECLINED,
            message=str(exc),
            error_code=exc.code,
        )

    def _finish(self, result):
        if self._auto_commit:
            if result.is_success:
                self._session.commit()
            else:
                self._session.rollback()
        return result
