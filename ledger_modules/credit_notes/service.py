"""
ledger_modules.credit_notes.service
===================================

Responsibility:
    Store-credit lifecycle: issue a numbered credit note, approve it,
    apply it to an order as a ``credit_applied`` ledger entry, undo an
    application, cancel, and expire notes past their validity window.

Architecture:
    Module layer.  Numbers come from ``SequenceService`` (one counter per
    calendar year), the issuing journal transaction from
    ``JournalService`` and the order-side entry from
    ``PaymentLedgerService`` in non-committing mode.  Owns the transaction
    boundary.

Invariants enforced:
    - amount_available = amount - amount_used >= 0.  A request for more
      than the available balance is declined, never capped.
    - An application never exceeds the order's outstanding balance.
    - Only the note's owner applies it, unless the actor holds
      ``credit_note.apply_any``.
    - The note and order rows are locked before balances are read.
    - Every state change appends a history row.

Failure modes:
    - Validation errors -> DECLINED result, session rolled back.
    - Capability denial -> DECLINED result, nothing read or written.
    - Other unexpected exceptions -> rollback and re-raise.

Audit relevance:
    Issuing posts Dr Refunds & Returns / Cr Customer Deposits; applying
    posts Dr Customer Deposits / Cr Accounts Receivable through the
    payment ledger.  The history table is the note's full trail.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.money import to_base
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    CreditApplicationNotFoundError,
    CreditNoteMinimumOrderError,
    CreditNoteNotApplicableError,
    CreditNoteNotFoundError,
    CreditNoteOverApplicationError,
    CreditNoteOwnershipError,
    CreditNoteStateError,
    InvalidPaymentAmountError,
    LedgerError,
    NoApplicableAmountError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.financial_transaction import TransactionType
from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.sequence_service import SequenceService
from ledger_modules.credit_notes.models import (
    APPLICABLE_STATUSES,
    AvailableCreditNote,
    CreditApplicationResult,
    CreditApplicationStatus,
    CreditNoteAction,
    CreditNoteHistoryLine,
    CreditNoteOutcome,
    CreditNoteResult,
    CreditNoteStatus,
)
from ledger_modules.credit_notes.orm import (
    CreditNoteApplicationModel,
    CreditNoteHistoryModel,
    CreditNoteModel,
)
from ledger_modules.payments.models import LedgerEntryStatus, PaymentType
from ledger_modules.payments.orm import PaymentLedgerEntryModel
from ledger_modules.payments.service import PaymentLedgerService, lock_quote
from ledger_services.rbac_authority import ActorContext, check_capability, requires_capability

logger = get_logger("modules.credit_notes.service")

# Statuses a note may be cancelled from; a partly spent note must run out
# or expire.
_CANCELLABLE_STATUSES = frozenset({
    CreditNoteStatus.DRAFT.value,
    CreditNoteStatus.ACTIVE.value,
    CreditNoteStatus.ON_HOLD.value,
})


def _note_denied(reason: str, *args: Any, **kwargs: Any) -> CreditNoteResult:
    return CreditNoteResult(
        status=CreditNoteOutcome.DECLINED,
        message=reason,
        error_code=CapabilityDeniedError.code,
    )


class CreditNoteService:
    """
    Credit note manager.

    Contract:
        Every public mutating method either commits and returns a success
        result, or rolls back and returns a declined result, or rolls back
        and re-raises.

    Guarantees:
        - Note numbers are unique and sequential within a calendar year.
        - Applying credit resyncs the order's amount_paid in the same
          transaction.

    Non-goals:
        - Does NOT convert between currencies; a note is applied in its
          own currency.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._chart = ChartOfAccounts(session, config)
        self._journal = JournalService(session, self._chart, self._clock)
        self._sequences = SequenceService(session)
        self._ledger = PaymentLedgerService(session, config, self._clock, auto_commit=False)

    # =========================================================================
    # Issue
    # =========================================================================

    def create_credit_note(
        self,
        customer_id: UUID,
        amount: Decimal,
        currency: str,
        reason: str,
        actor_id: UUID,
        description: str | None = None,
        quote_id: UUID | None = None,
        refund_request_id: UUID | None = None,
        valid_days: int | None = None,
        minimum_order_value: Decimal | None = None,
        auto_approve: bool = False,
    ) -> CreditNoteResult:
        """
        Issue a credit note.

        Preconditions:
            - ``amount`` is a positive ``Decimal``; ``currency`` has a
              configured rate.
        Postconditions:
            - A ``draft`` note, or an ``active`` one with its issuing
              transaction posted when ``auto_approve`` is set, plus a
              ``created`` history row.  Session committed.
        """
        assert isinstance(amount, Decimal), "amount must be Decimal, not float"
        try:
            with LogContext.bind(actor_id=str(actor_id)):
                try:
                    if amount <= Decimal("0"):
                        raise InvalidPaymentAmountError(amount)
                    rate = self._config.rate_for(currency)
                except LedgerError as exc:
                    self._session.rollback()
                    logger.warning("credit_note_declined", extra={
                        "error_code": exc.code,
                        "reason": str(exc),
                    })
                    return CreditNoteResult(
                        status=CreditNoteOutcome.DECLINED,
                        message=str(exc),
                        error_code=exc.code,
                    )

                today = self._clock.today()
                days = self._config.credit_notes.default_valid_days if valid_days is None else valid_days
                status = CreditNoteStatus.ACTIVE if auto_approve else CreditNoteStatus.DRAFT

                note = CreditNoteModel(
                    note_number=self._next_note_number(today.year),
                    customer_id=customer_id,
                    amount=amount,
                    amount_used=Decimal("0"),
                    currency=currency.upper(),
                    exchange_rate=rate,
                    base_amount=to_base(amount, rate),
                    reason=reason,
                    description=description,
                    quote_id=quote_id,
                    refund_request_id=refund_request_id,
                    valid_from=today,
                    valid_until=today + timedelta(days=days),
                    minimum_order_value=minimum_order_value,
                    status=status.value,
                    created_by_id=actor_id,
                )
                self._session.add(note)
                self._session.flush()

                if auto_approve:
                    self._activate(note, actor_id)
                self._record_history(
                    note,
                    CreditNoteAction.CREATED,
                    actor_id,
                    previous_status=None,
                    amount_change=amount,
                    description="Credit note created" + (" and auto-approved" if auto_approve else ""),
                    details={"reason": reason, "currency": note.currency},
                )
                self._session.commit()

                logger.info("credit_note_created", extra={
                    "credit_note_id": str(note.id),
                    "note_number": note.note_number,
                    "customer_id": str(customer_id),
                    "amount": str(amount),
                    "currency": note.currency,
                    "status": note.status,
                })
                return CreditNoteResult(
                    status=CreditNoteOutcome.CREATED,
                    message=f"Credit note {note.note_number} created",
                    credit_note_id=note.id,
                    note_number=note.note_number,
                    note_status=CreditNoteStatus(note.status),
                    financial_transaction_id=note.financial_transaction_id,
                )
        except Exception:
            self._session.rollback()
            raise

    def _next_note_number(self, year: int) -> str:
        value = self._sequences.next_value(SequenceService.credit_note_sequence(year))
        return f"{self._config.credit_notes.number_prefix}-{year}-{value:06d}"

    def _activate(self, note: CreditNoteModel, actor_id: UUID) -> None:
        """Post the issuing transaction and stamp the approver."""
        posting = self._config.posting_accounts
        txn = self._journal.post(
            transaction_type=TransactionType.CREDIT_NOTE,
            reference_type="quote" if note.quote_id else "credit_note",
            reference_id=str(note.quote_id or note.id),
            debit_account_code=posting.refunds_and_returns,
            credit_account_code=posting.customer_deposits,
            amount=note.amount,
            currency=note.currency,
            actor_id=actor_id,
            exchange_rate=note.exchange_rate,
            base_amount=note.base_amount,
            description=f"Credit Note: {note.note_number} - {note.reason}",
            metadata={"credit_note_id": str(note.id), "note_number": note.note_number},
        )
        note.financial_transaction_id = txn.id
        note.status = CreditNoteStatus.ACTIVE.value
        note.approved_by_id = actor_id
        note.approved_at = self._clock.now()

    @requires_capability("credit_note.approve", denied=_note_denied)
    def approve_credit_note(self, note_id: UUID, actor: ActorContext) -> CreditNoteResult:
        """draft -> active; posts the issuing transaction."""
        try:
            try:
                note = self._locked_note(note_id)
                if note.status != CreditNoteStatus.DRAFT.value:
                    raise CreditNoteStateError(
                        str(note_id), note.status, CreditNoteStatus.DRAFT.value,
                    )
            except LedgerError as exc:
                return self._note_declined(exc)

            self._activate(note, actor.actor_id)
            note.updated_by_id = actor.actor_id
            self._record_history(
                note,
                CreditNoteAction.APPROVED,
                actor.actor_id,
                previous_status=CreditNoteStatus.DRAFT.value,
                description="Credit note approved",
            )
            self._session.commit()

            logger.info("credit_note_approved", extra={
                "credit_note_id": str(note.id),
                "note_number": note.note_number,
                "approved_by": str(actor.actor_id),
            })
            return CreditNoteResult(
                status=CreditNoteOutcome.APPROVED,
                message=f"Credit note {note.note_number} approved",
                credit_note_id=note.id,
                note_number=note.note_number,
                note_status=CreditNoteStatus.ACTIVE,
                financial_transaction_id=note.financial_transaction_id,
            )
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("credit_note.approve", denied=_note_denied)
    def cancel_credit_note(
        self,
        note_id: UUID,
        actor: ActorContext,
        reason: str,
    ) -> CreditNoteResult:
        """
        Cancel an unspent note.

        An active note's issuing transaction is reversed.  Notes with any
        credit already used are declined.
        """
        try:
            try:
                note = self._locked_note(note_id)
                if note.status not in _CANCELLABLE_STATUSES or note.amount_used > Decimal("0"):
                    raise CreditNoteStateError(
                        str(note_id), note.status, "draft, active or on_hold",
                    )
            except LedgerError as exc:
                return self._note_declined(exc)

            previous = note.status
            if note.financial_transaction_id is not None:
                self._journal.reverse(
                    note.financial_transaction_id, actor.actor_id, f"Credit note cancelled: {reason}",
                )
            note.status = CreditNoteStatus.CANCELLED.value
            note.cancelled_at = self._clock.now()
            note.updated_by_id = actor.actor_id
            self._record_history(
                note,
                CreditNoteAction.CANCELLED,
                actor.actor_id,
                previous_status=previous,
                amount_change=-note.amount,
                description=reason,
            )
            self._session.commit()

            logger.info("credit_note_cancelled", extra={
                "credit_note_id": str(note.id),
                "note_number": note.note_number,
                "reason": reason,
            })
            return CreditNoteResult(
                status=CreditNoteOutcome.CANCELLED,
                message=f"Credit note {note.note_number} cancelled",
                credit_note_id=note.id,
                note_number=note.note_number,
                note_status=CreditNoteStatus.CANCELLED,
            )
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Apply
    # =========================================================================

    def apply_credit_note(
        self,
        note_id: UUID,
        quote_id: UUID,
        actor: ActorContext,
        amount: Decimal | None = None,
    ) -> CreditApplicationResult:
        """
        Spend store credit against an order.

        The applied amount is the smallest of the requested amount (or
        the whole available balance), the available balance and the
        order's outstanding balance.

        Preconditions:
            - The note is active or partially used and valid today.
            - ``actor`` owns the note or holds ``credit_note.apply_any``.
            - ``amount``, when given, does not exceed the available balance.
        Postconditions:
            - An ``applied`` application, a completed ``credit_applied``
              ledger entry, updated amount_used/status and an ``applied``
              history row.  Session committed.
        """
        if amount is not None:
            assert isinstance(amount, Decimal), "amount must be Decimal, not float"
        try:
            with LogContext.bind(quote_id=str(quote_id), actor_id=str(actor.actor_id)):
                try:
                    result = self._apply(note_id, quote_id, actor, amount)
                except LedgerError as exc:
                    self._session.rollback()
                    logger.warning("credit_note_application_declined", extra={
                        "credit_note_id": str(note_id),
                        "error_code": exc.code,
                        "reason": str(exc),
                    })
                    return CreditApplicationResult(
                        status=CreditNoteOutcome.DECLINED,
                        message=str(exc),
                        error_code=exc.code,
                    )
                self._session.commit()
                return result
        except Exception:
            self._session.rollback()
            raise

    def _apply(
        self,
        note_id: UUID,
        quote_id: UUID,
        actor: ActorContext,
        amount: Decimal | None,
    ) -> CreditApplicationResult:
        note = self._locked_note(note_id)
        if note.status not in APPLICABLE_STATUSES or not note.is_valid_on(self._clock.today()):
            raise CreditNoteNotApplicableError(str(note_id), note.status)
        self._require_owner(note, actor)

        quote = lock_quote(self._session, quote_id)
        if note.minimum_order_value is not None and quote.final_total < note.minimum_order_value:
            raise CreditNoteMinimumOrderError(str(note_id), note.minimum_order_value, quote.final_total)

        available = note.amount_available
        if amount is not None and amount > available:
            raise CreditNoteOverApplicationError(str(note_id), amount, available)

        balance = quote.final_total - (quote.amount_paid or Decimal("0"))
        applied = min(available if amount is None else amount, available, balance)
        if applied <= Decimal("0"):
            raise NoApplicableAmountError(str(note_id), str(quote_id))

        now = self._clock.now()
        application = CreditNoteApplicationModel(
            credit_note_id=note.id,
            quote_id=quote_id,
            applied_amount=applied,
            base_amount=to_base(applied, note.exchange_rate),
            currency=note.currency,
            exchange_rate=note.exchange_rate,
            status=CreditApplicationStatus.APPLIED.value,
            applied_by_id=actor.actor_id,
            applied_at=now,
            created_by_id=actor.actor_id,
        )
        self._session.add(application)
        self._session.flush()

        entry, _ = self._ledger.append_entry(
            quote_id=quote_id,
            amount=applied,
            currency=note.currency,
            payment_method="credit_note",
            payment_type=PaymentType.CREDIT_APPLIED,
            actor_id=actor.actor_id,
            reference=note.note_number,
            notes=f"Credit note applied: {note.note_number}",
        )
        application.payment_ledger_id = entry.id
        application.financial_transaction_id = entry.financial_transaction_id

        previous = note.status
        note.amount_used = (note.amount_used or Decimal("0")) + applied
        note.status = self._usage_status(note).value
        note.updated_by_id = actor.actor_id
        self._record_history(
            note,
            CreditNoteAction.APPLIED,
            actor.actor_id,
            previous_status=previous,
            amount_change=-applied,
            description=f"Applied to order {quote.display_id or quote.id}",
            details={"quote_id": str(quote_id), "application_id": str(application.id)},
        )
        self._session.flush()

        logger.info("credit_note_applied", extra={
            "credit_note_id": str(note.id),
            "note_number": note.note_number,
            "application_id": str(application.id),
            "applied_amount": str(applied),
            "amount_available": str(note.amount_available),
            "note_status": note.status,
        })
        return CreditApplicationResult(
            status=CreditNoteOutcome.APPLIED,
            message=f"Applied {applied} {note.currency} from {note.note_number}",
            application_id=application.id,
            applied_amount=applied,
            amount_available=note.amount_available,
            note_status=CreditNoteStatus(note.status),
            ledger_entry_id=entry.id,
        )

    def _require_owner(self, note: CreditNoteModel, actor: ActorContext) -> None:
        if note.customer_id == actor.actor_id:
            return
        allowed, _ = check_capability(self._config.rbac, actor, "credit_note.apply_any")
        if not allowed:
            raise CreditNoteOwnershipError(str(note.id), str(actor.actor_id))

    def reverse_application(
        self,
        application_id: UUID,
        actor: ActorContext,
        reason: str,
    ) -> CreditApplicationResult:
        """
        Undo one application.

        The ledger entry is marked ``reversed`` (reversing its journal
        transaction and resyncing the order) and the credit is returned to
        the note.

        Preconditions:
            - ``actor`` owns the note or holds ``credit_note.apply_any``.
        """
        try:
            try:
                application = self._session.get(CreditNoteApplicationModel, application_id)
                if application is None:
                    raise CreditApplicationNotFoundError(str(application_id))
                if application.status != CreditApplicationStatus.APPLIED.value:
                    raise CreditNoteStateError(
                        str(application.credit_note_id),
                        application.status,
                        CreditApplicationStatus.APPLIED.value,
                    )
                note = self._locked_note(application.credit_note_id)
                self._require_owner(note, actor)
            except LedgerError as exc:
                self._session.rollback()
                logger.warning("credit_note_reversal_declined", extra={
                    "application_id": str(application_id),
                    "error_code": exc.code,
                    "reason": str(exc),
                })
                return CreditApplicationResult(
                    status=CreditNoteOutcome.DECLINED,
                    message=str(exc),
                    error_code=exc.code,
                )

            with LogContext.bind(quote_id=str(application.quote_id), actor_id=str(actor.actor_id)):
                if application.payment_ledger_id is not None:
                    entry = self._session.get(PaymentLedgerEntryModel, application.payment_ledger_id)
                    if entry is not None:
                        self._ledger.set_entry_status(entry, LedgerEntryStatus.REVERSED, actor.actor_id)

                now = self._clock.now()
                application.status = CreditApplicationStatus.REVERSED.value
                application.reversed_by_id = actor.actor_id
                application.reversed_at = now
                application.reversal_reason = reason
                application.updated_by_id = actor.actor_id

                previous = note.status
                note.amount_used = max(note.amount_used - application.applied_amount, Decimal("0"))
                if previous in APPLICABLE_STATUSES or previous == CreditNoteStatus.FULLY_USED.value:
                    note.status = self._usage_status(note).value
                note.updated_by_id = actor.actor_id
                self._record_history(
                    note,
                    CreditNoteAction.APPLICATION_REVERSED,
                    actor.actor_id,
                    previous_status=previous,
                    amount_change=application.applied_amount,
                    description=reason,
                    details={"application_id": str(application.id)},
                )
                self._session.commit()

                logger.info("credit_note_application_reversed", extra={
                    "application_id": str(application.id),
                    "credit_note_id": str(note.id),
                    "amount": str(application.applied_amount),
                })
                return CreditApplicationResult(
                    status=CreditNoteOutcome.REVERSED,
                    message="Credit note application reversed",
                    application_id=application.id,
                    applied_amount=application.applied_amount,
                    amount_available=note.amount_available,
                    note_status=CreditNoteStatus(note.status),
                    ledger_entry_id=application.payment_ledger_id,
                )
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Expiry
    # =========================================================================

    def expire_credit_notes(self, actor_id: UUID, as_of: date | None = None) -> int:
        """
        Expire spendable notes whose validity ended before ``as_of``.

        Returns:
            Number of notes expired.
        """
        day = as_of or self._clock.today()
        try:
            notes = self._session.scalars(
                select(CreditNoteModel)
                .where(
                    CreditNoteModel.status.in_(APPLICABLE_STATUSES),
                    CreditNoteModel.valid_until.is_not(None),
                    CreditNoteModel.valid_until < day,
                )
                .order_by(CreditNoteModel.note_number)
                .with_for_update()
            ).all()
            for note in notes:
                previous = note.status
                note.status = CreditNoteStatus.EXPIRED.value
                note.updated_by_id = actor_id
                self._record_history(
                    note,
                    CreditNoteAction.EXPIRED,
                    actor_id,
                    previous_status=previous,
                    amount_change=-note.amount_available,
                    description=f"Expired on {day.isoformat()}",
                )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("credit_notes_expired", extra={"count": len(notes), "as_of": day.isoformat()})
        return len(notes)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_available_credit_notes(
        self,
        customer_id: UUID,
        min_amount: Decimal | None = None,
    ) -> list[AvailableCreditNote]:
        """Spendable notes, soonest-expiring first (open-ended last)."""
        today = self._clock.today()
        available = CreditNoteModel.amount - CreditNoteModel.amount_used
        query = (
            select(CreditNoteModel)
            .where(
                CreditNoteModel.customer_id == customer_id,
                CreditNoteModel.status.in_(APPLICABLE_STATUSES),
                available > 0,
                CreditNoteModel.valid_from <= today,
                (CreditNoteModel.valid_until.is_(None)) | (CreditNoteModel.valid_until >= today),
            )
            .order_by(
                CreditNoteModel.valid_until.is_(None),
                CreditNoteModel.valid_until,
                CreditNoteModel.created_at,
                CreditNoteModel.note_number,
            )
        )
        if min_amount is not None:
            query = query.where(available >= min_amount)

        return [
            AvailableCreditNote(
                credit_note_id=note.id,
                note_number=note.note_number,
                amount=note.amount,
                currency=note.currency,
                amount_available=note.amount_available,
                reason=note.reason,
                valid_until=note.valid_until,
                minimum_order_value=note.minimum_order_value,
            )
            for note in self._session.scalars(query).all()
        ]

    def get_history(self, note_id: UUID) -> list[CreditNoteHistoryLine]:
        if self._session.get(CreditNoteModel, note_id) is None:
            raise CreditNoteNotFoundError(str(note_id))
        rows = self._session.scalars(
            select(CreditNoteHistoryModel)
            .where(CreditNoteHistoryModel.credit_note_id == note_id)
            .order_by(CreditNoteHistoryModel.performed_at, CreditNoteHistoryModel.created_at)
        ).all()
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _locked_note(self, note_id: UUID) -> CreditNoteModel:
        note = self._session.execute(
            select(CreditNoteModel)
            .where(CreditNoteModel.id == note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if note is None:
            raise CreditNoteNotFoundError(str(note_id))
        return note

    @staticmethod
    def _usage_status(note: CreditNoteModel) -> CreditNoteStatus:
        if note.amount_available <= Decimal("0"):
            return CreditNoteStatus.FULLY_USED
        if note.amount_used > Decimal("0"):
            return CreditNoteStatus.PARTIALLY_USED
        return CreditNoteStatus.ACTIVE

    def _record_history(
        self,
        note: CreditNoteModel,
        action: CreditNoteAction,
        actor_id: UUID,
        previous_status: str | None,
        amount_change: Decimal | None = None,
        description: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._session.add(CreditNoteHistoryModel(
            credit_note_id=note.id,
            action=action.value,
            previous_status=previous_status,
            new_status=note.status,
            amount_change=amount_change,
            description=description,
            performed_by_id=actor_id,
            performed_at=self._clock.now(),
            details=details,
            created_by_id=actor_id,
        ))

    def _note_declined(self, exc: LedgerError) -> CreditNoteResult:
        self._session.rollback()
        logger.warning("credit_note_declined", extra={
            "error_code": exc.code,
            "reason": str(exc),
        })
        return CreditNoteResult(
            status=CreditNoteOutcome.DECLINED,
            message=str(exc),
            error_code=exc.code,
        )
