"""
ledger_modules.reconciliation.service
=====================================

Responsibility:
    Statement reconciliation: snapshot the completed ledger entries of one
    payment method for a period, take in the gateway/bank statement lines,
    pair the two sides (automatically or by hand), and close the session
    as ``completed`` or ``discrepancy_found``.

Architecture:
    Module layer.  Pairing is delegated to the pure ``StatementMatcher``
    engine; this service loads candidates, applies the pairs and keeps the
    session counters.  Owns the transaction boundary.

Invariants enforced:
    - matched + unmatched_system + unmatched_statement == number of items,
      recomputed after every change.
    - Auto-matching touches only items of its own session and is safe to
      re-run: matched items are never offered again.
    - A session is ``completed`` only with no unmatched items and a
      closing difference under the configured tolerance.
    - Only ``in_progress`` sessions change.

Failure modes:
    - Unknown session/item, closed session, item on the wrong side or
      already matched -> DECLINED result, session rolled back.
    - Capability denial (``reconciliation.manage``) -> DECLINED result.
    - Other unexpected exceptions -> rollback and re-raise.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_engines.matching import MatchCandidate, MatchType, StatementMatcher
from ledger_engines.payment_status import REFUND_TYPES
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    LedgerError,
    ReconciliationItemNotFoundError,
    ReconciliationItemStateError,
    ReconciliationSessionClosedError,
    ReconciliationSessionNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_modules.payments.models import LedgerEntryStatus, PaymentType
from ledger_modules.payments.orm import PaymentLedgerEntryModel
from ledger_modules.reconciliation.models import (
    ReconciliationCounters,
    ReconciliationItemStatus,
    ReconciliationOutcome,
    ReconciliationResult,
    ReconciliationStatus,
    ResolutionAction,
    StatementLine,
)
from ledger_modules.reconciliation.orm import ReconciliationItemModel, ReconciliationSessionModel
from ledger_services.rbac_authority import ActorContext, requires_capability

logger = get_logger("modules.reconciliation.service")


def _denied(reason: str, *args: Any, **kwargs: Any) -> ReconciliationResult:
    return ReconciliationResult(
        status=ReconciliationOutcome.DECLINED,
        message=reason,
        error_code=CapabilityDeniedError.code,
    )


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class ReconciliationService:
    """
    Reconciliation sessions.

    Contract:
        Every public mutating method requires ``reconciliation.manage``
        and either commits and returns a result, or rolls back and returns
        a declined result, or rolls back and re-raises.

    Non-goals:
        - Does NOT parse statement files; lines arrive as ``StatementLine``.
        - Does NOT post adjustments for discrepancies; resolutions are
          recorded for follow-up.
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
        self._matcher = StatementMatcher()

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    @requires_capability("reconciliation.manage", denied=_denied)
    def start_session(
        self,
        actor: ActorContext,
        payment_method: str,
        statement_date: date,
        period_start: date | None,
        period_end: date | None,
        gateway_code: str | None = None,
        statement_opening_balance: Decimal | None = None,
        statement_closing_balance: Decimal | None = None,
    ) -> ReconciliationResult:
        """
        Open a session and snapshot the system side.

        Completed ledger entries of ``payment_method`` (and ``gateway_code``
        when given) with payment_date in [period_start, period_end + 1 day)
        each become one unmatched system item.  Customer payments count as
        credits, refunds as debits.
        """
        try:
            query = select(PaymentLedgerEntryModel).where(
                PaymentLedgerEntryModel.payment_method == payment_method,
                PaymentLedgerEntryModel.status == LedgerEntryStatus.COMPLETED.value,
            )
            if gateway_code is not None:
                query = query.where(PaymentLedgerEntryModel.gateway_code == gateway_code)
            if period_start is not None:
                query = query.where(PaymentLedgerEntryModel.payment_date >= _day_start(period_start))
            if period_end is not None:
                query = query.where(
                    PaymentLedgerEntryModel.payment_date < _day_start(period_end + timedelta(days=1))
                )
            entries = self._session.scalars(
                query.order_by(PaymentLedgerEntryModel.payment_date, PaymentLedgerEntryModel.ledger_seq)
            ).all()

            credits = sum(
                (e.amount for e in entries if e.payment_type == PaymentType.CUSTOMER_PAYMENT.value),
                Decimal("0"),
            )
            debits = sum(
                (e.amount for e in entries if e.payment_type in REFUND_TYPES),
                Decimal("0"),
            )

            recon = ReconciliationSessionModel(
                payment_method=payment_method,
                gateway_code=gateway_code,
                statement_date=statement_date,
                period_start=period_start,
                period_end=period_end,
                statement_opening_balance=statement_opening_balance,
                statement_closing_balance=statement_closing_balance,
                system_opening_balance=Decimal("0"),
                system_total_credits=credits,
                system_total_debits=debits,
                system_closing_balance=credits - debits,
                status=ReconciliationStatus.IN_PROGRESS.value,
                reconciled_by_id=actor.actor_id,
                started_at=self._clock.now(),
                created_by_id=actor.actor_id,
            )
            for line_number, entry in enumerate(entries, start=1):
                recon.items.append(ReconciliationItemModel(
                    line_number=line_number,
                    payment_ledger_id=entry.id,
                    system_date=entry.payment_date.date(),
                    system_amount=entry.amount,
                    system_reference=(
                        entry.reference_number or entry.gateway_transaction_id or str(entry.id)
                    ),
                    system_description=f"{entry.payment_type} - {entry.notes or ''}",
                    matched=False,
                    match_type=MatchType.UNMATCHED.value,
                    status=ReconciliationItemStatus.PENDING.value,
                    created_by_id=actor.actor_id,
                ))
            self._session.add(recon)
            self._session.flush()
            counters = self._refresh_counters(recon)
            self._session.commit()

            logger.info("reconciliation_started", extra={
                "session_id": str(recon.id),
                "payment_method": payment_method,
                "gateway_code": gateway_code,
                "system_items": len(entries),
                "system_total_credits": str(credits),
                "system_total_debits": str(debits),
            })
            return ReconciliationResult(
                status=ReconciliationOutcome.STARTED,
                message="Reconciliation session started",
                session_id=recon.id,
                session_status=ReconciliationStatus.IN_PROGRESS,
                counters=counters,
                affected=len(entries),
                closing_difference=recon.closing_difference,
            )
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("reconciliation.manage", denied=_denied)
    def add_statement_lines(
        self,
        session_id: UUID,
        actor: ActorContext,
        lines: Sequence[StatementLine],
    ) -> ReconciliationResult:
        """Append statement-side items and update the statement totals."""
        try:
            try:
                recon = self._open_session(session_id)
            except LedgerError as exc:
                return self._declined(exc, session_id)

            next_line = max((i.line_number for i in recon.items), default=0) + 1
            for offset, line in enumerate(lines):
                assert isinstance(line.amount, Decimal), "amount must be Decimal, not float"
                recon.items.append(ReconciliationItemModel(
                    line_number=next_line + offset,
                    statement_date=line.statement_date,
                    statement_amount=line.amount,
                    statement_reference=line.reference,
                    statement_description=line.description,
                    statement_is_debit=line.is_debit,
                    matched=False,
                    match_type=MatchType.UNMATCHED.value,
                    status=ReconciliationItemStatus.PENDING.value,
                    created_by_id=actor.actor_id,
                ))
                if line.is_debit:
                    recon.statement_total_debits += line.amount
                else:
                    recon.statement_total_credits += line.amount
            recon.updated_by_id = actor.actor_id
            self._session.flush()
            counters = self._refresh_counters(recon)
            self._session.commit()

            logger.info("reconciliation_statement_lines_added", extra={
                "session_id": str(recon.id),
                "lines": len(lines),
            })
            return self._updated(recon, counters, len(lines), f"Added {len(lines)} statement lines")
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("reconciliation.manage", denied=_denied)
    def complete_session(
        self,
        session_id: UUID,
        actor: ActorContext,
        notes: str | None = None,
    ) -> ReconciliationResult:
        """
        Close the session.

        ``completed`` when nothing is unmatched and
        |closing difference| < closing_tolerance (a missing statement
        closing balance counts as no difference); ``discrepancy_found``
        otherwise.
        """
        try:
            try:
                recon = self._open_session(session_id)
            except LedgerError as exc:
                return self._declined(exc, session_id)

            counters = self._refresh_counters(recon)
            difference = recon.closing_difference
            within_tolerance = (
                abs(difference or Decimal("0")) < self._config.reconciliation.closing_tolerance
            )
            if counters.unmatched_count == 0 and within_tolerance:
                final = ReconciliationStatus.COMPLETED
            else:
                final = ReconciliationStatus.DISCREPANCY_FOUND

            recon.status = final.value
            recon.completed_at = self._clock.now()
            recon.updated_by_id = actor.actor_id
            self._append_note(recon, notes)
            self._session.commit()

            logger.info("reconciliation_completed", extra={
                "session_id": str(recon.id),
                "status": final.value,
                "unmatched": counters.unmatched_count,
                "closing_difference": str(difference) if difference is not None else None,
            })
            return ReconciliationResult(
                status=ReconciliationOutcome.COMPLETED,
                message=f"Reconciliation {final.value}",
                session_id=recon.id,
                session_status=final,
                counters=counters,
                closing_difference=difference,
            )
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("reconciliation.manage", denied=_denied)
    def abandon_session(
        self,
        session_id: UUID,
        actor: ActorContext,
        notes: str,
    ) -> ReconciliationResult:
        try:
            try:
                recon = self._open_session(session_id)
            except LedgerError as exc:
                return self._declined(exc, session_id)

            recon.status = ReconciliationStatus.ABANDONED.value
            recon.completed_at = self._clock.now()
            recon.updated_by_id = actor.actor_id
            self._append_note(recon, notes)
            self._session.commit()

            logger.info("reconciliation_abandoned", extra={"session_id": str(recon.id)})
            return ReconciliationResult(
                status=ReconciliationOutcome.ABANDONED,
                message="Reconciliation abandoned",
                session_id=recon.id,
                session_status=ReconciliationStatus.ABANDONED,
            )
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Matching
    # =========================================================================

    @requires_capability("reconciliation.manage", denied=_denied)
    def auto_match(self, session_id: UUID, actor: ActorContext) -> ReconciliationResult:
        """
        Pair unmatched statement items with unmatched system items of equal
        amount and equal reference or date.  Each pair is an exact match
        with confidence 1.0.
        """
        try:
            try:
                recon = self._open_session(session_id)
            except LedgerError as exc:
                return self._declined(exc, session_id)

            open_items = [i for i in recon.items if not i.matched]
            statement_items = [
                i for i in open_items if not i.is_system and i.statement_amount is not None
            ]
            system_items = [i for i in open_items if i.is_system]
            by_id = {i.id: i for i in open_items}

            pairs = self._matcher.match(
                statement_lines=[
                    MatchCandidate(
                        item_id=i.id,
                        amount=i.statement_amount,
                        date=i.statement_date,
                        reference=i.statement_reference,
                    )
                    for i in statement_items
                ],
                system_lines=[
                    MatchCandidate(
                        item_id=i.id,
                        amount=i.system_amount,
                        date=i.system_date,
                        reference=i.system_reference,
                    )
                    for i in system_items
                ],
            )
            for pair in pairs:
                self._link(
                    by_id[pair.system_item_id],
                    by_id[pair.statement_item_id],
                    pair.match_type,
                    pair.confidence,
                    actor.actor_id,
                )
            self._session.flush()
            counters = self._refresh_counters(recon)
            self._session.commit()

            logger.info("reconciliation_auto_matched", extra={
                "session_id": str(recon.id),
                "matched_pairs": len(pairs),
                "remaining_unmatched": counters.unmatched_count,
            })
            return self._updated(recon, counters, len(pairs), f"Matched {len(pairs)} pairs")
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("reconciliation.manage", denied=_denied)
    def manual_match(
        self,
        session_id: UUID,
        system_item_id: UUID,
        statement_item_id: UUID,
        actor: ActorContext,
        notes: str | None = None,
    ) -> ReconciliationResult:
        """Pair two items by hand.  Any amount difference is kept as a
        discrepancy on both rows."""
        try:
            try:
                recon = self._open_session(session_id)
                system_item = self._item(recon, system_item_id)
                statement_item = self._item(recon, statement_item_id)
                if not system_item.is_system:
                    raise ReconciliationItemStateError(str(system_item_id), "not a system item")
                if statement_item.is_system:
                    raise ReconciliationItemStateError(str(statement_item_id), "not a statement item")
                for item in (system_item, statement_item):
                    if item.matched:
                        raise ReconciliationItemStateError(str(item.id), "already matched")
            except LedgerError as exc:
                return self._declined(exc, session_id)

            self._link(system_item, statement_item, MatchType.MANUAL, Decimal("1.0"), actor.actor_id)
            if notes:
                system_item.discrepancy_reason = notes
                statement_item.discrepancy_reason = notes
            self._session.flush()
            counters = self._refresh_counters(recon)
            self._session.commit()

            logger.info("reconciliation_manual_match", extra={
                "session_id": str(recon.id),
                "system_item_id": str(system_item.id),
                "statement_item_id": str(statement_item.id),
                "discrepancy": str(system_item.discrepancy_amount),
            })
            return self._updated(recon, counters, 1, "Items matched manually")
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("reconciliation.manage", denied=_denied)
    def resolve_item(
        self,
        item_id: UUID,
        actor: ActorContext,
        action: ResolutionAction | str,
        notes: str | None = None,
    ) -> ReconciliationResult:
        """Record how a discrepancy or unmatched item is being dealt with."""
        resolution = ResolutionAction(action)
        try:
            try:
                item = self._session.get(ReconciliationItemModel, item_id)
                if item is None:
                    raise ReconciliationItemNotFoundError(str(item_id))
                recon = self._open_session(item.session_id)
            except LedgerError as exc:
                return self._declined(exc, None)

            item.resolution_action = resolution.value
            item.resolution_notes = notes
            item.resolved_by_id = actor.actor_id
            item.resolved_at = self._clock.now()
            item.status = ReconciliationItemStatus.RESOLVED.value
            item.updated_by_id = actor.actor_id
            self._session.flush()
            counters = self._refresh_counters(recon)
            self._session.commit()

            logger.info("reconciliation_item_resolved", extra={
                "session_id": str(recon.id),
                "item_id": str(item.id),
                "action": resolution.value,
            })
            return self._updated(recon, counters, 1, f"Item resolved: {resolution.value}")
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_counters(self, session_id: UUID) -> ReconciliationCounters:
        recon = self._session.get(ReconciliationSessionModel, session_id)
        if recon is None:
            raise ReconciliationSessionNotFoundError(str(session_id))
        return ReconciliationCounters(
            matched_count=recon.matched_count,
            unmatched_system_count=recon.unmatched_system_count,
            unmatched_statement_count=recon.unmatched_statement_count,
            total_matched_amount=recon.total_matched_amount,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _open_session(self, session_id: UUID) -> ReconciliationSessionModel:
        recon = self._session.execute(
            select(ReconciliationSessionModel)
            .where(ReconciliationSessionModel.id == session_id)
            .with_for_update()
        ).scalar_one_or_none()
        if recon is None:
            raise ReconciliationSessionNotFoundError(str(session_id))
        if recon.status != ReconciliationStatus.IN_PROGRESS.value:
            raise ReconciliationSessionClosedError(str(session_id), recon.status)
        return recon

    @staticmethod
    def _item(recon: ReconciliationSessionModel, item_id: UUID) -> ReconciliationItemModel:
        for item in recon.items:
            if item.id == item_id:
                return item
        raise ReconciliationItemNotFoundError(str(item_id))

    def _link(
        self,
        system_item: ReconciliationItemModel,
        statement_item: ReconciliationItemModel,
        match_type: MatchType,
        confidence: Decimal,
        actor_id: UUID,
    ) -> None:
        now = self._clock.now()
        system_item.statement_amount = statement_item.statement_amount
        system_item.statement_date = statement_item.statement_date
        system_item.statement_reference = statement_item.statement_reference
        statement_item.system_amount = system_item.system_amount
        statement_item.system_date = system_item.system_date
        statement_item.system_reference = system_item.system_reference

        system_item.matched_item_id = statement_item.id
        statement_item.matched_item_id = system_item.id
        for item in (system_item, statement_item):
            item.matched = True
            item.match_type = match_type.value
            item.match_confidence = confidence
            item.matched_at = now
            item.matched_by_id = actor_id
            item.updated_by_id = actor_id
            item.status = (
                ReconciliationItemStatus.MATCHED.value
                if item.discrepancy_amount == Decimal("0")
                else ReconciliationItemStatus.DISCREPANCY.value
            )

    @staticmethod
    def _refresh_counters(recon: ReconciliationSessionModel) -> ReconciliationCounters:
        matched = [i for i in recon.items if i.matched]
        counters = ReconciliationCounters(
            matched_count=len(matched),
            unmatched_system_count=sum(1 for i in recon.items if not i.matched and i.is_system),
            unmatched_statement_count=sum(1 for i in recon.items if not i.matched and not i.is_system),
            total_matched_amount=sum(
                (i.system_amount for i in matched if i.is_system), Decimal("0"),
            ),
        )
        recon.matched_count = counters.matched_count
        recon.unmatched_system_count = counters.unmatched_system_count
        recon.unmatched_statement_count = counters.unmatched_statement_count
        recon.total_matched_amount = counters.total_matched_amount
        return counters

    def _append_note(self, recon: ReconciliationSessionModel, notes: str | None) -> None:
        if notes:
            recon.notes = f"{recon.notes}\n{notes}" if recon.notes else notes

    @staticmethod
    def _updated(
        recon: ReconciliationSessionModel,
        counters: ReconciliationCounters,
        affected: int,
        message: str,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            status=ReconciliationOutcome.UPDATED,
            message=message,
            session_id=recon.id,
            session_status=ReconciliationStatus(recon.status),
            counters=counters,
            affected=affected,
            closing_difference=recon.closing_difference,
        )

    def _declined(self, exc: LedgerError, session_id: UUID | None) -> ReconciliationResult:
        self._session.rollback()
        logger.warning("reconciliation_declined", extra={
            "session_id": str(session_id) if session_id else None,
            "error_code": exc.code,
            "reason": str(exc),
        })
        return ReconciliationResult(
            status=ReconciliationOutcome.DECLINED,
            message=str(exc),
            session_id=session_id,
            error_code=exc.code,
        )
