"""
ledger_modules.refunds.service
==============================

Responsibility:
    Refund workflows: request -> allocate across the order's payments ->
    review -> per-item gateway processing, plus the single-shot atomic
    gateway refund used by webhook-driven refunds and eligibility checks.

Architecture:
    Module layer.  Composes the refund allocation engine with the payment
    ledger (``PaymentLedgerService`` in non-committing mode) and owns the
    transaction boundary.

Invariants enforced:
    - A request never exceeds the order's net paid amount (completed
      customer payments minus completed refunds).
    - Allocation is most-recent-payment-first and no item exceeds the
      remaining capacity of its source payment.  The order row is locked
      before capacities are read.
    - Cumulative refunds against a gateway charge never exceed the charge.
    - A gateway refund id is processed once; replays return the earlier
      refund without writing.
    - A request is ``completed`` once every item is terminal without a
      failure, ``partially_completed`` when any item failed.

Failure modes:
    - Validation errors -> DECLINED result, session rolled back.
    - Capability denial -> DECLINED result, nothing read or written.
    - ``process_refund_atomic``: any error -> rollback and a failure result
      carrying the error message.
    - Other unexpected exceptions -> rollback and re-raise.

Audit relevance:
    Each refund item records the source payment it draws from and, once
    processed, the negative ledger entry it produced.  Reviewer and
    processor identities and timestamps are kept on the request.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_engines.allocation import RefundAllocationEngine, RefundSource
from ledger_engines.payment_status import REFUND_TYPES
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.money import to_base
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    InvalidPaymentAmountError,
    LedgerError,
    PaymentTransactionNotFoundError,
    RefundAlreadyRecordedError,
    RefundExceedsPaidError,
    RefundExceedsTransactionError,
    RefundItemNotFoundError,
    RefundItemStateError,
    RefundRequestNotFoundError,
    RefundRequestStateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_modules.payments.models import LedgerEntryStatus, PaymentTransactionStatus, PaymentType
from ledger_modules.payments.orm import PaymentLedgerEntryModel, PaymentTransactionModel
from ledger_modules.payments.service import PaymentLedgerService, lock_quote
from ledger_modules.refunds.models import (
    RELEASED_ITEM_STATUSES,
    TERMINAL_ITEM_STATUSES,
    AtomicRefundResult,
    GatewayRefundStatus,
    RefundEligibility,
    RefundItemResult,
    RefundItemStatus,
    RefundOutcome,
    RefundRequestResult,
    RefundRequestStatus,
    RefundReviewResult,
    RefundType,
)
from ledger_modules.refunds.orm import GatewayRefundModel, RefundItemModel, RefundRequestModel
from ledger_services.rbac_authority import ActorContext, requires_capability

logger = get_logger("modules.refunds.service")


def _review_denied(reason: str, *args: Any, **kwargs: Any) -> RefundReviewResult:
    return RefundReviewResult(
        status=RefundOutcome.DECLINED,
        message=reason,
        error_code=CapabilityDeniedError.code,
    )


def _item_denied(reason: str, *args: Any, **kwargs: Any) -> RefundItemResult:
    return RefundItemResult(
        status=RefundOutcome.DECLINED,
        message=reason,
        error_code=CapabilityDeniedError.code,
    )


class RefundService:
    """
    Refund orchestration.

    Contract:
        Every public mutating method either commits and returns a success
        result, or rolls back and returns a declined/failed result, or
        rolls back and re-raises.

    Guarantees:
        - All monetary amounts are ``Decimal``.
        - Ledger writes go through ``PaymentLedgerService``, so the order's
          amount_paid is resynced in the same transaction.

    Non-goals:
        - Does NOT call payment gateways; gateway ids and responses are
          supplied by the caller.
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
        self._ledger = PaymentLedgerService(session, config, self._clock, auto_commit=False)
        self._allocator = RefundAllocationEngine()

    # =========================================================================
    # Requests
    # =========================================================================

    def create_refund_request(
        self,
        quote_id: UUID,
        amount: Decimal,
        currency: str,
        reason_code: str,
        actor_id: UUID,
        refund_type: RefundType | str = RefundType.PARTIAL,
        reason_description: str | None = None,
        customer_notes: str | None = None,
        internal_notes: str | None = None,
        refund_method: str = "original_payment_method",
        payment_ids: list[UUID] | None = None,
    ) -> RefundRequestResult:
        """
        Create a pending refund request and allocate it across payments.

        Preconditions:
            - ``amount`` is a positive ``Decimal`` no larger than the
              order's net paid amount.
        Postconditions:
            - One pending request plus one pending item per funding
              payment; session committed.
        Raises:
            Exception -- any unexpected error; session is rolled back first.
        """
        assert isinstance(amount, Decimal), "amount must be Decimal, not float"
        try:
            with LogContext.bind(quote_id=str(quote_id), actor_id=str(actor_id)):
                logger.info("refund_request_started", extra={
                    "amount": str(amount),
                    "currency": currency,
                    "explicit_payments": len(payment_ids or ()),
                })
                try:
                    result = self._create_request(
                        quote_id=quote_id,
                        amount=amount,
                        currency=currency,
                        reason_code=reason_code,
                        actor_id=actor_id,
                        refund_type=RefundType(refund_type),
                        reason_description=reason_description,
                        customer_notes=customer_notes,
                        internal_notes=internal_notes,
                        refund_method=refund_method,
                        payment_ids=payment_ids,
                    )
                except LedgerError as exc:
                    self._session.rollback()
                    logger.warning("refund_request_declined", extra={
                        "error_code": exc.code,
                        "reason": str(exc),
                    })
                    return RefundRequestResult(
                        status=RefundOutcome.DECLINED,
                        message=str(exc),
                        error_code=exc.code,
                    )

                self._session.commit()
                return result

        except Exception:
            self._session.rollback()
            raise

    def _create_request(
        self,
        *,
        quote_id: UUID,
        amount: Decimal,
        currency: str,
        reason_code: str,
        actor_id: UUID,
        refund_type: RefundType,
        reason_description: str | None,
        customer_notes: str | None,
        internal_notes: str | None,
        refund_method: str,
        payment_ids: list[UUID] | None,
    ) -> RefundRequestResult:
        if amount <= Decimal("0"):
            raise InvalidPaymentAmountError(amount)

        # Serializes concurrent requests against the same order.
        lock_quote(self._session, quote_id)

        total_paid = self.net_paid(quote_id)
        if amount > total_paid:
            raise RefundExceedsPaidError(str(quote_id), amount, total_paid)

        rate = self._config.rate_for(currency)
        now = self._clock.now()

        request = RefundRequestModel(
            quote_id=quote_id,
            refund_type=refund_type.value,
            requested_amount=amount,
            currency=currency.upper(),
            reason_code=reason_code,
            reason_description=reason_description,
            customer_notes=customer_notes,
            internal_notes=internal_notes,
            refund_method=refund_method,
            status=RefundRequestStatus.PENDING.value,
            requested_by_id=actor_id,
            requested_at=now,
            created_by_id=actor_id,
        )
        self._session.add(request)
        self._session.flush()

        allocation = self._allocator.allocate(
            amount=amount,
            sources=self._refund_sources(quote_id, payment_ids),
        )
        for line_number, line in enumerate(allocation.lines, start=1):
            request.items.append(RefundItemModel(
                payment_ledger_id=line.source_id,
                line_number=line_number,
                allocated_amount=line.allocated,
                base_amount=to_base(line.allocated, rate),
                exchange_rate=rate,
                currency=currency.upper(),
                gateway_code=line.gateway_code,
                status=RefundItemStatus.PENDING.value,
                created_by_id=actor_id,
            ))
        self._session.flush()

        logger.info("refund_request_created", extra={
            "refund_request_id": str(request.id),
            "requested": str(amount),
            "allocated": str(allocation.total_allocated),
            "item_count": allocation.allocation_count,
        })
        return RefundRequestResult(
            status=RefundOutcome.CREATED,
            message="Refund request created",
            refund_request_id=request.id,
            allocated_amount=allocation.total_allocated,
            unallocated_amount=allocation.unallocated,
            item_count=allocation.allocation_count,
        )

    def net_paid(self, quote_id: UUID) -> Decimal:
        """Completed customer payments minus completed refunds."""
        rows = self._session.execute(
            select(PaymentLedgerEntryModel.payment_type, func.sum(PaymentLedgerEntryModel.amount))
            .where(
                PaymentLedgerEntryModel.quote_id == quote_id,
                PaymentLedgerEntryModel.status == LedgerEntryStatus.COMPLETED.value,
            )
            .group_by(PaymentLedgerEntryModel.payment_type)
        ).all()
        total = Decimal("0")
        for payment_type, amount in rows:
            if payment_type == PaymentType.CUSTOMER_PAYMENT.value:
                total += Decimal(str(amount))
            elif payment_type in REFUND_TYPES:
                total -= Decimal(str(amount))
        return total

    def _refund_sources(
        self,
        quote_id: UUID,
        payment_ids: list[UUID] | None,
    ) -> list[RefundSource]:
        query = select(PaymentLedgerEntryModel).where(
            PaymentLedgerEntryModel.quote_id == quote_id,
            PaymentLedgerEntryModel.payment_type == PaymentType.CUSTOMER_PAYMENT.value,
            PaymentLedgerEntryModel.status == LedgerEntryStatus.COMPLETED.value,
        )
        if payment_ids:
            query = query.where(PaymentLedgerEntryModel.id.in_(payment_ids))
        payments = self._session.scalars(query).all()

        allocated = dict(self._session.execute(
            select(RefundItemModel.payment_ledger_id, func.sum(RefundItemModel.allocated_amount))
            .where(
                RefundItemModel.payment_ledger_id.in_([p.id for p in payments]),
                RefundItemModel.status.not_in(RELEASED_ITEM_STATUSES),
            )
            .group_by(RefundItemModel.payment_ledger_id)
        ).all()) if payments else {}

        return [
            RefundSource(
                source_id=payment.id,
                amount=payment.amount,
                payment_date=payment.payment_date,
                sequence=payment.ledger_seq,
                already_allocated=min(
                    Decimal(str(allocated.get(payment.id, 0))), payment.amount,
                ),
                gateway_code=payment.gateway_code,
            )
            for payment in payments
        ]

    # =========================================================================
    # Review
    # =========================================================================

    @requires_capability("refund.approve", denied=_review_denied)
    def approve_refund_request(
        self,
        request_id: UUID,
        actor: ActorContext,
        approved_amount: Decimal | None = None,
        notes: str | None = None,
    ) -> RefundReviewResult:
        """
        pending -> approved; items move to processing.

        ``approved_amount`` defaults to the requested amount and may not
        exceed it.
        """
        try:
            try:
                request = self._pending_request(request_id)
                amount = request.requested_amount if approved_amount is None else approved_amount
                if amount <= Decimal("0") or amount > request.requested_amount:
                    raise InvalidPaymentAmountError(amount)
            except LedgerError as exc:
                return self._review_declined(exc)

            now = self._clock.now()
            request.status = RefundRequestStatus.APPROVED.value
            request.approved_amount = amount
            request.reviewed_by_id = actor.actor_id
            request.reviewed_at = now
            request.updated_by_id = actor.actor_id
            self._append_note(request, notes)
            for item in request.items:
                if item.status == RefundItemStatus.PENDING.value:
                    item.status = RefundItemStatus.PROCESSING.value

            self._session.commit()
            logger.info("refund_request_approved", extra={
                "refund_request_id": str(request.id),
                "approved_amount": str(amount),
                "reviewed_by": str(actor.actor_id),
            })
            return RefundReviewResult(
                status=RefundOutcome.APPROVED,
                message="Refund request approved",
                refund_request_id=request.id,
                approved_amount=amount,
            )
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("refund.approve", denied=_review_denied)
    def reject_refund_request(
        self,
        request_id: UUID,
        actor: ActorContext,
        notes: str,
    ) -> RefundReviewResult:
        """pending -> rejected; items are cancelled, releasing their capacity."""
        try:
            try:
                request = self._pending_request(request_id)
            except LedgerError as exc:
                return self._review_declined(exc)

            request.status = RefundRequestStatus.REJECTED.value
            request.reviewed_by_id = actor.actor_id
            request.reviewed_at = self._clock.now()
            request.updated_by_id = actor.actor_id
            self._append_note(request, notes)
            for item in request.items:
                item.status = RefundItemStatus.CANCELLED.value

            self._session.commit()
            logger.info("refund_request_rejected", extra={
                "refund_request_id": str(request.id),
                "reviewed_by": str(actor.actor_id),
            })
            return RefundReviewResult(
                status=RefundOutcome.REJECTED,
                message="Refund request rejected",
                refund_request_id=request.id,
            )
        except Exception:
            self._session.rollback()
            raise

    def _pending_request(self, request_id: UUID) -> RefundRequestModel:
        request = self._session.get(RefundRequestModel, request_id)
        if request is None:
            raise RefundRequestNotFoundError(str(request_id))
        if request.status != RefundRequestStatus.PENDING.value:
            raise RefundRequestStateError(
                str(request_id), request.status, RefundRequestStatus.PENDING.value,
            )
        return request

    def _append_note(self, request: RefundRequestModel, notes: str | None) -> None:
        if not notes:
            return
        stamp = self._clock.now().isoformat()
        entry = f"[{stamp}] {notes}"
        request.internal_notes = (
            f"{request.internal_notes}\n{entry}" if request.internal_notes else entry
        )

    def _review_declined(self, exc: LedgerError) -> RefundReviewResult:
        self._session.rollback()
        logger.warning("refund_review_declined", extra={
            "error_code": exc.code,
            "reason": str(exc),
        })
        return RefundReviewResult(
            status=RefundOutcome.DECLINED,
            message=str(exc),
            error_code=exc.code,
        )

    # =========================================================================
    # Item processing
    # =========================================================================

    @requires_capability("refund.process", denied=_item_denied)
    def process_refund_item(
        self,
        item_id: UUID,
        actor: ActorContext,
        gateway_refund_id: str | None = None,
        gateway_response: dict[str, Any] | None = None,
        status: RefundItemStatus | str = RefundItemStatus.COMPLETED,
    ) -> RefundItemResult:
        """
        Record the gateway outcome of one refund item.

        Postconditions:
            - completed: a negative ledger entry (refund for full requests,
              partial_refund otherwise) is recorded and the order resynced.
            - When every item of the request is terminal the request
              becomes completed (no failures) or partially_completed.
        """
        outcome = RefundItemStatus(status)
        try:
            try:
                item = self._session.get(RefundItemModel, item_id)
                if item is None:
                    raise RefundItemNotFoundError(str(item_id))
                if item.status in TERMINAL_ITEM_STATUSES or outcome not in (
                    RefundItemStatus.COMPLETED, RefundItemStatus.FAILED,
                ):
                    raise RefundItemStateError(str(item_id), item.status)
                request = item.request
                if request.status not in (
                    RefundRequestStatus.APPROVED.value, RefundRequestStatus.PROCESSING.value,
                ):
                    raise RefundRequestStateError(
                        str(request.id), request.status, RefundRequestStatus.APPROVED.value,
                    )

                with LogContext.bind(quote_id=str(request.quote_id), actor_id=str(actor.actor_id)):
                    ledger_entry_id = self._apply_item_outcome(
                        item, request, outcome, actor.actor_id, gateway_refund_id, gateway_response,
                    )
            except LedgerError as exc:
                self._session.rollback()
                logger.warning("refund_item_declined", extra={
                    "refund_item_id": str(item_id),
                    "error_code": exc.code,
                    "reason": str(exc),
                })
                return RefundItemResult(
                    status=RefundOutcome.DECLINED,
                    message=str(exc),
                    refund_item_id=item_id,
                    error_code=exc.code,
                )

            self._session.commit()
            return RefundItemResult(
                status=RefundOutcome.PROCESSED,
                message=f"Refund item {item.status}",
                refund_item_id=item.id,
                item_status=RefundItemStatus(item.status),
                request_status=RefundRequestStatus(request.status),
                ledger_entry_id=ledger_entry_id,
            )
        except Exception:
            self._session.rollback()
            raise

    def _apply_item_outcome(
        self,
        item: RefundItemModel,
        request: RefundRequestModel,
        outcome: RefundItemStatus,
        actor_id: UUID,
        gateway_refund_id: str | None,
        gateway_response: dict[str, Any] | None,
    ) -> UUID | None:
        now = self._clock.now()
        ledger_entry_id = None

        if outcome == RefundItemStatus.COMPLETED:
            payment_type = (
                PaymentType.REFUND
                if request.refund_type == RefundType.FULL.value
                else PaymentType.PARTIAL_REFUND
            )
            entry, _ = self._ledger.append_entry(
                quote_id=request.quote_id,
                amount=item.allocated_amount,
                currency=item.currency,
                payment_method=request.refund_method,
                payment_type=payment_type,
                actor_id=actor_id,
                gateway_code=item.gateway_code,
                gateway_transaction_id=gateway_refund_id,
                reference=str(request.id),
                notes=f"Refund item {item.line_number} of request {request.id}",
                gateway_response=gateway_response,
            )
            item.refund_ledger_entry_id = entry.id
            ledger_entry_id = entry.id

        item.status = outcome.value
        item.gateway_refund_id = gateway_refund_id
        item.gateway_response = gateway_response
        item.processed_at = now
        item.updated_by_id = actor_id

        request.processed_by_id = actor_id
        request.processed_at = now
        request.updated_by_id = actor_id
        statuses = {i.status for i in request.items}
        if statuses <= TERMINAL_ITEM_STATUSES:
            if RefundItemStatus.FAILED.value in statuses:
                request.status = RefundRequestStatus.PARTIALLY_COMPLETED.value
            else:
                request.status = RefundRequestStatus.COMPLETED.value
            request.completed_at = now
        else:
            request.status = RefundRequestStatus.PROCESSING.value
        self._session.flush()

        logger.info("refund_item_processed", extra={
            "refund_item_id": str(item.id),
            "item_status": item.status,
            "request_status": request.status,
            "amount": str(item.allocated_amount),
        })
        return ledger_entry_id

    # =========================================================================
    # Atomic gateway refund
    # =========================================================================

    def process_refund_atomic(
        self,
        quote_id: UUID | None,
        refund_amount: Decimal | None,
        actor_id: UUID,
        refund_data: dict[str, Any],
        gateway_response: dict[str, Any] | None = None,
        gateway_code: str | None = None,
    ) -> AtomicRefundResult:
        """
        Refund against the latest completed gateway charge in one unit of
        work.

        ``refund_data`` may carry gateway_refund_id, gateway_transaction_id,
        refund_type, reason_code, reason_description, admin_notes,
        customer_note, gateway_status, currency and original_amount.

        Postconditions:
            - success: a processing GatewayRefund, a processing refund
              ledger entry (balance_before/after = refunded totals on the
              charge), updated charge refund totals and a resynced order.
            - failure: nothing written; ``error_message`` says why.
        """
        if quote_id is None or refund_amount is None or refund_amount <= Decimal("0"):
            return AtomicRefundResult(
                success=False,
                error_message="Invalid refund amount or missing quote ID",
                error_code=InvalidPaymentAmountError.code,
            )
        assert isinstance(refund_amount, Decimal), "refund_amount must be Decimal, not float"

        try:
            with LogContext.bind(quote_id=str(quote_id), actor_id=str(actor_id)):
                result = self._refund_atomic(
                    quote_id, refund_amount, actor_id, refund_data, gateway_response, gateway_code,
                )
            self._session.commit()
            return result
        except LedgerError as exc:
            self._session.rollback()
            logger.warning("atomic_refund_declined", extra={
                "quote_id": str(quote_id),
                "error_code": exc.code,
                "reason": str(exc),
            })
            return AtomicRefundResult(
                success=False, error_message=str(exc), error_code=exc.code,
            )
        except Exception as exc:
            self._session.rollback()
            logger.error("atomic_refund_failed", extra={"quote_id": str(quote_id)}, exc_info=True)
            return AtomicRefundResult(success=False, error_message=str(exc))

    def _refund_atomic(
        self,
        quote_id: UUID,
        refund_amount: Decimal,
        actor_id: UUID,
        refund_data: dict[str, Any],
        gateway_response: dict[str, Any] | None,
        gateway_code: str | None,
    ) -> AtomicRefundResult:
        query = (
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.quote_id == quote_id,
                PaymentTransactionModel.status == PaymentTransactionStatus.COMPLETED.value,
            )
            .order_by(PaymentTransactionModel.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        if gateway_code:
            query = query.where(PaymentTransactionModel.gateway_code == gateway_code)
        charge = self._session.execute(query).scalar_one_or_none()
        if charge is None:
            raise PaymentTransactionNotFoundError(str(quote_id))

        gateway_refund_id = refund_data.get("gateway_refund_id")
        if gateway_refund_id:
            replayed = self._replayed_refund(gateway_refund_id)
            if replayed is not None:
                return replayed

        previous_refunded = charge.total_refunded or Decimal("0")
        new_total = previous_refunded + refund_amount
        if new_total > charge.amount:
            raise RefundExceedsTransactionError(str(charge.id), refund_amount, charge.refundable_amount)

        code = gateway_code or charge.gateway_code
        currency = refund_data.get("currency") or charge.currency
        gateway_transaction_id = (
            refund_data.get("gateway_transaction_id") or charge.gateway_transaction_id
        )
        reason = refund_data.get("reason_description")
        now = self._clock.now()

        refund = GatewayRefundModel(
            gateway_refund_id=gateway_refund_id,
            gateway_transaction_id=gateway_transaction_id,
            gateway_code=code,
            payment_transaction_id=charge.id,
            quote_id=quote_id,
            refund_amount=refund_amount,
            original_amount=Decimal(str(refund_data.get("original_amount") or charge.amount)),
            currency=currency,
            refund_type=refund_data.get("refund_type") or RefundType.PARTIAL.value,
            reason_code=refund_data.get("reason_code") or "CUSTOMER_REQUEST",
            reason_description=reason,
            admin_notes=refund_data.get("admin_notes"),
            customer_note=refund_data.get("customer_note"),
            status=GatewayRefundStatus.PROCESSING.value,
            gateway_status=refund_data.get("gateway_status") or "PENDING",
            gateway_response=gateway_response,
            refund_date=now,
            processed_by_id=actor_id,
            created_by_id=actor_id,
        )
        self._session.add(refund)
        self._session.flush()

        entry, created = self._ledger.append_entry(
            quote_id=quote_id,
            amount=refund_amount,
            currency=currency,
            payment_method=code,
            payment_type=PaymentType.REFUND,
            actor_id=actor_id,
            gateway_code=code,
            # Keyed by the refund id: several partial refunds share one charge.
            gateway_transaction_id=gateway_refund_id,
            reference=gateway_refund_id,
            notes=(
                f"{self._config.gateways.display_name(code)} Refund: "
                f"{reason or 'Customer request'}"
            ),
            payment_transaction_id=charge.id,
            status=LedgerEntryStatus.PROCESSING,
            gateway_response={
                "refund_processing": True,
                "refund_amount": str(refund_amount),
                "gateway_refund_id": gateway_refund_id,
                "gateway_transaction_id": gateway_transaction_id,
                "processed_at": now.isoformat(),
                **(gateway_response or {}),
            },
            balance_before=previous_refunded,
            balance_after=new_total,
        )
        # Charge totals and the ledger move together or not at all.
        if not created:
            raise RefundAlreadyRecordedError(gateway_refund_id, str(entry.id))

        charge.total_refunded = new_total
        charge.refund_count = (charge.refund_count or 0) + 1
        charge.is_fully_refunded = new_total >= charge.amount
        charge.last_refund_at = now
        charge.updated_by_id = actor_id
        self._session.flush()

        logger.info("atomic_refund_processed", extra={
            "gateway_refund_id": str(refund.id),
            "payment_transaction_id": str(charge.id),
            "refund_amount": str(refund_amount),
            "total_refunded": str(new_total),
            "is_fully_refunded": charge.is_fully_refunded,
        })
        return AtomicRefundResult(
            success=True,
            refund_id=refund.id,
            ledger_entry_id=entry.id,
            payment_transaction_updated=True,
            quote_updated=True,
            total_refunded=new_total,
            is_fully_refunded=charge.is_fully_refunded,
        )

    def _replayed_refund(self, gateway_refund_id: str) -> AtomicRefundResult | None:
        refund = self._session.execute(
            select(GatewayRefundModel).where(
                GatewayRefundModel.gateway_refund_id == gateway_refund_id,
            )
        ).scalar_one_or_none()
        if refund is None:
            return None

        entry_id = self._session.execute(
            select(PaymentLedgerEntryModel.id).where(
                PaymentLedgerEntryModel.payment_transaction_id == refund.payment_transaction_id,
                PaymentLedgerEntryModel.payment_type == PaymentType.REFUND.value,
                PaymentLedgerEntryModel.gateway_transaction_id == gateway_refund_id,
            )
        ).scalars().first()
        charge = self._session.get(PaymentTransactionModel, refund.payment_transaction_id)

        logger.info("atomic_refund_replayed", extra={
            "gateway_refund_id": gateway_refund_id,
            "refund_id": str(refund.id),
        })
        return AtomicRefundResult(
            success=True,
            refund_id=refund.id,
            ledger_entry_id=entry_id,
            total_refunded=charge.total_refunded,
            is_fully_refunded=charge.is_fully_refunded,
            duplicate=True,
        )

    # =========================================================================
    # Eligibility
    # =========================================================================

    def get_refund_eligibility(self, payment_transaction_id: UUID) -> RefundEligibility:
        """
        Whether a gateway charge can still be refunded, and for how much.

        Raises:
            PaymentTransactionNotFoundError: unknown charge.
        """
        charge = self._session.get(PaymentTransactionModel, payment_transaction_id)
        if charge is None:
            raise PaymentTransactionNotFoundError(str(payment_transaction_id))

        refundable = charge.refundable_amount
        paid_at = charge.paid_at or charge.created_at
        days = (self._clock.now() - paid_at).days if paid_at else None
        window = self._config.refunds.eligibility_window_days

        if charge.status != PaymentTransactionStatus.COMPLETED.value:
            eligible, reason = False, "Payment is not completed"
        elif charge.is_fully_refunded or refundable <= Decimal("0"):
            eligible, reason = False, "Payment already fully refunded"
        elif days is not None and days > window:
            eligible, reason = False, f"Refund window of {window} days has passed"
        else:
            eligible, reason = True, "Eligible for refund"

        return RefundEligibility(
            payment_transaction_id=charge.id,
            eligible=eligible,
            refundable_amount=refundable if eligible else Decimal("0"),
            reason=reason,
            days_since_payment=days,
        )
