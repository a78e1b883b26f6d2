"""
ledger_modules.webhooks.service
===============================

Responsibility:
    Applies one payment-gateway callback to the ledger in a single unit of
    work: the gateway charge, its payment ledger entry, guest checkout
    session transitions, the orders' payment fields and, optionally, a
    confirmed order record.

Architecture:
    Module layer.  Writes ledger entries through
    ``PaymentLedgerService.append_entry`` (non-committing) so balance sync
    and journal posting follow the same rules as every other money
    movement.  Owns the transaction boundary.

Invariants enforced:
    - Webhook replays are idempotent: the charge is found by transaction id
      (or gateway transaction id) and its existing ledger entry is updated
      in place, never duplicated.
    - amount_paid and payment_status are re-derived from the ledger, never
      copied from the callback.
    - A failed guest payment leaves the shared orders untouched.

Failure modes:
    - WebhookPayloadError -> failure result, nothing written.
    - Any other error -> rollback, failure result carrying the message.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import LedgerError, QuoteNotFoundError, WebhookPayloadError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.quote import Quote
from ledger_modules.payments.models import PaymentType
from ledger_modules.payments.orm import PaymentTransactionModel
from ledger_modules.payments.service import PaymentLedgerService, lock_quote
from ledger_modules.webhooks.models import (
    GuestSessionStatus,
    OrderStatus,
    WebhookPaymentStatus,
    WebhookResult,
)
from ledger_modules.webhooks.orm import GuestCheckoutSessionModel, OrderRecordModel

logger = get_logger("modules.webhooks.service")

# Recorded as the author of webhook writes when the order has no customer.
WEBHOOK_ACTOR_ID = UUID(int=0)

_REQUIRED_FIELDS = ("transaction_id", "amount", "currency")


def _parse_amount(raw: Any) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise WebhookPayloadError(("amount",)) from None


class PaymentWebhookProcessor:
    """
    Atomic payment webhook handling.

    Contract:
        ``process_webhook`` commits everything or nothing and never raises
        for a bad callback; the result says what happened.

    Non-goals:
        - Does NOT verify gateway signatures; the HTTP layer does.
        - Does NOT compute order totals.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        actor_id: UUID = WEBHOOK_ACTOR_ID,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._ledger = PaymentLedgerService(session, config, self._clock, auto_commit=False)

    def process_webhook(
        self,
        quote_ids: list[UUID],
        status: str,
        payload: dict[str, Any],
        guest_session_token: str | None = None,
        guest_session_data: dict[str, Any] | None = None,
        create_order: bool = False,
    ) -> WebhookResult:
        """
        Apply a gateway callback.

        ``payload`` carries transaction_id, amount and currency (required)
        plus gateway_transaction_id, payment_method, customer_email,
        customer_name, customer_phone and gateway_response.  ``status`` is
        the gateway outcome: success, failed, or anything else (pending).

        Postconditions:
            - success: the charge exists with the mapped status, the first
              order has exactly one ledger entry for it, and the session
              is committed.
            - failure: nothing written; ``error_message`` says why.
        """
        missing = tuple(f for f in _REQUIRED_FIELDS if payload.get(f) in (None, ""))
        if missing:
            logger.warning("payment_webhook_rejected", extra={"missing_fields": list(missing)})
            exc = WebhookPayloadError(missing)
            return WebhookResult(success=False, error_message=str(exc), error_code=exc.code)

        transaction_id = str(payload["transaction_id"])
        try:
            with LogContext.bind(correlation_id=transaction_id, producer="payment_webhook"):
                result = self._process(
                    [UUID(str(q)) for q in quote_ids],
                    status,
                    payload,
                    guest_session_token,
                    guest_session_data,
                    create_order,
                )
            self._session.commit()
            return result
        except LedgerError as exc:
            self._session.rollback()
            logger.warning("payment_webhook_declined", extra={
                "transaction_id": transaction_id,
                "error_code": exc.code,
                "reason": str(exc),
            })
            return WebhookResult(success=False, error_message=str(exc), error_code=exc.code)
        except Exception as exc:
            self._session.rollback()
            logger.error(
                "payment_webhook_failed",
                extra={"transaction_id": transaction_id},
                exc_info=True,
            )
            return WebhookResult(success=False, error_message=str(exc))

    def _process(
        self,
        quote_ids: list[UUID],
        raw_status: str,
        payload: dict[str, Any],
        guest_session_token: str | None,
        guest_session_data: dict[str, Any] | None,
        create_order: bool,
    ) -> WebhookResult:
        status = WebhookPaymentStatus.parse(raw_status)
        amount = _parse_amount(payload["amount"])
        currency = str(payload["currency"]).upper()
        payment_method = payload.get("payment_method")
        now = self._clock.now()

        user_id = None
        if quote_ids:
            first = self._session.get(Quote, quote_ids[0])
            if first is None:
                raise QuoteNotFoundError(str(quote_ids[0]))
            user_id = first.customer_id
        actor_id = user_id or self._actor_id

        logger.info("payment_webhook_started", extra={
            "payment_status": raw_status,
            "amount": str(amount),
            "currency": currency,
            "quote_count": len(quote_ids),
        })

        charge = self._upsert_charge(
            payload, status, amount, currency, quote_ids, user_id, actor_id, now,
        )

        ledger_entry_id = None
        if quote_ids:
            entry, created = self._ledger.append_entry(
                quote_id=quote_ids[0],
                amount=amount,
                currency=currency,
                payment_method=payment_method,
                payment_type=PaymentType.CUSTOMER_PAYMENT,
                actor_id=actor_id,
                gateway_code=payment_method,
                gateway_transaction_id=payload.get("gateway_transaction_id"),
                reference=charge.transaction_id,
                notes=f"Payment webhook: {raw_status}",
                payment_transaction_id=charge.id,
                status=status.ledger_status,
                gateway_response={
                    "webhook_processing": True,
                    "payment_status": raw_status,
                    "transaction_id": charge.transaction_id,
                    "gateway_transaction_id": payload.get("gateway_transaction_id"),
                    "customer_email": payload.get("customer_email"),
                    "customer_name": payload.get("customer_name"),
                    "processed_at": now.isoformat(),
                    **(payload.get("gateway_response") or {}),
                },
            )
            ledger_entry_id = entry.id

        guest_session_updated = False
        if guest_session_token is not None:
            guest_session_updated = self._update_guest_session(
                guest_session_token, status, guest_session_data, actor_id,
            )

        quotes_updated = False
        failed_guest = guest_session_token is not None and status == WebhookPaymentStatus.FAILED
        if quote_ids and not failed_guest:
            for quote_id in quote_ids:
                self._apply_payment_details(
                    quote_id, status, raw_status, payload, amount, currency, actor_id, now,
                )
                self._ledger.sync_quote_balance(quote_id)
            quotes_updated = True

        order_id = None
        if create_order and status == WebhookPaymentStatus.SUCCESS and quote_ids:
            order_id = self._create_order(
                quote_ids, user_id, payload, amount, currency, charge.id, actor_id, now,
            )

        self._session.flush()
        logger.info("payment_webhook_processed", extra={
            "payment_transaction_id": str(charge.id),
            "ledger_entry_id": str(ledger_entry_id) if ledger_entry_id else None,
            "quotes_updated": quotes_updated,
            "guest_session_updated": guest_session_updated,
            "order_id": str(order_id) if order_id else None,
        })
        return WebhookResult(
            success=True,
            payment_transaction_id=charge.id,
            ledger_entry_id=ledger_entry_id,
            quotes_updated=quotes_updated,
            guest_session_updated=guest_session_updated,
            order_id=order_id,
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def _upsert_charge(
        self,
        payload: dict[str, Any],
        status: WebhookPaymentStatus,
        amount: Decimal,
        currency: str,
        quote_ids: list[UUID],
        user_id: UUID | None,
        actor_id: UUID,
        now: datetime,
    ) -> PaymentTransactionModel:
        transaction_id = str(payload["transaction_id"])
        gateway_transaction_id = payload.get("gateway_transaction_id")
        gateway_response = payload.get("gateway_response") or {}

        match = PaymentTransactionModel.transaction_id == transaction_id
        if gateway_transaction_id:
            match = or_(
                match, PaymentTransactionModel.gateway_transaction_id == gateway_transaction_id,
            )
        charge = self._session.execute(
            select(PaymentTransactionModel)
            .where(match)
            .order_by(PaymentTransactionModel.created_at)
            .with_for_update()
        ).scalars().first()

        if charge is None:
            charge = PaymentTransactionModel(
                transaction_id=transaction_id,
                gateway_transaction_id=gateway_transaction_id,
                quote_id=quote_ids[0] if quote_ids else None,
                user_id=user_id,
                amount=amount,
                currency=currency,
                status=status.transaction_status.value,
                payment_method=payload.get("payment_method"),
                gateway_code=payload.get("payment_method"),
                gateway_response=dict(gateway_response),
                paid_at=now if status == WebhookPaymentStatus.SUCCESS else None,
                created_by_id=actor_id,
            )
            self._session.add(charge)
            logger.info("payment_transaction_created", extra={"transaction_id": transaction_id})
        else:
            charge.status = status.transaction_status.value
            charge.gateway_response = {**(charge.gateway_response or {}), **gateway_response}
            if status == WebhookPaymentStatus.SUCCESS and charge.paid_at is None:
                charge.paid_at = now
            charge.updated_by_id = actor_id
            logger.info("payment_transaction_updated", extra={
                "payment_transaction_id": str(charge.id),
                "status": charge.status,
            })
        self._session.flush()
        return charge

    def _update_guest_session(
        self,
        token: str,
        status: WebhookPaymentStatus,
        guest_data: dict[str, Any] | None,
        actor_id: UUID,
    ) -> bool:
        guest_session = self._session.execute(
            select(GuestCheckoutSessionModel)
            .where(
                GuestCheckoutSessionModel.session_token == token,
                GuestCheckoutSessionModel.status == GuestSessionStatus.ACTIVE.value,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if guest_session is None:
            logger.info("guest_session_not_active", extra={"session_token": token})
            return False

        if status == WebhookPaymentStatus.SUCCESS:
            guest_session.status = GuestSessionStatus.COMPLETED.value
            if guest_data is not None:
                quote = lock_quote(
                    self._session, UUID(str(guest_data.get("quote_id") or guest_session.quote_id)),
                )
                quote.customer_name = guest_data.get("guest_name")
                quote.customer_email = guest_data.get("guest_email")
                quote.shipping_address = guest_data.get("shipping_address")
                quote.is_anonymous = True
                quote.customer_id = None
                quote.updated_by_id = actor_id
        elif status == WebhookPaymentStatus.FAILED:
            # The order stays shareable; only the guest's checkout ends.
            guest_session.status = GuestSessionStatus.EXPIRED.value
        else:
            return False

        guest_session.updated_by_id = actor_id
        logger.info("guest_session_updated", extra={
            "session_token": token,
            "status": guest_session.status,
        })
        return True

    def _apply_payment_details(
        self,
        quote_id: UUID,
        status: WebhookPaymentStatus,
        raw_status: str,
        payload: dict[str, Any],
        amount: Decimal,
        currency: str,
        actor_id: UUID,
        now: datetime,
    ) -> None:
        quote = lock_quote(self._session, quote_id)
        quote.status = status.quote_status
        quote.payment_method = payload.get("payment_method")
        quote.paid_at = now if status == WebhookPaymentStatus.SUCCESS else None
        quote.payment_details = {
            "gateway": payload.get("payment_method"),
            "transaction_id": str(payload["transaction_id"]),
            "gateway_transaction_id": payload.get("gateway_transaction_id"),
            "status": raw_status,
            "amount": str(amount),
            "currency": currency,
            "customer_name": payload.get("customer_name"),
            "customer_email": payload.get("customer_email"),
            "customer_phone": payload.get("customer_phone"),
            "webhook_received_at": now.isoformat(),
        }
        quote.updated_by_id = actor_id

    def _create_order(
        self,
        quote_ids: list[UUID],
        user_id: UUID | None,
        payload: dict[str, Any],
        amount: Decimal,
        currency: str,
        payment_transaction_id: UUID,
        actor_id: UUID,
        now: datetime,
    ) -> UUID:
        order = OrderRecordModel(
            order_number=f"ORD-{int(now.timestamp())}-{uuid4().hex[:9]}",
            user_id=user_id,
            quote_ids=[str(q) for q in quote_ids],
            total_amount=amount,
            currency=currency,
            status=OrderStatus.CONFIRMED.value,
            payment_method=payload.get("payment_method"),
            customer_email=payload.get("customer_email"),
            customer_name=payload.get("customer_name"),
            customer_phone=payload.get("customer_phone"),
            payment_transaction_id=payment_transaction_id,
            created_by_id=actor_id,
        )
        self._session.add(order)
        self._session.flush()
        logger.info("order_created", extra={
            "order_id": str(order.id),
            "order_number": order.order_number,
        })
        return order.id
