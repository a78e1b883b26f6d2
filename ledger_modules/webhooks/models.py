"""
ledger_modules.webhooks.models
==============================

Responsibility:
    Enums and the frozen result returned by the payment webhook processor.

Architecture:
    Module layer.  In-memory DTOs, NOT ORM models.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from ledger_modules.payments.models import LedgerEntryStatus, PaymentTransactionStatus


class WebhookPaymentStatus(str, Enum):
    """Payment outcome as reported by the gateway callback."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"

    @classmethod
    def parse(cls, value: str) -> "WebhookPaymentStatus":
        """Anything other than success/failed is treated as pending."""
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING

    @property
    def transaction_status(self) -> PaymentTransactionStatus:
        return {
            WebhookPaymentStatus.SUCCESS: PaymentTransactionStatus.COMPLETED,
            WebhookPaymentStatus.FAILED: PaymentTransactionStatus.FAILED,
        }.get(self, PaymentTransactionStatus.PENDING)

    @property
    def ledger_status(self) -> LedgerEntryStatus:
        return LedgerEntryStatus(self.transaction_status.value)

    @property
    def quote_status(self) -> str:
        return {
            WebhookPaymentStatus.SUCCESS: "paid",
            WebhookPaymentStatus.FAILED: "failed",
        }.get(self, "pending")


class GuestSessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class WebhookResult:
    """
    Outcome of ``PaymentWebhookProcessor.process_webhook``.

    Contract:
        ``success`` False means nothing was written; ``error_message``
        says why and ``error_code`` is set for typed ledger errors.
    """

    success: bool
    payment_transaction_id: UUID | None = None
    ledger_entry_id: UUID | None = None
    quotes_updated: bool = False
    guest_session_updated: bool = False
    order_id: UUID | None = None
    error_message: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.success
