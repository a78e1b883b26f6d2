"""Payment webhooks: atomic callback processing, guest checkout, orders."""

from ledger_modules.webhooks.models import (
    GuestSessionStatus,
    OrderStatus,
    WebhookPaymentStatus,
    WebhookResult,
)
from ledger_modules.webhooks.service import PaymentWebhookProcessor

__all__ = [
    "PaymentWebhookProcessor",
    "GuestSessionStatus",
    "OrderStatus",
    "WebhookPaymentStatus",
    "WebhookResult",
]
