"""Refunds: requests, per-payment allocation, gateway refunds."""

from ledger_modules.refunds.models import (
    AtomicRefundResult,
    RefundItemStatus,
    RefundOutcome,
    RefundRequestStatus,
    RefundType,
)
from ledger_modules.refunds.service import RefundService

__all__ = [
    "RefundService",
    "AtomicRefundResult",
    "RefundItemStatus",
    "RefundOutcome",
    "RefundRequestStatus",
    "RefundType",
]
