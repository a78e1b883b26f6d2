"""Payment ledger: money movements against orders and balance sync."""

from ledger_modules.payments.models import (
    LedgerEntryStatus,
    PaymentRecordResult,
    PaymentRecordStatus,
    PaymentType,
)
from ledger_modules.payments.service import PaymentLedgerService

__all__ = [
    "PaymentLedgerService",
    "PaymentRecordResult",
    "PaymentRecordStatus",
    "PaymentType",
    "LedgerEntryStatus",
]
