"""
Ledger Engines -- pure calculation layer.

No I/O, no sessions, no clock.  Each engine takes plain values and returns
frozen dataclasses; invocations are traced with ``@traced_engine``.
"""

from ledger_engines.allocation import (
    RefundAllocationEngine,
    RefundAllocationLine,
    RefundAllocationResult,
    RefundSource,
)
from ledger_engines.matching import MatchCandidate, MatchPair, MatchType, StatementMatcher
from ledger_engines.payment_status import (
    LedgerEntryStatus,
    LedgerPaymentType,
    PaymentPosition,
    derive_payment_status,
    signed_amount,
)
from ledger_engines.tax_method import (
    TaxMethodContext,
    TaxMethodResolution,
    recommend_tax_method,
    resolve_tax_method,
)

__all__ = [
    "RefundAllocationEngine",
    "RefundAllocationLine",
    "RefundAllocationResult",
    "RefundSource",
    "MatchCandidate",
    "MatchPair",
    "MatchType",
    "StatementMatcher",
    "LedgerEntryStatus",
    "LedgerPaymentType",
    "PaymentPosition",
    "derive_payment_status",
    "signed_amount",
    "TaxMethodContext",
    "TaxMethodResolution",
    "recommend_tax_method",
    "resolve_tax_method",
]
