"""Tax method: per-order resolution, preferences, recommendations, audit."""

from ledger_modules.tax_method.models import (
    BulkUpdateResult,
    ChangeType,
    PreferenceResult,
    PreferenceScope,
    TaxMethodChangeResult,
    TaxMethodOutcome,
)
from ledger_modules.tax_method.service import TaxMethodService

__all__ = [
    "TaxMethodService",
    "BulkUpdateResult",
    "ChangeType",
    "PreferenceResult",
    "PreferenceScope",
    "TaxMethodChangeResult",
    "TaxMethodOutcome",
]
