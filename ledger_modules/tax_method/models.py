"""
ledger_modules.tax_method.models
================================

Responsibility:
    Enums and frozen results for tax-method preferences, per-order method
    changes and bulk updates.

Architecture:
    Module layer.  The resolution, recommendation and performance types
    themselves live in ``ledger_engines.tax_method``.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class PreferenceScope(str, Enum):
    QUOTE_SPECIFIC = "quote_specific"
    COUNTRY_SPECIFIC = "country_specific"
    SYSTEM_DEFAULT = "system_default"


class ChangeType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC_UPDATE = "automatic_update"
    BULK_UPDATE = "bulk_update"
    BULK_UPDATE_FAILED = "bulk_update_failed"


class TaxMethodOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DECLINED = "declined"


@dataclass(frozen=True)
class TaxMethodChangeResult:
    status: TaxMethodOutcome
    message: str
    quote_id: UUID | None = None
    calculation_method: str | None = None
    valuation_method: str | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status != TaxMethodOutcome.DECLINED


@dataclass(frozen=True)
class PreferenceResult:
    status: TaxMethodOutcome
    message: str
    preference_id: UUID | None = None
    scope: PreferenceScope | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status != TaxMethodOutcome.DECLINED


@dataclass(frozen=True)
class BulkUpdateResult:
    """
    Outcome of ``TaxMethodService.bulk_update_method``.

    ``errors`` pairs each failed order id with its error message.
    """

    success: bool
    updated: int
    failed: int
    total_processed: int
    method_applied: str
    message: str = ""
    errors: tuple[tuple[str, str], ...] = ()

    @property
    def is_success(self) -> bool:
        return self.success
