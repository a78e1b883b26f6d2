"""Reconciliation: statement sessions, matching and close-out."""

from ledger_modules.reconciliation.models import (
    ReconciliationOutcome,
    ReconciliationResult,
    ReconciliationStatus,
    ResolutionAction,
    StatementLine,
)
from ledger_modules.reconciliation.service import ReconciliationService

__all__ = [
    "ReconciliationService",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "ReconciliationStatus",
    "ResolutionAction",
    "StatementLine",
]
