"""Credit notes: numbered store credit, applications and history."""

from ledger_modules.credit_notes.models import (
    CreditApplicationResult,
    CreditNoteOutcome,
    CreditNoteResult,
    CreditNoteStatus,
)
from ledger_modules.credit_notes.service import CreditNoteService

__all__ = [
    "CreditNoteService",
    "CreditApplicationResult",
    "CreditNoteOutcome",
    "CreditNoteResult",
    "CreditNoteStatus",
]
