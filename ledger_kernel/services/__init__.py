"""Kernel services: chart of accounts, journal, sequences."""

from ledger_kernel.services.chart_of_accounts import ChartOfAccounts
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "ChartOfAccounts",
    "JournalService",
    "SequenceCounter",
    "SequenceService",
]
