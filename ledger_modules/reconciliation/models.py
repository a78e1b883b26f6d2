"""
ledger_modules.reconciliation.models
====================================

Responsibility:
    Enums, statement-line input type and frozen results for gateway/bank
    statement reconciliation sessions.

Architecture:
    Module layer.  In-memory DTOs only; persistence lives in ``orm.py``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_engines.matching import MatchType


class ReconciliationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISCREPANCY_FOUND = "discrepancy_found"
    ABANDONED = "abandoned"


class ReconciliationItemStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    DISCREPANCY = "discrepancy"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ResolutionAction(str, Enum):
    ACCEPT_DIFFERENCE = "accept_difference"
    CREATE_ADJUSTMENT = "create_adjustment"
    INVESTIGATE = "investigate"
    WRITE_OFF = "write_off"
    PENDING_TRANSACTION = "pending_transaction"


class ReconciliationOutcome(str, Enum):
    STARTED = "started"
    UPDATED = "updated"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    DECLINED = "declined"


@dataclass(frozen=True)
class StatementLine:
    """One line of a gateway or bank statement, as supplied by the caller.

    ``amount`` is a positive magnitude; ``is_debit`` marks money leaving
    the account (refunds, fees).
    """

    amount: Decimal
    statement_date: date | None = None
    reference: str | None = None
    description: str | None = None
    is_debit: bool = False


@dataclass(frozen=True)
class ReconciliationCounters:
    matched_count: int
    unmatched_system_count: int
    unmatched_statement_count: int
    total_matched_amount: Decimal

    @property
    def item_count(self) -> int:
        return self.matched_count + self.unmatched_system_count + self.unmatched_statement_count

    @property
    def unmatched_count(self) -> int:
        return self.unmatched_system_count + self.unmatched_statement_count


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of a reconciliation operation.

    ``counters`` reflect the session after the operation; ``affected``
    is the number of items inserted or matched by this call.
    """

    status: ReconciliationOutcome
    message: str
    session_id: UUID | None = None
    session_status: ReconciliationStatus | None = None
    counters: ReconciliationCounters | None = None
    affected: int = 0
    closing_difference: Decimal | None = None
    error_code: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status != ReconciliationOutcome.DECLINED


@dataclass(frozen=True)
class ReconciliationItemView:
    item_id: UUID
    is_system: bool
    matched: bool
    match_type: MatchType
    system_amount: Decimal | None
    statement_amount: Decimal | None
    discrepancy_amount: Decimal
    status: ReconciliationItemStatus
