"""
ledger_engines.matching -- statement-to-ledger matching for reconciliation.

Responsibility:
    Pair gateway/bank statement lines with system ledger lines.  The rule
    is exact: amounts must be equal, and either the references or the
    dates must be equal too.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Each system line and each statement line is used at most once.
    - Deterministic: statement lines are visited in their given order and
      each takes the first eligible system line in its given order, so the
      same inputs always produce the same pairs.

Failure modes:
    (none) -- unmatched lines are simply left out of the result.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_engines.tracer import traced_engine


class MatchType(str, Enum):
    EXACT = "exact"
    MANUAL = "manual"
    PARTIAL = "partial"
    SUGGESTED = "suggested"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class MatchCandidate:
    """One side of a potential match (a system line or a statement line)."""

    item_id: UUID
    amount: Decimal
    date: date | None = None
    reference: str | None = None


@dataclass(frozen=True)
class MatchPair:
    statement_item_id: UUID
    system_item_id: UUID
    match_type: MatchType = MatchType.EXACT
    confidence: Decimal = Decimal("1.0")


def is_exact_match(statement: MatchCandidate, system: MatchCandidate) -> bool:
    """Same amount, and same reference or same date."""
    if statement.amount != system.amount:
        return False
    if statement.reference and statement.reference == system.reference:
        return True
    return statement.date is not None and statement.date == system.date


class StatementMatcher:
    """
    Exact-match pairing of statement lines with system lines.

    Non-goals:
        - No tolerance or fuzzy scoring; near misses are left for manual
          matching.
    """

    @traced_engine(
        "statement_matching", "1.0", fingerprint_fields=("statement_lines", "system_lines")
    )
    def match(
        self,
        *,
        statement_lines: Sequence[MatchCandidate],
        system_lines: Sequence[MatchCandidate],
    ) -> tuple[MatchPair, ...]:
        available = list(system_lines)
        pairs: list[MatchPair] = []

        for statement in statement_lines:
            for index, system in enumerate(available):
                if is_exact_match(statement, system):
                    pairs.append(
                        MatchPair(
                            statement_item_id=statement.item_id,
                            system_item_id=system.item_id,
                        )
                    )
                    del available[index]
                    break

        return tuple(pairs)
