"""
Module: ledger_engines.allocation
Responsibility:
    Split a refund amount across the completed payments of an order,
    most recent payment first, never taking more from a payment than it
    still has available.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_allocated + unallocated == requested amount.
    - No line exceeds its source's remaining capacity
      (source amount - amounts already allocated to live refund items).
    - Ordering is deterministic: payment_date DESC, then sequence DESC
      (later insertion wins a tie).

Failure modes:
    - ValueError when the requested amount is not positive.

Audit relevance:
    Each allocation line becomes a RefundItem tied to one source payment,
    which is what lets a partial refund be pushed back through the gateway
    that originally took the money.

Usage:
    from ledger_engines.allocation import RefundAllocationEngine, RefundSource

    result = RefundAllocationEngine().allocate(
        amount=Decimal("50.00"),
        sources=[RefundSource(source_id=p1, amount=Decimal("30"), ...), ...],
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class RefundSource:
    """
    A completed payment that can fund a refund.

    Guarantees:
        - ``already_allocated`` never exceeds ``amount``.
    """

    source_id: UUID
    amount: Decimal
    payment_date: datetime
    sequence: int = 0
    already_allocated: Decimal = Decimal("0")
    gateway_code: str | None = None

    def __post_init__(self) -> None:
        if self.amount < Decimal("0"):
            raise ValueError("Source amount cannot be negative")
        if self.already_allocated > self.amount:
            raise ValueError(
                f"Source {self.source_id} is over-allocated: "
                f"{self.already_allocated} > {self.amount}"
            )

    @property
    def remaining_capacity(self) -> Decimal:
        return self.amount - self.already_allocated


@dataclass(frozen=True)
class RefundAllocationLine:
    source_id: UUID
    allocated: Decimal
    gateway_code: str | None = None


@dataclass(frozen=True)
class RefundAllocationResult:
    """
    Complete allocation result.

    Guarantees:
        - ``total_allocated + unallocated == requested``.
    """

    requested: Decimal
    lines: tuple[RefundAllocationLine, ...]
    total_allocated: Decimal
    unallocated: Decimal

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated == Decimal("0")

    @property
    def allocation_count(self) -> int:
        return len(self.lines)


def lifo_order(sources: Sequence[RefundSource]) -> list[RefundSource]:
    """Most recent payment first; later sequence first on equal dates."""
    return sorted(sources, key=lambda s: (s.payment_date, s.sequence), reverse=True)


class RefundAllocationEngine:
    """
    Greedy most-recent-first refund allocation.

    Contract:
        Pure function of (amount, sources).  No I/O, no database access.

    Non-goals:
        - Does not filter sources by type or status; callers pass only the
          order's completed customer payments.
        - Does not convert currencies.
    """

    @traced_engine("refund_allocation", "1.0", fingerprint_fields=("amount", "sources"))
    def allocate(
        self,
        *,
        amount: Decimal,
        sources: Sequence[RefundSource],
    ) -> RefundAllocationResult:
        assert isinstance(amount, Decimal), "amount must be Decimal, not float"
        if amount <= Decimal("0"):
            raise ValueError(f"Refund amount must be positive, got {amount}")

        remaining = amount
        lines: list[RefundAllocationLine] = []

        for source in lifo_order(sources):
            if remaining <= Decimal("0"):
                break
            take = min(remaining, source.remaining_capacity)
            if take <= Decimal("0"):
                continue
            lines.append(
                RefundAllocationLine(
                    source_id=source.source_id,
                    allocated=take,
                    gateway_code=source.gateway_code,
                )
            )
            remaining -= take

        total = amount - remaining
        if remaining > Decimal("0"):
            logger.warning(
                "refund_allocation_short",
                extra={
                    "requested": str(amount),
                    "allocated": str(total),
                    "source_count": len(sources),
                },
            )

        return RefundAllocationResult(
            requested=amount,
            lines=tuple(lines),
            total_allocated=total,
            unallocated=remaining,
        )
