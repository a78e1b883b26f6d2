"""
SequenceService -- monotonic document numbers via locked counter rows.

Responsibility:
    Hands out strictly increasing integers for named sequences: the
    per-year credit-note number series and the payment-ledger insertion
    order used as a tie-break when two entries share a payment date.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by CreditNoteService (note numbers) and PaymentLedgerService
    (ledger_seq).

Invariants enforced:
    - Monotonicity: the locked counter row is the only source of the next
      value.  MAX(...) + 1 over the business table is never used, because
      two concurrent writers would read the same maximum.
    - Transactional: an increment becomes visible only when the caller
      commits.  Rolling back returns the value.

Failure modes:
    - IntegrityError on the first use of a name by two writers at once
      (handled with a savepoint rollback and re-read).

Audit relevance:
    Credit-note numbers are printed on customer documents.  A gap-free,
    per-year series lets finance account for every note issued.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # e.g. "payment_ledger", "credit_note:2024"
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Transactional sequence numbers.

    Contract:
        ``next_value(name)`` returns the next integer for ``name``; the
        increment commits with the caller's transaction.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations of
          the same name.
        - No gaps under normal operation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    PAYMENT_LEDGER = "payment_ledger"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def credit_note_sequence(year: int) -> str:
        """Name of the credit-note series for a calendar year."""
        return f"credit_note:{year}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Allocate the next value of a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.
            - The caller is inside an active transaction.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for ``sequence_name``.
            - The counter row stays locked until the transaction ends.
        """
        assert sequence_name, "sequence_name must be non-empty"

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use: create inside a savepoint so a losing race does not
            # discard the caller's pending work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                assert counter is not None

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
