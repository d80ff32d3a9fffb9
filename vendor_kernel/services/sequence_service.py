"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Strictly increasing numbers for document numbering (debit notes are
    numbered ``DN-<year>-<seq>`` with one sequence per year).

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value; the aggregate-max-plus-one pattern is never used.
    - The increment is part of the caller's transaction: rollback
      returns the value.

Failure modes:
    - IntegrityError when two transactions create the same counter row
      concurrently; the loser's caller retries the whole operation.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from vendor_kernel.logging_config import get_logger
from vendor_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named sequences.

    Usage:
        seq = SequenceService(session).next_value("debit_note:2025")
    """

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter row, increment it and return the new value."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing (None if never allocated)."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
