"""
Module: vendor_kernel.models.sequence
Responsibility: Named counter rows backing document number allocation.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    current_value only ever increases; the row for a name is the sole
    source of the next value (never MAX(...) + 1 over the documents).
"""

from __future__ import annotations

from sqlalchemy import BigInteger, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from vendor_kernel.db.base import Base


class SequenceCounter(Base):
    """One row per named sequence (e.g. ``debit_note:2025``)."""

    __tablename__ = "sequence_counters"

    __table_args__ = (
        CheckConstraint("current_value >= 0", name="ck_sequence_counters_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
