"""
Module: vendor_kernel.models.debit_note
Responsibility: ORM persistence for debit notes raised against vendors.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - status limited to DRAFT / APPROVED / POSTED (CHECK constraint); the
      transition table lives in domain.debit_note and is enforced by
      DebitNoteService through conditional updates.
    - amount > 0.
    - document_number is unique.
    - A note is superseded at most once: UNIQUE(supersedes_id).

Audit relevance:
    Debit notes are never deleted (absent from the soft-delete registry).
    Corrections are made by superseding, which leaves the original row
    intact.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vendor_kernel.db.base import ActorIdType, Base, TimestampMixin, UUIDString
from vendor_kernel.domain.actor import ActorId


class DebitNoteModel(TimestampMixin, Base):
    """Vendor debit note."""

    __tablename__ = "debit_notes"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'APPROVED', 'POSTED')",
            name="ck_debit_notes_status",
        ),
        CheckConstraint(
            "reason_code IN ('OVERPAYMENT', 'PRICE_VARIANCE', 'WHT', 'CLAIM')",
            name="ck_debit_notes_reason_code",
        ),
        CheckConstraint("amount > 0", name="ck_debit_notes_amount_positive"),
        Index("ix_debit_notes_vendor_status", "vendor_id", "status"),
    )

    debit_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), primary_key=True, default=uuid4,
    )
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    statement_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    discrepancy_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("soa_discrepancies.discrepancy_id"),
        nullable=True,
    )
    document_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    reason_code: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="DRAFT")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[ActorId] = mapped_column(ActorIdType(), nullable=False)
    approved_by: Mapped[ActorId | None] = mapped_column(ActorIdType(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    posted_by: Mapped[ActorId | None] = mapped_column(ActorIdType(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Ledger side of the two-phase post
    ledger_entry_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ledger_posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    supersedes_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("debit_notes.debit_note_id"),
        nullable=True,
        unique=True,
    )

    def __repr__(self) -> str:
        return f"<DebitNote {self.document_number} {self.amount} {self.status}>"
