"""
Module: vendor_kernel.models.soa
Responsibility: ORM persistence for statement-of-account reconciliation:
    statement lines (SoaItem), line-to-invoice matches (SoaMatch) and
    discrepancies (SoaDiscrepancy).

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Status columns are limited to their enum values by CHECK constraints.
    - A SoaItem has at most one confirmed SoaMatch: partial unique index on
      (soa_item_id) WHERE status = 'confirmed'.  The service checks first
      and the index backs it up.
    - A discrepancy's resolution_action and resolved_at are either both
      NULL (open) or both set (resolved).

Audit relevance:
    SoaItems and SoaMatches are soft-deleted, never hard-deleted in normal
    operation.  Discrepancies are not soft-deletable at all: they are
    resolved, and the resolution is the audit record.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from vendor_kernel.db.base import (
    ActorIdType,
    Base,
    DeletedByMixin,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDString,
)
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.soa import StatementLine


class SoaItemModel(DeletedByMixin, TimestampMixin, Base):
    """One vendor statement line."""

    __tablename__ = "soa_items"

    __table_args__ = (
        CheckConstraint(
            "status IN ('extracted', 'matched', 'unmatched', 'disputed')",
            name="ck_soa_items_status",
        ),
        CheckConstraint("amount >= 0", name="ck_soa_items_amount_non_negative"),
        Index("ix_soa_items_case_status", "case_id", "status"),
        Index("ix_soa_items_vendor_company", "vendor_id", "company_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
    case_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    line_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default="ai_parse",
    )
    allow_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="extracted")
    created_by: Mapped[ActorId | None] = mapped_column(ActorIdType(), nullable=True)

    def __repr__(self) -> str:
        return f"<SoaItem {self.id} {self.invoice_number} status={self.status}>"

    def to_statement_line(self) -> StatementLine:
        return StatementLine(
            item_id=self.id,
            invoice_number=self.invoice_number,
            amount=Decimal(self.amount),
            currency=self.currency_code,
            invoice_date=self.invoice_date,
            allow_partial=self.allow_partial,
        )


class SoaMatchModel(SoftDeleteMixin, TimestampMixin, Base):
    """Link between one SoaItem and one ledger invoice."""

    __tablename__ = "soa_matches"

    __table_args__ = (
        CheckConstraint(
            "match_type IN ('deterministic', 'fuzzy')",
            name="ck_soa_matches_type",
        ),
        CheckConstraint(
            "status IN ('proposed', 'confirmed', 'rejected')",
            name="ck_soa_matches_status",
        ),
        CheckConstraint(
            "match_confidence >= 0 AND match_confidence <= 1",
            name="ck_soa_matches_confidence_range",
        ),
        Index("ix_soa_matches_item_status", "soa_item_id", "status"),
        Index(
            "uq_soa_matches_one_confirmed",
            "soa_item_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    match_id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
    soa_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("soa_items.id"), nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_invoices.invoice_id"), nullable=False,
    )
    match_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_exact_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_confidence: Mapped[Decimal] = mapped_column(nullable=False)
    match_score: Mapped[int] = mapped_column(Integer, nullable=False)
    match_pass: Mapped[int] = mapped_column(Integer, nullable=False)
    soa_amount: Mapped[Decimal] = mapped_column(nullable=False)
    invoice_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="proposed")
    matched_at: Mapped[datetime] = mapped_column(nullable=False)
    reviewed_by: Mapped[ActorId | None] = mapped_column(ActorIdType(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def amount_difference(self) -> Decimal:
        return Decimal(self.soa_amount) - Decimal(self.invoice_amount)

    def __repr__(self) -> str:
        return (
            f"<SoaMatch {self.match_id} item={self.soa_item_id} "
            f"{self.match_type} status={self.status}>"
        )


class SoaDiscrepancyModel(TimestampMixin, Base):
    """Unresolved (or resolved) variance raised by reconciliation."""

    __tablename__ = "soa_discrepancies"

    __table_args__ = (
        CheckConstraint(
            "severity IN ('low', 'medium', 'high')",
            name="ck_soa_discrepancies_severity",
        ),
        CheckConstraint(
            "status IN ('open', 'resolved')",
            name="ck_soa_discrepancies_status",
        ),
        CheckConstraint(
            "(status = 'open' AND resolution_action IS NULL AND resolved_at IS NULL) OR "
            "(status = 'resolved' AND resolution_action IS NOT NULL AND resolved_at IS NOT NULL)",
            name="ck_soa_discrepancies_resolution_pair",
        ),
        Index("ix_soa_discrepancies_case_status", "case_id", "status"),
    )

    discrepancy_id: Mapped[UUID] = mapped_column(
        UUIDString(), primary_key=True, default=uuid4,
    )
    case_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    soa_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("soa_items.id"), nullable=True,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_invoices.invoice_id"), nullable=True,
    )
    discrepancy_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    difference_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    detected_at: Mapped[datetime] = mapped_column(nullable=False)
    resolution_action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[ActorId | None] = mapped_column(ActorIdType(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SoaDiscrepancy {self.discrepancy_id} {self.discrepancy_type} "
            f"{self.severity} status={self.status}>"
        )
