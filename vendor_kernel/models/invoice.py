"""
Module: vendor_kernel.models.invoice
Responsibility: ORM mapping of ledger invoices, the match target of SOA
    reconciliation.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    The reconciliation core reads this table and never writes it; rows are
    owned by the external ledger.  Invoices are not soft-deletable through
    the repository (absent from the registry).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from vendor_kernel.db.base import Base, TimestampMixin, UUIDString
from vendor_kernel.domain.soa import LedgerInvoice


class InvoiceModel(TimestampMixin, Base):
    """Ledger invoice (read-only from the core's perspective)."""

    __tablename__ = "ledger_invoices"

    __table_args__ = (
        Index("ix_ledger_invoices_vendor_company", "vendor_id", "company_id"),
        Index("ix_ledger_invoices_number", "invoice_number"),
    )

    invoice_id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.amount} {self.currency}>"

    def to_ledger_invoice(self) -> LedgerInvoice:
        return LedgerInvoice(
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            amount=Decimal(self.amount),
            currency=self.currency,
            invoice_date=self.invoice_date,
        )
