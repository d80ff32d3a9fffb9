"""
Module: vendor_kernel.models.payment
Responsibility: ORM persistence for vendor payments and their embedded
    approval workflow document.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - ``workflow_data`` holds one PaymentWorkflow document (JSON).  It is
      the source of truth for state, history and approvals.
    - ``status`` mirrors ``workflow_data['current_state']``.  It is written
      only in the same UPDATE that writes the workflow, never on its own,
      and exists so the conditional update can guard on it.
    - ``workflow_version`` increments on every workflow write; the guard
      ``WHERE status = :expected AND workflow_version = :v`` makes a
      concurrent writer lose instead of overwrite.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vendor_kernel.db.base import ActorIdType, Base, DeletedByMixin, TimestampMixin, UUIDString
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.payment_workflow import PaymentWorkflow


class PaymentModel(DeletedByMixin, TimestampMixin, Base):
    """Vendor payment."""

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', 'rejected', "
            "'scheduled', 'released', 'completed')",
            name="ck_payments_status",
        ),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_vendor_status", "vendor_id", "status"),
    )

    payment_id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_by: Mapped[ActorId] = mapped_column(ActorIdType(), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    workflow_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    workflow_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    @property
    def workflow(self) -> PaymentWorkflow | None:
        if not self.workflow_data:
            return None
        return PaymentWorkflow.from_dict(self.workflow_data)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_id} {self.amount} {self.currency} status={self.status}>"
