"""
Module: vendor_kernel.models.registry
Responsibility: Closed registry of entities that may be soft-deleted.

Each variant names the model class, its key column and whether the table
tracks ``deleted_by``.  SoftDeleteRepository consults this registry before
every soft_delete / restore; a model without a variant cannot be
soft-deleted at all.

Deliberately absent:
    DebitNoteModel        -- audit artifact, superseded never deleted
    SoaDiscrepancyModel   -- resolved never deleted
    InvoiceModel          -- owned by the external ledger
"""

from __future__ import annotations

from enum import Enum

from vendor_kernel.db.base import Base
from vendor_kernel.models.payment import PaymentModel
from vendor_kernel.models.soa import SoaItemModel, SoaMatchModel


class SoftDeleteEntity(Enum):
    SOA_ITEM = (SoaItemModel, "id", True)
    SOA_MATCH = (SoaMatchModel, "match_id", False)
    PAYMENT = (PaymentModel, "payment_id", True)

    def __init__(self, model: type[Base], key_column: str, tracks_deleted_by: bool):
        self.model = model
        self.key_column = key_column
        self.tracks_deleted_by = tracks_deleted_by

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    @classmethod
    def for_model(cls, model: type[Base]) -> SoftDeleteEntity | None:
        for entity in cls:
            if entity.model is model:
                return entity
        return None
