"""ORM models for the vendor finance core."""

from vendor_kernel.models.debit_note import DebitNoteModel
from vendor_kernel.models.invoice import InvoiceModel
from vendor_kernel.models.payment import PaymentModel
from vendor_kernel.models.registry import SoftDeleteEntity
from vendor_kernel.models.sequence import SequenceCounter
from vendor_kernel.models.soa import SoaDiscrepancyModel, SoaItemModel, SoaMatchModel

__all__ = [
    "DebitNoteModel",
    "InvoiceModel",
    "PaymentModel",
    "SequenceCounter",
    "SoaDiscrepancyModel",
    "SoaItemModel",
    "SoaMatchModel",
    "SoftDeleteEntity",
]
