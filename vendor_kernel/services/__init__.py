"""Imperative shell of the vendor finance core: flush, never commit."""

from vendor_kernel.services.base import BaseService
from vendor_kernel.services.debit_note_service import DebitNoteService
from vendor_kernel.services.notifier import TransitionEvent, TransitionNotifier, notify_safely
from vendor_kernel.services.payment_workflow_service import (
    PaymentTransitionResult,
    PaymentWorkflowService,
)
from vendor_kernel.services.reconciliation_service import (
    MatchRejection,
    ReconciliationRun,
    SoaReconciliationService,
)
from vendor_kernel.services.repository import SoftDeleteRepository
from vendor_kernel.services.sequence_service import SequenceService

__all__ = [
    "BaseService",
    "DebitNoteService",
    "MatchRejection",
    "PaymentTransitionResult",
    "PaymentWorkflowService",
    "ReconciliationRun",
    "SequenceService",
    "SoaReconciliationService",
    "SoftDeleteRepository",
    "TransitionEvent",
    "TransitionNotifier",
    "notify_safely",
]
