"""
Debit note domain types (``vendor_kernel.domain.debit_note``).

State machine::

    DRAFT -> APPROVED -> POSTED

No skips, no reversals.  A rejected note is handled by proposing a new
DRAFT that supersedes it; approved and posted notes are audit artifacts and
never move backwards.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


class DebitNoteStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    POSTED = "POSTED"


class ReasonCode(str, Enum):
    """Business reason a debit note was raised."""

    OVERPAYMENT = "OVERPAYMENT"
    PRICE_VARIANCE = "PRICE_VARIANCE"
    WHT = "WHT"
    CLAIM = "CLAIM"


DEBIT_NOTE_TRANSITIONS: dict[DebitNoteStatus, frozenset[DebitNoteStatus]] = {
    DebitNoteStatus.DRAFT: frozenset({DebitNoteStatus.APPROVED}),
    DebitNoteStatus.APPROVED: frozenset({DebitNoteStatus.POSTED}),
    DebitNoteStatus.POSTED: frozenset(),
}

# Notes in these states may still be superseded by a fresh draft.
SUPERSEDABLE_STATUSES: frozenset[DebitNoteStatus] = frozenset({
    DebitNoteStatus.DRAFT,
    DebitNoteStatus.APPROVED,
})


def validate_debit_note_transition(
    current: DebitNoteStatus | str,
    desired: DebitNoteStatus | str,
) -> bool:
    """Pure lookup in DEBIT_NOTE_TRANSITIONS; unknown states are illegal."""
    try:
        current = DebitNoteStatus(current)
        desired = DebitNoteStatus(desired)
    except ValueError:
        return False
    return desired in DEBIT_NOTE_TRANSITIONS[current]


def format_document_number(year: int, sequence: int) -> str:
    """DN-2025-000042"""
    return f"DN-{year}-{sequence:06d}"


class LedgerPostingGateway(Protocol):
    """External accounting collaborator invoked between approve and post.

    Returns the ledger entry reference on success; raises on failure.
    """

    def post_debit_note(
        self,
        *,
        debit_note_id: UUID,
        document_number: str,
        vendor_id: UUID,
        amount: Decimal,
        currency: str,
        reason_code: str,
        posted_on: datetime,
    ) -> str:
        ...
