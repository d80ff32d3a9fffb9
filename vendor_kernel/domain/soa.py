"""
Statement-of-account domain types (``vendor_kernel.domain.soa``).

Pure value objects and enumerations shared by the matching engine
(``vendor_engines``) and the reconciliation service.  ZERO I/O.

Lifecycles
----------
SoaItem:        extracted -> matched | unmatched | disputed
                (mutated only by the reconciliation service)
SoaMatch:       proposed -> confirmed | rejected
                (deterministic hits are created directly as confirmed)
SoaDiscrepancy: open -> resolved
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class SoaItemStatus(str, Enum):
    EXTRACTED = "extracted"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    DISPUTED = "disputed"


class ExtractionMethod(str, Enum):
    AI_PARSE = "ai_parse"
    MANUAL = "manual"
    CSV_IMPORT = "csv_import"


class MatchType(str, Enum):
    DETERMINISTIC = "deterministic"
    FUZZY = "fuzzy"


class MatchStatus(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class DiscrepancyType(str, Enum):
    AMOUNT_MISMATCH = "amount_mismatch"
    MISSING_INVOICE = "missing_invoice"
    DUPLICATE = "duplicate"
    DATE_MISMATCH = "date_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"
    MATCH_REJECTED = "match_rejected"


# Variances that are not a matter of degree: severity is always high.
STRUCTURAL_DISCREPANCIES: frozenset[DiscrepancyType] = frozenset({
    DiscrepancyType.MISSING_INVOICE,
    DiscrepancyType.DUPLICATE,
    DiscrepancyType.CURRENCY_MISMATCH,
})


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DiscrepancyStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class ResolutionAction(str, Enum):
    CORRECTED = "corrected"
    WAIVED = "waived"
    ESCALATED = "escalated"
    IGNORED = "ignored"


@dataclass(frozen=True)
class StatementLineInput:
    """One line as extracted from a vendor statement, before persistence."""

    invoice_number: str | None
    amount: Decimal
    currency: str = "USD"
    invoice_date: date | None = None
    line_number: int | None = None
    description: str | None = None
    extraction_method: ExtractionMethod = ExtractionMethod.AI_PARSE
    allow_partial: bool = False


@dataclass(frozen=True)
class StatementLine:
    """Engine view of a persisted SoaItem."""

    item_id: UUID
    invoice_number: str | None
    amount: Decimal
    currency: str
    invoice_date: date | None = None
    allow_partial: bool = False


@dataclass(frozen=True)
class LedgerInvoice:
    """Engine view of a ledger invoice (read-only match target)."""

    invoice_id: UUID
    invoice_number: str | None
    amount: Decimal
    currency: str
    invoice_date: date | None = None


@dataclass(frozen=True)
class StatementSummary:
    """Reconciliation roll-up for one statement (case)."""

    case_id: UUID
    total_items: int
    matched_items: int
    unmatched_items: int
    disputed_items: int
    pending_items: int
    total_amount: Decimal
    matched_amount: Decimal
    unmatched_amount: Decimal
    open_discrepancies: int
    discrepancy_amount: Decimal
    by_type: dict[str, int] = field(default_factory=dict)

    @property
    def fully_reconciled(self) -> bool:
        return self.total_items > 0 and self.matched_items == self.total_items
