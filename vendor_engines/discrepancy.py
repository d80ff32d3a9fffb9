"""
vendor_engines.discrepancy -- Discrepancy classification and severity banding.

Responsibility:
    Decide *why* a statement line failed to match (currency mismatch,
    amount mismatch, date mismatch, missing invoice) and how severe the
    variance is.  Severity thresholds come from ``ReconciliationPolicy``
    so they can be tuned per tenant.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock.

Invariants enforced:
    - Structural discrepancies (missing_invoice, duplicate,
      currency_mismatch) are always HIGH.
    - Otherwise severity is a pure function of
      ``|difference_amount| / item amount`` against
      ``severity_low_max_ratio`` (inclusive) and
      ``severity_medium_max_ratio`` (inclusive).
    - ``difference_amount`` is signed: ``soa_amount - invoice_amount``
      (or the full SOA amount when no invoice exists).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from vendor_config.schema import ReconciliationPolicy
from vendor_engines.comparison import (
    amount_within_tolerance,
    amounts_equal,
    dates_compatible,
    normalize_document_number,
    same_currency,
)
from vendor_engines.tracer import traced_engine
from vendor_kernel.domain.soa import (
    STRUCTURAL_DISCREPANCIES,
    DiscrepancyType,
    LedgerInvoice,
    Severity,
    StatementLine,
)


@dataclass(frozen=True)
class DiscrepancyFinding:
    """A variance the reconciliation service should persist as SoaDiscrepancy."""

    discrepancy_type: DiscrepancyType
    severity: Severity
    description: str
    difference_amount: Decimal | None = None
    invoice_id: UUID | None = None


def assign_severity(
    discrepancy_type: DiscrepancyType,
    difference_amount: Decimal | None,
    item_amount: Decimal,
    policy: ReconciliationPolicy,
) -> Severity:
    """Severity band for a discrepancy."""
    if discrepancy_type in STRUCTURAL_DISCREPANCIES:
        return Severity.HIGH
    if difference_amount is None or difference_amount == 0:
        return Severity.LOW
    if item_amount <= 0:
        return Severity.HIGH

    ratio = abs(difference_amount) / item_amount
    if ratio <= policy.severity_low_max_ratio:
        return Severity.LOW
    if ratio <= policy.severity_medium_max_ratio:
        return Severity.MEDIUM
    return Severity.HIGH


def _finding(
    discrepancy_type: DiscrepancyType,
    description: str,
    line: StatementLine,
    policy: ReconciliationPolicy,
    difference_amount: Decimal | None = None,
    invoice_id: UUID | None = None,
) -> DiscrepancyFinding:
    return DiscrepancyFinding(
        discrepancy_type=discrepancy_type,
        severity=assign_severity(discrepancy_type, difference_amount, line.amount, policy),
        description=description,
        difference_amount=difference_amount,
        invoice_id=invoice_id,
    )


def duplicate_finding(
    line: StatementLine,
    candidates: Sequence[LedgerInvoice],
    policy: ReconciliationPolicy,
) -> DiscrepancyFinding:
    """More than one ledger invoice matched the line exactly."""
    return _finding(
        DiscrepancyType.DUPLICATE,
        (
            f"{len(candidates)} ledger invoices match '{line.invoice_number}' "
            f"{line.amount} {line.currency} exactly"
        ),
        line,
        policy,
    )


def rejected_match_finding(
    line: StatementLine,
    invoice: LedgerInvoice,
    reason: str | None,
    policy: ReconciliationPolicy,
) -> DiscrepancyFinding:
    """A reviewer rejected the only remaining proposed match for the line."""
    description = f"Proposed match to invoice '{invoice.invoice_number}' rejected"
    if reason:
        description = f"{description}: {reason}"
    return _finding(
        DiscrepancyType.MATCH_REJECTED,
        description,
        line,
        policy,
        difference_amount=line.amount - invoice.amount,
        invoice_id=invoice.invoice_id,
    )


@traced_engine("soa_discrepancy", "1.0", fingerprint_fields=("line", "invoices"))
def classify_unmatched(
    *,
    line: StatementLine,
    invoices: Sequence[LedgerInvoice],
    policy: ReconciliationPolicy,
) -> DiscrepancyFinding:
    """
    Classify a line that no matching pass accepted.

    Only invoices whose normalised number equals the line's are
    considered.  Among those, a same-currency candidate is preferred; the
    closest amount wins.
    """
    number = normalize_document_number(line.invoice_number)
    same_number = [
        inv for inv in invoices
        if number and normalize_document_number(inv.invoice_number) == number
    ]

    if not same_number:
        return _finding(
            DiscrepancyType.MISSING_INVOICE,
            f"No ledger invoice found for '{line.invoice_number}'",
            line,
            policy,
            difference_amount=line.amount,
        )

    same_ccy = [inv for inv in same_number if same_currency(inv.currency, line.currency)]
    if not same_ccy:
        invoice = same_number[0]
        return _finding(
            DiscrepancyType.CURRENCY_MISMATCH,
            (
                f"Invoice '{invoice.invoice_number}' is in {invoice.currency}, "
                f"statement line is in {line.currency}"
            ),
            line,
            policy,
            invoice_id=invoice.invoice_id,
        )

    invoice = min(same_ccy, key=lambda inv: abs(line.amount - inv.amount))
    difference = line.amount - invoice.amount
    amount_agrees = amounts_equal(line.amount, invoice.amount, policy.amount_epsilon) or (
        amount_within_tolerance(
            line.amount,
            invoice.amount,
            policy.absolute_tolerance,
            policy.percentage_tolerance,
        )
    )

    if amount_agrees and not dates_compatible(
        line.invoice_date, invoice.invoice_date, policy.date_tolerance_days,
    ):
        return _finding(
            DiscrepancyType.DATE_MISMATCH,
            (
                f"Invoice '{invoice.invoice_number}' dated {invoice.invoice_date}, "
                f"statement line dated {line.invoice_date}"
            ),
            line,
            policy,
            difference_amount=difference,
            invoice_id=invoice.invoice_id,
        )

    return _finding(
        DiscrepancyType.AMOUNT_MISMATCH,
        (
            f"Invoice '{invoice.invoice_number}' amount {invoice.amount} differs "
            f"from statement amount {line.amount} by {difference}"
        ),
        line,
        policy,
        difference_amount=difference,
        invoice_id=invoice.invoice_id,
    )
