"""
vendor_engines.matching -- Statement-of-account line matching engine.

Responsibility:
    Match one vendor statement line against the candidate ledger invoices
    of the same vendor/company.  Deterministic first, heuristic last:

    ====  ============================  ==========  =====
    Pass  Rule                          Confidence  Type
    ====  ============================  ==========  =====
    1     exact number/ccy/amount/date  1.00        deterministic
    2     date within tolerance         0.95        fuzzy
    3     normalised document number    0.90        fuzzy
    4     amount tolerance band         0.85        fuzzy
    5     document number edit distance 0.80        fuzzy
    6     partial settlement (opt-in)   0.75        fuzzy
    ====  ============================  ==========  =====

    The first pass with a hit wins.  When nothing matches, the line is
    handed to ``vendor_engines.discrepancy.classify_unmatched``.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock.

Invariants enforced:
    - Only pass 1 produces a deterministic (auto-confirmable) match.
    - More than one pass-1 hit is a ``duplicate`` discrepancy, never a
      guess between candidates.
    - Ledger invoices are read, never modified.
    - Decimal arithmetic only.

Usage:
    from vendor_engines.matching import SoaMatchingEngine

    outcome = SoaMatchingEngine().match_line(
        line=item.to_statement_line(),
        invoices=[inv.to_ledger_invoice() for inv in candidates],
        policy=policy_set.reconciliation,
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from vendor_config.schema import ReconciliationPolicy
from vendor_engines.comparison import (
    amount_within_tolerance,
    amounts_equal,
    date_difference_days,
    dates_compatible,
    levenshtein_distance,
    normalize_document_number,
    same_currency,
    strict_document_number,
)
from vendor_engines.discrepancy import (
    DiscrepancyFinding,
    classify_unmatched,
    duplicate_finding,
)
from vendor_engines.tracer import traced_engine
from vendor_kernel.domain.soa import LedgerInvoice, MatchType, StatementLine
from vendor_kernel.logging_config import get_logger

logger = get_logger("engines.matching")


@dataclass(frozen=True)
class MatchProposal:
    """The invoice a pass selected for a line."""

    invoice: LedgerInvoice
    match_type: MatchType
    match_pass: int
    confidence: Decimal
    score: int
    is_exact_match: bool = False


@dataclass(frozen=True)
class LineMatchOutcome:
    """
    Result of matching one line.

    Exactly one of ``proposal`` and ``discrepancy`` is set.
    """

    line: StatementLine
    proposal: MatchProposal | None = None
    discrepancy: DiscrepancyFinding | None = None

    @property
    def is_matched(self) -> bool:
        return self.proposal is not None

    @property
    def is_deterministic(self) -> bool:
        return (
            self.proposal is not None
            and self.proposal.match_type == MatchType.DETERMINISTIC
        )

    @property
    def amount_difference(self) -> Decimal | None:
        if self.proposal is None:
            return None
        return self.line.amount - self.proposal.invoice.amount


def _fuzzy(invoice: LedgerInvoice, match_pass: int, confidence: str) -> MatchProposal:
    conf = Decimal(confidence)
    return MatchProposal(
        invoice=invoice,
        match_type=MatchType.FUZZY,
        match_pass=match_pass,
        confidence=conf,
        score=int(conf * 100),
    )


class SoaMatchingEngine:
    """
    Multi-pass SOA matcher.

    Contract:
        Pure -- no I/O, no database access.  Candidate invoices must
        already be scoped to the line's vendor and company by the caller;
        their order decides ties in the fuzzy passes.
    Non-goals:
        - Does not persist matches or discrepancies.
        - Does not decide review outcomes; fuzzy matches are proposals.
    """

    @traced_engine("soa_matching", "1.0", fingerprint_fields=("line", "invoices"))
    def match_line(
        self,
        *,
        line: StatementLine,
        invoices: Sequence[LedgerInvoice],
        policy: ReconciliationPolicy,
    ) -> LineMatchOutcome:
        """Run the passes in order and return the first hit or a discrepancy."""
        exact = self.exact_candidates(line, invoices, policy)
        if len(exact) > 1:
            logger.info("soa_line_duplicate_candidates", extra={
                "item_id": str(line.item_id),
                "candidate_count": len(exact),
            })
            return LineMatchOutcome(
                line=line, discrepancy=duplicate_finding(line, exact, policy),
            )
        if exact:
            return LineMatchOutcome(
                line=line,
                proposal=MatchProposal(
                    invoice=exact[0],
                    match_type=MatchType.DETERMINISTIC,
                    match_pass=1,
                    confidence=Decimal("1.00"),
                    score=100,
                    is_exact_match=True,
                ),
            )

        passes: tuple[Callable[..., MatchProposal | None], ...] = (
            self._pass_date_tolerance,
            self._pass_normalized_number,
            self._pass_amount_tolerance,
            self._pass_edit_distance,
            self._pass_partial,
        )
        for run_pass in passes:
            proposal = run_pass(line, invoices, policy)
            if proposal is not None:
                logger.debug("soa_line_fuzzy_match", extra={
                    "item_id": str(line.item_id),
                    "invoice_id": str(proposal.invoice.invoice_id),
                    "match_pass": proposal.match_pass,
                })
                return LineMatchOutcome(line=line, proposal=proposal)

        return LineMatchOutcome(
            line=line,
            discrepancy=classify_unmatched(line=line, invoices=invoices, policy=policy),
        )

    # ------------------------------------------------------------------
    # Pass 1
    # ------------------------------------------------------------------

    @staticmethod
    def exact_candidates(
        line: StatementLine,
        invoices: Sequence[LedgerInvoice],
        policy: ReconciliationPolicy,
    ) -> list[LedgerInvoice]:
        """Every invoice that satisfies the deterministic rule."""
        number = strict_document_number(line.invoice_number)
        if not number:
            return []
        hits: list[LedgerInvoice] = []
        for inv in invoices:
            if strict_document_number(inv.invoice_number) != number:
                continue
            if not same_currency(inv.currency, line.currency):
                continue
            if not amounts_equal(line.amount, inv.amount, policy.amount_epsilon):
                continue
            if date_difference_days(line.invoice_date, inv.invoice_date) not in (None, 0):
                continue
            hits.append(inv)
        return hits

    # ------------------------------------------------------------------
    # Fuzzy passes
    # ------------------------------------------------------------------

    @staticmethod
    def _pass_date_tolerance(line, invoices, policy) -> MatchProposal | None:
        number = strict_document_number(line.invoice_number)
        if not number:
            return None
        for inv in invoices:
            diff = date_difference_days(line.invoice_date, inv.invoice_date)
            if (
                strict_document_number(inv.invoice_number) == number
                and same_currency(inv.currency, line.currency)
                and amounts_equal(line.amount, inv.amount, policy.amount_epsilon)
                and diff is not None
                and diff <= policy.date_tolerance_days
            ):
                return _fuzzy(inv, 2, "0.95")
        return None

    @staticmethod
    def _pass_normalized_number(line, invoices, policy) -> MatchProposal | None:
        number = normalize_document_number(line.invoice_number)
        if not number:
            return None
        for inv in invoices:
            if (
                normalize_document_number(inv.invoice_number) == number
                and same_currency(inv.currency, line.currency)
                and amounts_equal(line.amount, inv.amount, policy.amount_epsilon)
                and dates_compatible(line.invoice_date, inv.invoice_date, policy.date_tolerance_days)
            ):
                return _fuzzy(inv, 3, "0.90")
        return None

    @staticmethod
    def _pass_amount_tolerance(line, invoices, policy) -> MatchProposal | None:
        number = normalize_document_number(line.invoice_number)
        if not number:
            return None
        for inv in invoices:
            if (
                normalize_document_number(inv.invoice_number) == number
                and same_currency(inv.currency, line.currency)
                and amount_within_tolerance(
                    line.amount, inv.amount,
                    policy.absolute_tolerance, policy.percentage_tolerance,
                )
                and dates_compatible(line.invoice_date, inv.invoice_date, policy.date_tolerance_days)
            ):
                return _fuzzy(inv, 4, "0.85")
        return None

    @staticmethod
    def _pass_edit_distance(line, invoices, policy) -> MatchProposal | None:
        number = normalize_document_number(line.invoice_number)
        if not number or policy.max_edit_distance <= 0:
            return None
        best: tuple[int, LedgerInvoice] | None = None
        for inv in invoices:
            other = normalize_document_number(inv.invoice_number)
            if not other:
                continue
            if not (
                same_currency(inv.currency, line.currency)
                and amounts_equal(line.amount, inv.amount, policy.amount_epsilon)
                and dates_compatible(line.invoice_date, inv.invoice_date, policy.date_tolerance_days)
            ):
                continue
            distance = levenshtein_distance(number, other)
            if distance <= policy.max_edit_distance and (best is None or distance < best[0]):
                best = (distance, inv)
        if best is None:
            return None
        return _fuzzy(best[1], 5, "0.80")

    @staticmethod
    def _pass_partial(line, invoices, policy) -> MatchProposal | None:
        if not (policy.allow_partial or line.allow_partial):
            return None
        number = normalize_document_number(line.invoice_number)
        if not number:
            return None
        for inv in invoices:
            if (
                normalize_document_number(inv.invoice_number) == number
                and same_currency(inv.currency, line.currency)
                and Decimal(0) < line.amount < inv.amount
            ):
                return _fuzzy(inv, 6, "0.75")
        return None
