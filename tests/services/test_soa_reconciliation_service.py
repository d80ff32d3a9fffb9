"""
Tests for SoaReconciliationService.

Verifies:
- Ingestion validation and line numbering
- Deterministic matches are confirmed and the item matched
- Fuzzy matches are proposed and wait for review
- Unmatched items raise a discrepancy and become unmatched
- Reviewer actions: confirm, reject (disputing the item), resolve
- At most one confirmed match per item
- Statement roll-up and tenant policy resolution
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from vendor_kernel.domain.soa import (
    DiscrepancyStatus,
    DiscrepancyType,
    MatchStatus,
    ResolutionAction,
    Severity,
    SoaItemStatus,
    StatementLineInput,
)
from vendor_kernel.exceptions import (
    EntityNotFoundError,
    InvalidCurrencyError,
    InvalidStateError,
    ValidationError,
)
from vendor_kernel.services.reconciliation_service import SoaReconciliationService

from tests.conftest import SECOND_ACTOR, TEST_ACTOR

JAN_10 = date(2025, 1, 10)


def stmt_line(number, amount, when=JAN_10, currency="USD", **kw):
    return StatementLineInput(
        invoice_number=number,
        amount=Decimal(amount),
        currency=currency,
        invoice_date=when,
        **kw,
    )


@pytest.fixture
def submit(reconciliation_service, case_id, vendor_id, company_id):
    def _submit(*lines, tenant_id=None):
        return reconciliation_service.submit_statement(
            case_id, vendor_id, company_id, list(lines), TEST_ACTOR, tenant_id=tenant_id,
        )

    return _submit


# =========================================================================
# Ingestion
# =========================================================================


class TestIngestion:

    def test_lines_persisted_as_extracted(self, reconciliation_service, case_id, vendor_id, company_id):
        items = reconciliation_service.ingest_statement(
            case_id, vendor_id, company_id,
            [stmt_line(" INV-1 ", "10.00"), stmt_line("INV-2", "20.00", line_number=7)],
            TEST_ACTOR,
        )
        assert [i.status for i in items] == ["extracted", "extracted"]
        assert [i.line_number for i in items] == [1, 7]
        assert items[0].invoice_number == "INV-1"
        assert items[0].created_by.value == TEST_ACTOR

    def test_empty_statement_rejected(self, reconciliation_service, case_id, vendor_id, company_id):
        with pytest.raises(ValidationError):
            reconciliation_service.ingest_statement(case_id, vendor_id, company_id, [], TEST_ACTOR)

    def test_negative_amount_rejected(self, reconciliation_service, case_id, vendor_id, company_id):
        with pytest.raises(ValidationError) as exc_info:
            reconciliation_service.ingest_statement(
                case_id, vendor_id, company_id, [stmt_line("INV-1", "-1.00")], TEST_ACTOR,
            )
        assert exc_info.value.field == "lines[0].amount"

    def test_float_amount_rejected(self, reconciliation_service, case_id, vendor_id, company_id):
        line = StatementLineInput(invoice_number="INV-1", amount=10.5)
        with pytest.raises(ValidationError):
            reconciliation_service.ingest_statement(case_id, vendor_id, company_id, [line], TEST_ACTOR)

    def test_unknown_currency_rejected(self, reconciliation_service, case_id, vendor_id, company_id):
        with pytest.raises(InvalidCurrencyError):
            reconciliation_service.ingest_statement(
                case_id, vendor_id, company_id, [stmt_line("INV-1", "1.00", currency="XXY")], TEST_ACTOR,
            )

    def test_missing_actor_rejected(self, reconciliation_service, case_id, vendor_id, company_id):
        with pytest.raises(ValidationError):
            reconciliation_service.ingest_statement(
                case_id, vendor_id, company_id, [stmt_line("INV-1", "1.00")], None,
            )


# =========================================================================
# Matching
# =========================================================================


class TestReconcile:

    def test_deterministic_match_confirmed(self, submit, create_invoice):
        inv = create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        run = submit(stmt_line("INV-001", "100.00"))

        assert len(run.confirmed_matches) == 1
        match = run.confirmed_matches[0]
        assert match.invoice_id == inv.invoice_id
        assert match.match_type == "deterministic"
        assert match.is_exact_match is True
        assert match.match_confidence == Decimal("1.00")
        assert run.items[0].status == SoaItemStatus.MATCHED.value
        assert run.discrepancies == ()

    def test_fuzzy_match_proposed(self, submit, create_invoice):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        run = submit(stmt_line("INV 001", "100.00"))

        assert len(run.proposed_matches) == 1
        assert run.proposed_matches[0].match_pass == 3
        assert run.items[0].status == SoaItemStatus.EXTRACTED.value

    def test_no_match_raises_discrepancy(self, submit, create_invoice):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        run = submit(stmt_line("INV-404", "75.00"))

        assert run.matches == ()
        assert run.items[0].status == SoaItemStatus.UNMATCHED.value
        (discrepancy,) = run.discrepancies
        assert discrepancy.discrepancy_type == DiscrepancyType.MISSING_INVOICE.value
        assert discrepancy.severity == Severity.HIGH.value
        assert discrepancy.difference_amount == Decimal("75.00")
        assert discrepancy.status == DiscrepancyStatus.OPEN.value

    def test_invoices_of_other_vendors_ignored(self, submit, create_invoice):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10, vendor=uuid4())
        run = submit(stmt_line("INV-001", "100.00"))
        assert run.discrepancies[0].discrepancy_type == DiscrepancyType.MISSING_INVOICE.value

    def test_duplicate_exact_candidates(self, submit, create_invoice):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        run = submit(stmt_line("INV-001", "100.00"))

        assert run.matches == ()
        assert run.discrepancies[0].discrepancy_type == DiscrepancyType.DUPLICATE.value

    def test_rerun_skips_items_awaiting_review(self, reconciliation_service, submit, create_invoice, case_id):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        submit(stmt_line("INV 001", "100.00"))

        rerun = reconciliation_service.reconcile_statement(case_id, TEST_ACTOR)
        assert rerun.items == ()
        assert rerun.matches == ()

    def test_tenant_policy_applies(self, session, clock, create_invoice, case_id, vendor_id, company_id):
        create_invoice("INV-0012", "100.00", invoice_date=JAN_10)
        service = SoaReconciliationService(session, clock)
        lines = [stmt_line("INV-0013", "100.00")]

        strict = service.submit_statement(
            case_id, vendor_id, company_id, lines, TEST_ACTOR, tenant_id="demo-strict",
        )
        # demo-strict disables edit-distance matching
        assert strict.matches == ()
        assert strict.discrepancies[0].discrepancy_type == DiscrepancyType.MISSING_INVOICE.value

        other_case = uuid4()
        relaxed = service.submit_statement(other_case, vendor_id, company_id, lines, TEST_ACTOR)
        assert relaxed.proposed_matches[0].match_pass == 5

    def test_logs_reconcile_summary(self, submit, create_invoice, captured_logs):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        submit(stmt_line("INV-001", "100.00"), stmt_line("INV-404", "5.00"))

        summary = next(r for r in captured_logs() if r["message"] == "soa_statement_reconciled")
        assert summary["items_processed"] == 2
        assert summary["matches_created"] == 1
        assert summary["discrepancies_created"] == 1
        assert summary["actor_id"] == TEST_ACTOR


# =========================================================================
# Review
# =========================================================================


class TestReview:

    @pytest.fixture
    def proposed(self, submit, create_invoice):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        run = submit(stmt_line("INV-001", "100.50"))
        assert run.proposed_matches
        return run.proposed_matches[0]

    def test_confirm_match(self, reconciliation_service, proposed, clock, case_id):
        match = reconciliation_service.confirm_match(proposed.match_id, SECOND_ACTOR)

        assert match.status == MatchStatus.CONFIRMED.value
        assert match.reviewed_by.value == SECOND_ACTOR
        assert match.reviewed_at == clock.now()
        item = reconciliation_service.list_items(case_id)[0]
        assert item.status == SoaItemStatus.MATCHED.value

    def test_confirm_twice_fails(self, reconciliation_service, proposed):
        reconciliation_service.confirm_match(proposed.match_id, SECOND_ACTOR)
        with pytest.raises(InvalidStateError):
            reconciliation_service.confirm_match(proposed.match_id, SECOND_ACTOR)

    def test_confirm_unknown_match(self, reconciliation_service):
        with pytest.raises(EntityNotFoundError):
            reconciliation_service.confirm_match(uuid4(), SECOND_ACTOR)

    def test_reject_last_proposal_disputes_item(self, reconciliation_service, proposed):
        rejection = reconciliation_service.reject_match(
            proposed.match_id, SECOND_ACTOR, reason="different PO",
        )

        assert rejection.match.status == MatchStatus.REJECTED.value
        assert rejection.match.rejection_reason == "different PO"
        assert rejection.item.status == SoaItemStatus.DISPUTED.value
        assert rejection.discrepancy is not None
        assert rejection.discrepancy.discrepancy_type == DiscrepancyType.MATCH_REJECTED.value
        assert rejection.discrepancy.difference_amount == Decimal("0.50")
        assert "different PO" in rejection.discrepancy.description

    def test_reject_twice_fails(self, reconciliation_service, proposed):
        reconciliation_service.reject_match(proposed.match_id, SECOND_ACTOR)
        with pytest.raises(InvalidStateError):
            reconciliation_service.reject_match(proposed.match_id, SECOND_ACTOR)

    def test_rejected_match_cannot_be_confirmed(self, reconciliation_service, proposed):
        reconciliation_service.reject_match(proposed.match_id, SECOND_ACTOR)
        with pytest.raises(InvalidStateError):
            reconciliation_service.confirm_match(proposed.match_id, SECOND_ACTOR)

    def test_resolve_discrepancy(self, reconciliation_service, submit, clock):
        run = submit(stmt_line("INV-404", "10.00"))
        discrepancy = reconciliation_service.resolve_discrepancy(
            run.discrepancies[0].discrepancy_id, "waived", SECOND_ACTOR, notes="below threshold",
        )

        assert discrepancy.status == DiscrepancyStatus.RESOLVED.value
        assert discrepancy.resolution_action == ResolutionAction.WAIVED.value
        assert discrepancy.resolution_notes == "below threshold"
        assert discrepancy.resolved_at == clock.now()

    def test_resolve_twice_fails(self, reconciliation_service, submit):
        run = submit(stmt_line("INV-404", "10.00"))
        discrepancy_id = run.discrepancies[0].discrepancy_id
        reconciliation_service.resolve_discrepancy(discrepancy_id, "corrected", SECOND_ACTOR)
        with pytest.raises(InvalidStateError):
            reconciliation_service.resolve_discrepancy(discrepancy_id, "ignored", SECOND_ACTOR)

    def test_resolve_with_unknown_action(self, reconciliation_service, submit):
        run = submit(stmt_line("INV-404", "10.00"))
        with pytest.raises(ValidationError):
            reconciliation_service.resolve_discrepancy(
                run.discrepancies[0].discrepancy_id, "forgotten", SECOND_ACTOR,
            )

    def test_resolve_unknown_discrepancy(self, reconciliation_service):
        with pytest.raises(EntityNotFoundError):
            reconciliation_service.resolve_discrepancy(uuid4(), "waived", SECOND_ACTOR)

    def test_list_discrepancies_by_status(self, reconciliation_service, submit, case_id):
        run = submit(stmt_line("INV-404", "10.00"))
        assert reconciliation_service.list_discrepancies(case_id, status="resolved") == []
        listed = reconciliation_service.list_discrepancies(case_id, status=DiscrepancyStatus.OPEN)
        assert {d.discrepancy_id for d in listed} == {d.discrepancy_id for d in run.discrepancies}

    def test_list_discrepancies_unknown_status(self, reconciliation_service, case_id):
        with pytest.raises(ValidationError) as exc_info:
            reconciliation_service.list_discrepancies(case_id, status="archived")
        assert exc_info.value.field == "status"


# =========================================================================
# Summary
# =========================================================================


class TestSummary:

    def test_roll_up(self, reconciliation_service, submit, create_invoice, case_id):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        create_invoice("INV-002", "200.00", invoice_date=JAN_10)
        create_invoice("INV-003", "300.00", invoice_date=JAN_10)
        submit(
            stmt_line("INV-001", "100.00"),   # matched
            stmt_line("INV-002", "200.60"),   # proposed (pass 4)
            stmt_line("INV-003", "330.00"),   # amount mismatch, 10%
            stmt_line("INV-404", "50.00"),    # missing invoice
        )

        summary = reconciliation_service.summarize_statement(case_id)

        assert summary.total_items == 4
        assert summary.matched_items == 1
        assert summary.pending_items == 1
        assert summary.unmatched_items == 2
        assert summary.total_amount == Decimal("680.60")
        assert summary.matched_amount == Decimal("100.00")
        assert summary.unmatched_amount == Decimal("380.00")
        assert summary.open_discrepancies == 2
        assert summary.discrepancy_amount == Decimal("80.00")
        assert summary.by_type == {"amount_mismatch": 1, "missing_invoice": 1}
        assert summary.fully_reconciled is False

    def test_fully_reconciled(self, reconciliation_service, submit, create_invoice, case_id):
        create_invoice("INV-001", "100.00", invoice_date=JAN_10)
        submit(stmt_line("INV-001", "100.00"))
        assert reconciliation_service.summarize_statement(case_id).fully_reconciled is True
