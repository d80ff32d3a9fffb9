"""
Tests for discrepancy classification and severity banding.

Tests cover:
- assign_severity: structural types, ratio bands, inclusive boundaries
- classify_unmatched: missing invoice, currency, date and amount mismatch
- rejected_match_finding: signed difference and reason text
- comparison helpers used by both engines
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vendor_config.schema import ReconciliationPolicy
from vendor_engines.comparison import (
    amount_within_tolerance,
    dates_compatible,
    levenshtein_distance,
    normalize_document_number,
)
from vendor_engines.discrepancy import (
    assign_severity,
    classify_unmatched,
    rejected_match_finding,
)
from vendor_kernel.domain.soa import (
    DiscrepancyType,
    LedgerInvoice,
    Severity,
    StatementLine,
)

POLICY = ReconciliationPolicy()


def line(number="INV-100", amount="1000.00", currency="USD", when=date(2025, 2, 1)):
    return StatementLine(
        item_id=uuid4(),
        invoice_number=number,
        amount=Decimal(amount),
        currency=currency,
        invoice_date=when,
    )


def invoice(number="INV-100", amount="1000.00", currency="USD", when=date(2025, 2, 1)):
    return LedgerInvoice(
        invoice_id=uuid4(),
        invoice_number=number,
        amount=Decimal(amount),
        currency=currency,
        invoice_date=when,
    )


# =========================================================================
# Severity
# =========================================================================


class TestAssignSeverity:

    @pytest.mark.parametrize(
        "dtype",
        [
            DiscrepancyType.MISSING_INVOICE,
            DiscrepancyType.DUPLICATE,
            DiscrepancyType.CURRENCY_MISMATCH,
        ],
    )
    def test_structural_types_are_high(self, dtype):
        assert assign_severity(dtype, Decimal("0.01"), Decimal("1000"), POLICY) == Severity.HIGH

    @pytest.mark.parametrize(
        "difference,expected",
        [
            ("0", Severity.LOW),
            ("5.00", Severity.LOW),
            ("10.00", Severity.LOW),       # exactly 1%
            ("10.01", Severity.MEDIUM),
            ("50.00", Severity.MEDIUM),    # exactly 5%
            ("50.01", Severity.HIGH),
            ("-50.00", Severity.MEDIUM),   # sign does not matter
        ],
    )
    def test_ratio_bands(self, difference, expected):
        severity = assign_severity(
            DiscrepancyType.AMOUNT_MISMATCH, Decimal(difference), Decimal("1000"), POLICY,
        )
        assert severity == expected

    def test_no_difference_is_low(self):
        assert assign_severity(
            DiscrepancyType.DATE_MISMATCH, None, Decimal("1000"), POLICY,
        ) == Severity.LOW

    def test_zero_item_amount_is_high(self):
        assert assign_severity(
            DiscrepancyType.AMOUNT_MISMATCH, Decimal("1"), Decimal("0"), POLICY,
        ) == Severity.HIGH

    def test_bands_follow_policy(self):
        strict = replace(
            POLICY,
            severity_low_max_ratio=Decimal("0.001"),
            severity_medium_max_ratio=Decimal("0.002"),
        )
        assert assign_severity(
            DiscrepancyType.AMOUNT_MISMATCH, Decimal("5"), Decimal("1000"), strict,
        ) == Severity.HIGH

    def test_policy_rejects_inverted_bands(self):
        with pytest.raises(ValueError):
            ReconciliationPolicy(
                severity_low_max_ratio=Decimal("0.10"),
                severity_medium_max_ratio=Decimal("0.05"),
            )

    @given(
        diff=st.decimals(min_value=-10_000, max_value=10_000, places=2),
        amount=st.decimals(min_value="0.01", max_value=100_000, places=2),
    )
    def test_severity_is_monotonic_in_ratio(self, diff, amount):
        severity = assign_severity(DiscrepancyType.AMOUNT_MISMATCH, diff, amount, POLICY)
        bigger = assign_severity(
            DiscrepancyType.AMOUNT_MISMATCH, abs(diff) * 2 + Decimal("0.01"), amount, POLICY,
        )
        order = [Severity.LOW, Severity.MEDIUM, Severity.HIGH]
        assert order.index(bigger) >= order.index(severity)


# =========================================================================
# Classification
# =========================================================================


class TestClassifyUnmatched:

    def test_no_invoice_with_number_is_missing_invoice(self):
        finding = classify_unmatched(line=line(), invoices=[invoice(number="INV-999")], policy=POLICY)
        assert finding.discrepancy_type == DiscrepancyType.MISSING_INVOICE
        assert finding.severity == Severity.HIGH
        assert finding.difference_amount == Decimal("1000.00")
        assert finding.invoice_id is None

    def test_other_currency_only_is_currency_mismatch(self):
        inv = invoice(currency="EUR")
        finding = classify_unmatched(line=line(), invoices=[inv], policy=POLICY)
        assert finding.discrepancy_type == DiscrepancyType.CURRENCY_MISMATCH
        assert finding.invoice_id == inv.invoice_id
        assert finding.severity == Severity.HIGH

    def test_amount_agrees_dates_far_apart_is_date_mismatch(self):
        inv = invoice(when=date(2025, 3, 15))
        finding = classify_unmatched(line=line(), invoices=[inv], policy=POLICY)
        assert finding.discrepancy_type == DiscrepancyType.DATE_MISMATCH
        assert finding.difference_amount == Decimal("0.00")
        assert finding.severity == Severity.LOW

    def test_amount_mismatch_uses_closest_invoice(self):
        far = invoice(amount="500.00")
        close = invoice(amount="980.00")
        finding = classify_unmatched(line=line(), invoices=[far, close], policy=POLICY)
        assert finding.discrepancy_type == DiscrepancyType.AMOUNT_MISMATCH
        assert finding.invoice_id == close.invoice_id
        assert finding.difference_amount == Decimal("20.00")
        assert finding.severity == Severity.MEDIUM

    def test_same_currency_candidate_preferred(self):
        eur = invoice(currency="EUR", amount="1000.00")
        usd = invoice(amount="900.00")
        finding = classify_unmatched(line=line(), invoices=[eur, usd], policy=POLICY)
        assert finding.discrepancy_type == DiscrepancyType.AMOUNT_MISMATCH
        assert finding.invoice_id == usd.invoice_id
        assert finding.severity == Severity.HIGH


class TestRejectedMatchFinding:

    def test_signed_difference_and_reason(self):
        inv = invoice(amount="1010.00")
        finding = rejected_match_finding(line(), inv, "wrong PO", POLICY)
        assert finding.discrepancy_type == DiscrepancyType.MATCH_REJECTED
        assert finding.difference_amount == Decimal("-10.00")
        assert finding.severity == Severity.LOW
        assert finding.description.endswith("wrong PO")
        assert finding.invoice_id == inv.invoice_id


# =========================================================================
# Comparison helpers
# =========================================================================


class TestComparison:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("INV-001", "INV001"),
            (" inv 001 ", "INV001"),
            ("inv_00.1,", "INV001"),
            (None, ""),
        ],
    )
    def test_normalize_document_number(self, raw, expected):
        assert normalize_document_number(raw) == expected

    @pytest.mark.parametrize(
        "a,b,distance",
        [
            ("", "", 0),
            ("ABC", "", 3),
            ("INV001", "INV001", 0),
            ("INV001", "INV002", 1),
            ("INV001", "INV0012", 1),
            ("KITTEN", "SITTING", 3),
            ("INV012", "INV102", 2),
        ],
    )
    def test_levenshtein(self, a, b, distance):
        assert levenshtein_distance(a, b) == distance
        assert levenshtein_distance(b, a) == distance

    def test_tolerance_absolute_or_percentage(self):
        assert amount_within_tolerance(Decimal("100"), Decimal("101"), Decimal("1"), Decimal("0"))
        assert not amount_within_tolerance(Decimal("100"), Decimal("101.01"), Decimal("1"), Decimal("0"))
        assert amount_within_tolerance(
            Decimal("10000"), Decimal("10040"), Decimal("1"), Decimal("0.005"),
        )

    def test_missing_dates_are_compatible(self):
        assert dates_compatible(None, date(2025, 1, 1), 0)
        assert dates_compatible(date(2025, 1, 1), date(2025, 1, 8), 7)
        assert not dates_compatible(date(2025, 1, 1), date(2025, 1, 9), 7)
