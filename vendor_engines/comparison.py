"""
vendor_engines.comparison -- Field comparison primitives for SOA matching.

Pure helpers shared by the matching passes and the discrepancy
classifier: document-number normalisation, edit distance, amount
tolerance and date proximity.  Decimal arithmetic only.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from rapidfuzz.distance import Levenshtein

_DOC_NOISE = re.compile(r"[\s\-_.,]")


def strict_document_number(raw: str | None) -> str:
    """Trimmed, upper-cased document number ("" for None)."""
    if raw is None:
        return ""
    return str(raw).strip().upper()


def normalize_document_number(raw: str | None) -> str:
    """
    Document number with spaces, dashes, underscores, dots and commas
    removed, upper-cased.

    >>> normalize_document_number(" inv-00.1_2 ")
    'INV0012'
    """
    if raw is None:
        return ""
    return _DOC_NOISE.sub("", str(raw)).upper()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic insert/delete/substitute edit distance."""
    return Levenshtein.distance(a, b)


def amounts_equal(a: Decimal, b: Decimal, epsilon: Decimal) -> bool:
    return abs(a - b) <= epsilon


def amount_within_tolerance(
    a: Decimal,
    b: Decimal,
    absolute_tolerance: Decimal,
    percentage_tolerance: Decimal,
) -> bool:
    """
    True when the difference is within the absolute band, or within the
    percentage band relative to the mean of the two amounts.
    """
    diff = abs(a - b)
    if diff <= absolute_tolerance:
        return True
    mean = (a + b) / 2
    if mean <= 0:
        return False
    return diff / mean <= percentage_tolerance


def date_difference_days(a: date | None, b: date | None) -> int | None:
    """Absolute difference in days, or None when either date is missing."""
    if a is None or b is None:
        return None
    return abs((a - b).days)


def dates_compatible(a: date | None, b: date | None, tolerance_days: int) -> bool:
    """Missing dates are compatible; present dates must be within tolerance."""
    diff = date_difference_days(a, b)
    return diff is None or diff <= tolerance_days


def same_currency(a: str | None, b: str | None) -> bool:
    return (a or "USD").strip().upper() == (b or "USD").strip().upper()
