"""
Module: vendor_engines
Responsibility:
    Pure calculation layer for statement-of-account reconciliation:
    field comparison, multi-pass line matching, discrepancy
    classification and severity banding.

Architecture position:
    Engines -- zero I/O.  May import vendor_kernel.domain value objects
    and vendor_config.schema dataclasses.  MUST NOT import kernel models
    or services.

Invariants enforced:
    - Engines never read the clock or the database.
    - Decimal-only arithmetic on amounts.
    - Identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``, emitting
    VENDOR_ENGINE_TRACE records with engine name, version, input
    fingerprint and duration.
"""

from vendor_engines.comparison import (
    amount_within_tolerance,
    levenshtein_distance,
    normalize_document_number,
)
from vendor_engines.discrepancy import (
    DiscrepancyFinding,
    assign_severity,
    classify_unmatched,
)
from vendor_engines.matching import LineMatchOutcome, MatchProposal, SoaMatchingEngine

__all__ = [
    "DiscrepancyFinding",
    "LineMatchOutcome",
    "MatchProposal",
    "SoaMatchingEngine",
    "amount_within_tolerance",
    "assign_severity",
    "classify_unmatched",
    "levenshtein_distance",
    "normalize_document_number",
]
