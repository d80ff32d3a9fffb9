"""
Policy schema for the vendor finance core.

Frozen dataclasses parsed from YAML by ``vendor_config.loader``.  Amounts
and ratios are Decimal; nothing here is a float.

Key distinction:
  defaults.yaml ``defaults:``   = platform-wide policy
  defaults.yaml ``tenants:``    = per-tenant overrides merged on top
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationPolicy:
    """Tolerances for SOA matching and severity banding."""

    amount_epsilon: Decimal = Decimal("0.01")
    date_tolerance_days: int = 7
    absolute_tolerance: Decimal = Decimal("1.00")
    percentage_tolerance: Decimal = Decimal("0.005")
    max_edit_distance: int = 1
    allow_partial: bool = False
    severity_low_max_ratio: Decimal = Decimal("0.01")
    severity_medium_max_ratio: Decimal = Decimal("0.05")

    def __post_init__(self) -> None:
        if self.amount_epsilon < 0:
            raise ValueError("amount_epsilon must be >= 0")
        if self.date_tolerance_days < 0:
            raise ValueError("date_tolerance_days must be >= 0")
        if self.absolute_tolerance < 0 or self.percentage_tolerance < 0:
            raise ValueError("amount tolerances must be >= 0")
        if self.max_edit_distance < 0:
            raise ValueError("max_edit_distance must be >= 0")
        if not (0 <= self.severity_low_max_ratio <= self.severity_medium_max_ratio):
            raise ValueError(
                "severity ratios must satisfy 0 <= low_max_ratio <= medium_max_ratio"
            )


# ---------------------------------------------------------------------------
# Payment approval
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentApprovalDefaults:
    """Default approval rules attached to new payments."""

    threshold_amount: Decimal = Decimal("10000")
    requires_dual_control: bool = False
    dual_control_threshold: Decimal | None = None
    approvers: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.threshold_amount < 0:
            raise ValueError("threshold_amount must be >= 0")


# ---------------------------------------------------------------------------
# Policy set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PolicySet:
    """Resolved policy for one tenant (or the platform defaults)."""

    reconciliation: ReconciliationPolicy = field(default_factory=ReconciliationPolicy)
    payment_approval: PaymentApprovalDefaults = field(default_factory=PaymentApprovalDefaults)
    tenant_id: str | None = None
    checksum: str = ""
