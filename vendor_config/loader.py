"""
Configuration Loader (``vendor_config.loader``).

Responsibility
--------------
Loads the policy YAML document and parses it into the typed
``vendor_config.schema`` dataclasses, merging a tenant's overrides on top
of the platform defaults.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a descriptive message; unknown
  keys are rejected rather than silently ignored.
* Monetary values and ratios are parsed as ``Decimal`` from their string
  form; YAML floats are converted through ``str`` so ``0.005`` stays
  ``Decimal("0.005")``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  resolved document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown tenant  -> platform defaults (not an error).
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from vendor_config.schema import PaymentApprovalDefaults, PolicySet, ReconciliationPolicy

DEFAULT_POLICY_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name}: expected a number, got {value!r}") from None


def parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name}: expected an integer, got {value!r}")
    return value


def parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name}: expected true/false, got {value!r}")
    return value


def _check_keys(data: dict[str, Any], allowed: set[str], section: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"{section}: unknown keys {sorted(unknown)}")


def parse_reconciliation_policy(data: dict[str, Any]) -> ReconciliationPolicy:
    """Parse a ``ReconciliationPolicy``; absent keys keep the dataclass defaults."""
    _check_keys(data, {f.name for f in fields(ReconciliationPolicy)}, "reconciliation")
    kwargs: dict[str, Any] = {}
    for name in (
        "amount_epsilon",
        "absolute_tolerance",
        "percentage_tolerance",
        "severity_low_max_ratio",
        "severity_medium_max_ratio",
    ):
        if name in data:
            kwargs[name] = parse_decimal(data[name], f"reconciliation.{name}")
    for name in ("date_tolerance_days", "max_edit_distance"):
        if name in data:
            kwargs[name] = parse_int(data[name], f"reconciliation.{name}")
    if "allow_partial" in data:
        kwargs["allow_partial"] = parse_bool(data["allow_partial"], "reconciliation.allow_partial")
    return ReconciliationPolicy(**kwargs)


def parse_payment_approval(data: dict[str, Any]) -> PaymentApprovalDefaults:
    """Parse ``PaymentApprovalDefaults``."""
    _check_keys(data, {f.name for f in fields(PaymentApprovalDefaults)}, "payment_approval")
    kwargs: dict[str, Any] = {}
    if "threshold_amount" in data:
        kwargs["threshold_amount"] = parse_decimal(
            data["threshold_amount"], "payment_approval.threshold_amount",
        )
    if "requires_dual_control" in data:
        kwargs["requires_dual_control"] = parse_bool(
            data["requires_dual_control"], "payment_approval.requires_dual_control",
        )
    if data.get("dual_control_threshold") is not None:
        kwargs["dual_control_threshold"] = parse_decimal(
            data["dual_control_threshold"], "payment_approval.dual_control_threshold",
        )
    if "approvers" in data:
        approvers = data["approvers"] or []
        if not isinstance(approvers, list) or not all(
            isinstance(a, str) and a for a in approvers
        ):
            raise ValueError("payment_approval.approvers: expected a list of actor ids")
        kwargs["approvers"] = tuple(approvers)
    return PaymentApprovalDefaults(**kwargs)


def merge_overrides(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge ``overrides`` into a copy of ``base``.

    Mappings merge key by key; every other value (including lists)
    replaces the base value wholesale.
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve_document(data: dict[str, Any], tenant_id: str | None = None) -> dict[str, Any]:
    """Platform defaults with the tenant's overrides (if any) merged on top."""
    _check_keys(data, {"defaults", "tenants"}, "policy document")
    resolved = data.get("defaults") or {}
    if tenant_id is not None:
        tenant_overrides = (data.get("tenants") or {}).get(tenant_id)
        if tenant_overrides:
            resolved = merge_overrides(resolved, tenant_overrides)
    return resolved


def build_policy_set(
    data: dict[str, Any],
    tenant_id: str | None = None,
) -> PolicySet:
    """Parse a full policy document into the ``PolicySet`` for ``tenant_id``."""
    resolved = resolve_document(data, tenant_id)
    _check_keys(resolved, {"reconciliation", "payment_approval"}, "policy")
    return PolicySet(
        reconciliation=parse_reconciliation_policy(resolved.get("reconciliation") or {}),
        payment_approval=parse_payment_approval(resolved.get("payment_approval") or {}),
        tenant_id=tenant_id,
        checksum=compute_checksum(resolved),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
