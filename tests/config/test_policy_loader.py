"""
Tests for vendor_config policy loading.

Tests cover:
- Packaged defaults parse into the documented values
- Tenant overrides merge on top of the defaults
- Unknown keys and malformed values are rejected
- Checksums are deterministic and tenant-sensitive
- VENDOR_CONFIG_TRACE is emitted on every load
"""

from decimal import Decimal

import pytest
import yaml

from vendor_config import get_policy_set
from vendor_config.loader import (
    build_policy_set,
    compute_checksum,
    merge_overrides,
    parse_payment_approval,
    parse_reconciliation_policy,
)
from vendor_config.schema import ReconciliationPolicy


class TestPackagedDefaults:

    def test_reconciliation_defaults(self):
        policy = get_policy_set().reconciliation
        assert policy.amount_epsilon == Decimal("0.01")
        assert policy.date_tolerance_days == 7
        assert policy.absolute_tolerance == Decimal("1.00")
        assert policy.percentage_tolerance == Decimal("0.005")
        assert policy.max_edit_distance == 1
        assert policy.allow_partial is False

    def test_matches_dataclass_defaults(self):
        assert get_policy_set().reconciliation == ReconciliationPolicy()

    def test_payment_approval_defaults(self):
        approval = get_policy_set().payment_approval
        assert approval.threshold_amount == Decimal("10000")
        assert approval.requires_dual_control is False
        assert approval.dual_control_threshold == Decimal("50000")
        assert approval.approvers == ()

    def test_tenant_overrides_merge(self):
        strict = get_policy_set("demo-strict")
        assert strict.tenant_id == "demo-strict"
        assert strict.reconciliation.date_tolerance_days == 3
        assert strict.reconciliation.max_edit_distance == 0
        # untouched keys keep the platform value
        assert strict.reconciliation.percentage_tolerance == Decimal("0.005")
        assert strict.payment_approval.threshold_amount == Decimal("5000")
        assert strict.payment_approval.requires_dual_control is True
        assert strict.payment_approval.dual_control_threshold == Decimal("50000")

    def test_unknown_tenant_gets_defaults(self):
        assert get_policy_set("nobody").reconciliation == get_policy_set().reconciliation

    def test_emits_config_trace(self, captured_logs):
        policy_set = get_policy_set("demo-strict")
        (trace,) = [r for r in captured_logs() if r["message"] == "VENDOR_CONFIG_TRACE"]
        assert trace["tenant_id"] == "demo-strict"
        assert trace["checksum"] == policy_set.checksum


class TestParsing:

    def test_yaml_float_kept_exact(self):
        policy = parse_reconciliation_policy({"percentage_tolerance": 0.005})
        assert policy.percentage_tolerance == Decimal("0.005")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="unknown keys"):
            parse_reconciliation_policy({"fuzzy_magic": True})

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValueError):
            build_policy_set({"defaults": {}, "extras": {}})

    @pytest.mark.parametrize(
        "data",
        [
            {"date_tolerance_days": "7"},
            {"date_tolerance_days": True},
            {"allow_partial": "yes"},
            {"absolute_tolerance": "lots"},
            {"absolute_tolerance": None},
        ],
    )
    def test_bad_values_rejected(self, data):
        with pytest.raises(ValueError):
            parse_reconciliation_policy(data)

    def test_schema_validation_runs(self):
        with pytest.raises(ValueError):
            parse_reconciliation_policy({"max_edit_distance": -1})

    def test_approvers_must_be_strings(self):
        with pytest.raises(ValueError):
            parse_payment_approval({"approvers": ["user-a", 7]})
        assert parse_payment_approval({"approvers": ["user-a"]}).approvers == ("user-a",)

    def test_merge_replaces_lists(self):
        merged = merge_overrides(
            {"payment_approval": {"approvers": ["a", "b"], "threshold_amount": "1"}},
            {"payment_approval": {"approvers": ["c"]}},
        )
        assert merged == {"payment_approval": {"approvers": ["c"], "threshold_amount": "1"}}


class TestChecksum:

    def test_deterministic_regardless_of_key_order(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})

    def test_tenant_changes_checksum(self):
        assert get_policy_set().checksum != get_policy_set("demo-strict").checksum
        assert get_policy_set().checksum == get_policy_set().checksum


class TestCustomFile:

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(yaml.safe_dump({
            "defaults": {
                "reconciliation": {"absolute_tolerance": "2.50", "allow_partial": True},
                "payment_approval": {"threshold_amount": "100"},
            },
            "tenants": {"acme": {"payment_approval": {"approvers": ["user-cfo"]}}},
        }))

        acme = get_policy_set("acme", path=path)
        assert acme.reconciliation.absolute_tolerance == Decimal("2.50")
        assert acme.reconciliation.allow_partial is True
        assert acme.payment_approval.threshold_amount == Decimal("100")
        assert acme.payment_approval.approvers == ("user-cfo",)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_policy_set(path=tmp_path / "absent.yaml")

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            get_policy_set(path=path)
