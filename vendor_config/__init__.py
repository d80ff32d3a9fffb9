"""
vendor_config -- single public entrypoint for vendor finance policy.

Responsibility:
    ``get_policy_set()`` returns the ``PolicySet`` (reconciliation
    tolerances and payment approval defaults) for a tenant.  Services call
    it when the caller does not pass explicit policy.

Architecture position:
    Configuration.  Depends only on PyYAML and its own schema.  The
    engines import the schema dataclasses as plain values; only services
    call ``get_policy_set()``.

Failure modes:
    - ``FileNotFoundError`` -- ``path`` does not exist.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every call emits a ``VENDOR_CONFIG_TRACE`` log entry with the tenant
    and the checksum of the resolved document.
"""

from __future__ import annotations

import logging
from pathlib import Path

from vendor_config.loader import (
    DEFAULT_POLICY_PATH,
    build_policy_set,
    compute_checksum,
    load_yaml_file,
)
from vendor_config.schema import PaymentApprovalDefaults, PolicySet, ReconciliationPolicy

_logger = logging.getLogger("vendor_kernel.config")


def get_policy_set(
    tenant_id: str | None = None,
    path: Path | None = None,
) -> PolicySet:
    """Load and resolve the policy for ``tenant_id`` (None = platform defaults).

    Args:
        tenant_id: Opaque tenant identifier.  Unknown tenants get the
            platform defaults.
        path: Override path to the policy YAML.  Defaults to the packaged
            ``defaults.yaml``.
    """
    data = load_yaml_file(path or DEFAULT_POLICY_PATH)
    policy_set = build_policy_set(data, tenant_id)

    _logger.info(
        "VENDOR_CONFIG_TRACE",
        extra={
            "trace_type": "VENDOR_CONFIG_TRACE",
            "tenant_id": tenant_id,
            "checksum": policy_set.checksum,
            "source": str(path or DEFAULT_POLICY_PATH),
        },
    )
    return policy_set


__all__ = [
    "PaymentApprovalDefaults",
    "PolicySet",
    "ReconciliationPolicy",
    "compute_checksum",
    "get_policy_set",
]
