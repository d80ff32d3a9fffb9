"""
vendor_engines.tracer -- Engine invocation tracer emitting VENDOR_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps pure engine invocations with one structured
    trace record: engine_name, engine_version, input_fingerprint
    (SHA-256 prefix of selected keyword inputs), duration_ms and outcome.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only, on a logger under the vendor_kernel namespace
    so the kernel handlers pick it up.

Invariants enforced:
    - Fingerprints are deterministic: inputs are reduced to plain JSON
      (dataclasses to field dicts, Decimal / UUID / date to strings, enums
      to their values) and serialised with sorted keys.
    - The decorator does not mutate inputs or results.  An engine that
      raises is traced with ``outcome="error"`` and the exception
      propagates unchanged.

Usage:
    from vendor_engines.tracer import traced_engine

    @traced_engine("soa_matching", "1.0", fingerprint_fields=("line", "invoices"))
    def match_line(self, *, line, invoices, policy):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

_logger = logging.getLogger("vendor_kernel.engines.tracer")

TRACE_TYPE = "VENDOR_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    """Reduce ``value`` to JSON-native types."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Enum):
        return _plain(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix over the named kwargs; absent ones hash as null."""
    document = {name: _plain(kwargs.get(name)) for name in fingerprint_fields}
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits VENDOR_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "soa_matching").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Keyword argument names to include in the
            input fingerprint hash.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            started = time.perf_counter()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                _logger.info(
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
