"""
Tests for vendor_kernel.logging_config.

Tests cover:
- JSON shape of every record (base keys, extra, context)
- exc_* flattening of kernel exceptions
- LogContext set / bind / clear semantics
- configure_logging idempotence and the logger namespace
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from vendor_kernel.exceptions import DualControlUnsatisfiedError, InvalidTransitionError
from vendor_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Start each test unconfigured; hand the suite its DEBUG config back after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def json_lines():
    """
    Configure logging into a buffer and return a reader of parsed records.

    Usage::

        def test_x(json_lines):
            read = json_lines()            # INFO
            get_logger("x").info("hi")
            assert read()[0]["message"] == "hi"
    """
    def _configure(level: int = logging.INFO):
        buffer = StringIO()
        configure_logging(stream=buffer, level=level)
        return lambda: [json.loads(raw) for raw in buffer.getvalue().splitlines() if raw]

    return _configure


def _structured_handlers() -> list[logging.Handler]:
    """Handlers on the package logger that emit our JSON lines."""
    return [
        h for h in logging.getLogger("vendor_kernel").handlers
        if isinstance(h.formatter, StructuredFormatter)
    ]


def _raise_and_log(exc: Exception, message: str) -> None:
    try:
        raise exc
    except Exception:
        get_logger("test").error(message, exc_info=True)


# =========================================================================
# Record shape
# =========================================================================


class TestRecordShape:

    def test_base_keys(self, json_lines):
        read = json_lines()
        get_logger("services.payment_workflow").info("payment_created")

        (record,) = read()
        assert record["level"] == "INFO"
        assert record["message"] == "payment_created"
        assert record["logger"] == "vendor_kernel.services.payment_workflow"
        assert record["ts"].endswith("+00:00")

    def test_extra_values_are_serialised(self, json_lines):
        read = json_lines()
        payment_id = uuid4()
        get_logger("test").info(
            "payment_transitioned",
            extra={"payment_id": payment_id, "amount": Decimal("10.50"), "workflow_version": 3},
        )

        (record,) = read()
        assert record["payment_id"] == str(payment_id)
        assert record["amount"] == "10.50"
        assert record["workflow_version"] == 3

    def test_context_fields_merged(self, json_lines):
        read = json_lines()
        LogContext.set(correlation_id="req-9", tenant_id="demo-strict")
        get_logger("test").info("reconciliation_completed")

        (record,) = read()
        assert record["correlation_id"] == "req-9"
        assert record["tenant_id"] == "demo-strict"
        assert "actor_id" not in record

    def test_level_filtering(self, json_lines):
        read = json_lines()
        logger = get_logger("test")
        logger.debug("hidden")
        logger.warning("shown")
        assert [r["message"] for r in read()] == ["shown"]

        reset_logging()
        read = json_lines(logging.DEBUG)
        logger.debug("now_visible")
        assert [r["message"] for r in read()] == ["now_visible"]


# =========================================================================
# Exceptions
# =========================================================================


class TestExceptionFields:

    def test_plain_exception(self, json_lines):
        read = json_lines()
        _raise_and_log(ValueError("boom"), "failed")

        (record,) = read()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_transition_error_attributes(self, json_lines):
        read = json_lines()
        _raise_and_log(
            InvalidTransitionError("Payment", "p-1", "draft", "released"), "transition_error",
        )

        (record,) = read()
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_entity_type"] == "Payment"
        assert record["exc_current_state"] == "draft"
        assert record["exc_desired_state"] == "released"

    def test_dual_control_reason(self, json_lines):
        read = json_lines()
        _raise_and_log(
            DualControlUnsatisfiedError("p-1", "user-a", "already_approved", "Another user must approve."),
            "payment_approval_refused",
        )

        (record,) = read()
        assert record["exc_code"] == "DUAL_CONTROL_UNSATISFIED"
        assert record["exc_reason"] == "already_approved"
        assert record["exc_actor_id"] == "user-a"


# =========================================================================
# LogContext
# =========================================================================


class TestLogContext:

    def test_set_is_additive(self):
        LogContext.set(correlation_id="c-1")
        LogContext.set(actor_id="user-a")
        LogContext.set(actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "c-1", "actor_id": "user-a"}

    def test_clear(self):
        LogContext.set(entity_id="p-1")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_is_scoped(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", entity_id="p-1"):
            assert LogContext.get_all() == {"actor_id": "inner", "entity_id": "p-1"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_after_error(self):
        with pytest.raises(KeyError):
            with LogContext.bind(entity_id="p-2"):
                raise KeyError("x")
        assert LogContext.get_all() == {}

    def test_bind_skips_none_and_unknown_names(self):
        with LogContext.bind(actor_id=None, producer="batch"):
            assert LogContext.get_all() == {}


# =========================================================================
# configure_logging
# =========================================================================


class TestConfigureLogging:

    def test_second_call_is_ignored(self):
        reset_logging()
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        (handler,) = _structured_handlers()
        assert handler.stream is first
        get_logger("test").warning("once")
        assert second.getvalue() == ""
        assert json.loads(first.getvalue())["message"] == "once"

    def test_does_not_propagate_to_root(self, json_lines):
        json_lines()
        assert logging.getLogger("vendor_kernel").propagate is False

    def test_reset_removes_handlers(self):
        configure_logging(stream=StringIO())
        reset_logging()
        assert _structured_handlers() == []
