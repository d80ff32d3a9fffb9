"""Tests for session_scope(): services flush, the scope commits or rolls back."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from vendor_kernel.db.engine import get_session, reset_engine, session_scope
from vendor_kernel.models import PaymentModel
from vendor_kernel.services import PaymentWorkflowService

from tests.conftest import TEST_ACTOR


def _payment_count() -> int:
    with get_session() as check:
        return check.execute(select(func.count()).select_from(PaymentModel)).scalar_one()


def test_commits_on_success(engine, clock):
    with session_scope() as session:
        PaymentWorkflowService(session, clock).create_payment(uuid4(), "10.00", "USD", TEST_ACTOR)

    assert _payment_count() == 1


def test_rolls_back_and_reraises(engine, clock, captured_logs):
    with pytest.raises(RuntimeError, match="boom"):
        with session_scope() as session:
            PaymentWorkflowService(session, clock).create_payment(
                uuid4(), "10.00", "USD", TEST_ACTOR,
            )
            raise RuntimeError("boom")

    assert _payment_count() == 0
    assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


def test_requires_initialised_engine():
    reset_engine()
    with pytest.raises(RuntimeError):
        get_session()
