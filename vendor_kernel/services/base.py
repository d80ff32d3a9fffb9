"""
BaseService -- abstract base for all vendor kernel services.

Responsibility:
    Common constructor and session-handling contract.  Every service
    receives a SQLAlchemy ``Session`` and a ``Clock``; it persists with
    ``session.flush()`` and never with ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell around the pure domain and
    engine layers.

Invariants enforced:
    - Transaction boundaries belong to the caller.  Services flush within
      the caller's transaction and never commit or rollback themselves, so
      a multi-step operation (ingest + reconcile, approve + notify) is
      atomic when the caller commits once.
    - Every timestamp a service writes comes from its injected Clock.
"""

from __future__ import annotations

from abc import ABC
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session

from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.clock import Clock, SystemClock
from vendor_kernel.exceptions import ValidationError

E = TypeVar("E", bound=Enum)


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT resolve actor identities; actor ids are opaque keys.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    @staticmethod
    def _actor(actor_id: Any, field: str = "actor_id") -> ActorId:
        """Coerce a caller-supplied actor to ActorId or raise ValidationError."""
        try:
            return ActorId.of(actor_id)
        except ValueError as exc:
            raise ValidationError(field, str(exc), actor_id) from None

    @staticmethod
    def _member(enum_cls: type[E], value: Any, field: str) -> E:
        """Coerce ``value`` to a member of ``enum_cls`` or raise ValidationError."""
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError(
                field, f"must be one of {[m.value for m in enum_cls]}", value,
            ) from None

    @staticmethod
    def _require(value: Any, field: str) -> Any:
        if value is None:
            raise ValidationError(field, "is required")
        return value

    def _guarded_update(self, model: type, criteria: tuple, values: dict[str, Any]) -> int:
        """
        Single conditional UPDATE; returns the number of rows it changed.

        Pending changes are flushed first so the WHERE clause sees them.
        Callers must refresh any in-memory instance afterwards.
        """
        self.session.flush()
        result = self.session.execute(
            update(model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
