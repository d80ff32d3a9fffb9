"""
Module: vendor_kernel.db.base
Responsibility: Declarative base and column types shared by every ORM model,
    plus the SoftDeleteMixin that gives a model its recoverable-deletion
    columns.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel.  MUST NOT import from models/, services/ or domain/ (except the
    ActorId value type, which has no dependencies of its own).

Invariants enforced:
    - Decimal maps to Numeric(38, 9).  NEVER use float for monetary amounts.
    - datetime maps to UTCDateTime: values are always returned timezone-aware
      (UTC), including on backends that store naive timestamps.
    - Actor identities are stored and loaded as ActorId, never as bare str,
      so equality comparisons stay exact.

Audit relevance:
    created_at / updated_at on every table; deleted_at / deleted_by on
    soft-deletable tables form the basic audit metadata.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from vendor_kernel.domain.actor import ActorId


class UUIDString(TypeDecorator):
    """UUID persisted as its 36-character text form (portable across backends).

    Strings are accepted on bind and must parse as a UUID.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always loads as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ActorIdType(TypeDecorator):
    """Opaque actor identity stored as String(255)."""

    impl = String(255)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, ActorId):
            return value.value
        return ActorId.of(value).value

    def process_result_value(self, value, dialect):
        if value is not None:
            return ActorId(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Unlike a single global ``id`` convention, each model declares its own
    primary key column because key names vary by entity family
    (``id`` for statement lines, ``payment_id``, ``debit_note_id``...).
    The soft-delete registry records which column that is.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        ActorId: ActorIdType(),
    }


class TimestampMixin:
    """created_at / updated_at audit columns."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SoftDeleteMixin:
    """
    Recoverable-deletion columns.

    Contract:
        deleted_at IS NULL means the row is active.  Only
        SoftDeleteRepository writes these columns, and only for models that
        appear in the soft-delete registry.
    """

    deleted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        default=None,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class DeletedByMixin(SoftDeleteMixin):
    """Soft-delete columns for tables that also track the deleting actor."""

    deleted_by: Mapped[ActorId | None] = mapped_column(
        ActorIdType(),
        nullable=True,
        default=None,
    )


UUID = PyUUID
