"""Database layer: declarative base, column types, engine and sessions."""

from vendor_kernel.db.base import Base, DeletedByMixin, SoftDeleteMixin, TimestampMixin
from vendor_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "DeletedByMixin",
    "SoftDeleteMixin",
    "TimestampMixin",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
