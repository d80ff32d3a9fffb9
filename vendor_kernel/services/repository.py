"""
SoftDeleteRepository -- recoverable deletion for registered entities.

Responsibility:
    Centralised soft-delete logic shared by every persisted entity that
    supports it: active-only reads, audit reads, conditional soft delete,
    conditional restore and an explicit hard delete.

Architecture position:
    Kernel > Services.  May import from models/, db/, domain/.

Invariants enforced:
    - Active reads never return a row whose ``deleted_at`` is set.
    - soft_delete is a single conditional UPDATE guarded by
      ``deleted_at IS NULL``; restore is guarded by ``deleted_at IS NOT
      NULL``.  Zero affected rows means the guard lost, whether the row is
      missing or a concurrent caller got there first.
    - soft_delete / restore only for models in ``SoftDeleteEntity``.

Failure modes:
    - AlreadyDeletedOrNotFoundError from soft_delete.
    - NotDeletedOrNotFoundError from restore.
    - SoftDeleteNotPermittedError for unregistered models.
    - EntityNotFoundError from hard_delete when nothing was removed.
    - ValidationError for an unknown ordering column.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.orm import Session

from vendor_kernel.db.base import Base
from vendor_kernel.domain.actor import ActorId
from vendor_kernel.domain.clock import Clock
from vendor_kernel.exceptions import (
    AlreadyDeletedOrNotFoundError,
    EntityNotFoundError,
    NotDeletedOrNotFoundError,
    SoftDeleteNotPermittedError,
    ValidationError,
)
from vendor_kernel.logging_config import get_logger
from vendor_kernel.models.registry import SoftDeleteEntity
from vendor_kernel.services.base import BaseService

logger = get_logger("services.repository")

ModelType = TypeVar("ModelType", bound=Base)


class SoftDeleteRepository(BaseService, Generic[ModelType]):
    """
    Repository over one model class.

    The key column comes from the soft-delete registry when the model is
    registered, otherwise from the mapper's primary key (read-only use).
    """

    def __init__(
        self,
        session: Session,
        model: type[ModelType],
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self.model = model
        self.entity = SoftDeleteEntity.for_model(model)
        mapper = inspect(model)
        if self.entity is not None:
            self.key_column = self.entity.key_column
        else:
            self.key_column = mapper.primary_key[0].key
        self._columns = {attr.key for attr in mapper.column_attrs}

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    @property
    def _key(self):
        return getattr(self.model, self.key_column)

    @property
    def _has_deleted_at(self) -> bool:
        return "deleted_at" in self._columns

    def _active(self, stmt):
        if self._has_deleted_at:
            return stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def _ordering(self, order_by: str, ascending: bool):
        if order_by not in self._columns:
            raise ValidationError(
                "order_by", f"unknown column for {self.table_name}", order_by,
            )
        column = getattr(self.model, order_by)
        return column.asc() if ascending else column.desc()

    def _registered(self) -> SoftDeleteEntity:
        if self.entity is None:
            raise SoftDeleteNotPermittedError(self.table_name)
        return self.entity

    def _reload(self, entity_id: Any) -> ModelType:
        return self.session.get(self.model, entity_id, populate_existing=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, entity_id: Any) -> ModelType | None:
        stmt = self._active(select(self.model).where(self._key == entity_id))
        return self.session.execute(stmt).scalar_one_or_none()

    def find_all_active(
        self,
        order_by: str = "created_at",
        ascending: bool = False,
    ) -> list[ModelType]:
        stmt = self._active(select(self.model)).order_by(self._ordering(order_by, ascending))
        return list(self.session.execute(stmt).scalars())

    def find_by_id_including_deleted(self, entity_id: Any) -> ModelType | None:
        """Audit read: soft-deleted rows are visible."""
        stmt = select(self.model).where(self._key == entity_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_all_including_deleted(
        self,
        order_by: str = "created_at",
        ascending: bool = False,
    ) -> list[ModelType]:
        stmt = select(self.model).order_by(self._ordering(order_by, ascending))
        return list(self.session.execute(stmt).scalars())

    def count_active(self) -> int:
        stmt = self._active(select(func.count()).select_from(self.model))
        return self.session.execute(stmt).scalar_one()

    def count_all(self) -> int:
        stmt = select(func.count()).select_from(self.model)
        return self.session.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def soft_delete(self, entity_id: Any, actor_id: ActorId | str) -> ModelType:
        """Mark an active row deleted.  Single conditional UPDATE."""
        entity = self._registered()
        actor = self._actor(actor_id)

        values: dict[str, Any] = {"deleted_at": self.clock.now()}
        if entity.tracks_deleted_by:
            values["deleted_by"] = actor

        changed = self._guarded_update(
            self.model, (self._key == entity_id, self.model.deleted_at.is_(None)), values,
        )
        if changed == 0:
            raise AlreadyDeletedOrNotFoundError(self.table_name, entity_id)

        logger.info(
            "entity_soft_deleted",
            extra={
                "table": self.table_name,
                "entity_id": str(entity_id),
                "deleted_by": actor.value,
            },
        )
        return self._reload(entity_id)

    def restore(self, entity_id: Any) -> ModelType:
        """Clear the deletion marker of a soft-deleted row."""
        entity = self._registered()

        values: dict[str, Any] = {"deleted_at": None}
        if entity.tracks_deleted_by:
            values["deleted_by"] = None

        changed = self._guarded_update(
            self.model, (self._key == entity_id, self.model.deleted_at.is_not(None)), values,
        )
        if changed == 0:
            raise NotDeletedOrNotFoundError(self.table_name, entity_id)

        logger.info(
            "entity_restored",
            extra={"table": self.table_name, "entity_id": str(entity_id)},
        )
        return self._reload(entity_id)

    def hard_delete(self, entity_id: Any) -> None:
        """
        Irreversibly remove a row (retention / erasure requests only).

        Bypasses soft-delete bookkeeping entirely.  Works for any model,
        registered or not; foreign keys still apply.
        """
        self.session.flush()
        result = self.session.execute(
            delete(self.model)
            .where(self._key == entity_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EntityNotFoundError(self.model.__name__, entity_id)

        instance = self.session.identity_map.get(
            self.session.identity_key(self.model, entity_id)
        )
        if instance is not None:
            self.session.expunge(instance)

        logger.warning(
            "entity_hard_deleted",
            extra={"table": self.table_name, "entity_id": str(entity_id)},
        )
