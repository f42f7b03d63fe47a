"""
Declarative base and capability mixins for pipeline-managed entities.

Capabilities are independent mixins composed per entity, not levels of a
class hierarchy. The pipeline checks them with isinstance():

- EntityMixin: immutable integer identity
- CreationAuditedMixin: creation_time, creator_id
- ModificationAuditedMixin: last_modification_time, last_modifier_id
- SoftDeleteMixin: is_deleted, deletion_time, deleter_id
- ConcurrencyStampMixin: concurrency_stamp checked by the store at commit
- ExtraPropertiesMixin: free-form JSON properties
- EventSourceMixin (models.events): local and distributed event queues

Example:
    class Post(EntityMixin, FullAuditedMixin, ConcurrencyStampMixin, Base):
        __tablename__ = "post"
        title: Mapped[str] = mapped_column(String(200))
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, event, inspect
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, validates
from sqlalchemy.types import TypeDecorator

from shared.config.settings import settings
from shared.utils.exceptions import IdentityReassignmentError


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_concurrency_stamp() -> str:
    """Fresh opaque concurrency token (uuid4 hex, 122 random bits)."""
    return uuid.uuid4().hex


class UtcDateTime(TypeDecorator):
    """
    DateTime that always round-trips as timezone-aware UTC.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC
    so audit timestamps stay comparable after a reload.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for all pipeline-managed models."""

    pass


class EntityMixin:
    """
    Identity for a persisted entity.

    The id is assigned once (by the caller or by the store on insert) and
    cannot be changed afterwards.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    @validates("id")
    def _validate_identity(self, key: str, value: Any) -> Any:
        current = self.__dict__.get("id")
        if current is None:
            # Expired after commit: the identity key still holds the id
            identity_key = inspect(self).key
            current = identity_key[1][0] if identity_key is not None else None
        if current is not None and value != current:
            raise IdentityReassignmentError(self, value)
        return value

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        id_val = self.__dict__.get("id")
        if getattr(self, "is_deleted", False):
            return f"<{class_name}(id={id_val}, deleted)>"
        return f"<{class_name}(id={id_val})>"


class CreationAuditedMixin:
    """
    Creation audit fields.

    creation_time is required in the store but left empty at construction;
    the stamper fills it when the entity is classified as Added.
    """

    creation_time: Mapped[Optional[datetime]] = mapped_column(UtcDateTime, nullable=False)
    creator_id: Mapped[Optional[str]] = mapped_column(
        String(settings.actor_id_max_length), nullable=True
    )

    def set_creation_time(self, creation_time: datetime | None = None) -> None:
        """Set the creation time unless the caller already provided one."""
        if self.creation_time is None:
            self.creation_time = creation_time or utcnow()

    def set_creator_id(self, creator_id: str | None) -> None:
        self.creator_id = creator_id


class ModificationAuditedMixin:
    """Last-modification audit fields, overwritten on every update."""

    last_modification_time: Mapped[Optional[datetime]] = mapped_column(UtcDateTime, nullable=True)
    last_modifier_id: Mapped[Optional[str]] = mapped_column(
        String(settings.actor_id_max_length), nullable=True
    )

    def set_last_modification_time(self, modification_time: datetime | None = None) -> None:
        self.last_modification_time = modification_time or utcnow()

    def set_last_modifier_id(self, modifier_id: str | None) -> None:
        self.last_modifier_id = modifier_id


class SoftDeleteMixin:
    """
    Soft delete flag and deletion audit fields.

    Only the soft-delete resolver calls mark_deleted(); callers request a
    delete through the unit of work or repository instead.
    """

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    deletion_time: Mapped[Optional[datetime]] = mapped_column(UtcDateTime, nullable=True)
    deleter_id: Mapped[Optional[str]] = mapped_column(
        String(settings.actor_id_max_length), nullable=True
    )

    def mark_deleted(self, deleter_id: str | None, deletion_time: datetime | None = None) -> None:
        self.is_deleted = True
        self.deletion_time = deletion_time or utcnow()
        self.deleter_id = deleter_id


class ConcurrencyStampMixin:
    """
    Optimistic concurrency token.

    Mapped as the version column with version_id_generator=False: the
    pipeline writes the new token and the store's UPDATE/DELETE is guarded
    by the previously loaded one. A mismatch raises StaleDataError at
    flush, which the unit of work reports as ConcurrencyConflict.

    A model combining this mixin with its own __mapper_args__ must merge
    the two dictionaries.
    """

    concurrency_stamp: Mapped[str] = mapped_column(
        String(settings.concurrency_stamp_max_length),
        nullable=False,
        default=new_concurrency_stamp,
    )

    @declared_attr.directive
    def __mapper_args__(cls) -> dict[str, Any]:
        return {
            "version_id_col": cls.__table__.c.concurrency_stamp,
            "version_id_generator": False,
        }


@event.listens_for(ConcurrencyStampMixin, "init", propagate=True)
def _init_concurrency_stamp(target: ConcurrencyStampMixin, args: Any, kwargs: dict) -> None:
    """
    Give every newly constructed entity a stamp unless one was passed in.

    Runs before the mappers are configured on the first construction in a
    process, so the stamp goes into the constructor kwargs instead of
    through the instrumented attribute.
    """
    kwargs.setdefault("concurrency_stamp", new_concurrency_stamp())


class ExtraPropertiesMixin:
    """Free-form JSON properties stored alongside the entity."""

    extra_properties: Mapped[dict[str, Any]] = mapped_column(
        MutableDict.as_mutable(JSON), default=dict, nullable=False
    )

    def get_property(self, key: str, default: Any = None) -> Any:
        return (self.extra_properties or {}).get(key, default)

    def set_property(self, key: str, value: Any) -> None:
        if self.extra_properties is None:
            self.extra_properties = {}
        self.extra_properties[key] = value


class AuditedMixin(CreationAuditedMixin, ModificationAuditedMixin):
    """Creation and modification audit."""

    pass


class FullAuditedMixin(AuditedMixin, SoftDeleteMixin):
    """Creation, modification and deletion audit."""

    pass
