"""
Pydantic schemas returned by the repository facade.

- Paginate: one page of a query result
- Audited DTOs: read audit columns from ORM entities (from_attributes)
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, computed_field

T = TypeVar("T")


# =============================================================================
# Pagination
# =============================================================================


class Paginate(BaseModel, Generic[T]):
    """
    One page of results.

    index is zero-based. A result with no rows has zero pages and no items.
    """

    model_config = {"arbitrary_types_allowed": True}

    size: int = Field(ge=1)
    index: int = Field(default=0, ge=0)
    count: int = 0
    pages: int = 0
    items: list[T] = Field(default_factory=list)

    @computed_field
    @property
    def has_previous(self) -> bool:
        return self.index > 0

    @computed_field
    @property
    def has_next(self) -> bool:
        return self.index + 1 < self.pages

    @classmethod
    def from_items(cls, items: list[Any], index: int, size: int, count: int) -> "Paginate":
        """Build a page from an already sliced item list and the total count."""
        if count == 0:
            return cls(size=size, index=index, count=0, pages=0, items=[])
        return cls(size=size, index=index, count=count, pages=math.ceil(count / size), items=items)


# =============================================================================
# Audited entity DTOs
# =============================================================================


class EntityDto(BaseModel):
    id: int

    model_config = {"from_attributes": True}


class CreationAuditedEntityDto(EntityDto):
    creation_time: datetime
    creator_id: str | None = None


class AuditedEntityDto(CreationAuditedEntityDto):
    last_modification_time: datetime | None = None
    last_modifier_id: str | None = None


class FullAuditedEntityDto(AuditedEntityDto):
    is_deleted: bool = False
    deletion_time: datetime | None = None
    deleter_id: str | None = None
