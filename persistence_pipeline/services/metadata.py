"""
Relationship metadata consumed by the cascading soft-delete resolver.

The resolver never inspects the ORM at delete time. It reads an explicit
table of descriptors keyed by entity type, built once at startup, either
by hand with RelationshipRegistry.register() or from the SQLAlchemy
mappers with RelationshipRegistry.from_registry().

Usage:
    registry = RelationshipRegistry.from_registry(Base.registry)
    registry.freeze()

    for descriptor in registry.for_entity(Post):
        if descriptor.cascades:
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import MANYTOMANY, MANYTOONE, ONETOMANY, RelationshipProperty, registry as orm_registry

from shared.config.logging import get_logger
from shared.utils.exceptions import MetadataLookupError

logger = get_logger(__name__)


class CascadeBehavior(str, Enum):
    """Relationship-level delete policy."""

    NONE = "none"
    CASCADE = "cascade"


@dataclass(frozen=True, slots=True)
class RelationshipDescriptor:
    """
    One navigation of an entity type.

    Attributes:
        navigation_name: Attribute name of the navigation on the entity
        target_type: Entity type at the other end
        is_collection: Navigation holds many targets
        cascade_behavior: Whether deleting the entity deletes its targets
        target_is_owned: Target has no independent lifecycle
        inverse_is_collection: The target's navigation back to this entity holds many
        is_on_dependent: This entity holds the foreign key (many-to-one side)
    """

    navigation_name: str
    target_type: type
    is_collection: bool
    cascade_behavior: CascadeBehavior = CascadeBehavior.NONE
    target_is_owned: bool = False
    inverse_is_collection: bool = False
    is_on_dependent: bool = False

    @property
    def cascades(self) -> bool:
        """Walked by the soft-delete cascade (principal side, not owned)."""
        return (
            self.cascade_behavior is CascadeBehavior.CASCADE
            and not self.is_on_dependent
            and not self.target_is_owned
        )

    @property
    def is_one_to_one(self) -> bool:
        return not self.is_collection and not self.inverse_is_collection


class RelationshipMetadataProvider(Protocol):
    """Read-only source of relationship descriptors."""

    def for_entity(self, entity_type: type) -> Sequence[RelationshipDescriptor]:
        ...


class RelationshipRegistry:
    """
    Explicit relationship table keyed by entity type.

    Lookups for a subclass fall back to the nearest registered base class.
    An unregistered type is a metadata lookup failure: register types that
    have no relationships with an empty sequence.
    """

    def __init__(self) -> None:
        self._descriptors: dict[type, tuple[RelationshipDescriptor, ...]] = {}
        self._frozen = False

    def register(
        self,
        entity_type: type,
        descriptors: Iterable[RelationshipDescriptor] = (),
    ) -> None:
        if self._frozen:
            raise RuntimeError("RelationshipRegistry is frozen; register types at startup")
        self._descriptors[entity_type] = tuple(descriptors)

    def freeze(self) -> "RelationshipRegistry":
        """Stop further registration. Returns self for chaining."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, entity_type: type) -> bool:
        return any(klass in self._descriptors for klass in entity_type.__mro__)

    def __len__(self) -> int:
        return len(self._descriptors)

    def for_entity(self, entity_type: type) -> Sequence[RelationshipDescriptor]:
        for klass in entity_type.__mro__:
            descriptors = self._descriptors.get(klass)
            if descriptors is not None:
                return descriptors
        raise MetadataLookupError(entity_type)

    @classmethod
    def from_registry(cls, registry: orm_registry) -> "RelationshipRegistry":
        """
        Build the table from every mapper of a SQLAlchemy registry.

        Mapping rules:
        - cascade "delete" or passive_deletes on a one-to-many/one-to-one
          navigation maps to CascadeBehavior.CASCADE
        - a target class with a truthy ``__owned__`` attribute is owned
        - the inverse side comes from back_populates/backref when declared,
          otherwise from the foreign key's uniqueness
        """
        registry.configure()
        table = cls()
        for mapper in registry.mappers:
            descriptors = [describe_relationship(rel) for rel in mapper.relationships]
            table.register(mapper.class_, descriptors)
        logger.info(
            "Relationship metadata registered",
            entity_types=len(table),
            relationships=sum(len(d) for d in table._descriptors.values()),
        )
        return table


def describe_relationship(rel: RelationshipProperty) -> RelationshipDescriptor:
    """Translate one SQLAlchemy relationship into a descriptor."""
    is_on_dependent = rel.direction is MANYTOONE
    cascades = not is_on_dependent and (rel.cascade.delete or bool(rel.passive_deletes))
    target_type = rel.mapper.class_

    return RelationshipDescriptor(
        navigation_name=rel.key,
        target_type=target_type,
        is_collection=bool(rel.uselist),
        cascade_behavior=CascadeBehavior.CASCADE if cascades else CascadeBehavior.NONE,
        target_is_owned=bool(getattr(target_type, "__owned__", False)),
        inverse_is_collection=_inverse_is_collection(rel),
        is_on_dependent=is_on_dependent,
    )


def _inverse_is_collection(rel: RelationshipProperty) -> bool:
    reverse = _find_reverse(rel)
    if reverse is not None:
        return bool(reverse.uselist)
    if rel.direction is MANYTOMANY:
        return True
    if rel.direction is ONETOMANY:
        # The foreign key on the target points back at a single principal
        return False
    # Many-to-one: the principal holds many of us unless our key is unique
    return not _columns_unique(rel.local_columns)


def _find_reverse(rel: RelationshipProperty) -> RelationshipProperty | None:
    target_relationships = rel.mapper.relationships
    if rel.back_populates and rel.back_populates in target_relationships:
        return target_relationships[rel.back_populates]
    for candidate in target_relationships:
        if candidate.back_populates == rel.key and issubclass(rel.parent.class_, candidate.mapper.class_):
            return candidate
    return None


def _columns_unique(columns: Any) -> bool:
    columns = set(columns)
    if not columns:
        return False
    first = next(iter(columns))
    if len(columns) == 1 and first.unique:
        return True
    table = first.table
    if set(table.primary_key.columns) == columns:
        return True
    return any(
        isinstance(constraint, UniqueConstraint) and set(constraint.columns) == columns
        for constraint in table.constraints
    )
