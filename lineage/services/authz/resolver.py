"""Entity kind -> owning tree resolution.

Every guarded entity belongs to exactly one tree, either through its own
``tree_id`` column or through one parent row (a photo belongs to a person,
who belongs to a tree). Each kind registers one strategy; the authorizer
only ever sees the resolved tree id.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from lineage.core.errors import EntityNotFoundError, MissingIdentifierError, UnsupportedEntityKindError
from lineage.domain.models import (
    Album,
    Comment,
    Document,
    LifeEvent,
    Person,
    Photo,
    Relationship,
    Story,
)


# Trees are addressed by id directly and never go through the registry.
ENTITY_TREE = "tree"
ENTITY_PERSON = "person"
ENTITY_RELATIONSHIP = "relationship"
ENTITY_PHOTO = "photo"
ENTITY_DOCUMENT = "document"
ENTITY_LIFE_EVENT = "life_event"
ENTITY_STORY = "story"
ENTITY_ALBUM = "album"
ENTITY_COMMENT = "comment"


class TreeResolver(Protocol):
    def build_query(self, entity_id: str) -> Select[Any]: ...


@dataclass(frozen=True)
class DirectTreeResolver:
    # The entity row carries the tree reference itself.
    id_column: InstrumentedAttribute[Any]
    tree_column: InstrumentedAttribute[Any]

    def build_query(self, entity_id: str) -> Select[Any]:
        return select(self.tree_column).where(self.id_column == entity_id)


@dataclass(frozen=True)
class ParentTreeResolver:
    # One hop: entity.parent_fk -> parent row, whose tree column is the answer.
    id_column: InstrumentedAttribute[Any]
    parent_fk: InstrumentedAttribute[Any]
    parent_id_column: InstrumentedAttribute[Any]
    parent_tree_column: InstrumentedAttribute[Any]

    def build_query(self, entity_id: str) -> Select[Any]:
        # Inner join so a dangling parent reference resolves to nothing.
        return (
            select(self.parent_tree_column)
            .select_from(self.id_column.class_)
            .join(self.parent_id_column.class_, self.parent_fk == self.parent_id_column)
            .where(self.id_column == entity_id)
        )


class EntityResolverRegistry:
    def __init__(self) -> None:
        self._resolvers: dict[str, TreeResolver] = {}

    def register(self, entity_kind: str, resolver: TreeResolver) -> None:
        if entity_kind in self._resolvers:
            raise ValueError(f"Resolver already registered for {entity_kind}")
        self._resolvers[entity_kind] = resolver

    def kinds(self) -> list[str]:
        return sorted(self._resolvers)

    def resolver_for(self, entity_kind: str) -> TreeResolver:
        resolver = self._resolvers.get(entity_kind)
        if resolver is None:
            raise UnsupportedEntityKindError(entity_kind)
        return resolver

    async def resolve_tree(self, session: AsyncSession, *, entity_kind: str, entity_id: str | None) -> str:
        # Raise EntityNotFoundError (never a permission error) when the chain is broken.
        if not entity_id:
            raise MissingIdentifierError(f"{entity_kind} id required")
        resolver = self.resolver_for(entity_kind)
        result = await session.execute(resolver.build_query(entity_id))
        tree_id = result.scalar_one_or_none()
        if tree_id is None:
            raise EntityNotFoundError(entity_kind)
        return tree_id


def _via_person(model: Any) -> ParentTreeResolver:
    return ParentTreeResolver(
        id_column=model.id,
        parent_fk=model.person_id,
        parent_id_column=Person.id,
        parent_tree_column=Person.tree_id,
    )


def build_default_registry() -> EntityResolverRegistry:
    registry = EntityResolverRegistry()
    registry.register(ENTITY_PERSON, DirectTreeResolver(Person.id, Person.tree_id))
    registry.register(ENTITY_RELATIONSHIP, DirectTreeResolver(Relationship.id, Relationship.tree_id))
    registry.register(ENTITY_STORY, DirectTreeResolver(Story.id, Story.tree_id))
    registry.register(ENTITY_ALBUM, DirectTreeResolver(Album.id, Album.tree_id))
    registry.register(ENTITY_COMMENT, DirectTreeResolver(Comment.id, Comment.tree_id))
    registry.register(ENTITY_PHOTO, _via_person(Photo))
    registry.register(ENTITY_DOCUMENT, _via_person(Document))
    registry.register(ENTITY_LIFE_EVENT, _via_person(LifeEvent))
    return registry
