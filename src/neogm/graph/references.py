"""Classification and identity helpers for values returned by a query.

A query column may hold a raw ``neo4j.graph`` entity, a typed wrapper
(``Node`` / ``Relationship`` model), a cache entry, a list, or a plain
scalar. These helpers are total: they never raise on unexpected input.
"""

from __future__ import annotations

import warnings
from enum import Enum

from neo4j.graph import Node as StoreNode
from neo4j.graph import Path as StorePath
from neo4j.graph import Relationship as StoreRelationship

from neogm.graph.materializer import CacheEntry


class EntityKind(str, Enum):
    """Semantic type of a query value."""

    NODE = "node"
    RELATIONSHIP = "relationship"
    PATH = "path"
    INTEGER = "integer"
    SEQUENCE = "sequence"


ENTITY_KINDS = (EntityKind.NODE, EntityKind.RELATIONSHIP)


def store_identity(entity: StoreNode | StoreRelationship) -> int:
    """Return the integer identity the store assigned to *entity*.

    The driver flags ``Entity.id`` as deprecated in favour of
    ``element_id``; the integer form is what the cache indexes on.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        return entity.id


def _wrapper_kind(value: object) -> EntityKind | None:
    return getattr(type(value), "entity_kind", None)


def classify(value: object) -> str:
    """Return the ``EntityKind`` of *value*, or its Python type name."""
    if isinstance(value, StoreNode):
        return EntityKind.NODE
    if isinstance(value, StoreRelationship):
        return EntityKind.RELATIONSHIP
    if isinstance(value, StorePath):
        return EntityKind.PATH
    kind = _wrapper_kind(value)
    if kind is not None:
        return kind
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return EntityKind.INTEGER
    if isinstance(value, (list, tuple)):
        return EntityKind.SEQUENCE
    return type(value).__name__


def entity_of(value: object) -> StoreNode | StoreRelationship | None:
    """Unwrap *value* to its raw store entity, or ``None``."""
    if isinstance(value, (StoreNode, StoreRelationship)):
        return value
    if isinstance(value, CacheEntry):
        return value.entity
    if _wrapper_kind(value) is not None:
        return value.entity
    return None


def identity_of(value: object) -> int | None:
    """Return the store identity carried by *value*, or ``None``.

    Integers pass through unchanged; strings (business keys) and other
    scalars are not identity-bearing.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if _wrapper_kind(value) is not None:
        return value.store_id
    entity = entity_of(value)
    if entity is None:
        return None
    return store_identity(entity)


def kind_of_entity(value: object) -> EntityKind | None:
    """Return NODE or RELATIONSHIP for identity-bearing entities and wrappers."""
    kind = classify(value)
    if kind in ENTITY_KINDS:
        return EntityKind(kind)
    return None
