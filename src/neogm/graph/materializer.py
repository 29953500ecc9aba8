"""Cache entries and lazy wrapper materialization.

One ``CacheEntry`` exists per store identity and entity kind inside a
``Graph``. It holds the latest raw entity plus every typed wrapper built
over it, so each (entry, wrapper key) pair is materialized exactly once
for the lifetime of the graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from neo4j.graph import Node as StoreNode
from neo4j.graph import Relationship as StoreRelationship

if TYPE_CHECKING:
    from neogm.graph.cache import Graph
    from neogm.models.node import Node
    from neogm.models.relationship import Relationship
    from neogm.models.relationship import RelationshipDefinition


@dataclass
class CacheEntry:
    """Raw entity plus the wrappers materialized over it."""

    entity: StoreNode | StoreRelationship
    models: dict[Any, Any] = field(default_factory=dict)
    columns: set[str] = field(default_factory=set)

    def update(self, entity: StoreNode | StoreRelationship) -> None:
        """Store a newer copy of the raw entity and refresh clean wrappers."""
        self.entity = entity
        for wrapper in self.models.values():
            wrapper.refresh(entity)


def materialize_node(entry: CacheEntry, model: type[Node], graph: Graph) -> Node:
    """Return the ``model`` wrapper for *entry*, building it on first use."""
    wrapper = entry.models.get(model)
    if wrapper is None:
        wrapper = model.from_entity(entry.entity, graph)
        entry.models[model] = wrapper
    return wrapper


def materialize_relationship(
    entry: CacheEntry,
    definition: RelationshipDefinition,
    graph: Graph,
) -> Relationship:
    """Return the edge wrapper for *entry* as seen through *definition*."""
    wrapper = entry.models.get(definition)
    if wrapper is None:
        wrapper = definition.relationship_model.from_entity(
            entry.entity, graph, definition
        )
        entry.models[definition] = wrapper
    return wrapper


def adopt(entry: CacheEntry, wrapper: Node) -> Node:
    """Register an existing wrapper as the canonical one for its class.

    Returns the wrapper already cached for that class when there is one.
    """
    current = entry.models.setdefault(type(wrapper), wrapper)
    return current
