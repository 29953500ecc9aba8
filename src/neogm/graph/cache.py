"""In-memory graph cache for one query session.

The ``Graph`` ingests tabular query results into a deduplicated entity
graph: one ``CacheEntry`` per store identity, a bidirectional index of
relationships by type, per-column reference lists that keep row order,
and optional "links" that tie values of one column to the entity of
another column in the same row.

A graph is request scoped. Further queries may be merged into the same
identity space with ``run()``, so entities fetched in an earlier round
keep their wrappers and see relationships discovered later.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from collections.abc import Mapping
from collections.abc import MutableSequence
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from neogm.errors import InvalidArgumentError
from neogm.errors import NotFoundError
from neogm.graph.materializer import CacheEntry
from neogm.graph.materializer import adopt
from neogm.graph.materializer import materialize_node
from neogm.graph.materializer import materialize_relationship
from neogm.graph.references import ENTITY_KINDS
from neogm.graph.references import EntityKind
from neogm.graph.references import classify
from neogm.graph.references import entity_of
from neogm.graph.references import identity_of
from neogm.graph.references import store_identity

if TYPE_CHECKING:
    from neogm.db import Database
    from neogm.models.node import Node
    from neogm.models.relationship import Relationship
    from neogm.models.relationship import RelationshipDefinition

logger = logging.getLogger(__name__)


def _default_node_model() -> type[Node]:
    from neogm.models.node import Node

    return Node


# ---------------------------------------------------------------------------
# Index and link records
# ---------------------------------------------------------------------------


@dataclass
class RelationshipIndex:
    """Relationships of one type keyed by endpoint identities.

    ``outgoing[start][end]`` and ``incoming[end][start]`` both hold the
    relationship identity.
    """

    outgoing: dict[int, dict[int, int]] = field(default_factory=dict)
    incoming: dict[int, dict[int, int]] = field(default_factory=dict)

    def add(self, start: int, end: int, identity: int) -> None:
        self.outgoing.setdefault(start, {})[end] = identity
        self.incoming.setdefault(end, {})[start] = identity

    def discard(self, start: int, end: int, identity: int) -> None:
        for outer, inner, side in (
            (start, end, self.outgoing),
            (end, start, self.incoming),
        ):
            bucket = side.get(outer)
            if bucket is not None and bucket.get(inner) == identity:
                del bucket[inner]
                if not bucket:
                    del side[outer]


@dataclass(frozen=True)
class LinkSpec:
    """Associates the value of column ``end`` with the entity in ``start``."""

    start: str | None = None
    end: str | None = None
    singular: bool = False
    model: Any = None

    @classmethod
    def coerce(cls, value: LinkSpec | Mapping[str, Any] | None) -> LinkSpec:
        if isinstance(value, LinkSpec):
            return value
        if value is None:
            return cls()
        if not isinstance(value, Mapping):
            msg = f"Invalid link specification: {value!r}"
            raise InvalidArgumentError(msg)
        options = dict(value)
        if "Model" in options:
            options.setdefault("model", options.pop("Model"))
        unknown = set(options) - {"start", "end", "singular", "model"}
        if unknown:
            msg = f"Unknown link option(s): {sorted(unknown)}"
            raise InvalidArgumentError(msg)
        return cls(**options)


@dataclass(frozen=True)
class LinkItem:
    """One linked value collected from a result row."""

    start: int | None
    value: Any
    kind: str


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Graph:
    """Object-graph map built from query results."""

    def __init__(
        self,
        records: Iterable[Any] | None = None,
        models: Mapping[str, type[Node]] | None = None,
        links: Mapping[str, LinkSpec | Mapping[str, Any]] | None = None,
        *,
        database: Database | None = None,
    ) -> None:
        self.nodes: dict[int, CacheEntry] = {}
        self.relationships: dict[int, CacheEntry] = {}
        self.relationship_index: dict[str, RelationshipIndex] = {}
        self.references: dict[str, list[Any]] = {}
        self.models: dict[str, type[Node]] = dict(models or {})
        self.links: dict[str, LinkSpec] | None = None
        self._link_items: dict[str, list[LinkItem]] = {}
        self._reference_kinds: dict[str, list[EntityKind | None]] = {}
        self._database = database
        self._configure_links(links)
        if records is not None:
            self.ingest(records)

    # ----- construction -----

    @classmethod
    async def build(
        cls,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        models: Mapping[str, type[Node]] | None = None,
        links: Mapping[str, LinkSpec | Mapping[str, Any]] | None = None,
        *,
        database: Database | None = None,
    ) -> Graph:
        """Run *query* and build a graph from its records."""
        graph = cls(models=models, links=links, database=database)
        await graph.run(query, parameters)
        return graph

    @property
    def database(self) -> Database:
        if self._database is None:
            from neogm.db import get_database

            return get_database()
        return self._database

    async def run(
        self,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        models: Mapping[str, type[Node]] | None = None,
        links: Mapping[str, LinkSpec | Mapping[str, Any]] | None = None,
    ) -> Graph:
        """Run another query and merge its records into this graph."""
        if models:
            self.models.update(models)
        self._configure_links(links)
        records = await self.database.query(query, dict(parameters or {}))
        self.ingest(records)
        logger.debug(
            "graph ingested %d record(s): nodes=%d relationships=%d",
            len(records),
            len(self.nodes),
            len(self.relationships),
        )
        return self

    def _configure_links(
        self, links: Mapping[str, LinkSpec | Mapping[str, Any]] | None
    ) -> None:
        if not links:
            return
        if self.links is None:
            self.links = {}
        for name, spec in links.items():
            self.links[name] = LinkSpec.coerce(spec)

    @property
    def default_column(self) -> str:
        """Start column for links that do not name one."""
        return next(iter(self.models), "n")

    # ----- ingestion -----

    def ingest(self, records: Iterable[Any]) -> None:
        """Add every column value of every record to the graph."""
        for record in records:
            for column, value in record.items():
                self._add(value, column)
            if self.links:
                self._collect_links(record)

    def _add(self, value: Any, column: str) -> None:
        kind = classify(value)
        if kind == EntityKind.SEQUENCE:
            for item in value:
                self._add(item, column)
            return
        if kind == EntityKind.PATH:
            for item in (*value.nodes, *value.relationships):
                self._add(item, column)
            return
        if kind not in ENTITY_KINDS:
            self._reference(column, value, None)
            return

        kind = EntityKind(kind)
        entity = entity_of(value)
        if entity is None:
            # an unsaved wrapper has nothing to index
            return
        identity = store_identity(entity)
        self._reference(column, identity, kind)

        entries = self._entries(kind)
        entry = entries.get(identity)
        if entry is None:
            entry = entries[identity] = CacheEntry(entity)
        elif entry.entity is not entity:
            entry.update(entity)
        entry.columns.add(column)

        if kind == EntityKind.NODE:
            if entity is not value:
                adopt(entry, value)
            model = self.models.get(column)
            if model is not None:
                materialize_node(entry, model, self)
        else:
            self._index(entity, identity)

    def _reference(self, column: str, value: Any, kind: EntityKind | None) -> None:
        # one kind per reference, None for plain values
        self.references.setdefault(column, []).append(value)
        self._reference_kinds.setdefault(column, []).append(kind)

    def _index(self, entity: Any, identity: int) -> None:
        bucket = self.relationship_index.setdefault(entity.type, RelationshipIndex())
        bucket.add(
            store_identity(entity.start_node),
            store_identity(entity.end_node),
            identity,
        )

    def _collect_links(self, record: Any) -> None:
        keys = set(record.keys())
        for name, spec in self.links.items():
            start_column = spec.start or self.default_column
            end_column = spec.end or name
            if start_column not in keys or end_column not in keys:
                continue
            start = identity_of(record[start_column])
            value = record[end_column]
            kind = classify(value)
            if kind == EntityKind.SEQUENCE:
                stored = [(classify(item), self._link_value(item)) for item in value]
            else:
                stored = self._link_value(value)
            self._link_items.setdefault(name, []).append(LinkItem(start, stored, kind))

    @staticmethod
    def _link_value(value: Any) -> Any:
        if classify(value) in ENTITY_KINDS:
            return identity_of(value)
        return value

    # ----- removal -----

    def remove(self, value: Any) -> None:
        """Drop one entity (or a sequence of them) from the graph."""
        if isinstance(value, (list, tuple, MutableSequence)):
            for item in value:
                self.remove(item)
            return

        entity = entity_of(value)
        if entity is None:
            if classify(value) in ENTITY_KINDS:
                # unsaved wrapper, never part of the graph
                return
            msg = f"No map defined for this entity: {value!r}"
            raise InvalidArgumentError(msg)

        kind = EntityKind(classify(entity))
        identity = store_identity(entity)
        removed = self._entries(kind).pop(identity, None)

        for column, refs in self.references.items():
            kinds = self._reference_kinds.get(column, [])
            kept = [
                (ref, ref_kind)
                for ref, ref_kind in zip(refs, kinds)
                if ref_kind != kind or ref != identity
            ]
            refs[:] = [ref for ref, _ in kept]
            kinds[:] = [ref_kind for _, ref_kind in kept]

        if kind == EntityKind.RELATIONSHIP and removed is not None:
            bucket = self.relationship_index.get(removed.entity.type)
            if bucket is not None:
                bucket.discard(
                    store_identity(removed.entity.start_node),
                    store_identity(removed.entity.end_node),
                    identity,
                )

    # ----- lookups -----

    def _entries(self, kind: EntityKind) -> dict[int, CacheEntry]:
        if kind == EntityKind.NODE:
            return self.nodes
        return self.relationships

    def entity_map(self, value: Any) -> dict[int, CacheEntry]:
        """Return the identity map (nodes or relationships) for *value*."""
        kind = classify(value)
        if kind not in ENTITY_KINDS:
            msg = f"No map defined for this entity: {value!r}"
            raise InvalidArgumentError(msg)
        return self._entries(EntityKind(kind))

    def attach(self, wrapper: Node) -> Node:
        """Make *wrapper* the canonical view of its entity in this graph."""
        wrapper.graph = self
        entity = wrapper.entity
        if entity is None:
            return wrapper
        identity = store_identity(entity)
        entry = self.nodes.get(identity)
        if entry is None:
            entry = self.nodes[identity] = CacheEntry(entity)
        elif entry.entity is not entity:
            entry.entity = entity
        return adopt(entry, wrapper)

    def get_node_model(
        self, identity: int, model: type[Node] | None = None
    ) -> Node:
        """Return the wrapper of class *model* for the node *identity*."""
        entry = self.nodes.get(identity)
        if entry is None:
            raise NotFoundError("Node not found")
        return materialize_node(entry, model or _default_node_model(), self)

    def canonical_node(self, identity: int) -> Node:
        """Return the first wrapper materialized for *identity*."""
        entry = self.nodes.get(identity)
        if entry is None:
            raise NotFoundError("Node not found")
        for wrapper in entry.models.values():
            return wrapper
        return materialize_node(entry, _default_node_model(), self)

    def get_nodes(self, column: str) -> list[Node]:
        """Return the wrappers referenced by *column*, in row order."""
        model = self.models.get(column)
        refs = self.references.get(column, [])
        kinds = self._reference_kinds.get(column, [])
        return [
            self.get_node_model(ref, model)
            for ref, kind in zip(refs, kinds)
            if kind == EntityKind.NODE and ref in self.nodes
        ]

    def get_relationship(
        self,
        start: Any,
        end: Any,
        definition: RelationshipDefinition,
    ) -> Relationship | None:
        """Return the edge linking *start* to *end* under *definition*.

        *start* is the node that owns the definition; for ``IN`` it is the
        store end of the edge. ``ANY`` and ``BOTH`` check the outgoing
        index before the incoming one.
        """
        from neogm.models.relationship import Direction

        start_id = identity_of(start)
        end_id = identity_of(end)
        bucket = self.relationship_index.get(definition.type)
        if bucket is None or start_id is None or end_id is None:
            return None

        if definition.direction == Direction.OUT:
            sides = (bucket.outgoing,)
        elif definition.direction == Direction.IN:
            sides = (bucket.incoming,)
        else:
            sides = (bucket.outgoing, bucket.incoming)

        for side in sides:
            identity = side.get(start_id, {}).get(end_id)
            if identity is None:
                continue
            entry = self.relationships.get(identity)
            if entry is not None:
                return materialize_relationship(entry, definition, self)
        return None

    def get_related(
        self,
        node: Any,
        definition: RelationshipDefinition,
    ) -> list[Node] | Node | None:
        """Return the nodes reachable from *node* under *definition*."""
        from neogm.models.relationship import Direction

        identity = identity_of(node)
        bucket = self.relationship_index.get(definition.type)
        found: dict[int, None] = {}
        if bucket is not None and identity is not None:
            direction = definition.direction
            if direction in (Direction.OUT, Direction.ANY, Direction.BOTH):
                found.update(dict.fromkeys(bucket.outgoing.get(identity, {})))
            if direction in (Direction.IN, Direction.ANY, Direction.BOTH):
                found.update(dict.fromkeys(bucket.incoming.get(identity, {})))

        related = [
            self.get_node_model(other, definition.related_model)
            for other in found
            if other in self.nodes
        ]
        if definition.singular:
            return related[0] if related else None
        return related

    def get_linked(self, node: Any, name: str | None) -> Any:
        """Resolve the values linked to *node* under the link *name*.

        Nodes come back as wrappers of the link model, deduplicated. Edges
        are wrapped under the default relationship definition.
        """
        from neogm.models.relationship import RelationshipDefinition

        if not self.links or name not in self.links:
            return None
        items = self._link_items.get(name)
        if not items:
            return None

        spec = self.links[name]
        identity = identity_of(node)
        results: list[Any] = []
        seen: set[int] = set()
        for item in items:
            if item.start != identity:
                continue
            if item.kind == EntityKind.SEQUENCE:
                pairs = item.value
            else:
                pairs = [(item.kind, item.value)]
            for kind, value in pairs:
                if kind == EntityKind.NODE:
                    if value in seen or value not in self.nodes:
                        continue
                    seen.add(value)
                    results.append(self.get_node_model(value, spec.model))
                elif kind == EntityKind.RELATIONSHIP:
                    entry = self.relationships.get(value)
                    if entry is None:
                        continue
                    results.append(
                        materialize_relationship(entry, RelationshipDefinition(), self)
                    )
                else:
                    results.append(value)

        if spec.singular:
            return results[0] if results else None
        return results

    def __repr__(self) -> str:
        return (
            f"<Graph nodes={len(self.nodes)} "
            f"relationships={len(self.relationships)} "
            f"columns={sorted(self.references)}>"
        )
