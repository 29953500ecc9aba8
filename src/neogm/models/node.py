"""Node wrapper: typed view over a stored node plus its lifecycle.

Subclasses declare their labels through the class hierarchy (or
``__label__``) and their relationships through ``__relationships__``::

    class Person(Node):
        __relationships__ = {
            "friends": {"model": lambda: Person, "type": "knows", "direction": "both"},
            "employer": {"model": lambda: Company, "type": "works_at", "singular": True},
        }

A node is *new* until it has a backing store entity, *dirty* while new or
after any property or relationship change, and *deleted* (terminal) after
``delete()``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from types import MethodType
from typing import TYPE_CHECKING
from typing import Any
from typing import ClassVar

from neogm.config import DEFAULT_QUERY_CONFIG
from neogm.config import QueryConfig
from neogm.db import convert_props
from neogm.db import get_database
from neogm.errors import InvalidArgumentError
from neogm.errors import InvalidStateError
from neogm.graph.cache import Graph
from neogm.graph.references import EntityKind
from neogm.graph.references import store_identity
from neogm.graph.schema import require_identifier
from neogm.models.base import Model
from neogm.models.collections import NodeCollection
from neogm.models.collections import RelatedNode
from neogm.models.collections import RelatedNodeCollection
from neogm.models.relationship import Relationship
from neogm.models.relationship import RelationshipDefinition
from neogm.query.builder import build_count
from neogm.query.builder import build_label_update
from neogm.query.builder import build_merge
from neogm.query.builder import build_node_delete
from neogm.query.builder import build_node_save
from neogm.query.builder import build_query
from neogm.query.filters import parse_filters
from neogm.query.options import QueryOptions
from neogm.query.options import parse_options
from neogm.query.planner import WITH_KEY
from neogm.query.planner import normalize
from neogm.query.planner import plan

if TYPE_CHECKING:
    from neo4j.graph import Node as StoreNode

    from neogm.db import Database
    from neogm.db import Transaction

logger = logging.getLogger(__name__)


def _generate_id() -> str:
    return uuid.uuid4().hex


class _QueryOrProperty:
    """Query classmethod on class access, property getter on instance access."""

    def __init__(self, func):
        self._func = func
        self.__doc__ = func.__doc__

    def __get__(self, instance, owner):
        if instance is None:
            return MethodType(self._func, owner)
        return MethodType(Model.get, instance)


class Node(Model):
    """Typed view over one stored node."""

    entity_kind = EntityKind.NODE

    __label__: ClassVar[str | None] = None
    __relationships__: ClassVar[Mapping[str, Any]] = {}
    __database__: ClassVar[Database | None] = None
    __query_config__: ClassVar[QueryConfig] = DEFAULT_QUERY_CONFIG

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        graph: Graph | None = None,
        **properties: Any,
    ) -> None:
        self._entity: StoreNode | None = None
        self._graph = graph
        self._related: dict[str, RelatedNodeCollection] = {}
        self._labels: list[str] | None = None
        self._deleted = False
        super().__init__(data, **properties)

    @classmethod
    def from_entity(cls, entity: StoreNode, graph: Graph | None = None) -> Node:
        node = cls(graph=graph)
        node._data = convert_props(dict(entity.items()))
        node._entity = entity
        node.reset()
        return node

    def refresh(self, entity: StoreNode) -> None:
        """Take a newer copy of the backing entity; keep unsaved edits."""
        self._entity = entity
        if not self.dirty:
            self._data = convert_props(dict(entity.items()))

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    @classmethod
    def get_labels(cls) -> list[str]:
        """Labels derived from the class hierarchy, base label first."""
        if cls is Node:
            return ["Node"]
        labels: list[str] = []
        for klass in cls.__mro__:
            if klass is Node:
                break
            if not issubclass(klass, Node):
                continue
            label = klass.__dict__.get("__label__") or klass.__name__
            if label not in labels:
                labels.append(label)
        labels.reverse()
        return labels

    @classmethod
    def base_label(cls) -> str:
        return cls.get_labels()[0]

    @property
    def node_labels(self) -> list[str]:
        if self._labels is not None:
            return list(self._labels)
        if self._entity is not None and type(self) is Node:
            return sorted(self._entity.labels)
        labels = self.get_labels()
        if self._entity is not None:
            labels.extend(sorted(set(self._entity.labels) - set(labels)))
        return labels

    @property
    def base(self) -> str:
        if type(self) is Node and self._entity is not None and self._entity.labels:
            return sorted(self._entity.labels)[0]
        return self.base_label()

    # ------------------------------------------------------------------
    # Relationship definitions
    # ------------------------------------------------------------------

    @classmethod
    def relationship_definitions(cls) -> dict[str, RelationshipDefinition]:
        cached = cls.__dict__.get("_relationship_definitions")
        if cached is None:
            cached = {}
            for klass in reversed(cls.__mro__):
                for name, config in vars(klass).get("__relationships__", {}).items():
                    cached[name] = RelationshipDefinition.from_config(config, name)
            setattr(cls, "_relationship_definitions", cached)
        return cached

    @classmethod
    def relationship_definition(cls, name: str) -> RelationshipDefinition:
        definition = cls.relationship_definitions().get(name)
        if definition is None:
            msg = f"{cls.__name__} has no relationship {name!r}"
            raise InvalidArgumentError(msg)
        return definition

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def entity(self) -> StoreNode | None:
        return self._entity

    @property
    def store_id(self) -> int | None:
        if self._entity is None:
            return None
        return store_identity(self._entity)

    @property
    def id(self) -> str | None:
        return self._data.get("id")

    @id.setter
    def id(self, value: str | None) -> None:
        super().set("id", value)

    @property
    def graph(self) -> Graph | None:
        return self._graph

    @graph.setter
    def graph(self, graph: Graph | None) -> None:
        self._graph = graph

    @property
    def is_new(self) -> bool:
        return self._entity is None

    @property
    def dirty(self) -> bool:
        return self.is_new or bool(self._changed)

    @property
    def deleted(self) -> bool:
        return self._deleted

    @classmethod
    def get_database(cls) -> Database:
        return cls.__database__ or get_database()

    @property
    def database(self) -> Database:
        if type(self).__database__ is not None:
            return type(self).__database__
        if self._graph is not None and self._graph._database is not None:
            return self._graph._database
        return get_database()

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in type(self).relationship_definitions():
            return self.get_related(name)
        data = self.__dict__.get("_data")
        if data is not None and name in data:
            return data[name]
        graph = self.__dict__.get("_graph")
        if graph is not None and graph.links and name in graph.links:
            return graph.get_linked(self, name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        elif name in type(self).relationship_definitions():
            self.set_related(name, value)
        else:
            self.set(name, value)

    def set(self, key: str, value: Any) -> None:
        if key in type(self).relationship_definitions():
            self.set_related(key, value)
        else:
            super().set(key, value)

    def _field_value(self, name: str) -> Any:
        if name in type(self).relationship_definitions():
            return self.get_related(name)
        if name in self._data:
            return self._data[name]
        if self._graph is not None:
            return self._graph.get_linked(self, name)
        return None

    # ------------------------------------------------------------------
    # Related nodes
    # ------------------------------------------------------------------

    def _collection(self, name: str) -> RelatedNodeCollection:
        collection = self._related.get(name)
        if collection is not None:
            return collection
        definition = self.relationship_definition(name)
        nodes: list[Node] = []
        if self._graph is not None and self.store_id is not None:
            found = self._graph.get_related(self, definition)
            if definition.singular:
                nodes = [] if found is None else [found]
            else:
                nodes = found
        return RelatedNodeCollection(self, definition, nodes)

    def _adopt_related(self, name: str, collection: RelatedNodeCollection) -> None:
        self._related[name] = collection
        self.set_changed(name)

    def get_related(self, name: str) -> RelatedNodeCollection | Node | None:
        """Related node(s) for *name*; a single node or ``None`` when singular."""
        collection = self._collection(name)
        if collection.definition.singular:
            return collection[0] if len(collection) else None
        return collection

    def set_related(self, name: str, value: Any) -> None:
        definition = self.relationship_definition(name)
        if value is None:
            items: list[Any] = []
        elif isinstance(value, (Node, RelatedNode)):
            items = [value]
        else:
            items = list(value)
        if definition.singular and len(items) > 1:
            msg = f"Relationship {name!r} holds a single node"
            raise InvalidArgumentError(msg)
        self._adopt_related(name, RelatedNodeCollection(self, definition, items))

    def add_related(
        self,
        name: str,
        node: Node,
        properties: Mapping[str, Any] | None = None,
    ) -> RelatedNode:
        """Relate *node* under *name*, optionally setting edge properties."""
        definition = self.relationship_definition(name)
        if definition.singular:
            self.set_related(name, node)
            collection = self._related[name]
        else:
            collection = self._collection(name)
            collection.append(node)
        rel = collection.edge(node)
        if properties:
            rel.set_properties(properties)
        return RelatedNode(node, rel)

    def edge(self, name: str, node: Node | None = None) -> Relationship | list[Relationship] | None:
        """Edge(s) connecting this node to its related node(s) under *name*."""
        collection = self._collection(name)
        if node is not None:
            return collection.edge(node)
        if collection.definition.singular:
            return collection.edge(0) if len(collection) else None
        return [pair.rel for pair in collection.pairs()]

    def get_linked(self, name: str) -> Any:
        if self._graph is None:
            return None
        return self._graph.get_linked(self, name)

    def clear_cached_relationships(self, spec: Any = None) -> None:
        """Forget related values set on this node (recursively for *spec*)."""
        if spec is None:
            names: Mapping[str, Any] = dict.fromkeys(self._related, {})
        else:
            names = normalize(spec)
        for name, options in names.items():
            collection = self._related.pop(name, None)
            self.set_changed(name, False)
            nested = options.get(WITH_KEY)
            if nested and collection is not None:
                for related in collection:
                    related.clear_cached_relationships(nested)

    async def fetch_related(self, spec: Any) -> Any:
        """Load the relationships named by *spec* into this node's graph.

        Returns the related value for a string spec, else a mapping of
        top-level relationship name to related value.
        """
        if self.is_new or self.id is None:
            raise InvalidStateError("Can not fetch relationships of an unsaved node")
        var = type(self).__query_config__.variable
        expansion = plan(spec, [var], var, type(self))
        lines = [
            f"MATCH ({var}:`{self.base}`) WHERE {var}.id = $id",
            *expansion.matches,
            "RETURN " + ", ".join([var, *expansion.variables]),
        ]
        graph = self._graph or Graph(database=self.database)
        graph.attach(self)
        self.clear_cached_relationships(spec)
        await graph.run("\n".join(lines), {**expansion.parameters, "id": self.id})
        names = list(normalize(spec))
        if isinstance(spec, str):
            return self.get_related(names[0])
        return {name: self.get_related(name) for name in names}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _cascade_names(self, cascade: Any) -> list[str]:
        definitions = type(self).relationship_definitions()
        if cascade is True:
            return list(definitions)
        if isinstance(cascade, str):
            cascade = [cascade]
        names = list(cascade)
        for name in names:
            self.relationship_definition(name)
        return names

    async def save(self, cascade: Any = False, tx: Transaction | None = None) -> Node:
        """Upsert this node by ``id``; with *cascade*, save related nodes too.

        *cascade* is ``True`` for every relationship or a list of
        relationship names. All writes share one transaction; each node is
        written at most once per transaction.
        """
        if self._deleted:
            raise InvalidStateError("Can not save a deleted node: missing identity")
        if tx is not None and self.id is not None and self.id in tx.visited_ids:
            return self

        database = self.database
        database.constraints.add_index(self.base, "id")
        async with database.transaction(tx) as transaction:
            if self.id is None:
                super().set("id", _generate_id())
            transaction.visited_ids.add(self.id)

            if self.dirty:
                await self._persist(transaction)

            if cascade:
                for name in self._cascade_names(cascade):
                    await self._save_related(name, transaction)
        return self

    async def _persist(self, tx: Transaction) -> None:
        query = build_node_save(self.base, self.node_labels, "n")
        records = await tx.run(query, {"id": self.id, "properties": self.data})
        if records:
            self._entity = records[0]["n"]
        self._labels = None
        self.reset()
        logger.debug("saved %s %s", self.base, self.id)
        if self._graph is not None and self._entity is not None:
            self._graph.attach(self)

    async def _save_related(self, name: str, tx: Transaction) -> None:
        collection = self._collection(name)
        for pair in collection.pairs():
            logger.debug("cascade save %s.%s -> %s", self.id, name, pair.node.id)
            await pair.node.save(True, tx)
            if pair.rel.dirty:
                await pair.rel.save(tx)
        if name in self._related:
            self.set_changed(name, False)

    async def delete(self, cascade: Any = False, tx: Transaction | None = None) -> None:
        """Detach-delete this node; with *cascade*, delete related nodes too."""
        if self._deleted:
            raise InvalidStateError("Can not delete a deleted node: missing identity")
        if self.id is None:
            raise InvalidStateError("Can not delete a node without ID")
        if tx is not None and self.id in tx.visited_ids:
            return

        async with self.database.transaction(tx) as transaction:
            transaction.visited_ids.add(self.id)
            await transaction.run(build_node_delete(self.base, "n"), {"id": self.id})
            logger.debug("deleted %s %s", self.base, self.id)
            if self._graph is not None and self._entity is not None:
                self._graph.remove(self)

            if cascade:
                for name in self._cascade_names(cascade):
                    related = self.get_related(name)
                    if related is None:
                        continue
                    nodes = [related] if isinstance(related, Node) else list(related)
                    for node in nodes:
                        logger.debug("cascade delete %s.%s -> %s", self.id, name, node.id)
                        await node.delete(True, transaction)

        self._entity = None
        self._data.pop("id", None)
        self._related.clear()
        self._deleted = True

    async def add_labels(self, *labels: str, tx: Transaction | None = None) -> Node:
        for label in labels:
            require_identifier(label, field_name="label")
        current = self.node_labels
        if self._entity is None:
            self._labels = current + [label for label in labels if label not in current]
            return self
        query = build_label_update(self.base, labels, remove=False)
        await self._update_labels(query, tx)
        return self

    async def add_label(self, label: str, tx: Transaction | None = None) -> Node:
        return await self.add_labels(label, tx=tx)

    async def remove_labels(self, *labels: str, tx: Transaction | None = None) -> Node:
        for label in labels:
            require_identifier(label, field_name="label")
        if self.base in labels:
            msg = f"Can not remove the base label {self.base!r}"
            raise InvalidArgumentError(msg)
        if self._entity is None:
            self._labels = [label for label in self.node_labels if label not in labels]
            return self
        query = build_label_update(self.base, labels, remove=True)
        await self._update_labels(query, tx)
        return self

    async def remove_label(self, label: str, tx: Transaction | None = None) -> Node:
        return await self.remove_labels(label, tx=tx)

    async def _update_labels(self, query: str, tx: Transaction | None) -> None:
        async with self.database.transaction(tx) as transaction:
            records = await transaction.run(query, {"id": self.id})
        if records:
            self._entity = records[0]["n"]

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    @classmethod
    def add_index(cls, prop: str) -> None:
        cls.get_database().constraints.add_index(cls.base_label(), prop)

    @classmethod
    def add_unique(cls, prop: str) -> None:
        cls.get_database().constraints.add_unique(cls.base_label(), prop)

    @classmethod
    async def ensure_constraints(cls) -> int:
        return await cls.get_database().ensure_constraints()

    @classmethod
    async def drop_index(cls, prop: str) -> None:
        database = cls.get_database()
        await database.constraints.drop_index(
            database.driver, cls.base_label(), prop, database.name
        )

    @classmethod
    async def drop_unique(cls, prop: str) -> None:
        database = cls.get_database()
        await database.constraints.drop_unique(
            database.driver, cls.base_label(), prop, database.name
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @classmethod
    def _options(cls, options: Mapping[str, Any] | None, overrides: dict[str, Any]) -> QueryOptions:
        data = dict(options or {})
        data.setdefault("variable", cls.__query_config__.variable)
        return parse_options(data, **overrides)

    @classmethod
    def build_query(cls, options: QueryOptions | Mapping[str, Any] | None = None, filters: Any = None) -> tuple[str, dict[str, Any]]:
        if not isinstance(options, QueryOptions):
            options = cls._options(options, {})
        return build_query(cls, options, filters)

    @staticmethod
    def parse_query_filters(filters: Any, variable: str = "n") -> tuple[list[str], dict[str, Any]]:
        return parse_filters(filters, variable)

    @classmethod
    async def _run_query(cls, options: QueryOptions, filters: Any) -> NodeCollection | Node | None:
        query, parameters = build_query(cls, options, filters)
        graph = Graph(
            models={options.variable: cls, **(options.models or {})},
            links=options.links,
            database=cls.__database__,
        )
        await graph.run(query, parameters)
        nodes = NodeCollection(dict.fromkeys(graph.get_nodes(options.variable)))
        if options.singular:
            return nodes[0] if nodes else None
        return nodes

    @classmethod
    async def find(cls, filters: Any = None, options: Mapping[str, Any] | None = None, **kwargs: Any) -> NodeCollection:
        """Nodes of this class matching *filters*."""
        return await cls._run_query(cls._options(options, kwargs), filters)

    @_QueryOrProperty
    async def get(cls, filters: Any = None, options: Mapping[str, Any] | None = None, **kwargs: Any) -> Node | None:
        """First node matching *filters*, or ``None``.

        On an instance, ``get(key, default=None)`` reads a property.
        """
        kwargs["singular"] = True
        return await cls._run_query(cls._options(options, kwargs), filters)

    @classmethod
    async def all(cls, options: Mapping[str, Any] | None = None, **kwargs: Any) -> NodeCollection:
        return await cls._run_query(cls._options(options, kwargs), None)

    @classmethod
    async def where(
        cls,
        condition: str,
        parameters: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> NodeCollection:
        """Nodes matching a raw WHERE *condition* written against the query variable."""
        kwargs["where"] = condition
        kwargs["parameters"] = dict(parameters or {})
        return await cls._run_query(cls._options(options, kwargs), None)

    @classmethod
    async def query(
        cls,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> NodeCollection:
        """Nodes bound by a custom MATCH *query* to the query variable."""
        kwargs["query"] = query
        kwargs["parameters"] = dict(parameters or {})
        return await cls._run_query(cls._options(options, kwargs), None)

    @classmethod
    async def count(cls, filters: Any = None, options: Mapping[str, Any] | None = None, **kwargs: Any) -> int:
        query, parameters = build_count(cls, cls._options(options, kwargs), filters)
        return await cls.get_database().scalar(query, parameters) or 0

    @classmethod
    async def merge(
        cls,
        criteria: Mapping[str, Any],
        properties: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> Node:
        """Match a node on *criteria* or create it, then set *properties*."""
        opts = cls._options(options, kwargs)
        query, parameters = build_merge(
            cls, dict(criteria), dict(properties or {}), opts, _generate_id()
        )
        database = cls.get_database()
        database.constraints.add_index(cls.base_label(), "id")
        graph = Graph(models={opts.variable: cls}, database=cls.__database__)
        records = await database.query(query, parameters)
        graph.ingest(records)
        nodes = graph.get_nodes(opts.variable)
        if not nodes:
            msg = f"Merge returned no {cls.__name__} node"
            raise InvalidStateError(msg)
        return nodes[0]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._data!r}>"

