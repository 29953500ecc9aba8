"""Relationship definitions and the relationship (edge) wrapper."""

from __future__ import annotations

import logging
import weakref
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from functools import cached_property
from typing import TYPE_CHECKING
from typing import Any

from neogm.db import convert_props
from neogm.errors import InvalidArgumentError
from neogm.errors import InvalidStateError
from neogm.graph.references import EntityKind
from neogm.graph.references import store_identity
from neogm.graph.schema import require_identifier
from neogm.models.base import Model

if TYPE_CHECKING:
    from neo4j.graph import Relationship as StoreRelationship

    from neogm.db import Database
    from neogm.db import Transaction
    from neogm.graph.cache import Graph
    from neogm.models.node import Node

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "is_related_to"


class Direction(str, Enum):
    """Traversal direction of a relationship, seen from its owner."""

    OUT = "out"
    IN = "in"
    BOTH = "both"
    ANY = "any"

    @classmethod
    def _missing_(cls, value: object) -> Direction | None:
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


_CONFIG_KEYS = {"Model", "model", "type", "direction", "singular", "relationship"}


def _weak(node: Node | None) -> weakref.ref | None:
    return None if node is None else weakref.ref(node)


@dataclass(frozen=True)
class RelationshipDefinition:
    """Declarative description of one named relationship of a node class.

    ``model`` is the related node class, or a zero-argument callable
    returning it so that mutually related classes can reference each
    other before both are defined.
    """

    model: Any = None
    type: str = DEFAULT_TYPE
    direction: Direction = Direction.OUT
    singular: bool = False
    relationship: Any = None
    name: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        try:
            direction = Direction(self.direction)
        except ValueError:
            msg = f"Invalid relationship direction: {self.direction!r}"
            raise InvalidArgumentError(msg) from None
        object.__setattr__(self, "direction", direction)
        require_identifier(self.type, field_name="relationship type")

    @classmethod
    def from_config(
        cls,
        config: RelationshipDefinition | Mapping[str, Any] | None,
        name: str | None = None,
    ) -> RelationshipDefinition:
        if isinstance(config, RelationshipDefinition):
            if config.name == name:
                return config
            return cls(
                config.model,
                config.type,
                config.direction,
                config.singular,
                config.relationship,
                name,
            )
        options = dict(config or {})
        unknown = set(options) - _CONFIG_KEYS
        if unknown:
            msg = f"Unknown relationship option(s): {sorted(unknown)}"
            raise InvalidArgumentError(msg)
        if "Model" in options:
            options.setdefault("model", options.pop("Model"))
        return cls(name=name, **options)

    @cached_property
    def related_model(self) -> type[Node]:
        """The related node class, resolving a lazy reference once."""
        from neogm.models.node import Node

        model = self.model
        if model is None:
            return Node
        if isinstance(model, type):
            return model
        if callable(model):
            return model()
        msg = f"Invalid related model: {model!r}"
        raise InvalidArgumentError(msg)

    @cached_property
    def relationship_model(self) -> type[Relationship]:
        if self.relationship is None:
            return Relationship
        return self.relationship


class Relationship(Model):
    """Typed view over one edge.

    ``start`` is the node owning the definition and ``end`` the related
    node; for ``IN`` relationships the stored edge points from ``end`` to
    ``start``. Endpoints are held weakly; once dropped they are resolved
    again through the graph's identity map.
    """

    entity_kind = EntityKind.RELATIONSHIP

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        start: Node | None = None,
        end: Node | None = None,
        definition: RelationshipDefinition | None = None,
        graph: Graph | None = None,
        **properties: Any,
    ) -> None:
        self._entity: StoreRelationship | None = None
        self._definition = definition or RelationshipDefinition()
        self._graph = graph
        self._start = _weak(start)
        self._end = _weak(end)
        super().__init__(data, **properties)

    @classmethod
    def from_entity(
        cls,
        entity: StoreRelationship,
        graph: Graph | None,
        definition: RelationshipDefinition,
    ) -> Relationship:
        rel = cls(definition=definition, graph=graph)
        rel._data = convert_props(dict(entity.items()))
        rel._entity = entity
        rel.reset()
        return rel

    def refresh(self, entity: StoreRelationship) -> None:
        self._entity = entity
        if not self.dirty:
            self._data = convert_props(dict(entity.items()))

    # ----- state -----

    @property
    def entity(self) -> StoreRelationship | None:
        return self._entity

    @property
    def store_id(self) -> int | None:
        if self._entity is None:
            return None
        return store_identity(self._entity)

    @property
    def graph(self) -> Graph | None:
        return self._graph

    @property
    def definition(self) -> RelationshipDefinition:
        return self._definition

    @property
    def type(self) -> str:
        if self._entity is not None:
            return self._entity.type
        return self._definition.type

    @property
    def direction(self) -> Direction:
        return self._definition.direction

    @property
    def is_new(self) -> bool:
        return self._entity is None

    @property
    def dirty(self) -> bool:
        return self.is_new or bool(self._changed)

    # ----- endpoints -----

    def _stored_endpoint(self, which: str) -> Node | None:
        if self._entity is None or self._graph is None:
            return None
        start, end = self._entity.start_node, self._entity.end_node
        if self.direction == Direction.IN:
            start, end = end, start
        node = start if which == "start" else end
        identity = store_identity(node)
        if identity not in self._graph.nodes:
            return None
        return self._graph.canonical_node(identity)

    @property
    def start(self) -> Node | None:
        node = self._start() if self._start is not None else None
        if node is None:
            return self._stored_endpoint("start")
        return node

    @start.setter
    def start(self, node: Node | None) -> None:
        self._start = _weak(node)

    @property
    def end(self) -> Node | None:
        node = self._end() if self._end is not None else None
        if node is None:
            return self._stored_endpoint("end")
        return node

    @end.setter
    def end(self, node: Node | None) -> None:
        self._end = _weak(node)

    @property
    def database(self) -> Database:
        start = self.start
        if start is not None:
            return start.database
        from neogm.db import get_database

        return get_database()

    # ----- persistence -----

    async def save(self, tx: Transaction | None = None) -> Relationship:
        """Merge the edge between ``start`` and ``end`` and set its properties."""
        from neogm.query.builder import build_edge_merge

        start, end = self.start, self.end
        if start is None or end is None:
            raise InvalidStateError("Can not save a relationship without start and end")
        if start.id is None or end.id is None:
            raise InvalidStateError(
                "Can not save a relationship between nodes without ID"
            )

        query = build_edge_merge(start.base, end.base, self.type, self.direction)
        parameters = {"start": start.id, "end": end.id, "properties": self.data}
        logger.debug(
            "saving relationship %s %s -> %s", self.type, start.id, end.id
        )
        async with self.database.transaction(tx) as transaction:
            records = await transaction.run(query, parameters)
        if records:
            self._entity = records[0]["r"]
        self.reset()
        return self

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type} {self._data!r}>"
