"""Node collections and related-node containers."""

from __future__ import annotations

from collections.abc import Iterable
from collections.abc import MutableSequence
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

from neogm.errors import InvalidArgumentError

if TYPE_CHECKING:
    from neogm.db import Transaction
    from neogm.models.node import Node
    from neogm.models.relationship import Relationship
    from neogm.models.relationship import RelationshipDefinition


@dataclass
class RelatedNode:
    """A related node paired with the edge that connects it to its owner."""

    node: Node
    rel: Relationship | None = None


class NodeCollection(list):
    """List of nodes with batch persistence helpers."""

    async def save(self, cascade: Any = False, tx: Transaction | None = None) -> NodeCollection:
        """Save every node in one shared transaction."""
        if not self:
            return self
        async with self[0].database.transaction(tx) as transaction:
            for node in self:
                await node.save(cascade, transaction)
        return self

    async def delete(self, cascade: Any = False, tx: Transaction | None = None) -> None:
        if not self:
            return
        async with self[0].database.transaction(tx) as transaction:
            for node in self:
                await node.delete(cascade, transaction)

    def to_dicts(self, fields: Any = None) -> list[dict[str, Any]]:
        return [node.to_dict(fields) for node in self]


class RelatedNodeCollection(MutableSequence):
    """Nodes related to one owner through one relationship definition.

    Indexing yields nodes; ``edge()`` and ``pairs()`` give access to the
    connecting relationships, which are looked up in the owner's graph or
    created on first access.
    """

    def __init__(
        self,
        owner: Node,
        definition: RelationshipDefinition,
        items: Iterable[Node | RelatedNode] = (),
    ) -> None:
        self._owner = owner
        self._definition = definition
        self._pairs: list[RelatedNode] = [self._coerce(item) for item in items]

    @property
    def definition(self) -> RelationshipDefinition:
        return self._definition

    @staticmethod
    def _coerce(item: Node | RelatedNode) -> RelatedNode:
        if isinstance(item, RelatedNode):
            return item
        if getattr(type(item), "entity_kind", None) is None:
            msg = f"Related value must be a node, got {item!r}"
            raise InvalidArgumentError(msg)
        return RelatedNode(item)

    def _touch(self) -> None:
        self._owner._adopt_related(self._definition.name, self)

    # ----- sequence protocol -----

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [pair.node for pair in self._pairs[index]]
        return self._pairs[index].node

    def __setitem__(self, index, value) -> None:
        if isinstance(index, slice):
            self._pairs[index] = [self._coerce(item) for item in value]
        else:
            self._pairs[index] = self._coerce(value)
        self._touch()

    def __delitem__(self, index) -> None:
        del self._pairs[index]
        self._touch()

    def __len__(self) -> int:
        return len(self._pairs)

    def insert(self, index: int, value: Node | RelatedNode) -> None:
        self._pairs.insert(index, self._coerce(value))
        self._touch()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (RelatedNodeCollection, list, tuple)):
            return list(self) == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._definition.name} {list(self)!r}>"

    # ----- edges -----

    def _pair(self, item: int | Node) -> RelatedNode:
        if isinstance(item, int):
            return self._pairs[item]
        for pair in self._pairs:
            if pair.node is item:
                return pair
        msg = f"{item!r} is not related through {self._definition.name!r}"
        raise InvalidArgumentError(msg)

    def _resolve(self, pair: RelatedNode) -> Relationship:
        if pair.rel is None:
            graph = self._owner.graph
            rel = None
            if graph is not None:
                rel = graph.get_relationship(self._owner, pair.node, self._definition)
            if rel is None:
                rel = self._definition.relationship_model(
                    definition=self._definition, graph=graph
                )
            pair.rel = rel
        pair.rel.start = self._owner
        pair.rel.end = pair.node
        return pair.rel

    def edge(self, item: int | Node) -> Relationship:
        """Return the relationship connecting the owner to *item*."""
        return self._resolve(self._pair(item))

    def pairs(self) -> list[RelatedNode]:
        for pair in self._pairs:
            self._resolve(pair)
        return list(self._pairs)

    def nodes(self) -> NodeCollection:
        return NodeCollection(pair.node for pair in self._pairs)
