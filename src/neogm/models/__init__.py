"""Models domain — persistence base, node and relationship wrappers."""

from __future__ import annotations

from neogm.models.base import Model
from neogm.models.collections import NodeCollection
from neogm.models.collections import RelatedNode
from neogm.models.collections import RelatedNodeCollection
from neogm.models.node import Node
from neogm.models.relationship import DEFAULT_TYPE
from neogm.models.relationship import Direction
from neogm.models.relationship import Relationship
from neogm.models.relationship import RelationshipDefinition

__all__ = [
    "DEFAULT_TYPE",
    "Direction",
    "Model",
    "Node",
    "NodeCollection",
    "RelatedNode",
    "RelatedNodeCollection",
    "Relationship",
    "RelationshipDefinition",
]
