"""neogm — async object-graph mapper for Neo4j."""

from __future__ import annotations

from neogm.config import DatabaseConfig
from neogm.config import QueryConfig
from neogm.db import Database
from neogm.db import get_database
from neogm.db import init
from neogm.db import shutdown
from neogm.db import Transaction
from neogm.errors import InvalidArgumentError
from neogm.errors import InvalidStateError
from neogm.errors import NotFoundError
from neogm.errors import OGMError
from neogm.errors import StoreError
from neogm.graph.cache import Graph
from neogm.models import Direction
from neogm.models import Node
from neogm.models import NodeCollection
from neogm.models import RelatedNode
from neogm.models import Relationship
from neogm.models import RelationshipDefinition

__all__ = [
    "Database",
    "DatabaseConfig",
    "Direction",
    "Graph",
    "InvalidArgumentError",
    "InvalidStateError",
    "Node",
    "NodeCollection",
    "NotFoundError",
    "OGMError",
    "QueryConfig",
    "RelatedNode",
    "Relationship",
    "RelationshipDefinition",
    "StoreError",
    "Transaction",
    "get_database",
    "init",
    "shutdown",
]
