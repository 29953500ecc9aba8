"""Graph domain — in-memory result cache and schema management.

Exports are loaded lazily to avoid import cycles between the graph and
models packages.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "CacheEntry",
    "ConstraintRegistry",
    "EntityKind",
    "Graph",
    "LinkSpec",
    "RelationshipIndex",
    "classify",
    "entity_of",
    "identity_of",
]


_EXPORT_TO_MODULE = {
    "Graph": "neogm.graph.cache",
    "LinkSpec": "neogm.graph.cache",
    "RelationshipIndex": "neogm.graph.cache",
    "CacheEntry": "neogm.graph.materializer",
    "EntityKind": "neogm.graph.references",
    "classify": "neogm.graph.references",
    "entity_of": "neogm.graph.references",
    "identity_of": "neogm.graph.references",
    "ConstraintRegistry": "neogm.graph.schema",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
