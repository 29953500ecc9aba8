"""Query domain — options, filters, "with" planning and statement builders."""

from __future__ import annotations

from neogm.query.builder import build_count
from neogm.query.builder import build_edge_merge
from neogm.query.builder import build_merge
from neogm.query.builder import build_query
from neogm.query.filters import parse_filters
from neogm.query.options import parse_options
from neogm.query.options import QueryOptions
from neogm.query.planner import normalize
from neogm.query.planner import plan
from neogm.query.planner import RelationshipPlan

__all__ = [
    "QueryOptions",
    "RelationshipPlan",
    "build_count",
    "build_edge_merge",
    "build_merge",
    "build_query",
    "normalize",
    "parse_filters",
    "parse_options",
    "plan",
]
