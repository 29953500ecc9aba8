"""Expansion of "with" specifications into OPTIONAL MATCH clauses.

A specification names the relationships to fetch alongside a node, in
one of three shapes:

- a dot path: ``"friends.pets"``
- a sequence of names or dot paths: ``["friends", "owner"]``
- a nested mapping: ``{"friends": {"with": {"pets": True}}}``; a leaf
  value other than ``True`` is a filter applied to the related node.

``normalize`` turns every shape into the mapping form and ``plan`` walks
it depth first, emitting one OPTIONAL MATCH per relationship. Variables
are derived from the parent variable and the relationship name; a name
already taken anywhere in the plan gets a numeric suffix.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from neogm.config import DEFAULT_QUERY_CONFIG
from neogm.config import QueryConfig
from neogm.errors import InvalidArgumentError
from neogm.query.filters import parse_filters

if TYPE_CHECKING:
    from neogm.models.node import Node
    from neogm.models.relationship import RelationshipDefinition

logger = logging.getLogger(__name__)

WITH_KEY = "with"


@dataclass
class RelationshipPlan:
    """Clauses and columns produced for one "with" specification."""

    matches: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _merge(target: dict[str, Any], name: str, value: dict[str, Any]) -> None:
    current = target.get(name)
    if current is None:
        target[name] = value
        return
    for key, item in value.items():
        if key == WITH_KEY:
            nested = current.setdefault(WITH_KEY, {})
            for child, child_value in item.items():
                _merge(nested, child, child_value)
        else:
            current[key] = item


def _path_to_mapping(path: str) -> tuple[str, dict[str, Any]]:
    head, _, rest = path.partition(".")
    if not head:
        msg = f"Invalid relationship path: {path!r}"
        raise InvalidArgumentError(msg)
    if not rest:
        return head, {}
    child, value = _path_to_mapping(rest)
    return head, {WITH_KEY: {child: value}}


def normalize(spec: Any) -> dict[str, dict[str, Any]]:
    """Return the canonical mapping form of *spec* without mutating it."""
    result: dict[str, dict[str, Any]] = {}
    if spec is None or spec is False:
        return result
    if isinstance(spec, str):
        name, value = _path_to_mapping(spec)
        _merge(result, name, value)
        return result
    if isinstance(spec, Mapping):
        for key, value in spec.items():
            if value is False or value is None:
                continue
            if value is True:
                item: dict[str, Any] = {}
            elif isinstance(value, Mapping):
                item = {k: v for k, v in value.items() if k != WITH_KEY}
                nested = normalize(value.get(WITH_KEY))
                if nested:
                    item[WITH_KEY] = nested
            else:
                msg = f"Invalid relationship specification for {key!r}: {value!r}"
                raise InvalidArgumentError(msg)
            name, wrapped = _path_to_mapping(key)
            # attach the value at the tail of a dotted key
            tail = wrapped
            while WITH_KEY in tail:
                tail = next(iter(tail[WITH_KEY].values()))
            tail.update(item)
            _merge(result, name, wrapped)
        return result
    if isinstance(spec, Sequence):
        for item in spec:
            for name, value in normalize(item).items():
                _merge(result, name, value)
        return result
    msg = f"Invalid relationship specification: {spec!r}"
    raise InvalidArgumentError(msg)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _labels(model: type[Node]) -> str:
    from neogm.models.node import Node

    if model is Node:
        return ""
    return "".join(f":`{label}`" for label in model.get_labels())


def _claim(base: str, taken: set[str], suffix: str) -> str:
    # a variable and its collected column are reserved together
    candidate = base
    index = 2
    while candidate in taken or f"{candidate}{suffix}" in taken:
        candidate = f"{base}_{index}"
        index += 1
    taken.update((candidate, f"{candidate}{suffix}"))
    return candidate


def _pattern(
    current: str,
    rel_var: str,
    node_var: str,
    definition: RelationshipDefinition,
) -> str:
    from neogm.models.relationship import Direction

    direction = definition.direction
    left = "<" if direction in (Direction.IN, Direction.BOTH) else ""
    right = ">" if direction in (Direction.OUT, Direction.BOTH) else ""
    labels = _labels(definition.related_model)
    return (
        f"({current}){left}-[{rel_var}:`{definition.type}`]-{right}"
        f"({node_var}{labels})"
    )


def plan(
    spec: Any,
    variables: Sequence[str],
    current: str,
    model: type[Node],
    config: QueryConfig = DEFAULT_QUERY_CONFIG,
    taken: set[str] | None = None,
) -> RelationshipPlan:
    """Expand *spec* from *current* while keeping *variables* in scope.

    Every level ends with a ``WITH`` that re-lists the carried variables
    and collects the related nodes and edges, so each expansion yields
    one row per binding of its parent. *taken* holds the names used so
    far and is shared with nested levels.
    """
    result = RelationshipPlan()
    scope = list(variables)
    if taken is None:
        taken = set(scope)
    suffix = config.collection_suffix
    for name, options in normalize(spec).items():
        definition = model.relationship_definition(name)
        node_var = _claim(f"{current}_{name}", taken, suffix)
        rel_var = _claim(f"{current}_r_{name}", taken, suffix)
        match = f"OPTIONAL MATCH {_pattern(current, rel_var, node_var, definition)}"
        nested = options.get(WITH_KEY)
        carried = ", ".join(scope)

        if not nested:
            filters = {k: v for k, v in options.items() if k != WITH_KEY}
            conditions, parameters = parse_filters(filters or None, node_var)
            if conditions:
                match += " WHERE " + " AND ".join(conditions)
            result.parameters.update(parameters)
            result.matches.append(match)
            collected = [f"{node_var}{suffix}", f"{rel_var}{suffix}"]
            result.matches.append(
                f"WITH {carried}, COLLECT({node_var}) AS {collected[0]}, "
                f"COLLECT({rel_var}) AS {collected[1]}"
            )
        else:
            result.matches.append(match)
            result.matches.append(f"WITH {carried}, {node_var}, {rel_var}")
            inner = plan(
                nested,
                [*scope, node_var, rel_var],
                node_var,
                definition.related_model,
                config,
                taken,
            )
            result.matches.extend(inner.matches)
            result.parameters.update(inner.parameters)
            collected = [f"{node_var}{suffix}", f"{rel_var}{suffix}", *inner.variables]
            aggregates = [
                f"COLLECT({node_var}) AS {collected[0]}",
                f"COLLECT({rel_var}) AS {collected[1]}",
                *(f"COLLECT({var}) AS {var}" for var in inner.variables),
            ]
            result.matches.append(f"WITH {carried}, " + ", ".join(aggregates))

        scope.extend(collected)
        result.variables.extend(collected)
        logger.debug("planned expansion %s from %s", name, current)
    return result
