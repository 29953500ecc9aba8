"""Cypher statement builders for node and relationship operations.

Builders return ``(query, parameters)`` pairs (or plain query text where
the caller owns the parameters). Labels, relationship types and property
names are validated identifiers and always back-quoted; values are always
passed as parameters.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING
from typing import Any

from neogm.errors import InvalidArgumentError
from neogm.graph.schema import require_identifier
from neogm.query.filters import parse_filters
from neogm.query.options import QueryOptions
from neogm.query.planner import plan

if TYPE_CHECKING:
    from neogm.models.node import Node
    from neogm.models.relationship import Direction


def label_clause(labels: Sequence[str]) -> str:
    return "".join(
        f":`{require_identifier(label, field_name='label')}`" for label in labels
    )


def _index_hint(variable: str, hint: str, base: str) -> str:
    label, sep, rest = hint.partition("(")
    if sep:
        if not rest.endswith(")"):
            msg = f"Invalid index hint: {hint!r}"
            raise InvalidArgumentError(msg)
        prop = rest[:-1].strip()
        label = label.strip()
    else:
        label, prop = base, hint.strip()
    require_identifier(label, field_name="label")
    require_identifier(prop, field_name="property")
    return f"USING INDEX {variable}:`{label}`(`{prop}`)"


def _order_term(variable: str, term: str) -> str:
    name, _, direction = term.strip().partition(" ")
    direction = direction.strip().upper()
    if direction not in ("", "ASC", "DESC"):
        msg = f"Invalid order direction: {term!r}"
        raise InvalidArgumentError(msg)
    if "." in name:
        owner, _, prop = name.partition(".")
        require_identifier(owner, field_name="variable")
    else:
        owner, prop = variable, name
    require_identifier(prop, field_name="property")
    clause = f"{owner}.`{prop}`"
    return f"{clause} {direction}" if direction else clause


def build_query(model: type[Node], options: QueryOptions, filters: Any = None) -> tuple[str, dict[str, Any]]:
    """Build the read (or read-then-set) statement for ``find`` and friends."""
    var = options.variable
    parameters: dict[str, Any] = dict(options.parameters)
    lines: list[str] = []

    if options.query:
        lines.append(options.query)
    else:
        lines.append(f"MATCH ({var}{label_clause(model.get_labels())})")

    for hint in options.index or []:
        lines.append(_index_hint(var, hint, model.base_label()))

    conditions, filter_parameters = parse_filters(filters, var)
    parameters.update(filter_parameters)
    if options.where:
        conditions.append(f"({options.where})")
    if conditions:
        lines.append("WHERE " + " AND ".join(conditions))

    variables = [var]
    if options.with_:
        expansion = plan(options.with_, [var], var, model)
        lines.extend(expansion.matches)
        parameters.update(expansion.parameters)
        variables.extend(expansion.variables)

    for key, value in (options.set_ or {}).items():
        param = f"{var}_set_{key}"
        lines.append(f"SET {var}.`{key}` = ${param}")
        parameters[param] = value

    lines.append("RETURN " + ", ".join(options.return_ or variables))
    if options.order_by:
        lines.append(
            "ORDER BY " + ", ".join(_order_term(var, term) for term in options.order_by)
        )
    if options.skip is not None:
        lines.append(f"SKIP {options.skip}")
    if options.singular:
        lines.append("LIMIT 1")
    elif options.limit is not None:
        lines.append(f"LIMIT {options.limit}")
    return "\n".join(lines), parameters


def build_count(model: type[Node], options: QueryOptions, filters: Any = None) -> tuple[str, dict[str, Any]]:
    var = options.variable
    parameters: dict[str, Any] = dict(options.parameters)
    lines = [options.query or f"MATCH ({var}{label_clause(model.get_labels())})"]
    conditions, filter_parameters = parse_filters(filters, var)
    parameters.update(filter_parameters)
    if options.where:
        conditions.append(f"({options.where})")
    if conditions:
        lines.append("WHERE " + " AND ".join(conditions))
    lines.append(f"RETURN COUNT({var}) AS count")
    return "\n".join(lines), parameters


def build_merge(
    model: type[Node],
    criteria: dict[str, Any],
    properties: dict[str, Any],
    options: QueryOptions,
    new_id: str,
) -> tuple[str, dict[str, Any]]:
    """Build a MERGE on *criteria* that assigns an ``id`` on creation."""
    if not criteria:
        raise InvalidArgumentError("Merge requires at least one criteria property")
    var = options.variable
    keys = ", ".join(
        f"`{require_identifier(key, field_name='property')}`: $criteria.`{key}`"
        for key in criteria
    )
    parameters: dict[str, Any] = {
        **options.parameters,
        "criteria": criteria,
        "properties": properties,
        "id": new_id,
    }
    lines = [
        f"MERGE ({var}{label_clause(model.get_labels())} {{{keys}}})",
        f"ON CREATE SET {var}.id = coalesce({var}.id, $id)",
    ]
    for clause, values in (("ON CREATE SET", options.on_create), ("ON MATCH SET", options.on_match)):
        if values:
            name = "on_create" if clause.startswith("ON CREATE") else "on_match"
            parameters[name] = values
            lines.append(f"{clause} {var} += ${name}")
    lines.append(f"SET {var} += $criteria")
    lines.append(f"SET {var} += $properties")
    lines.append(f"RETURN {var}")
    return "\n".join(lines), parameters


def build_node_save(base: str, labels: Sequence[str], variable: str = "n") -> str:
    """Upsert by ``id``: merge, set every label, replace every property."""
    return "\n".join(
        [
            f"MERGE ({variable}{label_clause([base])} {{id: $id}})",
            f"SET {variable}{label_clause(labels)}",
            f"SET {variable} = $properties",
            f"RETURN {variable}",
        ]
    )


def build_node_delete(base: str, variable: str = "n") -> str:
    return (
        f"MATCH ({variable}{label_clause([base])}) "
        f"WHERE {variable}.id = $id DETACH DELETE {variable}"
    )


def build_label_update(base: str, labels: Sequence[str], *, remove: bool, variable: str = "n") -> str:
    verb = "REMOVE" if remove else "SET"
    return (
        f"MATCH ({variable}{label_clause([base])}) WHERE {variable}.id = $id "
        f"{verb} {variable}{label_clause(labels)} RETURN {variable}"
    )


def build_edge_merge(start_label: str, end_label: str, rel_type: str, direction: Direction) -> str:
    """Merge the edge between two nodes matched by ``id``.

    ``IN`` reverses the stored arrow; ``BOTH`` persists one edge each way
    sharing the same properties.
    """
    from neogm.models.relationship import Direction

    rel = f"`{require_identifier(rel_type, field_name='relationship type')}`"
    if direction == Direction.IN:
        arrow = f"(start_node)<-[r:{rel}]-(end_node)"
    else:
        arrow = f"(start_node)-[r:{rel}]->(end_node)"
    lines = [
        f"MATCH (start_node{label_clause([start_label])} {{id: $start}}), "
        f"(end_node{label_clause([end_label])} {{id: $end}})",
        f"MERGE {arrow}",
        "SET r += $properties",
    ]
    if direction == Direction.BOTH:
        lines.append(f"MERGE (end_node)-[r_2:{rel}]->(start_node)")
        lines.append("SET r_2 += $properties")
    lines.append("RETURN r")
    return "\n".join(lines)
