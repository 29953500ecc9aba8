"""Translation of filter objects into WHERE conditions and parameters."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from neogm.errors import InvalidArgumentError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_INLINE_FLAGS = (
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
)


def _regex_source(pattern: re.Pattern) -> str:
    flags = "".join(letter for flag, letter in _INLINE_FLAGS if pattern.flags & flag)
    if flags:
        return f"(?{flags}){pattern.pattern}"
    return pattern.pattern


def parse_filters(filters: Any, variable: str) -> tuple[list[str], dict[str, Any]]:
    """Return the conditions and parameters matching *filters* on *variable*.

    A string selects by ``id``, an integer by store identity and a mapping
    by property: regular expressions match with ``=~``, lists/tuples/sets
    with ``IN`` and ``None`` with ``IS NULL``.
    """
    if filters is None:
        return [], {}
    if isinstance(filters, str):
        filters = {"id": filters}
    elif isinstance(filters, int) and not isinstance(filters, bool):
        param = f"{variable}__id"
        return [f"id({variable}) = ${param}"], {param: filters}
    elif not isinstance(filters, Mapping):
        msg = f"Invalid filter object: {filters!r}"
        raise InvalidArgumentError(msg)

    conditions: list[str] = []
    parameters: dict[str, Any] = {}
    for key, value in filters.items():
        if not isinstance(key, str) or not _IDENTIFIER_RE.match(key):
            msg = f"Invalid filter object: {dict(filters)!r}"
            raise InvalidArgumentError(msg)
        prop = f"{variable}.`{key}`"
        param = f"{variable}_{key}"
        if value is None:
            conditions.append(f"{prop} IS NULL")
            continue
        if isinstance(value, re.Pattern):
            conditions.append(f"{prop} =~ ${param}")
            parameters[param] = _regex_source(value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            conditions.append(f"{prop} IN ${param}")
            parameters[param] = list(value)
        else:
            conditions.append(f"{prop} = ${param}")
            parameters[param] = value
    return conditions, parameters
