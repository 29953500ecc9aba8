"""Validated options accepted by the node query operations."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic import field_validator

from neogm.errors import InvalidArgumentError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _as_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


class QueryOptions(BaseModel):
    """Options for ``find``/``get``/``all``/``where``/``query``/``count``/``merge``.

    ``with``, ``return`` and ``set`` are Python keywords or builtins, so
    the fields carry a trailing underscore and accept the plain name as an
    alias.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="forbid",
    )

    variable: str = "n"
    query: str | None = None
    where: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    with_: Any = Field(default=None, alias="with")
    index: list[str] | None = None
    order_by: list[str] | None = None
    skip: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=0)
    set_: dict[str, Any] | None = Field(default=None, alias="set")
    return_: list[str] | None = Field(default=None, alias="return")
    singular: bool = False
    models: dict[str, Any] | None = None
    links: dict[str, Any] | None = None
    on_create: dict[str, Any] | None = None
    on_match: dict[str, Any] | None = None

    @field_validator("variable")
    @classmethod
    def _check_variable(cls, value: str) -> str:
        if not _IDENTIFIER_RE.match(value):
            raise ValueError(f"invalid query variable {value!r}")
        return value

    @field_validator("index", "order_by", "return_", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[str] | None:
        return _as_list(value)

    @field_validator("set_", "on_create", "on_match")
    @classmethod
    def _check_keys(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        for key in value or {}:
            if not _IDENTIFIER_RE.match(key):
                raise ValueError(f"invalid property name {key!r}")
        return value


def parse_options(
    options: QueryOptions | Mapping[str, Any] | None = None, **overrides: Any
) -> QueryOptions:
    """Build ``QueryOptions`` from a mapping and keyword overrides."""
    if isinstance(options, QueryOptions):
        if not overrides:
            return options
        data = options.model_dump(by_alias=True, exclude_unset=True)
    else:
        data = dict(options or {})
    data.update(overrides)
    try:
        return QueryOptions.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid query options: {exc}"
        raise InvalidArgumentError(msg) from exc
