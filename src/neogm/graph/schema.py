"""Neo4j schema management: property indexes and uniqueness constraints.

Models register the indexes they rely on; the owning ``Database`` applies
pending statements before its next auto-commit query or transaction.
All statements use ``IF NOT EXISTS`` / ``IF EXISTS`` so they are safe to
run repeatedly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from neo4j import AsyncDriver

from neogm.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NAME_RE = re.compile(r"[^a-z0-9_]+")


def require_identifier(value: str, *, field_name: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        msg = f"Invalid {field_name}: {value!r}"
        raise InvalidArgumentError(msg)
    return value


class ConstraintKind(str, Enum):
    INDEX = "index"
    UNIQUE = "unique"


@dataclass(frozen=True)
class Constraint:
    """One index or uniqueness constraint on ``label.property``."""

    kind: ConstraintKind
    label: str
    property: str

    @property
    def name(self) -> str:
        raw = f"{self.label}_{self.property}_{self.kind.value}".lower()
        return _NAME_RE.sub("_", raw)

    def create_statement(self) -> str:
        if self.kind == ConstraintKind.UNIQUE:
            return (
                f"CREATE CONSTRAINT {self.name} IF NOT EXISTS "
                f"FOR (n:`{self.label}`) REQUIRE n.`{self.property}` IS UNIQUE"
            )
        return (
            f"CREATE INDEX {self.name} IF NOT EXISTS "
            f"FOR (n:`{self.label}`) ON (n.`{self.property}`)"
        )

    def drop_statement(self) -> str:
        if self.kind == ConstraintKind.UNIQUE:
            return f"DROP CONSTRAINT {self.name} IF EXISTS"
        return f"DROP INDEX {self.name} IF EXISTS"


class ConstraintRegistry:
    """Tracks which constraints have been requested and which are applied."""

    def __init__(self) -> None:
        self._constraints: dict[Constraint, bool] = {}

    def _register(self, kind: ConstraintKind, label: str, prop: str) -> Constraint:
        constraint = Constraint(
            kind,
            require_identifier(label, field_name="label"),
            require_identifier(prop, field_name="property"),
        )
        self._constraints.setdefault(constraint, False)
        return constraint

    def add_index(self, label: str, prop: str) -> Constraint:
        return self._register(ConstraintKind.INDEX, label, prop)

    def add_unique(self, label: str, prop: str) -> Constraint:
        return self._register(ConstraintKind.UNIQUE, label, prop)

    def pending(self) -> list[Constraint]:
        return [c for c, added in self._constraints.items() if not added]

    def registered(self) -> list[Constraint]:
        return list(self._constraints)

    async def ensure(self, driver: AsyncDriver, database: str | None = None) -> int:
        """Apply every pending statement; return how many were run.

        Runs each statement in its own auto-commit transaction since schema
        commands can not be mixed with writes in one transaction.
        """
        pending = self.pending()
        if not pending:
            return 0
        async with driver.session(database=database) as session:
            for constraint in pending:
                statement = constraint.create_statement()
                logger.debug("schema statement: %s", statement)
                result = await session.run(statement)
                await result.consume()
                self._constraints[constraint] = True
                logger.info(
                    "created %s %s on %s(%s)",
                    constraint.kind.value,
                    constraint.name,
                    constraint.label,
                    constraint.property,
                )
        return len(pending)

    async def _drop(
        self,
        driver: AsyncDriver,
        constraint: Constraint,
        database: str | None,
    ) -> None:
        statement = constraint.drop_statement()
        logger.debug("schema statement: %s", statement)
        async with driver.session(database=database) as session:
            result = await session.run(statement)
            await result.consume()
        self._constraints.pop(constraint, None)
        logger.info("dropped %s %s", constraint.kind.value, constraint.name)

    async def drop_index(
        self,
        driver: AsyncDriver,
        label: str,
        prop: str,
        database: str | None = None,
    ) -> None:
        constraint = Constraint(
            ConstraintKind.INDEX,
            require_identifier(label, field_name="label"),
            require_identifier(prop, field_name="property"),
        )
        await self._drop(driver, constraint, database)

    async def drop_unique(
        self,
        driver: AsyncDriver,
        label: str,
        prop: str,
        database: str | None = None,
    ) -> None:
        constraint = Constraint(
            ConstraintKind.UNIQUE,
            require_identifier(label, field_name="label"),
            require_identifier(prop, field_name="property"),
        )
        await self._drop(driver, constraint, database)

    @staticmethod
    async def indexes(
        driver: AsyncDriver, database: str | None = None
    ) -> dict[str, list[str]]:
        """Return the node property indexes present in the store by label."""
        result: dict[str, list[str]] = {}
        async with driver.session(database=database) as session:
            records = await session.run(
                "SHOW INDEXES YIELD entityType, labelsOrTypes, properties "
                "WHERE entityType = 'NODE' "
                "RETURN labelsOrTypes, properties"
            )
            async for record in records:
                for label in record["labelsOrTypes"] or []:
                    bucket = result.setdefault(label, [])
                    for prop in record["properties"] or []:
                        if prop not in bucket:
                            bucket.append(prop)
        return result
